from pathlib import Path

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

# Extensions are lowercased and include the leading dot. Text types are
# always served with an explicit UTF-8 charset.
MIME_TYPES: dict[str, str] = {
	".html": "text/html; charset=UTF-8",
	".css": "text/css; charset=UTF-8",
	".js": "text/javascript; charset=UTF-8",
	".json": "application/json; charset=UTF-8",
	".txt": "text/plain; charset=UTF-8",
	".md5": "text/plain; charset=UTF-8",
	".jar": "application/java-archive",
	".jpg": "image/jpeg",
	".jpeg": "image/jpeg",
	".png": "image/png",
	".gif": "image/gif",
	".svg": "image/svg+xml",
}

HTML_CONTENT_TYPE: str = MIME_TYPES[".html"]
TEXT_CONTENT_TYPE: str = MIME_TYPES[".txt"]


def contentType(path: Path | str) -> str:
	"""Returns the content type for the given path, based on its
	(case-insensitive) extension."""
	return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


# EOF
