from os import getenv
from pathlib import Path
from typing import NamedTuple


def getlist(name: str, default: str) -> tuple[str, ...]:
	"""Reads a comma-separated list from the environment."""
	return tuple(_.strip() for _ in (getenv(name) or default).split(",") if _.strip())


PORT: int = int(getenv("PORT", 8000))

# The server is meant to run in a container, so it listens everywhere
HOST: str = getenv("HOST", "0.0.0.0")  # nosec: B104

ROOT: Path = Path(getenv("SITEMIRROR_ROOT", "public"))
LOGS: str = "logs"

# Remote source: a git repository (cloned) or an archive URL (downloaded),
# git wins when both are set.
GIT_URL: str | None = getenv("TV_GIT") or None
BRANCH: str = getenv("TV_BRANCH", "main")
ARCHIVE_URL: str | None = getenv("TV_ARCHIVE") or None
PROXY: str | None = getenv("HTTPS_PROXY") or getenv("HTTP_PROXY") or None

DOMAIN: str = getenv("DOMAIN", "example.com")
MANIFEST: str = "api.json"
INDEX: str = getenv("SITEMIRROR_INDEX", "tvtxt.txt")
EXCLUDE: tuple[str, ...] = getlist("SITEMIRROR_EXCLUDE", "tvbox.txt,README.md")

DEBUG: bool = getenv("SITEMIRROR_DEBUG", "0") == "1"
LOG_REQUESTS: bool = getenv("SITEMIRROR_LOG_REQUESTS", "1") == "1"


class GitSource(NamedTuple):
	"""A branch of a git repository, fetched with a shallow clone."""

	url: str
	branch: str = "main"


class ArchiveSource(NamedTuple):
	"""A (zip) archive of the source tree, fetched over HTTP(S)."""

	url: str


TSource = GitSource | ArchiveSource


class Settings(NamedTuple):
	"""The settings of a refresh, defaulting to the environment."""

	root: Path = ROOT
	gitURL: str | None = GIT_URL
	branch: str = BRANCH
	archiveURL: str | None = ARCHIVE_URL
	proxy: str | None = PROXY
	domain: str = DOMAIN
	manifest: str = MANIFEST
	index: str = INDEX
	exclude: tuple[str, ...] = EXCLUDE
	logs: str = LOGS

	@property
	def logsPath(self) -> Path:
		return self.root / self.logs

	def source(self) -> TSource | None:
		"""Returns the remote source descriptor, or `None` when no source
		is configured (in which case the refresh is skipped)."""
		if self.gitURL:
			return GitSource(self.gitURL, self.branch)
		elif self.archiveURL:
			return ArchiveSource(self.archiveURL)
		else:
			return None


# EOF
