import asyncio
import os
import stat
from pathlib import Path
from typing import NamedTuple

from ..http.model import HTTPRequest, HTTPResponse
from ..http.parser import decodePath
from ..model import Service
from ..utils.files import HTML_CONTENT_TYPE, contentType
from ..utils.logging import Logger

DEFAULT_DOCUMENT: str = "index.html"


def isReadable(path: Path) -> bool:
	return os.access(path, os.R_OK)


class Resolved(NamedTuple):
	"""A request path resolved to a regular file within the root."""

	path: Path
	size: int
	contentType: str


class FileService(Service):
	"""Serves the files of a content directory. Directories are served
	through their `index.html`, anything that cannot be resolved to a
	readable regular file is a 404."""

	def __init__(
		self,
		root: str | Path,
		*,
		logger: Logger | None = None,
		logRequests: bool = True,
	):
		self.root: Path = Path(root).absolute()
		self.logRequests: bool = logRequests
		super().__init__(logger=logger)

	def localPath(self, path: str) -> Path | None:
		"""Maps the (decoded) request path to a path within the root, returns
		`None` when the path would escape the root."""
		parts: list[str] = []
		for part in path.replace("\\", "/").split("/"):
			if not part or part == ".":
				continue
			elif part == "..":
				if not parts:
					return None
				parts.pop()
			elif "\x00" in part:
				return None
			else:
				parts.append(part)
		return self.root.joinpath(*parts)

	def resolve(self, path: str) -> Resolved | None:
		"""Resolves the request path to a file, this does blocking
		filesystem calls."""
		local_path = self.localPath(decodePath(path))
		if local_path is None:
			return None
		st = os.stat(local_path)
		if stat.S_ISDIR(st.st_mode):
			local_path = local_path / DEFAULT_DOCUMENT
			st = os.stat(local_path)
			if not (stat.S_ISREG(st.st_mode) and isReadable(local_path)):
				return None
			return Resolved(local_path, st.st_size, HTML_CONTENT_TYPE)
		elif stat.S_ISREG(st.st_mode):
			# The file must also be readable, not just exist
			if not isReadable(local_path):
				return None
			return Resolved(local_path, st.st_size, contentType(local_path))
		else:
			return None

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		if self.logRequests:
			self.logger.info(f"{request.method} {request.path}")
		try:
			resolved = await asyncio.to_thread(self.resolve, request.path)
		except (OSError, ValueError) as e:
			# Missing, unreadable and undecodable paths are all not found
			self.logger.debug("Path not resolved", Path=request.path, Reason=str(e))
			resolved = None
		except Exception as e:
			self.logger.exception(e, f"Could not resolve {request.path}")
			resolved = None
		if resolved is None:
			return request.notFound()
		else:
			return request.respondFile(
				resolved.path,
				contentType=resolved.contentType,
				contentLength=resolved.size,
			)


# EOF
