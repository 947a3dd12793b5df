from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Generic, TypeVar

from ..utils.files import TEXT_CONTENT_TYPE
from ..utils.files import contentType as getContentType
from .status import HTTP_STATUS

T = TypeVar("T")

# --
# == HTTP Request Response API
#
# Defines the high level API functions (orthogonal to the underlying model)
# to create responses from a request.


class ResponseFactory(ABC, Generic[T]):
	@abstractmethod
	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> T: ...

	def error(
		self,
		status: int,
		content: str | None = None,
		contentType: str = TEXT_CONTENT_TYPE,
		headers: dict[str, str] | None = None,
	) -> T:
		message = HTTP_STATUS.get(status, "Server Error")
		return self.respond(
			content=message if content is None else content,
			contentType=contentType,
			status=status,
			message=message,
			headers=headers,
		)

	def notFound(
		self,
		content: str = "404 Not Found",
		contentType: str = TEXT_CONTENT_TYPE,
		*,
		status: int = 404,
	) -> T:
		return self.error(status, content=content, contentType=contentType)

	def respondFile(
		self,
		path: Path | str,
		headers: dict[str, str] | None = None,
		status: int = 200,
		contentType: str | None = None,
		contentLength: int | None = None,
	) -> T:
		p: Path = path if isinstance(path, Path) else Path(path)
		return self.respond(
			content=p,
			status=status,
			contentType=contentType or getContentType(p),
			contentLength=p.stat().st_size if contentLength is None else contentLength,
			headers=headers,
		)


# EOF
