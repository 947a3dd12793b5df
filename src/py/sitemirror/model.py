from typing import Any, Coroutine, Optional

from mypy_extensions import mypyc_attr

from .http.model import HTTPRequest, HTTPResponse
from .utils.logging import Logger, logger as defaultLogger

# -----------------------------------------------------------------------------
#
# SERVICE
#
# -----------------------------------------------------------------------------


# Services are subclassed by applications, which stay interpreted when
# the package is compiled with mypyc.
@mypyc_attr(allow_interpreted_subclasses=True)
class Service:
	"""A service processes requests into responses. The server hands every
	request to `process`, whatever its method or path."""

	def __init__(
		self, name: Optional[str] = None, *, logger: Logger | None = None
	) -> None:
		self.name: str = name or self.__class__.__name__
		self.logger: Logger = logger or defaultLogger()
		self.init()

	def init(self) -> None:
		pass

	async def start(self) -> None:
		"""Can be overridden to do asynchronous pre-start work"""
		pass

	async def stop(self) -> None:
		"""Can be overridden to do asynchronous post-stop work"""
		pass

	def process(
		self, request: HTTPRequest
	) -> HTTPResponse | Coroutine[Any, Any, HTTPResponse]:
		return request.notFound()

	def __repr__(self) -> str:
		return f"(Service {self.name})"


# EOF
