from typing import Iterator, Literal, NamedTuple
from urllib.parse import unquote

from ..utils.io import LineParser, LineTooLong
from .model import (
	HTTPAtom,
	HTTPBodyBlob,
	HTTPHeaders,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestLine,
	HTTPResponseLine,
	headername,
)

# Limits on the request line and on the whole header block, bodies are
# never buffered
LINE_LIMIT: int = 8_192
HEADERS_LIMIT: int = 65_536


class MessageParser:
	"""Parses an HTTP request or response line."""

	__slots__ = ["line", "value"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser(limit=LINE_LIMIT)
		self.value: HTTPRequestLine | HTTPResponseLine | None = None

	def flush(self) -> "HTTPRequestLine|HTTPResponseLine|None":
		res = self.value
		self.reset()
		return res

	def reset(self) -> "MessageParser":
		self.line.reset()
		self.value = None
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		line, read = self.line.feed(chunk, start)
		if not line:
			# NOTE: Empty lines between pipelined messages are skipped
			return None, read
		# Request targets may hold raw UTF-8 from lax clients, latin-1
		# never fails and is reverted when decoding the path.
		ln = line.decode("latin-1")
		if ln.startswith("HTTP/"):
			protocol, status, *message = ln.split(" ", 2)
			self.value = HTTPResponseLine(
				protocol, int(status), message[0] if message else ""
			)
		else:
			i = ln.find(" ")
			j = ln.rfind(" ")
			if i == -1 or i == j:
				# Lines like `GET /` (HTTP/0.9) have no protocol
				i = i if i != -1 else len(ln)
				target, protocol = ln[i + 1 :], "HTTP/1.0"
			else:
				target, protocol = ln[i + 1 : j], ln[j + 1 :]
			p: list[str] = target.split("?", 1)
			self.value = HTTPRequestLine(
				ln[0:i], p[0], p[1] if len(p) > 1 else "", protocol
			)
		return True, read

	def __str__(self) -> str:
		return f"MessageParser({self.value})"


class HeadersParser:
	__slots__ = ["headers", "contentType", "contentLength", "line", "size"]

	def __init__(self) -> None:
		super().__init__()
		self.line: LineParser = LineParser(limit=LINE_LIMIT)
		self.size: int = 0
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.size = 0
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns
		a value and the next start offset. When the value is `None`, no
		header has been extracted, when the value is `False` it's an empty
		line, and when the value is a string, a header was added."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		self.size += len(line) + len(self.line.eol)
		if self.size > HEADERS_LIMIT:
			raise LineTooLong(f"Headers exceed {HEADERS_LIMIT} bytes")
		elif line:
			ln: str = line.decode("latin-1")
			i = ln.find(":")
			if i != -1:
				h = ln[:i].lower().strip()
				v = ln[i + 1 :].strip()
				if h == "content-length":
					try:
						length = int(v)
					except ValueError:
						length = -1
					self.contentLength = length if length >= 0 else None
				elif h == "content-type":
					self.contentType = v
				n: str = headername(h)
				self.headers[n] = v
				return n, read
			else:
				return None, read
		else:
			# An empty line denotes the end of headers
			return False, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyLengthParser:
	"""Consumes the body of a request with ContentLength set. The content
	is discarded, only its length is kept."""

	__slots__ = ["expected", "read"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0

	def flush(self) -> HTTPBodyBlob:
		res = HTTPBodyBlob(b"", self.read)
		self.reset()
		return res

	def reset(self, length: int = 0) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		left: int = len(chunk) - start
		to_read: int = min(left, self.expected - self.read)
		self.read += to_read
		return (True if self.read >= self.expected else None), to_read


class HTTPParser:
	"""A stateful HTTP request parser, supporting pipelined requests."""

	def __init__(self) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.bodyLength: BodyLengthParser = BodyLengthParser()
		self.parser: MessageParser | HeadersParser | BodyLengthParser = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None

	def request(self, body: HTTPBodyBlob) -> HTTPRequest:
		line = self.requestLine
		assert line is not None
		return HTTPRequest(
			method=line.method,
			path=line.path,
			query=line.query,
			headers=self.requestHeaders or HTTPHeaders({}),
			body=body,
			protocol=line.protocol,
		)

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		"""Feeds the chunk to the parser, yielding the atoms it produces. The
		chunk must not be fed again, partial lines are kept until they
		complete. A request line or header block over the limits yields
		`TooLarge`, after which the parser is reset and the connection is
		expected to be closed."""
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			try:
				ln, read = self.parser.feed(chunk, offset)
			except LineTooLong:
				self.headers.reset()
				self.parser = self.message.reset()
				yield HTTPProcessingStatus.TooLarge
				return
			offset += read
			if ln is None:
				continue
			elif self.parser is self.message:
				line = self.message.flush()
				if isinstance(line, HTTPRequestLine):
					self.requestLine = line
					self.requestHeaders = None
					yield line
					self.parser = self.headers
				else:
					# We only expect requests on this side
					yield HTTPProcessingStatus.BadFormat
			elif self.parser is self.headers:
				if ln is not False:
					# `ln` is the header name
					continue
				headers = self.headers.flush()
				self.requestHeaders = headers
				yield headers
				length = headers.contentLength or 0
				# Bodies are consumed (and ignored) whatever the method, so that
				# pipelined requests stay aligned.
				if not length:
					yield self.request(HTTPBodyBlob())
					self.parser = self.message.reset()
				else:
					self.parser = self.bodyLength.reset(length)
					yield HTTPProcessingStatus.Body
			elif self.parser is self.bodyLength:
				yield self.request(self.bodyLength.flush())
				self.parser = self.message.reset()
			else:
				raise RuntimeError(f"Unsupported parser: {self.parser}")


class ResponseHead(NamedTuple):
	line: HTTPResponseLine
	headers: HTTPHeaders
	# Bytes that were received after the head, ie. the start of the body
	rest: bytes


class ResponseHeadParser:
	"""Parses the status line and headers of an HTTP response, leaving
	the body to the caller."""

	def __init__(self) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.line: HTTPResponseLine | None = None

	def feed(self, chunk: bytes) -> ResponseHead | None:
		offset: int = 0
		size: int = len(chunk)
		while offset < size:
			if self.line is None:
				ln, read = self.message.feed(chunk, offset)
				offset += read
				if ln:
					line = self.message.flush()
					if not isinstance(line, HTTPResponseLine):
						raise ValueError(f"Expected a response line, got: {line}")
					self.line = line
			else:
				h, read = self.headers.feed(chunk, offset)
				offset += read
				if h is False:
					return ResponseHead(self.line, self.headers.flush(), chunk[offset:])
		return None


class ChunkedDecoder:
	"""Incrementally decodes a `Transfer-Encoding: chunked` body."""

	__slots__ = ["line", "remaining", "state"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.remaining: int = 0
		# One of: size, data, end (CRLF after data), trailer, done
		self.state: str = "size"

	@property
	def isDone(self) -> bool:
		return self.state == "done"

	def feed(self, chunk: bytes) -> bytes:
		"""Returns the body bytes decoded from the given chunk."""
		res = bytearray()
		offset: int = 0
		size: int = len(chunk)
		while offset < size and self.state != "done":
			if self.state == "data":
				n = min(self.remaining, size - offset)
				res += chunk[offset : offset + n]
				offset += n
				self.remaining -= n
				if not self.remaining:
					self.state = "end"
				continue
			line, read = self.line.feed(chunk, offset)
			offset += read
			if line is None:
				continue
			elif self.state == "size":
				# Chunk extensions (`;name=value`) are ignored
				length = line.split(b";", 1)[0].strip()
				try:
					self.remaining = int(length, 16)
				except ValueError:
					raise ValueError(f"Malformed chunk size: {length!r}") from None
				self.state = "data" if self.remaining else "trailer"
			elif self.state == "end":
				self.state = "size"
			elif self.state == "trailer" and not line:
				self.state = "done"
		return bytes(res)


def decodePath(path: str) -> str:
	"""Percent-decodes the request path as UTF-8, so that `/a%20b.txt`
	becomes `/a b.txt` and non-ASCII segments are supported."""
	# The request line was decoded as latin-1, we revert that to get the
	# original bytes before percent-decoding.
	try:
		raw = path.encode("latin-1").decode("utf8")
	except (UnicodeEncodeError, UnicodeDecodeError):
		raw = path
	return unquote(raw, encoding="utf8", errors="strict")


# EOF
