DEFAULT_ENCODING: str = "utf8"
EOL: bytes = b"\r\n"


class LineTooLong(ValueError):
	"""Raised when a line exceeds the parser's limit without a delimiter."""


class LineParser:
	"""Accumulates chunks until an end-of-line delimiter is found. When
	`limit` is set, buffering more than `limit` bytes without finding the
	delimiter raises `LineTooLong`."""

	__slots__ = ["buffer", "line", "eol", "offset", "limit"]

	def __init__(self, eol: bytes = EOL, limit: int | None = None) -> None:
		self.buffer: bytearray = bytearray()
		self.line: bytes | None = None
		self.offset: int = 0
		self.eol: bytes = eol
		self.limit: int | None = limit

	def reset(self, eol: bytes = EOL) -> "LineParser":
		self.buffer.clear()
		self.line = None
		self.offset = 0
		self.eol = eol
		return self

	def flush(self) -> bytes | None:
		return self.line

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bytes | None, int]:
		"""Returns the matching line (if any) and how many bytes were consumed
		from `chunk` starting at `start`. When the line is `None`, the whole
		chunk has been buffered."""
		pos = len(self.buffer)
		self.buffer += chunk[start:]
		end = self.buffer.find(self.eol, self.offset)
		if end == -1:
			if self.limit is not None and len(self.buffer) > self.limit:
				size = len(self.buffer)
				self.buffer.clear()
				self.offset = 0
				raise LineTooLong(f"Line exceeds {self.limit} bytes: {size}")
			# The delimiter may straddle two chunks
			self.offset = max(0, len(self.buffer) - len(self.eol) + 1)
			return None, len(chunk) - start
		elif self.limit is not None and end > self.limit:
			self.buffer.clear()
			self.offset = 0
			raise LineTooLong(f"Line exceeds {self.limit} bytes: {end}")
		else:
			self.line = bytes(self.buffer[:end])
			self.buffer.clear()
			self.offset = 0
			return self.line, (end - pos) + len(self.eol)


# EOF
