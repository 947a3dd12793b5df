import asyncio
import ssl
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator, NamedTuple, Union
from urllib.parse import urljoin, urlsplit

import certifi

from .errors import DownloadError
from .http.model import HTTPHeaders, HTTPResponseLine
from .http.parser import ChunkedDecoder, ResponseHead, ResponseHeadParser
from .http.status import HTTP_REDIRECTS
from .utils.logging import Logger, logger as defaultLogger

# --
# A low level async HTTP/1.1 client, used to download source archives. It
# supports TLS, HTTP(S) proxies (CONNECT tunnels for HTTPS) and following
# redirects.

SSL_CLIENT_CONTEXT: ssl.SSLContext = ssl.create_default_context(
	ssl.Purpose.SERVER_AUTH, cafile=certifi.where()
)

USER_AGENT: str = "sitemirror/1.0"
READ_SIZE: int = 64_000

# -----------------------------------------------------------------------------
#
# CONNECTIONS
#
# -----------------------------------------------------------------------------


class Target(NamedTuple):
	"""A host/port target."""

	name: str
	port: int


class ConnectionTarget(NamedTuple):
	"""Represents the target of an HTTP(S) connection, which includes
	a possible proxy."""

	host: Target
	ssl: bool
	proxy: Union[Target, None] = None

	@staticmethod
	def Make(
		host: str,
		port: Union[int, None] = None,
		ssl: bool = True,
		*,
		proxy: Union[str, None] = None,
	) -> "ConnectionTarget":
		"""Convenience wrapper to create a connection target, the proxy is
		given as a URL like `http://proxy:3128`."""
		proxy_target: Target | None = None
		if proxy:
			p = urlsplit(proxy if "://" in proxy else f"http://{proxy}")
			if p.hostname:
				proxy_target = Target(p.hostname, p.port or 80)
		return ConnectionTarget(
			host=Target(host, port if port is not None else 443 if ssl else 80),
			proxy=proxy_target,
			ssl=bool(ssl),
		)


@dataclass
class Connection:
	"""Wraps an underlying HTTP(S) connection with its target
	information."""

	target: ConnectionTarget
	reader: asyncio.StreamReader
	writer: asyncio.StreamWriter

	def close(self) -> "Connection":
		self.writer.close()
		return self

	@staticmethod
	async def Make(
		target: ConnectionTarget, *, timeout: Union[float, None] = None
	) -> "Connection":
		"""Makes a connection to the given target, going through the proxy
		when there is one."""
		host = target.host
		if not target.proxy:
			reader, writer = await asyncio.wait_for(
				asyncio.open_connection(
					host=host.name,
					port=host.port,
					ssl=SSL_CLIENT_CONTEXT if target.ssl else None,
				),
				timeout=timeout,
			)
			return Connection(target, reader, writer)
		reader, writer = await asyncio.wait_for(
			asyncio.open_connection(host=target.proxy.name, port=target.proxy.port),
			timeout=timeout,
		)
		cxn = Connection(target, reader, writer)
		if target.ssl:
			# SEE: https://datatracker.ietf.org/doc/html/rfc7231#section-4.3.6
			authority = f"{host.name}:{host.port}"
			writer.write(
				f"CONNECT {authority} HTTP/1.1\r\nHost: {authority}\r\n\r\n".encode(
					"ascii"
				)
			)
			await writer.drain()
			head, _ = await readHead(cxn, timeout=timeout)
			if head.line.status // 100 != 2:
				cxn.close()
				raise DownloadError(
					f"Proxy refused tunnel to {authority}: {head.line.status}",
					authority,
					head.line.status,
				)
			await asyncio.wait_for(
				writer.start_tls(SSL_CLIENT_CONTEXT, server_hostname=host.name),
				timeout=timeout,
			)
		return cxn


async def readHead(
	cxn: Connection, *, timeout: Union[float, None] = None
) -> tuple[ResponseHead, bytes]:
	"""Reads a response head from the connection, returns it along with
	the bytes of the body that were already received."""
	parser = ResponseHeadParser()
	while True:
		chunk = await asyncio.wait_for(cxn.reader.read(READ_SIZE), timeout=timeout)
		if not chunk:
			raise ConnectionError("Connection closed before the response head")
		if head := parser.feed(chunk):
			return head, head.rest


# -----------------------------------------------------------------------------
#
# HTTP CLIENT
#
# -----------------------------------------------------------------------------


class HTTPClient:
	@classmethod
	async def Request(
		cls,
		method: str,
		host: str,
		path: str,
		*,
		port: Union[int, None] = None,
		headers: Union[dict[str, str], None] = None,
		ssl: bool = True,
		timeout: float = 30.0,
		proxy: Union[str, None] = None,
	) -> AsyncGenerator[HTTPResponseLine | HTTPHeaders | bytes, None]:
		"""Performs a request, yielding the response line, the response
		headers and then the (decoded) body as bytes chunks. The connection
		is always closed."""
		target = ConnectionTarget.Make(host, port, ssl, proxy=proxy)
		cxn = await Connection.Make(target, timeout=timeout)
		try:
			# Plain HTTP through a proxy uses the absolute form
			request_path = (
				f"http://{host}:{target.host.port}{path}"
				if target.proxy and not ssl
				else path
			)
			head: dict[str, str] = {
				"Host": host if port is None else f"{host}:{port}",
				"User-Agent": USER_AGENT,
				"Accept": "*/*",
				"Connection": "close",
			} | (headers or {})
			cxn.writer.write(
				(
					f"{method} {request_path} HTTP/1.1\r\n"
					+ "".join(f"{k}: {v}\r\n" for k, v in head.items())
					+ "\r\n"
				).encode("ascii")
			)
			await cxn.writer.drain()
			response, rest = await readHead(cxn, timeout=timeout)
			yield response.line
			yield response.headers
			if method == "HEAD" or response.line.status in (204, 304):
				return
			chunked = "chunked" in (
				response.headers.get("Transfer-Encoding") or ""
			).lower()
			decoder = ChunkedDecoder() if chunked else None
			remaining: int | None = (
				None if chunked else response.headers.contentLength
			)
			chunk: bytes = rest
			while True:
				if chunk:
					if decoder:
						if data := decoder.feed(chunk):
							yield data
						if decoder.isDone:
							break
					else:
						if remaining is not None:
							chunk = chunk[:remaining]
							remaining -= len(chunk)
						yield chunk
				if remaining is not None and remaining <= 0:
					break
				chunk = await asyncio.wait_for(
					cxn.reader.read(READ_SIZE), timeout=timeout
				)
				if not chunk:
					if remaining or (decoder and not decoder.isDone):
						raise ConnectionError("Connection closed before end of body")
					break
		finally:
			cxn.close()


# -----------------------------------------------------------------------------
#
# DOWNLOAD
#
# -----------------------------------------------------------------------------


async def download(
	url: str,
	path: Path,
	*,
	redirects: int = 10,
	proxy: Union[str, None] = None,
	timeout: float = 30.0,
	logger: Logger | None = None,
) -> str:
	"""Downloads the given URL to `path`, following redirects. Returns the
	final URL. Raises `DownloadError` on non-2xx responses, redirect loops
	and network failures."""
	logger = logger or defaultLogger()
	current: str = url
	visited: set[str] = set()
	while True:
		if current in visited:
			raise DownloadError(f"Redirect loop detected at {current}", current)
		if len(visited) > redirects:
			raise DownloadError(f"Too many redirects ({redirects})", current)
		visited.add(current)
		parts = urlsplit(current)
		if parts.scheme not in ("http", "https") or not parts.hostname:
			raise DownloadError(f"Unsupported URL: {current}", current)
		location: str | None = None
		status: int = 0
		try:
			async with aclosing(
				HTTPClient.Request(
					"GET",
					parts.hostname,
					f"{parts.path or '/'}{f'?{parts.query}' if parts.query else ''}",
					port=parts.port,
					ssl=parts.scheme == "https",
					timeout=timeout,
					proxy=proxy,
				)
			) as atoms:
				with open(path, "wb") as f:
					async for atom in atoms:
						if isinstance(atom, HTTPResponseLine):
							status = atom.status
						elif isinstance(atom, HTTPHeaders):
							if status in HTTP_REDIRECTS and (
								location := atom.get("Location")
							):
								break
							elif status // 100 != 2:
								raise DownloadError(
									f"Download failed with status {status}: {current}",
									current,
									status,
								)
						else:
							await asyncio.to_thread(f.write, atom)
		except (OSError, asyncio.TimeoutError, ValueError) as e:
			raise DownloadError(f"Download failed: {current}: {e}", current) from e
		if location:
			current = urljoin(current, location)
			logger.info(f"Following redirect: {current}", Status=status)
		else:
			return current


# EOF
