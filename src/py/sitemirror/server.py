import asyncio
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path
from signal import SIGINT, SIGTERM
from typing import Any, Callable, Coroutine, Iterable, NamedTuple

from .config import HOST, PORT
from .http.model import (
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
)
from .http.parser import HTTPParser
from .model import Service
from .utils.files import TEXT_CONTENT_TYPE
from .utils.limits import LimitType, unlimit
from .utils.logging import Logger, logger as defaultLogger

TStartup = Callable[[], Coroutine[Any, Any, Any]]


@dataclass
class ServerState:
	"""Shared state of a running server, `ready` is set once the socket
	is listening and `port` holds the bound port."""

	isRunning: bool = True
	port: int | None = None
	ready: asyncio.Event = field(default_factory=asyncio.Event)

	def stop(self) -> None:
		self.isRunning = False


class ServerOptions(NamedTuple):
	host: str = "0.0.0.0"  # nosec: B104
	port: int = 8000
	backlog: int = 10_000
	# This is the polling timeout for accepting new requests, it bounds
	# how long a stop takes to be noticed.
	polling: float = 1.0
	readsize: int = 4_096
	keepalive: float = 60.0
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True


OPTIONS: ServerOptions = ServerOptions()

# Sent before closing connections whose request head exceeds the parser limits
TOO_LARGE: HTTPResponse = HTTPResponse.Create(
	content="404 Not Found",
	contentType=TEXT_CONTENT_TYPE,
	status=404,
	headers={"Connection": "close"},
)


class BindError(OSError):
	"""The server could not bind its listening socket."""


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	def __init__(
		self,
		client: "socket.socket",
		loop: asyncio.AbstractEventLoop,
	) -> None:
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop

	async def _writeBytes(self, chunk: bytes) -> bool:
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True

	async def _writeFile(self, path: Path) -> bool:
		# The file is closed whether the client stays until the end or not
		with open(path, "rb") as f:
			await self.loop.sock_sendfile(self.client, f)
		return True


class AIOSocketServer:
	"""AsyncIO backend using sockets directly."""

	@classmethod
	async def OnRequest(
		cls,
		service: Service,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
		logger: Logger,
	) -> None:
		"""Asynchronous worker, processing the requests of a client socket
		until it closes, times out or asks for the connection to close."""
		size: int = options.readsize
		buffer = bytearray(size)
		keep_alive: bool = True
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		req_count: int = 0
		res_count: int = 0
		try:
			parser: HTTPParser = HTTPParser()
			writer: AIOSocketBodyWriter = AIOSocketBodyWriter(client, loop)
			while keep_alive and not writer.shouldClose:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=options.keepalive,
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				if not n:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				# NOTE: With HTTP Pipelining, we may receive more than one
				# request in the same payload.
				for atom in parser.feed(bytes(buffer[:n])):
					if atom is HTTPProcessingStatus.BadFormat:
						status = atom
						keep_alive = False
						break
					elif atom is HTTPProcessingStatus.TooLarge:
						# Oversized heads are answered like any other failure
						status = atom
						keep_alive = False
						logger.error("Request head too large, closing connection")
						await writer.write(TOO_LARGE.head())
						await writer.write(TOO_LARGE.body)
						break
					elif isinstance(atom, HTTPRequest):
						req_count += 1
						if not atom.keepAlive:
							keep_alive = False
						res = await cls.SendResponse(atom, service, writer, logger)
						if res is None:
							keep_alive = False
							break
						res_count += 1
						if res.shouldClose:
							keep_alive = False
			if req_count != res_count:
				logger.debug(
					"Incomplete responses",
					Requests=req_count,
					Responses=res_count,
					Status=status.name,
				)
		except ConnectionError:
			# The client went away, there is nobody to respond to
			pass
		except Exception as e:
			logger.exception(e, "Connection processing failed")
		finally:
			client.close()

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		service: Service,
		writer: HTTPBodyWriter,
		logger: Logger,
	) -> HTTPResponse | None:
		"""Processes the request within the service and sends the response
		using the given writer, returns `None` when the response could not
		be sent."""
		res: HTTPResponse | None
		try:
			r = service.process(request)
			res = r if isinstance(r, HTTPResponse) else await r
		except Exception as e:
			# Clients only ever see a 200 or a 404
			logger.exception(e, f"Processing failed for {request.method} {request.path}")
			res = request.notFound()
		if res is None:
			logger.error(
				"Service did not return a response",
				Method=request.method,
				Path=request.path,
			)
			res = request.notFound()
		try:
			await writer.write(res.head())
			await writer.write(res.body)
		except ConnectionError:
			# Client did an early close, the stream stops there
			return None
		except OSError as e:
			# The file may have vanished between resolution and sending,
			# the head is already out so we can only close.
			logger.error("Could not send response body", Path=request.path, Reason=str(e))
			return None
		return res

	@classmethod
	async def Serve(
		cls,
		service: Service,
		options: ServerOptions = ServerOptions(),
		*,
		startup: Iterable[TStartup] = (),
		state: ServerState | None = None,
		logger: Logger | None = None,
	) -> None:
		"""Main server coroutine. Binding the port is the only fatal error,
		it is logged and raised as a `BindError`."""
		logger = logger or defaultLogger()
		server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
		server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		try:
			server.bind((options.host, options.port))
		except OSError as e:
			server.close()
			logger.error(
				f"Unable to bind to {options.host}:{options.port}, aborting.",
				"HOSTPORTERR",
				Reason=str(e),
			)
			raise BindError(e.errno, f"Unable to bind to {options.host}:{options.port}") from e

		# The argument is the backlog of connections that will be accepted before
		# they are refused.
		server.listen(options.backlog)
		server.setblocking(False)
		port: int = server.getsockname()[1]

		loop = asyncio.get_running_loop()
		state = state or ServerState()
		state.port = port
		if options.stopSignals and threading.current_thread() is threading.main_thread():
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)

		tasks: set[asyncio.Task[Any]] = set()
		failures: list[BaseException] = []
		stop = state.stop

		def onStartupDone(task: asyncio.Task[Any]) -> None:
			tasks.discard(task)
			# An unexpected error in a startup task stops the server, it is
			# raised once the server is stopped.
			if not task.cancelled() and (error := task.exception()):
				failures.append(error)
				stop()

		logger.info(f"Server running at http://localhost:{port}/", Host=options.host)
		for job in startup:
			task = loop.create_task(job())
			tasks.add(task)
			task.add_done_callback(onStartupDone)
		await service.start()
		state.ready.set()

		try:
			while state.isRunning:
				if options.condition and not options.condition():
					break
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					continue
				except OSError as e:
					# This can be: [OSError] [Errno 24] Too many open files
					if e.errno == 24:
						await asyncio.sleep(0.1)
					else:
						logger.exception(e)
					continue
				client.setblocking(False)
				task = loop.create_task(
					cls.OnRequest(
						service, client, loop=loop, options=options, logger=logger
					)
				)
				tasks.add(task)
				task.add_done_callback(tasks.discard)
		finally:
			logger.info("Server stopping")
			server.close()
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			await service.stop()
		if failures:
			raise failures[0]


def run(
	service: Service,
	*,
	host: str = HOST,
	port: int = PORT,
	startup: Iterable[TStartup] = (),
	keepalive: float = OPTIONS.keepalive,
	logger: Logger | None = None,
) -> None:
	"""High level function to run the server, raises `BindError` when the
	port can't be bound."""
	logger = logger or defaultLogger()
	unlimit(LimitType.Files)
	options = ServerOptions(
		host=host,
		port=port,
		keepalive=keepalive,
	)
	try:
		asyncio.run(AIOSocketServer.Serve(service, options, startup=startup, logger=logger))
	except KeyboardInterrupt:
		logger.event("ManualShutdown")


# EOF
