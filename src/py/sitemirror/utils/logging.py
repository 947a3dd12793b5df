import sys
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import IO, Any, NamedTuple, TextIO

from mypy_extensions import mypyc_attr

from .primitives import TPrimitive
from .term import Term, hasColor

# --
# # Logging
#
# A small structured logger. Entries are formatted as
# `[timestamp] [LEVEL] message Key=value` and dispatched to one or more
# sinks (console, dated log file, memory). A single `Logger` is meant to
# be created at startup and passed to the components that need it, the
# module-level functions forward to the process default logger.


class LogType(Enum):
	Message = 0  # A general information message
	Event = 20  # An event


class LogLevel(Enum):
	Debug = 0
	Info = 10
	Error = 40


LOG_LEVEL_LABEL: dict[LogLevel, str] = {
	LogLevel.Debug: "DEBUG",
	LogLevel.Info: "INFO",
	LogLevel.Error: "ERROR",
}

LOG_LEVEL_COLOR: dict[LogLevel, int] = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Error: 160,
}


class LogEntry(NamedTuple):
	origin: str
	time: float
	type: LogType = LogType.Message
	level: LogLevel = LogLevel.Info
	message: str | None = None
	name: str | None = None
	value: TPrimitive | None = None
	context: dict[str, TPrimitive] | None = None
	stack: list[str] | None = None


def timestamp(at: float) -> str:
	"""Formats the time as an ISO-8601 UTC timestamp with milliseconds,
	like `2024-01-31T12:00:00.000Z`."""
	return (
		datetime.fromtimestamp(at, tz=timezone.utc)
		.isoformat(timespec="milliseconds")
		.replace("+00:00", "Z")
	)


def formatData(value: Any) -> str:
	if value is None or value == () or value == [] or value == {}:
		return ""
	elif isinstance(value, dict):
		return " ".join(f"{k}={formatData(v)}" for k, v in value.items())
	elif isinstance(value, list) or isinstance(value, tuple):
		return ",".join(formatData(v) for v in value)
	elif isinstance(value, str):
		return repr(value) if " " in value else value
	elif isinstance(value, float):
		return f"{value:0.2f}"
	else:
		return str(value)


def formatEntry(entry: LogEntry) -> str:
	"""Formats the entry as a single log line (without the trailing EOL)."""
	if entry.type == LogType.Event:
		body = " ".join(
			_ for _ in (entry.name, formatData(entry.value)) if _
		)
	else:
		body = entry.message or ""
	context = formatData(entry.context)
	line = f"[{timestamp(entry.time)}] [{LOG_LEVEL_LABEL[entry.level]}] {body}"
	return f"{line} {context}" if context else line


# -----------------------------------------------------------------------------
#
# SINKS
#
# -----------------------------------------------------------------------------


@mypyc_attr(allow_interpreted_subclasses=True)
class LogSink(ABC):
	"""A destination for log entries."""

	@abstractmethod
	def write(self, entry: LogEntry) -> None: ...

	def close(self) -> None:
		pass


class ConsoleSink(LogSink):
	"""Writes INFO entries on stdout and ERROR entries on stderr."""

	def __init__(self, out: TextIO | None = None, err: TextIO | None = None):
		self.out: TextIO = out or sys.stdout
		self.err: TextIO = err or sys.stderr

	def write(self, entry: LogEntry) -> None:
		stream = self.err if entry.level is LogLevel.Error else self.out
		line = formatEntry(entry)
		if hasColor(stream):
			line = f"{Term.Color(LOG_LEVEL_COLOR[entry.level])}{line}{Term.RESET}"
		stream.write(f"{line}\n")
		if entry.stack:
			stream.write("".join(f"{_}\n" for _ in entry.stack))
		stream.flush()


class FileSink(LogSink):
	"""Appends entries to `app_<YYYY-MM-DD>.log` in the given directory,
	switching files when the (UTC) date changes."""

	def __init__(self, directory: Path | str, prefix: str = "app_"):
		self.directory: Path = Path(directory)
		self.prefix: str = prefix
		self.date: str | None = None
		self.file: IO[str] | None = None

	def pathFor(self, at: float) -> Path:
		day = datetime.fromtimestamp(at, tz=timezone.utc).strftime("%Y-%m-%d")
		return self.directory / f"{self.prefix}{day}.log"

	def write(self, entry: LogEntry) -> None:
		path = self.pathFor(entry.time)
		if self.file is None or self.date != path.name:
			self.close()
			self.directory.mkdir(parents=True, exist_ok=True)
			self.file = open(path, "at", encoding="utf8")
			self.date = path.name
		self.file.write(f"{formatEntry(entry)}\n")
		if entry.stack:
			self.file.write("".join(f"{_}\n" for _ in entry.stack))
		self.file.flush()

	def close(self) -> None:
		if self.file:
			self.file.close()
			self.file = None
			self.date = None


class MemorySink(LogSink):
	"""Keeps entries in memory, used in tests."""

	def __init__(self) -> None:
		self.entries: list[LogEntry] = []

	@property
	def lines(self) -> list[str]:
		return [formatEntry(_) for _ in self.entries]

	def write(self, entry: LogEntry) -> None:
		self.entries.append(entry)


# -----------------------------------------------------------------------------
#
# LOGGER
#
# -----------------------------------------------------------------------------


def traceback(exception: BaseException) -> list[str]:
	res: list[str] = []
	tb = exception.__traceback__
	while tb:
		code = tb.tb_frame.f_code
		res.append(
			f"... in {code.co_name:15s} at {tb.tb_lineno:4d} in {code.co_filename}"
		)
		tb = tb.tb_next
	return res


class Logger:
	"""Dispatches log entries to a list of sinks."""

	def __init__(
		self,
		origin: str = "sitemirror",
		sinks: list[LogSink] | None = None,
		*,
		debug: bool = False,
	):
		self.origin: str = origin
		self.sinks: list[LogSink] = [ConsoleSink()] if sinks is None else sinks
		self.isDebug: bool = debug

	def send(self, entry: LogEntry) -> LogEntry:
		if entry.level is LogLevel.Debug and not self.isDebug:
			return entry
		for sink in self.sinks:
			try:
				sink.write(entry)
			except Exception as e:  # nosec: B110
				# A failing sink (full disk, closed stream) must not take down
				# the caller, we report on the other channel.
				sys.__stderr__.write(f"!!! Log sink {sink} failed: {e}\n")
		return entry

	def entry(
		self,
		*,
		type: LogType = LogType.Message,
		level: LogLevel = LogLevel.Info,
		message: str | None = None,
		name: str | None = None,
		value: TPrimitive | None = None,
		context: dict[str, TPrimitive] | None = None,
		stack: list[str] | None = None,
		at: float | None = None,
	) -> LogEntry:
		return LogEntry(
			origin=self.origin,
			time=time.time() if at is None else at,
			type=type,
			level=level,
			message=message,
			name=name,
			value=value,
			context=context,
			stack=stack,
		)

	def debug(self, message: str, **context: TPrimitive) -> LogEntry:
		return self.send(
			self.entry(message=message, level=LogLevel.Debug, context=context)
		)

	def info(self, message: str, **context: TPrimitive) -> LogEntry:
		return self.send(self.entry(message=message, context=context))

	def error(
		self, message: str, code: int | str | None = None, **context: TPrimitive
	) -> LogEntry:
		return self.send(
			self.entry(
				message=message,
				value=code,
				level=LogLevel.Error,
				context={"Code": code, **context} if code is not None else context,
			)
		)

	def event(self, event: str, value: Any = None, **context: TPrimitive) -> LogEntry:
		return self.send(
			self.entry(name=event, value=value, type=LogType.Event, context=context)
		)

	def exception(
		self, exception: BaseException, message: str | None = None
	) -> BaseException:
		summary = f"[{exception.__class__.__name__}] {exception}"
		self.send(
			self.entry(
				message=f"{message}: {summary}" if message else summary,
				level=LogLevel.Error,
				stack=traceback(exception),
			)
		)
		# Returns the exception so that we can do `raise logger.exception(e)`
		return exception

	def close(self) -> None:
		for sink in self.sinks:
			sink.close()


# -----------------------------------------------------------------------------
#
# DEFAULT LOGGER
#
# -----------------------------------------------------------------------------

LOGGER: list[Logger] = [Logger()]


def logger() -> Logger:
	return LOGGER[0]


def configure(
	directory: Path | str | None = None,
	*,
	console: bool = True,
	debug: bool = False,
	origin: str = "sitemirror",
) -> Logger:
	"""Creates a logger writing to the console and, when `directory` is
	given, to dated files in that directory, and makes it the process
	default."""
	sinks: list[LogSink] = []
	if console:
		sinks.append(ConsoleSink())
	if directory is not None:
		sinks.append(FileSink(directory))
	res = Logger(origin, sinks, debug=debug)
	previous = LOGGER[0]
	LOGGER[0] = res
	previous.close()
	return res


def debug(message: str, **context: TPrimitive) -> LogEntry:
	return logger().debug(message, **context)


def info(message: str, **context: TPrimitive) -> LogEntry:
	return logger().info(message, **context)


def error(message: str, code: int | str | None = None, **context: TPrimitive) -> LogEntry:
	return logger().error(message, code, **context)


def event(name: str, value: Any = None, **context: TPrimitive) -> LogEntry:
	return logger().event(name, value, **context)


def exception(exception: BaseException, message: str | None = None) -> BaseException:
	return logger().exception(exception, message)


# EOF
