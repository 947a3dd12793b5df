import argparse
import asyncio
import sys
from pathlib import Path
from types import TracebackType

from . import config
from .config import Settings
from .refresh.pipeline import Refresher, RefreshStatus
from .server import BindError, run
from .services.files import FileService
from .utils.logging import Logger, configure


def excepthook(logger: Logger):
	"""Returns a hook logging uncaught exceptions before exiting with
	an error status."""

	def hook(
		type: type[BaseException],
		value: BaseException,
		traceback: TracebackType | None,
	) -> None:
		if issubclass(type, KeyboardInterrupt):
			sys.__excepthook__(type, value, traceback)
			return
		logger.exception(value.with_traceback(traceback), "Uncaught exception")
		logger.close()
		sys.exit(1)

	return hook


def main(args: list[str] | None = None) -> int:
	parser = argparse.ArgumentParser(
		prog="sitemirror",
		description="Serves a content directory refreshed from a remote repository",
		formatter_class=argparse.ArgumentDefaultsHelpFormatter,
	)
	parser.add_argument(
		"command",
		nargs="?",
		choices=("serve", "refresh"),
		default="serve",
		help="Runs the server (refreshing the content in the background), or only refreshes the content",
	)
	parser.add_argument(
		"-p",
		"--port",
		action="store",
		dest="port",
		type=int,
		help="Specifies the port",
		default=config.PORT,
	)
	parser.add_argument(
		"-H",
		"--host",
		action="store",
		dest="host",
		help="Specifies the host to listen on",
		default=config.HOST,
	)
	parser.add_argument(
		"-r",
		"--root",
		action="store",
		dest="root",
		type=Path,
		help="The content directory",
		default=config.ROOT,
	)
	parser.add_argument(
		"--no-refresh",
		action="store_true",
		dest="noRefresh",
		help="Serves the content directory as is",
	)
	options = parser.parse_args(args=args)

	settings = Settings(root=options.root)
	# The log directory must exist before the file sink writes to it
	settings.logsPath.mkdir(parents=True, exist_ok=True)
	logger = configure(settings.logsPath, debug=config.DEBUG)
	sys.excepthook = excepthook(logger)

	refresher = Refresher(settings, logger=logger)
	try:
		if options.command == "refresh":
			result = asyncio.run(refresher.run())
			return 1 if result.status is RefreshStatus.Failed else 0
		try:
			run(
				FileService(
					settings.root, logger=logger, logRequests=config.LOG_REQUESTS
				),
				host=options.host,
				port=options.port,
				startup=() if options.noRefresh else (refresher.run,),
				logger=logger,
			)
		except BindError:
			# The error has been logged by the server
			return 1
		return 0
	finally:
		logger.close()


if __name__ == "__main__":
	sys.exit(main(sys.argv[1:]))

# EOF
