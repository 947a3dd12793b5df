import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import ContextManager

from ..errors import SitemirrorError

# --
# # Shell Utils
#
# A collection of functions that make it easier to work and interact with the
# shell.


class ShellCommandError(SitemirrorError):
	"""Wrapper for a shell command error."""

	def __init__(self, command: list[str], status: int, error: bytes):
		super().__init__(
			f"'{' '.join(command)}' failed with status {status}: {error.decode('utf8', 'replace').strip()}"
		)
		self.command = command
		self.status = status
		self.error = error


class mkdtemp(ContextManager):
	"""Creates a scratch directory that is removed on exit, whatever
	happened within the context."""

	def __init__(self, prefix: str = "sitemirror-", dir: Path | str | None = None):
		super().__init__()
		self.path = Path(tempfile.mkdtemp(prefix=prefix, dir=dir))

	def cleanup(self) -> None:
		if self.path and self.path.exists():
			shutil.rmtree(self.path, ignore_errors=True)

	def __enter__(self) -> Path:
		return self.path

	def __exit__(self, type, value, traceback):
		self.cleanup()

	# The async form removes the directory in a worker thread
	async def __aenter__(self) -> Path:
		return self.path

	async def __aexit__(self, type, value, traceback):
		await asyncio.to_thread(self.cleanup)


def which(name: str) -> str | None:
	"""Returns the path to the given executable, if available."""
	return shutil.which(name)


async def ashell(
	command: list[str],
	cwd: Path | str | None = None,
	env: dict[str, str] | None = None,
) -> bytes:
	"""Runs a command without blocking the event loop, returns its stdout
	or raises a `ShellCommandError` on a non-zero exit."""
	process = await asyncio.create_subprocess_exec(  # nosec: B603
		*command,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
		cwd=os.fspath(cwd) if cwd else None,
		env=env,
	)
	stdout, stderr = await process.communicate()
	if process.returncode == 0:
		return stdout
	else:
		raise ShellCommandError(command, process.returncode or -1, stderr)


# EOF
