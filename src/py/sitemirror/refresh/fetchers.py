import asyncio
import os
import shutil
import zipfile
import zlib
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from mypy_extensions import mypyc_attr

from ..client import download
from ..config import ArchiveSource, GitSource, TSource
from ..errors import FetchError
from ..utils.logging import Logger, logger as defaultLogger
from ..utils.shell import ShellCommandError, ashell, which

# --
# # Source fetchers
#
# A fetcher acquires the remote source tree into a scratch directory and
# returns the root of that tree. The scratch directory is owned (and removed)
# by the caller.


@mypyc_attr(allow_interpreted_subclasses=True)
class SourceFetcher(ABC):
	def __init__(self, *, proxy: str | None = None, logger: Logger | None = None):
		self.proxy: str | None = proxy
		self.logger: Logger = logger or defaultLogger()

	@abstractmethod
	async def fetch(self, scratch: Path) -> Path:
		"""Fetches the source tree within `scratch`, returning its root."""


# -----------------------------------------------------------------------------
#
# GIT
#
# -----------------------------------------------------------------------------


class GitFetcher(SourceFetcher):
	"""Fetches a branch with a shallow `git clone`."""

	def __init__(
		self,
		url: str,
		branch: str = "main",
		*,
		proxy: str | None = None,
		logger: Logger | None = None,
	):
		super().__init__(proxy=proxy, logger=logger)
		self.url: str = url
		self.branch: str = branch

	def command(self, path: Path) -> list[str]:
		proxy: list[str] = (
			["-c", f"http.proxy={self.proxy}", "-c", f"https.proxy={self.proxy}"]
			if self.proxy
			else []
		)
		return [
			"git",
			*proxy,
			"clone",
			"--depth=1",
			"--branch",
			self.branch,
			"--single-branch",
			"--quiet",
			self.url,
			str(path),
		]

	async def fetch(self, scratch: Path) -> Path:
		if not which("git"):
			raise FetchError("Git is not available, cannot clone the repository")
		path = scratch / "repo"
		self.logger.info(f"Cloning {self.url}", Branch=self.branch)
		# Git must not prompt for credentials
		env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
		try:
			await ashell(self.command(path), env=env)
		except ShellCommandError as e:
			raise FetchError(f"Unable to clone {self.url}: {e}") from e
		# The repository metadata is not part of the content
		await asyncio.to_thread(shutil.rmtree, path / ".git", True)
		if not await asyncio.to_thread(os.listdir, path):
			raise FetchError(f"The branch {self.branch} of {self.url} is empty")
		return path


# -----------------------------------------------------------------------------
#
# ARCHIVE
#
# -----------------------------------------------------------------------------


def memberPath(name: str) -> PurePosixPath:
	"""Validates the name of an archive member, rejecting absolute paths
	and paths with `..` that would be extracted outside of the target."""
	normalized = name.replace("\\", "/").rstrip("/")
	relative = PurePosixPath(normalized)
	if relative.is_absolute() or normalized[1:3] == ":/":
		raise FetchError(f"Unsafe absolute path in archive: {name}")
	if not relative.parts:
		raise FetchError(f"Empty path in archive: {name!r}")
	if any(_ in ("", ".", "..") for _ in relative.parts):
		raise FetchError(f"Unsafe path in archive: {name}")
	return relative


def checkArchive(path: Path) -> list[PurePosixPath]:
	"""Lists and validates the members of the given zip archive."""
	try:
		with zipfile.ZipFile(path) as archive:
			return [memberPath(_) for _ in archive.namelist()]
	except zipfile.BadZipFile as e:
		raise FetchError(f"Invalid archive: {e}") from e


# Raised by `zipfile` on corrupted data, encrypted members and unsupported
# compressions
EXTRACT_ERRORS: tuple[type[Exception], ...] = (
	zipfile.BadZipFile,
	zlib.error,
	RuntimeError,
	NotImplementedError,
	EOFError,
)


def extractArchive(path: Path, destination: Path) -> None:
	"""Extracts the zip archive at `path` in `destination`, in pure Python."""
	with zipfile.ZipFile(path) as archive:
		for info in archive.infolist():
			target = destination.joinpath(*memberPath(info.filename).parts)
			if info.is_dir():
				target.mkdir(parents=True, exist_ok=True)
			else:
				target.parent.mkdir(parents=True, exist_ok=True)
				with archive.open(info) as src, open(target, "wb") as dst:
					shutil.copyfileobj(src, dst)


def treeRoot(path: Path) -> Path:
	"""Returns the root of the extracted tree: archives of branches hold a
	single `<repo>-<branch>` folder, which is then the root. An empty root
	is an error, as it would empty the content directory."""
	entries = list(path.iterdir())
	if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
		path = entries[0]
		entries = list(path.iterdir())
	if not entries:
		raise FetchError("The archive extracted to an empty tree")
	return path


class ArchiveFetcher(SourceFetcher):
	"""Downloads a zip archive of the source tree and extracts it."""

	def __init__(
		self,
		url: str,
		*,
		proxy: str | None = None,
		logger: Logger | None = None,
		timeout: float = 60.0,
	):
		super().__init__(proxy=proxy, logger=logger)
		self.url: str = url
		self.timeout: float = timeout

	async def extract(self, archive: Path, destination: Path) -> None:
		await asyncio.to_thread(checkArchive, archive)
		destination.mkdir(parents=True, exist_ok=True)
		if which("unzip"):
			try:
				await ashell(["unzip", "-q", "-o", str(archive), "-d", str(destination)])
				return
			except ShellCommandError as e:
				self.logger.error("Extraction with unzip failed, using zipfile", Reason=str(e))
				# The partial extraction is discarded before retrying
				await asyncio.to_thread(shutil.rmtree, destination, True)
				destination.mkdir(parents=True, exist_ok=True)
		else:
			self.logger.info("The unzip tool is not available, using zipfile")
		try:
			await asyncio.to_thread(extractArchive, archive, destination)
		except EXTRACT_ERRORS as e:
			raise FetchError(f"Unable to extract archive: {e}") from e

	async def fetch(self, scratch: Path) -> Path:
		archive = scratch / "archive.zip"
		self.logger.info(f"Downloading {self.url}")
		final = await download(
			self.url,
			archive,
			proxy=self.proxy,
			timeout=self.timeout,
			logger=self.logger,
		)
		self.logger.info(
			"Download complete", URL=final, Size=(await asyncio.to_thread(archive.stat)).st_size
		)
		destination = scratch / "extract"
		await self.extract(archive, destination)
		return await asyncio.to_thread(treeRoot, destination)


def fetcherFor(
	source: TSource, *, proxy: str | None = None, logger: Logger | None = None
) -> SourceFetcher:
	"""Returns the fetcher for the given source descriptor."""
	if isinstance(source, GitSource):
		return GitFetcher(source.url, source.branch, proxy=proxy, logger=logger)
	elif isinstance(source, ArchiveSource):
		return ArchiveFetcher(source.url, proxy=proxy, logger=logger)
	else:
		raise ValueError(f"Unsupported source: {source}")


# EOF
