import asyncio
import time
from enum import Enum
from pathlib import Path
from typing import NamedTuple

from ..config import Settings
from ..errors import DownloadError, FetchError
from ..utils.logging import Logger, logger as defaultLogger
from ..utils.shell import ShellCommandError, mkdtemp
from .fetchers import SourceFetcher, fetcherFor
from .index import IndexEntry, generateIndex
from .sync import SyncStats, exclusion, syncTree

# -----------------------------------------------------------------------------
#
# CONTENT REFRESHER
#
# -----------------------------------------------------------------------------


class RefreshStatus(Enum):
	Skipped = "skipped"
	Updated = "updated"
	Failed = "failed"


class RefreshResult(NamedTuple):
	status: RefreshStatus
	stats: SyncStats | None = None
	entries: tuple[IndexEntry, ...] = ()
	error: BaseException | None = None
	duration: float = 0.0


class Refresher:
	"""Repopulates the content directory from the configured remote
	source. A refresh never raises for the errors it expects: they are
	logged and reported as a `Failed` result, leaving the existing content
	in place (the sync is not atomic, so a failure during the copy may
	leave it partially updated)."""

	def __init__(self, settings: Settings | None = None, *, logger: Logger | None = None):
		self.settings: Settings = settings or Settings()
		self.logger: Logger = logger or defaultLogger()

	def fetcher(self) -> SourceFetcher | None:
		source = self.settings.source()
		return (
			fetcherFor(source, proxy=self.settings.proxy, logger=self.logger)
			if source
			else None
		)

	def update(self, tree: Path) -> tuple[SyncStats, list[IndexEntry]]:
		"""Copies the fetched tree over the content directory and writes the
		index, this does blocking filesystem work."""
		s = self.settings
		stats = syncTree(
			tree,
			s.root,
			exclusion(s.exclude, protected=(s.logs, s.index)),
			logger=self.logger,
		)
		entries = generateIndex(
			s.root, s.domain, s.manifest, s.index, skip=(s.logs,)
		)
		return stats, entries

	async def run(self) -> RefreshResult:
		started = time.monotonic()
		fetcher = self.fetcher()
		if not fetcher:
			self.logger.info("No remote source configured, refresh skipped")
			return RefreshResult(RefreshStatus.Skipped)
		root = self.settings.root
		try:
			await asyncio.to_thread(root.mkdir, parents=True, exist_ok=True)
			async with mkdtemp() as scratch:
				tree = await fetcher.fetch(scratch)
				stats, entries = await asyncio.to_thread(self.update, tree)
		except (FetchError, DownloadError, ShellCommandError, OSError) as e:
			self.logger.error(
				f"Refresh failed: {e}",
				Error=e.__class__.__name__,
				Root=str(root),
			)
			return RefreshResult(
				RefreshStatus.Failed, error=e, duration=time.monotonic() - started
			)
		duration = time.monotonic() - started
		self.logger.info(
			f"Content updated in {root}",
			Copied=stats.copied,
			Skipped=stats.skipped,
			Removed=stats.removed,
			Entries=len(entries),
			Duration=round(duration, 3),
		)
		return RefreshResult(
			RefreshStatus.Updated, stats, tuple(entries), duration=duration
		)


# EOF
