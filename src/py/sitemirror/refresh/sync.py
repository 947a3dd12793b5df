import os
import shutil
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, NamedTuple

from ..utils.logging import Logger, logger as defaultLogger

# --
# # Tree synchronization
#
# Copies a source tree over a target directory. An exclusion predicate,
# given the path relative to the tree roots, tells which entries must be
# left alone: excluded source entries are not copied, excluded target
# entries are neither overwritten nor removed.

TExclude = Callable[[PurePosixPath, bool], bool]


class SyncStats(NamedTuple):
	copied: int = 0
	skipped: int = 0
	removed: int = 0


def exclusion(names: Iterable[str], protected: Iterable[str] = ()) -> TExclude:
	"""Returns an exclusion predicate taking `(relative_path, is_dir)`.
	Files whose name is in `names` are excluded at any depth, and any
	entry under a `protected` top-level name is excluded."""
	excluded_names: frozenset[str] = frozenset(names)
	protected_names: frozenset[str] = frozenset(protected)

	def predicate(path: PurePosixPath, isDir: bool) -> bool:
		if path.parts and path.parts[0] in protected_names:
			return True
		return not isDir and path.name in excluded_names

	return predicate


def remove(path: Path) -> None:
	if path.is_dir() and not path.is_symlink():
		shutil.rmtree(path)
	else:
		path.unlink()


def syncTree(
	source: Path,
	target: Path,
	exclude: TExclude,
	*,
	prune: bool = True,
	logger: Logger | None = None,
) -> SyncStats:
	"""Copies the contents of `source` into `target`, creating directories
	and overwriting files. When `prune` is set, target entries that are not
	in the source are removed (unless excluded), so that the target mirrors
	the source."""
	logger = logger or defaultLogger()
	copied: int = 0
	skipped: int = 0
	removed: int = 0
	target.mkdir(parents=True, exist_ok=True)
	# Iterative walk over the relative paths of the source directories
	pending: list[PurePosixPath] = [PurePosixPath()]
	while pending:
		rel_dir = pending.pop()
		src_dir = source.joinpath(*rel_dir.parts)
		dst_dir = target.joinpath(*rel_dir.parts)
		names: set[str] = set()
		for entry in sorted(os.scandir(src_dir), key=lambda _: _.name):
			rel = rel_dir / entry.name
			is_dir = entry.is_dir(follow_symlinks=False)
			if exclude(rel, is_dir):
				skipped += 1
				logger.debug("Skipping excluded entry", Path=str(rel))
				continue
			names.add(entry.name)
			dst = dst_dir / entry.name
			if is_dir:
				if (dst.exists() or dst.is_symlink()) and not (
					dst.is_dir() and not dst.is_symlink()
				):
					remove(dst)
				dst.mkdir(exist_ok=True)
				pending.append(rel)
			elif entry.is_file(follow_symlinks=False):
				if dst.is_dir() and not dst.is_symlink():
					shutil.rmtree(dst)
				elif dst.is_symlink():
					dst.unlink()
				shutil.copyfile(entry.path, dst)
				shutil.copymode(entry.path, dst)
				copied += 1
			else:
				# Symlinks and special files from a remote tree are not trusted
				skipped += 1
				logger.debug("Skipping non-regular entry", Path=str(rel))
		if prune:
			for existing in sorted(os.listdir(dst_dir)):
				rel = rel_dir / existing
				path = dst_dir / existing
				if existing in names or exclude(rel, path.is_dir()):
					continue
				remove(path)
				removed += 1
	return SyncStats(copied, skipped, removed)


# EOF
