from pathlib import Path
from typing import NamedTuple

from ..utils.json import json


class IndexEntry(NamedTuple):
	url: str
	name: str


def generateIndex(
	root: Path,
	domain: str,
	manifest: str = "api.json",
	name: str = "tvtxt.txt",
	*,
	skip: tuple[str, ...] = ("logs",),
) -> list[IndexEntry]:
	"""Writes the index document listing the top-level folders of `root`
	that hold a `manifest`, as `{"urls": [{"url": …, "name": …}]}`."""
	entries: list[IndexEntry] = [
		IndexEntry(f"https://{domain}/{_.name}/{manifest}", _.name)
		for _ in sorted(root.iterdir(), key=lambda _: _.name)
		if _.name not in skip and _.is_dir() and (_ / manifest).is_file()
	]
	(root / name).write_bytes(json({"urls": entries}, indent=2))
	return entries


# EOF
