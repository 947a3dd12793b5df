import asyncio
import io
import json
import os
import subprocess  # nosec: B404
import tempfile
import zipfile
from pathlib import Path

from localhttp import LocalHTTP, Route

from sitemirror.config import ArchiveSource, GitSource, Settings
from sitemirror.errors import FetchError
from sitemirror.refresh import fetchers
from sitemirror.refresh.fetchers import (
	ArchiveFetcher,
	GitFetcher,
	checkArchive,
	extractArchive,
	fetcherFor,
	memberPath,
	treeRoot,
)
from sitemirror.refresh.pipeline import Refresher, RefreshStatus
from sitemirror.utils.logging import Logger, MemorySink
from sitemirror.utils.shell import ShellCommandError, mkdtemp, which

FILES: dict[str, str] = {
	"index.html": "<h1>TV</h1>",
	"README.md": "readme",
	"tvbox.txt": "tvbox",
	"foo/api.json": '{"sites": []}',
	"foo/README.md": "foo readme",
	"bar/data.txt": "bar",
}


def archive(files: dict[str, str], prefix: str = "repo-main/") -> bytes:
	"""Creates a zip archive like the ones of branches, with a single
	top-level folder."""
	data = io.BytesIO()
	with zipfile.ZipFile(data, "w") as z:
		if prefix:
			z.writestr(prefix, "")
		for name, content in files.items():
			z.writestr(f"{prefix}{name}", content)
	return data.getvalue()


def tree(root: Path) -> dict[str, str]:
	return {
		"/".join(p.relative_to(root).parts): p.read_text(encoding="utf8")
		for p in sorted(root.rglob("*"))
		if p.is_file()
	}


def settings(root: Path, **kwargs) -> Settings:
	return Settings(
		root=root,
		gitURL=None,
		archiveURL=None,
		proxy=None,
		domain="example.com",
	)._replace(**kwargs)


def corrupted(files: dict[str, str], name: str) -> bytes:
	"""Creates a deflated archive of `files` where the compressed data of
	`name` is damaged, the archive directory staying valid."""
	data = io.BytesIO()
	with zipfile.ZipFile(data, "w", zipfile.ZIP_DEFLATED) as z:
		for path, content in files.items():
			z.writestr(path, content)
	raw = bytearray(data.getvalue())
	with zipfile.ZipFile(io.BytesIO(bytes(raw))) as z:
		info = z.getinfo(name)
	# The local header is 30 bytes, followed by the name and extra field
	start = info.header_offset + 30 + len(info.filename.encode()) + len(info.extra)
	middle = start + info.compress_size // 2
	for i in range(middle, middle + 16):
		raw[i] ^= 0xFF
	return bytes(raw)


# -----------------------------------------------------------------------------
#
# FETCHERS
#
# -----------------------------------------------------------------------------


def test_member_path():
	assert str(memberPath("repo-main/foo/api.json")) == "repo-main/foo/api.json"
	assert str(memberPath("repo-main/")) == "repo-main"
	for name in ("/etc/passwd", "../x", "a/../../x", "C:\\x", "a\\..\\..\\x", "./"):
		try:
			memberPath(name)
		except FetchError:
			pass
		else:
			raise AssertionError(f"Unsafe member path accepted: {name}")


def test_extract_with_zipfile():
	with tempfile.TemporaryDirectory() as tmp:
		path = Path(tmp) / "archive.zip"
		path.write_bytes(archive(FILES))
		assert len(checkArchive(path)) == len(FILES) + 1
		extractArchive(path, Path(tmp) / "extract")
		root = treeRoot(Path(tmp) / "extract")
		assert root.name == "repo-main"
		assert tree(root) == FILES


def test_unsafe_archive():
	with tempfile.TemporaryDirectory() as tmp:
		path = Path(tmp) / "archive.zip"
		data = io.BytesIO()
		with zipfile.ZipFile(data, "w") as z:
			z.writestr("../evil.txt", "evil")
		path.write_bytes(data.getvalue())
		try:
			checkArchive(path)
		except FetchError:
			pass
		else:
			raise AssertionError("Traversal should be rejected")
		(Path(tmp) / "notazip.zip").write_bytes(b"<html>Not a zip</html>")
		try:
			checkArchive(Path(tmp) / "notazip.zip")
		except FetchError:
			pass
		else:
			raise AssertionError("Invalid archives should be rejected")


def test_tree_root():
	with tempfile.TemporaryDirectory() as tmp:
		base = Path(tmp)
		try:
			treeRoot(base)
		except FetchError:
			pass
		else:
			raise AssertionError("An empty extraction should fail")
		(base / "a").mkdir()
		# A single empty folder is an empty tree too
		try:
			treeRoot(base)
		except FetchError:
			pass
		else:
			raise AssertionError("An empty top-level folder should fail")
		(base / "a" / "index.html").write_text("a")
		assert treeRoot(base) == base / "a"
		(base / "b.txt").write_text("b")
		assert treeRoot(base) == base


def test_fetcher_for():
	git = fetcherFor(GitSource("https://example.com/tv.git", "dev"), proxy="http://p:3128")
	assert isinstance(git, GitFetcher)
	command = git.command(Path("/tmp/repo"))
	assert command[:5] == ["git", "-c", "http.proxy=http://p:3128", "-c", "https.proxy=http://p:3128"]
	assert "--depth=1" in command
	assert command[command.index("--branch") + 1] == "dev"
	assert command[-2:] == ["https://example.com/tv.git", "/tmp/repo"]
	assert GitFetcher("u").command(Path("r"))[1] == "clone"
	assert isinstance(fetcherFor(ArchiveSource("https://example.com/a.zip")), ArchiveFetcher)


def test_settings_source():
	assert settings(Path("p")).source() is None
	assert settings(Path("p"), archiveURL="https://a/z.zip").source() == ArchiveSource("https://a/z.zip")
	# Git wins when both are configured
	assert settings(Path("p"), gitURL="g", archiveURL="a", branch="b").source() == GitSource("g", "b")
	assert settings(Path("p")).logsPath == Path("p") / "logs"


def test_archive_fetcher_fallback():
	async def main():
		sink = MemorySink()
		original = fetchers.which
		# The unzip tool is reported as missing
		fetchers.which = lambda name: None
		try:
			async with LocalHTTP({"/a.zip": Route(body=archive(FILES))}) as http:
				with mkdtemp() as scratch:
					root = await ArchiveFetcher(
						http.url("/a.zip"), logger=Logger("test", [sink])
					).fetch(scratch)
					assert tree(root) == FILES
		finally:
			fetchers.which = original
		assert any("using zipfile" in _ for _ in sink.lines)

	asyncio.run(main())


def test_corrupted_archive():
	async def main():
		original = fetchers.which
		fetchers.which = lambda name: None
		try:
			files = {"repo-main/index.html": "<p>" + "tv " * 50_000 + "</p>"}
			async with LocalHTTP(
				{"/a.zip": Route(body=corrupted(files, "repo-main/index.html"))}
			) as http:
				with mkdtemp() as scratch:
					try:
						await ArchiveFetcher(
							http.url("/a.zip"), logger=Logger("test", [])
						).fetch(scratch)
					except FetchError as e:
						assert "Unable to extract archive" in str(e)
					else:
						raise AssertionError("Corrupted archives should fail")
		finally:
			fetchers.which = original

	asyncio.run(main())


def test_extraction_errors_are_fetch_errors():
	async def main():
		def encrypted(path, destination):
			raise RuntimeError("File is encrypted, password required for extraction")

		original = (fetchers.which, fetchers.extractArchive)
		fetchers.which = lambda name: None
		fetchers.extractArchive = encrypted
		try:
			with tempfile.TemporaryDirectory() as tmp:
				path = Path(tmp) / "archive.zip"
				path.write_bytes(archive(FILES))
				try:
					await ArchiveFetcher("http://unused", logger=Logger("test", [])).extract(
						path, Path(tmp) / "extract"
					)
				except FetchError as e:
					assert isinstance(e.__cause__, RuntimeError)
				else:
					raise AssertionError("Extraction errors should be fetch errors")
		finally:
			fetchers.which, fetchers.extractArchive = original

	asyncio.run(main())


def test_unzip_failure_fallback():
	async def main():
		sink = MemorySink()
		commands: list[list[str]] = []

		async def failing(command, *args, **kwargs):
			commands.append(command)
			# A partial extraction is left behind
			destination = Path(command[-1])
			(destination / "partial.txt").write_text("partial")
			raise ShellCommandError(command, 9, b"boom")

		original = (fetchers.which, fetchers.ashell)
		fetchers.which = lambda name: f"/usr/bin/{name}"
		fetchers.ashell = failing
		try:
			async with LocalHTTP({"/a.zip": Route(body=archive(FILES))}) as http:
				with mkdtemp() as scratch:
					root = await ArchiveFetcher(
						http.url("/a.zip"), logger=Logger("test", [sink])
					).fetch(scratch)
					assert tree(root) == FILES
					assert not (scratch / "extract" / "partial.txt").exists()
		finally:
			fetchers.which, fetchers.ashell = original
		assert commands and commands[0][0] == "unzip"
		assert any(
			"[ERROR] Extraction with unzip failed, using zipfile" in _ for _ in sink.lines
		)

	asyncio.run(main())


def test_git_fetcher():
	if not which("git"):
		return

	def git(*args: str, cwd: Path) -> None:
		subprocess.run(  # nosec: B603 B607
			[
				"git",
				"-c",
				"user.name=Test",
				"-c",
				"user.email=test@example.com",
				"-c",
				"commit.gpgsign=false",
				*args,
			],
			cwd=cwd,
			check=True,
			capture_output=True,
		)

	async def main(origin: Path):
		with mkdtemp() as scratch:
			root = await GitFetcher(
				origin.as_uri(), "main", logger=Logger("test", [])
			).fetch(scratch)
			assert tree(root) == FILES
		with mkdtemp() as scratch:
			try:
				await GitFetcher(
					(origin.parent / "missing").as_uri(), logger=Logger("test", [])
				).fetch(scratch)
			except FetchError:
				pass
			else:
				raise AssertionError("Cloning a missing repository should fail")

	with tempfile.TemporaryDirectory() as tmp:
		origin = Path(tmp) / "origin"
		origin.mkdir()
		git("init", "-q", cwd=origin)
		git("symbolic-ref", "HEAD", "refs/heads/main", cwd=origin)
		for name, content in FILES.items():
			(origin / name).parent.mkdir(parents=True, exist_ok=True)
			(origin / name).write_text(content, encoding="utf8")
		git("add", "-A", cwd=origin)
		git("commit", "-q", "-m", "Content", cwd=origin)
		asyncio.run(main(origin))


# -----------------------------------------------------------------------------
#
# REFRESHER
#
# -----------------------------------------------------------------------------


def test_refresh_skipped():
	with tempfile.TemporaryDirectory() as tmp:
		sink = MemorySink()
		root = Path(tmp) / "public"
		result = asyncio.run(Refresher(settings(root), logger=Logger("test", [sink])).run())
		assert result.status is RefreshStatus.Skipped
		assert "skipped" in sink.lines[0]
		assert not root.exists()


def test_refresh_archive():
	async def main(root: Path, sink: MemorySink):
		routes = {
			"/tv/archive/refs/heads/main.zip": Route(
				302, headers={"Location": "/codeload/main.zip"}
			),
			"/codeload/main.zip": Route(body=archive(FILES)),
		}
		async with LocalHTTP(routes) as http:
			refresher = Refresher(
				settings(root, archiveURL=http.url("/tv/archive/refs/heads/main.zip")),
				logger=Logger("test", [sink]),
			)
			first = await refresher.run()
			snapshot = tree(root)
			second = await refresher.run()
			return first, snapshot, second

	with tempfile.TemporaryDirectory() as tmp:
		root = Path(tmp) / "public"
		(root / "logs").mkdir(parents=True)
		(root / "logs" / "app_2024-01-01.log").write_text("previous log")
		(root / "stale.txt").write_text("stale")
		sink = MemorySink()
		first, snapshot, second = asyncio.run(main(root, sink))
		assert first.status is RefreshStatus.Updated
		assert [_.name for _ in first.entries] == ["foo"]
		assert json.loads((root / "tvtxt.txt").read_text()) == {
			"urls": [{"url": "https://example.com/foo/api.json", "name": "foo"}]
		}
		assert snapshot["logs/app_2024-01-01.log"] == "previous log"
		assert snapshot["foo/api.json"] == FILES["foo/api.json"]
		assert "README.md" not in snapshot
		assert "foo/README.md" not in snapshot
		assert "tvbox.txt" not in snapshot
		assert "stale.txt" not in snapshot
		# A second refresh from the same source yields the same tree
		assert second.status is RefreshStatus.Updated
		assert tree(root) == snapshot
		assert not any("[ERROR]" in _ for _ in sink.lines)


def test_refresh_failure_keeps_content():
	async def main(root: Path, sink: MemorySink):
		async with LocalHTTP({}) as http:
			return await Refresher(
				settings(root, archiveURL=http.url("/missing.zip")),
				logger=Logger("test", [sink]),
			).run()

	with tempfile.TemporaryDirectory() as tmp:
		root = Path(tmp) / "public"
		root.mkdir()
		(root / "index.html").write_text("existing")
		sink = MemorySink()
		result = asyncio.run(main(root, sink))
		assert result.status is RefreshStatus.Failed
		assert result.error is not None
		assert (root / "index.html").read_text() == "existing"
		assert any("[ERROR] Refresh failed" in _ for _ in sink.lines)


def test_refresh_empty_archive_keeps_content():
	async def main(root: Path, sink: MemorySink):
		async with LocalHTTP({"/empty.zip": Route(body=archive({}))}) as http:
			return await Refresher(
				settings(root, archiveURL=http.url("/empty.zip")),
				logger=Logger("test", [sink]),
			).run()

	with tempfile.TemporaryDirectory() as tmp:
		root = Path(tmp) / "public"
		root.mkdir()
		(root / "index.html").write_text("existing")
		sink = MemorySink()
		result = asyncio.run(main(root, sink))
		assert result.status is RefreshStatus.Failed
		assert isinstance(result.error, FetchError)
		assert (root / "index.html").read_text() == "existing"
		assert not (root / "tvtxt.txt").exists()


def test_refresh_corrupted_archive_fails():
	async def main(root: Path, sink: MemorySink):
		files = {"repo-main/index.html": "<p>" + "tv " * 50_000 + "</p>"}
		routes = {"/bad.zip": Route(body=corrupted(files, "repo-main/index.html"))}
		original = fetchers.which
		fetchers.which = lambda name: None
		try:
			async with LocalHTTP(routes) as http:
				return await Refresher(
					settings(root, archiveURL=http.url("/bad.zip")),
					logger=Logger("test", [sink]),
				).run()
		finally:
			fetchers.which = original

	with tempfile.TemporaryDirectory() as tmp:
		root = Path(tmp) / "public"
		root.mkdir()
		(root / "index.html").write_text("existing")
		sink = MemorySink()
		result = asyncio.run(main(root, sink))
		assert result.status is RefreshStatus.Failed
		assert isinstance(result.error, FetchError)
		assert (root / "index.html").read_text() == "existing"
		assert any("[ERROR] Refresh failed" in _ for _ in sink.lines)


def test_scratch_cleanup():
	with tempfile.TemporaryDirectory() as tmp:
		try:
			with mkdtemp(dir=tmp) as scratch:
				(scratch / "file").write_text("x")
				raise RuntimeError("interrupted")
		except RuntimeError:
			pass
		assert os.listdir(tmp) == []


def test_async_scratch_cleanup():
	async def main(tmp: str):
		try:
			async with mkdtemp(dir=tmp) as scratch:
				(scratch / "nested").mkdir()
				(scratch / "nested" / "file").write_text("x")
				raise RuntimeError("interrupted")
		except RuntimeError:
			pass

	with tempfile.TemporaryDirectory() as tmp:
		asyncio.run(main(tmp))
		assert os.listdir(tmp) == []


if __name__ == "__main__":
	for name, test in list(globals().items()):
		if name.startswith("test_"):
			test()
	print("OK")

# EOF
