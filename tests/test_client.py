import asyncio
import tempfile
from pathlib import Path

from localhttp import LocalHTTP, Route

from sitemirror.client import ConnectionTarget, HTTPClient, download
from sitemirror.errors import DownloadError
from sitemirror.http.model import HTTPHeaders, HTTPResponseLine
from sitemirror.utils.logging import Logger, MemorySink

PAYLOAD: bytes = b"PK" + bytes(range(256)) * 40


def test_connection_target():
	target = ConnectionTarget.Make("github.com", proxy="http://proxy.local:3128")
	assert target.host.port == 443
	assert target.ssl
	assert target.proxy and target.proxy.name == "proxy.local"
	assert target.proxy.port == 3128
	assert ConnectionTarget.Make("h", ssl=False).host.port == 80
	assert ConnectionTarget.Make("h", proxy="proxy:8080").proxy.port == 8080


def test_request_atoms():
	async def main():
		async with LocalHTTP({"/chunked": Route(body=PAYLOAD, chunked=True)}) as http:
			atoms = [
				_
				async for _ in HTTPClient.Request(
					"GET", "127.0.0.1", "/chunked", port=http.port, ssl=False
				)
			]
		assert isinstance(atoms[0], HTTPResponseLine)
		assert atoms[0].status == 200
		assert isinstance(atoms[1], HTTPHeaders)
		assert b"".join(atoms[2:]) == PAYLOAD

	asyncio.run(main())


def test_download():
	async def main():
		routes = {
			"/length": Route(body=PAYLOAD),
			"/chunked": Route(body=PAYLOAD, chunked=True),
			"/delimited": Route(body=PAYLOAD, delimited=True),
		}
		async with LocalHTTP(routes) as http:
			with tempfile.TemporaryDirectory() as tmp:
				for name in routes:
					path = Path(tmp) / f"{name[1:]}.zip"
					final = await download(http.url(name), path, logger=Logger("test", []))
					assert final == http.url(name)
					assert path.read_bytes() == PAYLOAD, f"Body mismatch for {name}"

	asyncio.run(main())


def test_redirects():
	async def main():
		routes = {
			"/start": Route(302, headers={"Location": "/middle?step=2"}),
			"/middle?step=2": Route(301, headers={"Location": "PLACEHOLDER"}),
			"/archive.zip": Route(body=PAYLOAD),
		}
		async with LocalHTTP(routes) as http:
			# Absolute redirects are supported as well as relative ones
			routes["/middle?step=2"] = Route(
				301, headers={"Location": http.url("/archive.zip")}
			)
			sink = MemorySink()
			with tempfile.TemporaryDirectory() as tmp:
				path = Path(tmp) / "archive.zip"
				final = await download(
					http.url("/start"), path, logger=Logger("test", [sink])
				)
				assert final == http.url("/archive.zip")
				assert path.read_bytes() == PAYLOAD
			assert http.requests == ["/start", "/middle?step=2", "/archive.zip"]
			assert len(sink.entries) == 2

	asyncio.run(main())


def test_redirect_loop():
	async def main():
		routes = {
			"/a": Route(302, headers={"Location": "/b"}),
			"/b": Route(302, headers={"Location": "/a"}),
		}
		async with LocalHTTP(routes) as http:
			with tempfile.TemporaryDirectory() as tmp:
				try:
					await download(http.url("/a"), Path(tmp) / "a", logger=Logger("test", []))
				except DownloadError as e:
					assert "loop" in str(e)
				else:
					raise AssertionError("A redirect loop should fail")

	asyncio.run(main())


def test_too_many_redirects():
	async def main():
		routes = {f"/{i}": Route(302, headers={"Location": f"/{i + 1}"}) for i in range(5)}
		async with LocalHTTP(routes) as http:
			with tempfile.TemporaryDirectory() as tmp:
				try:
					await download(
						http.url("/0"), Path(tmp) / "a", redirects=2, logger=Logger("test", [])
					)
				except DownloadError as e:
					assert "Too many redirects" in str(e)
				else:
					raise AssertionError("Redirects should be bounded")

	asyncio.run(main())


def test_errors():
	async def main():
		async with LocalHTTP({"/gone": Route(410, b"Gone")}) as http:
			with tempfile.TemporaryDirectory() as tmp:
				for url, status in [
					(http.url("/gone"), 410),
					(http.url("/missing"), 404),
					("ftp://example.com/archive.zip", None),
				]:
					try:
						await download(url, Path(tmp) / "a", logger=Logger("test", []))
					except DownloadError as e:
						assert e.status == status
						assert e.url == url
					else:
						raise AssertionError(f"Download should have failed: {url}")
			port = http.port
		# The server is now closed, the connection is refused
		with tempfile.TemporaryDirectory() as tmp:
			try:
				await download(
					f"http://127.0.0.1:{port}/a", Path(tmp) / "a", logger=Logger("test", [])
				)
			except DownloadError as e:
				assert isinstance(e.__cause__, OSError)
			else:
				raise AssertionError("Download should have failed")

	asyncio.run(main())


def test_plain_proxy():
	async def main():
		async with LocalHTTP({}) as http:
			# The proxy receives requests in absolute form
			http.routes["http://origin.test:80/archive.zip"] = Route(body=PAYLOAD)
			with tempfile.TemporaryDirectory() as tmp:
				path = Path(tmp) / "a"
				await download(
					"http://origin.test/archive.zip",
					path,
					proxy=http.url(""),
					logger=Logger("test", []),
				)
				assert path.read_bytes() == PAYLOAD

	asyncio.run(main())


if __name__ == "__main__":
	for name, test in list(globals().items()):
		if name.startswith("test_"):
			test()
	print("OK")

# EOF
