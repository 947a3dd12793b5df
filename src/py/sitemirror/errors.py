# --
# # Errors
#
# Errors raised by the refresh pipeline. They are all contained within the
# pipeline: a refresh that fails leaves the content directory as it was.


class SitemirrorError(Exception):
	"""Base class for the errors raised by sitemirror."""


class FetchError(SitemirrorError):
	"""The source tree could not be acquired (clone, extraction)."""


class DownloadError(SitemirrorError):
	"""An HTTP download failed."""

	def __init__(self, message: str, url: str, status: int | None = None):
		super().__init__(message)
		self.url: str = url
		self.status: int | None = status


# EOF
