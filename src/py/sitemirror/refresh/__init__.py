from .fetchers import ArchiveFetcher, GitFetcher, SourceFetcher, fetcherFor  # NOQA: F401
from .index import generateIndex  # NOQA: F401
from .pipeline import Refresher, RefreshResult, RefreshStatus  # NOQA: F401
from .sync import SyncStats, exclusion, syncTree  # NOQA: F401


# EOF
