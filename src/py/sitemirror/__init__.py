from .config import Settings  # NOQA: F401
from .model import Service  # NOQA: F401
from .refresh.pipeline import Refresher, RefreshResult, RefreshStatus  # NOQA: F401
from .server import run  # NOQA: F401
from .services.files import FileService  # NOQA: F401


# EOF
