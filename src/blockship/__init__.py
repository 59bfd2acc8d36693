"""Sequential block-log shipper: replicates numbered block files to S3 in order."""

__version__ = "0.1.0"

from blockship.constants import NO_BLOCK
from blockship.models import Backlog, ShipperConfig

__all__ = [
    "Backlog",
    "NO_BLOCK",
    "ShipperConfig",
    "__version__",
]
