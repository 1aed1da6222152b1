"""claimwatch: live claim detection and search-grounded fact checking."""

from claimwatch.app import ClaimWatchApp
from claimwatch.config import Settings, get_settings

__all__ = ["ClaimWatchApp", "Settings", "get_settings"]
