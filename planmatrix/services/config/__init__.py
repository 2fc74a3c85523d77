"""
Config Service - Plans Matrix Management

Responsibilities:
- Fetch the plans matrix from the remote endpoint
- Maintain a local cache for offline operation
- Fall back to cached or built-in configuration when the fetch fails

The long-running host lives in .service and is imported from there
directly; it depends on the access layer.
"""

from .cache import ConfigCache
from .repository import ConfigRepository
from .sync import ConfigSync

__all__ = ["ConfigCache", "ConfigRepository", "ConfigSync"]
