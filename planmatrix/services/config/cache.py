"""
Configuration Cache

Local file persistence of the last-known-good plans matrix for offline
operation. A single JSON file, replaced wholesale on every write.
"""

import json
import os
import tempfile
from pathlib import Path

from planmatrix.common.config import (
    DEFAULT_CONFIG_DOCUMENT,
    ConfigDocument,
    dump_config_document,
    load_config_document,
)
from planmatrix.common.exceptions import DocumentDecodeError, StoreError
from planmatrix.common.logging_setup import get_service_logger

logger = get_service_logger("config.cache")


class ConfigCache:
    """
    Persisted ConfigDocument store.

    Writes go to a temp file that is fsync'd and renamed over the cache
    file, so readers only ever see a complete document. Methods are
    blocking; async callers run them in a worker thread.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        """True if a cache file has been written"""
        return self.path.exists()

    def save(self, document: ConfigDocument) -> None:
        """
        Replace the cached document.

        Raises:
            StoreError: the file could not be written
        """
        temp_path = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Unique temp file per write; concurrent writers never share one
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.stem}-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(dump_config_document(document), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            logger.error(f"Failed to save config cache: {e}", exc_info=True)
            raise StoreError(str(e), path=str(self.path)) from e

        logger.info(
            f"Config saved to cache (version: {document.version})",
            extra={"version": document.version, "path": str(self.path)},
        )

    def load(self) -> ConfigDocument | None:
        """
        Load configuration from cache.

        Returns:
            Cached document, or None if missing or unreadable
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return load_config_document(json.load(f))
        except (json.JSONDecodeError, UnicodeDecodeError, DocumentDecodeError, IOError) as e:
            logger.error(f"Error loading cached config: {e}")
            return None

    def read(self) -> ConfigDocument:
        """Cached document, or the built-in default"""
        document = self.load()
        if document is None:
            return DEFAULT_CONFIG_DOCUMENT
        return document

    def clear(self) -> None:
        """Remove the cached document"""
        self.path.unlink(missing_ok=True)
        logger.info("Config cache cleared")
