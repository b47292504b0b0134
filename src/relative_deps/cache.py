"""Persisted per-dependency cache records.

Each declared dependency owns one JSON record in the consumer's
``.relative-deps-cache`` directory holding the fingerprint composite and the
metadata snapshot from its last successful install. The two halves live in a
single file replaced by atomic rename, so a record is never half written.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Iterable, Optional

import portalocker
from pydantic import BaseModel, ValidationError

from .constants import CACHE_DIR, INSTALL_DIR, LOCK_SUFFIX, RECORD_SUFFIX
from .errors import CacheReadError, InvalidPackageNameError
from .metadata import ChangeMetadata
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 60


class CacheRecord(BaseModel):
    """Last known good state of one dependency."""

    fingerprint: str
    metadata: ChangeMetadata


def record_key(name: str) -> str:
    """Filesystem-safe key for a package name (``@scope/pkg`` -> ``@scope__pkg``)."""
    key = name.replace("/", "__").replace("\\", "__")
    if not key or key in (".", "..") or key.startswith("."):
        raise InvalidPackageNameError(name)
    return key


class CacheStore:
    """Cache records for one consuming project."""

    def __init__(self, target_dir: Path, cache_dir: Optional[Path] = None):
        """Initialize store.

        Args:
            target_dir: Consumer project root
            cache_dir: Override for the record directory
        """
        self.target_dir = Path(target_dir)
        self.cache_dir = Path(cache_dir) if cache_dir else self.target_dir / CACHE_DIR

    def record_path(self, name: str) -> Path:
        return self.cache_dir / f"{record_key(name)}{RECORD_SUFFIX}"

    def _lock_path(self, name: str) -> Path:
        return self.cache_dir / f"{record_key(name)}{LOCK_SUFFIX}"

    def read(self, name: str) -> Optional[CacheRecord]:
        """Load the record for ``name``.

        Returns:
            The record, or None if none was ever written

        Raises:
            CacheReadError: If the record exists but cannot be read or parsed
        """
        path = self.record_path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheReadError(f"Could not read cache record {path}: {e}")

        try:
            return CacheRecord.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            raise CacheReadError(f"Corrupt cache record {path}: {e}")

    def write(self, name: str, record: CacheRecord) -> None:
        """Atomically replace the record for ``name``."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        text = json.dumps(record.model_dump(by_alias=True), indent=2)

        # Serializes writers from concurrent relative-deps processes
        with portalocker.Lock(str(self._lock_path(name)), "w", timeout=LOCK_TIMEOUT):
            atomic_write_text(self.record_path(name), text)
        logger.debug("Wrote cache record for %s", name)

    def delete(self, name: str) -> bool:
        """Delete the record and lock file for ``name``.

        Returns True if a record existed.
        """
        self._lock_path(name).unlink(missing_ok=True)
        path = self.record_path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted cache record for %s", name)
        return True

    def clear(self, names: Iterable[str]) -> int:
        """Delete records for ``names`` and the consumer's node_modules/.cache.

        Returns:
            Number of records removed
        """
        removed = sum(1 for name in names if self.delete(name))

        install_cache = self.target_dir / INSTALL_DIR / ".cache"
        if install_cache.exists():
            shutil.rmtree(install_cache)
            logger.debug("Removed %s", install_cache)

        return removed
