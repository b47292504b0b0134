"""Decides whether a local dependency needs to be rebuilt.

Detection runs in two phases:

1. Quick check: compare the stored metadata snapshot (version, dependency
   hash, mtime of important files) with the current one. Any difference is
   a definite CHANGED.
2. Full check: the content fingerprint is always computed, because it has to
   be persisted after a rebuild. When the quick check found nothing, the
   fingerprint comparison is authoritative.

Any problem with the stored record degrades to CHANGED; corrupt cache state
must never block a rebuild.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .cache import CacheRecord, CacheStore
from .errors import RelativeDepsError
from .hashing import Fingerprint, compute_fingerprint
from .metadata import ChangeMetadata, create_change_metadata

logger = logging.getLogger(__name__)

REASON_NO_RECORD = "no record"
REASON_VERSION = "version changed"
REASON_DEPENDENCIES = "dependencies/build config changed"
REASON_MODIFIED = "important files modified"
REASON_CONTENT = "content changed"
REASON_METADATA_ERROR = "error reading metadata"
REASON_UNCHANGED = "no changes detected"


@dataclass(frozen=True)
class QuickCheckResult:
    """Outcome of the metadata fast path."""

    has_changes: bool
    reason: Optional[str] = None
    record: Optional[CacheRecord] = None
    metadata: Optional[ChangeMetadata] = None


@dataclass(frozen=True)
class ChangeResult:
    """Verdict for one dependency plus the state to persist on success."""

    changed: bool
    reason: str
    fingerprint: Fingerprint
    metadata: Optional[ChangeMetadata] = None

    def to_record(self) -> Optional[CacheRecord]:
        """Cache record for this state, or None if metadata is unavailable."""
        if self.metadata is None:
            return None
        return CacheRecord(fingerprint=self.fingerprint.composite, metadata=self.metadata)


class ChangeDetector:
    """Compares a library's current state with its cached record."""

    def __init__(self, store: CacheStore, target_dir: Path, extra_ignore: Iterable[str] = ()):
        """
        Args:
            store: Cache records of the consuming project
            target_dir: Consumer project root (excluded from fingerprints)
            extra_ignore: Additional ignore patterns for fingerprinting
        """
        self.store = store
        self.target_dir = Path(target_dir)
        self.extra_ignore = list(extra_ignore)

    def quick_check(self, name: str, lib_dir: Path) -> QuickCheckResult:
        """Compare stored and current metadata snapshots.

        ``has_changes=False`` is inconclusive, not a verdict.
        """
        try:
            record = self.store.read(name)
        except RelativeDepsError as e:
            logger.debug("Error reading cache record for %s, falling back to full check: %s", name, e)
            return QuickCheckResult(True, REASON_METADATA_ERROR, metadata=self._current_metadata(lib_dir))

        try:
            current = create_change_metadata(lib_dir)
        except RelativeDepsError as e:
            logger.debug("Error reading metadata for %s: %s", name, e)
            return QuickCheckResult(True, REASON_METADATA_ERROR, record=record)

        if record is None:
            return QuickCheckResult(True, REASON_NO_RECORD, metadata=current)

        saved = record.metadata
        if saved.package_version != current.package_version:
            reason = f"{REASON_VERSION}: {saved.package_version} → {current.package_version}"
            return QuickCheckResult(True, reason, record, current)

        if saved.dependency_hash != current.dependency_hash:
            return QuickCheckResult(True, REASON_DEPENDENCIES, record, current)

        if current.last_modified > saved.last_modified:
            return QuickCheckResult(True, REASON_MODIFIED, record, current)

        return QuickCheckResult(False, record=record, metadata=current)

    def _current_metadata(self, lib_dir: Path) -> Optional[ChangeMetadata]:
        try:
            return create_change_metadata(lib_dir)
        except RelativeDepsError:
            return None

    def fingerprint(self, lib_dir: Path) -> Fingerprint:
        return compute_fingerprint(lib_dir, self.target_dir, self.extra_ignore)

    def detect(self, name: str, lib_dir: Path) -> ChangeResult:
        """Decide whether ``name`` changed since its last successful install."""
        lib_dir = Path(lib_dir)
        quick = self.quick_check(name, lib_dir)
        fingerprint = self.fingerprint(lib_dir)

        if fingerprint.unreadable:
            logger.debug(
                "Unreadable files in %s: %s%s",
                name,
                ", ".join(fingerprint.unreadable[:5]),
                f" ... and {len(fingerprint.unreadable) - 5} more" if len(fingerprint.unreadable) > 5 else "",
            )

        if quick.has_changes:
            logger.debug("Quick check detected changes for %s: %s", name, quick.reason)
            return ChangeResult(True, quick.reason or REASON_NO_RECORD, fingerprint, quick.metadata)

        # Quick check was inconclusive; the full fingerprint decides
        if quick.record is not None and fingerprint.composite == quick.record.fingerprint:
            logger.debug("No changes detected for %s", name)
            return ChangeResult(False, REASON_UNCHANGED, fingerprint, quick.metadata)

        logger.debug("Content changed for %s", name)
        return ChangeResult(True, REASON_CONTENT, fingerprint, quick.metadata)
