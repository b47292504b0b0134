"""Content fingerprinting for library source trees.

A fingerprint is the sorted list of (relative path, file digest) pairs for
every non-ignored file in a library, rendered as one composite string of
``"<digest> <path>"`` lines. Two fingerprints are equal iff their composite
strings are byte-identical.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .ignore import IgnoreSpec

logger = logging.getLogger(__name__)

# Stands in for the digest of a file that could not be read
UNREADABLE_MARKER = "ERROR"


def compute_file_digest(path: Path) -> str:
    """Compute SHA256 hash of file contents.

    Args:
        path: Path to file to hash

    Returns:
        SHA256 digest in format "sha256:xxxx"
    """
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return f"sha256:{sha256.hexdigest()}"


@dataclass(frozen=True)
class Fingerprint:
    """Per-file digests of a library tree, sorted by path."""

    entries: Tuple[Tuple[str, str], ...] = ()
    unreadable: Tuple[str, ...] = ()

    @property
    def composite(self) -> str:
        """Composite string used for equality and persisted in the cache."""
        return "\n".join(f"{digest} {path}" for path, digest in self.entries)

    @property
    def paths(self) -> List[str]:
        return [path for path, _ in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


def nested_target_pattern(lib_dir: Path, target_dir: Optional[Path]) -> Optional[str]:
    """Ignore pattern for a consumer directory that lives inside the library.

    Only the top-level folder of the relative target is excluded, which is
    enough to keep the library from fingerprinting its own installed output.
    """
    if target_dir is None:
        return None
    lib = lib_dir.resolve()
    target = target_dir.resolve()
    try:
        relative = target.relative_to(lib)
    except ValueError:
        return None
    if not relative.parts:
        return None
    return f"/{relative.parts[0]}/"


def find_files(
    lib_dir: Path,
    target_dir: Optional[Path] = None,
    extra_ignore: Iterable[str] = (),
) -> List[str]:
    """List the library files that take part in its fingerprint.

    Symbolic links to directories are not followed.

    Args:
        lib_dir: Library source directory
        target_dir: Consumer project directory (excluded if nested in lib_dir)
        extra_ignore: Additional gitignore-style patterns

    Returns:
        Sorted library-relative POSIX paths
    """
    root = Path(lib_dir)
    extra = list(extra_ignore)
    nested = nested_target_pattern(root, target_dir)
    if nested:
        extra.append(nested)
    ignore = IgnoreSpec(root, extra)

    files: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        d = Path(dirpath)
        rel_dir = d.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else f"{rel_dir}/"

        # Prune in place so os.walk skips ignored subtrees and linked dirs
        dirnames[:] = [
            name for name in dirnames
            if not (d / name).is_symlink() and ignore.should_traverse(prefix + name)
        ]

        for name in filenames:
            rel = prefix + name
            if not ignore.is_ignored(rel):
                files.append(rel)

    return sorted(files)


def compute_fingerprint(
    lib_dir: Path,
    target_dir: Optional[Path] = None,
    extra_ignore: Iterable[str] = (),
) -> Fingerprint:
    """Fingerprint a library source tree.

    A file that cannot be hashed contributes ``UNREADABLE_MARKER`` instead of
    a digest and is listed in ``Fingerprint.unreadable``; one bad file never
    fails the whole fingerprint.
    """
    root = Path(lib_dir)
    files = find_files(root, target_dir, extra_ignore)

    if len(files) > 100:
        logger.debug("Computing hashes for %d files in %s", len(files), root)

    entries: List[Tuple[str, str]] = []
    unreadable: List[str] = []
    for rel in files:
        try:
            digest = compute_file_digest(root / rel)
        except OSError as e:
            logger.debug("Could not hash %s: %s", rel, e)
            digest = UNREADABLE_MARKER
            unreadable.append(rel)
        entries.append((rel, digest))

    return Fingerprint(entries=tuple(entries), unreadable=tuple(unreadable))


__all__ = [
    "Fingerprint",
    "UNREADABLE_MARKER",
    "compute_file_digest",
    "compute_fingerprint",
    "find_files",
    "nested_target_pattern",
]
