"""Cheap metadata snapshots used to short-circuit full fingerprinting."""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from .manifest import PackageManifest, read_manifest

logger = logging.getLogger(__name__)


# Config/build files and top-level directories whose mtime is tracked
IMPORTANT_FILES = [
    # Package files
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",

    # Build configuration files
    "tsconfig.json",
    "webpack.config.js",
    "rollup.config.js",
    "vite.config.js",
    "vite.config.ts",
    "babel.config.js",
    ".babelrc",
    "jest.config.js",
    "vitest.config.js",
    "vitest.config.ts",

    # Source and output directories (mtime of the directory entry only)
    "src",
    "lib",
    "dist",
]

DEFAULT_VERSION = "0.0.0"


class ChangeMetadata(BaseModel):
    """Snapshot of the cheap change signals for one library."""

    model_config = ConfigDict(populate_by_name=True)

    last_modified: float = Field(default=0.0, alias="lastModified")  # epoch ms
    package_version: str = Field(default=DEFAULT_VERSION, alias="packageVersion")
    dependency_hash: str = Field(alias="dependencyHash")


def _canonical_config(manifest: PackageManifest) -> Dict[str, Any]:
    return {
        "dependencies": manifest.dependencies or {},
        "devDependencies": manifest.dev_dependencies or {},
        "peerDependencies": manifest.peer_dependencies or {},
        "buildScript": manifest.build_script,
        "main": manifest.main,
        "module": manifest.module,
        "types": manifest.types,
        "exports": manifest.exports,
    }


def compute_dependency_hash(manifest: PackageManifest) -> str:
    """Hash the dependency sets, build script and entry points of a manifest.

    Uses canonical JSON (sorted keys, no whitespace) so key order and
    formatting in package.json never change the hash.
    """
    canonical_json = json.dumps(
        _canonical_config(manifest),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def latest_mtime(lib_dir: Path) -> float:
    """Most recent mtime (epoch ms) across the important files that exist."""
    last_modified = 0.0
    for name in IMPORTANT_FILES:
        try:
            stat = (lib_dir / name).stat()
        except OSError:
            continue
        last_modified = max(last_modified, stat.st_mtime_ns / 1_000_000)
    return last_modified


def create_change_metadata(lib_dir: Path) -> ChangeMetadata:
    """Build the metadata snapshot for the library in ``lib_dir``.

    Raises:
        ManifestError: If the library's package.json cannot be read
    """
    lib_dir = Path(lib_dir)
    manifest = read_manifest(lib_dir)
    return ChangeMetadata(
        last_modified=latest_mtime(lib_dir),
        package_version=manifest.version or DEFAULT_VERSION,
        dependency_hash=compute_dependency_hash(manifest),
    )
