"""package.json reading and writing.

Manifests are modeled with every field optional: libraries in the wild omit
versions, scripts and dependency sections freely, and none of that may crash
change detection or graph building.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import MANIFEST_FILE
from .errors import ManifestError, ProjectNotFoundError
from .utils import atomic_write_text, deep_merge

logger = logging.getLogger(__name__)


class PackageManifest(BaseModel):
    """The parts of package.json relative-deps reads."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    version: Optional[str] = None
    main: Optional[str] = None
    module: Optional[str] = None
    types: Optional[str] = None
    exports: Optional[Any] = None
    dependencies: Optional[Dict[str, str]] = None
    dev_dependencies: Optional[Dict[str, str]] = Field(default=None, alias="devDependencies")
    peer_dependencies: Optional[Dict[str, str]] = Field(default=None, alias="peerDependencies")
    relative_dependencies: Optional[Dict[str, str]] = Field(default=None, alias="relativeDependencies")
    scripts: Optional[Dict[str, str]] = None

    @property
    def build_script(self) -> str:
        """Text of the ``build`` script, or empty if none is declared."""
        return (self.scripts or {}).get("build", "")

    def all_dependency_names(self) -> List[str]:
        """Names across dependencies, devDependencies and peerDependencies.

        Order follows the manifest, first occurrence wins.
        """
        names: Dict[str, None] = {}
        for section in (self.dependencies, self.dev_dependencies, self.peer_dependencies):
            for dep in section or {}:
                names.setdefault(dep, None)
        return list(names)

    def regular_dependency(self, name: str) -> Optional[str]:
        """Version range of ``name`` in dependencies or devDependencies."""
        return (self.dependencies or {}).get(name) or (self.dev_dependencies or {}).get(name)


def manifest_path(directory: Union[str, Path]) -> Path:
    return Path(directory) / MANIFEST_FILE


def _load_raw(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ManifestError(f"No {MANIFEST_FILE} found at {path}")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Could not read {path}: {e}")
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in {path}: {e}")
    if not isinstance(data, dict):
        raise ManifestError(f"Expected a JSON object in {path}")
    return data


def read_manifest(directory: Union[str, Path]) -> PackageManifest:
    """Read and validate the package.json in ``directory``.

    Raises:
        ManifestError: If the file is missing, unreadable or malformed
    """
    path = manifest_path(directory)
    data = _load_raw(path)
    try:
        return PackageManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Unexpected manifest shape in {path}: {e}")


def find_project_root(start: Optional[Path] = None) -> Path:
    """Walk up from ``start`` to the nearest directory holding a package.json.

    Raises:
        ProjectNotFoundError: If no manifest is found up to the filesystem root
    """
    current = (start or Path.cwd()).resolve()

    while current != current.parent:
        if manifest_path(current).is_file():
            return current
        current = current.parent

    # Check root directory
    if manifest_path(current).is_file():
        return current
    raise ProjectNotFoundError(str(start or Path.cwd()))


def update_manifest(directory: Union[str, Path], data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``data`` into the package.json in ``directory`` atomically.

    Unknown keys and key order of the existing file are preserved.

    Returns:
        The merged manifest as written
    """
    path = manifest_path(directory)
    merged = deep_merge(_load_raw(path), data)
    atomic_write_text(path, json.dumps(merged, indent=2) + "\n")
    logger.debug("Updated %s", path)
    return merged
