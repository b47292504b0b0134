"""Consumer project setup: ``init`` and ``add``."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .builder import Executor, detect_package_manager, run_command
from .config import InstallOptions
from .constants import DEFAULT_SCRIPT, TOOL_NAME
from .core import ProgressCallback, install_relative_deps
from .errors import ManifestError
from .manifest import find_project_root, read_manifest, update_manifest
from .metadata import DEFAULT_VERSION
from .scheduler import RunResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Library:
    """A local library about to be declared as relative dependency."""

    rel_path: str
    name: str
    version: str


def add_script_to_package(root: Path, script: str = DEFAULT_SCRIPT) -> bool:
    """Make ``script`` in the consumer's package.json run relative-deps.

    An existing script is chained with ``&&``. Returns True if the
    manifest was changed.
    """
    scripts = dict(read_manifest(root).scripts or {})
    current = scripts.get(script)
    if not current:
        scripts[script] = TOOL_NAME
    elif TOOL_NAME not in current:
        scripts[script] = f"{current} && {TOOL_NAME}"
    else:
        return False

    logger.info("Adding %s to %s script in package.json", TOOL_NAME, script)
    update_manifest(root, {"scripts": scripts})
    return True


def setup_empty_relative_deps(root: Path) -> bool:
    """Add an empty relativeDependencies section if there is none."""
    if read_manifest(root).relative_dependencies is not None:
        return False
    logger.info("Setting up relativeDependencies section in package.json")
    update_manifest(root, {"relativeDependencies": {}})
    return True


def init_relative_deps(start: Optional[Path] = None, script: str = DEFAULT_SCRIPT) -> Path:
    """Prepare the consumer project for relative dependencies.

    Returns:
        Consumer project root
    """
    root = find_project_root(start)
    setup_empty_relative_deps(root)
    add_script_to_package(root, script)
    return root


def resolve_libraries(root: Path, paths: Sequence[str]) -> List[Library]:
    """Read the manifest of every library path (relative to ``root``).

    Raises:
        ManifestError: If a path has no package.json or the package has no name
    """
    libraries = []
    for rel_path in paths:
        lib_dir = (root / rel_path).resolve()
        try:
            manifest = read_manifest(lib_dir)
        except ManifestError:
            raise ManifestError(f"Failed to resolve dependency {rel_path}")
        if not manifest.name:
            raise ManifestError(f"Package at {rel_path} does not have a name")
        libraries.append(Library(rel_path, manifest.name, manifest.version or DEFAULT_VERSION))
    return libraries


def add_relative_deps(
    paths: Sequence[str],
    dev: bool = False,
    script: str = DEFAULT_SCRIPT,
    start: Optional[Path] = None,
    options: Optional[InstallOptions] = None,
    executor: Optional[Executor] = None,
    progress: Optional[ProgressCallback] = None,
) -> Optional[RunResult]:
    """Declare local libraries as relative dependencies and install them.

    Each library not yet in (dev)dependencies is first added through the
    consumer's package manager; a registry miss only warns, the library is
    then installed as relative dependency only. Without paths, the
    configured script is run instead.

    Returns:
        Result of the install run, or None when no paths were given
    """
    root = init_relative_deps(start, script)
    manager = detect_package_manager(root)
    verbose = bool(options and options.verbose)

    if not paths:
        logger.warning("No paths provided, running %s", script)
        run_command([manager, "run", script], root, verbose=True)
        return None

    libraries = resolve_libraries(root, paths)

    project = read_manifest(root)
    section = (project.dev_dependencies if dev else project.dependencies) or {}
    for library in libraries:
        if library.name in section:
            continue
        args = [manager, "add", *(["-D"] if dev else []), library.name]
        try:
            run_command(args, root, verbose)
        except (OSError, subprocess.CalledProcessError):
            logger.warning(
                "Unable to fetch %s from registry. Installing as a relative dependency only.",
                library.name,
            )

    update_manifest(root, {"relativeDependencies": {lib.name: lib.rel_path for lib in libraries}})
    return install_relative_deps(options, start=root, executor=executor, progress=progress)
