"""Build, pack and install a local library into the consuming project.

The executor shells out to the library's own package manager for the
install, build and pack steps, then unpacks the resulting tarball into
``node_modules/<name>`` of the consumer, replacing any previous install.
"""

import logging
import os
import re
import shutil
import subprocess
import tarfile
from pathlib import Path, PurePosixPath
from typing import List, Optional, Protocol

from .constants import INSTALL_DIR
from .errors import (
    BuildStepError,
    InstallStepError,
    PackageNameMismatchError,
    PackStepError,
)
from .manifest import read_manifest

logger = logging.getLogger(__name__)

# Lockfile -> package manager, checked in this order
LOCKFILES = [
    ("bun.lockb", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
]


class Executor(Protocol):
    """Replaces the consumer's installed copy of a changed library."""

    def run(self, name: str, lib_dir: Path) -> None:
        """Build, pack and install ``name``; raise ExecutorError on failure."""
        ...


def detect_package_manager(cwd: Optional[Path] = None) -> str:
    """Pick the package manager whose lockfile is present (npm by default)."""
    cwd = Path(cwd or Path.cwd())
    for lockfile, manager in LOCKFILES:
        if (cwd / lockfile).exists():
            return manager
    return "npm"


def run_command(args: List[str], cwd: Path, verbose: bool) -> None:
    """Run a package manager command, raising CalledProcessError/OSError."""
    logger.debug("Running '%s' in %s", " ".join(args), cwd)
    output = None if verbose else subprocess.PIPE
    proc = subprocess.run(args, cwd=cwd, stdout=output, stderr=output, text=True)
    if proc.returncode != 0:
        if proc.stderr:
            logger.debug("stderr of '%s':\n%s", " ".join(args), proc.stderr[-2000:])
        raise subprocess.CalledProcessError(proc.returncode, args)


def build_library(name: str, lib_dir: Path, verbose: bool = False) -> None:
    """Install the library's own dependencies if needed, then build it.

    Raises:
        InstallStepError: If ``<pm> install`` fails
        PackageNameMismatchError: If the library's name differs from ``name``
        BuildStepError: If the build script fails
    """
    lib_dir = Path(lib_dir)
    manager = detect_package_manager(lib_dir)

    # Run install if never done before
    if not (lib_dir / INSTALL_DIR).exists():
        logger.info("Running 'install' in %s", lib_dir)
        try:
            run_command([manager, "install"], lib_dir, verbose)
        except (OSError, subprocess.CalledProcessError) as e:
            raise InstallStepError(name, str(e))

    manifest = read_manifest(lib_dir)
    if manifest.name != name:
        raise PackageNameMismatchError(name, manifest.name or "")

    if manifest.build_script:
        logger.info("Building %s in %s", name, lib_dir)
        try:
            run_command([manager, "run", "build"], lib_dir, verbose)
        except (OSError, subprocess.CalledProcessError) as e:
            raise BuildStepError(name, str(e))


def tarball_pattern(name: str) -> "re.Pattern[str]":
    """Regex matching the tarball ``pack`` produces for ``name``.

    npm turns ``@scope/pkg`` into ``scope-pkg-1.0.0.tgz`` and may prefix
    ``at-``; yarn adds a ``v`` before the version.
    """
    tmp_name = re.sub(r"[\s/]", "-", name).replace("@", "")
    return re.compile(rf"^(at-)?{re.escape(tmp_name)}(.*)\.tgz$")


def find_tarball(name: str, lib_dir: Path) -> Optional[Path]:
    """Newest packed tarball for ``name`` in ``lib_dir``."""
    pattern = tarball_pattern(name)
    candidates = [p for p in Path(lib_dir).iterdir() if p.is_file() and pattern.match(p.name)]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime_ns)


def extract_tarball(archive: Path, dest: Path) -> int:
    """Extract ``archive`` into ``dest``, dropping the leading path component.

    Only regular files and directories are extracted; entries that would
    land outside ``dest`` are rejected.

    Returns:
        Number of files written
    """
    dest_root = Path(dest).resolve()
    written = 0
    with tarfile.open(archive, "r:*") as tar:
        for member in tar.getmembers():
            parts = PurePosixPath(member.name).parts
            if len(parts) <= 1:
                continue
            target = dest_root.joinpath(*parts[1:]).resolve()
            if dest_root not in target.parents:
                raise PackStepError(archive.name, f"unsafe path in archive: {member.name}")

            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tar.extractfile(member)
                if src is None:
                    continue
                with src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                os.chmod(target, (member.mode & 0o777) | 0o600)
                written += 1
            else:
                logger.debug("Skipping non-regular archive entry %s", member.name)
    return written


def _remove_install(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def pack_and_install_library(name: str, lib_dir: Path, target_dir: Path, verbose: bool = False) -> Path:
    """Pack the library and unpack it into the consumer's node_modules.

    The packed tarball is always removed afterwards.

    Returns:
        The install directory ``<target_dir>/node_modules/<name>``

    Raises:
        PackStepError: If packing fails or the tarball cannot be found or extracted
    """
    lib_dir = Path(lib_dir)
    dest = Path(target_dir) / INSTALL_DIR / name
    manager = detect_package_manager(lib_dir)
    tarball: Optional[Path] = None

    try:
        logger.debug("Packing %s", name)
        try:
            run_command([manager, "pack"], lib_dir, verbose)
        except (OSError, subprocess.CalledProcessError) as e:
            raise PackStepError(name, str(e))

        tarball = find_tarball(name, lib_dir)
        if tarball is None:
            raise PackStepError(name, f"could not find packaged file in {lib_dir}")

        if dest.exists() or dest.is_symlink():
            logger.debug("Removing existing %s", dest)
            _remove_install(dest)
        dest.mkdir(parents=True, exist_ok=True)

        logger.debug("Extracting %s to %s", tarball.name, dest)
        try:
            extract_tarball(tarball, dest)
        except (OSError, tarfile.TarError) as e:
            raise PackStepError(name, f"could not extract {tarball.name}: {e}")

        # Bust package manager caches by touching the installed package.json
        installed_manifest = dest / "package.json"
        if installed_manifest.exists():
            os.utime(installed_manifest, None)
    finally:
        if tarball is not None and tarball.exists():
            tarball.unlink()

    return dest


class PackageExecutor:
    """Executor backed by the library's package manager."""

    def __init__(self, target_dir: Path, verbose: bool = False):
        self.target_dir = Path(target_dir)
        self.verbose = verbose

    def run(self, name: str, lib_dir: Path) -> None:
        build_library(name, lib_dir, self.verbose)
        pack_and_install_library(name, lib_dir, self.target_dir, self.verbose)
