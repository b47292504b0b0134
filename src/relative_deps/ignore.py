"""Gitignore-style pattern matching for library source trees."""

from pathlib import Path
from typing import Iterable

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern

from .constants import CACHE_DIR


# Default patterns to always ignore when fingerprinting a library
DEFAULTS = [
    # Version control
    ".git/",

    # Installed dependencies and our own cache
    "node_modules/",
    f"{CACHE_DIR}/",

    # Build output
    "dist/",
    "build/",
    "coverage/",
    ".nyc_output/",

    # Logs, editors and OS files
    "*.log",
    ".DS_Store",
    ".vscode/",
    ".idea/",

    # Lockfiles that get created during build
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",

    # Package manager artifacts
    "*.tgz",
    "*.tar.gz",
    ".npmrc",
    ".yarnrc",
    ".pnp.js",
    ".pnp.cjs",
]


class IgnoreSpec:
    """Manages gitignore-style patterns for file exclusion."""

    def __init__(self, root: Path, extra: Iterable[str] = ()):
        """Initialize ignore spec with default and custom patterns.

        Args:
            root: Library source directory
            extra: Additional patterns to include
        """
        self.root = root
        patterns = list(DEFAULTS)

        # Honor the library's own .gitignore
        ignore_file = root / ".gitignore"
        if ignore_file.is_file():
            for line in ignore_file.read_text(errors="replace").splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    patterns.append(line)

        patterns.extend(extra)
        self.patterns = patterns
        self.spec = PathSpec.from_lines(GitWildMatchPattern, patterns)

    def is_ignored(self, relpath: str) -> bool:
        """Check if a library-relative POSIX path should be ignored."""
        return self.spec.match_file(relpath)

    def should_traverse(self, dirpath: str) -> bool:
        """Check if a directory should be traversed during scanning.

        Args:
            dirpath: Library-relative directory path in POSIX format

        Returns:
            True if the directory should be traversed
        """
        if not dirpath.endswith("/"):
            dirpath = dirpath + "/"
        return not self.spec.match_file(dirpath)
