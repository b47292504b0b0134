"""Custom exceptions for relative-deps.

This module defines typed exceptions for better error handling and clearer
error messages throughout the application.
"""

from typing import Dict, List


class RelativeDepsError(RuntimeError):
    """Base class for all relative-deps errors."""
    pass


# Project / Manifest Errors
class ManifestError(RelativeDepsError):
    """A package.json could not be read or parsed."""
    pass


class ProjectNotFoundError(RelativeDepsError):
    """No consuming project manifest found above the start directory."""

    def __init__(self, start: str):
        self.start = start
        super().__init__(f"Could not find package.json in {start} or any parent directory")


class DependencyNotFoundError(RelativeDepsError):
    """Declared source tree is missing and no registry fallback exists."""

    def __init__(self, name: str, lib_dir: str):
        self.name = name
        self.lib_dir = lib_dir
        super().__init__(
            f"Failed to resolve dependency {name}: failed to find target directory "
            f"'{lib_dir}', and the library is not present as normal dependency either"
        )


# Cache Errors
class CacheReadError(RelativeDepsError):
    """Stored cache record exists but cannot be parsed."""
    pass


class InvalidPackageNameError(RelativeDepsError):
    """Package name cannot be mapped to a cache record file."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid package name for cache record: {name!r}")


# Executor Errors
class ExecutorError(RelativeDepsError):
    """Base class for build/pack/install failures."""

    stage = "execute"

    def __init__(self, name: str, detail: str = ""):
        self.name = name
        self.detail = detail
        message = f"{self.stage.capitalize()} failed for {name}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class InstallStepError(ExecutorError):
    """Running the package manager's install inside the library failed."""

    stage = "install"


class BuildStepError(ExecutorError):
    """The library's build script failed."""

    stage = "build"


class PackStepError(ExecutorError):
    """Packing the library or unpacking the tarball failed."""

    stage = "pack"


class PackageNameMismatchError(ExecutorError):
    """Library manifest name differs from the declared dependency name."""

    stage = "build"

    def __init__(self, name: str, found: str):
        self.found = found
        super().__init__(name, f"mismatch in package name: found '{found}', expected '{name}'")


# Scheduling Errors
class SchedulingError(RelativeDepsError):
    """No task is ready and none is running, yet tasks remain."""

    def __init__(self, waiting: Dict[str, List[str]]):
        self.waiting = waiting
        stuck = ", ".join(
            f"{name} (waiting for: {', '.join(deps)})" for name, deps in waiting.items()
        )
        super().__init__(f"Dependency resolution stuck. Remaining tasks: {stuck}")


class InstallFailedError(RelativeDepsError):
    """One or more dependencies failed to process."""

    def __init__(self, failures: Dict[str, str], result=None):
        self.failures = failures
        self.result = result
        super().__init__(
            "Failed to process some packages: "
            + ", ".join(f"{name} ({msg})" for name, msg in failures.items())
        )
