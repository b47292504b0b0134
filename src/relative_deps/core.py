"""Install orchestration for relative dependencies.

``install_relative_deps`` reads the consumer's ``relativeDependencies``,
builds the dependency graph between them and hands one work item per
dependency to the scheduler. Each work item runs change detection and, when
the library changed, the build/pack/install executor, then persists the new
cache record.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol

from .builder import Executor, PackageExecutor
from .cache import CacheRecord, CacheStore
from .change_detector import ChangeDetector
from .config import InstallOptions, load_project_config, resolve_max_concurrency
from .errors import DependencyNotFoundError, InstallFailedError
from .graph import TaskNode, build_dependency_graph, declarations_from_mapping
from .manifest import PackageManifest, find_project_root, read_manifest
from .metadata import create_change_metadata
from .scheduler import RunResult, Scheduler, TaskOutcome, TaskStatus

logger = logging.getLogger(__name__)

REASON_FORCED = "forced"


class ProgressCallback(Protocol):
    """Progress reporting interface."""

    def on_task_start(self, name: str, lib_dir: Path) -> None:
        """Called when a dependency starts processing."""
        ...

    def on_task_complete(self, outcome: TaskOutcome) -> None:
        """Called when a dependency reaches a terminal state."""
        ...


class DependencyInstaller:
    """Work function for one dependency: detect, rebuild, persist."""

    def __init__(
        self,
        project: PackageManifest,
        store: CacheStore,
        detector: ChangeDetector,
        executor: Executor,
        force: bool = False,
        progress: Optional[ProgressCallback] = None,
    ):
        self.project = project
        self.store = store
        self.detector = detector
        self.executor = executor
        self.force = force
        self.progress = progress

    def process(self, node: TaskNode) -> TaskOutcome:
        """Bring the installed copy of ``node`` up to date.

        Raises:
            DependencyNotFoundError: Source dir missing and no registry fallback
            ExecutorError: Build, pack or install failed
        """
        if self.progress:
            self.progress.on_task_start(node.name, node.lib_dir)
        try:
            outcome = self._process(node)
        except Exception as e:
            if self.progress:
                self.progress.on_task_complete(TaskOutcome(node.name, TaskStatus.FAILED, str(e)))
            raise
        if self.progress:
            self.progress.on_task_complete(outcome)
        return outcome

    def _process(self, node: TaskNode) -> TaskOutcome:
        name, lib_dir = node.name, node.lib_dir
        regular_dep = self.project.regular_dependency(name)
        if not regular_dep:
            logger.warning(
                "The relative dependency '%s' should also be added as normal- or dev-dependency", name
            )

        if not lib_dir.exists():
            if regular_dep:
                logger.warning(
                    "Could not find target directory '%s', using normally installed version ('%s') instead",
                    lib_dir, regular_dep,
                )
                return TaskOutcome(name, TaskStatus.SKIPPED, f"source missing, using {regular_dep}")
            raise DependencyNotFoundError(name, str(lib_dir))

        if self.force:
            reason = REASON_FORCED
            fingerprint = self.detector.fingerprint(lib_dir)
        else:
            change = self.detector.detect(name, lib_dir)
            if not change.changed:
                return TaskOutcome(name, TaskStatus.UNCHANGED, change.reason)
            reason, fingerprint = change.reason, change.fingerprint

        logger.info("Rebuilding %s (%s)", name, reason)
        self.executor.run(name, lib_dir)

        # Snapshot after the build so build output does not count as a change next run
        record = CacheRecord(fingerprint=fingerprint.composite, metadata=create_change_metadata(lib_dir))
        self.store.write(name, record)

        # Consumers pick up the new code on their own (restart or reload)
        logger.debug("%s replaced on disk", name)
        return TaskOutcome(name, TaskStatus.REBUILT, reason)


def install_relative_deps(
    options: Optional[InstallOptions] = None,
    start: Optional[Path] = None,
    executor: Optional[Executor] = None,
    progress: Optional[ProgressCallback] = None,
) -> RunResult:
    """Sync every relative dependency of the project containing ``start``.

    Args:
        options: Run options (defaults: no force, no clean, project concurrency)
        start: Directory to search upwards from for package.json (default: cwd)
        executor: Build/pack/install collaborator (default: package manager)
        progress: Optional progress reporting

    Returns:
        Outcome of every dependency

    Raises:
        ProjectNotFoundError: No package.json found
        InstallFailedError: At least one dependency failed
        SchedulingError: The dependency graph could not be scheduled
    """
    options = options or InstallOptions()
    root = find_project_root(start)
    project = read_manifest(root)
    logger.debug("Starting installation in %s with options: %s", root, options.model_dump())

    relative_dependencies = project.relative_dependencies
    if not relative_dependencies:
        logger.warning("No 'relativeDependencies' specified in package.json")
        return RunResult()

    config = load_project_config(root)
    store = CacheStore(root)
    if options.clean:
        removed = store.clear(relative_dependencies)
        logger.info("Cleaned %d cache record(s)", removed)

    nodes = build_dependency_graph(declarations_from_mapping(relative_dependencies), root)
    installer = DependencyInstaller(
        project=project,
        store=store,
        detector=ChangeDetector(store, root, config.ignore),
        executor=executor or PackageExecutor(root, verbose=options.verbose),
        force=options.force,
        progress=progress,
    )

    scheduler = Scheduler(
        installer.process, resolve_max_concurrency(options.max_concurrency, config, options.parallel)
    )
    if not scheduler.is_sequential(nodes):
        logger.debug("Using parallel processing with max concurrency: %d", scheduler.max_concurrency)

    result = scheduler.run(nodes)
    if not result.ok:
        raise InstallFailedError(result.failures, result)
    return result
