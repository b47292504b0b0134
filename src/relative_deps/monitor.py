"""Watch mode: rerun the install when a local library changes."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import InstallOptions, load_project_config
from .core import ProgressCallback, install_relative_deps
from .errors import RelativeDepsError
from .hashing import nested_target_pattern
from .ignore import IgnoreSpec
from .manifest import find_project_root, read_manifest

logger = logging.getLogger(__name__)


class RelativeDepsMonitor(FileSystemEventHandler):
    """Debounces file events in library trees into whole install runs.

    Runs never overlap: events that arrive during a run schedule one more
    run after it finishes.
    """

    def __init__(
        self,
        lib_dirs: List[Path],
        rerun: Callable[[], None],
        delay: float = 0.5,
        target_dir: Optional[Path] = None,
        extra_ignore: Optional[List[str]] = None,
    ):
        self.rerun = rerun
        self.delay = delay
        self.observer: Optional[Observer] = None
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending = False
        self.ignore_specs: Dict[Path, IgnoreSpec] = {}
        for lib_dir in lib_dirs:
            lib_dir = Path(lib_dir).resolve()
            extra = list(extra_ignore or [])
            nested = nested_target_pattern(lib_dir, target_dir)
            if nested:
                extra.append(nested)
            self.ignore_specs[lib_dir] = IgnoreSpec(lib_dir, extra)

    def _should_process(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        path = Path(str(event.src_path)).resolve()
        for lib_dir, spec in self.ignore_specs.items():
            try:
                rel = path.relative_to(lib_dir).as_posix()
            except ValueError:
                continue
            if spec.is_ignored(rel):
                logger.debug("Ignoring event for ignored path: %s", path)
                return False
            return True
        return False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in ("created", "modified", "deleted", "moved"):
            return
        if self._should_process(event):
            logger.debug("Change detected: %s %s", event.event_type, event.src_path)
            self.schedule()

    def schedule(self) -> None:
        """Request a run once events have been quiet for ``delay`` seconds."""
        with self._lock:
            self._pending = True
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._run_lock:
            with self._lock:
                if not self._pending:
                    return
                self._pending = False
            try:
                self.rerun()
            except RelativeDepsError as e:
                logger.error("Install failed: %s", e)

    def start(self) -> None:
        if self.observer is not None:
            return
        self.observer = Observer()
        for lib_dir in self.ignore_specs:
            if not lib_dir.exists():
                logger.warning("Library path %s does not exist, skipping", lib_dir)
                continue
            self.observer.schedule(self, str(lib_dir), recursive=True)
            logger.debug("Watching %s", lib_dir)
        self.observer.start()

    def stop(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = False
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None


def watch_relative_deps(
    start: Optional[Path] = None,
    options: Optional[InstallOptions] = None,
    progress: Optional[ProgressCallback] = None,
) -> Optional[RelativeDepsMonitor]:
    """Start watching every relative dependency of the project at ``start``.

    Returns:
        The running monitor (caller stops it), or None if nothing to watch
    """
    root = find_project_root(start)
    relative_dependencies = read_manifest(root).relative_dependencies
    if not relative_dependencies:
        logger.warning("No 'relativeDependencies' specified in package.json")
        return None

    config = load_project_config(root)
    # clean and force apply to the initial run only
    rerun_options = (options or InstallOptions()).model_copy(update={"clean": False, "force": False})
    lib_dirs = [(root / path).resolve() for path in relative_dependencies.values()]

    def rerun() -> None:
        install_relative_deps(rerun_options, start=root, progress=progress)

    monitor = RelativeDepsMonitor(
        lib_dirs, rerun, delay=config.watch_delay, target_dir=root, extra_ignore=config.ignore
    )
    monitor.start()
    return monitor
