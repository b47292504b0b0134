"""Dependency-aware execution of per-dependency work items.

With a concurrency ceiling of 1 (the default) or a single task, work runs
strictly sequentially in declared order on the calling thread and the first
failure aborts the run.

With a higher ceiling, tasks run on a thread pool. A task becomes ready once
every task it depends on has reached a terminal state; a failure counts as
terminal, so it unblocks dependents and never stops independent branches.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Sequence, Set

from .errors import SchedulingError
from .graph import TaskNode, topological_order

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Terminal state of a work item."""

    REBUILT = "rebuilt"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    status: TaskStatus
    message: str = ""


@dataclass
class RunResult:
    """Outcomes of one scheduler run, keyed by dependency name."""

    outcomes: Dict[str, TaskOutcome] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)  # start order
    not_started: List[str] = field(default_factory=list)

    def record(self, outcome: TaskOutcome) -> None:
        self.outcomes[outcome.name] = outcome

    def names(self, status: TaskStatus) -> List[str]:
        return [name for name, o in self.outcomes.items() if o.status == status]

    @property
    def rebuilt(self) -> List[str]:
        return self.names(TaskStatus.REBUILT)

    @property
    def unchanged(self) -> List[str]:
        return self.names(TaskStatus.UNCHANGED)

    @property
    def skipped(self) -> List[str]:
        return self.names(TaskStatus.SKIPPED)

    @property
    def failed(self) -> List[str]:
        return self.names(TaskStatus.FAILED)

    @property
    def failures(self) -> Dict[str, str]:
        return {name: o.message for name, o in self.outcomes.items() if o.status == TaskStatus.FAILED}

    @property
    def ok(self) -> bool:
        return not self.failed


WorkFn = Callable[[TaskNode], TaskOutcome]


class Scheduler:
    """Runs a work function over TaskNodes under a concurrency ceiling."""

    def __init__(self, work: WorkFn, max_concurrency: int = 1):
        """
        Args:
            work: Processes one node; may raise, which marks the node failed
            max_concurrency: Maximum number of work items in flight (>= 1)
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.work = work
        self.max_concurrency = max_concurrency

    def is_sequential(self, nodes: Sequence[TaskNode]) -> bool:
        return self.max_concurrency == 1 or len(nodes) <= 1

    def run(self, nodes: Sequence[TaskNode]) -> RunResult:
        """Process every node and collect the outcomes."""
        nodes = list(nodes)
        if self.is_sequential(nodes):
            return self._run_sequential(nodes)

        ordered = topological_order(nodes)
        logger.debug("Processing order: %s", " → ".join(node.name for node in ordered))
        return self._run_parallel(ordered)

    def _execute(self, node: TaskNode) -> TaskOutcome:
        try:
            return self.work(node)
        except Exception as e:
            logger.error("Failed to process %s: %s", node.name, e)
            logger.debug("Failure details for %s", node.name, exc_info=True)
            return TaskOutcome(node.name, TaskStatus.FAILED, str(e))

    def _run_sequential(self, nodes: List[TaskNode]) -> RunResult:
        result = RunResult()
        for index, node in enumerate(nodes):
            result.order.append(node.name)
            outcome = self._execute(node)
            result.record(outcome)
            if outcome.status == TaskStatus.FAILED:
                result.not_started = [n.name for n in nodes[index + 1:]]
                break
        return result

    def _run_parallel(self, nodes: List[TaskNode]) -> RunResult:
        """Run nodes on a thread pool, respecting their edges.

        ``nodes`` must be acyclic; a cycle surfaces as a SchedulingError.
        """
        result = RunResult()
        names = {node.name for node in nodes}
        started: Set[str] = set()
        done: Set[str] = set()
        running: Dict[Future, str] = {}

        def is_ready(node: TaskNode) -> bool:
            return node.name not in started and all(
                dep in done or dep not in names for dep in node.dependencies
            )

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency, thread_name_prefix="relative-deps"
        ) as pool:
            while len(done) < len(nodes):
                free = self.max_concurrency - len(running)
                for node in [n for n in nodes if is_ready(n)][:free]:
                    started.add(node.name)
                    result.order.append(node.name)
                    running[pool.submit(self._execute, node)] = node.name

                if not running:
                    waiting = {
                        node.name: [dep for dep in node.dependencies if dep in names and dep not in done]
                        for node in nodes
                        if node.name not in done
                    }
                    raise SchedulingError(waiting)

                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    name = running.pop(future)
                    result.record(future.result())
                    done.add(name)

        return result
