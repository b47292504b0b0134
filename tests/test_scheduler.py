"""Tests for the dependency-aware scheduler."""

import threading
import time
from pathlib import Path

import pytest

from relative_deps.errors import SchedulingError
from relative_deps.graph import TaskNode
from relative_deps.scheduler import RunResult, Scheduler, TaskOutcome, TaskStatus


def node(name, *deps):
    return TaskNode(name=name, lib_dir=Path("/libs") / name, dependencies=tuple(deps))


class Recorder:
    """Work function that records start/finish order and concurrency."""

    def __init__(self, delay=0.0, fail=(), delays=None):
        self.delay = delay
        self.delays = delays or {}
        self.fail = set(fail)
        self.lock = threading.Lock()
        self.events = []
        self.active = 0
        self.peak = 0

    def __call__(self, task):
        with self.lock:
            self.events.append(("start", task.name))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delays.get(task.name, self.delay))
            if task.name in self.fail:
                raise RuntimeError(f"boom in {task.name}")
            return TaskOutcome(task.name, TaskStatus.REBUILT, "changed")
        finally:
            with self.lock:
                self.active -= 1
                self.events.append(("finish", task.name))

    def index(self, kind, name):
        return self.events.index((kind, name))


class TestSequential:
    """Concurrency ceiling of 1."""

    def test_declared_order(self):
        work = Recorder()
        result = Scheduler(work, max_concurrency=1).run([node("b", "a"), node("a")])
        # Declared order wins when running sequentially
        assert result.order == ["b", "a"]
        assert result.rebuilt == ["b", "a"]

    def test_first_failure_aborts(self):
        work = Recorder(fail={"b"})
        result = Scheduler(work, max_concurrency=1).run([node("a"), node("b"), node("c")])

        assert result.failed == ["b"]
        assert result.rebuilt == ["a"]
        assert result.not_started == ["c"]
        assert not result.ok

    def test_single_node_runs_inline(self):
        work = Recorder()
        scheduler = Scheduler(work, max_concurrency=8)
        assert scheduler.is_sequential([node("only")])
        assert scheduler.run([node("only")]).rebuilt == ["only"]

    def test_empty(self):
        result = Scheduler(Recorder(), max_concurrency=4).run([])
        assert result.outcomes == {}
        assert result.ok


class TestParallel:
    """Concurrency ceiling above 1."""

    def test_dependency_finishes_before_dependent_starts(self):
        work = Recorder(delay=0.05)
        result = Scheduler(work, max_concurrency=2).run([node("app-ui", "core"), node("core")])

        assert work.index("finish", "core") < work.index("start", "app-ui")
        assert set(result.rebuilt) == {"app-ui", "core"}

    def test_diamond_ordering(self):
        work = Recorder(delay=0.02)
        Scheduler(work, max_concurrency=3).run([
            node("top", "left", "right"),
            node("left", "base"),
            node("right", "base"),
            node("base"),
        ])
        for dep in ("left", "right"):
            assert work.index("finish", "base") < work.index("start", dep)
            assert work.index("finish", dep) < work.index("start", "top")

    def test_cycle_completes(self):
        """A two-node cycle runs both nodes without deadlock."""
        work = Recorder()
        result = Scheduler(work, max_concurrency=2).run([node("a", "b"), node("b", "a")])
        assert set(result.rebuilt) == {"a", "b"}
        assert work.events.count(("start", "a")) == 1
        assert work.events.count(("start", "b")) == 1

    def test_concurrency_ceiling(self):
        work = Recorder(delay=0.05)
        result = Scheduler(work, max_concurrency=2).run([node(f"lib{i}") for i in range(6)])

        assert len(result.rebuilt) == 6
        assert work.peak <= 2

    def test_independent_work_overlaps(self):
        work = Recorder(delay=0.1)
        Scheduler(work, max_concurrency=3).run([node("a"), node("b"), node("c")])
        assert work.peak >= 2

    def test_failure_isolation(self):
        """A failure never stops independent branches and unblocks dependents."""
        work = Recorder(fail={"x"}, delays={"x": 0.0, "y": 0.1})
        result = Scheduler(work, max_concurrency=2).run([
            node("x"),
            node("y"),
            node("after-x", "x"),
        ])

        assert result.failed == ["x"]
        assert "boom in x" in result.failures["x"]
        assert set(result.rebuilt) == {"y", "after-x"}
        assert result.not_started == []

    def test_stuck_graph_raises(self):
        """An unschedulable graph reports the blocked tasks."""
        work = Recorder()
        scheduler = Scheduler(work, max_concurrency=2)
        with pytest.raises(SchedulingError) as exc_info:
            scheduler._run_parallel([node("a", "b"), node("b", "a")])

        assert "Dependency resolution stuck" in str(exc_info.value)
        assert exc_info.value.waiting == {"a": ["b"], "b": ["a"]}
        assert work.events == []


class TestSchedulerOptions:
    def test_invalid_ceiling(self):
        with pytest.raises(ValueError):
            Scheduler(Recorder(), max_concurrency=0)

    def test_run_result_views(self):
        result = RunResult()
        result.record(TaskOutcome("a", TaskStatus.REBUILT))
        result.record(TaskOutcome("b", TaskStatus.UNCHANGED))
        result.record(TaskOutcome("c", TaskStatus.SKIPPED))
        result.record(TaskOutcome("d", TaskStatus.FAILED, "bad"))

        assert result.rebuilt == ["a"]
        assert result.unchanged == ["b"]
        assert result.skipped == ["c"]
        assert result.failures == {"d": "bad"}
        assert not result.ok
