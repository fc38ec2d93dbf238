"""Test Scheduler: partitions discovered tests into per-worker shards.

Greedy longest-first bin packing onto the least-loaded worker, subject to
per-group concurrency limits and memory budgets, followed (for the balanced
strategy) by a bounded rebalancing pass.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from shardrun.exceptions import SchedulingError
from shardrun.models.catalog import TestCase, TestGroup
from shardrun.models.enums import SchedulingStrategy
from shardrun.models.schedule import ScheduleResult, SchedulingConstraints, WorkerAssignment

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass
class _WorkerBin:
    index: int
    tests: list[TestCase] = field(default_factory=list)
    total_time: float = 0.0
    total_memory: int = 0
    group_counts: Counter = field(default_factory=Counter)

    @property
    def footprint(self) -> int:
        # Tests in one worker run sequentially: the worker needs the largest
        # single requirement, not the sum.
        return max((t.memory_requirement for t in self.tests), default=0)

    def holds(self, group: str) -> bool:
        return self.group_counts[group] > 0

    def add(self, test: TestCase) -> None:
        self.tests.append(test)
        self.total_time += test.estimated_time
        self.total_memory += test.memory_requirement
        self.group_counts[test.group] += 1

    def remove(self, test: TestCase) -> None:
        self.tests.remove(test)
        self.total_time -= test.estimated_time
        self.total_memory -= test.memory_requirement
        self.group_counts[test.group] -= 1
        if self.group_counts[test.group] <= 0:
            del self.group_counts[test.group]

    def freeze(self, index: int) -> WorkerAssignment:
        groups: list[str] = []
        for t in self.tests:
            if t.group not in groups:
                groups.append(t.group)
        return WorkerAssignment(
            worker_index=index,
            tests=tuple(self.tests),
            total_time=self.total_time,
            total_memory=self.total_memory,
            peak_memory=self.footprint,
            groups=tuple(groups),
        )


class TestScheduler:
    __test__ = False

    def __init__(
        self,
        groups: dict[str, TestGroup],
        strategy: SchedulingStrategy = SchedulingStrategy.BALANCED,
        worker_memory_budget: int = 800 * MB,
        rebalance_iterations: int = 10,
    ):
        self.groups = groups
        self.strategy = SchedulingStrategy(strategy)
        self.worker_memory_budget = worker_memory_budget
        self.rebalance_iterations = rebalance_iterations

    def schedule_tests(
        self,
        tests: list[TestCase],
        worker_count: int,
        constraints: SchedulingConstraints | None = None,
    ) -> ScheduleResult:
        """Assign every test to exactly one worker.

        Deterministic for a given input. An empty test list yields an empty
        schedule. Raises SchedulingError if the result would lose a test or
        exceed a group's concurrency limit.
        """
        if not tests:
            logger.info("No tests to schedule")
            return ScheduleResult(strategy=self.strategy)

        constraints = constraints or SchedulingConstraints()
        workers = self.apply_resource_constraints(tests, worker_count, constraints)
        logger.info(
            "Scheduling %d tests across %d workers (%s strategy)",
            len(tests), workers, self.strategy.value,
        )

        bins = [_WorkerBin(index=i + 1) for i in range(workers)]
        relaxed = 0
        for test in self._order(tests):
            if not self._place(test, bins, constraints.max_memory):
                relaxed += 1
        if relaxed:
            logger.warning(
                "%d tests exceeded the memory budget and were packed onto "
                "workers already holding their group", relaxed,
            )

        bins = [b for b in bins if b.tests]
        if self.strategy == SchedulingStrategy.BALANCED:
            self._rebalance(bins)

        result = ScheduleResult(
            strategy=self.strategy,
            assignments=[b.freeze(i + 1) for i, b in enumerate(bins)],
        )
        self.validate(tests, result)
        self.log_schedule_summary(result)
        return result

    # ── Worker Count ────────────────────────────────────────────

    def apply_resource_constraints(
        self, tests: list[TestCase], worker_count: int, constraints: SchedulingConstraints
    ) -> int:
        workers = worker_count
        if constraints.max_memory and tests:
            mean_memory = sum(t.memory_requirement for t in tests) / len(tests)
            if mean_memory > 0:
                workers = min(workers, int(constraints.max_memory // mean_memory))
        if constraints.max_workers:
            workers = min(workers, constraints.max_workers)
        workers = max(1, workers)
        if workers < worker_count:
            logger.info("Resource constraints reduced workers from %d to %d", worker_count, workers)
        return workers

    # ── Placement ───────────────────────────────────────────────

    def _order(self, tests: list[TestCase]) -> list[TestCase]:
        if self.strategy == SchedulingStrategy.PRIORITY:
            return sorted(tests, key=lambda t: (-t.priority, -t.estimated_time, t.path))
        return sorted(tests, key=lambda t: (-t.estimated_time, t.path))

    def group_limit(self, group: str, default: int) -> int:
        config = self.groups.get(group)
        return config.max_workers if config else default

    def _group_candidates(self, test: TestCase, bins: list[_WorkerBin]) -> list[_WorkerBin]:
        holders = [b for b in bins if b.holds(test.group)]
        if len(holders) >= self.group_limit(test.group, len(bins)):
            return holders
        return bins

    def _fits_memory(
        self, target: _WorkerBin, test: TestCase, bins: list[_WorkerBin], max_memory: int | None
    ) -> bool:
        if target.total_memory + test.memory_requirement > self.worker_memory_budget:
            return False
        if max_memory:
            others = sum(b.footprint for b in bins if b is not target)
            if others + max(target.footprint, test.memory_requirement) > max_memory:
                return False
        return True

    def _place(self, test: TestCase, bins: list[_WorkerBin], max_memory: int | None) -> bool:
        """Place one test. Returns False if the memory constraint had to be relaxed."""
        candidates = self._group_candidates(test, bins)
        fitting = [b for b in candidates if self._fits_memory(b, test, bins, max_memory)]
        if not fitting:
            logger.debug("No memory headroom for %s, relaxing memory constraint", test.relative_path)
        target = min(fitting or candidates, key=lambda b: (b.total_time, b.index))
        target.add(test)
        return bool(fitting)

    # ── Rebalancing ─────────────────────────────────────────────

    def _rebalance(self, bins: list[_WorkerBin]) -> int:
        """Move single tests from the heaviest to the lightest worker.

        A move is taken only if the light worker stays strictly below the
        heavy worker's current load, so the makespan never grows.
        """
        moves = 0
        while moves < self.rebalance_iterations and len(bins) > 1:
            heavy = max(bins, key=lambda b: (b.total_time, -b.index))
            light = min(bins, key=lambda b: (b.total_time, b.index))
            if heavy is light:
                break

            best: TestCase | None = None
            best_gap = heavy.total_time - light.total_time
            for test in heavy.tests:
                d = test.estimated_time
                if d <= 0 or light.total_time + d >= heavy.total_time:
                    continue
                if not self._can_join(test, heavy, light, bins):
                    continue
                gap = abs((heavy.total_time - d) - (light.total_time + d))
                if gap < best_gap:
                    best, best_gap = test, gap
            if best is None:
                break

            heavy.remove(best)
            light.add(best)
            moves += 1
            logger.debug(
                "Rebalanced %s from worker %d to worker %d",
                best.relative_path, heavy.index, light.index,
            )
        return moves

    def _can_join(
        self, test: TestCase, source: _WorkerBin, target: _WorkerBin, bins: list[_WorkerBin]
    ) -> bool:
        if target.holds(test.group):
            return True
        holders = sum(1 for b in bins if b.holds(test.group))
        if source.group_counts[test.group] == 1:
            # Source gives the group up, holder count is unchanged
            holders -= 1
        return holders < self.group_limit(test.group, len(bins))

    # ── Validation ──────────────────────────────────────────────

    def validate(self, tests: list[TestCase], result: ScheduleResult) -> None:
        expected = Counter(t.path for t in tests)
        assigned = Counter(t.path for a in result.assignments for t in a.tests)
        if expected != assigned:
            missing = sorted((expected - assigned).elements())
            extra = sorted((assigned - expected).elements())
            raise SchedulingError(
                f"Schedule does not cover the discovered tests "
                f"(missing: {missing}, duplicated or unknown: {extra})"
            )

        holders: Counter = Counter()
        for a in result.assignments:
            holders.update(set(a.groups))
        for group, count in holders.items():
            limit = self.group_limit(group, len(result.assignments))
            if count > limit:
                raise SchedulingError(
                    f"Group {group} runs on {count} workers, limit is {limit}"
                )

    def log_schedule_summary(self, result: ScheduleResult) -> None:
        stats = result.stats()
        logger.info(
            "Schedule: %d tests, %d workers, estimated %.1fs (avg %.1fs, balance %.1f%%)",
            stats.total_tests, stats.worker_count, stats.estimated_total_time,
            stats.average_worker_time, stats.load_balance,
        )
        for w in stats.workers:
            logger.info(
                "  Worker %d: %d tests, %.1fs, groups: %s",
                w.id, w.test_count, w.total_time, ", ".join(w.groups),
            )
