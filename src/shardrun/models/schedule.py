from typing import Optional

from pydantic import BaseModel

from .catalog import TestCase
from .common import ReportModel
from .enums import SchedulingStrategy


class SchedulingConstraints(BaseModel):
    max_memory: Optional[int] = None  # bytes across all concurrent workers
    max_workers: Optional[int] = None


class WorkerAssignment(ReportModel):
    """The shard handed to one worker. Read-only once the scheduler returns it."""

    model_config = {"frozen": True}

    worker_index: int
    tests: tuple[TestCase, ...] = ()
    total_time: float = 0.0
    total_memory: int = 0
    peak_memory: int = 0
    groups: tuple[str, ...] = ()

    @property
    def test_paths(self) -> list[str]:
        return [t.path for t in self.tests]


class WorkerScheduleSummary(ReportModel):
    id: int
    test_count: int
    total_time: float
    groups: list[str]
    tests: list[str]


class ScheduleStats(ReportModel):
    strategy: SchedulingStrategy
    total_tests: int
    worker_count: int
    estimated_total_time: float
    average_worker_time: float
    load_balance: float
    workers: list[WorkerScheduleSummary] = []


class ScheduleResult(BaseModel):
    strategy: SchedulingStrategy
    assignments: list[WorkerAssignment] = []

    @property
    def is_empty(self) -> bool:
        return not self.assignments

    def stats(self) -> ScheduleStats:
        """Makespan, average load and per-worker breakdown of the schedule."""
        times = [a.total_time for a in self.assignments]
        total_tests = sum(len(a.tests) for a in self.assignments)
        makespan = max(times, default=0.0)
        average = sum(times) / len(times) if times else 0.0
        load_balance = (1 - (makespan - average) / makespan) * 100 if makespan > 0 else 100.0
        return ScheduleStats(
            strategy=self.strategy,
            total_tests=total_tests,
            worker_count=len(self.assignments),
            estimated_total_time=makespan,
            average_worker_time=average,
            load_balance=load_balance,
            workers=[
                WorkerScheduleSummary(
                    id=a.worker_index,
                    test_count=len(a.tests),
                    total_time=a.total_time,
                    groups=list(a.groups),
                    tests=[t.relative_path for t in a.tests],
                )
                for a in self.assignments
            ],
        )
