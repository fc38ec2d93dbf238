from datetime import datetime
from typing import Any, Literal, Optional

from .common import ReportModel
from .enums import WorkerStatus
from .resources import ResourceSummary
from .schedule import ScheduleStats


class EngineReport(ReportModel):
    """Structured result an execution engine leaves behind for one worker."""

    tests: int = 0
    passes: int = 0
    failures: int = 0
    pending: int = 0
    duration: float = 0.0  # seconds

    @classmethod
    def from_payload(cls, payload: dict[str, Any], duration_unit: float = 1.0) -> "EngineReport":
        """Accept the counts at top level or nested under ``stats``."""
        data = payload.get("stats", payload)
        return cls(
            tests=int(data.get("tests", 0) or 0),
            passes=int(data.get("passes", 0) or 0),
            failures=int(data.get("failures", 0) or 0),
            pending=int(data.get("pending", 0) or 0),
            duration=float(data.get("duration", 0) or 0) * duration_unit,
        )


class WorkerStats(ReportModel):
    model_config = {"frozen": True}

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0

    @classmethod
    def from_report(cls, report: EngineReport) -> "WorkerStats":
        return cls(
            total=report.tests,
            passed=report.passes,
            failed=report.failures,
            skipped=report.pending,
        )


class WorkerResult(ReportModel):
    model_config = {"frozen": True}

    worker_index: int
    status: WorkerStatus
    stats: WorkerStats = WorkerStats()
    duration: float = 0.0
    exit_code: Optional[int] = None
    tests: list[str] = []
    log_path: Optional[str] = None
    artifact_dir: Optional[str] = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class PoolSummary(ReportModel):
    results: list[WorkerResult] = []
    total_workers: int = 0
    successful_workers: int = 0
    failed_workers: int = 0
    error_workers: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0

    @classmethod
    def from_results(cls, results: list[WorkerResult]) -> "PoolSummary":
        ordered = sorted(results, key=lambda r: r.worker_index)
        durations = [r.duration for r in ordered]
        return cls(
            results=ordered,
            total_workers=len(ordered),
            successful_workers=sum(1 for r in ordered if r.status == WorkerStatus.SUCCEEDED),
            failed_workers=sum(
                1 for r in ordered
                if r.status in (WorkerStatus.FAILED, WorkerStatus.TIMED_OUT)
            ),
            error_workers=sum(
                1 for r in ordered
                if r.status in (WorkerStatus.CRASHED, WorkerStatus.TERMINATED)
            ),
            total_duration=max(durations, default=0.0),
            average_duration=sum(durations) / len(durations) if durations else 0.0,
        )


class ParallelEfficiency(ReportModel):
    efficiency: float
    speedup: float
    time_reduction: float
    percentage_improvement: float


class ExecutionInfo(ReportModel):
    start_time: datetime
    end_time: datetime
    total_duration: float
    parallel_efficiency: ParallelEfficiency


class WorkerCounts(ReportModel):
    total: int
    successful: int
    failed: int
    errors: int


class TestTotals(ReportModel):
    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    pass_rate: float = 0.0


class ReportSummary(ReportModel):
    execution: ExecutionInfo
    workers: WorkerCounts
    tests: TestTotals
    resources: Optional[ResourceSummary] = None
    schedule: Optional[ScheduleStats] = None


class ExecutionReport(ReportModel):
    summary: ReportSummary
    worker_results: list[WorkerResult]
    timestamp: datetime
    version: str


class PartialReport(ReportModel):
    type: Literal["partial"] = "partial"
    reason: str
    results: PoolSummary
    timestamp: datetime
