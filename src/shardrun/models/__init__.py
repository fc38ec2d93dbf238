from .catalog import (
    TestCase,
    TestExecution,
    TestGroup,
    TestHistoryEntry,
    default_test_groups,
)
from .common import ReportModel, StatusTransition
from .enums import (
    EngineKind,
    PriorityTier,
    ResourceKind,
    ResourceSignal,
    RunState,
    SchedulingStrategy,
    WorkerStatus,
)
from .resources import (
    CpuUsage,
    DiskUsage,
    EmergencyEvent,
    MemoryUsage,
    ResourceAverages,
    ResourceSnapshot,
    ResourceSummary,
)
from .results import (
    EngineReport,
    ExecutionInfo,
    ExecutionReport,
    ParallelEfficiency,
    PartialReport,
    PoolSummary,
    ReportSummary,
    TestTotals,
    WorkerCounts,
    WorkerResult,
    WorkerStats,
)
from .schedule import (
    ScheduleResult,
    ScheduleStats,
    SchedulingConstraints,
    WorkerAssignment,
    WorkerScheduleSummary,
)

__all__ = [
    "CpuUsage",
    "DiskUsage",
    "EmergencyEvent",
    "EngineKind",
    "EngineReport",
    "ExecutionInfo",
    "ExecutionReport",
    "MemoryUsage",
    "ParallelEfficiency",
    "PartialReport",
    "PoolSummary",
    "PriorityTier",
    "ReportModel",
    "ReportSummary",
    "ResourceAverages",
    "ResourceKind",
    "ResourceSignal",
    "ResourceSnapshot",
    "ResourceSummary",
    "RunState",
    "ScheduleResult",
    "ScheduleStats",
    "SchedulingConstraints",
    "SchedulingStrategy",
    "StatusTransition",
    "TestCase",
    "TestExecution",
    "TestGroup",
    "TestHistoryEntry",
    "TestTotals",
    "WorkerAssignment",
    "WorkerCounts",
    "WorkerResult",
    "WorkerScheduleSummary",
    "WorkerStats",
    "WorkerStatus",
    "default_test_groups",
]
