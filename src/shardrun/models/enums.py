from enum import Enum


class SchedulingStrategy(str, Enum):
    BALANCED = "balanced"
    FASTEST = "fastest"
    PRIORITY = "priority"


class EngineKind(str, Enum):
    CYPRESS = "cypress"
    COMMAND = "command"


class PriorityTier(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def score(self) -> int:
        return _PRIORITY_SCORES[self]


_PRIORITY_SCORES = {
    PriorityTier.CRITICAL: 4,
    PriorityTier.HIGH: 3,
    PriorityTier.MEDIUM: 2,
    PriorityTier.LOW: 1,
}


class ResourceKind(str, Enum):
    MEMORY = "memory"
    CPU = "cpu"
    DISK = "disk"


class ResourceSignal(str, Enum):
    MEMORY_WARNING = "memoryWarning"
    CPU_WARNING = "cpuWarning"
    DISK_WARNING = "diskWarning"
    EMERGENCY = "emergency"


class WorkerStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CRASHED = "crashed"
    TIMED_OUT = "timedOut"
    TERMINATED = "terminated"


class RunState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    SCHEDULING = "scheduling"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    EMERGENCY_SHUTDOWN = "emergency_shutdown"
    TERMINATED = "terminated"
