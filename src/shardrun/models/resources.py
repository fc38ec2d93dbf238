from datetime import datetime
from typing import Optional, Union

from .common import ReportModel
from .enums import ResourceKind


class MemoryUsage(ReportModel):
    model_config = {"frozen": True}

    total: int
    used: int
    free: int
    percentage: float
    limit: int
    limit_percent: float
    safe: bool


class CpuUsage(ReportModel):
    model_config = {"frozen": True}

    cores: int
    load_average: tuple[float, float, float]
    current_load: float
    percentage: float
    safe: bool


class DiskUsage(ReportModel):
    model_config = {"frozen": True}

    path: str
    total: int
    used: int
    available: int
    safe: bool
    error: Optional[str] = None


class ResourceSnapshot(ReportModel):
    model_config = {"frozen": True}

    timestamp: datetime
    memory: MemoryUsage
    cpu: CpuUsage
    disk: DiskUsage
    safe: bool


class ResourceAverages(ReportModel):
    memory: float
    cpu: float


class ResourceSummary(ReportModel):
    current: ResourceSnapshot
    averages: ResourceAverages
    peak_memory: float
    samples: int
    optimal_workers: int
    safe: bool


class EmergencyEvent(ReportModel):
    model_config = {"frozen": True}

    type: ResourceKind
    data: Union[MemoryUsage, CpuUsage, DiskUsage]
