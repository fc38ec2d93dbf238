from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import ReportModel
from .enums import PriorityTier

MB = 1024 * 1024


class TestGroup(BaseModel):
    """Static execution constraints for a family of test files."""

    __test__ = False

    name: str
    patterns: list[str]
    max_workers: int = Field(ge=1)
    memory_per_worker: int
    estimated_time: float  # seconds per test case
    priority: PriorityTier = PriorityTier.MEDIUM


class TestCase(ReportModel):
    __test__ = False
    model_config = {"frozen": True}

    path: str
    relative_path: str
    group: str
    test_count: int = 1
    estimated_time: float
    priority: int
    memory_requirement: int


class TestExecution(ReportModel):
    __test__ = False

    time: float  # seconds
    success: bool
    timestamp: datetime


class TestHistoryEntry(ReportModel):
    __test__ = False

    executions: list[TestExecution] = []
    average_time: Optional[float] = None
    success_rate: float = 0.0


def default_test_groups() -> dict[str, TestGroup]:
    groups = [
        TestGroup(
            name="smoke",
            patterns=["smoke/*.cy.ts"],
            max_workers=4,
            memory_per_worker=250 * MB,
            estimated_time=1,
            priority=PriorityTier.CRITICAL,
        ),
        TestGroup(
            name="fast",
            patterns=["foundation/*.cy.ts", "navigation/*.cy.ts"],
            max_workers=6,
            memory_per_worker=300 * MB,
            estimated_time=2,
            priority=PriorityTier.HIGH,
        ),
        TestGroup(
            name="medium",
            patterns=["setup-wizard/*.cy.ts", "configuration/*.cy.ts"],
            max_workers=3,
            memory_per_worker=400 * MB,
            estimated_time=8,
            priority=PriorityTier.MEDIUM,
        ),
        TestGroup(
            name="slow",
            patterns=["integration/*.cy.ts", "playground/*.cy.ts", "error-handling/*.cy.ts"],
            max_workers=2,
            memory_per_worker=500 * MB,
            estimated_time=20,
            priority=PriorityTier.LOW,
        ),
    ]
    return {g.name: g for g in groups}
