from datetime import datetime, timezone

import pytest

from shardrun.adapters.mock import MockEngine, MockSystemProbe
from shardrun.models.catalog import TestCase, default_test_groups
from shardrun.models.enums import WorkerStatus
from shardrun.models.results import WorkerResult, WorkerStats

MB = 1024 * 1024
GB = 1024 * MB


@pytest.fixture
def mock_probe():
    return MockSystemProbe()


@pytest.fixture
def mock_engine():
    return MockEngine()


@pytest.fixture
def groups():
    return default_test_groups()


def make_test_case(
    name="foundation/app-loads.cy.ts",
    group="fast",
    estimated_time=2.0,
    priority=3,
    memory_requirement=300 * MB,
    test_count=1,
):
    """Helper to create a TestCase without touching the filesystem."""
    return TestCase(
        path=f"/tests/{name}",
        relative_path=name,
        group=group,
        test_count=test_count,
        estimated_time=estimated_time,
        priority=priority,
        memory_requirement=memory_requirement,
    )


def make_worker_result(
    worker_index=1,
    status=WorkerStatus.SUCCEEDED,
    total=5,
    passed=None,
    failed=0,
    skipped=0,
    duration=10.0,
    **kwargs,
):
    """Helper to create a terminal WorkerResult."""
    now = datetime.now(timezone.utc)
    return WorkerResult(
        worker_index=worker_index,
        status=status,
        stats=WorkerStats(
            total=total,
            passed=total - failed - skipped if passed is None else passed,
            failed=failed,
            skipped=skipped,
        ),
        duration=duration,
        exit_code=kwargs.pop("exit_code", 0 if status == WorkerStatus.SUCCEEDED else 1),
        start_time=now,
        end_time=now,
        **kwargs,
    )


def write_spec(root, relative, tests=1):
    """Write a test file with ``tests`` it() blocks under root."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    body = "\n".join(f"  it('case {i}', () => {{}});" for i in range(tests))
    path.write_text(f"describe('{relative}', () => {{\n{body}\n}});\n")
    return path
