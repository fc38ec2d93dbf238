import json

import pytest

from shardrun.core.history import MAX_EXECUTIONS, TestHistory
from shardrun.models.enums import WorkerStatus
from shardrun.models.schedule import WorkerAssignment

from .conftest import make_test_case, make_worker_result


def _assignment(index, *tests):
    return WorkerAssignment(
        worker_index=index,
        tests=tuple(tests),
        total_time=sum(t.estimated_time for t in tests),
        groups=tuple(sorted({t.group for t in tests})),
    )


# ── Recording ───────────────────────────────────────────────────


def test_record_first_execution():
    history = TestHistory()
    entry = history.record("smoke/basic.cy.ts", 12.0, success=True)
    assert entry.average_time == 12.0
    assert entry.success_rate == 1.0
    assert len(entry.executions) == 1
    assert "smoke/basic.cy.ts" in history


def test_keeps_last_executions_only():
    history = TestHistory()
    for i in range(MAX_EXECUTIONS + 5):
        history.record("a.cy.ts", float(i), success=True)
    entry = history.entries["a.cy.ts"]
    assert len(entry.executions) == MAX_EXECUTIONS
    assert entry.executions[0].time == 5.0
    assert entry.average_time == pytest.approx(sum(range(5, 15)) / 10)


def test_average_ignores_failed_runs():
    history = TestHistory()
    history.record("a.cy.ts", 10.0, success=True)
    history.record("a.cy.ts", 100.0, success=False)
    entry = history.entries["a.cy.ts"]
    assert entry.average_time == 10.0
    assert entry.success_rate == 0.5


def test_only_failures_leave_no_average():
    history = TestHistory()
    history.record("a.cy.ts", 30.0, success=False)
    assert history.average_time("a.cy.ts") is None
    assert history.estimated_time("a.cy.ts", default=4.0) == 4.0


def test_estimated_time_for_unknown_test():
    assert TestHistory().estimated_time("missing.cy.ts", default=2.5) == 2.5


# ── Run Results ─────────────────────────────────────────────────


def test_record_run_splits_duration_by_estimate():
    fast = make_test_case("foundation/a.cy.ts", estimated_time=1.0)
    slow = make_test_case("foundation/b.cy.ts", estimated_time=3.0)
    history = TestHistory()
    recorded = history.record_run(
        [_assignment(1, fast, slow)],
        [make_worker_result(1, duration=20.0)],
    )
    assert recorded == 2
    assert history.average_time("foundation/a.cy.ts") == pytest.approx(5.0)
    assert history.average_time("foundation/b.cy.ts") == pytest.approx(15.0)


def test_record_run_marks_failed_worker_unsuccessful():
    test = make_test_case("foundation/a.cy.ts")
    history = TestHistory()
    history.record_run(
        [_assignment(1, test)],
        [make_worker_result(1, WorkerStatus.FAILED, total=1, failed=1, duration=8.0)],
    )
    entry = history.entries["foundation/a.cy.ts"]
    assert entry.success_rate == 0.0
    assert entry.average_time is None


@pytest.mark.parametrize("status", [
    WorkerStatus.CRASHED,
    WorkerStatus.TIMED_OUT,
    WorkerStatus.TERMINATED,
])
def test_record_run_skips_unusable_timings(status):
    history = TestHistory()
    recorded = history.record_run(
        [_assignment(1, make_test_case("foundation/a.cy.ts"))],
        [make_worker_result(1, status, total=0)],
    )
    assert recorded == 0
    assert len(history) == 0


def test_record_run_ignores_unknown_worker():
    history = TestHistory()
    recorded = history.record_run(
        [_assignment(1, make_test_case("foundation/a.cy.ts"))],
        [make_worker_result(7)],
    )
    assert recorded == 0


# ── Persistence ─────────────────────────────────────────────────


def test_save_and_load(tmp_path):
    path = tmp_path / "nested" / "history.json"
    history = TestHistory(path)
    history.record("b.cy.ts", 4.0, success=True)
    history.record("a.cy.ts", 2.0, success=False)
    assert history.save() == path

    with open(path) as f:
        raw = json.load(f)
    assert list(raw) == ["a.cy.ts", "b.cy.ts"]
    assert raw["b.cy.ts"]["averageTime"] == 4.0
    assert raw["b.cy.ts"]["successRate"] == 1.0

    loaded = TestHistory.load(path)
    assert len(loaded) == 2
    assert loaded.average_time("b.cy.ts") == 4.0
    assert loaded.entries["a.cy.ts"].executions[0].success is False


def test_save_without_path_is_noop():
    assert TestHistory().save() is None


def test_load_missing_file(tmp_path):
    history = TestHistory.load(tmp_path / "missing.json")
    assert len(history) == 0
    assert history.path == tmp_path / "missing.json"


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"a.cy.ts": {"successRate": "x"}}'])
def test_load_corrupt_file_starts_empty(tmp_path, content):
    path = tmp_path / "history.json"
    path.write_text(content)
    assert len(TestHistory.load(path)) == 0
