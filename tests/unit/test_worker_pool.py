import asyncio
import json

from shardrun.adapters.base import EngineOptions
from shardrun.adapters.mock import MockEngine
from shardrun.core.worker_pool import WorkerPoolManager
from shardrun.models.enums import SchedulingStrategy, WorkerStatus
from shardrun.models.schedule import ScheduleResult, WorkerAssignment

from .conftest import make_test_case


def _schedule(workers=3, tests_per_worker=2):
    assignments = []
    for w in range(1, workers + 1):
        tests = tuple(
            make_test_case(f"foundation/w{w}-t{t}.cy.ts", estimated_time=1.0)
            for t in range(tests_per_worker)
        )
        assignments.append(WorkerAssignment(
            worker_index=w,
            tests=tests,
            total_time=float(len(tests)),
            groups=("fast",),
        ))
    return ScheduleResult(strategy=SchedulingStrategy.BALANCED, assignments=assignments)


async def _wait_until_running(pool, count, timeout=10.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        handles = list(pool._handles.values())
        if len(handles) == count and all(h.alive for h in handles):
            return
        await asyncio.sleep(0.05)
    raise AssertionError("workers did not start")


# ── Outcomes ────────────────────────────────────────────────────


async def test_all_workers_succeed(settings):
    pool = WorkerPoolManager(settings, MockEngine())
    summary = await pool.run_workers(_schedule(3), EngineOptions())

    assert summary.total_workers == 3
    assert summary.successful_workers == 3
    assert summary.failed_workers == 0
    assert summary.error_workers == 0
    assert [r.worker_index for r in summary.results] == [1, 2, 3]
    for result in summary.results:
        assert result.status == WorkerStatus.SUCCEEDED
        assert result.stats.total == 2
        assert result.stats.passed == 2
        assert result.exit_code == 0
        assert result.duration > 0
        assert len(result.tests) == 2
    assert summary.total_duration == max(r.duration for r in summary.results)


async def test_worker_output_captured_in_artifact_dir(settings):
    pool = WorkerPoolManager(settings, MockEngine())
    summary = await pool.run_workers(_schedule(1), EngineOptions())
    result = summary.results[0]
    assert result.artifact_dir == str(settings.results_path / "worker-1")
    with open(result.log_path) as f:
        assert "worker running 2 tests" in f.read()


async def test_failed_tests_mark_worker_failed(settings):
    pool = WorkerPoolManager(settings, MockEngine({2: {"failures": 1}}))
    summary = await pool.run_workers(_schedule(3), EngineOptions())

    statuses = [r.status for r in summary.results]
    assert statuses == [WorkerStatus.SUCCEEDED, WorkerStatus.FAILED, WorkerStatus.SUCCEEDED]
    assert summary.results[1].stats.failed == 1
    assert summary.results[1].stats.passed == 1
    assert summary.failed_workers == 1


async def test_nonzero_exit_without_failures_is_failed(settings):
    pool = WorkerPoolManager(settings, MockEngine({1: {"exit_code": 3}}))
    summary = await pool.run_workers(_schedule(1), EngineOptions())
    assert summary.results[0].status == WorkerStatus.FAILED
    assert summary.results[0].exit_code == 3


async def test_missing_result_is_crash(settings):
    pool = WorkerPoolManager(settings, MockEngine({1: {"crash": True}}))
    summary = await pool.run_workers(_schedule(2), EngineOptions())

    crashed, ok = summary.results
    assert crashed.status == WorkerStatus.CRASHED
    assert "No result file" in crashed.error
    assert ok.status == WorkerStatus.SUCCEEDED
    assert summary.error_workers == 1


async def test_stale_result_file_is_not_reused(settings):
    stale = settings.results_path / "worker-1"
    stale.mkdir(parents=True)
    (stale / "results.json").write_text(json.dumps({"tests": 2, "passes": 2}))

    pool = WorkerPoolManager(settings, MockEngine({1: {"crash": True, "exit_code": 0}}))
    summary = await pool.run_workers(_schedule(1), EngineOptions())
    assert summary.results[0].status == WorkerStatus.CRASHED


async def test_spawn_failure_is_crash(settings):
    class MissingBinaryEngine(MockEngine):
        def build_command(self, assignment, artifact_dir, options):
            if assignment.worker_index == 1:
                return ["/nonexistent/shardrun-engine"]
            return super().build_command(assignment, artifact_dir, options)

    pool = WorkerPoolManager(settings, MissingBinaryEngine())
    summary = await pool.run_workers(_schedule(2), EngineOptions())

    assert summary.results[0].status == WorkerStatus.CRASHED
    assert "Failed to spawn" in summary.results[0].error
    assert summary.results[1].status == WorkerStatus.SUCCEEDED


async def test_timeout_does_not_cancel_siblings(settings):
    settings.worker_timeout = 1.0
    pool = WorkerPoolManager(settings, MockEngine({1: {"sleep": 30}}))
    summary = await pool.run_workers(_schedule(2), EngineOptions())

    timed_out, ok = summary.results
    assert timed_out.status == WorkerStatus.TIMED_OUT
    assert "Timed out" in timed_out.error
    assert timed_out.duration < 15
    assert ok.status == WorkerStatus.SUCCEEDED
    assert summary.failed_workers == 1


async def test_results_in_worker_order_regardless_of_completion(settings):
    pool = WorkerPoolManager(settings, MockEngine({1: {"sleep": 1.0}}))
    summary = await pool.run_workers(_schedule(3), EngineOptions())
    assert [r.worker_index for r in summary.results] == [1, 2, 3]
    assert summary.results[0].end_time > summary.results[2].end_time


async def test_engine_receives_each_assignment(settings):
    engine = MockEngine()
    pool = WorkerPoolManager(settings, engine)
    await pool.run_workers(_schedule(3), EngineOptions())
    assert sorted(c[1][0] for c in engine.calls if c[0] == "build_command") == [1, 2, 3]


# ── Termination ─────────────────────────────────────────────────


async def test_terminate_all_workers(settings):
    pool = WorkerPoolManager(settings, MockEngine({i: {"sleep": 30} for i in (1, 2, 3)}))
    run = asyncio.create_task(pool.run_workers(_schedule(3), EngineOptions()))
    await _wait_until_running(pool, 3)

    assert pool.completed_results() == []
    await pool.terminate_all_workers("emergency")
    summary = await asyncio.wait_for(run, timeout=15)

    assert all(r.status == WorkerStatus.TERMINATED for r in summary.results)
    assert summary.error_workers == 3
    assert "emergency" in summary.results[0].error


async def test_terminate_all_workers_is_idempotent(settings):
    pool = WorkerPoolManager(settings, MockEngine({1: {"sleep": 30}}))
    run = asyncio.create_task(pool.run_workers(_schedule(1), EngineOptions()))
    await _wait_until_running(pool, 1)

    await pool.terminate_all_workers("signal")
    await pool.terminate_all_workers("emergency")
    summary = await asyncio.wait_for(run, timeout=15)
    assert summary.results[0].status == WorkerStatus.TERMINATED
    assert "signal" in summary.results[0].error


async def test_terminate_keeps_finished_results(settings):
    pool = WorkerPoolManager(settings, MockEngine({2: {"sleep": 30}}))
    run = asyncio.create_task(pool.run_workers(_schedule(2), EngineOptions()))

    loop = asyncio.get_running_loop()
    deadline = loop.time() + 10
    while not pool.completed_results() and loop.time() < deadline:
        await asyncio.sleep(0.05)
    arrived = pool.completed_results()
    assert [r.worker_index for r in arrived] == [1]

    await pool.terminate_all_workers("emergency")
    summary = await asyncio.wait_for(run, timeout=15)
    assert summary.results[0].status == WorkerStatus.SUCCEEDED
    assert summary.results[1].status == WorkerStatus.TERMINATED


async def test_terminate_before_run_is_harmless(settings):
    pool = WorkerPoolManager(settings, MockEngine())
    await pool.terminate_all_workers("signal")
    summary = await pool.run_workers(_schedule(2), EngineOptions())
    assert all(r.status == WorkerStatus.TERMINATED for r in summary.results)


# ── Cleanup ─────────────────────────────────────────────────────


async def test_cleanup_removes_spec_files(settings):
    pool = WorkerPoolManager(settings, MockEngine())
    await pool.run_workers(_schedule(2), EngineOptions())
    spec_file = settings.workers_path / "worker-1.json"
    assert json.loads(spec_file.read_text())["workerId"] == 1

    await pool.cleanup()
    assert not (settings.workers_path / "worker-1.json").exists()
    assert not settings.workers_path.exists()
    # Idempotent
    await pool.cleanup()


async def test_cleanup_kills_leftover_processes(settings):
    pool = WorkerPoolManager(settings, MockEngine({1: {"sleep": 30}}))
    run = asyncio.create_task(pool.run_workers(_schedule(1), EngineOptions()))
    await _wait_until_running(pool, 1)

    await pool.cleanup()
    summary = await asyncio.wait_for(run, timeout=15)
    assert summary.results[0].status != WorkerStatus.SUCCEEDED
    assert not pool._handles[1].alive


async def test_empty_schedule(settings):
    pool = WorkerPoolManager(settings, MockEngine())
    summary = await pool.run_workers(_schedule(0), EngineOptions())
    assert summary.total_workers == 0
    assert summary.results == []
