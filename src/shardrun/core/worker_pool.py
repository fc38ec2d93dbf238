"""Worker Pool Manager: one OS process per shard, supervised by one task each."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from shardrun.adapters.base import EngineOptions, ExecutionEngine
from shardrun.config import Settings
from shardrun.models.enums import WorkerStatus
from shardrun.models.results import PoolSummary, WorkerResult, WorkerStats
from shardrun.models.schedule import ScheduleResult, WorkerAssignment

logger = logging.getLogger(__name__)


@dataclass
class _WorkerHandle:
    assignment: WorkerAssignment
    artifact_dir: Path
    log_path: Path
    spec_file: Path
    channel: asyncio.Future
    process: asyncio.subprocess.Process | None = None
    start_time: datetime | None = None
    started_at: float = 0.0
    terminated: bool = False

    @property
    def index(self) -> int:
        return self.assignment.worker_index

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.returncode is None


class WorkerPoolManager:
    """
    Spawns the shards of a schedule, enforces the per-worker timeout and
    collects exactly one WorkerResult per worker. One worker failing never
    cancels its siblings; only terminate_all_workers stops everything.
    """

    def __init__(self, settings: Settings, engine: ExecutionEngine):
        self.settings = settings
        self.engine = engine
        self.results_dir = settings.results_path
        self.workers_dir = settings.workers_path
        self.cwd = settings.base_dir if os.path.isdir(settings.base_dir) else None

        self._handles: dict[int, _WorkerHandle] = {}
        self._results: dict[int, WorkerResult] = {}
        self._tasks: list[asyncio.Task] = []
        self._terminate_reason: str | None = None

    @property
    def terminating(self) -> bool:
        return self._terminate_reason is not None

    # ── Run ─────────────────────────────────────────────────────

    async def run_workers(self, schedule: ScheduleResult, options: EngineOptions) -> PoolSummary:
        """Run every assignment and return results in worker-index order."""
        loop = asyncio.get_running_loop()
        self.results_dir.mkdir(parents=True, exist_ok=True)
        self.workers_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Starting %d workers", len(schedule.assignments))
        handles: list[_WorkerHandle] = []
        for position, assignment in enumerate(schedule.assignments):
            if position and self.settings.spawn_delay > 0 and not self.terminating:
                # Stagger start-up so workers don't all boot at once
                await asyncio.sleep(self.settings.spawn_delay)
            handle = self._prepare(assignment, loop)
            handles.append(handle)
            self._tasks.append(
                asyncio.create_task(self._supervise(handle, options), name=f"worker-{handle.index}")
            )

        results = [await h.channel for h in handles]
        await asyncio.gather(*self._tasks)

        summary = PoolSummary.from_results(results)
        logger.info(
            "Workers finished: %d successful, %d failed, %d errors",
            summary.successful_workers, summary.failed_workers, summary.error_workers,
        )
        return summary

    def completed_results(self) -> list[WorkerResult]:
        """Results that have already arrived, in worker-index order."""
        return [self._results[i] for i in sorted(self._results)]

    def _prepare(self, assignment: WorkerAssignment, loop: asyncio.AbstractEventLoop) -> _WorkerHandle:
        artifact_dir = self.results_dir / f"worker-{assignment.worker_index}"
        artifact_dir.mkdir(parents=True, exist_ok=True)
        # A stale result from an earlier run must never be read as this run's
        self.engine.result_file(artifact_dir).unlink(missing_ok=True)

        spec_file = self.workers_dir / f"worker-{assignment.worker_index}.json"
        with open(spec_file, "w") as f:
            json.dump({
                "workerId": assignment.worker_index,
                "tests": assignment.test_paths,
                "groups": list(assignment.groups),
                "estimatedTime": assignment.total_time,
            }, f, indent=2)

        handle = _WorkerHandle(
            assignment=assignment,
            artifact_dir=artifact_dir,
            log_path=artifact_dir / "output.log",
            spec_file=spec_file,
            channel=loop.create_future(),
        )
        self._handles[assignment.worker_index] = handle
        return handle

    async def _supervise(self, handle: _WorkerHandle, options: EngineOptions) -> None:
        try:
            result = await self._run_worker(handle, options)
        except Exception as e:
            logger.exception("Worker %d supervisor failed", handle.index)
            result = self._result(handle, WorkerStatus.CRASHED, error=str(e))
        self._results[handle.index] = result
        if not handle.channel.done():
            handle.channel.set_result(result)

    async def _run_worker(self, handle: _WorkerHandle, options: EngineOptions) -> WorkerResult:
        loop = asyncio.get_running_loop()
        handle.start_time = datetime.now(timezone.utc)
        handle.started_at = loop.time()

        if self.terminating:
            handle.terminated = True
            return self._result(
                handle, WorkerStatus.TERMINATED, error=f"Not started: {self._terminate_reason}",
            )

        assignment = handle.assignment
        cmd = self.engine.build_command(assignment, handle.artifact_dir, options)
        env = self.engine.build_env(assignment, handle.artifact_dir)
        logger.info("Spawning worker %d with %d tests", handle.index, len(assignment.tests))
        logger.debug("Worker %d command: %s", handle.index, " ".join(cmd))

        try:
            with open(handle.log_path, "wb") as log:
                handle.process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=log,
                    stderr=asyncio.subprocess.STDOUT,
                    stdin=asyncio.subprocess.DEVNULL,
                    cwd=self.cwd,
                    env=env,
                )
        except OSError as e:
            logger.error("Failed to spawn worker %d: %s", handle.index, e)
            return self._result(handle, WorkerStatus.CRASHED, error=f"Failed to spawn worker: {e}")

        process = handle.process
        logger.info("Worker %d started (PID %d)", handle.index, process.pid)
        if handle.terminated:
            # terminate_all_workers ran while the process was being spawned
            await self._stop_process(handle)

        timeout = self.settings.worker_timeout
        try:
            exit_code = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Worker %d timed out after %.0fs", handle.index, timeout)
            await self._stop_process(handle)
            return self._result(
                handle, WorkerStatus.TIMED_OUT,
                exit_code=process.returncode, error=f"Timed out after {timeout:.0f}s",
            )

        if handle.terminated:
            logger.warning("Worker %d terminated (exit code %s)", handle.index, exit_code)
            return self._result(
                handle, WorkerStatus.TERMINATED,
                exit_code=exit_code, error=f"Terminated: {self._terminate_reason}",
            )

        report = self.engine.parse_result(self.engine.result_file(handle.artifact_dir))
        if report is None:
            logger.error("Worker %d exited with code %s and left no results", handle.index, exit_code)
            return self._result(
                handle, WorkerStatus.CRASHED,
                exit_code=exit_code, error=f"No result file (exit code {exit_code})",
            )

        stats = WorkerStats.from_report(report)
        if exit_code == 0 and stats.failed == 0:
            status = WorkerStatus.SUCCEEDED
            logger.info("Worker %d completed: %d/%d passed", handle.index, stats.passed, stats.total)
        else:
            status = WorkerStatus.FAILED
            logger.warning(
                "Worker %d failed: %d failures, exit code %s", handle.index, stats.failed, exit_code,
            )
        return self._result(handle, status, stats=stats, exit_code=exit_code)

    def _result(
        self,
        handle: _WorkerHandle,
        status: WorkerStatus,
        stats: WorkerStats | None = None,
        exit_code: int | None = None,
        error: str | None = None,
    ) -> WorkerResult:
        loop = asyncio.get_running_loop()
        duration = loop.time() - handle.started_at if handle.started_at else 0.0
        return WorkerResult(
            worker_index=handle.index,
            status=status,
            stats=stats or WorkerStats(),
            duration=max(duration, 0.0),
            exit_code=exit_code,
            tests=handle.assignment.test_paths,
            log_path=str(handle.log_path),
            artifact_dir=str(handle.artifact_dir),
            error=error,
            start_time=handle.start_time,
            end_time=datetime.now(timezone.utc),
        )

    # ── Termination ─────────────────────────────────────────────

    async def _stop_process(self, handle: _WorkerHandle) -> None:
        """SIGTERM, wait up to the grace period, then SIGKILL."""
        process = handle.process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.termination_grace)
        except asyncio.TimeoutError:
            logger.warning("Worker %d ignored SIGTERM, killing", handle.index)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def terminate_all_workers(self, reason: str) -> None:
        """Stop every live worker. Calling it again is a no-op."""
        if self.terminating:
            logger.debug("Termination already requested (%s)", self._terminate_reason)
            return
        self._terminate_reason = reason

        pending = [h for h in self._handles.values() if not h.channel.done()]
        for handle in pending:
            handle.terminated = True
        live = [h for h in pending if h.alive]
        logger.warning("Terminating %d workers: %s", len(live), reason)
        await asyncio.gather(*(self._stop_process(h) for h in live))

    async def cleanup(self) -> None:
        """Kill leftover processes and remove per-worker spec files."""
        for handle in self._handles.values():
            if handle.alive:
                logger.warning("Killing leftover worker %d", handle.index)
                try:
                    handle.process.kill()
                except ProcessLookupError:
                    continue
                await handle.process.wait()

        for handle in self._handles.values():
            handle.spec_file.unlink(missing_ok=True)
        try:
            self.workers_dir.rmdir()
        except OSError:
            # Not empty or already gone
            pass
        logger.debug("Worker pool cleaned up")
