import asyncio
import logging
import signal
from datetime import datetime, timezone

from shardrun.adapters.base import EngineOptions
from shardrun.config import Settings
from shardrun.core.discovery import TestDiscoverer
from shardrun.core.history import TestHistory
from shardrun.core.reporter import ReportGenerator
from shardrun.core.resource_monitor import ResourceMonitor
from shardrun.core.scheduler import TestScheduler
from shardrun.core.worker_pool import WorkerPoolManager
from shardrun.exceptions import (
    DiscoveryEmptyError,
    EmergencyShutdownError,
    ResourceUnsafeError,
    ShardrunError,
)
from shardrun.models.common import StatusTransition
from shardrun.models.enums import ResourceSignal, RunState
from shardrun.models.resources import EmergencyEvent
from shardrun.models.results import ExecutionReport, PoolSummary, WorkerResult
from shardrun.models.schedule import ScheduleResult, SchedulingConstraints

logger = logging.getLogger(__name__)

EMERGENCY_REASON = "emergency_shutdown"
SIGNAL_REASON = "signal_interrupt"

# SIGQUIT is missing on Windows
HANDLED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGQUIT") if hasattr(signal, name)
)

_TERMINAL_STATES = {RunState.COMPLETED, RunState.TERMINATED}


class Orchestrator:
    """
    Single owner of the run state machine:

        idle -> initializing -> scheduling -> running -> aggregating -> completed
        running -> emergency_shutdown -> terminated
        * -> terminated (signal or fatal error)

    The monitor, discoverer, scheduler, pool and reporter are injected; the
    Orchestrator is the sole subscriber to the monitor's signals.
    """

    def __init__(
        self,
        settings: Settings,
        monitor: ResourceMonitor,
        discoverer: TestDiscoverer,
        scheduler: TestScheduler,
        pool: WorkerPoolManager,
        reporter: ReportGenerator,
        history: TestHistory | None = None,
    ):
        self.settings = settings
        self.monitor = monitor
        self.discoverer = discoverer
        self.scheduler = scheduler
        self.pool = pool
        self.reporter = reporter
        self.history = history

        self.state = RunState.IDLE
        self.transitions: list[StatusTransition] = []
        self.schedule: ScheduleResult | None = None
        self.report: ExecutionReport | None = None
        self.partial_results: list[WorkerResult] | None = None
        self.error: ShardrunError | None = None
        self.emergency: EmergencyEvent | None = None

        self._abort: asyncio.Event | None = None
        self._abort_reason: str | None = None
        self._signals_installed: list[signal.Signals] = []
        self._handlers = {
            ResourceSignal.MEMORY_WARNING: self._on_memory_warning,
            ResourceSignal.CPU_WARNING: self._on_cpu_warning,
            ResourceSignal.DISK_WARNING: self._on_disk_warning,
            ResourceSignal.EMERGENCY: self._on_emergency,
        }

    # ── State Machine ───────────────────────────────────────────

    def transition(self, new_state: RunState) -> None:
        """Record a state transition with timestamp."""
        old_state = self.state
        self.transitions.append(StatusTransition(
            from_status=old_state.value,
            to_status=new_state.value,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ))
        self.state = new_state
        logger.info("Run state: %s -> %s", old_state.value, new_state.value)

    # ── Entry Point ─────────────────────────────────────────────

    async def run(self) -> int:
        """Execute one full run and return the process exit code."""
        try:
            return await self._run()
        except ShardrunError as e:
            self.error = e
            logger.critical("Test execution failed: %s", e)
            if self.state not in _TERMINAL_STATES:
                self.transition(RunState.TERMINATED)
            return 1
        finally:
            await self.shutdown()

    async def _run(self) -> int:
        self._abort = asyncio.Event()
        self.transition(RunState.INITIALIZING)
        self._subscribe()
        self._install_signal_handlers()
        self.monitor.start_monitoring()
        logger.info("System: %s", self.monitor.system_info())

        start_time = datetime.now(timezone.utc)
        snapshot = self.monitor.check_resources()
        if not snapshot.safe:
            raise ResourceUnsafeError(snapshot)

        worker_count = self.resolve_worker_count()

        self.transition(RunState.SCHEDULING)
        tests = self.discoverer.flatten(self.discoverer.discover())
        if not tests:
            raise DiscoveryEmptyError(f"No test files found under {self.discoverer.root}")
        constraints = SchedulingConstraints(
            max_memory=int(snapshot.memory.free * self.settings.free_memory_fraction),
            max_workers=self.settings.workers,
        )
        self.schedule = self.scheduler.schedule_tests(tests, worker_count, constraints)
        if self.schedule.is_empty:
            raise DiscoveryEmptyError("Scheduling produced no worker assignments")

        if self._abort.is_set():
            # Interrupted before any worker was spawned
            self.partial_results = []
            self.reporter.write_partial_results([], self._abort_reason or SIGNAL_REASON)
            return self._aborted_exit_code()

        self.transition(RunState.RUNNING)
        pool_summary = await self._run_workers(self.schedule)
        if pool_summary is None:
            return self._aborted_exit_code()

        self.transition(RunState.AGGREGATING)
        end_time = datetime.now(timezone.utc)
        self.report = self.reporter.build_report(
            pool_summary,
            start_time,
            end_time,
            resources=self.monitor.get_resource_summary(),
            schedule=self.schedule.stats(),
        )
        self.reporter.write_reports(self.report)
        self._update_history(pool_summary)
        self.transition(RunState.COMPLETED)

        summary = self.report.summary
        if summary.tests.failed or pool_summary.failed_workers or pool_summary.error_workers:
            logger.warning(
                "%d tests failed, %d workers failed, %d worker errors",
                summary.tests.failed, pool_summary.failed_workers, pool_summary.error_workers,
            )
            return 1
        return 0

    def resolve_worker_count(self) -> int:
        if self.settings.workers:
            return self.settings.workers
        workers = self.monitor.calculate_optimal_workers()
        if self.settings.ci:
            workers = min(workers, self.settings.ci_worker_cap)
        elif self.settings.dev:
            workers = min(workers, self.settings.dev_worker_cap)
        logger.info("Using %d workers", workers)
        return workers

    def engine_options(self) -> EngineOptions:
        return EngineOptions(
            browser=self.settings.browser,
            headless=self.settings.headless,
            video=self.settings.video,
            quiet=self.settings.quiet,
        )

    async def _run_workers(self, schedule: ScheduleResult) -> PoolSummary | None:
        """Race the pool against the abort event. None means the run was aborted."""
        run_task = asyncio.create_task(
            self.pool.run_workers(schedule, self.engine_options()), name="worker-pool",
        )
        abort_task = asyncio.create_task(self._abort.wait(), name="abort-wait")
        try:
            await asyncio.wait({run_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_task.cancel()

        if run_task.done() and not self._abort.is_set():
            return run_task.result()

        # Results that arrived before the kill, then stop everything else
        arrived = self.pool.completed_results()
        abort_reason = self._abort_reason or SIGNAL_REASON
        pool_reason = "emergency" if abort_reason == EMERGENCY_REASON else "signal"
        await self.pool.terminate_all_workers(pool_reason)
        await run_task
        self.partial_results = arrived
        self.reporter.write_partial_results(arrived, abort_reason)
        return None

    def _aborted_exit_code(self) -> int:
        if self.emergency is not None:
            self.error = EmergencyShutdownError(self.emergency)
            logger.critical("%s", self.error)
            self.transition(RunState.TERMINATED)
            return 1
        if self.state not in _TERMINAL_STATES:
            self.transition(RunState.TERMINATED)
        failed = sum(r.stats.failed for r in self.partial_results or [])
        return 1 if failed else 0

    def _update_history(self, pool_summary: PoolSummary) -> None:
        if self.history is None or self.schedule is None:
            return
        recorded = self.history.record_run(self.schedule.assignments, pool_summary.results)
        if self.history.path is not None:
            self.history.save()
        logger.info("Recorded timings for %d tests", recorded)

    # ── Signals ─────────────────────────────────────────────────

    def _subscribe(self) -> None:
        for resource_signal, handler in self._handlers.items():
            self.monitor.subscribe(resource_signal, handler)

    def _unsubscribe(self) -> None:
        for resource_signal, handler in self._handlers.items():
            self.monitor.unsubscribe(resource_signal, handler)

    def _on_memory_warning(self, memory) -> None:
        logger.warning("High memory usage: %.1f%%", memory.percentage)

    def _on_cpu_warning(self, cpu) -> None:
        logger.warning("High CPU usage: %.1f%%", cpu.percentage)

    def _on_disk_warning(self, disk) -> None:
        logger.warning("Low disk space: %d bytes available", disk.available)

    def _on_emergency(self, event: EmergencyEvent) -> None:
        if self.state != RunState.RUNNING:
            logger.warning("Ignoring %s emergency in state %s", event.type.value, self.state.value)
            return
        if self._abort_reason is not None:
            logger.warning("Ignoring %s emergency, shutdown already in progress", event.type.value)
            return
        logger.critical("Emergency shutdown triggered: %s", event.type.value)
        self.emergency = event
        self._abort_reason = EMERGENCY_REASON
        self.transition(RunState.EMERGENCY_SHUTDOWN)
        self._abort.set()

    def _on_os_signal(self, signum: signal.Signals) -> None:
        if self._abort_reason is not None:
            logger.warning("Received %s, shutdown already in progress", signum.name)
            return
        logger.warning("Received %s, shutting down", signum.name)
        self._abort_reason = SIGNAL_REASON
        if self._abort is not None:
            self._abort.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(signum, self._on_os_signal, signum)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers unavailable for %s", signum.name)
                continue
            self._signals_installed.append(signum)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._signals_installed:
            loop.remove_signal_handler(signum)
        self._signals_installed = []

    # ── Shutdown ────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop monitoring and release the pool on every exit path."""
        self._unsubscribe()
        await self.monitor.stop_monitoring()
        await self.pool.cleanup()
        self._remove_signal_handlers()
