import logging

from shardrun import __version__
from shardrun.adapters.base import ExecutionEngine, SystemProbe
from shardrun.config import Settings
from shardrun.core.discovery import TestDiscoverer, load_test_groups
from shardrun.core.history import TestHistory
from shardrun.core.orchestrator import Orchestrator
from shardrun.core.reporter import ReportGenerator
from shardrun.core.resource_monitor import ResourceMonitor
from shardrun.core.scheduler import TestScheduler
from shardrun.core.worker_pool import WorkerPoolManager
from shardrun.models.catalog import default_test_groups
from shardrun.models.enums import EngineKind

logger = logging.getLogger(__name__)


def _build_probe() -> SystemProbe:
    from shardrun.adapters.system import PsutilProbe

    return PsutilProbe()


def build_engine(settings: Settings) -> ExecutionEngine:
    """Build the execution engine: a command template if configured, Cypress otherwise."""
    if settings.engine == EngineKind.COMMAND:
        from shardrun.adapters.command import CommandEngine

        return CommandEngine(settings.engine_command)

    from shardrun.adapters.cypress import CypressEngine

    return CypressEngine(settings.engine_command or None)


def build_orchestrator(
    settings: Settings,
    *,
    probe: SystemProbe | None = None,
    engine: ExecutionEngine | None = None,
) -> Orchestrator:
    """Wire every component of a run from one Settings object."""
    groups = (
        load_test_groups(settings.resolve(settings.groups_file))
        if settings.groups_file else default_test_groups()
    )
    history = None
    if settings.history_file:
        history = TestHistory.load(settings.resolve(settings.history_file))

    monitor = ResourceMonitor(settings, probe or _build_probe())
    discoverer = TestDiscoverer(
        settings.test_root, groups, history=history, smoke_only=settings.smoke_only,
    )
    scheduler = TestScheduler(
        groups,
        strategy=settings.strategy,
        worker_memory_budget=settings.worker_memory_budget,
        rebalance_iterations=settings.rebalance_iterations,
    )
    pool = WorkerPoolManager(settings, engine or build_engine(settings))
    reporter = ReportGenerator(settings.reports_path, version=__version__)

    logger.debug("shardrun v%s: %d test groups, engine %s", __version__, len(groups), pool.engine.name)
    return Orchestrator(settings, monitor, discoverer, scheduler, pool, reporter, history=history)
