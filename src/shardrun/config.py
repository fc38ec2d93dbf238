from pathlib import Path

from pydantic_settings import BaseSettings

from shardrun.models.enums import EngineKind, SchedulingStrategy

MB = 1024 * 1024


class Settings(BaseSettings):
    model_config = {"env_prefix": "SHARDRUN_"}

    # Layout (relative paths resolve against base_dir)
    base_dir: str = "ui"
    test_dir: str = "cypress/e2e"
    reports_dir: str = "cypress/reports"
    results_dir: str = "cypress/results"
    workers_dir: str = "cypress/workers"
    groups_file: str | None = None
    history_file: str | None = None
    smoke_only: bool = False

    # Worker budget
    workers: int | None = None  # explicit override; auto-detected if None
    max_workers_cap: int = 8
    ci_worker_cap: int = 4
    dev_worker_cap: int = 6
    memory_per_worker: int = 400 * MB
    free_memory_fraction: float = 0.8  # share of free memory handed to the scheduler

    # Scheduling
    strategy: SchedulingStrategy = SchedulingStrategy.BALANCED
    worker_memory_budget: int = 800 * MB
    rebalance_iterations: int = 10

    # Resource Monitor
    memory_limit_percent: float = 85.0
    cpu_threshold: float = 90.0
    disk_buffer: int = 100 * MB
    memory_emergency_percent: float = 90.0
    cpu_emergency_percent: float = 95.0
    monitor_interval: float = 5.0
    history_size: int = 100
    disk_path: str = "."

    # Worker pool
    worker_timeout: float = 300.0
    termination_grace: float = 5.0
    spawn_delay: float = 1.0

    # Execution engine
    engine: EngineKind = EngineKind.CYPRESS
    engine_command: list[str] = []
    browser: str = "electron"
    headless: bool = True
    video: bool = True
    quiet: bool = True

    # Profiles
    ci: bool = False
    dev: bool = False

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    def resolve(self, path: str) -> Path:
        """Resolve a layout path against base_dir (absolute paths pass through)."""
        return Path(self.base_dir) / path

    @property
    def test_root(self) -> Path:
        return self.resolve(self.test_dir)

    @property
    def reports_path(self) -> Path:
        return self.resolve(self.reports_dir)

    @property
    def results_path(self) -> Path:
        return self.resolve(self.results_dir)

    @property
    def workers_path(self) -> Path:
        return self.resolve(self.workers_dir)
