import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from shardrun.models.results import EngineReport
from shardrun.models.schedule import WorkerAssignment

logger = logging.getLogger(__name__)


class SystemProbe(ABC):
    @abstractmethod
    def memory(self) -> tuple[int, int]:
        """Return (total, available) memory in bytes."""

    @abstractmethod
    def cpu(self) -> tuple[int, tuple[float, float, float]]:
        """Return (logical cores, 1/5/15-minute load averages)."""

    @abstractmethod
    def disk(self, path: str) -> tuple[int, int, int]:
        """Return (total, used, free) bytes for the filesystem holding path."""

    def platform_info(self) -> dict[str, str]:
        return {}


@dataclass
class EngineOptions:
    browser: str = "electron"
    headless: bool = True
    video: bool = True
    quiet: bool = True


class ExecutionEngine(ABC):
    """Runs one worker's shard as an opaque subprocess.

    The only contract with the engine is the result file it leaves in the
    worker's artifact directory: test/pass/failure/pending counts plus a
    duration.
    """

    name = "engine"
    result_filename = "results.json"
    duration_unit = 1.0  # multiplier converting the reported duration to seconds

    @abstractmethod
    def build_command(
        self, assignment: WorkerAssignment, artifact_dir: Path, options: EngineOptions
    ) -> list[str]:
        """Return argv for the worker process."""

    def result_file(self, artifact_dir: Path) -> Path:
        return artifact_dir / self.result_filename

    def build_env(self, assignment: WorkerAssignment, artifact_dir: Path) -> dict[str, str]:
        env = dict(os.environ)
        env.update({
            "SHARDRUN_WORKER_ID": str(assignment.worker_index),
            "SHARDRUN_RESULT_FILE": str(self.result_file(artifact_dir)),
            "SHARDRUN_ARTIFACT_DIR": str(artifact_dir),
            "SHARDRUN_PARALLEL_MODE": "true",
        })
        return env

    def parse_result(self, path: Path) -> EngineReport | None:
        """Read the engine's result file. None if missing or unreadable."""
        if not path.exists():
            logger.warning("Result file not found: %s", path)
            return None
        try:
            with open(path) as f:
                payload = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to read result file: %s", path)
            return None
        if not isinstance(payload, dict):
            logger.warning("Unexpected result payload in %s", path)
            return None
        return EngineReport.from_payload(payload, duration_unit=self.duration_unit)
