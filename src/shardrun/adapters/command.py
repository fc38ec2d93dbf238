"""Generic engine: any command that writes the result contract to a file."""

from __future__ import annotations

from pathlib import Path

from shardrun.models.schedule import WorkerAssignment

from .base import EngineOptions, ExecutionEngine

TESTS_PLACEHOLDER = "{tests}"


class CommandEngine(ExecutionEngine):
    """Runs a command template per worker.

    ``{tests}`` as a whole argument expands to the shard's test paths.
    ``{result_file}``, ``{artifact_dir}`` and ``{worker_index}`` are
    substituted inside any argument. The command must write
    ``{tests, passes, failures, pending, duration}`` (seconds) as JSON to the
    result file, either at top level or under ``stats``.
    """

    name = "command"

    def __init__(self, template: list[str]):
        if not template:
            raise ValueError("CommandEngine requires a non-empty command template")
        self.template = list(template)

    def build_command(
        self, assignment: WorkerAssignment, artifact_dir: Path, options: EngineOptions
    ) -> list[str]:
        values = {
            "result_file": str(self.result_file(artifact_dir)),
            "artifact_dir": str(artifact_dir),
            "worker_index": str(assignment.worker_index),
        }
        cmd: list[str] = []
        for arg in self.template:
            if arg == TESTS_PLACEHOLDER:
                cmd.extend(assignment.test_paths)
                continue
            for key, value in values.items():
                arg = arg.replace("{" + key + "}", value)
            cmd.append(arg)
        return cmd
