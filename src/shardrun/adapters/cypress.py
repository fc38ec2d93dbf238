"""Cypress engine: one ``cypress run`` per worker with a JSON reporter."""

from __future__ import annotations

from pathlib import Path

from shardrun.models.schedule import WorkerAssignment

from .base import EngineOptions, ExecutionEngine


class CypressEngine(ExecutionEngine):
    name = "cypress"
    result_filename = "results-worker.json"
    duration_unit = 0.001  # mocha reports milliseconds

    def __init__(self, launcher: list[str] | None = None):
        self.launcher = launcher or ["npx", "cypress", "run"]

    def build_command(
        self, assignment: WorkerAssignment, artifact_dir: Path, options: EngineOptions
    ) -> list[str]:
        config = ",".join([
            f"video={str(options.video).lower()}",
            f"videosFolder={artifact_dir / 'videos'}",
            f"screenshotsFolder={artifact_dir / 'screenshots'}",
            "screenshotOnRunFailure=true",
        ])
        cmd = [
            *self.launcher,
            "--spec", ",".join(assignment.test_paths),
            "--reporter", "json",
            "--reporter-options", f"output={self.result_file(artifact_dir)}",
            "--config", config,
        ]
        if options.browser:
            cmd += ["--browser", options.browser]
        cmd.append("--headless" if options.headless else "--headed")
        if options.quiet:
            cmd.append("--quiet")
        return cmd

    def build_env(self, assignment: WorkerAssignment, artifact_dir: Path) -> dict[str, str]:
        env = super().build_env(assignment, artifact_dir)
        env["CYPRESS_WORKER_ID"] = str(assignment.worker_index)
        env["CYPRESS_PARALLEL_MODE"] = "true"
        return env
