import json
import sys
import textwrap
from pathlib import Path
from typing import Any

from shardrun.models.schedule import WorkerAssignment

from .base import EngineOptions, ExecutionEngine, SystemProbe

GB = 1024 ** 3


class MockSystemProbe(SystemProbe):
    """Scripted probe. Each list is consumed one entry per sample; the last
    entry repeats once the script runs out."""

    def __init__(
        self,
        memory: list[tuple[int, int]] | None = None,
        cpu: list[tuple[int, tuple[float, float, float]]] | None = None,
        disk: list[tuple[int, int, int]] | None = None,
    ):
        self.calls: list[tuple[str, tuple, dict]] = []
        self._memory = list(memory or [(16 * GB, 12 * GB)])
        self._cpu = list(cpu or [(8, (1.0, 1.0, 1.0))])
        self._disk = list(disk or [(500 * GB, 100 * GB, 400 * GB)])

    @staticmethod
    def _next(script: list):
        return script.pop(0) if len(script) > 1 else script[0]

    def memory(self) -> tuple[int, int]:
        self.calls.append(("memory", (), {}))
        return self._next(self._memory)

    def cpu(self) -> tuple[int, tuple[float, float, float]]:
        self.calls.append(("cpu", (), {}))
        return self._next(self._cpu)

    def disk(self, path: str) -> tuple[int, int, int]:
        self.calls.append(("disk", (path,), {}))
        return self._next(self._disk)

    def platform_info(self) -> dict[str, str]:
        return {"platform": "mock", "arch": "mock", "python": sys.version.split()[0]}


_WORKER_SCRIPT = textwrap.dedent('''\
    import json
    import sys
    import time

    spec = json.loads(sys.argv[1])
    result_file = sys.argv[2]
    print("worker running %d tests" % spec["tests"], flush=True)
    time.sleep(spec.get("sleep", 0))
    if not spec.get("crash"):
        with open(result_file, "w") as f:
            json.dump({"stats": {
                "tests": spec["tests"],
                "passes": spec["passes"],
                "failures": spec["failures"],
                "pending": spec["pending"],
                "duration": spec.get("duration", spec.get("sleep", 0)),
            }}, f)
    sys.exit(spec["exit_code"])
''')


class MockEngine(ExecutionEngine):
    """Engine that spawns a tiny Python worker instead of a real test runner.

    ``behaviors`` maps worker index to overrides: ``tests``, ``passes``,
    ``failures``, ``pending``, ``sleep``, ``exit_code``, ``crash`` (exit
    without writing a result). Unlisted workers pass every test.
    """

    name = "mock"

    def __init__(self, behaviors: dict[int, dict[str, Any]] | None = None):
        self.behaviors = behaviors or {}
        self.calls: list[tuple[str, tuple, dict]] = []

    def behavior_for(self, assignment: WorkerAssignment) -> dict[str, Any]:
        count = len(assignment.tests)
        spec: dict[str, Any] = {"tests": count, "passes": count, "failures": 0, "pending": 0}
        spec.update(self.behaviors.get(assignment.worker_index, {}))
        if "passes" not in self.behaviors.get(assignment.worker_index, {}):
            spec["passes"] = spec["tests"] - spec["failures"] - spec["pending"]
        spec.setdefault("exit_code", 1 if spec["failures"] or spec.get("crash") else 0)
        return spec

    def build_command(
        self, assignment: WorkerAssignment, artifact_dir: Path, options: EngineOptions
    ) -> list[str]:
        self.calls.append(("build_command", (assignment.worker_index,), {}))
        spec = self.behavior_for(assignment)
        return [
            sys.executable, "-c", _WORKER_SCRIPT,
            json.dumps(spec), str(self.result_file(artifact_dir)),
        ]
