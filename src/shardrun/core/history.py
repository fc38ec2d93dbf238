"""Per-test execution history used to refine duration estimates."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from shardrun.models.catalog import TestExecution, TestHistoryEntry
from shardrun.models.enums import WorkerStatus
from shardrun.models.results import WorkerResult
from shardrun.models.schedule import WorkerAssignment

logger = logging.getLogger(__name__)

MAX_EXECUTIONS = 10


class TestHistory:
    """Keeps the last ``MAX_EXECUTIONS`` runs of every test file.

    The average only counts successful runs, so a test that keeps timing out
    does not inflate its own estimate.
    """

    __test__ = False

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.entries: dict[str, TestHistoryEntry] = {}

    @classmethod
    def load(cls, path: str | Path) -> TestHistory:
        history = cls(path)
        if not history.path.exists():
            logger.debug("No test history at %s", history.path)
            return history
        try:
            with open(history.path) as f:
                raw = json.load(f)
            history.entries = {
                test_path: TestHistoryEntry.model_validate(entry)
                for test_path, entry in raw.items()
            }
        except (OSError, json.JSONDecodeError, AttributeError, ValidationError) as e:
            logger.warning("Ignoring unreadable test history %s: %s", history.path, e)
            history.entries = {}
        else:
            logger.info("Loaded history for %d tests from %s", len(history.entries), history.path)
        return history

    def save(self, path: str | Path | None = None) -> Path | None:
        target = Path(path) if path else self.path
        if target is None:
            return None
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            test_path: entry.model_dump(mode="json", by_alias=True)
            for test_path, entry in sorted(self.entries.items())
        }
        with open(target, "w") as f:
            json.dump(payload, f, indent=2)
        logger.debug("Saved test history to %s", target)
        return target

    def __contains__(self, test_path: str) -> bool:
        return test_path in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def average_time(self, test_path: str) -> float | None:
        entry = self.entries.get(test_path)
        return entry.average_time if entry else None

    def estimated_time(self, test_path: str, default: float) -> float:
        average = self.average_time(test_path)
        return average if average is not None else default

    def record(self, test_path: str, time: float, success: bool) -> TestHistoryEntry:
        entry = self.entries.get(test_path) or TestHistoryEntry()
        executions = [
            *entry.executions,
            TestExecution(time=time, success=success, timestamp=datetime.now(timezone.utc)),
        ][-MAX_EXECUTIONS:]

        successful = [e.time for e in executions if e.success]
        updated = TestHistoryEntry(
            executions=executions,
            average_time=sum(successful) / len(successful) if successful else entry.average_time,
            success_rate=len(successful) / len(executions),
        )
        self.entries[test_path] = updated
        return updated

    def record_run(
        self, assignments: list[WorkerAssignment], results: list[WorkerResult]
    ) -> int:
        """Fold one run's worker durations back into per-test history.

        A worker only reports its own wall time, so it is split across its
        tests in proportion to their estimates. Workers that crashed, timed
        out or were terminated carry no usable timing and are skipped.
        Returns the number of tests recorded.
        """
        by_index = {a.worker_index: a for a in assignments}
        recorded = 0
        for result in results:
            if result.status not in (WorkerStatus.SUCCEEDED, WorkerStatus.FAILED):
                continue
            assignment = by_index.get(result.worker_index)
            if assignment is None or not assignment.tests:
                continue
            success = result.status == WorkerStatus.SUCCEEDED
            total_estimate = sum(t.estimated_time for t in assignment.tests)
            for test in assignment.tests:
                if total_estimate > 0:
                    share = test.estimated_time / total_estimate
                else:
                    share = 1 / len(assignment.tests)
                self.record(test.relative_path, result.duration * share, success)
                recorded += 1
        return recorded
