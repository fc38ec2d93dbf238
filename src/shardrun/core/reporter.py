"""Result aggregation, parallel-efficiency metrics and report files."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from shardrun import __version__
from shardrun.models.resources import ResourceSummary
from shardrun.models.results import (
    ExecutionInfo,
    ExecutionReport,
    ParallelEfficiency,
    PartialReport,
    PoolSummary,
    ReportSummary,
    TestTotals,
    WorkerCounts,
    WorkerResult,
)
from shardrun.models.schedule import ScheduleStats

logger = logging.getLogger(__name__)

RESULTS_FILE = "parallel-test-results.json"
SUMMARY_FILE = "parallel-test-summary.txt"
PARTIAL_FILE = "partial-results.json"

# Zero durations are replaced by 1 ms so every ratio stays finite
MIN_DURATION = 0.001


def aggregate_test_results(results: list[WorkerResult]) -> TestTotals:
    total = sum(r.stats.total for r in results)
    passed = sum(r.stats.passed for r in results)
    return TestTotals(
        total=total,
        passed=passed,
        failed=sum(r.stats.failed for r in results),
        skipped=sum(r.stats.skipped for r in results),
        pass_rate=(passed / total) * 100 if total > 0 else 0.0,
    )


def calculate_parallel_efficiency(
    results: list[WorkerResult], total_duration: float
) -> ParallelEfficiency:
    """Compare the summed worker time with the wall-clock time of the run.

    efficiency is capped at 1, speedup floored at 1, time_reduction floored at
    0 and percentage_improvement clamped to [0, 100].
    """
    sequential = sum(max(r.duration, 0.0) for r in results)
    wall = max(total_duration, MIN_DURATION)
    ratio = sequential / wall
    improvement = (sequential - wall) / max(sequential, MIN_DURATION) * 100
    return ParallelEfficiency(
        efficiency=min(ratio, 1.0),
        speedup=max(ratio, 1.0),
        time_reduction=max(0.0, sequential - wall),
        percentage_improvement=min(max(improvement, 0.0), 100.0),
    )


class ReportGenerator:
    def __init__(self, reports_dir: str | Path, version: str = __version__):
        self.reports_dir = Path(reports_dir)
        self.version = version

    def build_report(
        self,
        pool: PoolSummary,
        start_time: datetime,
        end_time: datetime,
        resources: ResourceSummary | None = None,
        schedule: ScheduleStats | None = None,
    ) -> ExecutionReport:
        total_duration = (end_time - start_time).total_seconds()
        summary = ReportSummary(
            execution=ExecutionInfo(
                start_time=start_time,
                end_time=end_time,
                total_duration=total_duration,
                parallel_efficiency=calculate_parallel_efficiency(pool.results, total_duration),
            ),
            workers=WorkerCounts(
                total=pool.total_workers,
                successful=pool.successful_workers,
                failed=pool.failed_workers,
                errors=pool.error_workers,
            ),
            tests=aggregate_test_results(pool.results),
            resources=resources,
            schedule=schedule,
        )
        return ExecutionReport(
            summary=summary,
            worker_results=pool.results,
            timestamp=datetime.now(timezone.utc),
            version=self.version,
        )

    def _write_json(self, name: str, payload: dict) -> Path:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / name
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
        return path

    def write_reports(self, report: ExecutionReport) -> tuple[Path, Path]:
        """Write the JSON report and its plain-text mirror."""
        json_path = self._write_json(RESULTS_FILE, report.model_dump(mode="json", by_alias=True))
        text_path = self.reports_dir / SUMMARY_FILE
        text_path.write_text(self.format_summary(report.summary))
        logger.info("Reports generated in %s", self.reports_dir)
        return json_path, text_path

    def write_partial_results(self, results: list[WorkerResult], reason: str) -> Path:
        partial = PartialReport(
            reason=reason,
            results=PoolSummary.from_results(results),
            timestamp=datetime.now(timezone.utc),
        )
        path = self._write_json(PARTIAL_FILE, partial.model_dump(mode="json", by_alias=True))
        logger.warning("Partial results (%d workers) saved to %s", len(results), path)
        return path

    @staticmethod
    def format_summary(summary: ReportSummary) -> str:
        execution, workers, tests = summary.execution, summary.workers, summary.tests
        resources = summary.resources
        efficiency = execution.parallel_efficiency

        if resources:
            peak_memory = f"{resources.peak_memory:.1f}%"
            average_cpu = f"{resources.averages.cpu:.1f}%"
            optimal_workers = str(resources.optimal_workers)
        else:
            peak_memory = average_cpu = optimal_workers = "N/A"

        lines = [
            "Parallel Test Execution Summary",
            "===============================",
            "",
            "Execution Details:",
            f"- Start Time: {execution.start_time.isoformat()}",
            f"- End Time: {execution.end_time.isoformat()}",
            f"- Total Duration: {execution.total_duration:.1f}s",
            f"- Parallel Efficiency: {efficiency.efficiency * 100:.1f}%",
            f"- Speedup: {efficiency.speedup:.2f}x",
            f"- Speed Improvement: {efficiency.percentage_improvement:.1f}%",
            "",
            "Worker Statistics:",
            f"- Total Workers: {workers.total}",
            f"- Successful: {workers.successful}",
            f"- Failed: {workers.failed}",
            f"- Errors: {workers.errors}",
            "",
            "Test Results:",
            f"- Total Tests: {tests.total}",
            f"- Passed: {tests.passed}",
            f"- Failed: {tests.failed}",
            f"- Skipped: {tests.skipped}",
            f"- Pass Rate: {tests.pass_rate:.1f}%",
            "",
            "Resource Usage:",
            f"- Peak Memory: {peak_memory}",
            f"- Average CPU: {average_cpu}",
            f"- Optimal Workers: {optimal_workers}",
        ]
        if summary.schedule:
            lines += [
                "",
                "Schedule:",
                f"- Strategy: {summary.schedule.strategy.value}",
                f"- Estimated Time: {summary.schedule.estimated_total_time:.1f}s",
                f"- Load Balance: {summary.schedule.load_balance:.1f}%",
            ]
        lines += ["", f"Generated: {datetime.now(timezone.utc).isoformat()}", ""]
        return "\n".join(lines)

    @staticmethod
    def format_results(summary: ReportSummary) -> str:
        """Short console summary printed at the end of a run."""
        execution, workers, tests = summary.execution, summary.workers, summary.tests
        rule = "-" * 60
        lines = [
            rule,
            f"Duration: {execution.total_duration:.1f}s",
            f"Workers: {workers.successful}/{workers.total} successful",
            f"Tests: {tests.passed}/{tests.total} passed ({tests.pass_rate:.1f}%)",
            f"Efficiency: {execution.parallel_efficiency.efficiency * 100:.1f}%",
            f"Speed Improvement: {execution.parallel_efficiency.percentage_improvement:.1f}%",
            rule,
        ]
        if tests.failed:
            lines.append(f"{tests.failed} test(s) failed")
        else:
            lines.append("All tests passed")
        return "\n".join(lines)
