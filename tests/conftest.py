import pytest

from shardrun.config import Settings

# ---------------------------------------------------------------------------
# Settings for tests that touch the filesystem or spawn workers.
# Everything lives under tmp_path; no stagger between spawns so pool tests
# stay fast.
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    (tmp_path / "e2e").mkdir()
    return Settings(
        base_dir=str(tmp_path),
        test_dir="e2e",
        reports_dir="reports",
        results_dir="results",
        workers_dir="workers",
        disk_path=str(tmp_path),
        spawn_delay=0,
        monitor_interval=0.05,
        worker_timeout=20,
        termination_grace=2,
    )
