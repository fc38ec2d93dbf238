"""Test discovery: find test files, classify them into groups and estimate
how long each one takes."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path

from pydantic import ValidationError

from shardrun.core.history import TestHistory
from shardrun.exceptions import DiscoveryError
from shardrun.models.catalog import TestCase, TestGroup, default_test_groups

logger = logging.getLogger(__name__)

SMOKE_GROUP = "smoke"

_TEST_CALL = re.compile(r"\b(?:it|test)\s*\(")


def count_tests(content: str) -> int:
    """Number of ``it(`` / ``test(`` call sites in a test file."""
    return len(_TEST_CALL.findall(content))


def load_test_groups(path: str | Path) -> dict[str, TestGroup]:
    """Read group definitions from JSON.

    Accepts either a list of group objects or an object keyed by group name
    (the key fills in ``name``). Order in the file is the matching order.
    """
    path = Path(path)
    try:
        with open(path) as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DiscoveryError(f"Cannot read test groups from {path}: {e}") from e

    if isinstance(raw, dict):
        items = [{"name": name, **fields} for name, fields in raw.items()]
    elif isinstance(raw, list):
        items = raw
    else:
        raise DiscoveryError(f"Test groups in {path} must be a list or an object")

    try:
        groups = [TestGroup.model_validate(item) for item in items]
    except ValidationError as e:
        raise DiscoveryError(f"Invalid test group definition in {path}: {e}") from e
    if not groups:
        raise DiscoveryError(f"No test groups defined in {path}")
    return {g.name: g for g in groups}


class TestDiscoverer:
    __test__ = False

    def __init__(
        self,
        root: str | Path,
        groups: dict[str, TestGroup] | None = None,
        history: TestHistory | None = None,
        smoke_only: bool = False,
    ):
        self.root = Path(root)
        self.groups = groups if groups is not None else default_test_groups()
        self.history = history
        self.smoke_only = smoke_only

    def discover(self) -> dict[str, list[TestCase]]:
        """Return test cases keyed by group, in group configuration order.

        A file matched by more than one group belongs to the first group
        whose pattern matches it.
        """
        if not self.root.is_dir():
            raise DiscoveryError(f"Test directory not found: {self.root}")
        # glob() swallows permission errors, so list the root directly
        try:
            with os.scandir(self.root):
                pass
        except OSError as e:
            raise DiscoveryError(f"Cannot read test directory {self.root}: {e}") from e

        logger.info("Searching for tests in %s", self.root)
        if self.smoke_only:
            logger.info("Smoke test mode: only the %s group runs", SMOKE_GROUP)

        seen: set[Path] = set()
        discovered: dict[str, list[TestCase]] = {}
        for name, group in self.groups.items():
            if self.smoke_only and name != SMOKE_GROUP:
                logger.debug("Group %s skipped (smoke mode)", name)
                continue

            cases: list[TestCase] = []
            for pattern in group.patterns:
                try:
                    files = sorted(p for p in self.root.glob(pattern) if p.is_file())
                except OSError as e:
                    raise DiscoveryError(f"Cannot scan {self.root} for {pattern}: {e}") from e
                logger.debug("Group %s pattern %s: %d files", name, pattern, len(files))
                for file in files:
                    if file in seen:
                        continue
                    seen.add(file)
                    cases.append(self.analyze_test_file(file, group))

            if cases:
                discovered[name] = cases
            logger.info("Group %s: %d test files", name, len(cases))

        total = sum(len(c) for c in discovered.values())
        logger.info("Total discovered: %d test files", total)
        return discovered

    def analyze_test_file(self, file: Path, group: TestGroup) -> TestCase:
        relative_path = file.relative_to(self.root).as_posix()
        try:
            test_count = count_tests(file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not analyze test file %s: %s", file, e)
            test_count = 1

        estimated_time = max(1, test_count) * group.estimated_time
        if self.history is not None:
            estimated_time = self.history.estimated_time(relative_path, estimated_time)

        return TestCase(
            path=str(file),
            relative_path=relative_path,
            group=group.name,
            test_count=test_count,
            estimated_time=estimated_time,
            priority=group.priority.score,
            memory_requirement=group.memory_per_worker,
        )

    @staticmethod
    def flatten(discovered: dict[str, list[TestCase]]) -> list[TestCase]:
        return [case for cases in discovered.values() for case in cases]
