import json
import os

import pytest

from shardrun.core.discovery import TestDiscoverer, count_tests, load_test_groups
from shardrun.core.history import TestHistory
from shardrun.exceptions import DiscoveryError
from shardrun.models.enums import PriorityTier

from .conftest import MB, write_spec


@pytest.fixture
def test_root(tmp_path):
    root = tmp_path / "e2e"
    write_spec(root, "smoke/basic.cy.ts", tests=2)
    write_spec(root, "foundation/app-loads.cy.ts", tests=3)
    write_spec(root, "navigation/menu.cy.ts", tests=1)
    write_spec(root, "setup-wizard/wizard.cy.ts", tests=4)
    write_spec(root, "integration/persistence.cy.ts", tests=2)
    write_spec(root, "unrelated/ignored.cy.ts", tests=1)
    return root


def test_count_tests():
    content = """
    describe('x', () => {
      it('a', () => {});
      it ('b', () => {});
      test('c', () => {});
      // split( is not a test call
      it.skip('d', () => {});
    });
    """
    assert count_tests(content) == 3


def test_discover_groups_in_configuration_order(test_root, groups):
    discovered = TestDiscoverer(test_root, groups).discover()
    assert list(discovered) == ["smoke", "fast", "medium", "slow"]
    assert [t.relative_path for t in discovered["fast"]] == [
        "foundation/app-loads.cy.ts",
        "navigation/menu.cy.ts",
    ]


def test_unmatched_files_are_ignored(test_root, groups):
    discovered = TestDiscoverer(test_root, groups).discover()
    paths = [t.relative_path for t in TestDiscoverer.flatten(discovered)]
    assert "unrelated/ignored.cy.ts" not in paths
    assert len(paths) == 5


def test_estimates_from_group_defaults(test_root, groups):
    discovered = TestDiscoverer(test_root, groups).discover()
    wizard = discovered["medium"][0]
    assert wizard.test_count == 4
    assert wizard.estimated_time == 4 * 8
    assert wizard.priority == PriorityTier.MEDIUM.score
    assert wizard.memory_requirement == 400 * MB
    assert wizard.path == str(test_root / "setup-wizard/wizard.cy.ts")


def test_file_without_tests_counts_as_one(tmp_path, groups):
    root = tmp_path / "e2e"
    (root / "smoke").mkdir(parents=True)
    (root / "smoke" / "empty.cy.ts").write_text("// nothing here\n")
    [case] = TestDiscoverer(root, groups).discover()["smoke"]
    assert case.test_count == 0
    assert case.estimated_time == 1


def test_unreadable_file_falls_back_to_one_test(tmp_path, groups):
    root = tmp_path / "e2e"
    (root / "smoke").mkdir(parents=True)
    (root / "smoke" / "binary.cy.ts").write_bytes(b"\xff\xfe\x00garbage")
    [case] = TestDiscoverer(root, groups).discover()["smoke"]
    assert case.test_count == 1
    assert case.estimated_time == 1


def test_history_overrides_estimate(test_root, groups):
    history = TestHistory()
    history.record("foundation/app-loads.cy.ts", 42.0, success=True)
    discovered = TestDiscoverer(test_root, groups, history=history).discover()
    by_path = {t.relative_path: t for t in discovered["fast"]}
    assert by_path["foundation/app-loads.cy.ts"].estimated_time == 42.0
    assert by_path["navigation/menu.cy.ts"].estimated_time == 2


def test_smoke_only(test_root, groups):
    discovered = TestDiscoverer(test_root, groups, smoke_only=True).discover()
    assert list(discovered) == ["smoke"]


def test_first_matching_group_wins(tmp_path, groups):
    root = tmp_path / "e2e"
    write_spec(root, "smoke/basic.cy.ts")
    groups["fast"].patterns.append("smoke/*.cy.ts")
    discovered = TestDiscoverer(root, groups).discover()
    assert [t.group for t in TestDiscoverer.flatten(discovered)] == ["smoke"]


def test_missing_root_raises(tmp_path, groups):
    with pytest.raises(DiscoveryError, match="not found"):
        TestDiscoverer(tmp_path / "missing", groups).discover()


def test_unreadable_root_raises(test_root, groups, monkeypatch):
    def denied(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(os, "scandir", denied)
    with pytest.raises(DiscoveryError, match="Cannot read"):
        TestDiscoverer(test_root, groups).discover()


def test_empty_root_returns_empty(tmp_path, groups):
    assert TestDiscoverer(tmp_path, groups).discover() == {}


def test_default_groups_used_when_none_given(test_root):
    discoverer = TestDiscoverer(test_root)
    assert list(discoverer.groups) == ["smoke", "fast", "medium", "slow"]


# ── Group Files ─────────────────────────────────────────────────


def test_load_groups_from_mapping(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text(json.dumps({
        "unit": {"patterns": ["unit/*.js"], "max_workers": 4,
                 "memory_per_worker": 100 * MB, "estimated_time": 1, "priority": "high"},
        "e2e": {"patterns": ["e2e/*.js"], "max_workers": 1,
                "memory_per_worker": 500 * MB, "estimated_time": 30},
    }))
    groups = load_test_groups(path)
    assert list(groups) == ["unit", "e2e"]
    assert groups["unit"].priority == PriorityTier.HIGH
    assert groups["e2e"].priority == PriorityTier.MEDIUM


def test_load_groups_from_list(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text(json.dumps([
        {"name": "all", "patterns": ["**/*.js"], "max_workers": 2,
         "memory_per_worker": 200 * MB, "estimated_time": 5},
    ]))
    assert list(load_test_groups(path)) == ["all"]


@pytest.mark.parametrize("content", [
    "not json",
    "42",
    "[]",
    json.dumps([{"name": "bad", "patterns": [], "max_workers": 0,
                 "memory_per_worker": 1, "estimated_time": 1}]),
])
def test_load_groups_rejects_invalid(tmp_path, content):
    path = tmp_path / "groups.json"
    path.write_text(content)
    with pytest.raises(DiscoveryError):
        load_test_groups(path)


def test_load_groups_missing_file(tmp_path):
    with pytest.raises(DiscoveryError):
        load_test_groups(tmp_path / "missing.json")
