"""
Tests for the dependency validator and cycle detection.
"""
from entitlements.features.catalog.models import Permission
from entitlements.features.permissions.validator import find_dependency_cycle, requires_map, validate


def make_permission(key, requires):
    return Permission(permission_key=key, permission_name=key, requires=requires)


class TestValidate:
    """Direct prerequisite checks"""

    def test_all_prerequisites_held(self):
        check = validate(make_permission("expenses.approve", ["expenses.view", "expenses.review"]),
                         {"expenses.view", "expenses.review"})
        assert check.ok
        assert check.missing == []

    def test_reports_every_missing_key_in_declared_order(self):
        permission = make_permission("p", ["c", "a", "b"])
        check = validate(permission, {"a"})
        assert not check.ok
        assert check.missing == ["c", "b"]

    def test_no_requirements(self):
        assert validate(make_permission("dashboard.view", []), set()).ok

    def test_not_transitive(self):
        # b itself requires a, but only direct prerequisites of c are checked
        check = validate(make_permission("c", ["b"]), {"b"})
        assert check.ok


class TestFindDependencyCycle:
    """Cycle detection over the requires graph"""

    def test_acyclic_graph(self):
        graph = {
            "expenses.view": [],
            "expenses.review": ["expenses.view"],
            "expenses.approve": ["expenses.view", "expenses.review"],
        }
        assert find_dependency_cycle(graph) is None

    def test_self_reference(self):
        assert find_dependency_cycle({"a": ["a"]}) == ["a", "a"]

    def test_longer_cycle_path(self):
        cycle = find_dependency_cycle({"a": ["b"], "b": ["c"], "c": ["a"]})
        assert cycle == ["a", "b", "c", "a"]

    def test_cycle_below_an_acyclic_entry(self):
        cycle = find_dependency_cycle({"root": ["x"], "x": ["y"], "y": ["x"]})
        assert cycle == ["x", "y", "x"]

    def test_unknown_keys_are_leaves(self):
        assert find_dependency_cycle({"a": ["missing"]}) is None

    def test_requires_map(self):
        permissions = [make_permission("a", ["b"]), make_permission("b", None)]
        assert requires_map(permissions) == {"a": ["b"], "b": []}
