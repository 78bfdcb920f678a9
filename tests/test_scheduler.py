"""
Tests for the dependency scheduler.
"""

import pytest

from provisioner.core.engine.scheduler import dependents_of, plan
from provisioner.core.errors import CycleError, PlanError, UnknownDependencyError
from provisioner.core.models.descriptor import ServiceDescriptor


def _services(*specs: tuple[str, list[str]]) -> list[ServiceDescriptor]:
    return [ServiceDescriptor(id=sid, depends_on=deps) for sid, deps in specs]


class TestPlan:
    def test_empty(self):
        assert plan([]) == []

    def test_independent_keeps_declaration_order(self):
        assert plan(_services(("c", []), ("a", []), ("b", []))) == ["c", "a", "b"]

    def test_dependencies_first(self):
        order = plan(_services(("webui", ["ollama"]), ("ollama", [])))
        assert order == ["ollama", "webui"]

    def test_every_service_after_its_dependencies(self):
        services = _services(
            ("monitor", ["ollama", "venv"]),
            ("webui", ["ollama", "venv"]),
            ("ollama", ["deps"]),
            ("venv", ["deps"]),
            ("deps", []),
        )
        order = plan(services)
        assert sorted(order) == sorted(s.id for s in services)
        position = {sid: i for i, sid in enumerate(order)}
        for s in services:
            for dep in s.depends_on:
                assert position[dep] < position[s.id]

    def test_tie_break_is_declaration_order(self):
        order = plan(_services(("z", ["root"]), ("y", ["root"]), ("root", [])))
        assert order == ["root", "z", "y"]

    def test_deterministic(self):
        services = _services(("b", ["a"]), ("c", ["a"]), ("a", []), ("d", ["b", "c"]))
        assert plan(services) == plan(services)


class TestPlanErrors:
    def test_cycle_names_participants(self):
        with pytest.raises(CycleError) as exc:
            plan(_services(("a", ["b"]), ("b", ["a"]), ("c", [])))
        assert set(exc.value.cycle) == {"a", "b"}
        assert "a" in str(exc.value) and "b" in str(exc.value)

    def test_cycle_excludes_bystanders(self):
        with pytest.raises(CycleError) as exc:
            plan(_services(("x", ["a"]), ("a", ["b"]), ("b", ["c"]), ("c", ["a"])))
        assert set(exc.value.cycle) == {"a", "b", "c"}

    def test_self_dependency(self):
        with pytest.raises(CycleError) as exc:
            plan(_services(("a", ["a"])))
        assert exc.value.cycle == ["a"]

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc:
            plan(_services(("webui", ["ollama"])))
        assert exc.value.service_id == "webui"
        assert exc.value.missing == ["ollama"]

    def test_errors_are_plan_errors(self):
        assert issubclass(CycleError, PlanError)
        assert issubclass(UnknownDependencyError, PlanError)


class TestDependentsOf:
    def test_transitive(self):
        services = _services(("a", []), ("b", ["a"]), ("c", ["b"]), ("d", []))
        assert dependents_of("a", services) == {"b", "c"}
        assert dependents_of("d", services) == set()
