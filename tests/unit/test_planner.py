"""Unit tests for deployment planning."""

import pytest

from camino_deployments.addressing import bytecode_hash
from camino_deployments.exceptions import (
    CyclicDependencyError,
    DuplicateUnitError,
    UnresolvedDependencyError,
)
from camino_deployments.planner import plan_deployments, topological_order
from camino_deployments.types import DeployableUnit, RoleRef, UnitRef

ADDRESS = "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"


def unit(name, *, depends_on=(), args=(), bytecode="0x6080"):
    return DeployableUnit(name=name, abi=[], bytecode=bytecode, args=args, depends_on=depends_on)


def names(units):
    return [u.name for u in units]


class TestTopologicalOrder:
    """Test dependency ordering."""

    def test_dependency_first(self):
        """Test that a dependency declared later is still deployed first."""
        order = topological_order([unit("Booking", depends_on=("MockToken",)), unit("MockToken")])
        assert names(order) == ["MockToken", "Booking"]

    def test_argument_references_are_dependencies(self):
        """Test that UnitRef arguments imply a dependency."""
        order = topological_order([unit("Booking", args=(UnitRef("MockToken"),)), unit("MockToken")])
        assert names(order) == ["MockToken", "Booking"]

    def test_references_nested_in_structs(self):
        """Test that references inside lists and dict-valued arguments are found."""
        booking = unit(
            "Booking",
            args=({"token": UnitRef("MockToken"), "admins": [RoleRef("owner"), RoleRef("deployer")]},),
        )

        assert booking.dependencies == ("MockToken",)
        assert booking.role_refs == ("owner", "deployer")
        assert names(topological_order([booking, unit("MockToken")])) == ["MockToken", "Booking"]

    def test_independent_units_keep_declared_order(self):
        """Test that unrelated units are not reordered."""
        order = topological_order([unit("C"), unit("A"), unit("B")])
        assert names(order) == ["C", "A", "B"]

    def test_diamond(self):
        """Test a diamond-shaped dependency graph."""
        order = topological_order(
            [
                unit("D", depends_on=("B", "C")),
                unit("C", depends_on=("A",)),
                unit("B", depends_on=("A",)),
                unit("A"),
            ]
        )
        assert names(order) == ["A", "C", "B", "D"]

    def test_cycle_detected(self):
        """Test that cycles are reported with their members."""
        with pytest.raises(CyclicDependencyError) as exc_info:
            topological_order([unit("A", depends_on=("B",)), unit("B", depends_on=("A",))])

        assert set(exc_info.value.cycle) == {"A", "B"}

    def test_self_dependency_is_cycle(self):
        """Test that a unit depending on itself is a cycle."""
        with pytest.raises(CyclicDependencyError):
            topological_order([unit("A", depends_on=("A",))])

    def test_duplicate_names(self):
        """Test that unit names must be unique."""
        with pytest.raises(DuplicateUnitError, match="MockToken"):
            topological_order([unit("MockToken"), unit("MockToken")])


class TestPlanDeployments:
    """Test ledger-aware planning."""

    def test_fresh_network_deploys_everything(self, ledger):
        """Test that nothing is skipped on an empty ledger."""
        plan = plan_deployments(
            [unit("Booking", args=(UnitRef("MockToken"),)), unit("MockToken")], "TestNet", ledger
        )

        assert plan.names() == ["MockToken", "Booking"]
        assert names(plan.order) == ["MockToken", "Booking"]
        assert plan.satisfied == {}
        assert len(plan) == 2

    def test_confirmed_unit_is_satisfied(self, ledger):
        """Test that a confirmed unit with the same bytecode is skipped."""
        ledger.adopt("MockToken", "TestNet", ADDRESS, bytecode_hash("0x6080"), run_id="run-0")

        plan = plan_deployments(
            [unit("MockToken"), unit("Booking", args=(UnitRef("MockToken"),))], "TestNet", ledger
        )

        assert plan.names() == ["Booking"]
        assert plan.satisfied["MockToken"].address == ADDRESS
        assert names(plan.order) == ["MockToken", "Booking"]

    def test_changed_bytecode_is_redeployed(self, ledger):
        """Test that a bytecode change makes a confirmed unit deployable again."""
        ledger.adopt("MockToken", "TestNet", ADDRESS, bytecode_hash("0x6080"), run_id="run-0")

        plan = plan_deployments([unit("MockToken", bytecode="0x6081")], "TestNet", ledger)

        assert plan.names() == ["MockToken"]

    def test_other_network_not_satisfied(self, ledger):
        """Test that deployments on one network do not count on another."""
        ledger.adopt("MockToken", "Columbus", ADDRESS, bytecode_hash("0x6080"), run_id="run-0")

        plan = plan_deployments([unit("MockToken")], "Camino", ledger)

        assert plan.names() == ["MockToken"]

    def test_undeclared_dependency_from_ledger(self, ledger):
        """Test that an undeclared dependency can come from the ledger."""
        ledger.adopt("MockToken", "TestNet", ADDRESS, bytecode_hash("0x6080"), run_id="run-0")

        plan = plan_deployments([unit("Booking", args=(UnitRef("MockToken"),))], "TestNet", ledger)

        assert plan.names() == ["Booking"]
        assert plan.satisfied["MockToken"].address == ADDRESS

    def test_unresolved_dependency(self, ledger):
        """Test that a dependency neither declared nor deployed fails planning."""
        with pytest.raises(UnresolvedDependencyError, match="MockToken"):
            plan_deployments([unit("Booking", depends_on=("MockToken",))], "TestNet", ledger)

    def test_pending_dependency_is_unresolved(self, ledger):
        """Test that a pending record does not satisfy a dependency."""
        ledger.begin_pending("MockToken", "TestNet", bytecode_hash("0x6080"), run_id="run-0")

        with pytest.raises(UnresolvedDependencyError):
            plan_deployments([unit("Booking", depends_on=("MockToken",))], "TestNet", ledger)
