"""Deployment planning for camino-deployments library."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence

from .addressing import bytecode_hash
from .exceptions import CyclicDependencyError, DuplicateUnitError, UnresolvedDependencyError
from .ledger import DeploymentLedger
from .types import DeployableUnit, DeploymentRecord

logger = logging.getLogger(__name__)


@dataclass
class DeploymentPlan:
    """Result of planning one network's run."""

    network: str
    order: List[DeployableUnit]  # Every requested unit, dependencies first
    to_deploy: List[DeployableUnit]  # Subset of order still to deploy
    satisfied: Dict[str, DeploymentRecord] = field(default_factory=dict)  # Already confirmed

    def __iter__(self) -> Iterator[DeployableUnit]:
        return iter(self.to_deploy)

    def __len__(self) -> int:
        return len(self.to_deploy)

    def names(self) -> List[str]:
        return [u.name for u in self.to_deploy]


def _find_cycle(remaining: Dict[str, DeployableUnit]) -> List[str]:
    visiting: List[str] = []
    done = set()

    def visit(name: str) -> List[str]:
        if name in visiting:
            return visiting[visiting.index(name):] + [name]
        if name in done:
            return []
        visiting.append(name)
        for dep in remaining[name].dependencies:
            if dep in remaining:
                cycle = visit(dep)
                if cycle:
                    return cycle
        visiting.pop()
        done.add(name)
        return []

    for name in remaining:
        cycle = visit(name)
        if cycle:
            return cycle
    return list(remaining)


def topological_order(units: Sequence[DeployableUnit]) -> List[DeployableUnit]:
    """
    Order units so every unit follows its dependencies.

    Among units whose dependencies are all placed, the earliest declared goes
    first, so independent units keep the caller's order. Dependencies outside
    the given set are ignored here.

    Args:
        units: Units in declared order

    Returns:
        Ordered list of units

    Raises:
        DuplicateUnitError: If two units share a name
        CyclicDependencyError: If the dependency graph has a cycle
    """
    by_name: Dict[str, DeployableUnit] = {}
    for unit in units:
        if unit.name in by_name:
            raise DuplicateUnitError(f"Unit '{unit.name}' declared more than once")
        by_name[unit.name] = unit

    remaining = dict(by_name)
    ordered: List[DeployableUnit] = []
    while remaining:
        ready = next(
            (
                unit
                for unit in remaining.values()
                if all(dep not in remaining for dep in unit.dependencies if dep in by_name)
            ),
            None,
        )
        if ready is None:
            cycle = _find_cycle(remaining)
            raise CyclicDependencyError(
                f"Cyclic dependency between units: {' -> '.join(cycle)}", cycle=cycle
            )
        ordered.append(ready)
        del remaining[ready.name]

    return ordered


def plan_deployments(
    units: Sequence[DeployableUnit], network: str, ledger: DeploymentLedger
) -> DeploymentPlan:
    """
    Compute which units still need deploying on a network, in order.

    A unit whose ledger record is confirmed with a matching bytecode hash is
    satisfied: it only contributes its address to later constructor arguments.
    Dependencies that are not declared must already be confirmed in the ledger.

    Args:
        units: Requested units in declared order
        network: Network name
        ledger: Deployment ledger (read only here)

    Returns:
        DeploymentPlan

    Raises:
        DuplicateUnitError: If two units share a name
        CyclicDependencyError: If the dependency graph has a cycle
        UnresolvedDependencyError: If a dependency is neither declared nor deployed
    """
    order = topological_order(units)
    declared = {unit.name for unit in order}

    satisfied: Dict[str, DeploymentRecord] = {}
    for unit in order:
        for dep in unit.dependencies:
            if dep in declared or dep in satisfied:
                continue
            record = ledger.lookup(dep, network)
            if record is None:
                raise UnresolvedDependencyError(
                    f"Unit '{unit.name}' depends on '{dep}', which is neither declared "
                    f"nor deployed on network '{network}'"
                )
            satisfied[dep] = record

    to_deploy: List[DeployableUnit] = []
    for unit in order:
        record = ledger.lookup(unit.name, network)
        if record is not None and record.bytecode_hash == bytecode_hash(unit.bytecode):
            satisfied[unit.name] = record
            logger.info("%s already deployed on %s at %s", unit.name, network, record.address)
        else:
            to_deploy.append(unit)

    logger.info(
        "Plan for %s: %d to deploy, %d already deployed",
        network,
        len(to_deploy),
        len(order) - len(to_deploy),
    )
    return DeploymentPlan(network=network, order=order, to_deploy=to_deploy, satisfied=satisfied)
