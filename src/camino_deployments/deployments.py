"""Main API for camino-deployments library."""

import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from .accounts import AccountResolver
from .addressing import bytecode_hash, encode_constructor_args
from .artifacts import export_hardhat_deployment
from .config import load_run_config
from .constants import ZERO_ADDRESS
from .deployer import DeterministicDeployer
from .exceptions import (
    AddressCollisionError,
    ConfigError,
    DeploymentError,
    UnresolvedDependencyError,
)
from .ledger import DeploymentLedger
from .networks import NetworkRegistry
from .planner import plan_deployments
from .rpc import ChainClient, JsonRpcChain, Signer
from .types import (
    DeployableUnit,
    DeploymentRecord,
    FailurePolicy,
    RoleRef,
    RunContext,
    RunReport,
    UnitRef,
    UnitReport,
    UnitStatus,
    VerificationJob,
    VerificationStatus,
)
from .verification import VerificationSubmitter, default_client_factory

logger = logging.getLogger(__name__)

_JOB_STATUS_TO_UNIT_STATUS = {
    VerificationStatus.VERIFIED: UnitStatus.VERIFIED,
    VerificationStatus.FAILED: UnitStatus.VERIFICATION_FAILED,
    VerificationStatus.QUEUED: UnitStatus.VERIFICATION_PENDING,
    VerificationStatus.SUBMITTED: UnitStatus.VERIFICATION_PENDING,
}


def new_run_id() -> str:
    return f"{datetime.now(timezone.utc):%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


def create_run_context(
    network_name: str,
    registry: NetworkRegistry,
    resolver: AccountResolver,
    ledger: DeploymentLedger,
    roles: Optional[Iterable[str]] = None,
    run_id: Optional[str] = None,
) -> RunContext:
    """
    Resolve the network and account roles for a run.

    Args:
        network_name: Network to deploy to
        registry: Network registry
        resolver: Account resolver
        ledger: Deployment ledger
        roles: Roles to resolve (defaults to every role the resolver knows)
        run_id: Run identifier (generated if omitted)

    Returns:
        RunContext

    Raises:
        UnknownNetworkError: If the network is not configured
        UnresolvedAccountError: If a role cannot be resolved
    """
    profile = registry.resolve(network_name)
    roles = resolver.roles() if roles is None else list(roles)
    accounts = tuple(resolver.resolve_all(roles, profile))
    return RunContext(
        network=profile,
        accounts=accounts,
        ledger=ledger,
        run_id=run_id or new_run_id(),
    )


def bind_arguments(args: Sequence[Any], addresses: Mapping[str, str], context: RunContext) -> List[Any]:
    """
    Replace UnitRef / RoleRef placeholders with concrete addresses.

    Raises:
        UnresolvedDependencyError: If a referenced unit has no address yet
        UnresolvedAccountError: If a referenced role was not resolved
    """

    def bind(value: Any) -> Any:
        if isinstance(value, UnitRef):
            if value.name not in addresses:
                raise UnresolvedDependencyError(f"Address of unit '{value.name}' is not known yet")
            return addresses[value.name]
        if isinstance(value, RoleRef):
            return context.address_of(value.role)
        if isinstance(value, (list, tuple)):
            return [bind(v) for v in value]
        if isinstance(value, dict):
            return {k: bind(v) for k, v in value.items()}
        return value

    return [bind(arg) for arg in args]


def _check_before_side_effects(units: Iterable[DeployableUnit], context: RunContext) -> None:
    for unit in units:
        context.address_of(unit.deployer_role)
        for role in unit.role_refs:
            context.address_of(role)
        # Dependency addresses are unknown yet; any address has the same encoding
        placeholders = {name: ZERO_ADDRESS for name in unit.dependencies}
        try:
            encode_constructor_args(unit.abi, bind_arguments(unit.args, placeholders, context))
        except ConfigError as e:
            raise ConfigError(f"Unit '{unit.name}' ({unit.contract_name}): {e}") from e


def run_deployments(
    context: RunContext,
    units: Sequence[DeployableUnit],
    deployer: DeterministicDeployer,
    submitter: Optional[VerificationSubmitter] = None,
    *,
    failure_policy: FailurePolicy = FailurePolicy.HALT,
    should_stop: Optional[Callable[[], bool]] = None,
) -> RunReport:
    """
    Plan, deploy and verify units on the context's network.

    Planning and configuration errors are raised before any transaction is
    sent. Deployment errors are reported per unit: HALT stops at the first
    failure, CONTINUE keeps deploying units that do not depend on a failed
    one. An address collision always stops the run. Verification outcomes
    never affect the report's exit code.

    Args:
        context: Active run
        units: Requested units in declared order
        deployer: Deterministic deployer
        submitter: Verification submitter (None skips verification)
        failure_policy: Behavior after a unit fails
        should_stop: Polled between units; returning True aborts the run

    Returns:
        RunReport

    Raises:
        PlanningError: On cycles, duplicates or unresolved dependencies
        UnresolvedAccountError: If a unit references an unresolved role
        ConfigError: If a unit's arguments do not fit its constructor
    """
    network = context.network_name
    logger.info("Network invoked: %s (run %s)", network, context.run_id)

    plan = plan_deployments(units, network, context.ledger)
    _check_before_side_effects(plan.to_deploy, context)

    report = RunReport(network=network, run_id=context.run_id)
    addresses: Dict[str, str] = {name: record.address for name, record in plan.satisfied.items()}
    pending_names = {unit.name for unit in plan.to_deploy}
    failed: Set[str] = set()
    deployed: List[tuple] = []
    halted: Optional[str] = None

    for unit in plan.order:
        if unit.name not in pending_names:
            report.units.append(
                UnitReport(unit.name, UnitStatus.SKIPPED, address=addresses[unit.name])
            )
            continue

        if halted is None and should_stop is not None and should_stop():
            halted = "run aborted"
            logger.warning("Run %s aborted before %s", context.run_id, unit.name)

        if halted is not None:
            failed.add(unit.name)
            report.units.append(
                UnitReport(unit.name, UnitStatus.FAILED, reason=f"not attempted: {halted}")
            )
            continue

        blocked = [dep for dep in unit.dependencies if dep in failed]
        if blocked:
            failed.add(unit.name)
            report.units.append(
                UnitReport(
                    unit.name,
                    UnitStatus.FAILED,
                    reason=f"dependency failed: {', '.join(blocked)}",
                )
            )
            continue

        try:
            resolved = bind_arguments(unit.args, addresses, context)
            record = deployer.deploy(unit, context, resolved)
        except AddressCollisionError as e:
            logger.error("Address collision deploying %s: %s", unit.name, e)
            failed.add(unit.name)
            report.units.append(UnitReport(unit.name, UnitStatus.FAILED, reason=str(e)))
            halted = f"address collision on {unit.name}"
            continue
        except DeploymentError as e:
            logger.error("Deployment of %s failed: %s", unit.name, e)
            failed.add(unit.name)
            report.units.append(UnitReport(unit.name, UnitStatus.FAILED, reason=str(e)))
            if failure_policy is FailurePolicy.HALT:
                halted = f"{unit.name} failed"
            continue

        addresses[unit.name] = record.address
        if record.run_id == context.run_id:
            deployed.append((unit, record))
            status = UnitStatus.DEPLOYED
        else:
            # Finished by another run between planning and deployment
            status = UnitStatus.SKIPPED
        report.units.append(UnitReport(unit.name, status, address=record.address))

    if submitter is not None:
        for unit, record in deployed:
            job = submitter.submit(unit, context, record)
            report.jobs.append(job)
            unit_report = report.unit(unit.name)
            unit_report.status = _JOB_STATUS_TO_UNIT_STATUS[job.status]
            if job.status is VerificationStatus.FAILED:
                unit_report.reason = job.reason

    logger.info(
        "Run %s on %s finished: %s",
        context.run_id,
        network,
        ", ".join(f"{r.unit}={r.status.value}" for r in report.units),
    )
    return report


def verify_deployed(
    context: RunContext,
    units: Sequence[DeployableUnit],
    submitter: VerificationSubmitter,
) -> List[VerificationJob]:
    """
    Verify units that are already confirmed in the ledger.

    Units without a confirmed record matching their bytecode are skipped.

    Returns:
        One VerificationJob per verified unit
    """
    jobs: List[VerificationJob] = []
    for unit in units:
        record = context.ledger.lookup(unit.name, context.network_name)
        if record is None or record.bytecode_hash != bytecode_hash(unit.bytecode):
            logger.warning("%s is not deployed on %s; skipping verification", unit.name, context.network_name)
            continue
        jobs.append(submitter.submit(unit, context, record))
    return jobs


def export_deployments(
    context: RunContext, units: Sequence[DeployableUnit], deployments_dir: Union[Path, str]
) -> List[Path]:
    """Write hardhat-deploy files for every confirmed unit."""
    paths = []
    for unit in units:
        record: Optional[DeploymentRecord] = context.ledger.lookup(unit.name, context.network_name)
        if record is not None:
            paths.append(
                export_hardhat_deployment(record, unit, deployments_dir, context.network.chain_id)
            )
    return paths


def deploy_from_config(
    manifest_path: Union[Path, str],
    network: Optional[str] = None,
    *,
    tags: Optional[Iterable[str]] = None,
    registry: Optional[NetworkRegistry] = None,
    chain: Optional[ChainClient] = None,
    signer_factory: Optional[Callable[[str], Signer]] = None,
    environ: Optional[Mapping[str, str]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Run a deployment described by a JSON manifest.

    Uses the built-in network table and a JSON-RPC chain with node-managed
    accounts unless collaborators are passed in.

    Args:
        manifest_path: Path to the run manifest
        network: Overrides the manifest's network
        tags: Deploy only units carrying one of these tags, plus their manifest dependencies
        registry: Network registry (defaults to NETWORK_CONFIG)
        chain: Chain client (defaults to JSON-RPC on the network's endpoint)
        signer_factory: Maps an address to a Signer (defaults to node-managed accounts)
        environ: Environment for RPC URL / API key lookups (defaults to os.environ)
        should_stop: Abort hook checked between units
        sleep: Sleep function for backoff and polling

    Returns:
        RunReport
    """
    config = load_run_config(manifest_path, network)
    if tags is not None:
        config = config.select(tags)
    registry = registry or NetworkRegistry.from_config(environ=environ)
    profile = registry.resolve(config.network)

    if chain is None:
        chain = JsonRpcChain.for_network(profile, sleep=sleep)
    if signer_factory is None:
        if not isinstance(chain, JsonRpcChain):
            raise ConfigError("signer_factory is required with a custom chain client")
        signer_factory = chain.signer_for

    resolver = AccountResolver(config.named_accounts, accounts_provider=lambda _profile: chain.accounts())
    ledger = DeploymentLedger(config.ledger_path)
    context = create_run_context(config.network, registry, resolver, ledger, roles=config.roles)

    deployer = DeterministicDeployer(chain, signer_factory, sleep=sleep)
    submitter = None
    if config.verify:
        submitter = VerificationSubmitter(
            lambda endpoint: default_client_factory(endpoint, environ), sleep=sleep
        )

    report = run_deployments(
        context,
        config.units,
        deployer,
        submitter,
        failure_policy=config.failure_policy,
        should_stop=should_stop,
    )

    if profile.save_deployments:
        export_deployments(context, config.units, config.deployments_dir)

    return report

