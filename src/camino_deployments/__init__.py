"""
camino-deployments: deterministic, idempotent smart contract deployments for Camino and EVM networks
"""

import logging
from importlib.metadata import PackageNotFoundError, version

from .accounts import AccountResolver
from .deployer import DeterministicDeployer
from .deployments import (
    bind_arguments,
    create_run_context,
    deploy_from_config,
    run_deployments,
    verify_deployed,
)
from .exceptions import (
    AddressCollisionError,
    AlreadyDeployedError,
    ConfigError,
    ConflictingPendingError,
    CyclicDependencyError,
    DeploymentError,
    LedgerStateError,
    PlanningError,
    RateLimitedError,
    SubmissionFailedError,
    TransactionTimeoutError,
    UnknownNetworkError,
    UnresolvedAccountError,
    UnresolvedDependencyError,
    VerificationRejectedError,
)
from .ledger import DeploymentLedger
from .networks import NetworkRegistry
from .planner import plan_deployments
from .types import (
    DeployableUnit,
    DeploymentRecord,
    FailurePolicy,
    NetworkProfile,
    RoleRef,
    RunContext,
    RunReport,
    SaltPolicy,
    UnitRef,
    UnitStatus,
    VerificationJob,
)
from .verification import VerificationSubmitter

logging.getLogger(__name__).addHandler(logging.NullHandler())

try:
    __version__ = version("camino-deployments")
except PackageNotFoundError:
    __version__ = None

__all__ = [
    "run_deployments",
    "deploy_from_config",
    "verify_deployed",
    "create_run_context",
    "bind_arguments",
    "plan_deployments",
    "AccountResolver",
    "DeterministicDeployer",
    "DeploymentLedger",
    "NetworkRegistry",
    "VerificationSubmitter",
    "DeployableUnit",
    "DeploymentRecord",
    "FailurePolicy",
    "NetworkProfile",
    "RoleRef",
    "RunContext",
    "RunReport",
    "SaltPolicy",
    "UnitRef",
    "UnitStatus",
    "VerificationJob",
    "DeploymentError",
    "ConfigError",
    "UnknownNetworkError",
    "UnresolvedAccountError",
    "PlanningError",
    "CyclicDependencyError",
    "UnresolvedDependencyError",
    "ConflictingPendingError",
    "AlreadyDeployedError",
    "LedgerStateError",
    "AddressCollisionError",
    "SubmissionFailedError",
    "TransactionTimeoutError",
    "RateLimitedError",
    "VerificationRejectedError",
]
