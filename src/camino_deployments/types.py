"""Data types and dataclasses for camino-deployments library."""

import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .constants import DEFAULT_CONFIRMATIONS, DETERMINISTIC_DEPLOYMENT_PROXY
from .exceptions import UnresolvedAccountError

if TYPE_CHECKING:
    from .ledger import DeploymentLedger


class GasMode(Enum):
    """Gas pricing strategy. Values match hardhat's `gasPrice` setting."""

    FIXED = "fixed"
    AUTO = "auto"


@dataclass(frozen=True)
class GasStrategy:
    """How deployment transactions are priced."""

    mode: GasMode = GasMode.AUTO
    multiplier: float = 1.0  # Applied to the estimated gas limit
    gas_price: Optional[int] = None  # Wei, required for FIXED


class ExplorerKind(Enum):
    """Supported verification service APIs."""

    ETHERSCAN = "etherscan"  # Also covers Etherscan-compatible explorers (Arbiscan, Blockscout)
    SOURCIFY = "sourcify"


@dataclass(frozen=True)
class ExplorerEndpoint:
    """A verification service configured for a network."""

    kind: ExplorerKind
    url: str
    api_key_env: Optional[str] = None

    def api_key(self, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
        if self.api_key_env is None:
            return None
        environ = os.environ if environ is None else environ
        return environ.get(self.api_key_env)


@dataclass(frozen=True)
class NetworkProfile:
    """Static configuration of one deployment target."""

    name: str
    chain_id: int
    rpc_endpoint: str
    gas_strategy: GasStrategy = GasStrategy()
    explorer_endpoints: Tuple[ExplorerEndpoint, ...] = ()
    confirmations: int = DEFAULT_CONFIRMATIONS
    save_deployments: bool = False
    create2_factory: str = DETERMINISTIC_DEPLOYMENT_PROXY


@dataclass(frozen=True)
class AccountRole:
    """A logical account role resolved to a concrete address."""

    name: str
    address: str


@dataclass(frozen=True)
class UnitRef:
    """Constructor argument placeholder for another unit's deployed address."""

    name: str


@dataclass(frozen=True)
class RoleRef:
    """Constructor argument placeholder for a resolved account role."""

    role: str


@dataclass(frozen=True)
class SaltPolicy:
    """Whether a unit is deployed at a CREATE2 address, and with which salt seed."""

    deterministic: bool = True
    salt: Optional[str] = None  # Defaults to the unit name


@dataclass(frozen=True)
class SourceBundle:
    """Everything an explorer needs to verify a contract."""

    fully_qualified_name: str  # e.g., "contracts/HotelBooking.sol:HotelBooking"
    compiler_version: str  # e.g., "v0.8.24+commit.e11b9ed9"
    standard_json_input: Dict[str, Any] = field(compare=False)
    metadata: Optional[str] = field(default=None, compare=False)

    @property
    def source_name(self) -> str:
        return self.fully_qualified_name.rsplit(":", 1)[0]

    @property
    def contract_name(self) -> str:
        return self.fully_qualified_name.rsplit(":", 1)[-1]


def _collect_refs(value: Any, ref_type: type, found: List[Any]) -> List[Any]:
    if isinstance(value, ref_type):
        if value not in found:
            found.append(value)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_refs(item, ref_type, found)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_refs(item, ref_type, found)
    return found


@dataclass(frozen=True)
class DeployableUnit:
    """One logical on-chain contract to deploy."""

    name: str
    abi: List[Dict[str, Any]] = field(compare=False, repr=False)
    bytecode: str = field(repr=False)
    args: Tuple[Any, ...] = ()
    depends_on: Tuple[str, ...] = ()
    salt_policy: SaltPolicy = SaltPolicy()
    deployer_role: str = "deployer"
    contract: Optional[str] = None  # Artifact name if different from the unit name
    deployed_bytecode: Optional[str] = field(default=None, repr=False)
    # (start, length) byte ranges of immutables in deployed_bytecode, None if unknown
    immutable_references: Optional[Tuple[Tuple[int, int], ...]] = field(
        default=None, compare=False, repr=False
    )
    source: Optional[SourceBundle] = field(default=None, compare=False, repr=False)
    tags: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def contract_name(self) -> str:
        return self.contract or self.name

    @property
    def dependencies(self) -> Tuple[str, ...]:
        """Explicit dependencies followed by every unit referenced from the arguments."""
        found = list(self.depends_on)
        for ref in _collect_refs(self.args, UnitRef, []):
            if ref.name not in found:
                found.append(ref.name)
        return tuple(found)

    @property
    def role_refs(self) -> Tuple[str, ...]:
        """Account roles referenced from the constructor arguments."""
        return tuple(ref.role for ref in _collect_refs(self.args, RoleRef, []))

    @classmethod
    def from_artifact(
        cls,
        name: str,
        artifact: "Any",
        args: Tuple[Any, ...] = (),
        depends_on: Tuple[str, ...] = (),
        salt_policy: SaltPolicy = SaltPolicy(),
        deployer_role: str = "deployer",
        source: Optional[SourceBundle] = None,
        immutable_references: Optional[Tuple[Tuple[int, int], ...]] = None,
        tags: Tuple[str, ...] = (),
    ) -> "DeployableUnit":
        """
        Build a unit from a loaded ContractArtifact.

        Args:
            name: Logical unit name (ledger key)
            artifact: ContractArtifact from artifacts.load_contract_artifact()
            args: Constructor arguments, may contain UnitRef / RoleRef
            depends_on: Extra dependencies not visible in the arguments
            salt_policy: Deterministic addressing policy
            deployer_role: Account role that sends the deployment
            source: Verification bundle
            immutable_references: Immutable byte ranges from the build-info
            tags: Labels used to select units for a run

        Returns:
            DeployableUnit
        """
        return cls(
            name=name,
            abi=artifact.abi,
            bytecode=artifact.bytecode,
            args=tuple(args),
            depends_on=tuple(depends_on),
            salt_policy=salt_policy,
            deployer_role=deployer_role,
            contract=artifact.contract_name if artifact.contract_name != name else None,
            deployed_bytecode=artifact.deployed_bytecode,
            source=source,
            immutable_references=immutable_references,
            tags=tuple(tags),
        )


class RecordStatus(Enum):
    """Lifecycle of a deployment record."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class DeploymentRecord:
    """Persisted outcome of deploying one unit on one network."""

    # Required fields
    unit: str
    network: str
    status: RecordStatus
    bytecode_hash: str  # keccak-256 of the creation bytecode
    timestamp: str  # ISO-8601 UTC of the last transition
    run_id: str

    # Filled as the deployment progresses
    address: Optional[str] = None
    tx_hash: Optional[str] = None
    args_hash: Optional[str] = None
    expected_address: Optional[str] = None  # Deterministic target, known before submission
    constructor_args: List[Any] = field(default_factory=list)
    reason: Optional[str] = None  # Failure reason
    history: List[Dict[str, Any]] = field(default_factory=list)  # Superseded attempts

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeploymentRecord":
        return cls(
            unit=data["unit"],
            network=data["network"],
            status=RecordStatus(data["status"]),
            bytecode_hash=data["bytecode_hash"],
            timestamp=data["timestamp"],
            run_id=data["run_id"],
            address=data.get("address"),
            tx_hash=data.get("tx_hash"),
            args_hash=data.get("args_hash"),
            expected_address=data.get("expected_address"),
            constructor_args=list(data.get("constructor_args", [])),
            reason=data.get("reason"),
            history=list(data.get("history", [])),
        )


@dataclass(frozen=True)
class RecordHandle:
    """Proof that the holder opened the pending record for (unit, network)."""

    unit: str
    network: str
    run_id: str


class VerificationStatus(Enum):
    """Lifecycle of a verification job."""

    QUEUED = "queued"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    FAILED = "failed"


class VerificationOutcome(Enum):
    """Classified response of an explorer service."""

    VERIFIED = "verified"
    ALREADY_VERIFIED = "already-verified"
    RATE_LIMITED = "rate-limited"
    REJECTED = "rejected"


@dataclass
class VerificationJob:
    """Source verification of one newly deployed unit."""

    unit: str
    network: str
    address: str
    source_reference: Optional[str]  # Fully qualified contract name
    constructor_args: str  # ABI-encoded, hex without 0x
    attempts: int = 0
    status: VerificationStatus = VerificationStatus.QUEUED
    results: Dict[str, str] = field(default_factory=dict)  # endpoint url -> outcome
    reason: Optional[str] = None


class UnitStatus(Enum):
    """Per-unit outcome reported at the end of a run."""

    SKIPPED = "skipped-already-deployed"
    DEPLOYED = "deployed"
    FAILED = "failed"
    VERIFICATION_PENDING = "verification-pending"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification-failed"


class FailurePolicy(Enum):
    """What a run does after a unit fails to deploy."""

    HALT = "halt"
    CONTINUE = "continue"  # Keep deploying units that do not depend on the failure


@dataclass
class UnitReport:
    unit: str
    status: UnitStatus
    address: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class RunReport:
    """Summary of one orchestrated run."""

    network: str
    run_id: str
    units: List[UnitReport] = field(default_factory=list)
    jobs: List[VerificationJob] = field(default_factory=list)

    def unit(self, name: str) -> UnitReport:
        for report in self.units:
            if report.unit == name:
                return report
        raise KeyError(name)

    @property
    def failed_units(self) -> List[str]:
        return [r.unit for r in self.units if r.status is UnitStatus.FAILED]

    @property
    def succeeded(self) -> bool:
        return not self.failed_units

    @property
    def exit_code(self) -> int:
        # Verification problems never change the exit status
        return 0 if self.succeeded else 1


@dataclass(frozen=True)
class RunContext:
    """Everything a component needs about the active run, passed explicitly."""

    network: NetworkProfile
    accounts: Tuple[AccountRole, ...]
    ledger: "DeploymentLedger"
    run_id: str

    @property
    def network_name(self) -> str:
        return self.network.name

    def address_of(self, role: str) -> str:
        for account in self.accounts:
            if account.name == role:
                return account.address
        raise UnresolvedAccountError(
            f"Account role '{role}' was not resolved for network '{self.network.name}'"
        )
