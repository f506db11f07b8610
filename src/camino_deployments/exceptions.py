"""Custom exception classes for camino-deployments library."""


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    pass


class ConfigError(DeploymentError, ValueError):
    """Raised when a run manifest or network table entry is malformed."""

    pass


class ArtifactNotFoundError(DeploymentError, FileNotFoundError):
    """Raised when a compiled contract artifact cannot be located."""

    pass


class DefectiveDeploymentError(DeploymentError, ValueError):
    """Raised when a hardhat-deploy file is missing its address or bytecode."""

    pass


class UnknownNetworkError(DeploymentError, LookupError):
    """Raised when requested network is not configured."""

    pass


class UnresolvedAccountError(DeploymentError, LookupError):
    """Raised when an account role has no mapping for the active network."""

    pass


class PlanningError(DeploymentError, ValueError):
    """Base class for errors detected before any transaction is sent."""

    pass


class CyclicDependencyError(PlanningError):
    """Raised when deployable units depend on each other in a cycle."""

    def __init__(self, message: str, cycle=()):
        super().__init__(message)
        self.cycle = tuple(cycle)


class UnresolvedDependencyError(PlanningError):
    """Raised when a unit depends on a unit that is neither declared nor deployed."""

    pass


class DuplicateUnitError(PlanningError):
    """Raised when two deployable units share a name."""

    pass


class ConflictingPendingError(DeploymentError, RuntimeError):
    """Raised when another run holds a pending record for the same unit and network."""

    pass


class AlreadyDeployedError(DeploymentError, RuntimeError):
    """Raised by the ledger when a matching confirmed record already exists."""

    def __init__(self, message: str, record=None):
        super().__init__(message)
        self.record = record


class LedgerStateError(DeploymentError, RuntimeError):
    """Raised on an illegal ledger status transition."""

    pass


class AddressCollisionError(DeploymentError, RuntimeError):
    """Raised when a deterministic address already holds unrecognized bytecode."""

    pass


class SubmissionFailedError(DeploymentError, RuntimeError):
    """Raised when a deployment transaction cannot be sent or reverts."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class TransactionTimeoutError(DeploymentError, TimeoutError):
    """Raised when a transaction does not reach the required confirmations in time."""

    def __init__(self, message: str, tx_hash=None):
        super().__init__(message)
        self.tx_hash = tx_hash


class VerificationError(DeploymentError):
    """Base exception for explorer verification errors."""

    pass


class VerificationRejectedError(VerificationError, ValueError):
    """Raised when an explorer refuses a verification request."""

    pass


class RateLimitedError(VerificationError, RuntimeError):
    """Raised when an explorer asks the caller to slow down."""

    pass
