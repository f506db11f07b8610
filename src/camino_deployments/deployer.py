"""Deterministic deployment execution for camino-deployments library."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from eth_utils import encode_hex, to_checksum_address

from .addressing import (
    args_hash,
    bytecode_hash,
    code_matches,
    create2_address,
    derive_salt,
    encode_constructor_args,
    has_code,
    init_code,
    to_jsonable,
)
from .constants import (
    DEFAULT_BASE_DELAY,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    DEFAULT_STALE_PENDING_AFTER,
)
from .exceptions import (
    AddressCollisionError,
    AlreadyDeployedError,
    ConflictingPendingError,
    SubmissionFailedError,
    TransactionTimeoutError,
)
from .retry import with_retry
from .rpc import ChainClient, Signer
from .types import (
    DeployableUnit,
    DeploymentRecord,
    NetworkProfile,
    RecordHandle,
    RunContext,
)

logger = logging.getLogger(__name__)


def _is_transient(error: Exception) -> bool:
    if isinstance(error, TransactionTimeoutError):
        return True
    return isinstance(error, SubmissionFailedError) and error.retryable


class DeterministicDeployer:
    """
    Deploys one unit at a time and records the outcome in the run's ledger.

    Deterministic units go through the network's CREATE2 factory, so their
    address is known before submission and identical inputs always land at
    the same address.
    """

    def __init__(
        self,
        chain: ChainClient,
        signer_factory: Callable[[str], Signer],
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        stale_pending_after: float = DEFAULT_STALE_PENDING_AFTER,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.chain = chain
        self.signer_factory = signer_factory
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.confirmation_timeout = confirmation_timeout
        self.stale_pending_after = stale_pending_after
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _retry(self, func: Callable[[], Any], description: str) -> Any:
        return with_retry(
            func,
            should_retry=_is_transient,
            attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            sleep=self._sleep,
            description=description,
        )

    def expected_address(
        self, unit: DeployableUnit, deployer: str, code: bytes, network: NetworkProfile
    ) -> Tuple[Optional[str], Optional[bytes]]:
        """
        Compute a unit's deterministic address.

        Args:
            unit: Unit to deploy
            deployer: Deployer account address
            code: Init code (bytecode + encoded constructor args)
            network: Active network

        Returns:
            Tuple of (address, salt), (None, None) for non-deterministic units
        """
        if not unit.salt_policy.deterministic:
            return None, None
        salt = derive_salt(deployer, unit.salt_policy.salt or unit.name, code)
        return create2_address(network.create2_factory, salt, code), salt

    def deploy(
        self, unit: DeployableUnit, context: RunContext, resolved_args: Sequence[Any]
    ) -> DeploymentRecord:
        """
        Deploy a unit unless the ledger already has it.

        Args:
            unit: Unit to deploy
            context: Active run
            resolved_args: Constructor arguments with every placeholder bound

        Returns:
            Confirmed DeploymentRecord

        Raises:
            AddressCollisionError: If the deterministic address holds unrecognized code
            ConflictingPendingError: If another run is deploying the same unit
            SubmissionFailedError: If the transaction cannot be sent or reverts
            TransactionTimeoutError: If confirmation does not arrive in time
        """
        network = context.network
        ledger = context.ledger

        encoded_args = encode_constructor_args(unit.abi, resolved_args)
        code = init_code(unit.bytecode, encoded_args)
        code_hash = bytecode_hash(unit.bytecode)
        deployer = context.address_of(unit.deployer_role)
        expected, salt = self.expected_address(unit, deployer, code, network)

        existing = ledger.lookup(unit.name, network.name)
        if existing is not None and existing.bytecode_hash == code_hash:
            logger.info("Reusing %s on %s at %s", unit.name, network.name, existing.address)
            return existing

        pending = ledger.pending(unit.name, network.name)
        if pending is not None:
            reconciled = self._reconcile(pending, unit, context)
            if reconciled is not None and reconciled.bytecode_hash == code_hash:
                return reconciled

        pending_fields: Dict[str, Any] = {
            "run_id": context.run_id,
            "args_hash": args_hash(encoded_args),
            "expected_address": expected,
            "constructor_args": to_jsonable(list(resolved_args)),
        }

        if expected is not None:
            onchain = self._retry(lambda: self.chain.get_code(expected), f"Reading code at {expected}")
            if has_code(onchain):
                if not code_matches(onchain, unit.deployed_bytecode, unit.immutable_references):
                    raise AddressCollisionError(
                        f"{expected} on {network.name} already holds bytecode that does "
                        f"not match {unit.name}"
                    )
                logger.info("%s already present at %s on %s", unit.name, expected, network.name)
                try:
                    handle = ledger.begin_pending(unit.name, network.name, code_hash, **pending_fields)
                except AlreadyDeployedError as e:
                    return e.record
                return ledger.commit(handle, expected, None)

        try:
            handle = ledger.begin_pending(unit.name, network.name, code_hash, **pending_fields)
        except AlreadyDeployedError as e:
            # Another run finished the deployment after this one planned it
            return e.record

        if expected is not None:
            tx = {"to": network.create2_factory, "data": encode_hex(salt + code)}
            logger.info("Deploying %s on %s at %s", unit.name, network.name, expected)
        else:
            tx = {"data": encode_hex(code)}
            logger.info("Deploying %s on %s", unit.name, network.name)

        signer = self.signer_factory(deployer)
        try:
            tx_hash = self._retry(
                lambda: self.chain.submit(tx, signer, network.gas_strategy),
                f"Submitting {unit.name}",
            )
        except SubmissionFailedError as e:
            ledger.fail(handle, str(e))
            raise

        ledger.attach_transaction(handle, tx_hash)

        try:
            receipt = self._retry(
                lambda: self.chain.wait_for_receipt(
                    tx_hash, network.confirmations, self.confirmation_timeout
                ),
                f"Confirming {unit.name}",
            )
        except (TransactionTimeoutError, SubmissionFailedError):
            # The transaction may still land; the next run reconciles it from its receipt
            logger.error(
                "Gave up waiting for %s (%s); record left pending", unit.name, tx_hash
            )
            raise

        return self._finalize(handle, unit, context, receipt, tx_hash, expected)

    def _finalize(
        self,
        handle: RecordHandle,
        unit: DeployableUnit,
        context: RunContext,
        receipt: Dict[str, Any],
        tx_hash: str,
        expected: Optional[str],
    ) -> DeploymentRecord:
        ledger = context.ledger

        if receipt.get("status") != 1:
            if expected is not None:
                onchain = self.chain.get_code(expected)
                if has_code(onchain):
                    if code_matches(onchain, unit.deployed_bytecode, unit.immutable_references):
                        return ledger.commit(handle, expected, None)
                    ledger.fail(handle, f"address collision at {expected}")
                    raise AddressCollisionError(
                        f"Deployment of {unit.name} reverted and {expected} holds foreign bytecode"
                    )
            ledger.fail(handle, f"transaction {tx_hash} reverted")
            raise SubmissionFailedError(f"Deployment transaction {tx_hash} for {unit.name} reverted")

        if expected is not None:
            if not has_code(self.chain.get_code(expected)):
                ledger.fail(handle, f"no code at {expected} after {tx_hash}")
                raise SubmissionFailedError(
                    f"Transaction {tx_hash} succeeded but {expected} has no code"
                )
            address = expected
        else:
            address = receipt.get("contractAddress")
            if not address:
                ledger.fail(handle, f"receipt of {tx_hash} has no contract address")
                raise SubmissionFailedError(f"Receipt of {tx_hash} has no contract address")

        return ledger.commit(handle, to_checksum_address(address), tx_hash)

    def _reconcile(
        self, pending: DeploymentRecord, unit: DeployableUnit, context: RunContext
    ) -> Optional[DeploymentRecord]:
        """
        Resolve a pending record left by an earlier run from chain state.

        Returns:
            The confirmed record, or None if the record was marked failed

        Raises:
            ConflictingPendingError: If the earlier deployment may still be in progress
        """
        ledger = context.ledger
        handle = ledger.handle_for(pending)

        if pending.tx_hash:
            receipt = self.chain.get_receipt(pending.tx_hash)
            if receipt is None:
                raise ConflictingPendingError(
                    f"{unit.name} on {pending.network} has transaction {pending.tx_hash} "
                    "still in flight"
                )
            if receipt.get("status") == 1:
                address = pending.expected_address or receipt.get("contractAddress")
                if address:
                    logger.info("Reconciled %s from receipt of %s", unit.name, pending.tx_hash)
                    return ledger.commit(handle, to_checksum_address(address), pending.tx_hash)
            ledger.fail(handle, f"transaction {pending.tx_hash} did not deploy (reconciled)")
            return None

        if pending.expected_address and code_matches(
            self.chain.get_code(pending.expected_address),
            unit.deployed_bytecode,
            unit.immutable_references,
        ):
            return ledger.commit(handle, pending.expected_address, None)

        opened = datetime.fromisoformat(pending.timestamp)
        age = (self._clock() - opened).total_seconds()
        if age < self.stale_pending_after:
            raise ConflictingPendingError(
                f"{unit.name} on {pending.network} is being deployed by run {pending.run_id}"
            )
        ledger.fail(handle, "abandoned before submission")
        return None
