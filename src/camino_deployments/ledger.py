"""Durable deployment ledger for camino-deployments library."""

import fcntl
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .constants import LEDGER_FORMAT_VERSION
from .exceptions import (
    AlreadyDeployedError,
    ConflictingPendingError,
    LedgerStateError,
)
from .types import DeploymentRecord, RecordHandle, RecordStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentLedger:
    """
    One record per (unit, network), stored in a single JSON document.

    Layout:
        {"version": 1, "networks": {network: {unit: record}}}

    Every operation is an exclusive read-modify-write: an flock on a sidecar
    lock file serializes processes, an in-process lock serializes threads, and
    the document is replaced atomically.
    """

    def __init__(
        self,
        path: Union[Path, str],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.path = Path(path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")
        self._thread_lock = threading.RLock()
        self._clock = clock or _utcnow

    # -- storage -------------------------------------------------------------

    @contextmanager
    def _transaction(self, write: bool = True) -> Iterator[Dict[str, Any]]:
        with self._thread_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._lock_path, "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    data = self._read()
                    yield data
                    if write:
                        self._write(data)
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {"version": LEDGER_FORMAT_VERSION, "networks": {}}
        except json.JSONDecodeError as e:
            # The ledger is the idempotence authority: never start over silently
            raise LedgerStateError(f"Deployment ledger {self.path} is corrupted: {e}") from e

        if data.get("version") != LEDGER_FORMAT_VERSION:
            raise LedgerStateError(
                f"Unsupported ledger version {data.get('version')!r} in {self.path}"
            )
        data.setdefault("networks", {})
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    @staticmethod
    def _get(data: Dict[str, Any], unit: str, network: str) -> Optional[DeploymentRecord]:
        entry = data["networks"].get(network, {}).get(unit)
        return DeploymentRecord.from_dict(entry) if entry is not None else None

    @staticmethod
    def _put(data: Dict[str, Any], record: DeploymentRecord) -> None:
        data["networks"].setdefault(record.network, {})[record.unit] = record.to_dict()

    def _now(self) -> str:
        return self._clock().isoformat()

    def _owned_record(self, data: Dict[str, Any], handle: RecordHandle) -> DeploymentRecord:
        record = self._get(data, handle.unit, handle.network)
        if record is None:
            raise LedgerStateError(f"No ledger record for {handle.unit} on {handle.network}")
        if record.run_id != handle.run_id:
            raise LedgerStateError(
                f"Ledger record for {handle.unit} on {handle.network} belongs to run "
                f"{record.run_id}, not {handle.run_id}"
            )
        return record

    # -- queries -------------------------------------------------------------

    def get(self, unit: str, network: str) -> Optional[DeploymentRecord]:
        """Get the record for (unit, network) whatever its status."""
        with self._transaction(write=False) as data:
            return self._get(data, unit, network)

    def lookup(self, unit: str, network: str) -> Optional[DeploymentRecord]:
        """
        Get the confirmed record for (unit, network).

        Returns:
            DeploymentRecord if confirmed, None otherwise
        """
        record = self.get(unit, network)
        if record is not None and record.status is RecordStatus.CONFIRMED:
            return record
        return None

    def pending(self, unit: str, network: str) -> Optional[DeploymentRecord]:
        record = self.get(unit, network)
        if record is not None and record.status is RecordStatus.PENDING:
            return record
        return None

    def records(self, network: str) -> List[DeploymentRecord]:
        with self._transaction(write=False) as data:
            entries = data["networks"].get(network, {})
            return [DeploymentRecord.from_dict(entries[name]) for name in sorted(entries)]

    def handle_for(self, record: DeploymentRecord) -> RecordHandle:
        """Handle for resolving a pending record left behind by an earlier run."""
        return RecordHandle(unit=record.unit, network=record.network, run_id=record.run_id)

    # -- transitions ---------------------------------------------------------

    def begin_pending(
        self,
        unit: str,
        network: str,
        expected_bytecode_hash: str,
        *,
        run_id: str,
        args_hash: Optional[str] = None,
        expected_address: Optional[str] = None,
        constructor_args: Optional[List[Any]] = None,
    ) -> RecordHandle:
        """
        Open a pending record for (unit, network).

        Args:
            unit: Unit name
            network: Network name
            expected_bytecode_hash: Hash of the bytecode about to be deployed
            run_id: Identifier of the calling run
            args_hash: Hash of the encoded constructor arguments
            expected_address: Deterministic target address, if any
            constructor_args: Resolved constructor arguments (JSON-safe)

        Returns:
            RecordHandle required by commit() / fail()

        Raises:
            ConflictingPendingError: If a pending record already exists
            AlreadyDeployedError: If a confirmed record with the same bytecode hash exists
        """
        with self._transaction() as data:
            existing = self._get(data, unit, network)
            history: List[Dict[str, Any]] = []

            if existing is not None:
                if existing.status is RecordStatus.PENDING:
                    raise ConflictingPendingError(
                        f"{unit} on {network} already has a pending deployment "
                        f"from run {existing.run_id}"
                    )
                if (
                    existing.status is RecordStatus.CONFIRMED
                    and existing.bytecode_hash == expected_bytecode_hash
                ):
                    raise AlreadyDeployedError(
                        f"{unit} on {network} is already deployed at {existing.address}",
                        record=existing,
                    )
                # Failed or outdated attempts are kept, never deleted
                superseded = existing.to_dict()
                superseded.pop("history")
                history = existing.history + [superseded]

            record = DeploymentRecord(
                unit=unit,
                network=network,
                status=RecordStatus.PENDING,
                bytecode_hash=expected_bytecode_hash,
                timestamp=self._now(),
                run_id=run_id,
                args_hash=args_hash,
                expected_address=expected_address,
                constructor_args=list(constructor_args or []),
                history=history,
            )
            self._put(data, record)

        logger.debug("Opened pending record for %s on %s (run %s)", unit, network, run_id)
        return RecordHandle(unit=unit, network=network, run_id=run_id)

    def attach_transaction(self, handle: RecordHandle, tx_hash: str) -> None:
        """Remember the broadcast transaction so a later run can reconcile it."""
        with self._transaction() as data:
            record = self._owned_record(data, handle)
            if record.status is not RecordStatus.PENDING:
                raise LedgerStateError(
                    f"Cannot attach transaction to {record.status.value} record "
                    f"for {handle.unit} on {handle.network}"
                )
            record.tx_hash = tx_hash
            self._put(data, record)

    def commit(
        self, handle: RecordHandle, address: str, tx_hash: Optional[str]
    ) -> DeploymentRecord:
        """
        Transition pending -> confirmed.

        Committing twice with the same address is a no-op.

        Raises:
            LedgerStateError: If the record is not pending for this handle, or was
                confirmed at a different address
        """
        with self._transaction() as data:
            record = self._owned_record(data, handle)
            if record.status is RecordStatus.CONFIRMED:
                if record.address is not None and record.address.lower() == address.lower():
                    return record
                raise LedgerStateError(
                    f"{handle.unit} on {handle.network} already confirmed at {record.address}"
                )
            if record.status is not RecordStatus.PENDING:
                raise LedgerStateError(
                    f"Cannot commit {record.status.value} record for {handle.unit} on {handle.network}"
                )

            record.status = RecordStatus.CONFIRMED
            record.address = address
            record.tx_hash = tx_hash or record.tx_hash
            record.timestamp = self._now()
            record.reason = None
            self._put(data, record)

        logger.info("Recorded %s on %s at %s", handle.unit, handle.network, address)
        return record

    def adopt(
        self,
        unit: str,
        network: str,
        address: str,
        bytecode_hash: str,
        *,
        run_id: str,
        tx_hash: Optional[str] = None,
        constructor_args: Optional[List[Any]] = None,
    ) -> Optional[DeploymentRecord]:
        """
        Record a deployment made outside the orchestrator as confirmed.

        Returns:
            The new record, or None if the key already has a record
        """
        with self._transaction() as data:
            if self._get(data, unit, network) is not None:
                return None
            record = DeploymentRecord(
                unit=unit,
                network=network,
                status=RecordStatus.CONFIRMED,
                bytecode_hash=bytecode_hash,
                timestamp=self._now(),
                run_id=run_id,
                address=address,
                tx_hash=tx_hash,
                constructor_args=list(constructor_args or []),
            )
            self._put(data, record)
        return record

    def fail(self, handle: RecordHandle, reason: str) -> DeploymentRecord:
        """
        Transition pending -> failed. The key can be retried by a later run.

        Raises:
            LedgerStateError: If the record is not pending for this handle
        """
        with self._transaction() as data:
            record = self._owned_record(data, handle)
            if record.status is not RecordStatus.PENDING:
                raise LedgerStateError(
                    f"Cannot fail {record.status.value} record for {handle.unit} on {handle.network}"
                )
            record.status = RecordStatus.FAILED
            record.reason = reason
            record.timestamp = self._now()
            self._put(data, record)

        logger.warning("Recorded failure of %s on %s: %s", handle.unit, handle.network, reason)
        return record
