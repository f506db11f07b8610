"""JSON-RPC chain and signer collaborators for camino-deployments library."""

import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

from .constants import DEFAULT_CONFIRMATION_TIMEOUT, DEFAULT_POLL_INTERVAL
from .exceptions import SubmissionFailedError, TransactionTimeoutError
from .types import GasMode, GasStrategy, NetworkProfile

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Capability to sign and send transactions for one account."""

    address: str

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        ...


class ChainClient(Protocol):
    """Chain submission collaborator used by the deployer."""

    def accounts(self) -> List[str]:
        ...

    def get_code(self, address: str) -> str:
        ...

    def submit(self, tx: Dict[str, Any], signer: Signer, gas: GasStrategy) -> str:
        ...

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        ...

    def wait_for_receipt(
        self, tx_hash: str, confirmations: int, timeout: float
    ) -> Dict[str, Any]:
        ...


class JsonRpcClient:
    """Minimal JSON-RPC 2.0 client over HTTP."""

    def __init__(self, url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Call a JSON-RPC method.

        Args:
            method: RPC method name, e.g. "eth_getCode"
            params: Positional parameters

        Returns:
            The response's "result" member

        Raises:
            SubmissionFailedError: retryable for transport errors and 5xx/429
                responses, not retryable for RPC-level errors
        """
        try:
            response = self._session.post(
                self.url,
                json={
                    "jsonrpc": "2.0",
                    "method": method,
                    "params": params or [],
                    "id": next(self._ids),
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SubmissionFailedError(
                f"Network error during RPC call {method}: {e}", retryable=True
            ) from e

        # Check for HTTP errors
        if response.status_code != 200:
            raise SubmissionFailedError(
                f"RPC request {method} failed with status {response.status_code}",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise SubmissionFailedError(f"Invalid RPC response for {method}: {e}") from e

        # Check for RPC errors
        if "error" in result:
            raise SubmissionFailedError(f"RPC error from {method}: {result['error']}")

        return result.get("result")


class NodeSigner:
    """Signer for an account managed by the node (hardhat, unlocked dev accounts)."""

    def __init__(self, rpc: JsonRpcClient, address: str):
        self._rpc = rpc
        self.address = address

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        return self._rpc.call("eth_sendTransaction", [tx])


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


def _normalize_receipt(receipt: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "transactionHash": receipt.get("transactionHash"),
        "status": _to_int(receipt.get("status")),
        "blockNumber": _to_int(receipt.get("blockNumber")),
        "contractAddress": receipt.get("contractAddress"),
        "gasUsed": _to_int(receipt.get("gasUsed")),
    }


class JsonRpcChain:
    """ChainClient backed by a JSON-RPC endpoint."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpc = rpc
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def for_network(cls, profile: NetworkProfile, **kwargs: Any) -> "JsonRpcChain":
        return cls(JsonRpcClient(profile.rpc_endpoint), **kwargs)

    def signer_for(self, address: str) -> NodeSigner:
        return NodeSigner(self.rpc, address)

    def accounts(self) -> List[str]:
        return list(self.rpc.call("eth_accounts") or [])

    def get_code(self, address: str) -> str:
        return self.rpc.call("eth_getCode", [address, "latest"]) or "0x"

    def submit(self, tx: Dict[str, Any], signer: Signer, gas: GasStrategy) -> str:
        """
        Price and send a transaction.

        The gas limit is the node's estimate scaled by the strategy multiplier.

        Returns:
            Transaction hash
        """
        tx = dict(tx)
        tx.setdefault("from", signer.address)

        estimate = _to_int(self.rpc.call("eth_estimateGas", [tx]))
        tx["gas"] = hex(int(estimate * gas.multiplier))

        if gas.mode is GasMode.FIXED:
            if gas.gas_price is None:
                raise SubmissionFailedError("Fixed gas strategy requires gas_price")
            tx["gasPrice"] = hex(gas.gas_price)
        else:
            tx["gasPrice"] = self.rpc.call("eth_gasPrice")

        tx_hash = signer.send_transaction(tx)
        logger.info("Sent transaction %s from %s", tx_hash, signer.address)
        return tx_hash

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        receipt = self.rpc.call("eth_getTransactionReceipt", [tx_hash])
        return _normalize_receipt(receipt) if receipt else None

    def wait_for_receipt(
        self,
        tx_hash: str,
        confirmations: int,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ) -> Dict[str, Any]:
        """
        Wait until a transaction is mined and buried under enough blocks.

        A reverted receipt is returned as soon as it is mined.

        Raises:
            TransactionTimeoutError: If the deadline passes first
        """
        deadline = self._clock() + timeout
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                if receipt["status"] == 0:
                    return receipt
                head = _to_int(self.rpc.call("eth_blockNumber"))
                if head - receipt["blockNumber"] + 1 >= confirmations:
                    return receipt
            if self._clock() >= deadline:
                raise TransactionTimeoutError(
                    f"Transaction {tx_hash} not confirmed within {timeout:.0f}s",
                    tx_hash=tx_hash,
                )
            self._sleep(self.poll_interval)
