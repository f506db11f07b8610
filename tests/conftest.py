"""Shared pytest fixtures for camino-deployments tests."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from camino_deployments.addressing import create2_address
from camino_deployments.deployer import DeterministicDeployer
from camino_deployments.exceptions import TransactionTimeoutError
from camino_deployments.ledger import DeploymentLedger
from camino_deployments.types import (
    AccountRole,
    DeployableUnit,
    NetworkProfile,
    RoleRef,
    RunContext,
    SourceBundle,
    UnitRef,
)

# Hardhat's default dev accounts #0 and #1
DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OWNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

MOCK_TOKEN_BYTECODE = "0x6080604052348015600f57600080fd5b50603f80601d6000396000f3fe"
MOCK_TOKEN_RUNTIME = "0x6080604052600080fdfea164736f6c6343000818000a"
BOOKING_BYTECODE = "0x608060405234801561001057600080fd5b506040516101"
BOOKING_RUNTIME = "0x608060405234801561001057600080fd5b5060043610"
REGISTRY_BYTECODE = "0x6080604052348015600e575f80fd5b50"
REGISTRY_RUNTIME = "0x60806040525f80fdfe"

MOCK_TOKEN_ABI: List[Dict[str, Any]] = [
    {"inputs": [], "stateMutability": "nonpayable", "type": "constructor"},
    {
        "inputs": [{"internalType": "address", "name": "to", "type": "address"}],
        "name": "mint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

BOOKING_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "address", "name": "_usdtToken", "type": "address"},
            {"internalType": "address", "name": "initialOwner", "type": "address"},
        ],
        "stateMutability": "nonpayable",
        "type": "constructor",
    },
]

REGISTRY_ABI: List[Dict[str, Any]] = []


class FakeSigner:
    """Signer stand-in; the fake chain never calls send_transaction."""

    def __init__(self, address: str):
        self.address = address

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        raise AssertionError("FakeChain submits transactions itself")


class FakeChain:
    """
    In-memory chain with a CREATE2 factory.

    Deploys registered creation bytecode by placing its runtime code at the
    CREATE2 (or derived CREATE) address. Failures, reverts and unmined
    transactions can be scripted.
    """

    def __init__(self, accounts: Optional[List[str]] = None):
        self._accounts = accounts or [DEPLOYER, OWNER]
        self.code: Dict[str, str] = {}
        self.runtime: Dict[str, str] = {
            MOCK_TOKEN_BYTECODE: MOCK_TOKEN_RUNTIME,
            BOOKING_BYTECODE: BOOKING_RUNTIME,
            REGISTRY_BYTECODE: REGISTRY_RUNTIME,
        }
        self.sent: List[Dict[str, Any]] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.unmined: Dict[str, tuple] = {}
        self.submit_failures: List[Exception] = []
        self.receipt_failures: List[Exception] = []
        self.revert_next = False
        self.mine = True

    def accounts(self) -> List[str]:
        return list(self._accounts)

    def get_code(self, address: str) -> str:
        return self.code.get(address.lower(), "0x")

    def set_code(self, address: str, code: str) -> None:
        self.code[address.lower()] = code

    def _runtime_for(self, code: bytes) -> str:
        for bytecode, runtime in self.runtime.items():
            if code.startswith(decode_hex(bytecode)):
                return runtime
        return "0xfe"

    def submit(self, tx: Dict[str, Any], signer: Any, gas: Any) -> str:
        if self.submit_failures:
            raise self.submit_failures.pop(0)

        self.sent.append(dict(tx, **{"from": signer.address}))
        tx_hash = encode_hex(keccak(text=f"tx-{len(self.sent)}"))
        receipt = {
            "transactionHash": tx_hash,
            "status": 1,
            "blockNumber": len(self.sent),
            "contractAddress": None,
            "gasUsed": 100000,
        }

        if self.revert_next:
            self.revert_next = False
            receipt["status"] = 0
            self.receipts[tx_hash] = receipt
            return tx_hash

        data = decode_hex(tx["data"])
        if tx.get("to"):
            salt, code = data[:32], data[32:]
            address = create2_address(tx["to"], salt, code)
        else:
            code = data
            address = to_checksum_address(keccak(text=tx_hash)[12:])
            receipt["contractAddress"] = address

        if self.mine:
            self.set_code(address, self._runtime_for(code))
            self.receipts[tx_hash] = receipt
        else:
            self.unmined[tx_hash] = (receipt, address, self._runtime_for(code))
        return tx_hash

    def mine_pending(self) -> None:
        for tx_hash, (receipt, address, runtime) in self.unmined.items():
            self.set_code(address, runtime)
            self.receipts[tx_hash] = receipt
        self.unmined.clear()

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.receipts.get(tx_hash)

    def wait_for_receipt(self, tx_hash: str, confirmations: int, timeout: float) -> Dict[str, Any]:
        if self.receipt_failures:
            raise self.receipt_failures.pop(0)
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise TransactionTimeoutError(f"Transaction {tx_hash} not mined", tx_hash=tx_hash)
        return receipt


@pytest.fixture
def deployer_address() -> str:
    return DEPLOYER


@pytest.fixture
def owner_address() -> str:
    return OWNER


@pytest.fixture
def network() -> NetworkProfile:
    """A local network with no explorers."""
    return NetworkProfile(name="TestNet", chain_id=1337, rpc_endpoint="http://127.0.0.1:8545")


@pytest.fixture
def ledger(tmp_path: Path) -> DeploymentLedger:
    return DeploymentLedger(tmp_path / "deployments" / "ledger.json")


@pytest.fixture
def old_clock():
    """Clock reading one hour ago, for records left behind by earlier runs."""
    return lambda: datetime.now(timezone.utc) - timedelta(hours=1)


@pytest.fixture
def context(network: NetworkProfile, ledger: DeploymentLedger) -> RunContext:
    return RunContext(
        network=network,
        accounts=(AccountRole("deployer", DEPLOYER), AccountRole("owner", OWNER)),
        ledger=ledger,
        run_id="run-1",
    )


@pytest.fixture
def make_context(network: NetworkProfile, ledger: DeploymentLedger):
    """Factory for further runs against the same ledger."""

    def make(run_id: str, network_profile: Optional[NetworkProfile] = None) -> RunContext:
        return RunContext(
            network=network_profile or network,
            accounts=(AccountRole("deployer", DEPLOYER), AccountRole("owner", OWNER)),
            ledger=ledger,
            run_id=run_id,
        )

    return make


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def signer_factory():
    return FakeSigner


@pytest.fixture
def sleeps() -> List[float]:
    """Collects backoff delays instead of sleeping."""
    return []


@pytest.fixture
def deployer(chain: FakeChain, sleeps: List[float]) -> DeterministicDeployer:
    return DeterministicDeployer(chain, FakeSigner, sleep=sleeps.append)


@pytest.fixture
def source_bundle() -> SourceBundle:
    return SourceBundle(
        fully_qualified_name="contracts/SmartHotelBooking.sol:SmartHotelBooking",
        compiler_version="v0.8.24+commit.e11b9ed9",
        standard_json_input={
            "language": "Solidity",
            "sources": {"contracts/SmartHotelBooking.sol": {"content": "contract SmartHotelBooking {}"}},
        },
        metadata='{"compiler":{"version":"0.8.24+commit.e11b9ed9"}}',
    )


@pytest.fixture
def mock_token_unit() -> DeployableUnit:
    return DeployableUnit(
        name="MockToken",
        abi=MOCK_TOKEN_ABI,
        bytecode=MOCK_TOKEN_BYTECODE,
        deployed_bytecode=MOCK_TOKEN_RUNTIME,
    )


@pytest.fixture
def booking_unit(source_bundle: SourceBundle) -> DeployableUnit:
    return DeployableUnit(
        name="SmartHotelBooking",
        abi=BOOKING_ABI,
        bytecode=BOOKING_BYTECODE,
        args=(UnitRef("MockToken"), RoleRef("owner")),
        deployed_bytecode=BOOKING_RUNTIME,
        source=source_bundle,
    )


@pytest.fixture
def registry_unit() -> DeployableUnit:
    return DeployableUnit(
        name="Registry",
        abi=REGISTRY_ABI,
        bytecode=REGISTRY_BYTECODE,
        deployed_bytecode=REGISTRY_RUNTIME,
    )


def _write_artifact(
    artifacts_dir: Path,
    source_name: str,
    contract_name: str,
    abi: List[Dict[str, Any]],
    bytecode: str,
    deployed_bytecode: str,
    build_info: Optional[str] = "build-info-1",
) -> Path:
    contract_dir = artifacts_dir / source_name
    contract_dir.mkdir(parents=True, exist_ok=True)
    artifact_path = contract_dir / f"{contract_name}.json"
    artifact_path.write_text(
        json.dumps(
            {
                "_format": "hh-sol-artifact-1",
                "contractName": contract_name,
                "sourceName": source_name,
                "abi": abi,
                "bytecode": bytecode,
                "deployedBytecode": deployed_bytecode,
                "linkReferences": {},
                "deployedLinkReferences": {},
            }
        )
    )
    if build_info is not None:
        depth = "../" * len(Path(source_name).parts)
        (contract_dir / f"{contract_name}.dbg.json").write_text(
            json.dumps({"_format": "hh-sol-dbg-1", "buildInfo": f"{depth}build-info/{build_info}.json"})
        )
    return artifact_path


@pytest.fixture
def hardhat_project(tmp_path: Path) -> Path:
    """
    A compiled hardhat project with MockToken, SmartHotelBooking and Registry.

    Registry has no debug file, so it cannot be verified.
    """
    project = tmp_path / "project"
    artifacts_dir = project / "artifacts"

    _write_artifact(
        artifacts_dir,
        "contracts/MockToken.sol",
        "MockToken",
        MOCK_TOKEN_ABI,
        MOCK_TOKEN_BYTECODE,
        MOCK_TOKEN_RUNTIME,
    )
    _write_artifact(
        artifacts_dir,
        "contracts/SmartHotelBooking.sol",
        "SmartHotelBooking",
        BOOKING_ABI,
        BOOKING_BYTECODE,
        BOOKING_RUNTIME,
    )
    _write_artifact(
        artifacts_dir,
        "contracts/Registry.sol",
        "Registry",
        REGISTRY_ABI,
        REGISTRY_BYTECODE,
        REGISTRY_RUNTIME,
        build_info=None,
    )

    build_info_dir = artifacts_dir / "build-info"
    build_info_dir.mkdir(parents=True)
    (build_info_dir / "build-info-1.json").write_text(
        json.dumps(
            {
                "_format": "hh-sol-build-info-1",
                "solcVersion": "0.8.24",
                "solcLongVersion": "0.8.24+commit.e11b9ed9",
                "input": {
                    "language": "Solidity",
                    "sources": {
                        "contracts/MockToken.sol": {"content": "contract MockToken {}"},
                        "contracts/SmartHotelBooking.sol": {
                            "content": "contract SmartHotelBooking {}"
                        },
                    },
                    "settings": {"optimizer": {"enabled": True, "runs": 200}},
                },
                "output": {
                    "contracts": {
                        "contracts/MockToken.sol": {
                            "MockToken": {
                                "metadata": '{"language":"Solidity"}',
                                "evm": {"deployedBytecode": {"immutableReferences": {}}},
                            }
                        },
                        "contracts/SmartHotelBooking.sol": {
                            "SmartHotelBooking": {
                                "metadata": '{"language":"Solidity"}',
                                "evm": {
                                    "deployedBytecode": {
                                        "immutableReferences": {
                                            "12": [{"start": 14, "length": 4}],
                                            "7": [{"start": 2, "length": 4}],
                                        }
                                    }
                                },
                            }
                        },
                    }
                },
            }
        )
    )
    return project
