"""Hardhat artifact and hardhat-deploy file handling for camino-deployments library."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .addressing import bytecode_hash
from .exceptions import ArtifactNotFoundError, ConfigError, DefectiveDeploymentError
from .ledger import DeploymentLedger
from .types import DeployableUnit, DeploymentRecord, RecordStatus, SourceBundle

logger = logging.getLogger(__name__)


@dataclass
class ContractArtifact:
    """Compiled contract as emitted by `hardhat compile`."""

    contract_name: str
    source_name: str  # e.g., "contracts/HotelBooking.sol"
    abi: List[Dict[str, Any]]
    bytecode: str
    deployed_bytecode: Optional[str]
    path: Path

    @property
    def fully_qualified_name(self) -> str:
        return f"{self.source_name}:{self.contract_name}"


def _artifact_candidates(artifacts_dir: Path, contract: str) -> List[Path]:
    if ":" in contract:
        source_name, name = contract.rsplit(":", 1)
        path = artifacts_dir / source_name / f"{name}.json"
        return [path] if path.exists() else []

    return sorted(
        p
        for p in artifacts_dir.rglob(f"{contract}.json")
        if "build-info" not in p.parts
    )


def load_contract_artifact(artifacts_dir: Union[Path, str], contract: str) -> ContractArtifact:
    """
    Load a Hardhat contract artifact.

    Args:
        artifacts_dir: Hardhat `artifacts` directory
        contract: Contract name, or fully qualified "path/File.sol:Name"

    Returns:
        ContractArtifact

    Raises:
        ArtifactNotFoundError: If no artifact matches
        ConfigError: If the bare name matches several artifacts, or the artifact
            has no deployable bytecode
    """
    artifacts_dir = Path(artifacts_dir)
    candidates = _artifact_candidates(artifacts_dir, contract)
    if not candidates:
        raise ArtifactNotFoundError(f"No artifact for '{contract}' under {artifacts_dir}")
    if len(candidates) > 1:
        names = ", ".join(str(p.relative_to(artifacts_dir)) for p in candidates)
        raise ConfigError(f"Contract name '{contract}' is ambiguous: {names}")

    path = candidates[0]
    with open(path) as f:
        data = json.load(f)

    bytecode = data.get("bytecode")
    if not bytecode or bytecode == "0x":
        raise ConfigError(f"Artifact {path} has no bytecode (abstract contract or interface?)")
    if "__$" in bytecode:
        raise ConfigError(f"Artifact {path} has unlinked library references")

    return ContractArtifact(
        contract_name=data["contractName"],
        source_name=data["sourceName"],
        abi=data["abi"],
        bytecode=bytecode,
        deployed_bytecode=data.get("deployedBytecode"),
        path=path,
    )


def _load_build_info(artifact: ContractArtifact) -> Dict[str, Any]:
    """
    Load the build-info an artifact was compiled in.

    Hardhat writes `<Name>.dbg.json` next to each artifact, pointing at the
    build-info file that holds the solc standard JSON input and output.

    Raises:
        ArtifactNotFoundError: If the debug file or build-info is missing
    """
    dbg_path = artifact.path.with_name(f"{artifact.contract_name}.dbg.json")
    try:
        with open(dbg_path) as f:
            build_info_ref = json.load(f)["buildInfo"]
    except FileNotFoundError as e:
        raise ArtifactNotFoundError(f"Missing debug file {dbg_path}") from e

    build_info_path = (dbg_path.parent / build_info_ref).resolve()
    try:
        with open(build_info_path) as f:
            build_info = json.load(f)
    except FileNotFoundError as e:
        raise ArtifactNotFoundError(f"Missing build-info {build_info_path}") from e

    return build_info


def _contract_output(build_info: Dict[str, Any], artifact: ContractArtifact) -> Dict[str, Any]:
    return (
        build_info.get("output", {})
        .get("contracts", {})
        .get(artifact.source_name, {})
        .get(artifact.contract_name, {})
    )


def load_source_bundle(artifact: ContractArtifact) -> SourceBundle:
    """
    Build the verification bundle from an artifact's build-info.

    Raises:
        ArtifactNotFoundError: If the debug file or build-info is missing
    """
    build_info = _load_build_info(artifact)
    return SourceBundle(
        fully_qualified_name=artifact.fully_qualified_name,
        compiler_version=f"v{build_info['solcLongVersion']}",
        standard_json_input=build_info["input"],
        metadata=_contract_output(build_info, artifact).get("metadata"),
    )


def load_immutable_references(artifact: ContractArtifact) -> Optional[Tuple[Tuple[int, int], ...]]:
    """
    Get the byte ranges of immutable variables in the deployed bytecode.

    Returns:
        Sorted (start, length) ranges, or None if the build-info was compiled
        without `evm.deployedBytecode` output

    Raises:
        ArtifactNotFoundError: If the debug file or build-info is missing
    """
    deployed = _contract_output(_load_build_info(artifact), artifact).get("evm", {}).get(
        "deployedBytecode"
    )
    if deployed is None:
        return None
    return tuple(
        sorted(
            (ref["start"], ref["length"])
            for refs in deployed.get("immutableReferences", {}).values()
            for ref in refs
        )
    )


def export_hardhat_deployment(
    record: DeploymentRecord, unit: DeployableUnit, deployments_dir: Union[Path, str], chain_id: int
) -> Path:
    """
    Write a confirmed record as a hardhat-deploy deployment file.

    Produces `<deployments_dir>/<network>/<unit>.json` and the network's
    `.chainId` marker, so existing hardhat tooling can read the result.

    Returns:
        Path of the written deployment file
    """
    if record.status is not RecordStatus.CONFIRMED:
        raise ValueError(
            f"Only confirmed records can be exported, {record.unit} is {record.status.value}"
        )

    network_dir = Path(deployments_dir) / record.network
    network_dir.mkdir(parents=True, exist_ok=True)
    (network_dir / ".chainId").write_text(str(chain_id))

    previous = sum(1 for h in record.history if h.get("status") == RecordStatus.CONFIRMED.value)
    data: Dict[str, Any] = {
        "address": record.address,
        "abi": unit.abi,
        "args": record.constructor_args,
        "bytecode": unit.bytecode,
        "numDeployments": previous + 1,
    }
    if record.tx_hash:
        data["transactionHash"] = record.tx_hash
    if unit.deployed_bytecode:
        data["deployedBytecode"] = unit.deployed_bytecode

    path = network_dir / f"{record.unit}.json"
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    logger.debug("Exported %s to %s", record.unit, path)
    return path


def parse_hardhat_deployment(file_path: Path) -> Dict[str, Any]:
    """
    Parse a hardhat-deploy JSON file.

    Args:
        file_path: Path to contract deployment JSON file

    Returns:
        Dictionary with canonical field names:
        - Required: address, bytecode
        - Optional: transaction_hash, constructor_args

    Raises:
        DefectiveDeploymentError: If address or bytecode is missing
    """
    with open(file_path) as f:
        data = json.load(f)

    if not data.get("address") or not data.get("bytecode"):
        raise DefectiveDeploymentError(
            f"Missing address or bytecode in hardhat deployment file: {file_path}"
        )

    result: Dict[str, Any] = {
        "address": data["address"],
        "bytecode": data["bytecode"],
    }
    if "transactionHash" in data:
        result["transaction_hash"] = data["transactionHash"]
    if "args" in data:
        result["constructor_args"] = data["args"]

    return result


def import_hardhat_deployments(
    deployments_dir: Union[Path, str],
    network: str,
    ledger: DeploymentLedger,
    run_id: str = "hardhat-deploy-import",
) -> List[DeploymentRecord]:
    """
    Seed the ledger from an existing hardhat-deploy `deployments/<network>` folder.

    Units already present in the ledger are left untouched; defective files are
    skipped with a warning.

    Returns:
        Records that were added
    """
    network_dir = Path(deployments_dir) / network
    imported: List[DeploymentRecord] = []
    for deployment_file in sorted(network_dir.glob("*.json")):
        unit_name = deployment_file.stem
        try:
            data = parse_hardhat_deployment(deployment_file)
        except DefectiveDeploymentError as e:
            logger.warning("Skipping %s: %s", deployment_file, e)
            continue

        record = ledger.adopt(
            unit=unit_name,
            network=network,
            address=data["address"],
            bytecode_hash=bytecode_hash(data["bytecode"]),
            tx_hash=data.get("transaction_hash"),
            constructor_args=data.get("constructor_args", []),
            run_id=run_id,
        )
        if record is not None:
            imported.append(record)

    logger.info("Imported %d deployment(s) for %s from %s", len(imported), network, network_dir)
    return imported
