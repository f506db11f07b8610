"""Run manifest loading for camino-deployments library."""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .artifacts import load_contract_artifact, load_immutable_references, load_source_bundle
from .constants import DEFAULT_NAMED_ACCOUNTS
from .exceptions import ArtifactNotFoundError, ConfigError
from .paths import get_project_paths
from .types import DeployableUnit, FailurePolicy, RoleRef, SaltPolicy, UnitRef

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """A parsed run manifest."""

    network: str
    units: List[DeployableUnit]
    ledger_path: Path
    deployments_dir: Path
    named_accounts: Dict[str, Any] = field(default_factory=dict)
    failure_policy: FailurePolicy = FailurePolicy.HALT
    verify: bool = True

    @property
    def roles(self) -> List[str]:
        """Every role the run needs: configured ones plus those units reference."""
        roles = list(self.named_accounts)
        for unit in self.units:
            for role in [unit.deployer_role, *unit.role_refs]:
                if role not in roles:
                    roles.append(role)
        return roles

    def select(self, tags: Iterable[str]) -> "RunConfig":
        """
        Narrow the run to units carrying any of the tags.

        Manifest units the selected ones depend on are kept too, transitively.
        Dependencies outside the manifest are left to the planner.

        Raises:
            ConfigError: If no unit carries any of the tags
        """
        wanted = {tags} if isinstance(tags, str) else set(tags)
        by_name = {unit.name: unit for unit in self.units}
        selected = set()
        stack = [unit.name for unit in self.units if wanted.intersection(unit.tags)]
        if not stack:
            raise ConfigError(f"No unit is tagged with any of: {', '.join(sorted(wanted))}")

        while stack:
            name = stack.pop()
            if name in selected:
                continue
            selected.add(name)
            stack.extend(dep for dep in by_name[name].dependencies if dep in by_name)

        # Keep manifest order
        return replace(self, units=[unit for unit in self.units if unit.name in selected])


def parse_argument(value: Any) -> Any:
    """
    Turn a manifest argument into a constructor argument.

    {"unit": "Name"} becomes UnitRef("Name"), {"role": "owner"} becomes
    RoleRef("owner"); lists are parsed element-wise; anything else is literal.
    """
    if isinstance(value, dict):
        if set(value) == {"unit"}:
            return UnitRef(value["unit"])
        if set(value) == {"role"}:
            return RoleRef(value["role"])
        raise ConfigError(f"Unsupported argument reference: {value!r}")
    if isinstance(value, list):
        return [parse_argument(v) for v in value]
    return value


def _parse_unit(entry: Mapping[str, Any], artifacts_dir: Path, verify: bool) -> DeployableUnit:
    if "name" not in entry:
        raise ConfigError(f"Unit entry without name: {entry!r}")
    name = entry["name"]
    tags = entry.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ConfigError(f"Tags of unit '{name}' must be a list of strings: {tags!r}")
    artifact = load_contract_artifact(artifacts_dir, entry.get("contract", name))

    source = None
    if verify and entry.get("verify", True):
        try:
            source = load_source_bundle(artifact)
        except ArtifactNotFoundError as e:
            logger.warning("No verification source for %s: %s", name, e)

    try:
        immutable_references = load_immutable_references(artifact)
    except ArtifactNotFoundError:
        immutable_references = None

    return DeployableUnit.from_artifact(
        name,
        artifact,
        args=tuple(parse_argument(a) for a in entry.get("args", [])),
        depends_on=tuple(entry.get("depends_on", [])),
        salt_policy=SaltPolicy(
            deterministic=bool(entry.get("deterministic", True)),
            salt=entry.get("salt"),
        ),
        deployer_role=entry.get("from", "deployer"),
        source=source,
        immutable_references=immutable_references,
        tags=tuple(tags),
    )


def parse_run_config(
    data: Mapping[str, Any],
    base_dir: Union[Path, str],
    network: Optional[str] = None,
) -> RunConfig:
    """
    Build a RunConfig from manifest data.

    Args:
        data: Manifest dictionary
        base_dir: Directory relative paths are resolved against
        network: Overrides the manifest's network

    Returns:
        RunConfig

    Raises:
        ConfigError: If the manifest is malformed
        ArtifactNotFoundError: If a unit's artifact is missing
    """
    artifacts_default, ledger_default, deployments_default = get_project_paths(base_dir)
    base_dir = Path(base_dir)

    network = network or data.get("network")
    if not network:
        raise ConfigError("Run manifest does not name a network")

    try:
        failure_policy = FailurePolicy(data.get("failure_policy", FailurePolicy.HALT.value))
    except ValueError as e:
        raise ConfigError(f"Unknown failure_policy: {data.get('failure_policy')!r}") from e

    def path_setting(key: str, default: Path) -> Path:
        return base_dir / data[key] if key in data else default

    verify = bool(data.get("verify", True))
    artifacts_dir = path_setting("artifacts", artifacts_default)
    units = [_parse_unit(entry, artifacts_dir, verify) for entry in data.get("units", [])]
    if not units:
        raise ConfigError("Run manifest declares no units")

    return RunConfig(
        network=network,
        units=units,
        ledger_path=path_setting("ledger", ledger_default),
        deployments_dir=path_setting("deployments", deployments_default),
        named_accounts=dict(data.get("named_accounts", DEFAULT_NAMED_ACCOUNTS)),
        failure_policy=failure_policy,
        verify=verify,
    )


def load_run_config(path: Union[Path, str], network: Optional[str] = None) -> RunConfig:
    """
    Load a JSON run manifest.

    Relative paths inside the manifest are resolved against its directory.
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Run manifest not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Run manifest {path} is not valid JSON: {e}") from e

    return parse_run_config(data, path.absolute().parent, network)
