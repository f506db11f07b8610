"""Network registry for camino-deployments library."""

import os
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .constants import (
    DEFAULT_CONFIRMATIONS,
    DEFAULT_LIVE_CONFIRMATIONS,
    DETERMINISTIC_DEPLOYMENT_PROXY,
    NETWORK_CONFIG,
)
from .exceptions import ConfigError, UnknownNetworkError
from .types import ExplorerEndpoint, ExplorerKind, GasMode, GasStrategy, NetworkProfile


def _gas_strategy(name: str, config: Mapping[str, Any]) -> GasStrategy:
    gas_price = config.get("gas_price", "auto")
    multiplier = float(config.get("gas_multiplier", 1))
    if gas_price == "auto":
        return GasStrategy(mode=GasMode.AUTO, multiplier=multiplier)
    try:
        return GasStrategy(mode=GasMode.FIXED, multiplier=multiplier, gas_price=int(gas_price))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid gas_price for network '{name}': {gas_price!r}") from e


def _explorers(name: str, config: Mapping[str, Any]) -> tuple:
    endpoints = []
    for entry in config.get("explorers", []):
        try:
            kind = ExplorerKind(entry["kind"])
        except (KeyError, ValueError) as e:
            raise ConfigError(f"Invalid explorer for network '{name}': {entry!r}") from e
        endpoints.append(
            ExplorerEndpoint(kind=kind, url=entry["url"], api_key_env=entry.get("api_key_env"))
        )
    return tuple(endpoints)


def profile_from_config(
    name: str, config: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None
) -> NetworkProfile:
    """
    Build a NetworkProfile from a NETWORK_CONFIG-style entry.

    Args:
        name: Network name
        config: Entry with chain_id, rpc_url and optional gas/explorer settings.
            Entries marked live default to DEFAULT_LIVE_CONFIRMATIONS.
        environ: Environment used for the rpc_env override (defaults to os.environ)

    Returns:
        NetworkProfile

    Raises:
        ConfigError: If required fields are missing or malformed
    """
    environ = os.environ if environ is None else environ

    if "chain_id" not in config:
        raise ConfigError(f"Network '{name}' is missing chain_id")

    rpc_url = config.get("rpc_url")
    rpc_env = config.get("rpc_env")
    if rpc_env and environ.get(rpc_env):
        rpc_url = environ[rpc_env]
    if not rpc_url:
        raise ConfigError(f"Network '{name}' has no RPC URL")

    default_confirmations = DEFAULT_LIVE_CONFIRMATIONS if config.get("live") else DEFAULT_CONFIRMATIONS

    return NetworkProfile(
        name=name,
        chain_id=int(config["chain_id"]),
        rpc_endpoint=rpc_url,
        gas_strategy=_gas_strategy(name, config),
        explorer_endpoints=_explorers(name, config),
        confirmations=int(config.get("confirmations", default_confirmations)),
        save_deployments=bool(config.get("save_deployments", False)),
        create2_factory=config.get("create2_factory", DETERMINISTIC_DEPLOYMENT_PROXY),
    )


class NetworkRegistry:
    """Statically configured set of deployment networks."""

    def __init__(self, profiles: Iterable[NetworkProfile]):
        self._profiles: Dict[str, NetworkProfile] = {}
        for profile in profiles:
            if profile.name in self._profiles:
                raise ConfigError(f"Network '{profile.name}' configured twice")
            self._profiles[profile.name] = profile

    @classmethod
    def from_config(
        cls,
        config: Optional[Mapping[str, Mapping[str, Any]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "NetworkRegistry":
        """
        Build a registry from a network table.

        Args:
            config: Network name -> entry (defaults to NETWORK_CONFIG)
            environ: Environment for RPC URL overrides

        Returns:
            NetworkRegistry
        """
        if config is None:
            config = NETWORK_CONFIG
        return cls(profile_from_config(name, entry, environ) for name, entry in config.items())

    def resolve(self, name: str) -> NetworkProfile:
        """
        Look up a network by name.

        Raises:
            UnknownNetworkError: If the network is not configured
        """
        try:
            return self._profiles[name]
        except KeyError:
            raise UnknownNetworkError(
                f"Network '{name}' is not configured (known: {', '.join(self.names())})"
            ) from None

    def has_network(self, name: str) -> bool:
        return name in self._profiles

    def names(self) -> List[str]:
        return list(self._profiles)
