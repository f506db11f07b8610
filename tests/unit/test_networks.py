"""Unit tests for the network registry."""

import pytest

from camino_deployments.constants import (
    DEFAULT_CONFIRMATIONS,
    DEFAULT_LIVE_CONFIRMATIONS,
    DETERMINISTIC_DEPLOYMENT_PROXY,
    SOURCIFY_SERVER_URL,
)
from camino_deployments.exceptions import ConfigError, UnknownNetworkError
from camino_deployments.networks import NetworkRegistry, profile_from_config
from camino_deployments.types import ExplorerKind, GasMode, NetworkProfile


class TestDefaultNetworks:
    """Test the built-in network table."""

    def test_includes_hardhat_config_networks(self):
        """Test that every network from the hardhat config is available."""
        registry = NetworkRegistry.from_config(environ={})

        for name in ["hardhat", "Columbus", "Camino", "arbitrumSepolia", "arbitrumOne"]:
            assert registry.has_network(name)

    def test_columbus_profile(self):
        """Test the Columbus testnet settings."""
        profile = NetworkRegistry.from_config(environ={}).resolve("Columbus")

        assert profile.chain_id == 501
        assert profile.rpc_endpoint == "https://columbus.camino.network/ext/bc/C/rpc"
        assert profile.gas_strategy.mode is GasMode.AUTO
        assert profile.gas_strategy.multiplier == 2
        assert profile.confirmations == DEFAULT_LIVE_CONFIRMATIONS
        assert profile.save_deployments is True
        assert profile.create2_factory == DETERMINISTIC_DEPLOYMENT_PROXY
        assert [e.kind for e in profile.explorer_endpoints] == [ExplorerKind.SOURCIFY]
        assert profile.explorer_endpoints[0].url == SOURCIFY_SERVER_URL

    def test_camino_mainnet_chain_id(self):
        """Test that Camino mainnet uses chain id 500."""
        assert NetworkRegistry.from_config(environ={}).resolve("Camino").chain_id == 500

    def test_arbitrum_uses_arbiscan_and_sourcify(self):
        """Test that Arbitrum networks verify on Arbiscan with ARBITRUM_API_KEY."""
        profile = NetworkRegistry.from_config(environ={}).resolve("arbitrumOne")

        etherscan, sourcify = profile.explorer_endpoints
        assert profile.chain_id == 42161
        assert etherscan.kind is ExplorerKind.ETHERSCAN
        assert etherscan.api_key_env == "ARBITRUM_API_KEY"
        assert etherscan.api_key({"ARBITRUM_API_KEY": "secret"}) == "secret"
        assert sourcify.kind is ExplorerKind.SOURCIFY

    def test_hardhat_is_not_live(self):
        """Test that the local network waits one block and has no explorers."""
        profile = NetworkRegistry.from_config(environ={}).resolve("hardhat")

        assert profile.chain_id == 31337
        assert profile.confirmations == DEFAULT_CONFIRMATIONS
        assert profile.explorer_endpoints == ()


class TestResolve:
    """Test network lookup."""

    def test_unknown_network(self):
        """Test that unknown networks raise UnknownNetworkError."""
        registry = NetworkRegistry.from_config(environ={})

        with pytest.raises(UnknownNetworkError, match="TestNet"):
            registry.resolve("TestNet")

    def test_unknown_network_catchable_as_lookup_error(self):
        """Test that UnknownNetworkError can be caught as LookupError."""
        with pytest.raises(LookupError):
            NetworkRegistry([]).resolve("mainnet")

    def test_names_in_declared_order(self):
        """Test that names() keeps the configured order."""
        registry = NetworkRegistry(
            [
                NetworkProfile(name="b", chain_id=2, rpc_endpoint="http://b"),
                NetworkProfile(name="a", chain_id=1, rpc_endpoint="http://a"),
            ]
        )
        assert registry.names() == ["b", "a"]

    def test_duplicate_network_rejected(self):
        """Test that a network cannot be configured twice."""
        profile = NetworkProfile(name="a", chain_id=1, rpc_endpoint="http://a")

        with pytest.raises(ConfigError, match="twice"):
            NetworkRegistry([profile, profile])


class TestProfileFromConfig:
    """Test building profiles from table entries."""

    def test_rpc_url_overridden_from_environment(self):
        """Test that rpc_env replaces the configured URL when set."""
        profile = profile_from_config(
            "local",
            {"chain_id": 1337, "rpc_url": "http://default", "rpc_env": "LOCAL_RPC"},
            environ={"LOCAL_RPC": "http://override"},
        )
        assert profile.rpc_endpoint == "http://override"

    def test_rpc_url_from_environment_only(self):
        """Test that an entry can rely on the environment for its URL."""
        profile = profile_from_config(
            "local", {"chain_id": 1337, "rpc_env": "LOCAL_RPC"}, environ={"LOCAL_RPC": "http://env"}
        )
        assert profile.rpc_endpoint == "http://env"

    def test_missing_rpc_url(self):
        """Test that an entry without any RPC URL is rejected."""
        with pytest.raises(ConfigError, match="RPC URL"):
            profile_from_config("local", {"chain_id": 1337, "rpc_env": "LOCAL_RPC"}, environ={})

    def test_missing_chain_id(self):
        """Test that chain_id is required."""
        with pytest.raises(ConfigError, match="chain_id"):
            profile_from_config("local", {"rpc_url": "http://x"}, environ={})

    def test_fixed_gas_price(self):
        """Test that a numeric gas_price selects the fixed strategy."""
        profile = profile_from_config(
            "local", {"chain_id": 1, "rpc_url": "http://x", "gas_price": 25000000000}, environ={}
        )
        assert profile.gas_strategy.mode is GasMode.FIXED
        assert profile.gas_strategy.gas_price == 25000000000

    def test_invalid_gas_price(self):
        """Test that a malformed gas_price is rejected."""
        with pytest.raises(ConfigError, match="gas_price"):
            profile_from_config(
                "local", {"chain_id": 1, "rpc_url": "http://x", "gas_price": "fast"}, environ={}
            )

    def test_invalid_explorer_kind(self):
        """Test that unknown explorer kinds are rejected."""
        with pytest.raises(ConfigError, match="explorer"):
            profile_from_config(
                "local",
                {"chain_id": 1, "rpc_url": "http://x", "explorers": [{"kind": "blockscan", "url": "u"}]},
                environ={},
            )

    def test_live_entry_defaults_to_deeper_confirmations(self):
        """Test that live networks wait DEFAULT_LIVE_CONFIRMATIONS unless overridden."""
        entry = {"chain_id": 1, "rpc_url": "http://x", "live": True}

        assert profile_from_config("a", entry, environ={}).confirmations == DEFAULT_LIVE_CONFIRMATIONS
        assert profile_from_config("a", {**entry, "confirmations": 5}, environ={}).confirmations == 5
        assert profile_from_config("a", {**entry, "live": False}, environ={}).confirmations == 1
