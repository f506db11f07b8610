"""Account role resolution for camino-deployments library."""

import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from eth_utils import is_address, to_checksum_address

from .exceptions import UnresolvedAccountError
from .types import AccountRole, NetworkProfile

logger = logging.getLogger(__name__)

AccountsProvider = Callable[[NetworkProfile], List[str]]


class AccountResolver:
    """
    Maps logical account roles to addresses, hardhat `namedAccounts` style.

    Each role maps network names (or chain ids, or "default") to one of:
    - a literal address
    - an integer index into the signer collaborator's account list
    - "@other_role", an alias of another role

    A role may also map directly to a single such value for every network.
    """

    def __init__(
        self,
        named_accounts: Mapping[str, Any],
        accounts_provider: Optional[AccountsProvider] = None,
    ):
        self._named_accounts = dict(named_accounts)
        self._accounts_provider = accounts_provider
        self._account_lists: Dict[str, List[str]] = {}

    def roles(self) -> List[str]:
        return list(self._named_accounts)

    def resolve_role(self, role: str, profile: NetworkProfile) -> str:
        """
        Resolve a role to a checksummed address for a network.

        Args:
            role: Role name, e.g. "deployer"
            profile: Active network

        Returns:
            Checksummed address

        Raises:
            UnresolvedAccountError: If the role has no usable mapping for the network
        """
        return self._resolve(role, profile, frozenset())

    def resolve_all(self, roles: Iterable[str], profile: NetworkProfile) -> List[AccountRole]:
        resolved = [AccountRole(name=role, address=self.resolve_role(role, profile)) for role in roles]
        for account in resolved:
            logger.debug("Role %s on %s -> %s", account.name, profile.name, account.address)
        return resolved

    def _resolve(self, role: str, profile: NetworkProfile, seen: FrozenSet[str]) -> str:
        if role in seen:
            raise UnresolvedAccountError(f"Account role '{role}' aliases itself")
        if role not in self._named_accounts:
            raise UnresolvedAccountError(f"Account role '{role}' is not configured")

        binding = self._named_accounts[role]
        if isinstance(binding, Mapping):
            value = binding.get(profile.name)
            if value is None:
                value = binding.get(str(profile.chain_id), binding.get(profile.chain_id))
            if value is None:
                value = binding.get("default")
        else:
            value = binding

        if value is None:
            raise UnresolvedAccountError(
                f"Account role '{role}' has no mapping for network '{profile.name}'"
            )

        if isinstance(value, bool):
            raise UnresolvedAccountError(f"Account role '{role}' has invalid mapping {value!r}")
        if isinstance(value, int):
            return self._by_index(role, value, profile)
        if isinstance(value, str) and value.startswith("@"):
            return self._resolve(value[1:], profile, seen | {role})
        if isinstance(value, str) and is_address(value):
            return to_checksum_address(value)

        raise UnresolvedAccountError(f"Account role '{role}' has invalid mapping {value!r}")

    def _by_index(self, role: str, index: int, profile: NetworkProfile) -> str:
        if self._accounts_provider is None:
            raise UnresolvedAccountError(
                f"Account role '{role}' uses index {index} but no signer accounts are available"
            )
        if profile.name not in self._account_lists:
            self._account_lists[profile.name] = list(self._accounts_provider(profile))
        accounts = self._account_lists[profile.name]
        if not 0 <= index < len(accounts):
            raise UnresolvedAccountError(
                f"Account role '{role}' uses index {index} but network '{profile.name}' "
                f"exposes {len(accounts)} account(s)"
            )
        return to_checksum_address(accounts[index])
