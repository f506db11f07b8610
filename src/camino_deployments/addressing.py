"""Hashing, constructor encoding and CREATE2 address derivation."""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from .exceptions import ConfigError


def bytecode_hash(bytecode: str) -> str:
    """
    Hash creation bytecode the way the ledger stores it.

    Args:
        bytecode: 0x-prefixed creation bytecode

    Returns:
        0x-prefixed keccak-256 digest
    """
    return encode_hex(keccak(hexstr=bytecode))


def args_hash(encoded_args: bytes) -> str:
    return encode_hex(keccak(encoded_args))


def _canonical_type(param: Dict[str, Any]) -> str:
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def constructor_types(abi: List[Dict[str, Any]]) -> List[str]:
    """
    Get canonical ABI types of the constructor inputs.

    Args:
        abi: Contract ABI

    Returns:
        List of type strings, empty if the contract has no explicit constructor
    """
    for item in abi:
        if item.get("type") == "constructor":
            return [_canonical_type(p) for p in item.get("inputs", [])]
    return []


def _coerce(abi_type: str, value: Any) -> Any:
    # JSON manifests carry bytes values as hex strings
    if abi_type.endswith("]") and isinstance(value, (list, tuple)):
        element_type = abi_type[: abi_type.rindex("[")]
        return [_coerce(element_type, v) for v in value]
    if abi_type.startswith("bytes") and isinstance(value, str):
        return decode_hex(value)
    return value


def encode_constructor_args(abi: List[Dict[str, Any]], args: Sequence[Any]) -> bytes:
    """
    ABI-encode constructor arguments.

    Args:
        abi: Contract ABI
        args: Fully resolved constructor arguments

    Returns:
        Encoded arguments (empty bytes when the constructor takes none)

    Raises:
        ConfigError: If the arguments do not fit the constructor's types
    """
    types = constructor_types(abi)
    if len(types) != len(args):
        raise ConfigError(
            f"Constructor expects {len(types)} argument(s), got {len(args)}"
        )
    if not types:
        return b""
    try:
        return encode(types, [_coerce(t, v) for t, v in zip(types, args)])
    except (EncodingError, TypeError, ValueError) as e:
        raise ConfigError(f"Cannot encode constructor arguments as ({','.join(types)}): {e}") from e


def init_code(bytecode: str, encoded_args: bytes) -> bytes:
    return decode_hex(bytecode) + encoded_args


def derive_salt(deployer: str, seed: str, code: bytes) -> bytes:
    """
    Derive the CREATE2 salt for a unit.

    The salt binds the deployer, the unit's salt seed and its init code, so the
    resulting address is a pure function of all of them.

    Args:
        deployer: Deployer account address
        seed: Explicit salt (0x-hex or text) or the unit name
        code: Init code (creation bytecode + encoded constructor args)

    Returns:
        32-byte salt
    """
    seed_hash = keccak(hexstr=seed) if seed.startswith("0x") else keccak(text=seed)
    return keccak(decode_hex(deployer) + seed_hash + keccak(code))


def create2_address(factory: str, salt: bytes, code: bytes) -> str:
    """
    Compute the address a CREATE2 factory deploys init code to.

    Args:
        factory: Factory contract address
        salt: 32-byte salt
        code: Init code

    Returns:
        Checksummed address
    """
    if len(salt) != 32:
        raise ValueError(f"CREATE2 salt must be 32 bytes, got {len(salt)}")
    digest = keccak(b"\xff" + decode_hex(factory) + salt + keccak(code))
    return to_checksum_address(digest[12:])


def has_code(code: Optional[str]) -> bool:
    return code not in (None, "", "0x", "0x0")


def code_matches(
    code: str,
    deployed_bytecode: Optional[str],
    immutable_references: Optional[Sequence[Tuple[int, int]]] = None,
) -> bool:
    """
    Check on-chain runtime code against the artifact's deployed bytecode.

    The constructor fills in immutable variables, so the artifact holds zeros
    where the chain holds their values. Known immutable ranges are masked
    before comparing. When they are unknown only a size difference counts as
    a mismatch: filling in immutables never changes the code size, and the
    CREATE2 address already commits to the init code.

    Args:
        code: Runtime code read from the chain
        deployed_bytecode: Artifact `deployedBytecode`
        immutable_references: (start, length) byte ranges of immutables, or None

    Returns:
        True if the code can be this artifact's
    """
    if not deployed_bytecode or not has_code(code):
        return False
    onchain = bytearray(decode_hex(code))
    expected = bytearray(decode_hex(deployed_bytecode))
    if len(onchain) != len(expected):
        return False
    if immutable_references is None:
        return True
    for start, length in immutable_references:
        onchain[start : start + length] = bytes(length)
        expected[start : start + length] = bytes(length)
    return onchain == expected


def to_jsonable(value: Any) -> Any:
    """Convert resolved constructor arguments to JSON-safe values."""
    if isinstance(value, (bytes, bytearray)):
        return encode_hex(bytes(value))
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value
