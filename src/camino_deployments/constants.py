"""Configuration constants for camino-deployments library."""

# Keyless CREATE2 factory used by hardhat-deploy's `deterministicDeployment`
# Calldata is salt (32 bytes) followed by the contract init code
DETERMINISTIC_DEPLOYMENT_PROXY = "0x4e59b44847b379578588920cA78FbF26c0B4956C"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

SOURCIFY_SERVER_URL = "https://sourcify.dev/server"

DEFAULT_CONFIRMATIONS = 1
# Networks marked live wait deeper unless their entry sets confirmations
DEFAULT_LIVE_CONFIRMATIONS = 2
DEFAULT_CONFIRMATION_TIMEOUT = 300.0  # seconds
DEFAULT_POLL_INTERVAL = 2.0  # seconds

# Retry budget for transaction submission and explorer calls
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds

# A pending record with no transaction hash older than this is treated as abandoned
DEFAULT_STALE_PENDING_AFTER = 600.0  # seconds

LEDGER_FORMAT_VERSION = 1

# Network configuration mirrors the project's hardhat.config.js
# RPC URLs can be overridden through the environment variable named by rpc_env
NETWORK_CONFIG = {
    "hardhat": {
        "chain_id": 31337,
        "rpc_url": "http://127.0.0.1:8545",
        "rpc_env": "HARDHAT_RPC_URL",
        "gas_price": "auto",
        "gas_multiplier": 1,
        "live": False,
        "save_deployments": False,
        "explorers": [],
    },
    "Columbus": {
        "chain_id": 501,
        "rpc_url": "https://columbus.camino.network/ext/bc/C/rpc",
        "rpc_env": "COLUMBUS_RPC_URL",
        "gas_price": "auto",
        "gas_multiplier": 2,
        "live": True,
        "save_deployments": True,
        "explorers": [
            {"kind": "sourcify", "url": SOURCIFY_SERVER_URL},
        ],
    },
    "Camino": {
        "chain_id": 500,
        "rpc_url": "https://api.camino.network/ext/bc/C/rpc",
        "rpc_env": "CAMINO_RPC_URL",
        "gas_price": "auto",
        "gas_multiplier": 2,
        "live": True,
        "save_deployments": True,
        "explorers": [
            {"kind": "sourcify", "url": SOURCIFY_SERVER_URL},
        ],
    },
    "arbitrumSepolia": {
        "chain_id": 421614,
        "rpc_url": "https://sepolia-rollup.arbitrum.io/rpc",
        "rpc_env": "ARBITRUM_SEPOLIA_RPC_URL",
        "gas_price": "auto",
        "gas_multiplier": 1,
        "live": True,
        "save_deployments": True,
        "explorers": [
            {
                "kind": "etherscan",
                "url": "https://api-sepolia.arbiscan.io/api",
                "api_key_env": "ARBITRUM_API_KEY",
            },
            {"kind": "sourcify", "url": SOURCIFY_SERVER_URL},
        ],
    },
    "arbitrumOne": {
        "chain_id": 42161,
        "rpc_url": "https://arb1.arbitrum.io/rpc",
        "rpc_env": "ARBITRUM_ONE_RPC_URL",
        "gas_price": "auto",
        "gas_multiplier": 1,
        "live": True,
        "save_deployments": True,
        "explorers": [
            {
                "kind": "etherscan",
                "url": "https://api.arbiscan.io/api",
                "api_key_env": "ARBITRUM_API_KEY",
            },
            {"kind": "sourcify", "url": SOURCIFY_SERVER_URL},
        ],
    },
}

# Hardhat-style named accounts used when a run manifest declares none
DEFAULT_NAMED_ACCOUNTS = {
    "deployer": {"default": 0},
}
