"""
Solana configuration for arborist.

Program IDs, RPC monikers and the layered settings lookup used by the CLI:
command-line flag, then environment, then the Solana CLI config file, then
the built-in default.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

from .errors import ConfigError

logger = structlog.get_logger(__name__)

# Metaplex Bubblegum and SPL program IDs
BUBBLEGUM_PROGRAM_ID = 'BGUMAp9Gq7iTEuizy4pqaxsTyUCBK68MDfK752saRPUY'
SPL_ACCOUNT_COMPRESSION_PROGRAM_ID = 'cmtDvXumGCrqC1Age74AVPhSRVXJMd8PJS91L8KbNCK'
SPL_NOOP_PROGRAM_ID = 'noopb9bkMVfRPU8AsbpTUg8AQkHtKwMYZiFUjNRtMmV'
SYSTEM_PROGRAM_ID = '11111111111111111111111111111111'

# Cluster monikers accepted by --url
SOLANA_RPC_MONIKERS = {
    'm': 'https://api.mainnet-beta.solana.com',
    'mainnet-beta': 'https://api.mainnet-beta.solana.com',
    'd': 'https://api.devnet.solana.com',
    'devnet': 'https://api.devnet.solana.com',
    't': 'https://api.testnet.solana.com',
    'testnet': 'https://api.testnet.solana.com',
    'l': 'http://localhost:8899',
    'localhost': 'http://localhost:8899',
}

COMMITMENT_LEVELS = ('processed', 'confirmed', 'finalized')

DEFAULT_CONFIG_FILE = Path('~/.config/solana/cli/config.yml')
DEFAULT_RPC_URL = SOLANA_RPC_MONIKERS['mainnet-beta']
DEFAULT_KEYPAIR_PATH = '~/.config/solana/id.json'
DEFAULT_COMMITMENT = 'confirmed'
DEFAULT_RPC_TIMEOUT = 90


def normalize_to_url_if_moniker(url_or_moniker: str) -> str:
    """Expand a cluster moniker to its RPC URL, pass anything else through."""
    return SOLANA_RPC_MONIKERS.get(url_or_moniker.strip().lower(), url_or_moniker)


def validate_commitment(commitment: str) -> str:
    value = commitment.strip().lower()
    if value not in COMMITMENT_LEVELS:
        raise ConfigError(
            f"Invalid commitment level {commitment!r}, expected one of: "
            f"{', '.join(COMMITMENT_LEVELS)}"
        )
    return value


def load_solana_cli_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load a Solana CLI configuration file.

    A missing file yields the CLI defaults; an unreadable or malformed one
    is a ConfigError.

    Args:
        path: Path to the config file (defaults to the Solana CLI location)

    Returns:
        Dictionary with json_rpc_url, keypair_path and commitment
    """
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_FILE.expanduser()
    defaults = {
        'json_rpc_url': DEFAULT_RPC_URL,
        'keypair_path': DEFAULT_KEYPAIR_PATH,
        'commitment': DEFAULT_COMMITMENT,
    }

    try:
        raw = config_path.read_text()
    except FileNotFoundError:
        logger.debug("Solana CLI config not found, using defaults", path=str(config_path))
        return defaults
    except OSError as e:
        raise ConfigError(f"Error loading Solana CLI configuration {config_path}: {e}") from e

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing Solana CLI configuration {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Solana CLI configuration {config_path} is not a mapping")

    config = dict(defaults)
    for key in defaults:
        value = data.get(key)
        if isinstance(value, str) and value:
            config[key] = value

    logger.debug("Loaded Solana CLI config", path=str(config_path), **config)
    return config


def get_arborist_config(
    config_path: Optional[str] = None,
    rpc_url: Optional[str] = None,
    keypair: Optional[str] = None,
    commitment: Optional[str] = None,
    rpc_timeout: Optional[int] = None,
) -> Dict[str, Any]:
    """Resolve runtime settings from flags, environment and the CLI config file."""
    cli_config = load_solana_cli_config(config_path)

    url = rpc_url or os.getenv('SOLANA_RPC_URL') or cli_config['json_rpc_url']
    keypair_source = keypair or os.getenv('SOLANA_KEYPAIR_PATH') or cli_config['keypair_path']
    commitment_level = commitment or os.getenv('SOLANA_COMMITMENT') or cli_config['commitment']

    if rpc_timeout is None:
        try:
            rpc_timeout = int(os.getenv('SOLANA_TIMEOUT', str(DEFAULT_RPC_TIMEOUT)))
        except ValueError as e:
            raise ConfigError(f"SOLANA_TIMEOUT must be an integer: {e}") from e

    try:
        max_retries = int(os.getenv('SOLANA_MAX_RETRIES', '3'))
        retry_delay = float(os.getenv('SOLANA_RETRY_DELAY', '1.0'))
    except ValueError as e:
        raise ConfigError(f"Invalid retry setting in environment: {e}") from e

    return {
        'rpc_url': normalize_to_url_if_moniker(url),
        'keypair_path': keypair_source,
        'commitment': validate_commitment(commitment_level),
        'timeout': rpc_timeout,
        'max_retries': max_retries,
        'retry_delay': retry_delay,
    }
