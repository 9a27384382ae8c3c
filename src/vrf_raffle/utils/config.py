"""
Configuration Management
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from vrf_raffle.raffle.models import RaffleConfig
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "raffle.conf"

ENV_SECTIONS = {
    "RAFFLE_": "raffle",
    "ORACLE_": "oracle",
    "BLOCKCHAIN_": "blockchain",
    "OPERATOR_": "operator",
    "SERVER_": "server",
}

NETWORK_PRESETS: Dict[str, Dict[str, Any]] = {
    "local": {
        "raffle": {
            "entrance_fee": 10**16,
            "interval": 30,
            "key_hash": "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c",
            "subscription_id": 0,
            "callback_gas_limit": 500000,
        },
        "oracle": {"mode": "local", "auto_fulfill_delay": 2},
        "blockchain": {"chain_id": 31337, "rpc_url": "http://127.0.0.1:8545"},
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from the network preset, the config file and the environment.

    Later sources win: preset < file < environment variables.
    """
    path = Path(config_file or os.getenv("RAFFLE_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    file_config: Dict[str, Any] = {}
    if path.exists():
        with open(path, "r") as f:
            file_config = json.load(f)
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file {path} not found. Will only use presets and environment variables.")

    env_config = _apply_env_overrides({})

    network = (
        env_config.get("raffle", {}).get("network")
        or file_config.get("raffle", {}).get("network")
        or "local"
    )
    if network not in NETWORK_PRESETS:
        raise ValueError(f"Unknown network preset '{network}'")

    config = copy.deepcopy(NETWORK_PRESETS[network])
    _merge(config, file_config)
    _merge(config, env_config)
    config.setdefault("raffle", {})["network"] = network

    logger.info(f"Configuration loaded for network '{network}'")
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides: RAFFLE_ENTRANCE_FEE -> raffle.entrance_fee"""
    for key, value in os.environ.items():
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                name = key[len(prefix):].lower()
                if name == "config_file":
                    break
                config.setdefault(section, {})[name] = value
                break
    return config


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def _as_int(value: Any, name: str) -> int:
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return int(value, 16)
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"raffle.{name} must be an integer, got {value!r}") from exc


def build_raffle_config(config: Dict[str, Any]) -> RaffleConfig:
    """Validate the ``raffle`` section and return the engine configuration."""
    raffle = config.get("raffle", {})
    if "entrance_fee" not in raffle or "interval" not in raffle:
        raise ValueError("raffle.entrance_fee and raffle.interval are required")

    entrance_fee = _as_int(raffle["entrance_fee"], "entrance_fee")
    interval = _as_int(raffle["interval"], "interval")
    if entrance_fee <= 0:
        raise ValueError("raffle.entrance_fee must be positive")
    if interval < 0:
        raise ValueError("raffle.interval must not be negative")

    coordinator = raffle.get("coordinator")
    if not coordinator and get_config_value(config, "oracle.mode", "local") == "chain":
        coordinator = get_config_value(config, "blockchain.coordinator_address")

    return RaffleConfig(
        entrance_fee=entrance_fee,
        interval=interval,
        key_hash=str(raffle.get("key_hash", "0x" + "00" * 32)),
        subscription_id=_as_int(raffle.get("subscription_id", 0), "subscription_id"),
        request_confirmations=_as_int(raffle.get("request_confirmations", 3), "request_confirmations"),
        callback_gas_limit=_as_int(raffle.get("callback_gas_limit", 500000), "callback_gas_limit"),
        num_words=_as_int(raffle.get("num_words", 1), "num_words"),
        draw_timeout=_as_int(raffle.get("draw_timeout", 0), "draw_timeout"),
        coordinator=coordinator,
    )
