"""Configuration management."""

import copy
import yaml
from pathlib import Path
from typing import Any, Dict

DEFAULTS: Dict[str, Any] = {
    "timeouts": {
        "module_wait": 5,
        "slow_import": 1,
        "slow_bulk": 2,
        "long_running": 15,
        "endpoint_wait": 10,
        "invoke_warning": 10,
        "poll_interval": 0.01,
    },
    "network": {
        "namespace": "_NetworkingStorage",
    },
    "units": {
        "server": "duplex/units/server",
        "client": "duplex/units/client",
        "shared": "duplex/units/shared",
    },
    "packages": {
        "shared": [],
        "server": [],
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}

_config: Dict[str, Any] = {}
_base_path: Path = None


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge overrides into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = None) -> Dict[str, Any]:
    """Load configuration from YAML file, falling back to built-in defaults."""
    global _config, _base_path

    if config_path is None:
        # Try to find config in common locations
        possible_paths = [
            Path("config/config.yaml"),
            Path("config.yaml"),
            Path.home() / ".config" / "duplex" / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break
        else:
            _base_path = Path(__file__).resolve().parent.parent
            _config = copy.deepcopy(DEFAULTS)
            _resolve_paths()
            return _config

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _base_path = config_path.resolve().parent.parent  # Project root

    with open(config_path) as f:
        _config = _merge(DEFAULTS, yaml.safe_load(f) or {})

    # Resolve relative paths
    _resolve_paths()

    return _config


def _absolute(value: str) -> str:
    path = Path(value)
    if not path.is_absolute():
        return str(_base_path / path)
    return str(path)


def _resolve_paths():
    """Resolve relative paths in config to absolute paths."""
    global _config

    units = _config.get("units") or {}
    for key, value in units.items():
        if value:
            units[key] = _absolute(value)

    packages = _config.get("packages") or {}
    for key, value in packages.items():
        if isinstance(value, str):
            value = [value]
        packages[key] = [_absolute(p) for p in value or []]

    logging_config = _config.get("logging") or {}
    if logging_config.get("file"):
        logging_config["file"] = _absolute(logging_config["file"])


def reset_config():
    """Forget any loaded configuration."""
    global _config, _base_path
    _config = {}
    _base_path = None


def get_config() -> Dict[str, Any]:
    """Get the loaded configuration."""
    if not _config:
        load_config()
    return _config


def get(key: str, default: Any = None) -> Any:
    """Get a config value by dot-notation key (e.g., 'timeouts.invoke_warning')."""
    if not _config:
        load_config()

    keys = key.split(".")
    value = _config
    for k in keys:
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default
    return value
