"""Configuration management for CloudBox."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


BUILD_MODES = ("release", "debug")


@dataclass
class PairingConfig:
    """Login and entry point configuration."""

    login_timeout: float = 30.0  # seconds, single bounded wait
    poll_interval: float = 0.25  # seconds
    build_mode: str = "release"
    default_domain: str = "cloudbox.net"
    network_name: str = "mainnet"
    indirect_qr: bool = True  # Accept type-2 credentials


@dataclass
class Config:
    """CloudBox configuration."""

    log_level: str = "INFO"
    log_file: str | None = None
    cloud_root: str | None = None
    error_log_size: int = 10
    command_log_size: int = 16
    transfer_log_size: int = 128
    pairing: PairingConfig = field(default_factory=PairingConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "cloudbox" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    pairing_data = data.get("pairing") or {}
    build_mode = pairing_data.get("build_mode", PairingConfig.build_mode)
    if build_mode not in BUILD_MODES:
        build_mode = PairingConfig.build_mode

    pairing_config = PairingConfig(
        login_timeout=float(
            pairing_data.get("login_timeout", PairingConfig.login_timeout)
        ),
        poll_interval=float(
            pairing_data.get("poll_interval", PairingConfig.poll_interval)
        ),
        build_mode=build_mode,
        default_domain=pairing_data.get(
            "default_domain", PairingConfig.default_domain
        ),
        network_name=pairing_data.get("network_name", PairingConfig.network_name),
        indirect_qr=pairing_data.get("indirect_qr", PairingConfig.indirect_qr),
    )

    return Config(
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        cloud_root=data.get("cloud_root", Config.cloud_root),
        error_log_size=data.get("error_log_size", Config.error_log_size),
        command_log_size=data.get("command_log_size", Config.command_log_size),
        transfer_log_size=data.get("transfer_log_size", Config.transfer_log_size),
        pairing=pairing_config,
    )
