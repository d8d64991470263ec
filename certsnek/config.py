"""
Configuration handling for certsnek.
"""

import os
import yaml
from dataclasses import dataclass, field, fields
from typing import List, Optional


@dataclass
class IssuanceConfig:
    """Configuration for one certificate issuance."""

    # Files
    folder: str = "certs"

    # Certificate
    domains: List[str] = field(default_factory=list)
    key_size: int = 2048
    keystore_password: Optional[str] = None

    # Certificate authority
    staging: bool = False
    directory_url: Optional[str] = None
    email: Optional[str] = None

    # Challenge delivery: "standalone" or "webroot"
    responder: str = "standalone"
    webroot: Optional[str] = None
    http_port: int = 80

    # Polling
    poll_attempts: int = 10
    poll_interval: float = 3.0
    timeout: Optional[float] = None

    # Logging
    log_level: str = "INFO"

    def validate(self):
        """
        Check the configuration for values that would fail later.

        Raises:
            ValueError: Describing the first problem found
        """
        if not self.domains:
            raise ValueError("At least one domain is required")
        if self.responder not in ("standalone", "webroot"):
            raise ValueError(f"Unknown responder: {self.responder}")
        if self.responder == "webroot" and not self.webroot:
            raise ValueError("The webroot responder requires a webroot directory")
        if self.key_size < 2048:
            raise ValueError("Key size must be at least 2048 bits")
        if self.poll_attempts < 1:
            raise ValueError("poll_attempts must be at least 1")


def load_config(config_path: str) -> IssuanceConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        IssuanceConfig object with values from the YAML file
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config_data = yaml.safe_load(f)

    if not isinstance(config_data, dict):
        raise ValueError("Invalid configuration format. Expected a YAML dictionary.")

    known = {f.name for f in fields(IssuanceConfig)}
    unknown = sorted(set(config_data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    return IssuanceConfig(**config_data)


def save_config(config: IssuanceConfig, config_path: str):
    """
    Save configuration to a YAML file.

    The keystore password is never written.
    """
    config_dict = {
        f.name: getattr(config, f.name)
        for f in fields(config)
        if getattr(config, f.name) is not None and f.name != "keystore_password"
    }

    os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)

    with open(config_path, 'w') as f:
        yaml.dump(config_dict, f, default_flow_style=False)
