"""
Core utilities package for gwcli.

This package provides shared configuration paths and the persisted config.
"""

from .config import (
    APP_NAME,
    ensure_config_dir,
    get_client_credentials_path,
    get_config_dir,
    get_config_path,
    get_config_value,
    get_keyring_dir,
    load_config,
    write_private_file,
)

__all__ = [
    "APP_NAME",
    "ensure_config_dir",
    "get_client_credentials_path",
    "get_config_dir",
    "get_config_path",
    "get_config_value",
    "get_keyring_dir",
    "load_config",
    "write_private_file",
]
