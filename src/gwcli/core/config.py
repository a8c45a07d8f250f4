"""
Shared configuration for gwcli.

This module centralizes configuration paths and the persisted config file so
that values are not hardcoded throughout the codebase.
"""

import json
import logging
import os
import stat
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

APP_NAME = "gwcli"

CONFIG_DIR_ENV = "GWCLI_CONFIG_DIR"
KEYRING_BACKEND_ENV = "GWCLI_KEYRING_BACKEND"
KEYRING_PASSWORD_ENV = "GWCLI_KEYRING_PASSWORD"
CLIENT_ID_ENV = "GWCLI_CLIENT_ID"
CLIENT_SECRET_ENV = "GWCLI_CLIENT_SECRET"

CONFIG_FILENAME = "config.json"
CLIENT_CREDENTIALS_FILENAME = "credentials.json"
KEYRING_DIRNAME = "keyring"


def get_config_dir() -> str:
    """
    Get the configuration directory path.

    Returns:
        GWCLI_CONFIG_DIR if set, otherwise ~/.config/gwcli.
    """
    env_dir = os.getenv(CONFIG_DIR_ENV)
    if env_dir:
        return os.path.expanduser(env_dir)
    return os.path.join(os.path.expanduser("~"), ".config", APP_NAME)


def ensure_config_dir() -> str:
    """
    Get the configuration directory path, creating it if necessary.

    The directory is restricted to the owning user.
    """
    config_dir = get_config_dir()
    if not os.path.exists(config_dir):
        os.makedirs(config_dir, exist_ok=True)
        logger.info(f"Created config directory: {config_dir}")
    os.chmod(config_dir, stat.S_IRWXU)
    return config_dir


def get_config_path() -> str:
    """Get the path of the persisted config file."""
    return os.path.join(get_config_dir(), CONFIG_FILENAME)


def config_exists() -> bool:
    """Check whether the persisted config file exists."""
    return os.path.exists(get_config_path())


def get_client_credentials_path() -> str:
    """Get the path of the stored OAuth client credentials."""
    return os.path.join(get_config_dir(), CLIENT_CREDENTIALS_FILENAME)


def get_keyring_dir() -> str:
    """Get the directory used by the encrypted-file secret store."""
    return os.path.join(get_config_dir(), KEYRING_DIRNAME)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the persisted configuration.

    Args:
        path: Config file path. Defaults to get_config_path().

    Returns:
        The config mapping, or an empty dict if the file does not exist.

    Raises:
        ValueError: If the file is not a JSON object.
    """
    path = path or get_config_path()
    if not os.path.exists(path):
        return {}

    with open(path, "r") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file format: {path}")
    return data


def get_config_value(key: str, default: Optional[Any] = None) -> Any:
    """Read a single value from the persisted configuration."""
    try:
        return load_config().get(key, default)
    except (IOError, json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Could not read config file: {e}")
        return default


def write_private_file(path: str, data: bytes) -> None:
    """
    Write a file readable only by the owning user.

    The data is written to a uniquely named temp file in the same directory
    and then moved over the target, so readers never observe a partial write
    and concurrent writers never share a temp file.
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=os.path.basename(path) + ".tmp.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
