"""
Secret-store backend selection.

The backend is chosen by, in order: an explicit override, the
GWCLI_KEYRING_BACKEND environment variable, the "keyring_backend" key in
config.json, and finally "auto".
"""

import logging
import os
from enum import Enum
from typing import Optional, Tuple

from .file_store import EncryptedFileSecretStore
from .keyring_store import KeyringSecretStore
from .store import SecretStore
from ..auth.oauth_config import KEYCHAIN_PREFLIGHT_TIMEOUT
from ..core.config import KEYRING_BACKEND_ENV, get_config_value
from ..utils.errors import BackendUnavailableError, InvalidBackendError

logger = logging.getLogger(__name__)

CONFIG_KEY = "keyring_backend"


class KeyringBackend(str, Enum):
    AUTO = "auto"
    KEYCHAIN = "keychain"
    FILE = "file"


_ALIASES = {
    "auto": KeyringBackend.AUTO,
    "keychain": KeyringBackend.KEYCHAIN,
    "native": KeyringBackend.KEYCHAIN,
    "file": KeyringBackend.FILE,
}


def parse_backend(value: Optional[str]) -> KeyringBackend:
    """
    Parse a backend name. Names are trimmed and case-insensitive; an empty
    value means auto.

    Raises:
        InvalidBackendError: For an unknown name.
    """
    normalized = (value or "").strip().lower()
    if not normalized:
        return KeyringBackend.AUTO
    try:
        return _ALIASES[normalized]
    except KeyError:
        raise InvalidBackendError(value) from None


def resolve_backend_info(override: Optional[str] = None) -> Tuple[KeyringBackend, str]:
    """
    Resolve the configured backend.

    Returns:
        (backend, source) where source is "override", "env", "config" or "default".
    """
    if override and override.strip():
        return parse_backend(override), "override"

    env_value = os.getenv(KEYRING_BACKEND_ENV)
    if env_value and env_value.strip():
        return parse_backend(env_value), "env"

    config_value = get_config_value(CONFIG_KEY)
    if isinstance(config_value, str) and config_value.strip():
        return parse_backend(config_value), "config"

    return KeyringBackend.AUTO, "default"


def open_default_store(override: Optional[str] = None) -> SecretStore:
    """
    Open the secret store for the resolved backend.

    With auto, an unavailable OS keyring falls back to the encrypted-file
    store. A forced keychain backend raises instead.

    Raises:
        BackendUnavailableError: If the keychain backend is forced but unusable.
        InvalidBackendError: For an unknown backend name.
    """
    backend, source = resolve_backend_info(override)
    logger.debug(f"Keyring backend {backend.value} (from {source})")

    if backend == KeyringBackend.FILE:
        return EncryptedFileSecretStore()

    if backend == KeyringBackend.KEYCHAIN:
        return KeyringSecretStore()

    try:
        return KeyringSecretStore()
    except BackendUnavailableError as e:
        logger.warning(f"OS keyring unavailable ({e.message}); using encrypted file store")
        return EncryptedFileSecretStore()


def ensure_keychain_access(
    store: SecretStore,
    override: Optional[str] = None,
    timeout: float = KEYCHAIN_PREFLIGHT_TIMEOUT,
) -> SecretStore:
    """
    Run the bounded keychain pre-flight for stores that need one.

    With auto, a keychain that does not answer in time is replaced by the
    encrypted-file store. A forced keychain backend raises instead.

    Returns:
        The store to use.

    Raises:
        BackendUnavailableError: If the forced keychain does not answer in time.
    """
    if not isinstance(store, KeyringSecretStore):
        return store

    try:
        store.ensure_access(timeout)
    except BackendUnavailableError as e:
        backend, _ = resolve_backend_info(override)
        if backend != KeyringBackend.AUTO:
            raise
        logger.warning(f"OS keyring unavailable ({e.message}); using encrypted file store")
        return EncryptedFileSecretStore()
    return store
