"""Credential storage for gwcli."""

from .backend import (
    KeyringBackend,
    ensure_keychain_access,
    open_default_store,
    parse_backend,
    resolve_backend_info,
)
from .file_store import EncryptedFileSecretStore
from .keyring_store import KeyringSecretStore
from .store import (
    DEFAULT_ACCOUNT_KEY,
    MemorySecretStore,
    SecretStore,
    Token,
    normalize_email,
    token_key,
)

__all__ = [
    "DEFAULT_ACCOUNT_KEY",
    "EncryptedFileSecretStore",
    "KeyringBackend",
    "KeyringSecretStore",
    "MemorySecretStore",
    "SecretStore",
    "Token",
    "ensure_keychain_access",
    "normalize_email",
    "open_default_store",
    "parse_backend",
    "resolve_backend_info",
    "token_key",
]
