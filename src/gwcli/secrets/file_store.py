"""
Encrypted-file secret store.

Used when no OS keyring is available (headless servers, containers, CI).
Each key is kept in its own file under the keyring directory, encrypted with
a Fernet key derived from a user password.
"""

import base64
import binascii
import getpass
import json
import logging
import os
import secrets
import stat
import sys
from typing import Callable, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .store import SecretStore
from ..core.config import KEYRING_PASSWORD_ENV, get_keyring_dir, write_private_file
from ..utils.errors import BackendUnavailableError, NotFoundError, SecretStoreError

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
SALT_BYTES = 16
KDF_ITERATIONS = 390000

PasswordProvider = Callable[[], str]


def default_password_provider() -> str:
    """
    Get the file-backend password.

    Reads GWCLI_KEYRING_PASSWORD, else prompts when stdin is a terminal.

    Raises:
        BackendUnavailableError: If no password can be obtained.
    """
    password = os.getenv(KEYRING_PASSWORD_ENV)
    if password:
        return password
    if sys.stdin is not None and sys.stdin.isatty():
        password = getpass.getpass("Keyring password: ")
        if password:
            return password
    raise BackendUnavailableError(
        f"file keyring needs a password; set {KEYRING_PASSWORD_ENV} for non-interactive use"
    )


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a password with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))


def key_filename(key: str) -> str:
    """Map a store key to a filesystem-safe file name."""
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")


def key_from_filename(name: str) -> Optional[str]:
    padded = name + "=" * (-len(name) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


class EncryptedFileSecretStore(SecretStore):
    """Secret store keeping one encrypted file per key."""

    name = "file"

    def __init__(
        self,
        directory: Optional[str] = None,
        password_provider: PasswordProvider = default_password_provider,
    ) -> None:
        self.directory = directory or get_keyring_dir()
        self.password_provider = password_provider
        self._password: Optional[str] = None

    def _get_password(self) -> str:
        if self._password is None:
            self._password = self.password_provider()
        return self._password

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, key_filename(key))

    def _ensure_directory(self) -> None:
        os.makedirs(self.directory, exist_ok=True)
        os.chmod(self.directory, stat.S_IRWXU)

    def _get_item(self, key: str) -> str:
        path = self._path(key)
        try:
            with open(path, "r") as f:
                envelope = json.load(f)
        except FileNotFoundError:
            raise NotFoundError(key) from None
        except (OSError, json.JSONDecodeError) as e:
            raise SecretStoreError(f"cannot read {path}: {e}") from e

        if not isinstance(envelope, dict) or envelope.get("version") != ENVELOPE_VERSION:
            raise SecretStoreError(f"unsupported keyring file format: {path}")

        try:
            salt = base64.b64decode(envelope["salt"])
            fernet = Fernet(derive_key(self._get_password(), salt))
            return fernet.decrypt(envelope["data"].encode("ascii")).decode("utf-8")
        except InvalidToken:
            raise SecretStoreError(
                "cannot decrypt keyring file; wrong password?"
            ) from None
        except (KeyError, binascii.Error, AttributeError) as e:
            raise SecretStoreError(f"corrupt keyring file {path}: {e}") from e

    def _set_item(self, key: str, value: str) -> None:
        self._ensure_directory()
        salt = secrets.token_bytes(SALT_BYTES)
        fernet = Fernet(derive_key(self._get_password(), salt))
        envelope = {
            "version": ENVELOPE_VERSION,
            "salt": base64.b64encode(salt).decode("ascii"),
            "data": fernet.encrypt(value.encode("utf-8")).decode("ascii"),
        }
        try:
            write_private_file(self._path(key), json.dumps(envelope).encode("utf-8"))
        except OSError as e:
            raise SecretStoreError(f"cannot write keyring file: {e}") from e

    def _remove_item(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            raise NotFoundError(key) from None
        except OSError as e:
            raise SecretStoreError(f"cannot remove keyring file: {e}") from e

    def keys(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        keys = []
        for name in os.listdir(self.directory):
            if ".tmp." in name:
                continue
            key = key_from_filename(name)
            if key is not None:
                keys.append(key)
        return sorted(keys)
