"""
Native credential manager backend.

Secrets go to the OS keyring (macOS Keychain, Windows Credential Locker,
Secret Service on Linux) through the keyring library.
"""

import json
import logging
import threading
from typing import List, Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from .store import SecretStore
from ..core.config import APP_NAME
from ..utils.errors import BackendUnavailableError, NotFoundError, SecretStoreError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = APP_NAME
# keyring cannot enumerate entries, so stored keys are tracked here.
INDEX_KEY = "__index__"


class KeyringSecretStore(SecretStore):
    """Secret store backed by the OS credential manager."""

    name = "keychain"

    def __init__(
        self,
        service: str = KEYRING_SERVICE,
        backend: Optional[KeyringBackend] = None,
    ) -> None:
        self.service = service
        self.backend = backend or keyring.get_keyring()
        self._lock = threading.Lock()

        priority = getattr(self.backend, "priority", 0)
        if priority <= 0:
            raise BackendUnavailableError(
                f"no usable OS keyring ({type(self.backend).__name__})"
            )

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.backend.get_password(self.service, key)
        except KeyringError as e:
            raise SecretStoreError(f"keyring read failed: {e}") from e

    def _read_index(self) -> List[str]:
        raw = self._read(INDEX_KEY)
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Keyring index is corrupt; starting a new one")
            return []
        return [k for k in keys if isinstance(k, str)]

    def _write_index(self, keys: List[str]) -> None:
        try:
            self.backend.set_password(self.service, INDEX_KEY, json.dumps(sorted(set(keys))))
        except KeyringError as e:
            raise SecretStoreError(f"keyring write failed: {e}") from e

    def _get_item(self, key: str) -> str:
        value = self._read(key)
        if value is None:
            raise NotFoundError(key)
        return value

    def _set_item(self, key: str, value: str) -> None:
        with self._lock:
            try:
                self.backend.set_password(self.service, key, value)
            except KeyringError as e:
                raise SecretStoreError(f"keyring write failed: {e}") from e
            index = self._read_index()
            if key not in index:
                self._write_index(index + [key])

    def _remove_item(self, key: str) -> None:
        with self._lock:
            try:
                self.backend.delete_password(self.service, key)
            except PasswordDeleteError:
                raise NotFoundError(key) from None
            except KeyringError as e:
                raise SecretStoreError(f"keyring delete failed: {e}") from e
            index = self._read_index()
            if key in index:
                self._write_index([k for k in index if k != key])

    def keys(self) -> List[str]:
        return sorted(self._read_index())

    def ensure_access(self, timeout: float) -> None:
        """
        Probe the keyring with a bounded wait.

        A locked keychain can block on an unlock prompt. The probe runs in a
        daemon thread so a caller without a user at the keyboard is not stuck.

        Raises:
            BackendUnavailableError: If the probe fails or does not finish in time.
        """
        outcome: dict = {}

        def probe() -> None:
            try:
                self._read(INDEX_KEY)
            except SecretStoreError as e:
                outcome["error"] = e
            outcome["done"] = True

        thread = threading.Thread(target=probe, name="gwcli-keyring-probe", daemon=True)
        thread.start()
        thread.join(timeout)

        if not outcome.get("done"):
            raise BackendUnavailableError(
                f"keychain did not respond within {timeout:g}s; it may be locked. "
                "Unlock it or set GWCLI_KEYRING_BACKEND=file"
            )
        if "error" in outcome:
            raise BackendUnavailableError(f"keychain is not accessible: {outcome['error']}")
