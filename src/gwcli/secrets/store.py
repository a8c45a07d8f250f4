"""
Token records and the secret store contract.

Every backend stores opaque strings under string keys. SecretStore builds the
token-level operations on top of four raw primitives, so backends only have
to implement those.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..utils.errors import NotFoundError, SecretStoreError

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "token:"
DEFAULT_ACCOUNT_KEY = "default_account"


def normalize_email(email: str) -> str:
    """Trim and case-fold an account email."""
    return (email or "").strip().lower()


def token_key(email: str) -> str:
    """Get the store key for an account email."""
    return f"{TOKEN_KEY_PREFIX}{normalize_email(email)}"


def _format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"invalid created_at: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Token:
    """A stored refresh credential for one account."""

    email: str
    refresh_token: str = field(repr=False)
    services: List[str] = field(default_factory=list)
    scopes: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the export format."""
        data: Dict[str, Any] = {
            "email": self.email,
            "services": list(self.services),
            "scopes": list(self.scopes),
        }
        if self.created_at is not None:
            data["created_at"] = _format_time(self.created_at)
        data["refresh_token"] = self.refresh_token
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        """
        Parse a token from the export format.

        Raises:
            ValueError: If email or refresh_token is missing.
        """
        if not isinstance(data, dict):
            raise ValueError("token must be a JSON object")
        email = str(data.get("email") or "").strip()
        if not email:
            raise ValueError("missing email")
        refresh_token = str(data.get("refresh_token") or "").strip()
        if not refresh_token:
            raise ValueError("missing refresh_token")
        return cls(
            email=email,
            refresh_token=refresh_token,
            services=[str(s) for s in data.get("services") or []],
            scopes=[str(s) for s in data.get("scopes") or []],
            created_at=_parse_time(data.get("created_at")),
        )


class SecretStore(ABC):
    """Base class for credential storage backends."""

    name = "base"

    # --- raw primitives ---------------------------------------------------

    @abstractmethod
    def _get_item(self, key: str) -> str:
        """Return the value for key or raise NotFoundError."""

    @abstractmethod
    def _set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    def _remove_item(self, key: str) -> None:
        """Remove key or raise NotFoundError."""

    @abstractmethod
    def keys(self) -> List[str]:
        """List every stored key."""

    # --- tokens -----------------------------------------------------------

    def get_token(self, email: str) -> Token:
        """
        Get the token for an account.

        Raises:
            NotFoundError: If no token is stored for the account.
            SecretStoreError: If the stored record is unreadable.
        """
        email = normalize_email(email)
        if not email:
            raise ValueError("missing email")
        raw = self._get_item(token_key(email))
        try:
            token = Token.from_dict(json.loads(raw))
        except ValueError as e:
            raise SecretStoreError(f"corrupt token record: {e}", account=email) from e
        token.email = email
        return token

    def set_token(self, email: str, token: Token) -> None:
        """
        Store the full token record for an account, overwriting any previous one.

        Raises:
            ValueError: If email or the refresh token is empty.
        """
        email = normalize_email(email)
        if not email:
            raise ValueError("missing email")
        if not (token.refresh_token or "").strip():
            raise ValueError("missing refresh token")

        created_at = (token.created_at or datetime.now(timezone.utc)).replace(microsecond=0)
        record = Token(
            email=email,
            refresh_token=token.refresh_token.strip(),
            services=list(token.services),
            scopes=list(token.scopes),
            created_at=created_at,
        )
        self._set_item(token_key(email), json.dumps(record.to_dict()))
        logger.info(f"Stored token for {email} in {self.name} backend")

    def delete_token(self, email: str) -> None:
        """
        Delete the token for an account.

        Raises:
            NotFoundError: If no token is stored for the account.
        """
        email = normalize_email(email)
        if not email:
            raise ValueError("missing email")
        self._remove_item(token_key(email))
        if normalize_email(self.get_default_account() or "") == email:
            self.clear_default_account()
        logger.info(f"Deleted token for {email}")

    def list_tokens(self) -> List[Token]:
        """Load every stored token, sorted by email."""
        tokens = []
        for key in self.keys():
            if not key.startswith(TOKEN_KEY_PREFIX):
                continue
            email = key[len(TOKEN_KEY_PREFIX):]
            try:
                tokens.append(self.get_token(email))
            except NotFoundError:
                continue
        return sorted(tokens, key=lambda t: t.email)

    # --- default account --------------------------------------------------

    def get_default_account(self) -> Optional[str]:
        try:
            value = self._get_item(DEFAULT_ACCOUNT_KEY).strip()
        except NotFoundError:
            return None
        return value or None

    def set_default_account(self, email: str) -> None:
        email = normalize_email(email)
        if not email:
            raise ValueError("missing email")
        self._set_item(DEFAULT_ACCOUNT_KEY, email)

    def clear_default_account(self) -> None:
        try:
            self._remove_item(DEFAULT_ACCOUNT_KEY)
        except NotFoundError:
            pass

    def effective_default_account(self, tokens: Optional[List[Token]] = None) -> Optional[str]:
        """The stored default account, else the first stored account."""
        if tokens is None:
            tokens = self.list_tokens()
        emails = [t.email for t in tokens]
        stored = normalize_email(self.get_default_account() or "")
        if stored and stored in emails:
            return stored
        return emails[0] if emails else None


class MemorySecretStore(SecretStore):
    """Process-local store. Used by tests and as a scratch backend."""

    name = "memory"

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def _get_item(self, key: str) -> str:
        try:
            return self._items[key]
        except KeyError:
            raise NotFoundError(key) from None

    def _set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def _remove_item(self, key: str) -> None:
        if key not in self._items:
            raise NotFoundError(key)
        del self._items[key]

    def keys(self) -> List[str]:
        return sorted(self._items)
