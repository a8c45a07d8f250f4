"""
OAuth client credentials for gwcli.

The client id/secret pair is stored once per installation by
`gwcli auth credentials` and read at the start of every authorization flow.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.config import (
    CLIENT_ID_ENV,
    CLIENT_SECRET_ENV,
    ensure_config_dir,
    get_client_credentials_path,
    write_private_file,
)
from ..utils.errors import MissingCredentialsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client id/secret pair."""

    client_id: str
    client_secret: str

    def __post_init__(self) -> None:
        if not self.client_id or not self.client_secret:
            raise MissingCredentialsError("OAuth client id and secret must be non-empty")

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r})"


def load_client_credentials_from_env() -> Optional[ClientCredentials]:
    """
    Load client credentials from environment variables.

    Returns:
        ClientCredentials or None if the variables are not set.
    """
    client_id = os.getenv(CLIENT_ID_ENV)
    client_secret = os.getenv(CLIENT_SECRET_ENV)

    if client_id and client_secret:
        logger.info("Loaded OAuth client credentials from environment variables")
        return ClientCredentials(client_id=client_id, client_secret=client_secret)

    return None


def parse_client_secrets(data: Any) -> ClientCredentials:
    """
    Parse a Google client secrets document.

    Accepts the "installed" and "web" layouts downloaded from the Google Cloud
    Console, as well as the flat {client_id, client_secret} layout written by
    write_client_credentials.

    Raises:
        ValueError: If the document has an unknown layout.
    """
    if isinstance(data, (bytes, str)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid client secrets JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Invalid client secrets file format")

    section: Dict[str, Any]
    if "installed" in data:
        section = data["installed"]
    elif "web" in data:
        section = data["web"]
    else:
        section = data

    client_id = (section.get("client_id") or "").strip()
    client_secret = (section.get("client_secret") or "").strip()
    if not client_id or not client_secret:
        raise ValueError("Invalid client secrets file format: missing client_id or client_secret")

    return ClientCredentials(client_id=client_id, client_secret=client_secret)


def read_client_credentials(path: Optional[str] = None) -> ClientCredentials:
    """
    Read the stored OAuth client credentials.

    Environment variables take precedence over the stored file.

    Raises:
        MissingCredentialsError: If no credentials are configured.
    """
    env_credentials = load_client_credentials_from_env()
    if env_credentials:
        return env_credentials

    path = path or get_client_credentials_path()
    if not os.path.exists(path):
        raise MissingCredentialsError(
            "OAuth client credentials not found. Please either:\n"
            f"1. Set {CLIENT_ID_ENV} and {CLIENT_SECRET_ENV} environment variables\n"
            f"2. Run: gwcli auth credentials <client_secret.json> (stores {path})"
        )

    try:
        with open(path, "r") as f:
            credentials = parse_client_secrets(json.load(f))
    except (IOError, json.JSONDecodeError, ValueError) as e:
        logger.error(f"Error loading client credentials from {path}: {e}")
        raise MissingCredentialsError(f"Unreadable client credentials at {path}: {e}") from e

    logger.debug(f"Loaded OAuth client credentials from {path}")
    return credentials


def write_client_credentials(credentials: ClientCredentials) -> str:
    """
    Persist client credentials with owner-only permissions.

    Returns:
        The path written.
    """
    ensure_config_dir()
    path = get_client_credentials_path()
    payload = {
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
    }
    write_private_file(path, json.dumps(payload, indent=2).encode("utf-8"))
    logger.info(f"Stored OAuth client credentials at {path}")
    return path
