"""
OAuth2 Authentication Package for gwcli.

This package provides:
- Service-to-scope mapping
- Single-use state tokens for CSRF protection
- Interactive (loopback) and manual (copy/paste) authorization flows
- A browser-based multi-account manager
"""

from .scopes import (
    Service,
    parse_service,
    parse_services,
    scopes_for_services,
    user_services,
)
from .state import StateToken, new_state
from .client_credentials import ClientCredentials, read_client_credentials
from .oauth_flow import AuthorizationFlow, AuthorizeOptions, extract_code_and_state
from .accounts_server import AccountManagerServer, ManageServerOptions

__all__ = [
    # Scopes
    "Service",
    "parse_service",
    "parse_services",
    "scopes_for_services",
    "user_services",
    # State
    "StateToken",
    "new_state",
    # Client credentials
    "ClientCredentials",
    "read_client_credentials",
    # Flows
    "AuthorizationFlow",
    "AuthorizeOptions",
    "extract_code_and_state",
    "AccountManagerServer",
    "ManageServerOptions",
]
