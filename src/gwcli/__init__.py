"""gwcli - Google Workspace command-line client.

This package provides the authorization and credential-management core of
the CLI: OAuth2 flows for acquiring refresh tokens and the secret stores that
keep them.
"""

__version__ = "0.1.0"
