"""Command-line interface for gwcli account authorization.

Usage:
    gwcli auth credentials <path|->
    gwcli auth add <email> [--manual] [--force-consent] [--services ...]
    gwcli auth list [--check] [--json]
    gwcli auth status [--json]
    gwcli auth remove <email> [--force]
    gwcli auth tokens list|delete|export|import
    gwcli auth manage [--services ...] [--stay-open]
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, List, Optional

from dotenv import load_dotenv

from . import __version__
from .auth.accounts_server import AccountManagerServer, ManageServerOptions
from .auth.client_credentials import (
    parse_client_secrets,
    read_client_credentials,
    write_client_credentials,
)
from .auth.google_auth import check_refresh_token
from .auth.oauth_flow import AuthorizationFlow, AuthorizeOptions
from .auth.scopes import parse_services, scopes_for_services
from .core.config import config_exists, get_config_path, write_private_file
from .secrets.backend import ensure_keychain_access, open_default_store, resolve_backend_info
from .secrets.store import SecretStore, Token, normalize_email
from .utils.errors import AuthorizationCancelledError, GwcliError

logger = logging.getLogger(__name__)


def _open_store(args: Any) -> SecretStore:
    return open_default_store(getattr(args, "keyring_backend", None))


def _open_keychain_checked(args: Any) -> SecretStore:
    """Open the store and run the keychain pre-flight before any browser work."""
    override = getattr(args, "keyring_backend", None)
    return ensure_keychain_access(open_default_store(override), override)


def _confirm_destructive(args: Any, action: str) -> None:
    """
    Ask before a destructive action unless --force was given.

    Raises:
        GwcliError: Without --force when stdin is not a terminal, or if the
            user declines.
    """
    if getattr(args, "force", False):
        return
    if not sys.stdin.isatty():
        raise GwcliError(f"refusing to {action} without --force (non-interactive)")

    print(f"Proceed to {action}? [y/N]: ", end="", file=sys.stderr)
    sys.stderr.flush()
    answer = sys.stdin.readline().strip().lower()
    if answer not in ("y", "yes"):
        raise GwcliError(f"{action} cancelled")


def _read_input(path: str) -> str:
    """Read a file, or stdin when path is "-"."""
    if path == "-":
        return sys.stdin.read()
    with open(os.path.expanduser(path), "r") as f:
        return f.read()


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


# --- auth commands ---


def cmd_credentials(args: Any) -> None:
    """Store OAuth client credentials from a client secrets file."""
    try:
        credentials = parse_client_secrets(_read_input(args.path))
    except ValueError as e:
        raise GwcliError(str(e)) from e
    path = write_client_credentials(credentials)
    print(f"Stored OAuth client credentials at {path}", file=sys.stderr)


def cmd_add(args: Any) -> None:
    """Authorize an account and store its refresh token."""
    services = parse_services(args.services)
    scopes = scopes_for_services(services)

    store = _open_keychain_checked(args)

    flow = AuthorizationFlow()
    refresh_token = flow.authorize(
        AuthorizeOptions(
            services=services,
            scopes=scopes,
            manual=args.manual,
            force_consent=args.force_consent,
            timeout=args.timeout,
        )
    )

    email = normalize_email(args.email)
    store.set_token(
        email,
        Token(
            email=email,
            refresh_token=refresh_token,
            services=sorted(s.value for s in services),
            scopes=scopes,
        ),
    )
    print(f"Stored token for {email}", file=sys.stderr)


def cmd_list(args: Any) -> None:
    """List stored accounts."""
    store = _open_store(args)
    tokens = store.list_tokens()
    default = store.effective_default_account(tokens)

    results = []
    credentials = read_client_credentials() if args.check and tokens else None
    for token in tokens:
        entry = {
            "email": token.email,
            "services": token.services,
            "default": token.email == default,
            "created_at": token.to_dict().get("created_at"),
        }
        if credentials is not None:
            try:
                check_refresh_token(credentials, token.refresh_token, token.scopes)
                entry["valid"] = True
            except GwcliError as e:
                entry["valid"] = False
                entry["error"] = e.message
        results.append(entry)

    if args.json:
        _print_json({"accounts": results})
        return

    if not results:
        print("No tokens stored", file=sys.stderr)
        return
    for entry in results:
        line = f"{entry['email']}\t{','.join(entry['services'])}"
        if entry["default"]:
            line += "\t(default)"
        if "valid" in entry:
            line += "\tvalid" if entry["valid"] else f"\tinvalid: {entry['error']}"
        print(line)


def cmd_status(args: Any) -> None:
    """Show configuration and keyring backend."""
    backend, source = resolve_backend_info(getattr(args, "keyring_backend", None))
    status = {
        "config_path": get_config_path(),
        "config_exists": config_exists(),
        "keyring_backend": backend.value,
        "keyring_source": source,
    }
    if args.json:
        _print_json(status)
        return
    for key, value in status.items():
        print(f"{key}\t{value}")


def cmd_remove(args: Any) -> None:
    """Remove a stored account."""
    _confirm_destructive(args, f"remove stored token for {normalize_email(args.email)}")
    store = _open_store(args)
    store.delete_token(args.email)
    print(f"Removed {normalize_email(args.email)}", file=sys.stderr)


def cmd_tokens_list(args: Any) -> None:
    """List stored secret keys."""
    store = _open_store(args)
    keys = [k for k in store.keys() if k.startswith("token:")]
    if not keys:
        print("No tokens stored", file=sys.stderr)
        return
    for key in keys:
        print(key)


def cmd_tokens_export(args: Any) -> None:
    """Export a token record to a file."""
    store = _open_store(args)
    token = store.get_token(args.email)

    path = os.path.expanduser(args.out)
    if os.path.exists(path) and not args.overwrite:
        raise GwcliError(f"refusing to overwrite {path} (use --overwrite)")

    write_private_file(path, (json.dumps(token.to_dict(), indent=2) + "\n").encode("utf-8"))
    print(f"Exported {token.email} to {path}", file=sys.stderr)
    print("WARNING: this file contains a refresh token; keep it safe and delete it after import.", file=sys.stderr)


def cmd_tokens_import(args: Any) -> None:
    """Import a token record exported by `tokens export`."""
    try:
        token = Token.from_dict(json.loads(_read_input(args.path)))
    except ValueError as e:
        raise GwcliError(f"invalid token file: {e}") from e

    store = _open_store(args)
    store.set_token(token.email, token)
    print(f"Imported {normalize_email(token.email)}", file=sys.stderr)


def cmd_manage(args: Any) -> None:
    """Run the browser-based account manager."""
    store = _open_keychain_checked(args)

    options = ManageServerOptions(
        services=parse_services(args.services),
        force_consent=args.force_consent,
        timeout=args.timeout,
        stay_open=args.stay_open,
    )
    added = AccountManagerServer(store, options).run()
    for email in added:
        print(email)


# --- parser ---


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gwcli",
        description="Google Workspace command-line client",
    )
    parser.add_argument("--version", action="version", version=f"gwcli {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v, -vv)"
    )
    parser.add_argument(
        "--keyring-backend",
        help="Secret store backend: auto, keychain or file (overrides GWCLI_KEYRING_BACKEND)",
    )
    subparsers = parser.add_subparsers(dest="command")

    auth_parser = subparsers.add_parser("auth", help="Manage authorized accounts")
    auth_sub = auth_parser.add_subparsers(dest="subcommand")

    sp = auth_sub.add_parser("credentials", help="Store OAuth client credentials")
    sp.add_argument("path", help="client_secret.json path, or - for stdin")
    sp.set_defaults(func=cmd_credentials)

    sp = auth_sub.add_parser("add", help="Authorize an account")
    sp.add_argument("email", help="Account email")
    sp.add_argument("--manual", action="store_true", help="Paste the redirect URL instead of using a local listener")
    sp.add_argument("--force-consent", action="store_true", help="Always show the consent screen")
    sp.add_argument("--services", default="user", help="user, all, or a comma-separated list")
    sp.add_argument("--timeout", type=float, help="Seconds to wait for authorization")
    sp.set_defaults(func=cmd_add)

    sp = auth_sub.add_parser("list", help="List stored accounts")
    sp.add_argument("--check", action="store_true", help="Verify each refresh token")
    sp.add_argument("--json", action="store_true", help="Output JSON")
    sp.set_defaults(func=cmd_list)

    sp = auth_sub.add_parser("status", help="Show configuration and keyring backend")
    sp.add_argument("--json", action="store_true", help="Output JSON")
    sp.set_defaults(func=cmd_status)

    sp = auth_sub.add_parser("remove", help="Remove a stored account")
    sp.add_argument("email", help="Account email")
    sp.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    sp.set_defaults(func=cmd_remove)

    tokens_parser = auth_sub.add_parser("tokens", help="Manage stored tokens")
    tokens_sub = tokens_parser.add_subparsers(dest="tokens_command")

    sp = tokens_sub.add_parser("list", help="List stored token keys")
    sp.set_defaults(func=cmd_tokens_list)

    sp = tokens_sub.add_parser("delete", help="Delete a stored token")
    sp.add_argument("email", help="Account email")
    sp.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    sp.set_defaults(func=cmd_remove)

    sp = tokens_sub.add_parser("export", help="Export a token to a file")
    sp.add_argument("email", help="Account email")
    sp.add_argument("--out", required=True, help="Output path")
    sp.add_argument("--overwrite", action="store_true", help="Replace an existing file")
    sp.set_defaults(func=cmd_tokens_export)

    sp = tokens_sub.add_parser("import", help="Import a token from a file")
    sp.add_argument("path", help="Token file path, or - for stdin")
    sp.set_defaults(func=cmd_tokens_import)

    sp = auth_sub.add_parser("manage", help="Manage accounts in the browser")
    sp.add_argument("--services", default="user", help="user, all, or a comma-separated list")
    sp.add_argument("--force-consent", action="store_true", help="Always show the consent screen")
    sp.add_argument("--timeout", type=float, help="Session timeout in seconds")
    sp.add_argument("--stay-open", action="store_true", help="Keep serving after an account is added")
    sp.set_defaults(func=cmd_manage)

    return parser


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments and run a command. Returns the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return 2

    configure_logging(args.verbose)

    try:
        args.func(args)
    except (KeyboardInterrupt, AuthorizationCancelledError) as e:
        message = getattr(e, "message", None) or "cancelled"
        print(f"error: {message}", file=sys.stderr)
        return 130
    except GwcliError as e:
        print(f"error: {e.format_message()}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    load_dotenv()
    sys.exit(run())


if __name__ == "__main__":
    main()
