"""HTML pages shown in the browser during authorization."""

from html import escape
from typing import Any, Callable, Dict, Optional

from .oauth_config import POST_SUCCESS_DISPLAY_SECONDS

_STYLE = """
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            min-height: 100vh;
            margin: 0;
            background: #f4f5f7;
        }
        .container {
            background: white;
            padding: 40px;
            border-radius: 12px;
            box-shadow: 0 10px 40px rgba(0,0,0,0.12);
            text-align: center;
            max-width: 520px;
        }
        .icon { font-size: 64px; margin-bottom: 20px; }
        h1 { color: #333; margin-bottom: 10px; }
        p { color: #666; line-height: 1.6; }
        .email { color: #1a73e8; font-weight: bold; }
        .error-message {
            color: #c5221f;
            background: #fce8e6;
            padding: 15px;
            border-radius: 8px;
            margin: 20px 0;
        }
"""


def _page(title: str, body: str, script: str = "") -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{escape(title)}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
{body}
    </div>
    {script}
</body>
</html>
"""


def _success(data: Dict[str, Any]) -> str:
    email = data.get("email")
    services = data.get("services") or []
    seconds = int(data.get("seconds", POST_SUCCESS_DISPLAY_SECONDS))

    details = ""
    if email:
        details += f'        <p>Authorized account:</p>\n        <p class="email">{escape(email)}</p>\n'
    if services:
        details += f"        <p>Services: {escape(', '.join(services))}</p>\n"

    body = f"""        <div class="icon">&#10004;</div>
        <h1>Authorization Successful</h1>
{details}        <p>You can close this window and return to your terminal.</p>
        <p>This page closes in <span id="countdown">{seconds}</span> seconds.</p>"""

    script = f"""<script>
        var remaining = {seconds};
        var timer = setInterval(function() {{
            remaining -= 1;
            document.getElementById("countdown").textContent = remaining;
            if (remaining <= 0) {{ clearInterval(timer); window.close(); }}
        }}, 1000);
    </script>"""
    return _page("Authorization Successful", body, script)


def _error(data: Dict[str, Any]) -> str:
    message = data.get("error") or "Unknown error"
    body = f"""        <div class="icon">&#10060;</div>
        <h1>Authorization Failed</h1>
        <div class="error-message">{escape(str(message))}</div>
        <p>Please return to your terminal and try again.</p>"""
    return _page("Authorization Failed", body)


def _cancelled(data: Dict[str, Any]) -> str:
    body = """        <div class="icon">&#9888;</div>
        <h1>Authorization Cancelled</h1>
        <p>No access was granted. You can close this window.</p>"""
    return _page("Authorization Cancelled", body)


def _already_processed(data: Dict[str, Any]) -> str:
    body = """        <h1>Already Processed</h1>
        <p>This authorization response was already handled. You can close this window.</p>"""
    return _page("Already Processed", body)


def _accounts(data: Dict[str, Any]) -> str:
    csrf_token = escape(data.get("csrf_token", ""), quote=True)
    body = """        <h1>Google Accounts</h1>
        <p>Accounts stored by gwcli on this machine.</p>
        <table id="accounts" style="width:100%; text-align:left; margin: 20px 0;"></table>
        <p><a href="/auth/start">Add account</a></p>
        <div id="status" class="error-message" style="display:none"></div>"""

    script = f"""<script>
        var csrfToken = "{csrf_token}";

        function showError(message) {{
            var status = document.getElementById("status");
            status.textContent = message;
            status.style.display = "block";
        }}

        function post(path, email) {{
            return fetch(path, {{
                method: "POST",
                headers: {{"Content-Type": "application/json", "X-CSRF-Token": csrfToken}},
                body: JSON.stringify({{email: email}})
            }}).then(function(resp) {{
                return resp.json().then(function(data) {{
                    if (!resp.ok) {{ throw new Error(data.error || resp.statusText); }}
                    return data;
                }});
            }}).then(load).catch(function(err) {{ showError(err.message); }});
        }}

        function load() {{
            fetch("/accounts").then(function(resp) {{ return resp.json(); }}).then(function(data) {{
                var table = document.getElementById("accounts");
                table.innerHTML = "";
                if (!data.accounts.length) {{
                    table.innerHTML = "<tr><td>No accounts yet.</td></tr>";
                    return;
                }}
                data.accounts.forEach(function(account) {{
                    var row = table.insertRow();
                    row.insertCell().textContent = account.email + (account.isDefault ? " (default)" : "");
                    row.insertCell().textContent = account.services.join(", ");
                    var actions = row.insertCell();
                    if (!account.isDefault) {{
                        var makeDefault = document.createElement("button");
                        makeDefault.textContent = "Make default";
                        makeDefault.onclick = function() {{ post("/set-default", account.email); }};
                        actions.appendChild(makeDefault);
                    }}
                    var remove = document.createElement("button");
                    remove.textContent = "Remove";
                    remove.onclick = function() {{
                        if (confirm("Remove " + account.email + "?")) {{ post("/remove-account", account.email); }}
                    }};
                    actions.appendChild(remove);
                }});
            }}).catch(function(err) {{ showError(err.message); }});
        }}

        load();
    </script>"""
    return _page("gwcli accounts", body, script)


TEMPLATES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "success": _success,
    "error": _error,
    "cancelled": _cancelled,
    "already_processed": _already_processed,
    "accounts": _accounts,
}


def render(name: str, data: Optional[Dict[str, Any]] = None) -> str:
    """
    Render a named page.

    Raises:
        KeyError: If no page has that name.
    """
    return TEMPLATES[name](data or {})
