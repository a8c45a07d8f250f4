"""Unit tests for OAuth client credentials."""

import json
import os
import shutil
import stat
import tempfile
from unittest.mock import patch

import pytest

from gwcli.auth.client_credentials import (
    ClientCredentials,
    parse_client_secrets,
    read_client_credentials,
    write_client_credentials,
)
from gwcli.utils.errors import MissingCredentialsError


class TestParseClientSecrets:
    """Tests for client secrets parsing."""

    def test_installed_layout(self):
        data = {"installed": {"client_id": "id", "client_secret": "secret"}}
        assert parse_client_secrets(data) == ClientCredentials("id", "secret")

    def test_web_layout_from_string(self):
        data = json.dumps({"web": {"client_id": "id", "client_secret": "secret"}})
        assert parse_client_secrets(data).client_id == "id"

    def test_flat_layout_from_bytes(self):
        data = json.dumps({"client_id": "id", "client_secret": "secret"}).encode()
        assert parse_client_secrets(data).client_secret == "secret"

    def test_missing_secret(self):
        with pytest.raises(ValueError, match="missing client_id or client_secret"):
            parse_client_secrets({"installed": {"client_id": "id"}})

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            parse_client_secrets("{nope")

    def test_repr_hides_secret(self):
        assert "secret" not in repr(ClientCredentials("id", "secret"))

    def test_empty_values_rejected(self):
        with pytest.raises(MissingCredentialsError):
            ClientCredentials("", "secret")


class TestReadClientCredentials:
    """Tests for reading stored credentials."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.env = patch.dict(os.environ, {"GWCLI_CONFIG_DIR": self.temp_dir})
        self.env.start()
        os.environ.pop("GWCLI_CLIENT_ID", None)
        os.environ.pop("GWCLI_CLIENT_SECRET", None)

    def teardown_method(self):
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing(self):
        with pytest.raises(MissingCredentialsError):
            read_client_credentials()

    def test_write_then_read(self):
        path = write_client_credentials(ClientCredentials("id", "secret"))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert read_client_credentials() == ClientCredentials("id", "secret")

    def test_env_takes_precedence(self):
        write_client_credentials(ClientCredentials("file-id", "file-secret"))
        with patch.dict(
            os.environ, {"GWCLI_CLIENT_ID": "env-id", "GWCLI_CLIENT_SECRET": "env-secret"}
        ):
            assert read_client_credentials().client_id == "env-id"

    def test_corrupt_file(self):
        path = os.path.join(self.temp_dir, "credentials.json")
        with open(path, "w") as f:
            f.write("[]")
        with pytest.raises(MissingCredentialsError, match="Unreadable"):
            read_client_credentials()
