"""Unit tests for service-to-scope mapping."""

import pytest

from gwcli.auth.scopes import (
    CALENDAR_SCOPE,
    GMAIL_SCOPE,
    Service,
    get_scopes,
    parse_service,
    parse_services,
    scopes_for_services,
    user_services,
)
from gwcli.utils.errors import AuthError, UnknownServiceError


class TestScopesForServices:
    """Tests for the scope union."""

    def test_mail_and_calendar(self):
        """Mail and calendar yield exactly their two scopes, sorted."""
        scopes = scopes_for_services([Service.GMAIL, Service.CALENDAR])
        assert scopes == sorted([GMAIL_SCOPE, CALENDAR_SCOPE])

    def test_order_independent(self):
        """Input order does not change the output."""
        forward = scopes_for_services([Service.CHAT, Service.DRIVE, Service.CONTACTS])
        backward = scopes_for_services([Service.CONTACTS, Service.DRIVE, Service.CHAT])
        assert forward == backward
        assert forward == sorted(forward)

    def test_deduplicates(self):
        """Repeated services contribute their scopes once."""
        scopes = scopes_for_services([Service.DRIVE, Service.DRIVE, Service.DRIVE])
        assert scopes == get_scopes(Service.DRIVE)

    def test_all_user_services_sorted_unique(self):
        scopes = scopes_for_services(user_services())
        assert scopes == sorted(set(scopes))

    def test_empty(self):
        assert scopes_for_services([]) == []

    def test_get_scopes_returns_copy(self):
        """Mutating the returned list does not change the registry."""
        scopes = get_scopes(Service.CHAT)
        scopes.append("x")
        assert "x" not in get_scopes(Service.CHAT)


class TestParseService:
    """Tests for service name parsing."""

    def test_case_and_whitespace(self):
        assert parse_service("  GMail ") is Service.GMAIL

    def test_unknown_service(self):
        with pytest.raises(UnknownServiceError) as exc_info:
            parse_service("fax")
        assert exc_info.value.service == "fax"
        assert "gmail" in exc_info.value.expected

    def test_unknown_service_is_value_error(self):
        with pytest.raises(ValueError):
            parse_service("fax")


class TestParseServices:
    """Tests for --services values."""

    @pytest.mark.parametrize("value", ["", "user", "all", " ALL "])
    def test_user_set(self, value):
        """Aliases select every service except Keep."""
        services = parse_services(value)
        assert services == user_services()
        assert Service.KEEP not in services

    def test_list_trimmed_and_deduplicated(self):
        services = parse_services("gmail, Drive ,gmail")
        assert services == [Service.GMAIL, Service.DRIVE]

    def test_keep_rejected(self):
        with pytest.raises(AuthError, match="service account"):
            parse_services("gmail,keep")

    def test_unknown_rejected(self):
        with pytest.raises(UnknownServiceError):
            parse_services("gmail,nope")
