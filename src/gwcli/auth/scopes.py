"""
Google OAuth Scopes for gwcli.

This module maps the supported Google Workspace services to the OAuth scopes
each one requires, and computes the scope union for a set of services.
"""

import logging
from enum import Enum
from typing import Iterable, List

from ..utils.errors import AuthError, UnknownServiceError

logger = logging.getLogger(__name__)


class Service(str, Enum):
    """Google Workspace services that gwcli can authorize."""

    GMAIL = "gmail"
    CALENDAR = "calendar"
    CHAT = "chat"
    CLASSROOM = "classroom"
    DRIVE = "drive"
    DOCS = "docs"
    CONTACTS = "contacts"
    TASKS = "tasks"
    SHEETS = "sheets"
    PEOPLE = "people"
    GROUPS = "groups"
    KEEP = "keep"

    def __str__(self) -> str:
        return self.value


# Gmail
GMAIL_SCOPE = "https://mail.google.com/"

# Calendar
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"

# Chat
CHAT_SPACES_SCOPE = "https://www.googleapis.com/auth/chat.spaces"
CHAT_MESSAGES_SCOPE = "https://www.googleapis.com/auth/chat.messages"
CHAT_MEMBERSHIPS_SCOPE = "https://www.googleapis.com/auth/chat.memberships"

# Classroom
CLASSROOM_COURSES_SCOPE = "https://www.googleapis.com/auth/classroom.courses"
CLASSROOM_ROSTERS_SCOPE = "https://www.googleapis.com/auth/classroom.rosters"
CLASSROOM_COURSEWORK_SCOPE = (
    "https://www.googleapis.com/auth/classroom.coursework.students"
)
CLASSROOM_ANNOUNCEMENTS_SCOPE = (
    "https://www.googleapis.com/auth/classroom.announcements"
)

# Drive, Docs, Sheets
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
DOCS_WRITE_SCOPE = "https://www.googleapis.com/auth/documents"
SHEETS_WRITE_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

# Contacts
CONTACTS_SCOPE = "https://www.googleapis.com/auth/contacts"
CONTACTS_OTHER_READONLY_SCOPE = (
    "https://www.googleapis.com/auth/contacts.other.readonly"
)
DIRECTORY_READONLY_SCOPE = "https://www.googleapis.com/auth/directory.readonly"

# Tasks
TASKS_SCOPE = "https://www.googleapis.com/auth/tasks"

# People ("people/me" requests)
PROFILE_SCOPE = "profile"

# Cloud Identity groups
GROUPS_READONLY_SCOPE = "https://www.googleapis.com/auth/cloud-identity.groups.readonly"

# Keep
KEEP_SCOPE = "https://www.googleapis.com/auth/keep"

# Identity scopes used to read the account email from the ID token
OPENID_SCOPE = "openid"
EMAIL_SCOPE = "email"
IDENTITY_SCOPES = [OPENID_SCOPE, EMAIL_SCOPE]

SERVICE_SCOPES = {
    Service.GMAIL: [GMAIL_SCOPE],
    Service.CALENDAR: [CALENDAR_SCOPE],
    Service.CHAT: [CHAT_SPACES_SCOPE, CHAT_MESSAGES_SCOPE, CHAT_MEMBERSHIPS_SCOPE],
    Service.CLASSROOM: [
        CLASSROOM_COURSES_SCOPE,
        CLASSROOM_ROSTERS_SCOPE,
        CLASSROOM_COURSEWORK_SCOPE,
        CLASSROOM_ANNOUNCEMENTS_SCOPE,
    ],
    Service.DRIVE: [DRIVE_SCOPE],
    Service.DOCS: [DOCS_WRITE_SCOPE],
    Service.CONTACTS: [
        CONTACTS_SCOPE,
        CONTACTS_OTHER_READONLY_SCOPE,
        DIRECTORY_READONLY_SCOPE,
    ],
    Service.TASKS: [TASKS_SCOPE],
    Service.SHEETS: [SHEETS_WRITE_SCOPE],
    Service.PEOPLE: [PROFILE_SCOPE],
    Service.GROUPS: [GROUPS_READONLY_SCOPE],
    Service.KEEP: [KEEP_SCOPE],
}


def service_names() -> List[str]:
    """Get the identifiers of all known services."""
    return [service.value for service in Service]


def parse_service(value: str) -> Service:
    """
    Parse a service identifier.

    Args:
        value: Service name; surrounding whitespace and case are ignored.

    Returns:
        The matching Service.

    Raises:
        UnknownServiceError: If the name is not a known service.
    """
    normalized = value.strip().lower()
    try:
        return Service(normalized)
    except ValueError:
        raise UnknownServiceError(value, service_names()) from None


def user_services() -> List[Service]:
    """Default services for consumer ("regular") accounts: everything but Keep."""
    return [service for service in Service if service is not Service.KEEP]


def get_scopes(service: Service) -> List[str]:
    """
    Get the OAuth scopes required by a single service.

    Raises:
        UnknownServiceError: If the service is not known.
    """
    if not isinstance(service, Service):
        service = parse_service(str(service))
    return list(SERVICE_SCOPES[service])


def scopes_for_services(services: Iterable[Service]) -> List[str]:
    """
    Get the sorted, deduplicated union of scopes for a set of services.

    The ordering is stable so that authorization URLs and granted-scope
    strings compare byte-for-byte across runs.

    Raises:
        UnknownServiceError: If any service is not known.
    """
    scopes = set()
    for service in services:
        scopes.update(get_scopes(service))
    return sorted(scopes)


def parse_services(value: str) -> List[Service]:
    """
    Parse a --services value for interactive authorization.

    "user", "all" or an empty value select the user services. Otherwise the
    value is a comma-separated list of service names; duplicates are dropped.

    Raises:
        UnknownServiceError: If a name is not a known service.
        AuthError: If Keep is requested.
    """
    normalized = (value or "").strip().lower()
    if normalized in ("", "user", "all"):
        return user_services()

    services: List[Service] = []
    for part in normalized.split(","):
        part = part.strip()
        if not part:
            continue
        service = parse_service(part)
        if service is Service.KEEP:
            raise AuthError(
                "keep requires a Workspace service account and cannot be authorized interactively"
            )
        if service not in services:
            services.append(service)

    if not services:
        return user_services()
    return services
