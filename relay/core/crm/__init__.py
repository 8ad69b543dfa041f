"""Salesforce REST API client library.

Architecture:
- client.py: HTTP client bound to one session credential
- session.py: Session credential storage and password login
- exceptions.py: Typed exceptions for error handling

Usage:
    from relay.core.crm import ensure_client

    client = ensure_client(flask.session, cfg)
    result = client.query("SELECT Id, Name FROM Contact LIMIT 5")
"""
from .client import (
    CrmClient,
    request_password_token,
    format_record_errors,
    REQUEST_TIMEOUT,
    COMPOSITE_BATCH_LIMIT,
)
from .exceptions import (
    CrmError,
    CrmAPIError,
    CrmTransportError,
    CrmAuthError,
)
from .session import (
    SessionCredential,
    SESSION_KEY,
    parse_identity_url,
    store_credential,
    clear_credential,
    get_credential,
    client_from_session,
    login_with_password,
    ensure_client,
)

__all__ = [
    # Client
    "CrmClient",
    "request_password_token",
    "format_record_errors",
    "REQUEST_TIMEOUT",
    "COMPOSITE_BATCH_LIMIT",

    # Exceptions
    "CrmError",
    "CrmAPIError",
    "CrmTransportError",
    "CrmAuthError",

    # Session
    "SessionCredential",
    "SESSION_KEY",
    "parse_identity_url",
    "store_credential",
    "clear_credential",
    "get_credential",
    "client_from_session",
    "login_with_password",
    "ensure_client",
]
