"""
Request guards for the relay API.

This module provides the static bearer-token gate that fronts every API
route and the decorator that binds a Salesforce client to the request.

Security:
- Constant-time token comparison (hmac.compare_digest)
- Presented tokens are only ever logged as a truncated SHA-256 hash
- The Salesforce credential stays in the server-side session store
"""

import hashlib
import hmac
import logging
from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, request, session

from relay.core.crm import CrmClient, ensure_client, get_credential
from relay.core.errors import AuthenticationRequiredError

logger = logging.getLogger(__name__)

# Reachable without the bearer token: health probes and the browser leg of the OAuth flow
GATE_EXEMPT_PATHS = frozenset({"/health", "/ready", "/api/auth/login", "/api/auth/callback"})


# ============================================================================
# Static Bearer Token Gate
# ============================================================================

def token_fingerprint(token: str) -> str:
    """Short, non-reversible identifier for a presented token (log use only)."""
    if not token:
        return "<none>"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def extract_bearer_token(auth_header: str) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header, or ''."""
    if not auth_header or not auth_header.startswith("Bearer "):
        return ""
    return auth_header[7:].strip()


def enforce_bearer_token():
    """
    before_request hook: reject requests without the configured bearer token.

    Returns:
        None to let the request through, or a JSON error response:
        500 when API_BEARER_TOKEN is not configured, 401 on a missing or
        mismatched token.
    """
    if request.path in GATE_EXEMPT_PATHS:
        return None

    cfg = current_app.config["APP_CONFIG"]
    expected = cfg.api_bearer_token
    if not expected:
        logger.error("Rejecting %s: API_BEARER_TOKEN is not set", request.path)
        return jsonify({"error": "Server misconfigured: API_BEARER_TOKEN is not set"}), 500

    token = extract_bearer_token(request.headers.get("Authorization", ""))
    if token and hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        return None

    logger.warning(
        "Rejected bearer token for %s %s (fingerprint=%s)",
        request.method, request.path, token_fingerprint(token),
    )
    return jsonify({"error": "Unauthorized"}), 401


# ============================================================================
# Salesforce Client Binding
# ============================================================================

def require_crm_client(fn):
    """
    Decorator binding a CrmClient for the caller's session to ``g.crm_client``.

    Falls back to the integration-user password login when the session has
    no credential.

    Raises:
        AuthenticationRequiredError: No session credential and no password login configured

    Example:
        @bp.route("/sfdc/whoami")
        @require_crm_client
        def whoami():
            return get_crm_client().identity()
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        cfg = current_app.config["APP_CONFIG"]
        if get_credential(session) is None and not cfg.password_login_configured:
            raise AuthenticationRequiredError(
                "Not connected to Salesforce. Log in via /api/auth/login"
            )
        g.crm_client = ensure_client(session, cfg)
        return fn(*args, **kwargs)

    return wrapper


def get_crm_client() -> Optional[CrmClient]:
    """
    Get the client bound by @require_crm_client for the current request.

    Returns:
        CrmClient, or None outside a decorated route
    """
    return g.get("crm_client")
