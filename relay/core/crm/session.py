"""Session-scoped Salesforce credentials.

The credential lives only in the caller's session store under
SESSION_KEY. Every CRM call builds a fresh CrmClient from it; there is no
process-wide connection.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, asdict
from typing import Optional, MutableMapping, Any

from .client import CrmClient, request_password_token
from .exceptions import CrmAuthError

SESSION_KEY = "salesforce"

logger = logging.getLogger(__name__)


@dataclass
class SessionCredential:
    """OAuth credential held in the session store."""
    access_token: str
    instance_url: str
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    org_id: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"SessionCredential(instance_url={self.instance_url!r}, user_id={self.user_id!r}, "
            f"org_id={self.org_id!r}, access_token='***')"
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["SessionCredential"]:
        """Rebuild from the session payload; None when incomplete."""
        if not isinstance(data, dict):
            return None
        access_token = data.get("access_token")
        instance_url = data.get("instance_url")
        if not access_token or not instance_url:
            return None
        return cls(
            access_token=access_token,
            instance_url=instance_url,
            refresh_token=data.get("refresh_token"),
            user_id=data.get("user_id"),
            org_id=data.get("org_id"),
        )

    @classmethod
    def from_token_response(cls, token: dict) -> "SessionCredential":
        """Build from an OAuth token response.

        Salesforce returns the identity URL in "id", shaped like
        https://login.salesforce.com/id/<orgId>/<userId>.
        """
        access_token = token.get("access_token")
        instance_url = token.get("instance_url")
        if not access_token or not instance_url:
            raise CrmAuthError("Token response is missing access_token or instance_url")
        org_id, user_id = parse_identity_url(token.get("id"))
        return cls(
            access_token=access_token,
            instance_url=instance_url,
            refresh_token=token.get("refresh_token"),
            user_id=user_id,
            org_id=org_id,
        )


def parse_identity_url(identity_url: Any) -> tuple[Optional[str], Optional[str]]:
    """Split a Salesforce identity URL into (org_id, user_id)."""
    if not isinstance(identity_url, str) or "/id/" not in identity_url:
        return None, None
    parts = [p for p in identity_url.split("/id/", 1)[1].split("/") if p]
    if len(parts) < 2:
        return None, None
    return parts[0], parts[1]


def store_credential(session: MutableMapping, credential: SessionCredential) -> None:
    session[SESSION_KEY] = credential.to_dict()


def clear_credential(session: MutableMapping) -> None:
    session.pop(SESSION_KEY, None)


def get_credential(session: MutableMapping) -> Optional[SessionCredential]:
    return SessionCredential.from_dict(session.get(SESSION_KEY))


def client_from_session(session: MutableMapping, cfg) -> Optional[CrmClient]:
    """Build a CrmClient from the session credential, or None when absent."""
    credential = get_credential(session)
    if credential is None:
        return None
    return CrmClient(
        credential.instance_url,
        credential.access_token,
        api_version=cfg.sf_api_version,
        timeout=cfg.sf_request_timeout,
        org_id=credential.org_id,
    )


def login_with_password(session: MutableMapping, cfg) -> CrmClient:
    """Log in as the configured integration user and store the credential.

    Raises:
        CrmAuthError: If credentials are missing or the login is rejected
    """
    if not cfg.password_login_configured:
        raise CrmAuthError("SF_USERNAME and SF_PASSWORD are required")
    token = request_password_token(
        cfg.sf_login_url,
        cfg.sf_client_id,
        cfg.sf_client_secret,
        cfg.sf_username,
        cfg.sf_password_with_token,
        timeout=cfg.sf_request_timeout,
    )
    credential = SessionCredential.from_token_response(token)
    store_credential(session, credential)
    logger.info("Password login succeeded for org %s", credential.org_id or "unknown")
    return client_from_session(session, cfg)


def ensure_client(session: MutableMapping, cfg) -> CrmClient:
    """Return a client for the session, falling back to the password login."""
    existing = client_from_session(session, cfg)
    if existing is not None:
        return existing
    return login_with_password(session, cfg)
