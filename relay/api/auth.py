"""Salesforce authentication routes.

Flows:
- Web server flow with PKCE: GET /api/auth/login -> Salesforce -> GET /api/auth/callback
- Username-password flow for the configured integration user: POST /api/auth/login-password

Both flows end with a SessionCredential in the session store; no token is
ever returned to the caller or written to the logs.
"""
from __future__ import annotations
import hashlib
import base64
import secrets
import string

from flask import Blueprint, session, request, current_app, url_for, jsonify
from authlib.integrations.flask_client import OAuth, OAuthError

from relay.core.crm import (
    CrmAuthError,
    SessionCredential,
    client_from_session,
    login_with_password,
    store_credential,
)

bp = Blueprint("auth", __name__)

# Module-level OAuth instance (will be initialized by create_app)
oauth: OAuth = None
_salesforce = None

OAUTH_SCOPE = "api refresh_token offline_access id web"


def init_oauth(app, cfg):
    """Initialize the Salesforce OAuth client."""
    global oauth, _salesforce

    oauth = OAuth(app)
    _salesforce = oauth.register(
        name="salesforce",
        client_id=cfg.sf_client_id,
        client_secret=cfg.sf_client_secret or None,
        authorize_url=f"{cfg.sf_login_url}/services/oauth2/authorize",
        access_token_url=f"{cfg.sf_login_url}/services/oauth2/token",
        client_kwargs={
            "scope": OAUTH_SCOPE,
            "token_endpoint_auth_method": "client_secret_post",
        },
    )
    return oauth, _salesforce


def get_oauth_client():
    """Get the registered Salesforce OAuth client."""
    if _salesforce is None:
        raise RuntimeError("Salesforce OAuth client not initialized. Call init_oauth first.")
    return _salesforce


def _redirect_uri(cfg) -> str:
    return cfg.sf_callback_url or url_for("auth.callback", _external=True)


# ─────────────────────────────────────────────────────────────────────────────
# PKCE Helpers
# ─────────────────────────────────────────────────────────────────────────────
def _generate_code_verifier(length: int = 64) -> str:
    """Generate PKCE code verifier."""
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _build_code_challenge(code_verifier: str) -> str:
    """Build PKCE code challenge from verifier."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


# ─────────────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/login")
def login():
    """Redirect to the Salesforce authorize endpoint (web server flow with PKCE)."""
    cfg = current_app.config["APP_CONFIG"]
    client = get_oauth_client()

    code_verifier = _generate_code_verifier()
    session["pkce_code_verifier"] = code_verifier

    return client.authorize_redirect(
        redirect_uri=_redirect_uri(cfg),
        code_challenge=_build_code_challenge(code_verifier),
        code_challenge_method="S256",
        prompt="login consent",
    )


@bp.route("/callback")
def callback():
    """Exchange the authorization code and store the Salesforce credential."""
    cfg = current_app.config["APP_CONFIG"]
    if not request.args.get("code"):
        return jsonify({"error": "Missing code"}), 400

    code_verifier = session.pop("pkce_code_verifier", None)
    if not code_verifier:
        return jsonify({"error": "Login session expired, start again at /api/auth/login"}), 400

    client = get_oauth_client()
    try:
        token = client.authorize_access_token(code_verifier=code_verifier)
    except OAuthError as e:
        raise CrmAuthError(f"Authorization code exchange failed: {e.error}") from e

    credential = SessionCredential.from_token_response(dict(token))
    store_credential(session, credential)
    current_app.logger.info(f"[Auth] Salesforce login for user {credential.user_id} (org {credential.org_id})")

    user_info = client_from_session(session, cfg).identity()
    return jsonify({"ok": True, "userInfo": user_info})


@bp.route("/login-password", methods=["POST"])
def login_password():
    """Log in with the configured integration user."""
    cfg = current_app.config["APP_CONFIG"]
    client = login_with_password(session, cfg)
    return jsonify({"ok": True, "userInfo": client.identity()})


@bp.route("/logout", methods=["POST"])
def logout():
    """Forget the Salesforce credential and everything else in the session."""
    session.clear()
    return jsonify({"ok": True})
