"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass
from pathlib import Path


DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_API_VERSION = "59.0"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _env_int(var_name: str, default: int) -> int:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer (got {raw!r}).")


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str
    session_cookie_secure: bool = True
    session_lifetime_hours: int = 8
    log_level: str = "INFO"

    # API gate
    api_bearer_token: str = ""

    # Salesforce connected app
    sf_client_id: str = ""
    sf_client_secret: str = ""
    sf_callback_url: str = ""
    sf_login_url: str = DEFAULT_LOGIN_URL
    sf_api_version: str = DEFAULT_API_VERSION
    sf_request_timeout: int = 10

    # Integration user (username-password flow)
    sf_username: str = ""
    sf_password: str = ""
    sf_security_token: str = ""

    # Schema discovery / name resolution
    schema_cache_ttl: int = 0
    resolver_chunk_size: int = 100

    # Mailgun
    mailgun_api_key: str = ""
    mailgun_domain: str = ""
    mailgun_base_url: str = "https://api.mailgun.net"
    mailgun_from: str = ""

    @property
    def password_login_configured(self) -> bool:
        """True when the integration user credentials are available."""
        return bool(self.sf_username and self.sf_password)

    @property
    def sf_password_with_token(self) -> str:
        """Password as expected by the username-password grant (password + security token)."""
        if self.sf_security_token:
            return self.sf_password + self.sf_security_token
        return self.sf_password


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # Flask secret key
    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if demo_mode:
            secret_key = secrets.token_urlsafe(48)
            os.environ["FLASK_SECRET_KEY"] = secret_key
            print("[demo-mode] Generated temporary FLASK_SECRET_KEY")
        else:
            raise RuntimeError("FLASK_SECRET_KEY not found in /run/secrets or environment")

    # Static bearer token shared with the front-end. An empty value is allowed at
    # startup; the gate rejects every request until it is configured.
    api_bearer_token = (_load_secret_from_file("api_bearer_token", "API_BEARER_TOKEN") or "").strip()
    if not api_bearer_token:
        print("[settings] ⚠️ API_BEARER_TOKEN is not set; API requests will be rejected")

    sf_client_secret = _load_secret_from_file("sf_client_secret", "SF_CLIENT_SECRET") or ""
    sf_password = _load_secret_from_file("sf_password", "SF_PASSWORD") or ""
    sf_security_token = _load_secret_from_file("sf_security_token", "SF_SECURITY_TOKEN") or ""
    mailgun_api_key = _load_secret_from_file("mailgun_api_key", "MAILGUN_API_KEY") or ""

    session_secure_str = os.environ.get("FLASK_SESSION_COOKIE_SECURE")
    if session_secure_str is None:
        session_secure_str = "false" if demo_mode else "true"
    session_cookie_secure = session_secure_str.lower() == "true"

    sf_login_url = os.environ.get("SF_LOGIN_URL", DEFAULT_LOGIN_URL).strip().rstrip("/") or DEFAULT_LOGIN_URL
    sf_api_version = os.environ.get("SF_API_VERSION", DEFAULT_API_VERSION).strip().lstrip("vV") or DEFAULT_API_VERSION

    resolver_chunk_size = _env_int("RESOLVER_CHUNK_SIZE", 100)
    if resolver_chunk_size < 1:
        raise RuntimeError("RESOLVER_CHUNK_SIZE must be at least 1")

    schema_cache_ttl = max(_env_int("SCHEMA_CACHE_TTL", 0), 0)

    mailgun_domain = os.environ.get("MAILGUN_DOMAIN", "")

    cfg = AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        session_cookie_secure=session_cookie_secure,
        session_lifetime_hours=_env_int("SESSION_LIFETIME_HOURS", 8),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        api_bearer_token=api_bearer_token,
        sf_client_id=os.environ.get("SF_CLIENT_ID", ""),
        sf_client_secret=sf_client_secret,
        sf_callback_url=os.environ.get("SF_CALLBACK_URL", ""),
        sf_login_url=sf_login_url,
        sf_api_version=sf_api_version,
        sf_request_timeout=_env_int("SF_REQUEST_TIMEOUT", 10),
        sf_username=os.environ.get("SF_USERNAME", ""),
        sf_password=sf_password,
        sf_security_token=sf_security_token,
        schema_cache_ttl=schema_cache_ttl,
        resolver_chunk_size=resolver_chunk_size,
        mailgun_api_key=mailgun_api_key,
        mailgun_domain=mailgun_domain,
        mailgun_base_url=os.environ.get("MAILGUN_BASE_URL", "https://api.mailgun.net").rstrip("/"),
        mailgun_from=os.environ.get("MAILGUN_FROM", ""),
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(
        f"[settings] Mode={mode_label}; login_url={cfg.sf_login_url}; "
        f"api_version={cfg.sf_api_version}; schema_cache_ttl={cfg.schema_cache_ttl}s"
    )

    return cfg
