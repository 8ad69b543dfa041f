"""Tests for Salesforce login, callback, password login and logout."""
from urllib.parse import parse_qs, urlparse

import requests

from relay.api import auth
from relay.core.crm import SESSION_KEY, CrmAuthError
from relay.core.crm import session as crm_session
from tests.conftest import AUTH_HEADERS, StubResponse, recording_stub

TOKEN = {
    "access_token": "00D!access",
    "refresh_token": "refresh",
    "instance_url": "https://example.my.salesforce.com",
    "id": "https://login.salesforce.com/id/00D000000000001AAA/005000000000001AAA",
    "token_type": "Bearer",
}
USER_INFO = {"user_id": "005000000000001AAA", "name": "Jane Admin"}


def stub_userinfo(monkeypatch):
    calls = []
    monkeypatch.setattr(requests, "get", recording_stub(lambda url: StubResponse(USER_INFO), calls))
    return calls


def test_login_redirects_to_salesforce_with_pkce(client):
    response = client.get("/api/auth/login")

    assert response.status_code == 302
    location = urlparse(response.headers["Location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == (
        "https://login.salesforce.com/services/oauth2/authorize"
    )
    params = parse_qs(location.query)
    assert params["client_id"] == ["test-client-id"]
    assert params["redirect_uri"] == ["https://localhost/api/auth/callback"]
    assert params["code_challenge_method"] == ["S256"]
    assert params["scope"] == ["api refresh_token offline_access id web"]
    assert params["prompt"] == ["login consent"]

    with client.session_transaction() as sess:
        verifier = sess["pkce_code_verifier"]
    assert params["code_challenge"] == [auth._build_code_challenge(verifier)]


def test_callback_without_code(client):
    response = client.get("/api/auth/callback")
    assert response.status_code == 400
    assert response.get_json() == {"error": "Missing code"}


def test_callback_without_verifier(client):
    response = client.get("/api/auth/callback?code=abc")
    assert response.status_code == 400


def test_callback_stores_credential_and_returns_user_info(monkeypatch, client):
    class FakeClient:
        def authorize_access_token(self, code_verifier):
            assert code_verifier == "verifier"
            return TOKEN

    monkeypatch.setattr(auth, "get_oauth_client", lambda: FakeClient())
    calls = stub_userinfo(monkeypatch)

    with client.session_transaction() as sess:
        sess["pkce_code_verifier"] = "verifier"

    response = client.get("/api/auth/callback?code=abc&state=xyz")

    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "userInfo": USER_INFO}
    assert calls[0][0] == "https://example.my.salesforce.com/services/oauth2/userinfo"
    assert calls[0][1]["headers"]["Authorization"] == "Bearer 00D!access"
    assert b"00D!access" not in response.data

    with client.session_transaction() as sess:
        assert sess[SESSION_KEY]["org_id"] == "00D000000000001AAA"
        assert "pkce_code_verifier" not in sess


def test_password_login(monkeypatch, client, app):
    cfg = app.config["APP_CONFIG"]
    cfg.sf_username = "integration@example.org"
    cfg.sf_password = "pw"
    monkeypatch.setattr(crm_session, "request_password_token", lambda *args, **kwargs: TOKEN)
    stub_userinfo(monkeypatch)

    response = client.post("/api/auth/login-password", headers=AUTH_HEADERS)

    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "userInfo": USER_INFO}
    with client.session_transaction() as sess:
        assert sess[SESSION_KEY]["instance_url"] == "https://example.my.salesforce.com"


def test_password_login_rejected(monkeypatch, client, app):
    cfg = app.config["APP_CONFIG"]
    cfg.sf_username = "integration@example.org"
    cfg.sf_password = "wrong"

    def reject(*args, **kwargs):
        raise CrmAuthError("Salesforce login failed [400]: authentication failure")

    monkeypatch.setattr(crm_session, "request_password_token", reject)

    response = client.post("/api/auth/login-password", headers=AUTH_HEADERS)
    assert response.status_code == 401
    assert response.get_json()["error"] == "Salesforce authentication failed"


def test_password_login_not_configured(client):
    response = client.post("/api/auth/login-password", headers=AUTH_HEADERS)
    assert response.status_code == 401


def test_logout_clears_session(connected_client):
    response = connected_client.post("/api/auth/logout", headers=AUTH_HEADERS)
    assert response.get_json() == {"ok": True}
    with connected_client.session_transaction() as sess:
        assert SESSION_KEY not in sess
