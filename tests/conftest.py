"""Pytest shared fixtures and the in-memory Salesforce double."""
import os
import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("API_BEARER_TOKEN", "test-bearer-token")
os.environ.setdefault("SF_CLIENT_ID", "test-client-id")
os.environ.setdefault("SF_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SF_CALLBACK_URL", "https://localhost/api/auth/callback")
for _var in ("SF_USERNAME", "SF_PASSWORD", "SF_SECURITY_TOKEN", "SCHEMA_CACHE_TTL", "MAILGUN_API_KEY", "MAILGUN_DOMAIN"):
    os.environ.pop(_var, None)

import pytest
import requests

from relay.core.crm import CrmAPIError, SESSION_KEY
from relay.flask_app import create_app

BEARER_TOKEN = os.environ["API_BEARER_TOKEN"]
AUTH_HEADERS = {"Authorization": f"Bearer {BEARER_TOKEN}"}


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching Salesforce or Mailgun.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture. Tests
    that exercise the HTTP layer install their own stubs on top.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _unexpected(method):
        def _stub(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _stub

    monkeypatch.setattr(requests, "get", _unexpected("GET"))
    monkeypatch.setattr(requests, "post", _unexpected("POST"))
    monkeypatch.setattr(requests, "patch", _unexpected("PATCH"))


# ─────────────────────────────────────────────────────────────────────────────
# Describe Metadata Builders
# ─────────────────────────────────────────────────────────────────────────────
def ref_field(name: str, target: str) -> dict:
    """Reference (lookup) field definition."""
    return {"name": name, "type": "reference", "referenceTo": [target]}


def typed_field(name: str, field_type: str = "string") -> dict:
    """Non-reference field definition."""
    return {"name": name, "type": field_type, "referenceTo": []}


def catalog(*names: str, queryable: bool = True) -> dict:
    """describe_global() payload listing ``names``."""
    return {"sobjects": [{"name": name, "queryable": queryable} for name in names]}


# ─────────────────────────────────────────────────────────────────────────────
# Salesforce Test Double
# ─────────────────────────────────────────────────────────────────────────────
class FakeCrm:
    """
    In-memory stand-in for CrmClient.

    Queries are answered by the first handler whose fragment appears in the
    SOQL text; unmatched queries return no records. Every call is recorded.
    """

    def __init__(self, org_id: str = "00D000000000001"):
        self.cache_key = org_id
        self.queries: List[str] = []
        self.describe_calls: List[str] = []
        self.describe_global_calls = 0
        self.updates: List[tuple] = []
        self.single_updates: List[tuple] = []
        self.schemas: Dict[str, dict] = {}
        self.catalog: dict = {"sobjects": []}
        self.user_info: dict = {"user_id": "005000000000001", "name": "Test User"}
        self.failing_ids: Dict[str, str] = {}
        self.update_error: Optional[Exception] = None
        self._handlers: List[tuple] = []

    # Configuration
    def on_query(self, fragment: str, records: Optional[List[dict]] = None, error: Optional[Exception] = None):
        """Answer queries containing ``fragment`` with ``records`` or raise ``error``."""
        self._handlers.append((fragment, records, error))
        return self

    def add_schema(self, object_name: str, *fields: dict):
        self.schemas[object_name] = {"name": object_name, "fields": list(fields)}
        return self

    def fail_record(self, record_id: str, message: str = "FIELD_CUSTOM_VALIDATION_EXCEPTION"):
        self.failing_ids[record_id] = message
        return self

    # CrmClient surface
    def query(self, soql: str) -> dict:
        self.queries.append(soql)
        for fragment, records, error in self._handlers:
            if fragment in soql:
                if error is not None:
                    raise error
                records = records(soql) if callable(records) else list(records or [])
                return {"totalSize": len(records), "done": True, "records": records}
        return {"totalSize": 0, "done": True, "records": []}

    def query_all(self, soql: str) -> dict:
        return self.query(soql)

    def describe(self, object_name: str) -> dict:
        self.describe_calls.append(object_name)
        if object_name not in self.schemas:
            raise CrmAPIError(404, "The requested resource does not exist", f"/sobjects/{object_name}/describe", "NOT_FOUND")
        return self.schemas[object_name]

    def describe_global(self) -> dict:
        self.describe_global_calls += 1
        return self.catalog

    def update(self, object_name: str, records: List[dict], all_or_none: bool = False) -> List[dict]:
        self.updates.append((object_name, [dict(r) for r in records]))
        if self.update_error is not None:
            raise self.update_error
        return [self._outcome(record["Id"]) for record in records]

    def update_one(self, object_name: str, record: dict) -> dict:
        self.single_updates.append((object_name, dict(record)))
        if self.update_error is not None:
            raise self.update_error
        return self._outcome(record["Id"])

    def identity(self) -> dict:
        return self.user_info

    def _outcome(self, record_id: str) -> dict:
        if record_id in self.failing_ids:
            return {
                "id": record_id,
                "success": False,
                "errors": [{"statusCode": "FIELD_CUSTOM_VALIDATION_EXCEPTION", "message": self.failing_ids[record_id]}],
            }
        return {"id": record_id, "success": True, "errors": []}


@pytest.fixture()
def fake_crm():
    return FakeCrm()


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app(monkeypatch, tmp_path):
    """Application with an isolated filesystem session store."""
    monkeypatch.setenv("FLASK_SESSION_DIR", str(tmp_path / "sessions"))
    flask_app = create_app()
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture()
def connected_client(client, fake_crm, monkeypatch):
    """Test client whose session holds a credential bound to ``fake_crm``."""
    from relay.api import decorators

    with client.session_transaction() as session:
        session[SESSION_KEY] = {
            "access_token": "00D-session-token",
            "instance_url": "https://example.my.salesforce.com",
            "org_id": fake_crm.cache_key,
            "user_id": "005000000000001",
        }
    monkeypatch.setattr(decorators, "ensure_client", lambda session, cfg: fake_crm)
    return client


# ─────────────────────────────────────────────────────────────────────────────
# HTTP Stubs
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    """Minimal requests.Response replacement."""

    def __init__(self, payload: Any = None, status_code: int = 200, text: Optional[str] = None):
        self._payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = text if text is not None else ("" if payload is None else str(payload))
        self.content = b"" if payload is None and not text else b"x"

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


def recording_stub(responses: Callable[[str], StubResponse], calls: list):
    """requests.<method> stand-in that records (url, kwargs) and answers via ``responses``."""
    def _stub(url, *args, **kwargs):
        calls.append((url, kwargs))
        return responses(url)
    return _stub


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that need a live Salesforce org"
    )
