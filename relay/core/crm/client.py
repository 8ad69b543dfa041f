"""Low-level HTTP client for the Salesforce REST API.

Handles bearer authentication, URL building, timeouts and error mapping.
"""
from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List

import requests

from .exceptions import CrmAPIError, CrmAuthError, CrmTransportError

REQUEST_TIMEOUT = 10

# Salesforce accepts at most 200 records per composite sObject collection call.
COMPOSITE_BATCH_LIMIT = 200

logger = logging.getLogger(__name__)


class CrmClient:
    """HTTP client for the Salesforce REST API, bound to one access token.

    A client never outlives the request that built it; the credential it
    carries comes from the caller's session.

    Usage:
        client = CrmClient("https://acme.my.salesforce.com", token, api_version="59.0")
        result = client.query("SELECT Id, Name FROM Contact LIMIT 1")
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = "59.0",
        timeout: int = REQUEST_TIMEOUT,
        org_id: Optional[str] = None,
    ):
        """Initialize CRM client.

        Args:
            instance_url: Org base URL returned by the OAuth token endpoint
            access_token: OAuth access token
            api_version: REST API version without the leading "v"
            timeout: Per-request timeout in seconds
            org_id: Organization id, used to key schema caches
        """
        if not instance_url or not access_token:
            raise CrmAuthError("instance_url and access_token are required")
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.org_id = org_id
        self._access_token = access_token

    def __repr__(self) -> str:
        return f"CrmClient(instance_url={self.instance_url!r}, api_version={self.api_version!r})"

    @property
    def cache_key(self) -> str:
        """Key identifying the org this client talks to."""
        return self.org_id or self.instance_url

    @property
    def data_path(self) -> str:
        return f"/services/data/v{self.api_version}"

    # ─────────────────────────────────────────────────────────────────────────
    # HTTP verbs
    # ─────────────────────────────────────────────────────────────────────────
    def _url(self, path: str) -> str:
        if path.startswith("/services/"):
            return f"{self.instance_url}{path}"
        return f"{self.instance_url}{self.data_path}{path}"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = dict(extra or {})
        headers["Authorization"] = f"Bearer {self._access_token}"
        headers.setdefault("Accept", "application/json")
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request.

        Raises:
            CrmAPIError: On HTTP error
            CrmTransportError: On timeout or connection failure
        """
        url = self._url(path)
        headers = self._headers(kwargs.pop("headers", None))
        try:
            resp = requests.get(url, params=params, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise CrmTransportError(str(e), url) from e
        self._handle_error(resp, url)
        return resp

    def patch(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute PATCH request.

        Raises:
            CrmAPIError: On HTTP error
            CrmTransportError: On timeout or connection failure
        """
        url = self._url(path)
        headers = self._headers(kwargs.pop("headers", None))
        try:
            resp = requests.patch(url, json=json, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise CrmTransportError(str(e), url) from e
        self._handle_error(resp, url)
        return resp

    # ─────────────────────────────────────────────────────────────────────────
    # Query
    # ─────────────────────────────────────────────────────────────────────────
    def query(self, soql: str) -> Dict[str, Any]:
        """Run a SOQL query and return the first page.

        Returns:
            Dict with totalSize, done, records (and nextRecordsUrl when not done)
        """
        logger.debug("SOQL: %s", soql)
        result = self.get("/query", params={"q": soql}).json()
        result.setdefault("records", [])
        result.setdefault("totalSize", len(result["records"]))
        return result

    def query_all(self, soql: str) -> Dict[str, Any]:
        """Run a SOQL query and follow nextRecordsUrl until every page is fetched."""
        result = self.query(soql)
        records: List[dict] = list(result["records"])
        next_url = result.get("nextRecordsUrl")
        while next_url and not result.get("done", True):
            result = self.get(next_url).json()
            records.extend(result.get("records") or [])
            next_url = result.get("nextRecordsUrl")
        return {"totalSize": len(records), "done": True, "records": records}

    # ─────────────────────────────────────────────────────────────────────────
    # Metadata
    # ─────────────────────────────────────────────────────────────────────────
    def describe(self, object_name: str) -> Dict[str, Any]:
        """Describe one sObject (fields with name, type, referenceTo)."""
        return self.get(f"/sobjects/{object_name}/describe").json()

    def describe_global(self) -> Dict[str, Any]:
        """List every sObject visible to the user (name, queryable, ...)."""
        return self.get("/sobjects").json()

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────
    def update(self, object_name: str, records: List[dict], all_or_none: bool = False) -> List[dict]:
        """Update records in one composite call.

        Args:
            object_name: sObject API name
            records: Dicts carrying "Id" plus the fields to change
            all_or_none: Roll back the whole batch when one record fails

        Returns:
            One {id, success, errors} outcome per record, in input order
        """
        if not records:
            return []
        if len(records) > COMPOSITE_BATCH_LIMIT:
            raise ValueError(f"At most {COMPOSITE_BATCH_LIMIT} records per composite update")
        payload = {
            "allOrNone": all_or_none,
            "records": [{"attributes": {"type": object_name}, **record} for record in records],
        }
        return self.patch("/composite/sobjects", json=payload).json()

    def update_one(self, object_name: str, record: dict) -> Dict[str, Any]:
        """Update a single record; returns a {id, success, errors} outcome."""
        fields = dict(record)
        record_id = fields.pop("Id", None)
        if not record_id:
            raise ValueError("record must include Id")
        self.patch(f"/sobjects/{object_name}/{record_id}", json=fields)
        return {"id": record_id, "success": True, "errors": []}

    def identity(self) -> Dict[str, Any]:
        """Return OpenID userinfo for the connected user."""
        return self.get("/services/oauth2/userinfo").json()

    # ─────────────────────────────────────────────────────────────────────────
    # Error handling
    # ─────────────────────────────────────────────────────────────────────────
    def _handle_error(self, resp: requests.Response, url: str) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            CrmAPIError: If response status indicates error
        """
        if resp.status_code < 400:
            return
        message, error_code = _parse_error_body(resp)
        raise CrmAPIError(resp.status_code, message, url, error_code)


def _parse_error_body(resp: requests.Response) -> tuple[str, Optional[str]]:
    """Extract a readable message from a Salesforce error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}", None

    if isinstance(body, list) and body and isinstance(body[0], dict):
        first = body[0]
        return first.get("message") or resp.text, first.get("errorCode")
    if isinstance(body, dict):
        message = body.get("error_description") or body.get("message") or body.get("error")
        return message or resp.text, body.get("error") or body.get("errorCode")
    return resp.text or f"HTTP {resp.status_code}", None


def format_record_errors(errors: Optional[List[dict]]) -> str:
    """Join the errors array of a write outcome into one message."""
    messages = []
    for error in errors or []:
        if isinstance(error, dict):
            message = error.get("message") or error.get("statusCode")
            if message:
                messages.append(str(message))
        elif error:
            messages.append(str(error))
    return "; ".join(messages) or "Update failed"


# ─────────────────────────────────────────────────────────────────────────────
# OAuth token endpoint
# ─────────────────────────────────────────────────────────────────────────────
def request_password_token(
    login_url: str,
    client_id: str,
    client_secret: str,
    username: str,
    password: str,
    timeout: int = REQUEST_TIMEOUT,
) -> Dict[str, Any]:
    """Obtain a token via the OAuth username-password grant.

    Returns:
        Token response (access_token, instance_url, id, issued_at, ...)

    Raises:
        CrmAuthError: If Salesforce rejects the login
    """
    url = f"{login_url.rstrip('/')}/services/oauth2/token"
    data = {
        "grant_type": "password",
        "client_id": client_id,
        "client_secret": client_secret,
        "username": username,
        "password": password,
    }
    try:
        resp = requests.post(url, data=data, timeout=timeout)
    except requests.RequestException as e:
        raise CrmAuthError(f"Salesforce login failed: {e}") from e
    if resp.status_code != 200:
        message, _ = _parse_error_body(resp)
        raise CrmAuthError(f"Salesforce login failed [{resp.status_code}]: {message}")
    return resp.json()
