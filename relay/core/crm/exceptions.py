"""Salesforce-specific exceptions for error handling."""


class CrmError(Exception):
    """Base exception for all CRM operations."""
    pass


class CrmAPIError(CrmError):
    """HTTP error from the Salesforce REST API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
        error_code: Salesforce errorCode of the first error, when present
    """

    def __init__(self, status_code: int, message: str, endpoint: str, error_code: str | None = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.error_code = error_code
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class CrmTransportError(CrmError):
    """Network failure or timeout talking to Salesforce."""

    def __init__(self, message: str, endpoint: str):
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"{endpoint}: {message}")


class CrmAuthError(CrmError):
    """OAuth token exchange or login failed."""
    pass
