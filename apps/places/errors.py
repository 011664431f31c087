"""Errors raised by the places discovery flow. Each carries the HTTP status the API returns."""


class DiscoveryError(Exception):
    """Base error for discovery requests"""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_detail(self) -> dict:
        return {"error": self.message, "status": self.status_code}


class QueryValidationError(DiscoveryError):
    """Malformed query or no search selector"""

    status_code = 400


class CursorNotFoundError(DiscoveryError):
    """Cursor missing or expired"""

    status_code = 404


class CursorQueryMismatchError(DiscoveryError):
    """Cursor continued with a different (or absent, when enforced) query hash"""

    status_code = 400


class ConfigurationError(DiscoveryError):
    """Server side misconfiguration, e.g. provider credentials"""

    status_code = 500
