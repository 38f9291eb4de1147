"""Error kinds raised by the Dynamics 365 adapter."""

from __future__ import annotations

from typing import Optional


class CrmError(Exception):
    """Base class for every failure surfaced by the adapter."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(CrmError):
    """Missing/invalid credentials, rejected token exchange, HTTP 401 or 403."""


class RateLimitError(CrmError):
    def __init__(self, message: str, retry_after_seconds: int = 60) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class CrmApiError(CrmError):
    """Any other non-2xx answer from the Web API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
