"""
Python client for the Dynamics 365 (Dataverse) Web API, OData v4 dialect.

- TokenManager: OAuth2 client-credentials token with one cache slot per tenant
- ODataClient: authenticated requests with uniform error classification
  (429 / 401 / 403 / other), no-content handling and entity id extraction
  from the OData-EntityId header on create
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from urllib.parse import quote, urlencode

from config import TenantCredentials, settings
from errors import AuthenticationError, CrmApiError, RateLimitError

logger = logging.getLogger(__name__)


# ---------------------------- Entity set names ----------------------------

# Collection names that are not "<logical name>s"
_IRREGULAR_ENTITY_SETS: Dict[str, str] = {
    "opportunity": "opportunities",
    "activityparty": "activityparties",
    "territory": "territories",
    "transactioncurrency": "transactioncurrencies",
    "fax": "faxes",
    "campaignactivity": "campaignactivities",
    "category": "categories",
    "customeraddress": "customeraddresses",
    "opportunityclose": "opportunitycloses",
    "quoteclose": "quotecloses",
    "orderclose": "ordercloses",
    "businessunitnewsarticle": "businessunitnewsarticles",
}


def entity_set_name(logical_name: str) -> str:
    """Map a singular logical name (``contact``) to its collection (``contacts``)."""
    name = (logical_name or "").strip()
    return _IRREGULAR_ENTITY_SETS.get(name.lower(), f"{name}s")


_ENTITY_ID_RE = re.compile(r"\(([^)]+)\)$")


def extract_entity_id(header_value: Optional[str]) -> str:
    """Return the trailing ``(...)`` segment of an entity URL, or '' when there is none."""
    if not header_value:
        return ""
    match = _ENTITY_ID_RE.search(header_value.strip())
    return match.group(1) if match else ""


# ---------------------------- Response helpers ----------------------------

def values(payload: Any) -> List[Dict[str, Any]]:
    """Records of a collection payload ``{"value": [...]}``; [] for anything else."""
    if isinstance(payload, dict) and isinstance(payload.get("value"), list):
        return payload["value"]
    return []


def page_from_response(
    payload: Any, transform: Callable[[Dict[str, Any]], Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Build a paginated response from a collection payload.

    ``nextCursor`` is the server's ``@odata.nextLink`` exactly as received; callers
    hand it back as ``cursor`` and it is requested verbatim.
    """
    records = values(payload)
    next_link = payload.get("@odata.nextLink") if isinstance(payload, dict) else None
    page: Dict[str, Any] = {
        "items": [transform(r) for r in records],
        "count": len(records),
        "hasMore": bool(next_link),
    }
    if isinstance(payload, dict) and payload.get("@odata.count") is not None:
        page["total"] = payload["@odata.count"]
    if next_link:
        page["nextCursor"] = next_link
    return page


class CreatedEntity(NamedTuple):
    id: str
    response: requests.Response


# ------------------------------ Token manager -----------------------------

class TokenManager:
    """
    Bearer token source for one tenant credential set.

    A caller-supplied access token is returned as is. Otherwise a client-credentials
    token is fetched and kept until ``expires_in - SAFETY_MARGIN`` seconds have passed.
    Concurrent refreshes are last-write-wins; each writer stores a valid token.
    """

    SAFETY_MARGIN = 60

    def __init__(
        self,
        credentials: TenantCredentials,
        session: Optional[requests.Session] = None,
        authority_host: Optional[str] = None,
        timeout: Optional[float] = None,
        verify: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.credentials = credentials
        self.session = session or requests.Session()
        self.authority_host = (authority_host or settings.DYNAMICS_AUTHORITY_HOST).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.DYNAMICS_TIMEOUT
        self.verify = verify
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    @property
    def token_url(self) -> str:
        return f"{self.authority_host}/{self.credentials.tenant_id}/oauth2/v2.0/token"

    @property
    def has_cached_token(self) -> bool:
        return self._token is not None

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    def get_token(self) -> str:
        creds = self.credentials
        if creds.access_token is not None:
            return creds.access_token.get_secret_value()

        if self._token and self._clock() < self._expires_at:
            return self._token

        if creds.mode != "client_credentials":
            raise AuthenticationError(
                "Missing credentials for OAuth client credentials flow. "
                "Provide X-Dynamics-Tenant-ID, X-CRM-Client-ID and X-CRM-Client-Secret headers, "
                "or X-CRM-Access-Token for a pre-obtained token."
            )

        logger.info(f"Requesting Dynamics 365 token for tenant {creds.tenant_id}")
        fetched_at = self._clock()
        response = self.session.post(
            self.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": creds.client_id,
                "client_secret": creds.client_secret.get_secret_value(),
                "scope": f"{creds.environment_url}/.default",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.timeout,
            verify=self.verify,
        )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not 200 <= response.status_code < 300:
            message = "Failed to acquire Dynamics 365 token"
            if isinstance(data, dict):
                message = data.get("error_description") or data.get("error") or message
            logger.warning(f"Token request rejected with HTTP {response.status_code}")
            raise AuthenticationError(message)

        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthenticationError("Token response did not contain an access token")

        expires_in = float(data.get("expires_in") or 0)
        self._token = data["access_token"]
        self._expires_at = fetched_at + expires_in - self.SAFETY_MARGIN
        return self._token


# --------------------------------- Client ---------------------------------

def _make_retry() -> Retry:
    """Retry connection setup only; every HTTP status is surfaced to the caller."""
    return Retry(
        total=2,
        connect=2,
        read=0,
        status=0,
        backoff_factor=0.2,
        allowed_methods=None,
        raise_on_status=False,
    )


class ODataClient:
    """Request engine for one tenant's ``{environment}/api/data/<version>`` endpoint."""

    # Query values keep OData punctuation readable; spaces become %20, never '+'
    QUERY_SAFE = "(),:$'*"

    def __init__(
        self,
        credentials: TenantCredentials,
        *,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        verify_ssl: Optional[bool] = None,
        session: Optional[requests.Session] = None,
        token_manager: Optional[TokenManager] = None,
    ) -> None:
        if not credentials.environment_url:
            raise AuthenticationError(
                "Missing Dynamics 365 environment URL. "
                "Provide the X-Dynamics-Environment-URL header or DYNAMICS_ENVIRONMENT_URL."
            )
        self.credentials = credentials
        self.api_version = api_version or settings.DYNAMICS_API_VERSION
        self.base_url = f"{credentials.environment_url}/api/data/{self.api_version}"
        self.timeout = timeout if timeout is not None else settings.DYNAMICS_TIMEOUT
        self.verify_ssl = settings.DYNAMICS_VERIFY_SSL if verify_ssl is None else verify_ssl
        self.session = session or self._create_session()
        self.tokens = token_manager or TokenManager(
            credentials, session=self.session, timeout=self.timeout, verify=self.verify_ssl
        )

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=_make_retry(), pool_connections=10, pool_maxsize=20)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    # ----- headers / urls -----

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.tokens.get_token()}",
            "Content-Type": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
            "Accept": "application/json",
            "Prefer": 'odata.include-annotations="*"',
        }

    def _merge_headers(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = self._auth_headers()
        if extra:
            headers.update(extra)
        return headers

    def build_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Absolute URLs (server continuation links) pass through untouched."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        url = f"{self.base_url}/{path.lstrip('/')}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        if params:
            qs = urlencode(params, doseq=True, quote_via=quote, safe=self.QUERY_SAFE)
            url = f"{url}{'&' if '?' in url else '?'}{qs}"
        return url

    def entity_url(self, entity_set: str, record_id: str) -> str:
        return f"{self.base_url}/{entity_set}({record_id})"

    # ----- requests -----

    def _send(
        self,
        method: str,
        url: str,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        req_options: Dict[str, Any] = {
            "headers": self._merge_headers(headers),
            "timeout": self.timeout,
            "verify": self.verify_ssl,
        }
        if json is not None:
            req_options["json"] = json
        logger.debug(f"{method} {url}")
        try:
            return self.session.request(method, url, **req_options)
        except requests.RequestException as exc:
            logger.warning(f"{method} {url} failed: {exc}")
            raise

    def _check(self, response: requests.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        logger.warning(f"HTTP {status} for {response.url}")
        if response.text:
            logger.debug(f"Response body (first 500 chars): {response.text[:500]}")

        if status == 429:
            raise RateLimitError(
                "Dynamics 365 rate limit exceeded",
                _retry_after_seconds(response.headers.get("Retry-After")),
            )
        if status == 401:
            self.tokens.invalidate()
            raise AuthenticationError("Authentication failed. Token may have expired.")
        if status == 403:
            raise AuthenticationError(
                "Access denied. Check that your app has the required Dynamics 365 permissions."
            )
        raise CrmApiError(_error_message(response), status)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Perform a request and return the decoded body.

        Returns None for 204 No Content, an empty body or a body that is not JSON.
        Raises RateLimitError, AuthenticationError or CrmApiError for non-2xx answers;
        nothing is retried here.
        """
        response = self._send(method, self.build_url(path, params), json=json, headers=headers)
        self._check(response)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug(f"Ignoring non-JSON {response.status_code} body from {method} {path}")
            return None

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request("POST", path, json=body if body is not None else {}, headers=headers)

    def patch(self, path: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request("PATCH", path, json=body, headers=headers)

    def close(self) -> None:
        """Release the pooled connections of this client's session."""
        self.session.close()

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def create_entity(self, path: str, body: Dict[str, Any]) -> CreatedEntity:
        """
        POST a new record and read its id from the OData-EntityId header.

        An absent or unparsable header yields an empty id instead of an error.
        """
        url = self.build_url(path)
        response = self._send(
            "POST", url, json=body, headers={"Prefer": "return=representation"}
        )
        self._check(response)
        header = response.headers.get("OData-EntityId") or response.headers.get("Location")
        record_id = extract_entity_id(header)
        if not record_id:
            logger.warning(f"No entity id in create response for {url} (header: {header!r})")
        return CreatedEntity(record_id, response)


# ------------------------------- Utilities --------------------------------

def _retry_after_seconds(value: Optional[str]) -> int:
    if value:
        try:
            return int(value.strip())
        except ValueError:
            pass
    return 60


def _error_message(response: requests.Response) -> str:
    fallback = f"Dynamics 365 API error: {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if data.get("message"):
            return str(data["message"])
    return fallback
