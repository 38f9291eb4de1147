import logging

import pytest
from requests.structures import CaseInsensitiveDict

from config import TenantCredentials
from errors import AuthenticationError, CrmApiError, RateLimitError
from odata_client import ODataClient, TokenManager, entity_set_name, extract_entity_id, page_from_response

BASE = "https://org.crm.dynamics.com/api/data/v9.2"


class DummyResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=None, url=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        if text is not None:
            self.text = text
        elif payload is not None:
            self.text = "json"
        else:
            self.text = ""
        self.content = self.text.encode()

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class DummySession:
    """Serves token exchanges from ``tokens`` and API calls from ``responses``."""

    def __init__(self, responses=(), tokens=()):
        self.responses = list(responses)
        self.tokens = list(tokens)
        self.requests = []
        self.token_requests = 0

    def post(self, url, data=None, headers=None, timeout=None, verify=True):
        self.token_requests += 1
        self.token_verify = verify
        token = self.tokens.pop(0)
        return DummyResponse(200, {"access_token": token, "expires_in": 3600})

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0)


def make_client(*responses, tokens=("tok-1",)):
    session = DummySession(responses, tokens)
    creds = TenantCredentials(
        environment_url="https://org.crm.dynamics.com",
        tenant_id="t",
        client_id="c",
        client_secret="s",
    )
    tokens_manager = TokenManager(creds, session=session, authority_host="https://login.example")
    client = ODataClient(creds, session=session, token_manager=tokens_manager, api_version="v9.2")
    return client, session


def test_base_url_and_request_headers():
    client, session = make_client(DummyResponse(200, {"value": []}))
    client.get("/contacts", params={"$select": "fullname"})

    sent = session.requests[0]
    assert client.base_url == BASE
    assert sent["url"] == f"{BASE}/contacts?$select=fullname"
    assert sent["headers"]["Authorization"] == "Bearer tok-1"
    assert sent["headers"]["OData-Version"] == "4.0"
    assert sent["headers"]["Prefer"] == 'odata.include-annotations="*"'
    assert "json" not in sent


def test_query_string_keeps_odata_punctuation():
    client, _ = make_client()
    url = client.build_url("/accounts", {"$filter": "statecode eq 0", "$top": 5, "$skip": None})
    assert url == f"{BASE}/accounts?$filter=statecode%20eq%200&$top=5"


def test_absolute_cursor_is_requested_verbatim():
    cursor = f"{BASE}/contacts?$select=fullname&$skiptoken=%3Ccookie%20page%3D%222%22%2F%3E"
    client, session = make_client(DummyResponse(200, {"value": []}))
    client.get(cursor)
    assert session.requests[0]["url"] == cursor


def test_rate_limit_uses_retry_after():
    client, _ = make_client(DummyResponse(429, headers={"Retry-After": "30"}))
    with pytest.raises(RateLimitError) as exc:
        client.get("/contacts")
    assert exc.value.retry_after_seconds == 30


def test_rate_limit_defaults_to_sixty_seconds():
    client, _ = make_client(DummyResponse(429))
    with pytest.raises(RateLimitError) as exc:
        client.get("/contacts")
    assert exc.value.retry_after_seconds == 60


def test_unauthorized_invalidates_cached_token():
    client, session = make_client(
        DummyResponse(401),
        DummyResponse(200, {"UserId": "u"}),
        tokens=("tok-1", "tok-2"),
    )
    with pytest.raises(AuthenticationError):
        client.get("/WhoAmI")
    assert not client.tokens.has_cached_token

    client.get("/WhoAmI")
    assert session.token_requests == 2
    assert session.requests[1]["headers"]["Authorization"] == "Bearer tok-2"


def test_forbidden_is_authentication_error_and_keeps_token():
    client, _ = make_client(DummyResponse(403))
    with pytest.raises(AuthenticationError) as exc:
        client.get("/contacts")
    assert "permissions" in exc.value.message
    assert client.tokens.has_cached_token


def test_api_error_message_from_body():
    client, _ = make_client(DummyResponse(400, {"error": {"code": "0x1", "message": "Bad field 'foo'"}}))
    with pytest.raises(CrmApiError) as exc:
        client.get("/contacts")
    assert exc.value.message == "Bad field 'foo'"
    assert exc.value.status_code == 400


def test_api_error_without_body():
    client, _ = make_client(DummyResponse(500, text="<html>oops</html>"))
    with pytest.raises(CrmApiError) as exc:
        client.get("/contacts")
    assert exc.value.message == "Dynamics 365 API error: 500"
    assert exc.value.status_code == 500


def test_no_content_returns_none():
    client, session = make_client(DummyResponse(204))
    assert client.patch("/contacts(1)", {"firstname": "A"}) is None
    assert session.requests[0]["json"] == {"firstname": "A"}


def test_non_json_success_body_returns_none():
    client, _ = make_client(DummyResponse(200, text="<html>ok</html>"))
    assert client.get("/contacts") is None


def test_token_exchange_follows_ssl_setting():
    session = DummySession([DummyResponse(204)], ["tok-1"])
    creds = TenantCredentials(
        environment_url="https://org.crm.dynamics.com", tenant_id="t", client_id="c", client_secret="s"
    )
    client = ODataClient(creds, session=session, verify_ssl=False)

    client.delete("/contacts(1)")

    assert session.token_verify is False
    assert session.requests[0]["verify"] is False


def test_close_releases_session():
    class ClosingSession(DummySession):
        closed = False

        def close(self):
            self.closed = True

    session = ClosingSession()
    client, _ = make_client()
    client.session = session
    client.close()
    assert session.closed is True


def test_caller_headers_override_defaults():
    client, session = make_client(DummyResponse(204))
    client.patch("/accounts(1)", {}, headers={"If-Match": "*", "Prefer": "return=minimal"})
    headers = session.requests[0]["headers"]
    assert headers["If-Match"] == "*"
    assert headers["Prefer"] == "return=minimal"


def test_create_entity_reads_id_from_header():
    client, session = make_client(
        DummyResponse(204, headers={"OData-EntityId": f"{BASE}/contacts(00000000-0000-0000-0000-000000000001)"})
    )
    created = client.create_entity("/contacts", {"firstname": "Ada"})
    assert created.id == "00000000-0000-0000-0000-000000000001"
    assert session.requests[0]["method"] == "POST"
    assert session.requests[0]["headers"]["Prefer"] == "return=representation"


def test_create_entity_without_header_yields_empty_id(caplog):
    client, _ = make_client(DummyResponse(201, {"contactid": "x"}))
    with caplog.at_level(logging.WARNING):
        created = client.create_entity("/contacts", {"firstname": "Ada"})
    assert created.id == ""
    assert "No entity id" in caplog.text


def test_create_entity_failure_is_classified():
    client, _ = make_client(DummyResponse(400, {"error": {"message": "Required field missing"}}))
    with pytest.raises(CrmApiError) as exc:
        client.create_entity("/contacts", {})
    assert exc.value.message == "Required field missing"


def test_missing_environment_url():
    with pytest.raises(AuthenticationError):
        ODataClient(TenantCredentials(access_token="t"), session=DummySession())


def test_extract_entity_id():
    assert extract_entity_id("https://x/api/data/v9.2/accounts(abc)") == "abc"
    assert extract_entity_id("https://x/api/data/v9.2/accounts") == ""
    assert extract_entity_id(None) == ""


def test_entity_set_names():
    assert entity_set_name("contact") == "contacts"
    assert entity_set_name("opportunity") == "opportunities"
    assert entity_set_name("campaignactivity") == "campaignactivities"
    assert entity_set_name("fax") == "faxes"


def test_page_from_response():
    payload = {"value": [{"a": 1}, {"a": 2}], "@odata.count": 7, "@odata.nextLink": "https://next"}
    page = page_from_response(payload, lambda r: {"b": r["a"]})
    assert page == {
        "items": [{"b": 1}, {"b": 2}],
        "count": 2,
        "hasMore": True,
        "total": 7,
        "nextCursor": "https://next",
    }

    last = page_from_response({"value": []}, dict)
    assert last == {"items": [], "count": 0, "hasMore": False}
