import pytest

from config import TenantCredentials
from errors import AuthenticationError
from odata_client import TokenManager


class DummyResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class DummySession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None, verify=True):
        self.calls.append({"url": url, "data": data, "headers": headers, "verify": verify})
        return self.responses.pop(0)


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_creds(**overrides):
    values = {
        "environment_url": "https://org.crm.dynamics.com/",
        "tenant_id": "tenant-1",
        "client_id": "client-1",
        "client_secret": "secret-1",
    }
    values.update(overrides)
    return TenantCredentials(**values)


def token_response(token="tok-1", expires_in=3600):
    return DummyResponse(200, {"access_token": token, "expires_in": expires_in})


def test_token_is_reused_until_safety_margin():
    clock = Clock(0)
    session = DummySession(token_response("tok-1"), token_response("tok-2"))
    manager = TokenManager(make_creds(), session=session, authority_host="https://login.example", clock=clock)

    assert manager.get_token() == "tok-1"
    clock.now = 3500
    assert manager.get_token() == "tok-1"
    assert len(session.calls) == 1

    clock.now = 3541
    assert manager.get_token() == "tok-2"
    assert len(session.calls) == 2


def test_token_request_form():
    session = DummySession(token_response())
    manager = TokenManager(make_creds(), session=session, authority_host="https://login.example/", clock=Clock())
    manager.get_token()

    call = session.calls[0]
    assert call["url"] == "https://login.example/tenant-1/oauth2/v2.0/token"
    assert call["data"] == {
        "grant_type": "client_credentials",
        "client_id": "client-1",
        "client_secret": "secret-1",
        "scope": "https://org.crm.dynamics.com/.default",
    }
    assert call["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
    assert call["verify"] is True


def test_token_request_can_skip_ssl_verification():
    session = DummySession(token_response())
    TokenManager(make_creds(), session=session, verify=False, clock=Clock()).get_token()
    assert session.calls[0]["verify"] is False


def test_pre_obtained_token_skips_exchange():
    session = DummySession()
    creds = TenantCredentials(environment_url="https://org.crm.dynamics.com", access_token="given")
    manager = TokenManager(creds, session=session, clock=Clock())

    assert manager.get_token() == "given"
    assert session.calls == []


def test_missing_credentials_raise_authentication_error():
    creds = TenantCredentials(environment_url="https://org.crm.dynamics.com", tenant_id="t")
    manager = TokenManager(creds, session=DummySession(), clock=Clock())

    with pytest.raises(AuthenticationError) as exc:
        manager.get_token()
    assert "X-CRM-Client-Secret" in exc.value.message


def test_rejected_exchange_uses_error_description():
    session = DummySession(
        DummyResponse(400, {"error": "invalid_client", "error_description": "AADSTS7000215: Invalid client secret"})
    )
    manager = TokenManager(make_creds(), session=session, clock=Clock())

    with pytest.raises(AuthenticationError) as exc:
        manager.get_token()
    assert exc.value.message == "AADSTS7000215: Invalid client secret"
    assert not manager.has_cached_token


def test_rejected_exchange_without_json_body():
    manager = TokenManager(make_creds(), session=DummySession(DummyResponse(500, None)), clock=Clock())

    with pytest.raises(AuthenticationError) as exc:
        manager.get_token()
    assert exc.value.message == "Failed to acquire Dynamics 365 token"


def test_invalidate_forces_new_exchange():
    session = DummySession(token_response("tok-1"), token_response("tok-2"))
    manager = TokenManager(make_creds(), session=session, clock=Clock(10))

    assert manager.get_token() == "tok-1"
    manager.invalidate()
    assert manager.get_token() == "tok-2"
