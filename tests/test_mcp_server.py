import asyncio
import json
from collections import OrderedDict

import mcp_server
from errors import AuthenticationError, CrmApiError, RateLimitError


class DummyClient:
    def __init__(self):
        self.calls = []

    def create_contact(self, data):
        self.calls.append(("create_contact", data))
        return {"id": "c-1", **data}

    def delete_contact(self, contact_id):
        self.calls.append(("delete_contact", contact_id))

    def get_contact(self, contact_id):
        raise CrmApiError("Contact not found", 404)


def use_client(monkeypatch, client):
    monkeypatch.setattr(mcp_server, "_client", lambda: client)


def test_error_envelope_shapes():
    assert mcp_server._error_envelope(RateLimitError("slow down", 30)) == {
        "success": False,
        "message": "slow down",
        "errorType": "RateLimitError",
        "retryAfterSeconds": 30,
    }
    assert mcp_server._error_envelope(CrmApiError("gone", 404))["statusCode"] == 404
    assert mcp_server._error_envelope(AuthenticationError("no token"))["errorType"] == "AuthenticationError"
    assert mcp_server._error_envelope(ValueError())["message"] == "ValueError"


def test_tool_success_envelope(monkeypatch):
    client = DummyClient()
    use_client(monkeypatch, client)

    result = asyncio.run(mcp_server.dynamics_create_contact(first_name="Ada", company_id="acc-1"))

    assert client.calls == [("create_contact", {"firstName": "Ada", "companyId": "acc-1"})]
    assert result == {"success": True, "data": {"id": "c-1", "firstName": "Ada", "companyId": "acc-1"}}


def test_tool_without_data_returns_message(monkeypatch):
    use_client(monkeypatch, DummyClient())
    result = asyncio.run(mcp_server.dynamics_delete_contact("c-9"))
    assert result == {"success": True, "message": "Contact c-9 deleted"}


def test_tool_error_becomes_envelope(monkeypatch):
    use_client(monkeypatch, DummyClient())
    result = asyncio.run(mcp_server.dynamics_get_contact("missing"))
    assert result == {
        "success": False,
        "message": "Contact not found",
        "errorType": "CrmApiError",
        "statusCode": 404,
    }


def test_client_setup_error_becomes_envelope(monkeypatch):
    def broken():
        raise AuthenticationError("Missing Dynamics 365 environment URL.")

    monkeypatch.setattr(mcp_server, "_client", broken)
    result = asyncio.run(mcp_server.dynamics_list_contacts())
    assert result["success"] is False
    assert result["errorType"] == "AuthenticationError"


class ClosableClient:
    def __init__(self, creds):
        self.creds = creds
        self.closed = False

    def close(self):
        self.closed = True


def serve_headers(monkeypatch, cache_size):
    created = []

    def fake_from_credentials(creds):
        client = ClosableClient(creds)
        created.append(client)
        return client

    current = {}
    monkeypatch.setattr(mcp_server, "_clients", OrderedDict())
    monkeypatch.setattr(mcp_server.settings, "MCP_CLIENT_CACHE_SIZE", cache_size)
    monkeypatch.setattr(mcp_server.DynamicsClient, "from_credentials", staticmethod(fake_from_credentials))
    monkeypatch.setattr(mcp_server, "_request_headers", lambda: current)
    return current, created


def token_headers(token):
    return {"X-Dynamics-Environment-URL": "https://org.crm.dynamics.com", "X-CRM-Access-Token": token}


def test_clients_are_cached_per_credential_set(monkeypatch):
    headers, created = serve_headers(monkeypatch, 32)

    headers.update(token_headers("tok-a"))
    first = mcp_server._client()
    assert mcp_server._client() is first

    headers.update(token_headers("tok-b"))
    assert mcp_server._client() is not first
    assert [c.creds.mode for c in created] == ["token", "token"]


def test_client_cache_is_bounded_and_closes_evicted(monkeypatch):
    headers, created = serve_headers(monkeypatch, 4)

    for i in range(50):
        headers.update(token_headers(f"tok-{i}"))
        mcp_server._client()

    assert len(mcp_server._clients) == 4
    assert all(c.closed for c in created[:46])
    assert not any(c.closed for c in created[46:])


def test_client_cache_keeps_recently_used(monkeypatch):
    headers, created = serve_headers(monkeypatch, 2)

    headers.update(token_headers("tok-a"))
    kept = mcp_server._client()
    headers.update(token_headers("tok-b"))
    mcp_server._client()
    headers.update(token_headers("tok-a"))
    assert mcp_server._client() is kept

    headers.update(token_headers("tok-c"))
    mcp_server._client()

    assert not kept.closed
    assert created[1].closed
    assert len(created) == 3


def test_present_drops_missing_arguments():
    assert mcp_server._present(a=1, b=None, c="", d=False) == {"a": 1, "c": "", "d": False}


def test_health_route():
    response = asyncio.run(mcp_server.health(None))
    assert json.loads(response.body) == {"status": "ok", "service": "dynamics-crm-mcp"}


def test_shorten_truncates():
    assert mcp_server._shorten({"k": "x" * 1000}, limit=20).endswith("...")


def test_tools_are_registered():
    tools = asyncio.run(mcp_server.mcp.list_tools())
    names = {t.name for t in tools}
    for expected in (
        "dynamics_test_connection",
        "dynamics_search_contacts",
        "dynamics_qualify_lead",
        "dynamics_close_quote",
        "dynamics_resolve_case",
        "dynamics_execute_fetchxml",
        "dynamics_batch_upsert",
        "dynamics_get_option_set_values",
    ):
        assert expected in names
