from config import TenantCredentials


def test_cache_key_does_not_hold_secrets():
    creds = TenantCredentials(
        environment_url="https://org.crm.dynamics.com",
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="very-secret",
    )
    key = creds.cache_key()
    assert isinstance(key, str)
    assert "very-secret" not in key
    assert len(key) == 64


def test_cache_key_tracks_every_credential_field():
    base = TenantCredentials(environment_url="https://org.crm.dynamics.com", access_token="tok-a")
    assert base.cache_key() == TenantCredentials(
        environment_url="https://org.crm.dynamics.com/", access_token="tok-a"
    ).cache_key()
    assert base.cache_key() != TenantCredentials(
        environment_url="https://org.crm.dynamics.com", access_token="tok-b"
    ).cache_key()


def test_from_headers_is_case_insensitive_and_needs_environment():
    creds = TenantCredentials.from_headers(
        {"x-dynamics-environment-url": "https://org.crm.dynamics.com/", "X-CRM-ACCESS-TOKEN": "opaque-value"}
    )
    assert creds.environment_url == "https://org.crm.dynamics.com"
    assert creds.mode == "token"
    assert "opaque-value" not in repr(creds)
    assert TenantCredentials.from_headers({"X-CRM-Access-Token": "tok"}) is None
