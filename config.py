from __future__ import annotations

import hashlib
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, SecretStr, field_validator

load_dotenv()

# Inbound headers carrying per-tenant credentials (multi-tenant HTTP deployments)
HEADER_ENVIRONMENT_URL = "x-dynamics-environment-url"
HEADER_ACCESS_TOKEN = "x-crm-access-token"
HEADER_TENANT_ID = "x-dynamics-tenant-id"
HEADER_CLIENT_ID = "x-crm-client-id"
HEADER_CLIENT_SECRET = "x-crm-client-secret"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() not in {"false", "0", "no"}


class TenantCredentials(BaseModel):
    """One tenant's credential set. Immutable; secrets never show up in reprs."""

    model_config = ConfigDict(frozen=True)

    environment_url: str = ""
    access_token: Optional[SecretStr] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None

    @field_validator("environment_url", mode="before")
    @classmethod
    def _strip_url(cls, value: Optional[str]) -> str:
        return (value or "").strip().rstrip("/")

    @field_validator("access_token", "tenant_id", "client_id", "client_secret", mode="before")
    @classmethod
    def _blank_is_missing(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def mode(self) -> str:
        """``token``, ``client_credentials`` or ``invalid``."""
        if self.access_token is not None:
            return "token"
        if self.tenant_id and self.client_id and self.client_secret is not None:
            return "client_credentials"
        return "invalid"

    def cache_key(self) -> str:
        """Digest of every credential field; secrets are never held in clear."""
        parts = (
            self.environment_url,
            self.access_token.get_secret_value() if self.access_token else "",
            self.tenant_id or "",
            self.client_id or "",
            self.client_secret.get_secret_value() if self.client_secret else "",
        )
        return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()

    @classmethod
    def from_headers(cls, headers: Optional[Mapping[str, str]]) -> Optional["TenantCredentials"]:
        """Build credentials from request headers; None when no environment header is sent."""
        if not headers:
            return None
        lowered = {str(k).lower(): v for k, v in headers.items()}
        if not lowered.get(HEADER_ENVIRONMENT_URL):
            return None
        return cls(
            environment_url=lowered.get(HEADER_ENVIRONMENT_URL),
            access_token=lowered.get(HEADER_ACCESS_TOKEN),
            tenant_id=lowered.get(HEADER_TENANT_ID),
            client_id=lowered.get(HEADER_CLIENT_ID),
            client_secret=lowered.get(HEADER_CLIENT_SECRET),
        )


class Settings:
    """Application configuration loaded from environment variables."""

    def __init__(self) -> None:
        self.DYNAMICS_ENVIRONMENT_URL: str = os.getenv("DYNAMICS_ENVIRONMENT_URL", "")
        self.DYNAMICS_TENANT_ID: str = os.getenv("DYNAMICS_TENANT_ID", "")
        self.DYNAMICS_CLIENT_ID: str = os.getenv("DYNAMICS_CLIENT_ID", "")
        self.DYNAMICS_CLIENT_SECRET: str = os.getenv("DYNAMICS_CLIENT_SECRET", "")
        self.DYNAMICS_ACCESS_TOKEN: str = os.getenv("DYNAMICS_ACCESS_TOKEN", "")

        self.DYNAMICS_API_VERSION: str = os.getenv("DYNAMICS_API_VERSION", "v9.2")
        self.DYNAMICS_AUTHORITY_HOST: str = os.getenv(
            "DYNAMICS_AUTHORITY_HOST", "https://login.microsoftonline.com"
        ).rstrip("/")
        self.DYNAMICS_TIMEOUT: float = float(os.getenv("DYNAMICS_TIMEOUT", "30"))
        self.DYNAMICS_VERIFY_SSL: bool = _env_bool("DYNAMICS_VERIFY_SSL", True)
        self.DYNAMICS_BATCH_WORKERS: int = int(os.getenv("DYNAMICS_BATCH_WORKERS", "8"))

        self.MCP_TRANSPORT: str = os.getenv("MCP_TRANSPORT", "streamable-http")
        self.MCP_HOST: str = os.getenv("MCP_HOST", "0.0.0.0")
        self.MCP_PORT: int = int(os.getenv("MCP_PORT", "8000"))
        self.MCP_CLIENT_CACHE_SIZE: int = int(os.getenv("MCP_CLIENT_CACHE_SIZE", "32"))

    def default_credentials(self) -> TenantCredentials:
        return TenantCredentials(
            environment_url=self.DYNAMICS_ENVIRONMENT_URL,
            access_token=self.DYNAMICS_ACCESS_TOKEN,
            tenant_id=self.DYNAMICS_TENANT_ID,
            client_id=self.DYNAMICS_CLIENT_ID,
            client_secret=self.DYNAMICS_CLIENT_SECRET,
        )


settings = Settings()
