"""Canonical Pydantic models shared across urlstore modules.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`RequestConfig`, :class:`ClientMetadata` and :class:`Settings`.

**Wire and result models** -- validated at the edges of the system:
    :class:`AuthMessage` (the cross-window login message), :class:`User`
    (normalised provider account info) and :class:`WriteResult`.

All models use Pydantic v2. Models that wrap provider payloads use
``extra="allow"`` so that unknown keys are preserved in ``model_extra``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Configuration ---


class RequestConfig(BaseModel):
    """Default HTTP request settings applied by :class:`~urlstore.client.AsyncClient`."""

    timeout: float = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(
        default=2, description="Max retry attempts for idempotent requests"
    )


class ClientMetadata(BaseModel):
    """OAuth client registration for one provider, as published by the auth service."""

    model_config = ConfigDict(extra="allow")

    client_id: str
    api_key: Optional[str] = None


class Settings(BaseModel):
    """User-wide configuration persisted at ``~/.config/urlstore/config.json``.

    Loaded by :func:`~urlstore.config.load_settings`; environment variables
    and explicit arguments take precedence over the file.
    """

    auth_service: str = Field(
        default="https://auth.madata.dev",
        description="Auth relay hosting the OAuth callback page and services.json",
    )
    services: dict[str, ClientMetadata] = Field(
        default_factory=dict,
        description="Preloaded client metadata keyed by provider name",
    )
    login_timeout: float = Field(
        default=300, description="Seconds to wait for the login window"
    )
    storage: Literal["disk", "memory"] = Field(
        default="disk", description="Key/value store used for tokens and local: URLs"
    )
    request: RequestConfig = Field(default_factory=RequestConfig)


# --- Wire / results ---


class AuthMessage(BaseModel):
    """Message posted by the login window to its opener.

    ``backend`` is the provider identity the token belongs to. A message
    without ``token`` (or with ``error``) is a rejection.
    """

    model_config = ConfigDict(extra="ignore")

    backend: str
    token: Optional[str] = None
    error: Optional[str] = None


class User(BaseModel):
    """Normalised account info returned by ``get_user()``.

    Provider-specific fields are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    username: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    url: Optional[str] = None


class WriteResult(BaseModel):
    """Outcome of a write against a backend."""

    type: Literal["create", "update", "delete"]
    info: Any = None
