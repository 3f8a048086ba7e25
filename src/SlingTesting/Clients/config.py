"""Immutable per-client configuration.

A :class:`ClientConfig` describes one client: where the server is, who to
authenticate as, how to retry, and a small typed set of extension values
read by interceptors and domain clients.  It is validated once, when the
client is created, so that a bad URL fails the test setup instead of
surfacing as a confusing transport error later.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import SetupError
from .network.policy import SUDO_COOKIE_NAME
from .settings import ClientSettings, RetryConfiguration, load_settings

__all__ = ["ClientConfig", "ClientExtensions", "normalize_base_url"]


def normalize_base_url(url: str) -> str:
    """Validate ``url`` and return it with a trailing ``/`` on its path.

    Raises:
        SetupError: If the URL is relative or has no host.
    """
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise SetupError(f"Invalid url: {url}") from exc
    if not parsed.scheme:
        raise SetupError(f"Url must be absolute: {url}")
    if not parsed.host:
        raise SetupError(f"Failed to extract hostname from url {url}")
    path = parsed.path or "/"
    if not path.endswith("/"):
        path += "/"
    return str(parsed.copy_with(path=path))


class ClientExtensions(BaseModel):
    """Extension values read by interceptors and domain clients.

    Attributes:
        sudo_cookie_name: Cookie carrying the impersonated user.
        login_token_name: Session cookie set by a successful form login.
        index_lanes: Async indexing lanes; discovered from OSGi when ``None``.
        extra: Free-form values for caller-defined interceptors.
    """

    sudo_cookie_name: str = SUDO_COOKIE_NAME
    login_token_name: Optional[str] = None
    index_lanes: Optional[Tuple[str, ...]] = None
    extra: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("index_lanes", mode="before")
    @classmethod
    def split_lanes(cls, value: object) -> object:
        """Accept the CSV form used by ``-Dsling.it.indexLanesCsv`` style settings."""

        if isinstance(value, str):
            return tuple(lane.strip() for lane in value.split(",") if lane.strip())
        return value


class ClientConfig(BaseModel):
    """Validated description of a single client."""

    url: str
    user: Optional[str] = None
    password: Optional[str] = None
    preemptive_auth: bool = True
    user_agent: Optional[str] = None
    retry: RetryConfiguration = Field(default_factory=RetryConfiguration)
    connection_timeout: Optional[float] = Field(default=None, gt=0)
    request_delay_ms: int = Field(default=0, ge=0)
    extensions: ClientExtensions = Field(default_factory=ClientExtensions)

    model_config = ConfigDict(frozen=True)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        try:
            return normalize_base_url(value)
        except SetupError as exc:
            raise ValueError(exc.message) from exc

    @classmethod
    def create(
        cls,
        url: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        *,
        settings: Optional[ClientSettings] = None,
        **overrides,
    ) -> "ClientConfig":
        """Build a configuration, filling unset values from the environment.

        Args:
            url: Absolute server URL; a trailing ``/`` is added to its path.
            user: User name; ``None`` means anonymous access.
            password: Password for ``user``.
            settings: Environment settings; read fresh when omitted.
            **overrides: Any other :class:`ClientConfig` field.

        Raises:
            SetupError: If ``url`` is not an absolute URL with a host.
        """
        settings = settings or load_settings()
        values = {
            "url": normalize_base_url(url),
            "user": user,
            "password": password,
            "retry": RetryConfiguration.from_settings(settings),
            "connection_timeout": settings.client_connection_timeout,
            "request_delay_ms": settings.http_delay,
        }
        values.update(overrides)
        return cls(**values)

    @property
    def base_url(self) -> httpx.URL:
        return httpx.URL(self.url)

    @property
    def has_credentials(self) -> bool:
        return self.user is not None

    def with_changes(self, **changes) -> "ClientConfig":
        """Return a validated copy with ``changes`` applied."""

        return type(self)(**{**self.model_dump(), **changes})
