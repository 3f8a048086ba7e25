"""User-agent construction and the request-scoped user-agent override.

The user agent of a request is resolved in this order:

1. an explicit per-request value passed to the executor;
2. the ambient override set with :func:`set_user_agent` or
   :func:`custom_user_agent` (a :class:`contextvars.ContextVar`, so each
   thread and each asyncio task sees its own value);
3. the ``user_agent`` configured on the client;
4. the library default, ``SLING_IT_DEFAULT_USER_AGENT`` when set.

Blank or whitespace-only values are treated as absent at every level.
"""

from __future__ import annotations

import contextlib
import contextvars
from dataclasses import dataclass
from typing import Iterator, Optional

from .network.policy import USER_AGENT_TITLE, USER_AGENT_VERSION
from .settings import load_settings

__all__ = [
    "UserAgent",
    "construct_agent",
    "custom_user_agent",
    "default_user_agent",
    "get_user_agent",
    "reset_user_agent",
    "resolve_user_agent",
    "set_user_agent",
]

_USER_AGENT_OVERRIDE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "sling_user_agent_override", default=None
)


def _present(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value


def construct_agent(name: str, version: Optional[str] = None) -> str:
    """Return ``name/version``, or just ``name`` without a version."""

    if version is None:
        return name
    return f"{name}/{version}"


@dataclass(frozen=True)
class UserAgent:
    """Product-token builder.

    Example:
        >>> str(UserAgent("my-suite", "1.2").append_details("ci").append("extra", "2"))
        'my-suite/1.2 (ci) extra/2'
    """

    title: str
    version: Optional[str] = None
    suffix: str = ""

    def append(self, title: str, version: Optional[str] = None) -> "UserAgent":
        return UserAgent(self.title, self.version, f"{self.suffix} {construct_agent(title, version)}")

    def append_details(self, details: str) -> "UserAgent":
        return UserAgent(self.title, self.version, f"{self.suffix} ({details})")

    def __str__(self) -> str:
        return construct_agent(self.title, self.version) + self.suffix


def default_user_agent() -> str:
    """Library default user agent, overridable through the environment."""

    configured = _present(load_settings().default_user_agent)
    return configured or construct_agent(USER_AGENT_TITLE, USER_AGENT_VERSION)


def set_user_agent(value: Optional[str]) -> None:
    """Set the ambient override for the current thread or task; blank resets it."""

    _USER_AGENT_OVERRIDE.set(_present(value))


def get_user_agent() -> Optional[str]:
    return _USER_AGENT_OVERRIDE.get()


def reset_user_agent() -> None:
    _USER_AGENT_OVERRIDE.set(None)


@contextlib.contextmanager
def custom_user_agent(value: Optional[str]) -> Iterator[None]:
    """Apply an ambient override for the duration of the ``with`` block."""

    token = _USER_AGENT_OVERRIDE.set(_present(value))
    try:
        yield
    finally:
        _USER_AGENT_OVERRIDE.reset(token)


def resolve_user_agent(
    request_value: Optional[str] = None,
    client_value: Optional[str] = None,
) -> str:
    """Apply the resolution order documented at module level."""

    return (
        _present(request_value)
        or get_user_agent()
        or _present(client_value)
        or default_user_agent()
    )
