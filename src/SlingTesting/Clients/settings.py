"""Process-wide settings and the immutable retry configuration.

Integration-test runs are tuned through environment variables rather than
code: a slow CI agent raises the poll timeout multiplier, a flaky staging
instance raises the retry budget.  :class:`ClientSettings` reads those
variables (prefix ``SLING_IT_``) each time :func:`load_settings` is called so
that changes made between client constructions are honoured.

Example:
    >>> from SlingTesting.Clients.settings import RetryConfiguration
    >>> config = RetryConfiguration(max_retries=4, retryable_status_codes="500,503")
    >>> sorted(config.retryable_status_codes)
    [500, 503]
"""

from __future__ import annotations

import logging
from typing import FrozenSet, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_RETRIES",
    "DEFAULT_RETRIES_DELAY_MS",
    "ClientSettings",
    "RetryConfiguration",
    "load_settings",
    "parse_status_codes",
]

# ============================================================================
# Defaults
# ============================================================================

#: Retries attempted after the first physical attempt.
DEFAULT_RETRIES = 10

#: Fixed interval between two attempts, in milliseconds.
DEFAULT_RETRIES_DELAY_MS = 1000


def parse_status_codes(value: Union[str, Iterable[Union[int, str]], None]) -> FrozenSet[int]:
    """Parse a CSV (or iterable) of status codes, dropping invalid entries."""

    if value is None:
        return frozenset()
    items = value.split(",") if isinstance(value, str) else list(value)
    codes = set()
    for item in items:
        if isinstance(item, str):
            item = item.strip()
            if not item:
                continue
        try:
            codes.add(int(item))
        except (TypeError, ValueError):
            logger.debug("ignoring invalid retry status code", extra={"value": item})
    return frozenset(codes)


# ============================================================================
# Environment
# ============================================================================


class ClientSettings(BaseSettings):
    """Environment-derived knobs shared by every client in the process."""

    http_retries: int = Field(default=DEFAULT_RETRIES, ge=0)
    http_retries_delay: int = Field(
        default=DEFAULT_RETRIES_DELAY_MS,
        ge=0,
        description="Delay between retry attempts in milliseconds",
    )
    http_log_retries: bool = False
    http_retries_error_codes: str = Field(
        default="",
        description="Comma separated status codes to retry; empty retries any 5xx",
    )
    http_delay: int = Field(
        default=0,
        ge=0,
        description="Delay injected before every physical request in milliseconds",
    )
    timeout_multiplier: float = Field(default=1.0, gt=0)
    client_connection_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Overrides every HTTP timeout phase, in seconds",
    )
    default_user_agent: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="SLING_IT_", case_sensitive=False, extra="ignore")


def load_settings() -> ClientSettings:
    """Read a fresh :class:`ClientSettings` from the current environment."""

    return ClientSettings()


# ============================================================================
# Retry configuration
# ============================================================================


class RetryConfiguration(BaseModel):
    """Immutable retry budget built once per client and shared by its requests.

    Attributes:
        max_retries: Retries after the first attempt (``max_retries + 1`` total).
        retry_interval_ms: Fixed delay between attempts.
        log_retries: Emit a diagnostic record for every retried response.
        retryable_status_codes: Codes worth retrying; empty means any 5xx.
    """

    max_retries: int = Field(default=DEFAULT_RETRIES, ge=0)
    retry_interval_ms: int = Field(default=DEFAULT_RETRIES_DELAY_MS, ge=0)
    log_retries: bool = False
    retryable_status_codes: FrozenSet[int] = frozenset()

    model_config = ConfigDict(frozen=True)

    @field_validator("retryable_status_codes", mode="before")
    @classmethod
    def validate_status_codes(cls, value: object) -> FrozenSet[int]:
        """Accept CSV strings and arbitrary iterables of codes."""

        if isinstance(value, (str, list, tuple, set, frozenset)) or value is None:
            return parse_status_codes(value)  # type: ignore[arg-type]
        raise ValueError("retryable_status_codes must be a CSV string or an iterable of ints")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None) -> "RetryConfiguration":
        """Build the configuration from ``settings`` (or the live environment)."""

        settings = settings or load_settings()
        return cls(
            max_retries=settings.http_retries,
            retry_interval_ms=settings.http_retries_delay,
            log_retries=settings.http_log_retries,
            retryable_status_codes=settings.http_retries_error_codes,
        )
