#!/usr/bin/env python3
"""
Error Classification for reasoning-service calls.

Classifies failures of an AI analysis call into types with different retry
strategies:
- rate_limit: retryable, exponential backoff from 4s
- quota: retryable, exponential backoff from 8s
- transient: retryable, exponential backoff from 1s (timeouts, 5xx, network)
- validation: retryable, short fixed delay (malformed model output)
- auth: NOT retryable
- config: NOT retryable
- permanent: NOT retryable (fail-safe default)

Every delay is capped by ``max_wait`` so the whole retry budget stays bounded.

Usage:
    from tenacity import Retrying, retry_if_exception, stop_after_attempt
    from error_classifier import classified_retry_predicate, classified_wait

    for attempt in Retrying(
        retry=retry_if_exception(classified_retry_predicate("anthropic")),
        wait=classified_wait("anthropic", max_wait=30.0),
        stop=stop_after_attempt(3),
        reraise=True,
    ):
        with attempt:
            call()
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Error type constants
# ---------------------------------------------------------------------------

ERROR_TYPE_RATE_LIMIT = "rate_limit"
ERROR_TYPE_QUOTA = "quota"
ERROR_TYPE_AUTH = "auth"
ERROR_TYPE_CONFIG = "config"
ERROR_TYPE_VALIDATION = "validation"
ERROR_TYPE_TRANSIENT = "transient"
ERROR_TYPE_PERMANENT = "permanent"

DEFAULT_MAX_WAIT = 30.0

# ---------------------------------------------------------------------------
# Pattern registries for error classification
# ---------------------------------------------------------------------------

QUOTA_PATTERNS: list[str] = [
    "credit balance",
    "insufficient credits",
    "insufficient_quota",
    "quota exceeded",
    "spending limit",
    "payment required",
]

RATE_LIMIT_PATTERNS: list[str] = [
    "rate limit",
    "rate_limit_error",
    "too many requests",
    "requests per minute",
    "throttled",
    "429",
]

AUTH_PATTERNS: list[str] = [
    "invalid api key",
    "invalid_api_key",
    "invalid x-api-key",
    "authentication",
    "unauthorized",
    "permission denied",
    "forbidden",
    "401",
    "403",
]

CONFIG_PATTERNS: list[str] = [
    "invalid model",
    "model not found",
    "missing required",
    "no api key",
    "not configured",
]

VALIDATION_PATTERNS: list[str] = [
    "malformed",
    "invalid json",
    "invalid response",
    "parse error",
    "expected a json array",
]

TRANSIENT_PATTERNS: list[str] = [
    "timeout",
    "timed out",
    "connection",
    "network",
    "overloaded",
    "service unavailable",
    "internal server error",
    "bad gateway",
    "500",
    "502",
    "503",
    "504",
    "529",
]

# Ordered list for classification priority: more specific patterns first
_PATTERN_REGISTRY: list[tuple[str, list[str], bool]] = [
    (ERROR_TYPE_AUTH, AUTH_PATTERNS, False),
    (ERROR_TYPE_CONFIG, CONFIG_PATTERNS, False),
    (ERROR_TYPE_QUOTA, QUOTA_PATTERNS, True),
    (ERROR_TYPE_RATE_LIMIT, RATE_LIMIT_PATTERNS, True),
    (ERROR_TYPE_VALIDATION, VALIDATION_PATTERNS, True),
    (ERROR_TYPE_TRANSIENT, TRANSIENT_PATTERNS, True),
]

# Base delay (seconds) of the exponential backoff per retryable type
_BASE_DELAY = {
    ERROR_TYPE_RATE_LIMIT: 4.0,
    ERROR_TYPE_QUOTA: 8.0,
    ERROR_TYPE_TRANSIENT: 1.0,
}
_VALIDATION_DELAY = 0.5


@dataclass
class ClassifiedError:
    """A classified reasoning-service error with retry metadata.

    Attributes:
        error_type: One of rate_limit, quota, auth, config, validation,
                    transient, permanent.
        retryable:  Whether this error type should be retried.
        original:   The original exception instance.
        context:    Additional context about the error (e.g. HTTP status).
        provider:   The provider that raised the error.
    """

    error_type: str
    retryable: bool
    original: Exception
    context: dict[str, Any] = field(default_factory=dict)
    provider: str = ""

    def __str__(self) -> str:
        retry_label = "retryable" if self.retryable else "non-retryable"
        return (
            f"ClassifiedError(type={self.error_type}, {retry_label}, "
            f"provider={self.provider!r}, original={self.original!r})"
        )


def _classify_status(status_code: int) -> Optional[tuple[str, bool]]:
    if status_code == 429:
        return ERROR_TYPE_RATE_LIMIT, True
    if status_code in (401, 403):
        return ERROR_TYPE_AUTH, False
    if status_code == 402:
        return ERROR_TYPE_QUOTA, True
    if status_code in (408, 409) or status_code >= 500:
        return ERROR_TYPE_TRANSIENT, True
    if status_code in (400, 404, 422):
        return ERROR_TYPE_CONFIG, False
    return None


def classify_llm_error(error: Exception, provider: str = "") -> ClassifiedError:
    """Classify a reasoning-service error.

    Precedence: our own exception types, then the HTTP status code carried
    by SDK exceptions, then message patterns. Anything unrecognized is
    ``permanent`` (not retryable).
    """
    context: dict[str, Any] = {"error_class": type(error).__name__}

    def _result(error_type: str, retryable: bool) -> ClassifiedError:
        return ClassifiedError(
            error_type=error_type,
            retryable=retryable,
            original=error,
            context=context,
            provider=provider,
        )

    if isinstance(error, ValidationError):
        return _result(ERROR_TYPE_VALIDATION, True)
    if isinstance(error, ConfigurationError):
        return _result(ERROR_TYPE_CONFIG, False)
    if isinstance(error, TimeoutError):
        return _result(ERROR_TYPE_TRANSIENT, True)

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        context["status_code"] = status_code
        by_status = _classify_status(status_code)
        if by_status:
            return _result(*by_status)

    combined = f"{type(error).__name__.lower()} {str(error).lower()}"
    for error_type, patterns, retryable in _PATTERN_REGISTRY:
        if any(pattern in combined for pattern in patterns):
            return _result(error_type, retryable)

    if isinstance(error, ConnectionError):
        return _result(ERROR_TYPE_TRANSIENT, True)

    return _result(ERROR_TYPE_PERMANENT, False)


def get_retry_delay(
    classified: ClassifiedError, attempt: int, max_wait: float = DEFAULT_MAX_WAIT
) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at ``max_wait``."""
    if not classified.retryable:
        return 0.0
    if classified.error_type == ERROR_TYPE_VALIDATION:
        return min(_VALIDATION_DELAY, max_wait)
    base = _BASE_DELAY.get(classified.error_type, 1.0)
    delay = base * (2 ** max(attempt - 1, 0)) + random.uniform(0, base / 2)  # noqa: S311
    return min(delay, max_wait)


def is_retryable_error(error: Exception, provider: str = "") -> bool:
    return classify_llm_error(error, provider).retryable


# ---------------------------------------------------------------------------
# Tenacity integration helpers
# ---------------------------------------------------------------------------


def classified_retry_predicate(provider: str = "") -> Callable[[BaseException], bool]:
    """Return a predicate suitable for tenacity's ``retry_if_exception``."""

    def _predicate(error: BaseException) -> bool:
        if not isinstance(error, Exception):
            return False
        return is_retryable_error(error, provider)

    return _predicate


def classified_wait(provider: str = "", max_wait: float = DEFAULT_MAX_WAIT) -> Callable:
    """Return a wait function suitable for tenacity's ``wait`` parameter."""

    def _wait(retry_state: Any) -> float:
        exc = retry_state.outcome.exception()
        if exc is None:
            return 0.0
        classified = classify_llm_error(exc, provider)
        return get_retry_delay(classified, retry_state.attempt_number, max_wait)

    return _wait


__all__ = [
    "ClassifiedError",
    "DEFAULT_MAX_WAIT",
    "classify_llm_error",
    "classified_retry_predicate",
    "classified_wait",
    "get_retry_delay",
    "is_retryable_error",
    "ERROR_TYPE_AUTH",
    "ERROR_TYPE_CONFIG",
    "ERROR_TYPE_PERMANENT",
    "ERROR_TYPE_QUOTA",
    "ERROR_TYPE_RATE_LIMIT",
    "ERROR_TYPE_TRANSIENT",
    "ERROR_TYPE_VALIDATION",
]
