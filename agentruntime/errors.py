"""LLM/API error taxonomy with recovery strategies."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

import anthropic
import httpx


class AgentErrorKind(str, Enum):
    NETWORK_UNAVAILABLE = "network_unavailable"
    CONNECTION_FAILED = "connection_failed"
    CONNECTION_LOST = "connection_lost"
    TIMEOUT = "timeout"
    API_KEY_MISSING = "api_key_missing"
    API_KEY_INVALID = "api_key_invalid"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVER_ERROR = "server_error"
    SERVER_OVERLOADED = "server_overloaded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_RESPONSE = "invalid_response"
    EMPTY_RESPONSE = "empty_response"
    DECODING_FAILED = "decoding_failed"
    MODEL_NOT_FOUND = "model_not_found"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    CANCELLED = "cancelled"


class RecoveryAction(str, Enum):
    FAIL = "fail"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    REDUCE_CONTEXT = "reduce_context"
    USER_ACTION_REQUIRED = "user_action_required"


@dataclass(frozen=True)
class RecoveryStrategy:
    action: RecoveryAction
    initial_delay: float = 0.0
    max_retries: int = 0
    hint: str = ""


_BACKOFF = {
    AgentErrorKind.NETWORK_UNAVAILABLE: (2.0, 3),
    AgentErrorKind.CONNECTION_FAILED: (2.0, 3),
    AgentErrorKind.CONNECTION_LOST: (2.0, 3),
    AgentErrorKind.TIMEOUT: (1.0, 2),
    AgentErrorKind.SERVER_OVERLOADED: (10.0, 3),
    AgentErrorKind.SERVICE_UNAVAILABLE: (10.0, 3),
    AgentErrorKind.INVALID_RESPONSE: (1.0, 2),
    AgentErrorKind.DECODING_FAILED: (1.0, 2),
    AgentErrorKind.EMPTY_RESPONSE: (0.5, 3),
}

_USER_ACTION = {
    AgentErrorKind.API_KEY_MISSING: "Configure an API key for the provider",
    AgentErrorKind.API_KEY_INVALID: "Configure a valid API key for the provider",
    AgentErrorKind.AUTHENTICATION_FAILED: "Check the provider API key",
    AgentErrorKind.QUOTA_EXCEEDED: "Check usage limits with the provider",
    AgentErrorKind.MODEL_NOT_FOUND: "Select a different model",
}

_TRANSIENT = frozenset({
    AgentErrorKind.NETWORK_UNAVAILABLE,
    AgentErrorKind.CONNECTION_FAILED,
    AgentErrorKind.CONNECTION_LOST,
    AgentErrorKind.TIMEOUT,
    AgentErrorKind.RATE_LIMITED,
    AgentErrorKind.SERVER_OVERLOADED,
    AgentErrorKind.SERVICE_UNAVAILABLE,
    AgentErrorKind.EMPTY_RESPONSE,
})


class AgentAPIError(Exception):
    """A classified failure talking to the LLM collaborator."""

    def __init__(
        self,
        kind: AgentErrorKind,
        message: str = "",
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(self.message)

    @property
    def is_transient(self) -> bool:
        if self.kind == AgentErrorKind.SERVER_ERROR:
            return self.status_code is not None and 500 <= self.status_code < 600
        return self.kind in _TRANSIENT

    @property
    def recovery_strategy(self) -> RecoveryStrategy:
        kind = self.kind
        if kind in _BACKOFF:
            delay, retries = _BACKOFF[kind]
            return RecoveryStrategy(RecoveryAction.RETRY_WITH_BACKOFF, delay, retries)
        if kind == AgentErrorKind.RATE_LIMITED:
            return RecoveryStrategy(
                RecoveryAction.RETRY_WITH_BACKOFF, self.retry_after or 60.0, 1
            )
        if kind == AgentErrorKind.SERVER_ERROR and self.is_transient:
            return RecoveryStrategy(RecoveryAction.RETRY_WITH_BACKOFF, 5.0, 2)
        if kind == AgentErrorKind.CONTEXT_LENGTH_EXCEEDED:
            return RecoveryStrategy(RecoveryAction.REDUCE_CONTEXT)
        if kind in _USER_ACTION:
            return RecoveryStrategy(RecoveryAction.USER_ACTION_REQUIRED, hint=_USER_ACTION[kind])
        return RecoveryStrategy(RecoveryAction.FAIL)

    @property
    def is_fatal(self) -> bool:
        """True when retrying within the run cannot help."""
        return self.recovery_strategy.action in (
            RecoveryAction.FAIL,
            RecoveryAction.USER_ACTION_REQUIRED,
        )

    def to_json(self) -> str:
        """Error payload in the shape one-shot JSON callers already tolerate."""
        return json.dumps({"error": self.message})


def _from_status(status: int, message: str, retry_after: float | None = None) -> AgentAPIError:
    lowered = message.lower()
    if status == 401:
        return AgentAPIError(AgentErrorKind.API_KEY_INVALID, message, status)
    if status == 403:
        return AgentAPIError(AgentErrorKind.AUTHENTICATION_FAILED, message, status)
    if status == 404:
        return AgentAPIError(AgentErrorKind.MODEL_NOT_FOUND, message, status)
    if status == 429:
        if "quota" in lowered or "billing" in lowered:
            return AgentAPIError(AgentErrorKind.QUOTA_EXCEEDED, message, status)
        return AgentAPIError(AgentErrorKind.RATE_LIMITED, message, status, retry_after)
    if status in (400, 413) and ("context" in lowered or "too long" in lowered or "max_tokens" in lowered):
        return AgentAPIError(AgentErrorKind.CONTEXT_LENGTH_EXCEEDED, message, status)
    if status == 529:
        return AgentAPIError(AgentErrorKind.SERVER_OVERLOADED, message, status)
    if status == 503:
        return AgentAPIError(AgentErrorKind.SERVICE_UNAVAILABLE, message, status)
    return AgentAPIError(AgentErrorKind.SERVER_ERROR, message, status)


def _retry_after(headers) -> float | None:
    if headers is None:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def classify_error(exc: BaseException) -> AgentAPIError:
    """Map an httpx/anthropic exception onto the taxonomy."""
    if isinstance(exc, AgentAPIError):
        return exc
    # APITimeoutError subclasses APIConnectionError, so check it first
    if isinstance(exc, anthropic.APITimeoutError):
        return AgentAPIError(AgentErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, anthropic.APIConnectionError):
        return AgentAPIError(AgentErrorKind.CONNECTION_FAILED, str(exc))
    if isinstance(exc, anthropic.APIStatusError):
        return _from_status(exc.status_code, str(exc), _retry_after(exc.response.headers))
    if isinstance(exc, httpx.TimeoutException):
        return AgentAPIError(AgentErrorKind.TIMEOUT, str(exc) or "request timed out")
    if isinstance(exc, httpx.ConnectError):
        return AgentAPIError(AgentErrorKind.CONNECTION_FAILED, str(exc) or "connection failed")
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)):
        return AgentAPIError(AgentErrorKind.CONNECTION_LOST, str(exc) or "connection lost")
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return _from_status(response.status_code, response.text[:500], _retry_after(response.headers))
    if isinstance(exc, (json.JSONDecodeError, KeyError, IndexError)):
        return AgentAPIError(AgentErrorKind.DECODING_FAILED, str(exc))
    return AgentAPIError(AgentErrorKind.INVALID_RESPONSE, str(exc))
