"""
Provider error taxonomy for agent LLM calls, with recovery strategies.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bedrock_service import BedrockError, BedrockToolsNotSupportedError

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    INVALID_RESPONSE = "invalid_response"
    EMPTY_RESPONSE = "empty_response"
    MODEL_NOT_FOUND = "model_not_found"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    TOOLS_NOT_SUPPORTED = "tools_not_supported"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RecoveryStrategy:
    """kind: fail | retry_with_backoff | reduce_context | switch_model | user_action_required"""
    kind: str
    delay: float = 0.0
    max_retries: int = 0
    message: str = ""


FAIL = RecoveryStrategy("fail")
REDUCE_CONTEXT = RecoveryStrategy("reduce_context")


def retry_with_backoff(delay: float, max_retries: int) -> RecoveryStrategy:
    return RecoveryStrategy("retry_with_backoff", delay=delay, max_retries=max_retries)


def user_action_required(message: str) -> RecoveryStrategy:
    return RecoveryStrategy("user_action_required", message=message)


_TRANSIENT = {
    ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER, ErrorKind.EMPTY_RESPONSE,
}

_AUTH_CODES = {
    "ExpiredTokenException", "InvalidSignatureException", "UnrecognizedClientException",
    "AccessDeniedException", "NoCredentials",
}
_RATE_CODES = {"ThrottlingException", "TooManyRequestsException", "ServiceQuotaExceededException"}
_SERVER_CODES = {
    "ModelTimeoutException", "ServiceUnavailableException", "InternalServerException",
    "ModelNotReadyException",
}
_RETRY_AFTER_RE = re.compile(r"retry.{0,10}?(\d+)", re.IGNORECASE)


class AgentAPIError(Exception):
    """A failed LLM call, classified so the engine can decide what to do next."""

    def __init__(self, kind: ErrorKind, message: str, retry_after: Optional[float] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after = retry_after
        self.cause = cause

    @property
    def is_transient(self) -> bool:
        return self.kind in _TRANSIENT

    @property
    def recovery_strategy(self) -> RecoveryStrategy:
        k = self.kind
        if k is ErrorKind.NETWORK:
            return retry_with_backoff(2.0, 3)
        if k is ErrorKind.TIMEOUT:
            return retry_with_backoff(1.0, 2)
        if k is ErrorKind.AUTH:
            return user_action_required("Check your AWS credentials")
        if k is ErrorKind.RATE_LIMITED:
            return retry_with_backoff(self.retry_after or 60.0, 1)
        if k is ErrorKind.SERVER:
            return retry_with_backoff(5.0, 2)
        if k is ErrorKind.INVALID_RESPONSE:
            return retry_with_backoff(1.0, 2)
        if k is ErrorKind.EMPTY_RESPONSE:
            return retry_with_backoff(0.5, 3)
        if k is ErrorKind.MODEL_NOT_FOUND:
            return user_action_required("Select a different model")
        if k is ErrorKind.CONTEXT_LENGTH_EXCEEDED:
            return REDUCE_CONTEXT
        if k is ErrorKind.TOOLS_NOT_SUPPORTED:
            return RecoveryStrategy("switch_model", message="Select a model that supports tool calling")
        return FAIL

    @property
    def user_message(self) -> str:
        if self.kind is ErrorKind.TOOLS_NOT_SUPPORTED:
            return (f"Agent mode is not available with this model. {self.message} "
                    "Please select a model that supports tool calling.")
        return self.message

    @classmethod
    def from_exception(cls, exc: BaseException) -> "AgentAPIError":
        if isinstance(exc, AgentAPIError):
            return exc
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, asyncio.CancelledError):
            return cls(ErrorKind.CANCELLED, "Operation was cancelled", cause=exc)
        if isinstance(exc, BedrockToolsNotSupportedError):
            return cls(ErrorKind.TOOLS_NOT_SUPPORTED, message, cause=exc)
        if isinstance(exc, BedrockError):
            code = exc.code
            if code == "ContextLengthExceeded":
                return cls(ErrorKind.CONTEXT_LENGTH_EXCEEDED, message, cause=exc)
            if code in _AUTH_CODES:
                return cls(ErrorKind.AUTH, message, cause=exc)
            if code in _RATE_CODES:
                match = _RETRY_AFTER_RE.search(message)
                retry_after = float(match.group(1)) if match else None
                return cls(ErrorKind.RATE_LIMITED, message, retry_after=retry_after, cause=exc)
            if code == "ResourceNotFoundException":
                return cls(ErrorKind.MODEL_NOT_FOUND, message, cause=exc)
            if code in _SERVER_CODES:
                return cls(ErrorKind.SERVER, message, cause=exc)
            if code == "InvalidResponse":
                return cls(ErrorKind.INVALID_RESPONSE, message, cause=exc)
            return cls(ErrorKind.SERVER, message, cause=exc)
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
            return cls(ErrorKind.TIMEOUT, "Request timed out during model call", cause=exc)
        if isinstance(exc, (ConnectionError, OSError)):
            return cls(ErrorKind.NETWORK, f"Network error: {message}", cause=exc)
        if isinstance(exc, ValueError):
            return cls(ErrorKind.INVALID_RESPONSE, f"Invalid response from model: {message}", cause=exc)
        return cls(ErrorKind.SERVER, message, cause=exc)
