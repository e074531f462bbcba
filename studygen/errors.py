# ============================================================
# Error taxonomy for the generation pipeline
# ------------------------------------------------------------
# Transport and payload code raise the typed GenerationError
# subclasses below. RecoveryService classifies every failure
# into an immutable ErrorDetails and decides retry / fallback /
# fail-fast. Callers above the orchestrators only ever see a
# PipelineFailure whose message is safe to show to end users.
# ============================================================

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    API_KEY_MISSING = "API_KEY_MISSING"
    API_KEY_INVALID = "API_KEY_INVALID"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    API_NETWORK_ERROR = "API_NETWORK_ERROR"
    API_TIMEOUT = "API_TIMEOUT"
    API_UPSTREAM_ERROR = "API_UPSTREAM_ERROR"
    API_PARSE_ERROR = "API_PARSE_ERROR"
    API_MALFORMED_RESPONSE = "API_MALFORMED_RESPONSE"
    PAYLOAD_INVALID = "PAYLOAD_INVALID"
    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    TOKEN_LIMIT_EXCEEDED = "TOKEN_LIMIT_EXCEEDED"
    INSUFFICIENT_CONTENT = "INSUFFICIENT_CONTENT"
    STORAGE_ERROR = "STORAGE_ERROR"
    GENERATION_FAILED = "GENERATION_FAILED"


# Recoverable codes that a second identical attempt cannot fix.
_NO_RETRY = {
    ErrorCode.CONTENT_TOO_LARGE,
    ErrorCode.TOKEN_LIMIT_EXCEEDED,
    ErrorCode.STORAGE_ERROR,
}

_RETRY_DELAYS_S = {
    ErrorCode.API_RATE_LIMIT: 5.0,
    ErrorCode.API_NETWORK_ERROR: 2.0,
    ErrorCode.API_TIMEOUT: 2.0,
}
DEFAULT_RETRY_DELAY_S = 1.0


@dataclass(frozen=True)
class ErrorDetails:
    """One classified failure. Created once, never mutated."""
    code: ErrorCode
    message: str
    context: str
    recoverable: bool
    user_message: str

    @property
    def retryable(self) -> bool:
        return self.recoverable and self.code not in _NO_RETRY


class GenerationError(Exception):
    """Base class for typed pipeline failures."""
    code: ErrorCode = ErrorCode.GENERATION_FAILED
    recoverable: bool = True
    user_message: str = (
        "An unexpected error occurred while generating content. "
        "Please try again or contact support if the issue persists."
    )

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ApiKeyMissingError(GenerationError):
    code = ErrorCode.API_KEY_MISSING
    recoverable = False
    user_message = "OpenAI API key is not configured. Please set your API key in settings."


class ApiKeyInvalidError(GenerationError):
    code = ErrorCode.API_KEY_INVALID
    recoverable = False
    user_message = "API key is invalid or expired. Please check your OpenAI API key in settings."


class RateLimitedError(GenerationError):
    code = ErrorCode.API_RATE_LIMIT
    user_message = "API rate limit exceeded. Please wait a moment and try again."


class QuotaExceededError(GenerationError):
    code = ErrorCode.API_QUOTA_EXCEEDED
    recoverable = False
    user_message = "OpenAI API quota exceeded. Please check your OpenAI account billing."


class NetworkError(GenerationError):
    code = ErrorCode.API_NETWORK_ERROR
    user_message = "Network connection issue. Please check your internet connection and try again."


class ApiTimeoutError(GenerationError):
    code = ErrorCode.API_TIMEOUT
    user_message = "The AI service took too long to respond. Please try again."


class UpstreamError(GenerationError):
    code = ErrorCode.API_UPSTREAM_ERROR
    user_message = "The AI service is temporarily unavailable. Please try again shortly."


class InvalidRequestError(GenerationError):
    code = ErrorCode.PAYLOAD_INVALID
    recoverable = False
    user_message = "The generation request was rejected as invalid. Please adjust the input and try again."


class ResponseParseError(GenerationError):
    code = ErrorCode.API_PARSE_ERROR
    user_message = "Received invalid response from AI service. Please try again."


class MalformedResponseError(ResponseParseError):
    code = ErrorCode.API_MALFORMED_RESPONSE


class ContentTooLargeError(GenerationError):
    code = ErrorCode.CONTENT_TOO_LARGE
    user_message = "Content is too large. Please reduce the file size or text length and try again."


class TokenLimitExceededError(ContentTooLargeError):
    code = ErrorCode.TOKEN_LIMIT_EXCEEDED


class InsufficientSourceContentError(GenerationError):
    code = ErrorCode.INSUFFICIENT_CONTENT
    recoverable = False
    user_message = (
        "Not enough content to generate the requested items. "
        "Please upload files with more substantial content."
    )


class StorageError(GenerationError):
    code = ErrorCode.STORAGE_ERROR
    user_message = "Local storage is full or unavailable. Recovery data could not be saved."


class GenerationFailedError(GenerationError):
    code = ErrorCode.GENERATION_FAILED


class PipelineFailure(Exception):
    """Final, user-facing failure raised by the generation orchestrators."""

    def __init__(self, details: ErrorDetails):
        super().__init__(details.user_message)
        self.details = details


def _details(code: ErrorCode, message: str, context: str, recoverable: bool, user_message: str) -> ErrorDetails:
    return ErrorDetails(
        code=code,
        message=message,
        context=context,
        recoverable=recoverable,
        user_message=user_message,
    )


def _from_class(cls: type, message: str, context: str) -> ErrorDetails:
    return _details(cls.code, message, context, cls.recoverable, cls.user_message)


def classify_error(error: BaseException, context: str = "Unknown") -> ErrorDetails:
    """Map any exception onto the taxonomy."""
    if isinstance(error, PipelineFailure):
        return error.details

    message = str(error) or error.__class__.__name__

    if isinstance(error, GenerationError):
        return _details(error.code, message, context, error.recoverable, error.user_message)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return _from_class(ApiTimeoutError, message, context)
    if isinstance(error, json.JSONDecodeError):
        return _from_class(ResponseParseError, message, context)
    if isinstance(error, (ConnectionError, OSError)):
        return _from_class(NetworkError, message, context)

    lowered = message.lower()
    if "401" in lowered or "unauthorized" in lowered:
        return _from_class(ApiKeyInvalidError, message, context)
    if "429" in lowered or "rate limit" in lowered:
        return _from_class(RateLimitedError, message, context)
    if "quota" in lowered or "billing" in lowered:
        return _from_class(QuotaExceededError, message, context)
    if "timeout" in lowered or "timed out" in lowered:
        return _from_class(ApiTimeoutError, message, context)
    if "network" in lowered or "connection" in lowered:
        return _from_class(NetworkError, message, context)
    if "word limit" in lowered or "token limit" in lowered:
        return _from_class(TokenLimitExceededError, message, context)
    if "insufficient content" in lowered:
        return _from_class(InsufficientSourceContentError, message, context)
    if "json" in lowered:
        return _from_class(ResponseParseError, message, context)

    return _details(
        ErrorCode.GENERATION_FAILED,
        message,
        context,
        True,
        f"An unexpected error occurred: {message}",
    )


def retry_delay(details: ErrorDetails) -> float:
    """Seconds to wait before the next attempt."""
    return _RETRY_DELAYS_S.get(details.code, DEFAULT_RETRY_DELAY_S)
