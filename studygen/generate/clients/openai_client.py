# Async client for the OpenAI Chat Completions API.
# One attempt per call: retries and backoff belong to RecoveryService.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from ...errors import (
    ApiKeyInvalidError,
    ApiKeyMissingError,
    ApiTimeoutError,
    InvalidRequestError,
    MalformedResponseError,
    NetworkError,
    QuotaExceededError,
    RateLimitedError,
    UpstreamError,
)
from ...keys import ApiKeyManager, validate_api_key_format
from ..payload import validate_complete_payload
from ..types import Payload

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("insufficient_quota", "quota", "billing")


def _status_error(e: openai.APIStatusError) -> Exception:
    status = e.status_code
    detail = getattr(e, "message", None) or str(e)
    if status == 400:
        return InvalidRequestError(f"OpenAI API request failed: 400 - invalid request. {detail}")
    if status == 401:
        return ApiKeyInvalidError(f"OpenAI API request failed: 401 - bad API key. {detail}")
    if status == 403:
        return ApiKeyInvalidError(f"OpenAI API request failed: 403 - forbidden. {detail}")
    if status == 429:
        body = f"{getattr(e, 'code', '') or ''} {detail} {e.body or ''}".lower()
        if any(m in body for m in _QUOTA_MARKERS):
            return QuotaExceededError(f"OpenAI API request failed: 429 - quota exceeded. {detail}")
        return RateLimitedError(f"OpenAI API request failed: 429 - rate limited. {detail}")
    if status >= 500:
        return UpstreamError(f"OpenAI API request failed: {status} - upstream failure. {detail}")
    return InvalidRequestError(f"OpenAI API request failed: {status} - request rejected. {detail}")


def _as_dict(resp: Any) -> Dict[str, Any]:
    if hasattr(resp, "model_dump"):
        return resp.model_dump()
    if isinstance(resp, dict):
        return resp
    raise MalformedResponseError(f"Unexpected response type: {type(resp).__name__}")


def extract_content(resp: Any) -> str:
    """Pull choices[0].message.content out of a completion, checking every step."""
    data = _as_dict(resp)
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise MalformedResponseError("Invalid response format from OpenAI API: no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict) or "content" not in message:
        raise MalformedResponseError("Invalid response format from OpenAI API: no message")
    content = message["content"]
    if content is None:
        raise MalformedResponseError("No content in OpenAI API response")
    if not isinstance(content, str):
        raise MalformedResponseError(f"Non-text content in OpenAI API response: {type(content).__name__}")
    return content


class OpenAIClient:
    def __init__(
        self,
        key_manager: ApiKeyManager,
        *,
        base_url: Optional[str] = None,
        timeout_s: float = 60.0,
        client: Any = None,
    ):
        self.key_manager = key_manager
        self.base_url = base_url
        self.timeout_s = timeout_s
        self._client = client
        self._client_key: Optional[str] = None

    def _sdk(self, api_key: str) -> Any:
        if self._client is not None and (self._client_key is None or self._client_key == api_key):
            return self._client
        self._client = AsyncOpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)
        self._client_key = api_key
        return self._client

    def _require_key(self) -> str:
        key = self.key_manager.get()
        if not key:
            raise ApiKeyMissingError("OpenAI API key not configured")
        reason = validate_api_key_format(key)
        if reason:
            raise ApiKeyInvalidError(f"Invalid API key format: {reason}")
        return key

    async def call(self, payload: Payload, context: str = "API Call") -> str:
        key = self._require_key()

        report = validate_complete_payload(payload)
        if not report.is_valid:
            logger.error("%s - Final validation failed: %s", context, report.errors)
            raise InvalidRequestError(f"Invalid payload: {', '.join(report.errors)}")
        if report.warnings:
            logger.warning("%s - Payload warnings: %s", context, report.warnings)

        logger.info(
            "%s - Sending request: model=%s messages=%d max_tokens=%d temperature=%s response_format=%s",
            context,
            payload.model,
            len(payload.messages),
            payload.max_tokens,
            payload.temperature,
            bool(payload.response_format),
        )

        sdk = self._sdk(key)
        try:
            resp = await asyncio.wait_for(
                sdk.chat.completions.create(**payload.to_request()),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ApiTimeoutError(f"{context} timed out after {self.timeout_s:g}s") from e
        except openai.APITimeoutError as e:
            raise ApiTimeoutError(f"{context} timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise NetworkError(f"{context} network error: {e}") from e
        except openai.APIStatusError as e:
            err = _status_error(e)
            logger.error("%s - API error: status=%s type=%s", context, e.status_code, type(err).__name__)
            raise err from e

        content = extract_content(resp)
        data = _as_dict(resp)
        logger.info(
            "%s - Success: length=%d finish_reason=%s usage=%s",
            context,
            len(content),
            data["choices"][0].get("finish_reason"),
            data.get("usage"),
        )
        return content
