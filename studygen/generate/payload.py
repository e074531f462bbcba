# =============================================================
# payload.py
# -------------------------------------------------------------
# Builds and validates chat-completions payloads:
#   1) normalize each message (bad ones become placeholders)
#   2) structural validation (model, roles, limits, format)
#   3) token budget against the model ceiling
#   4) backward truncation of user messages when over budget
# An over-budget payload is never returned as valid.
# =============================================================

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Union

from ..errors import InvalidRequestError, TokenLimitExceededError
from .types import ContentPart, FileRefPart, ImagePart, Message, Payload, PayloadResult, TextPart

logger = logging.getLogger(__name__)

ROLES = ("system", "user", "assistant")
SUPPORTED_MODELS = ("gpt-4.1-2025-04-14", "gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo")

MODEL_TOKEN_LIMITS = {
    "gpt-4.1-2025-04-14": 120000,
    "gpt-4o": 120000,
    "gpt-4o-mini": 120000,
    "gpt-3.5-turbo": 15000,
}
DEFAULT_TOKEN_LIMIT = 15000
GPT4_CLASS_LIMIT = 120000

MESSAGE_OVERHEAD_TOKENS = 10
IMAGE_TOKENS = 1000
MAX_TOKENS_WARN = 4000
LONG_MESSAGE_CHARS = 50000

TRUNCATION_MARKER = "...[truncated for length]"
TRUNCATION_FLOOR_CHARS = 100
MIN_SHRINK_FACTOR = 0.7

PLACEHOLDER_INVALID = "Invalid message content"
PLACEHOLDER_EMPTY = "Empty content"
PLACEHOLDER_INVALID_ITEMS = "Invalid content items"

DEFAULT_FILE_NAME = "document"
DEFAULT_FILE_MIME = "application/pdf"

_CTRL = re.compile(r"[\u0000-\u0008\u000b\u000c\u000e-\u001f\u007f]")
_FILE_HEADER = re.compile(r"=== File: (.+?) ===")
_FILE_TYPE = re.compile(r"Type: (.+?)[\n\r]")
_FILE_BASE64 = re.compile(r"base64:([A-Za-z0-9+/=\s]+)")
_MIME = re.compile(r"^[\w.+-]+/[\w.+-]+$")


# ---------- message normalization

def _part_from_dict(item: Dict[str, Any]) -> Optional[ContentPart]:
    kind = item.get("type")
    if kind in ("text", "input_text"):
        text = item.get("text")
        if isinstance(text, str) and text.strip():
            return TextPart(text)
        return None
    if kind == "image_url":
        image = item.get("image_url") or {}
        url = image.get("url") if isinstance(image, dict) else None
        if isinstance(url, str) and url.startswith("data:image/"):
            return ImagePart(url, detail=image.get("detail", "auto"))
        return None
    if kind in ("file", "input_file"):
        file = item.get("file") if isinstance(item.get("file"), dict) else item
        filename, data = file.get("filename"), file.get("file_data")
        if filename and data:
            return FileRefPart(str(filename), str(data))
        return None
    return None


def _valid_part(part: Any) -> Optional[ContentPart]:
    if isinstance(part, TextPart):
        return part if part.text and part.text.strip() else None
    if isinstance(part, ImagePart):
        return part if part.url.startswith("data:image/") else None
    if isinstance(part, FileRefPart):
        return part if part.filename and part.file_data else None
    if isinstance(part, dict):
        return _part_from_dict(part)
    return None


def normalize_message(raw: Union[Message, Dict[str, Any], Any], index: int = 0) -> Message:
    """
    Coerce one message into a valid Message.

    Never raises. Unknown roles become ``user``; empty or unusable content
    is replaced by a placeholder so one bad turn does not sink the batch.
    """
    if isinstance(raw, Message):
        role, content = raw.role, raw.content
    elif isinstance(raw, dict):
        role, content = raw.get("role"), raw.get("content")
    else:
        logger.warning("Invalid message at index %d: %r", index, type(raw).__name__)
        return Message(role="user", content=PLACEHOLDER_INVALID)

    if role not in ROLES:
        logger.warning("Invalid role at index %d: %r", index, role)
        role = "user"

    if not content:
        logger.warning("Empty content at index %d", index)
        return Message(role=role, content=PLACEHOLDER_EMPTY)

    if isinstance(content, str):
        clean = _CTRL.sub("", content.strip())
        if not clean:
            logger.warning("Empty string content at index %d", index)
            return Message(role=role, content=PLACEHOLDER_EMPTY)
        return Message(role=role, content=clean)

    if isinstance(content, (list, tuple)):
        parts = [p for p in (_valid_part(item) for item in content) if p is not None]
        if not parts:
            logger.warning("No valid content items at index %d", index)
            return Message(role=role, content=PLACEHOLDER_INVALID_ITEMS)
        return Message(role=role, content=parts)

    logger.warning("Unexpected content type at index %d: %s", index, type(content).__name__)
    return Message(role=role, content=str(content))


# ---------- structural validation

@dataclass
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _validate_content_items(index: int, items: List[Dict[str, Any]], errors: List[str]) -> None:
    for j, item in enumerate(items):
        kind = item.get("type") if isinstance(item, dict) else None
        if not kind:
            errors.append(f"Message {index}, content item {j} missing type")
            continue
        if kind not in ("text", "image_url", "file"):
            errors.append(f"Message {index}, content item {j} has invalid type: {kind}")
        elif kind == "text" and not isinstance(item.get("text"), str):
            errors.append(f"Message {index}, content item {j} text type missing text field")
        elif kind == "image_url":
            url = (item.get("image_url") or {}).get("url")
            if not url:
                errors.append(f"Message {index}, content item {j} image_url type missing url")
            elif not url.startswith("data:image/"):
                errors.append(f"Message {index}, content item {j} image_url must be base64 data URL")
        elif kind == "file" and not (item.get("file") or {}).get("file_data"):
            errors.append(f"Message {index}, content item {j} file type missing file_data")


def validate_complete_payload(payload: Union[Payload, Dict[str, Any], None]) -> ValidationReport:
    """Structural checks on a payload or its wire dict. Unknown models only warn."""
    report = ValidationReport()
    if payload is None:
        report.errors.append("Payload is missing")
        return report

    body = payload.to_request() if isinstance(payload, Payload) else payload

    model = body.get("model")
    if not model or not isinstance(model, str):
        report.errors.append("Model is required and must be a string")
    elif model not in SUPPORTED_MODELS:
        report.warnings.append(f"Unusual model: {model}")

    messages = body.get("messages")
    if not isinstance(messages, list):
        report.errors.append("Messages array is required")
    elif not messages:
        report.errors.append("Messages array cannot be empty")
    else:
        for i, msg in enumerate(messages):
            if not isinstance(msg, dict):
                report.errors.append(f"Message at index {i} is missing")
                continue
            role = msg.get("role")
            if not role or not isinstance(role, str):
                report.errors.append(f"Message at index {i} missing or invalid role")
            elif role not in ROLES:
                report.errors.append(f"Message at index {i} has invalid role: {role}")

            content = msg.get("content")
            if not content:
                report.errors.append(f"Message at index {i} missing content")
            elif isinstance(content, str):
                if not content.strip():
                    report.errors.append(f"Message at index {i} has empty content")
                if len(content) > LONG_MESSAGE_CHARS:
                    report.warnings.append(f"Message at index {i} has very long content ({len(content)} chars)")
            elif isinstance(content, list):
                _validate_content_items(i, content, report.errors)
            else:
                report.errors.append(f"Message at index {i} content must be string or array")

    max_tokens = body.get("max_tokens")
    if max_tokens is not None:
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 1:
            report.errors.append("max_tokens must be a positive number")
        elif max_tokens > MAX_TOKENS_WARN:
            report.warnings.append(f"max_tokens is very high: {max_tokens}")

    temperature = body.get("temperature")
    if temperature is not None:
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or not 0 <= temperature <= 2:
            report.errors.append("temperature must be a number between 0 and 2")

    response_format = body.get("response_format")
    if response_format and response_format.get("type") != "json_object":
        report.errors.append('response_format.type must be "json_object" if specified')

    return report


# ---------- token budget

@dataclass
class TokenBudget:
    is_valid: bool
    estimated_tokens: int
    model_limit: int
    error: Optional[str] = None


def estimate_tokens(text: str) -> int:
    """Conservative estimate: the larger of chars/4 and words/0.75."""
    if not text:
        return 0
    return math.ceil(max(len(text) / 4, len(text.split()) / 0.75))


def estimate_message_tokens(messages: Iterable[Message]) -> int:
    total = 0
    for m in messages:
        if isinstance(m.content, str):
            total += estimate_tokens(m.content)
        else:
            for part in m.content:
                if isinstance(part, TextPart):
                    total += estimate_tokens(part.text)
                elif isinstance(part, ImagePart):
                    total += IMAGE_TOKENS
                elif isinstance(part, FileRefPart):
                    total += math.ceil(len(part.file_data) / 4)
        total += MESSAGE_OVERHEAD_TOKENS
    return total


def model_token_limit(model: str) -> int:
    if model in MODEL_TOKEN_LIMITS:
        return MODEL_TOKEN_LIMITS[model]
    if model and model.startswith("gpt-4"):
        return GPT4_CLASS_LIMIT
    return DEFAULT_TOKEN_LIMIT


def validate_token_limits(messages: List[Message], model: str, max_tokens: int) -> TokenBudget:
    estimated = estimate_message_tokens(messages)
    limit = model_token_limit(model)
    total = estimated + max_tokens
    if total > limit:
        return TokenBudget(False, estimated, limit, f"Total tokens ({total}) exceeds model limit ({limit})")
    return TokenBudget(True, estimated, limit)


def _shrink(text: str, factor: float) -> Optional[str]:
    body = text[: -len(TRUNCATION_MARKER)] if text.endswith(TRUNCATION_MARKER) else text
    if len(body) <= TRUNCATION_FLOOR_CHARS:
        return None
    new_len = max(TRUNCATION_FLOOR_CHARS, math.floor(len(body) * factor))
    if new_len >= len(body):
        return None
    return body[:new_len] + TRUNCATION_MARKER


def truncate_messages(messages: List[Message], target_tokens: int) -> List[Message]:
    """
    Shrink user messages, newest first, until the estimate fits ``target_tokens``.

    Passes repeat while any message can still shrink; each message keeps at
    least TRUNCATION_FLOOR_CHARS of its text. System messages are never
    touched. Returns new Message objects; the input list is not modified.
    """
    out = [replace(m) for m in messages]
    current = estimate_message_tokens(out)
    logger.info("Truncating messages: current=%d target=%d", current, target_tokens)

    while current > target_tokens:
        progressed = False
        for i in range(len(out) - 1, -1, -1):
            if current <= target_tokens:
                break
            msg = out[i]
            if msg.role != "user":
                continue
            factor = max(MIN_SHRINK_FACTOR, target_tokens / current) if current else MIN_SHRINK_FACTOR

            if isinstance(msg.content, str):
                cut = _shrink(msg.content, factor)
                if cut is None:
                    continue
                before = len(msg.content)
                out[i] = replace(msg, content=cut, truncated=True)
                logger.info("Truncated message %d: %d -> %d chars", i, before, len(cut))
            else:
                parts: List[ContentPart] = []
                changed = False
                for part in msg.content:
                    cut = _shrink(part.text, factor) if isinstance(part, TextPart) else None
                    if cut is not None:
                        parts.append(TextPart(cut))
                        changed = True
                    else:
                        parts.append(part)
                if not changed:
                    continue
                out[i] = replace(msg, content=parts, truncated=True)

            progressed = True
            current = estimate_message_tokens(out)
        if not progressed:
            break
    return out


# ---------- builder

def build_payload(
    model: str,
    messages: List[Any],
    max_tokens: int,
    temperature: float = 0.7,
    response_format: Optional[Dict[str, str]] = None,
) -> PayloadResult:
    """Normalize, validate and budget a request. Never returns an over-budget payload as valid."""
    if not messages:
        logger.error("No messages supplied to payload builder")
        return PayloadResult(is_valid=False, error="No valid messages provided")

    cleaned = [normalize_message(m, i) for i, m in enumerate(messages)]
    candidate = Payload(model, cleaned, max_tokens, temperature, response_format)

    report = validate_complete_payload(candidate)
    if not report.is_valid:
        logger.error("Payload validation failed: %s", report.errors)
        return PayloadResult(
            is_valid=False,
            error=f"Payload validation failed: {', '.join(report.errors)}",
            warnings=report.warnings,
        )
    warnings = list(report.warnings)
    if warnings:
        logger.warning("Payload warnings: %s", warnings)

    budget = validate_token_limits(cleaned, model, max_tokens)
    if budget.is_valid:
        logger.info(
            "Payload ok: model=%s messages=%d est_tokens=%d limit=%d max_tokens=%d",
            model, len(cleaned), budget.estimated_tokens, budget.model_limit, max_tokens,
        )
        return PayloadResult(
            is_valid=True,
            payload=candidate,
            messages=cleaned,
            warnings=warnings,
            estimated_tokens=budget.estimated_tokens,
            model_limit=budget.model_limit,
        )

    logger.warning("Token limit exceeded: %s", budget.error)
    shortened = truncate_messages(cleaned, budget.model_limit - max_tokens)
    retry = validate_token_limits(shortened, model, max_tokens)
    if not retry.is_valid:
        return PayloadResult(
            is_valid=False,
            error=(
                f"Content exceeds model limit. Estimated tokens: {budget.estimated_tokens + max_tokens}, "
                f"Model limit: {budget.model_limit}. Please reduce input size."
            ),
            warnings=warnings,
            over_budget=True,
            estimated_tokens=budget.estimated_tokens,
            model_limit=budget.model_limit,
        )

    warnings.append("Content was truncated to fit model limits")
    return PayloadResult(
        is_valid=True,
        payload=Payload(model, shortened, max_tokens, temperature, response_format),
        messages=shortened,
        warnings=warnings,
        truncated=True,
        estimated_tokens=retry.estimated_tokens,
        model_limit=retry.model_limit,
    )


def require_payload(result: PayloadResult) -> Payload:
    """Unwrap a PayloadResult or raise the matching typed error."""
    if result.is_valid and result.payload is not None:
        return result.payload
    if result.over_budget:
        raise TokenLimitExceededError(result.error)
    raise InvalidRequestError(result.error)


# ---------- input helpers

def merge_prompt_and_source(prompt: str, source: str = "") -> str:
    prompt = _CTRL.sub("", (prompt or "").strip())
    source = _CTRL.sub("", (source or "").strip())
    if not prompt:
        return source or "No prompt provided"
    if not source:
        return prompt
    return f"USER REQUEST: {prompt}\n\nDOCUMENT CONTENT:\n{source}"


def extract_file_ref(text: str) -> Optional[FileRefPart]:
    """
    Pull an uploaded file out of an ``=== File: name ===`` block.

    The block carries a ``Type:`` line and the inline ``base64:`` data.
    Returns None for plain text. The data goes out as a data URL; a Type
    that is not a MIME type falls back to DEFAULT_FILE_MIME.
    """
    if not text or "=== File:" not in text or "base64" not in text:
        return None
    found = _FILE_BASE64.search(text)
    data = re.sub(r"\s+", "", found.group(1)) if found else ""
    if not data:
        return None

    header = _FILE_HEADER.search(text)
    filename = _CTRL.sub("", header.group(1)).strip() if header else ""
    kind = _FILE_TYPE.search(text)
    mime = kind.group(1).strip().lower() if kind else ""
    if not _MIME.match(mime):
        mime = DEFAULT_FILE_MIME
    logger.info("Embedded file detected: name=%s type=%s data_chars=%d", filename or DEFAULT_FILE_NAME, mime, len(data))
    return FileRefPart(filename=filename or DEFAULT_FILE_NAME, file_data=f"data:{mime};base64,{data}")


@dataclass
class WordCount:
    is_valid: bool
    count: int
    error: Optional[str] = None


def validate_word_count(text: str, max_words: int = 2000) -> WordCount:
    if not text or not isinstance(text, str):
        return WordCount(False, 0, "Content is empty or invalid")
    count = len(_CTRL.sub("", text).split())
    if count == 0:
        return WordCount(False, 0, "No valid words found in content")
    if count > max_words:
        return WordCount(
            False,
            count,
            f"Input exceeds {max_words}-word limit (current: {count} words). Please reduce content size.",
        )
    return WordCount(True, count)
