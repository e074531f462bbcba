# =============================================================
# sanitize.py
# -------------------------------------------------------------
# Cleans raw user prompts and extracted file text before they
# reach a model payload or the UI:
# - Strip control characters (file text keeps newlines/tabs)
# - Remove script/style/iframe-like markup and javascript:/data: URIs
# - Collapse whitespace, cap prompt length with a visible marker
# - Clamp numbers without ever raising
# =============================================================

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 5000
TRUNCATION_MARKER = "...[truncated]"
MAX_BASE64_IMAGE_CHARS = 14_000_000  # ~10MB decoded

DIFFICULTIES = ("easy", "medium", "hard")
DEFAULT_DIFFICULTY = "medium"

# -------- regexes
_CTRL = re.compile(r"[\u0000-\u0008\u000b\u000c\u000e-\u001f\u007f]")  # keep \n and \t
_WS = re.compile(r"\s+")
_SCRIPT_BLOCK = re.compile(r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_DANGEROUS_TAG = re.compile(r"<\s*/?\s*(?:script|style|iframe|object|embed|link|meta)\b[^>]*>", re.IGNORECASE)
_JS_URI = re.compile(r"\b(?:javascript|vbscript)\s*:\S*", re.IGNORECASE)
_DATA_URI = re.compile(r"\bdata:[a-z]+/[\w.+-]+[;,]\S*", re.IGNORECASE)
_MULTI_NL = re.compile(r"\n{4,}")
_LONG_BLANK_RUN = re.compile(r"[ \t]{10,}")
_TRAILING_WS = re.compile(r"[ \t]+\n")
_DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9+.-]*;base64,")
_DATA_URL_MIME = re.compile(r"^data:(image/[a-zA-Z0-9+.-]+);base64,")
_BASE64 = re.compile(r"^[A-Za-z0-9+/]+=*$")
_LANGUAGE = re.compile(r"^[a-z]{2,3}(?:-[a-z0-9]{2,4})?$", re.IGNORECASE)


@dataclass(frozen=True)
class SanitizedNumber:
    value: float
    was_clamped: bool = False
    was_invalid: bool = False

    def __int__(self) -> int:
        return int(self.value)


def remove_dangerous_content(text: str) -> str:
    """Strip executable markup and script URIs, repeating until nothing changes."""
    if not text:
        return ""
    prev = None
    while prev != text:
        prev = text
        text = _SCRIPT_BLOCK.sub("", text)
        text = _DANGEROUS_TAG.sub("", text)
        text = _JS_URI.sub("", text)
        text = _DATA_URI.sub("", text)
    return text


def sanitize_text(value: Any, *, required: bool = True, max_length: int = MAX_PROMPT_CHARS) -> str:
    """
    Clean a short, single-line prompt.

    Control characters are dropped and every whitespace run (newlines
    included) becomes one space. Text longer than ``max_length`` is cut
    and TRUNCATION_MARKER appended. Applying it twice gives the same
    result as applying it once.

    Raises ValueError when ``required`` and nothing is left.
    """
    if value is None or not isinstance(value, str):
        if required:
            raise ValueError("Prompt must be a non-empty string")
        return ""

    s = unicodedata.normalize("NFKC", value)
    s = _CTRL.sub("", s)
    s = remove_dangerous_content(s)
    s = _WS.sub(" ", s).strip()

    if not s:
        if required:
            raise ValueError("Prompt cannot be empty after sanitization")
        return ""

    if len(s) > max_length:
        logger.warning("Prompt truncated from %d to %d chars", len(s), max_length)
        s = s[:max_length] + TRUNCATION_MARKER
    return s


def sanitize_file_content(text: Any, max_length: int | None = None) -> str:
    """Clean extracted file text, preserving line structure."""
    if not text or not isinstance(text, str):
        return ""

    s = unicodedata.normalize("NFKC", text)
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = _CTRL.sub("", s)
    s = remove_dangerous_content(s)
    s = _LONG_BLANK_RUN.sub(" " * 8, s)
    s = _TRAILING_WS.sub("\n", s)
    s = _MULTI_NL.sub("\n\n\n", s)
    s = s.strip()

    if max_length is not None and len(s) > max_length:
        logger.warning("File content truncated from %d to %d chars", len(s), max_length)
        s = s[:max_length] + TRUNCATION_MARKER
    return s


def sanitize_number(value: Any, minimum: float, maximum: float, default: float) -> SanitizedNumber:
    """
    Clamp ``value`` into [minimum, maximum].

    Never raises: unparseable input yields ``default`` with ``was_invalid``
    set, so callers can tell a replaced value from a supplied one.
    """
    if isinstance(value, str):
        try:
            value = int(value.strip(), 10)
        except ValueError:
            logger.warning("Invalid number: %r, using default: %s", value, default)
            return SanitizedNumber(default, was_invalid=True)

    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        logger.warning("Invalid number: %r, using default: %s", value, default)
        return SanitizedNumber(default, was_invalid=True)

    if value < minimum:
        logger.warning("Number too small: %s, using minimum: %s", value, minimum)
        return SanitizedNumber(minimum, was_clamped=True)
    if value > maximum:
        logger.warning("Number too large: %s, using maximum: %s", value, maximum)
        return SanitizedNumber(maximum, was_clamped=True)
    return SanitizedNumber(value)


def sanitize_difficulty(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in DIFFICULTIES:
        return value.strip().lower()
    logger.warning("Invalid difficulty: %r, using default: %s", value, DEFAULT_DIFFICULTY)
    return DEFAULT_DIFFICULTY


def sanitize_language(value: Any, default: str = "en") -> str:
    if isinstance(value, str) and _LANGUAGE.match(value.strip()):
        return value.strip().lower()
    return default


def sanitize_base64_image(data: Any) -> str:
    """Return bare base64 image data, without any data-URL prefix."""
    if not data or not isinstance(data, str):
        raise ValueError("Base64 image data is required")

    clean = _DATA_URL_PREFIX.sub("", data.strip())
    clean = _WS.sub("", clean)
    if not clean:
        raise ValueError("Empty base64 image data")
    if not _BASE64.match(clean):
        raise ValueError("Invalid base64 image format")
    if len(clean) > MAX_BASE64_IMAGE_CHARS:
        raise ValueError("Image too large (maximum 10MB)")
    return clean


def image_mime_type(data: Any, default: str = "image/jpeg") -> str:
    """MIME type named by a data-URL prefix, or ``default`` for bare base64."""
    m = _DATA_URL_MIME.match(data.strip()) if isinstance(data, str) else None
    return m.group(1).lower() if m else default
