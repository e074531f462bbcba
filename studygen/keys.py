from __future__ import annotations

import logging
import re
from typing import Optional

from .storage import KeyValueStore

logger = logging.getLogger(__name__)

API_KEY_STORAGE_KEY = "openai_api_key"
API_KEY_PREFIX = "sk-"
API_KEY_MIN_LENGTH = 20

_WS = re.compile(r"\s")


def validate_api_key_format(key: Optional[str]) -> Optional[str]:
    """Return a reason the key is unusable, or None if the format looks right."""
    if not key:
        return "API key is empty"
    if _WS.search(key):
        return "API key contains whitespace"
    if not key.startswith(API_KEY_PREFIX):
        return f"API key must start with '{API_KEY_PREFIX}'"
    if len(key) < API_KEY_MIN_LENGTH:
        return f"API key is too short (minimum {API_KEY_MIN_LENGTH} characters)"
    return None


class ApiKeyManager:
    """Reads and writes the provider credential in an injected store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def has_key(self) -> bool:
        return bool(self.store.get(API_KEY_STORAGE_KEY))

    def get(self) -> str:
        key = self.store.get(API_KEY_STORAGE_KEY)
        if not key:
            logger.warning("No OpenAI API key found in store. Please set it in the settings.")
            return ""
        return key

    def set(self, key: str) -> None:
        self.store.set(API_KEY_STORAGE_KEY, key.strip())

    def clear(self) -> None:
        self.store.remove(API_KEY_STORAGE_KEY)
