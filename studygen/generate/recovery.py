# =============================================================
# recovery.py
# -------------------------------------------------------------
# Bounded retry around one generation operation:
#   Attempting(1..n) -> Success | Exhausted -> Fallback -> Success | Failure
# - classify every failure, stop at once when it is not retryable
# - error-specific backoff between attempts (never after the last)
# - snapshot the outbound payload before the first attempt,
#   delete it on success, keep it on exhaustion (TTL 1h)
# Storage problems are logged and never abort the operation.
# =============================================================

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from ..errors import ErrorDetails, PipelineFailure, StorageError, classify_error, retry_delay
from ..keys import ApiKeyManager
from ..storage import KeyValueStore
from .types import RecoveryRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], Union[Awaitable[T], T]]

RECORD_PREFIX = "recovery:"
HEALTH_CHECK_KEY = "health_check"


def record_key(context: str) -> str:
    return f"last_request_{context}"


@dataclass
class HealthReport:
    is_healthy: bool
    issues: List[str] = field(default_factory=list)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RecoveryService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        key_manager: Optional[ApiKeyManager] = None,
        max_attempts: int = 3,
        ttl_s: float = 3600,
        max_records: int = 50,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.key_manager = key_manager
        self.max_attempts = max_attempts
        self.ttl_s = ttl_s
        self.max_records = max_records
        self._sleep = sleep
        self._clock = clock

    # ---------- main entry

    async def execute_with_recovery(
        self,
        operation: Operation,
        context: str,
        fallback: Optional[Operation] = None,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Run ``operation`` with up to ``max_attempts`` tries.

        ``operation`` and ``fallback`` may be plain or async callables. The
        fallback runs once, only when the last failure was recoverable; its
        result is returned as-is. Anything else ends in PipelineFailure
        carrying the last classified error.
        """
        key = record_key(context)
        # store I/O runs off the event loop
        await asyncio.to_thread(self.save_record, key, snapshot, context)

        last: Optional[ErrorDetails] = None
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info("Attempting operation: %s (attempt %d/%d)", context, attempt, self.max_attempts)
                result = await _resolve(operation())
                if attempt > 1:
                    logger.info("Operation recovered successfully: %s", context)
                await asyncio.to_thread(self.clear_record, key)
                return result
            except Exception as e:
                last, last_exc = classify_error(e, context), e
                logger.error("Attempt %d failed for %s: %s (%s)", attempt, context, last.code.value, last.message)

                if not last.retryable:
                    logger.info("Error not retryable, stopping attempts: %s", last.code.value)
                    break
                if attempt < self.max_attempts:
                    delay = retry_delay(last)
                    logger.info("Waiting %.1fs before retry...", delay)
                    await self._sleep(delay)

        if fallback is not None and last is not None and last.recoverable:
            try:
                logger.info("Attempting fallback for: %s", context)
                result = await _resolve(fallback())
                logger.info("Fallback successful for: %s", context)
                return result
            except Exception as e:
                logger.error("Fallback failed for %s: %s", context, e)

        raise PipelineFailure(last) from last_exc

    # ---------- records

    def save_record(self, key: str, snapshot: Optional[Dict[str, Any]], context: str) -> bool:
        record = RecoveryRecord(key=key, payload_snapshot=snapshot, context=context, timestamp=self._clock())
        try:
            self.store.set(RECORD_PREFIX + key, record.to_json())
        except (StorageError, TypeError, ValueError) as e:
            logger.error("Failed to save recovery data for %s: %s", key, e)
            return False
        logger.debug("Recovery data saved: %s", key)

        if self.record_count() > self.max_records:
            self.cleanup_expired()
        return True

    def get_record(self, key: str) -> Optional[RecoveryRecord]:
        try:
            raw = self.store.get(RECORD_PREFIX + key)
        except StorageError as e:
            logger.error("Failed to retrieve recovery data for %s: %s", key, e)
            return None
        if raw is None:
            return None

        try:
            record = RecoveryRecord.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable recovery data for %s: %s", key, e)
            self.clear_record(key)
            return None

        if self._expired(record):
            logger.info("Recovery data expired for: %s", key)
            self.clear_record(key)
            return None
        return record

    def clear_record(self, key: str) -> None:
        try:
            self.store.remove(RECORD_PREFIX + key)
        except StorageError as e:
            logger.error("Failed to clear recovery data for %s: %s", key, e)

    def clear_all(self) -> None:
        for full_key in self._record_keys():
            try:
                self.store.remove(full_key)
            except StorageError as e:
                logger.error("Failed to clear recovery data %s: %s", full_key, e)
        logger.info("All recovery data cleared")

    def record_count(self) -> int:
        return len(self._record_keys())

    def cleanup_expired(self) -> int:
        removed = 0
        for full_key in self._record_keys():
            key = full_key[len(RECORD_PREFIX):]
            try:
                raw = self.store.get(full_key)
                if raw is None:
                    continue
                record = RecoveryRecord.from_json(raw)
            except StorageError as e:
                logger.error("Failed to read recovery data %s: %s", key, e)
                continue
            except (ValueError, KeyError, TypeError):
                self.clear_record(key)
                removed += 1
                continue
            if self._expired(record):
                self.clear_record(key)
                removed += 1
        if removed:
            logger.info("Cleaned up %d old recovery items", removed)
        return removed

    def health_check(self) -> HealthReport:
        issues: List[str] = []

        try:
            self.store.set(HEALTH_CHECK_KEY, json.dumps({"ts": self._clock()}))
            self.store.remove(HEALTH_CHECK_KEY)
        except StorageError as e:
            logger.error("Recovery store not available: %s", e)
            issues.append("Recovery store not available")

        if self.key_manager is not None and not self.key_manager.has_key():
            issues.append("OpenAI API key not configured")

        if self.record_count() > self.max_records:
            issues.append("Excessive recovery data stored")
            self.cleanup_expired()

        return HealthReport(is_healthy=not issues, issues=issues)

    # ---------- internals

    def _expired(self, record: RecoveryRecord) -> bool:
        return self._clock() - record.timestamp > self.ttl_s

    def _record_keys(self) -> List[str]:
        try:
            return self.store.keys(RECORD_PREFIX)
        except StorageError as e:
            logger.error("Failed to list recovery data: %s", e)
            return []
