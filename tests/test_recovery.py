import asyncio
import threading

import pytest

from studygen.errors import (
    ApiKeyInvalidError,
    ApiTimeoutError,
    ContentTooLargeError,
    ErrorCode,
    NetworkError,
    PipelineFailure,
    RateLimitedError,
    StorageError,
    UpstreamError,
)
from studygen.generate.recovery import RECORD_PREFIX, RecoveryService, record_key
from studygen.keys import ApiKeyManager
from studygen.storage import MemoryStore


class Counter:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        item = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class BrokenStore(MemoryStore):
    def set(self, key, value):
        raise StorageError("disk full")


class ThreadTrackingStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.threads = []

    def set(self, key, value):
        self.threads.append(threading.get_ident())
        super().set(key, value)

    def remove(self, key):
        self.threads.append(threading.get_ident())
        super().remove(key)


def run(coro):
    return asyncio.run(coro)


def test_success_first_try_clears_record(recovery, store, sleeper):
    op = Counter("done")
    assert run(recovery.execute_with_recovery(op, "Question Generation", snapshot={"model": "gpt-4o"})) == "done"
    assert op.calls == 1
    assert sleeper.delays == []
    assert store.keys(RECORD_PREFIX) == []


def test_sync_operation_is_supported(recovery):
    assert run(recovery.execute_with_recovery(lambda: 42, "Sync")) == 42


def test_record_writes_run_off_the_event_loop_thread(sleeper):
    store = ThreadTrackingStore()
    service = RecoveryService(store, sleep=sleeper)
    op = Counter(NetworkError("reset"), "done")
    assert run(service.execute_with_recovery(op, "Question Generation", snapshot={"model": "gpt-4o"})) == "done"
    assert len(store.threads) == 2
    assert threading.get_ident() not in store.threads
    assert store.keys(RECORD_PREFIX) == []


def test_retries_stop_at_ceiling_then_fail(recovery, sleeper):
    op = Counter(NetworkError("boom"))
    with pytest.raises(PipelineFailure) as info:
        run(recovery.execute_with_recovery(op, "Content Generation"))
    assert op.calls == 3
    assert sleeper.delays == [2.0, 2.0]
    assert info.value.details.code == ErrorCode.API_NETWORK_ERROR
    assert info.value.details.context == "Content Generation"
    assert str(info.value) == NetworkError.user_message


def test_record_is_kept_after_exhaustion(recovery):
    op = Counter(UpstreamError("502"))
    with pytest.raises(PipelineFailure):
        run(recovery.execute_with_recovery(op, "Course Generation", snapshot={"model": "gpt-4o", "max_tokens": 10}))
    record = recovery.get_record(record_key("Course Generation"))
    assert record is not None
    assert record.payload_snapshot == {"model": "gpt-4o", "max_tokens": 10}
    assert record.context == "Course Generation"


def test_recovers_on_later_attempt(recovery, sleeper, store):
    op = Counter(ApiTimeoutError("slow"), "second time lucky")
    assert run(recovery.execute_with_recovery(op, "Question Generation")) == "second time lucky"
    assert op.calls == 2
    assert sleeper.delays == [2.0]
    assert store.keys(RECORD_PREFIX) == []


def test_rate_limit_waits_longer(recovery, sleeper):
    op = Counter(RateLimitedError("429"), "ok")
    run(recovery.execute_with_recovery(op, "Question Generation"))
    assert sleeper.delays == [5.0]


def test_non_recoverable_fails_fast_without_fallback(recovery, sleeper):
    op = Counter(ApiKeyInvalidError("401"))
    fallback = Counter("fallback")
    with pytest.raises(PipelineFailure) as info:
        run(recovery.execute_with_recovery(op, "Question Generation", fallback=fallback))
    assert op.calls == 1
    assert fallback.calls == 0
    assert sleeper.delays == []
    assert info.value.details.code == ErrorCode.API_KEY_INVALID
    assert not info.value.details.recoverable


def test_fallback_after_exhaustion(recovery):
    op = Counter(ApiTimeoutError("slow"))
    result = run(recovery.execute_with_recovery(op, "Question Generation", fallback=lambda: ["fallback"]))
    assert result == ["fallback"]
    assert op.calls == 3


def test_content_too_large_skips_retries_but_uses_fallback(recovery, sleeper):
    op = Counter(ContentTooLargeError("too big"))
    fallback = Counter("short version")
    assert run(recovery.execute_with_recovery(op, "Course Generation", fallback=fallback)) == "short version"
    assert op.calls == 1
    assert fallback.calls == 1
    assert sleeper.delays == []


def test_failing_fallback_raises_original_error(recovery):
    op = Counter(NetworkError("down"))
    fallback = Counter(ValueError("fallback broke"))
    with pytest.raises(PipelineFailure) as info:
        run(recovery.execute_with_recovery(op, "Content Generation", fallback=fallback))
    assert info.value.details.code == ErrorCode.API_NETWORK_ERROR
    assert fallback.calls == 1


def test_unknown_exception_is_classified_as_generation_failure(recovery):
    op = Counter(RuntimeError("weird"))
    with pytest.raises(PipelineFailure) as info:
        run(recovery.execute_with_recovery(op, "Question Generation"))
    assert op.calls == 3
    assert info.value.details.code == ErrorCode.GENERATION_FAILED


def test_storage_failure_does_not_abort_operation(sleeper):
    service = RecoveryService(BrokenStore(), sleep=sleeper)
    assert run(service.execute_with_recovery(Counter("fine"), "Question Generation")) == "fine"


def test_records_expire_after_ttl(store, sleeper):
    clock = FakeClock()
    service = RecoveryService(store, sleep=sleeper, clock=clock, ttl_s=3600)
    key = record_key("Question Generation")
    assert service.save_record(key, {"model": "gpt-4o"}, "Question Generation")

    clock.now += 3599
    assert service.get_record(key) is not None

    clock.now += 2
    assert service.get_record(key) is None
    assert store.get(RECORD_PREFIX + key) is None


def test_corrupt_record_is_discarded(recovery, store):
    key = record_key("Question Generation")
    store.set(RECORD_PREFIX + key, "{not json")
    assert recovery.get_record(key) is None
    assert store.get(RECORD_PREFIX + key) is None


def test_cleanup_expired_only_removes_old_records(store, sleeper):
    clock = FakeClock()
    service = RecoveryService(store, sleep=sleeper, clock=clock)
    service.save_record("old", None, "Old")
    clock.now += 4000
    service.save_record("new", None, "New")
    store.set(RECORD_PREFIX + "junk", "]]")
    store.set("openai_api_key", "untouched")

    assert service.cleanup_expired() == 2
    assert store.keys(RECORD_PREFIX) == [RECORD_PREFIX + "new"]
    assert store.get("openai_api_key") == "untouched"


def test_saving_past_max_records_cleans_up(store, sleeper):
    clock = FakeClock()
    service = RecoveryService(store, sleep=sleeper, clock=clock, max_records=3)
    for i in range(3):
        service.save_record(f"stale{i}", None, "Stale")
    clock.now += 7200
    service.save_record("fresh", None, "Fresh")
    assert service.record_count() == 1


def test_clear_all(recovery, store):
    recovery.save_record("a", None, "A")
    recovery.save_record("b", None, "B")
    store.set("openai_api_key", "keep")
    recovery.clear_all()
    assert recovery.record_count() == 0
    assert store.get("openai_api_key") == "keep"


def test_health_check_reports_missing_key(store, valid_key):
    keys = ApiKeyManager(store)
    service = RecoveryService(store, key_manager=keys)
    report = service.health_check()
    assert not report.is_healthy
    assert report.issues == ["OpenAI API key not configured"]

    keys.set(valid_key)
    assert service.health_check().is_healthy
    assert store.get("health_check") is None


def test_health_check_reports_broken_store():
    report = RecoveryService(BrokenStore()).health_check()
    assert not report.is_healthy
    assert "Recovery store not available" in report.issues


def test_health_check_reports_excess_records(store):
    service = RecoveryService(store, max_records=2)
    for i in range(3):
        store.set(f"{RECORD_PREFIX}r{i}", "{}")
    report = service.health_check()
    assert "Excessive recovery data stored" in report.issues
