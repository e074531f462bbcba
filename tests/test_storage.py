import pytest

from studygen.generate.recovery import RecoveryService, record_key
from studygen.keys import ApiKeyManager, validate_api_key_format
from studygen.storage import MemoryStore, SqliteStore, build_store


def test_sqlite_store_round_trip(tmp_path):
    store = SqliteStore(str(tmp_path / "nested" / "kv.sqlite"))
    assert store.get("missing") is None

    store.set("recovery:a", "1")
    store.set("recovery:b", "2")
    store.set("other", "3")
    store.set("recovery:a", "updated")

    assert store.get("recovery:a") == "updated"
    assert store.keys("recovery:") == ["recovery:a", "recovery:b"]
    store.remove("recovery:a")
    store.remove("never-there")
    assert store.keys("recovery:") == ["recovery:b"]


def test_records_survive_a_new_store_instance(tmp_path):
    path = str(tmp_path / "kv.sqlite")
    RecoveryService(SqliteStore(path)).save_record(record_key("Course Generation"), {"model": "gpt-4o"}, "Course Generation")
    record = RecoveryService(SqliteStore(path)).get_record(record_key("Course Generation"))
    assert record.payload_snapshot == {"model": "gpt-4o"}


def test_build_store():
    assert isinstance(build_store("memory", "ignored"), MemoryStore)
    assert isinstance(build_store("sqlite", "data/x.sqlite"), SqliteStore)
    with pytest.raises(ValueError):
        build_store("redis", "x")


@pytest.mark.parametrize(
    "key, problem",
    [("", "empty"), ("sk-has space" + "x" * 20, "whitespace"), ("pk-" + "x" * 30, "start with"), ("sk-short", "too short")],
)
def test_key_format_problems(key, problem):
    assert problem in validate_api_key_format(key)


def test_key_manager(store, valid_key):
    keys = ApiKeyManager(store)
    assert not keys.has_key()
    assert keys.get() == ""
    keys.set(f"  {valid_key}\n")
    assert keys.get() == valid_key
    assert validate_api_key_format(keys.get()) is None
    keys.clear()
    assert not keys.has_key()
