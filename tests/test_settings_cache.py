from typing import Dict, List

import pytest
from sqlalchemy.orm import Session, sessionmaker

from models.setting import AppSetting
from services import settings_service
from services.errors import NotFoundError, ValidationError
from services.settings_cache import SettingsCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingLoader:
    def __init__(self, data: Dict[str, str]) -> None:
        self.data = data
        self.calls = 0
        self.fail = False

    def __call__(self) -> Dict[str, str]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("database unavailable")
        return dict(self.data)


def test_first_read_loads_and_later_reads_hit_memory() -> None:
    loader = CountingLoader({"whatsappLink": "https://wa.me/1"})
    cache = SettingsCache(loader, ttl_seconds=60, clock=FakeClock())

    assert cache.get("whatsappLink") == "https://wa.me/1"
    assert cache.get("whatsappLink") == "https://wa.me/1"
    assert loader.calls == 1


def test_missing_key_returns_fallback() -> None:
    cache = SettingsCache(CountingLoader({}), ttl_seconds=60, clock=FakeClock())

    assert cache.get("absent") is None
    assert cache.get("absent", "default") == "default"


def test_reload_after_ttl_replaces_snapshot_wholesale() -> None:
    clock = FakeClock()
    loader = CountingLoader({"a": "1", "b": "2"})
    cache = SettingsCache(loader, ttl_seconds=60, clock=clock)
    assert cache.get("a") == "1"

    loader.data = {"a": "10"}
    clock.now += 59
    assert cache.get("b") == "2"

    clock.now += 1
    assert cache.get("a") == "10"
    assert cache.get("b") is None
    assert loader.calls == 2


def test_failed_reload_keeps_serving_stale_values() -> None:
    clock = FakeClock()
    loader = CountingLoader({"a": "1"})
    cache = SettingsCache(loader, ttl_seconds=10, clock=clock)
    cache.get("a")

    loader.fail = True
    clock.now += 30
    assert cache.reload() is False
    assert cache.get("a") == "1"
    assert cache.is_stale()

    loader.fail = False
    loader.data = {"a": "2"}
    clock.now += 5
    assert cache.get("a") == "2"


def test_failed_reload_backs_off_before_calling_loader_again() -> None:
    clock = FakeClock()
    loader = CountingLoader({"a": "1"})
    cache = SettingsCache(loader, ttl_seconds=10, retry_backoff_seconds=5, clock=clock)
    cache.get("a")

    loader.fail = True
    clock.now += 30
    assert cache.get("a") == "1"
    assert loader.calls == 2

    clock.now += 4
    assert cache.get("a") == "1"
    assert cache.snapshot()["a"] == "1"
    assert loader.calls == 2

    clock.now += 1
    assert cache.get("a") == "1"
    assert loader.calls == 3

    loader.fail = False
    loader.data = {"a": "2"}
    cache.invalidate()
    assert cache.get("a") == "2"
    assert loader.calls == 4


def test_set_and_delete_only_touch_memory() -> None:
    loader = CountingLoader({"a": "1"})
    cache = SettingsCache(loader, ttl_seconds=60, clock=FakeClock())
    cache.get("a")

    cache.set("b", "2")
    cache.delete("a")

    assert cache.get("b") == "2"
    assert cache.get("a") is None
    assert loader.data == {"a": "1"}


def test_snapshot_is_read_only_and_stable() -> None:
    cache = SettingsCache(CountingLoader({"a": "1"}), ttl_seconds=60, clock=FakeClock())
    snapshot = cache.snapshot()

    cache.set("a", "2")

    assert snapshot["a"] == "1"
    with pytest.raises(TypeError):
        snapshot["a"] = "3"  # type: ignore[index]


def test_invalidate_forces_reload() -> None:
    loader = CountingLoader({"a": "1"})
    cache = SettingsCache(loader, ttl_seconds=600, clock=FakeClock())
    cache.get("a")

    loader.data = {"a": "2"}
    cache.invalidate()

    assert cache.get("a") == "2"
    assert loader.calls == 2


def test_upsert_setting_writes_through_to_cache(db_session: Session, settings_cache: SettingsCache) -> None:
    settings_cache.reload()

    record = settings_service.upsert_setting(
        db_session, settings_cache, key="whatsappLink", value="https://wa.me/2", description="Support"
    )

    assert record.value == "https://wa.me/2"
    assert settings_cache.get("whatsappLink") == "https://wa.me/2"
    assert db_session.get(AppSetting, "whatsappLink").description == "Support"


def test_delete_setting_removes_from_store_and_cache(db_session: Session, settings_cache: SettingsCache) -> None:
    settings_service.upsert_setting(db_session, settings_cache, key="banner", value="on")

    settings_service.delete_setting(db_session, settings_cache, "banner")

    assert db_session.get(AppSetting, "banner") is None
    assert settings_cache.get("banner") is None
    with pytest.raises(NotFoundError):
        settings_service.delete_setting(db_session, settings_cache, "banner")


def test_upsert_setting_rejects_blank_key(db_session: Session, settings_cache: SettingsCache) -> None:
    with pytest.raises(ValidationError):
        settings_service.upsert_setting(db_session, settings_cache, key="  ", value="x")


def test_ensure_default_settings_is_idempotent(
    db_session: Session, session_factory: sessionmaker, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("WHATSAPP_LINK", "https://wa.me/255700000000")

    first: List[str] = settings_service.ensure_default_settings(db_session)
    second = settings_service.ensure_default_settings(db_session)

    assert first == ["whatsappLink"]
    assert second == []
    assert settings_service.load_settings_map(session_factory) == {"whatsappLink": "https://wa.me/255700000000"}
