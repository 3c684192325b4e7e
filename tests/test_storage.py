"""Тесты хранилищ состояния очереди."""
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

from src.storage import (
    JsonFileStateStore,
    MemoryStateStore,
    SupabaseStateStore,
    create_state_store,
)


def _settings(**overrides):
    settings = MagicMock()
    settings.state_backend = "file"
    settings.state_file = "data/state.json"
    settings.state_table = "scraper_state"
    settings.supabase_url = "https://test.supabase.co"
    settings.supabase_service_key.get_secret_value.return_value = "service-key"
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


class TestMemoryStateStore:
    """Хранилище в памяти."""

    async def test_get_missing_key(self) -> None:
        assert await MemoryStateStore().get("scraper_queue") is None

    async def test_set_and_get(self) -> None:
        store = MemoryStateStore({"a": 1})
        await store.set("b", {"x": [1, 2]})

        assert await store.get("a") == 1
        assert await store.get("b") == {"x": [1, 2]}


class TestJsonFileStateStore:
    """JSON-файл на диске."""

    async def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path / "state.json")
        assert await store.get("scraper_queue") is None

    async def test_set_creates_file_and_dirs(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        store = JsonFileStateStore(path)

        await store.set("scraper_stats", {"total_completed": 1, "total_failed": 0})
        await store.set("last_connection_sync", "2026-01-01T00:00:00+00:00")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data == {
            "scraper_stats": {"total_completed": 1, "total_failed": 0},
            "last_connection_sync": "2026-01-01T00:00:00+00:00",
        }
        assert not path.with_suffix(".json.tmp").exists()

    async def test_survives_new_instance(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        await JsonFileStateStore(path).set("k", "v")

        assert await JsonFileStateStore(path).get("k") == "v"

    async def test_corrupt_file_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileStateStore(path)

        assert await store.get("k") is None
        # Запись перезаписывает битый файл
        await store.set("k", 1)
        assert await store.get("k") == 1

    async def test_non_object_file_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        assert await JsonFileStateStore(path).get("k") is None


class TestSupabaseStateStore:
    """Таблица key/value в Supabase."""

    async def test_get_existing(self) -> None:
        db = MagicMock()
        chain = db.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.return_value = MagicMock(data=[{"value": {"is_paused": True}}])

        store = SupabaseStateStore(db, "scraper_state")
        value = await store.get("scraper_queue")

        assert value == {"is_paused": True}
        db.table.assert_called_with("scraper_state")
        db.table.return_value.select.return_value.eq.assert_called_with("key", "scraper_queue")

    async def test_get_missing(self) -> None:
        db = MagicMock()
        chain = db.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.return_value = MagicMock(data=[])

        assert await SupabaseStateStore(db).get("scraper_queue") is None

    async def test_set_upserts(self) -> None:
        db = MagicMock()

        await SupabaseStateStore(db).set("scraper_stats", {"total_completed": 2})

        db.table.return_value.upsert.assert_called_once_with(
            {"key": "scraper_stats", "value": {"total_completed": 2}}
        )
        db.table.return_value.upsert.return_value.execute.assert_called_once()


class TestCreateStateStore:
    """Выбор бэкенда по настройкам."""

    def test_memory(self) -> None:
        assert isinstance(create_state_store(_settings(state_backend="memory")), MemoryStateStore)

    def test_file(self) -> None:
        store = create_state_store(_settings(state_file="data/custom.json"))

        assert isinstance(store, JsonFileStateStore)
        assert store.path == Path("data/custom.json")

    def test_supabase_with_client(self) -> None:
        db = MagicMock()
        store = create_state_store(_settings(state_backend="supabase"), db)

        assert isinstance(store, SupabaseStateStore)
        assert store.db is db

    def test_supabase_creates_client(self) -> None:
        with patch("src.storage.create_client") as mock_create:
            store = create_state_store(_settings(state_backend="supabase"))

        mock_create.assert_called_once_with("https://test.supabase.co", "service-key")
        assert store.db is mock_create.return_value
