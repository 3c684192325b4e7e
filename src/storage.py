"""Key-value хранилища состояния очереди: память, JSON-файл, Supabase."""
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from supabase import Client, create_client

from src.config import Settings

QUEUE_KEY = "scraper_queue"
STATS_KEY = "scraper_stats"
SYNC_KEY = "last_connection_sync"


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов (Supabase, файловый I/O) в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


class StateStore(Protocol):
    """Минимальный key-value интерфейс, нужный оркестратору."""

    async def get(self, key: str) -> Any | None:
        """Значение по ключу или None, если ключа нет."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Записать JSON-совместимое значение."""
        ...


class MemoryStateStore:
    """Хранилище в памяти — для тестов и режима без диска."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any | None:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class JsonFileStateStore:
    """Один JSON-документ на диске, аналог chrome.storage.local."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"State file {self.path} unreadable, starting empty: {e}")
            return {}
        # Не dict считаем пустым документом
        if not isinstance(parsed, dict):
            logger.warning(f"State file {self.path}: expected object, got {type(parsed).__name__}")
            return {}
        return parsed

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    async def get(self, key: str) -> Any | None:
        data = await run_in_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await run_in_thread(self._read)
            data[key] = value
            await run_in_thread(self._write, data)


class SupabaseStateStore:
    """Таблица key/value (jsonb) в Supabase."""

    def __init__(self, db: Client, table: str = "scraper_state") -> None:
        self.db = db
        self.table = table

    async def get(self, key: str) -> Any | None:
        result = await run_in_thread(
            self.db.table(self.table).select("value").eq("key", key).limit(1).execute
        )
        if not result.data:
            return None
        return result.data[0]["value"]

    async def set(self, key: str, value: Any) -> None:
        await run_in_thread(
            self.db.table(self.table).upsert({"key": key, "value": value}).execute
        )


def create_state_store(settings: Settings, db: Client | None = None) -> StateStore:
    """Выбрать бэкенд хранилища по settings.state_backend."""
    if settings.state_backend == "memory":
        logger.warning("Using in-memory state store: queue will not survive restart")
        return MemoryStateStore()
    if settings.state_backend == "supabase":
        if db is None:
            db = create_client(
                settings.supabase_url, settings.supabase_service_key.get_secret_value()
            )
        return SupabaseStateStore(db, settings.state_table)
    return JsonFileStateStore(settings.state_file)
