"""Канал уведомлений о ходе задач (progress / completed / failed)."""
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Protocol

from loguru import logger
from pydantic import BaseModel, Field


class ScraperProgress(BaseModel):
    """Прогресс batch-задачи."""

    type: Literal["SCRAPER_PROGRESS"] = "SCRAPER_PROGRESS"
    task_id: str
    task_type: str
    current: int
    total: int | None = None
    status: str = ""
    last_update: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ScraperCompleted(BaseModel):
    """Задача завершилась успешно."""

    type: Literal["SCRAPER_COMPLETED"] = "SCRAPER_COMPLETED"
    task_id: str
    result: Any = None


class ScraperFailed(BaseModel):
    """Задача окончательно упала (ретраи исчерпаны)."""

    type: Literal["SCRAPER_FAILED"] = "SCRAPER_FAILED"
    task_id: str
    error: str


ScraperEvent = Annotated[
    ScraperProgress | ScraperCompleted | ScraperFailed,
    Field(discriminator="type"),
]
Listener = Callable[[Any], None]


class Notifier(Protocol):
    """Fire-and-forget канал: publish не блокирует и не бросает."""

    def publish(self, event: ScraperProgress | ScraperCompleted | ScraperFailed) -> None:
        ...


class BroadcastNotifier:
    """Рассылает события подписчикам и хранит последние N событий для API."""

    def __init__(self, history_size: int = 200) -> None:
        self._listeners: list[Listener] = []
        self.history: deque[ScraperProgress | ScraperCompleted | ScraperFailed] = deque(
            maxlen=history_size
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Подписаться. Возвращает функцию отписки."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: ScraperProgress | ScraperCompleted | ScraperFailed) -> None:
        self.history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # Падение подписчика не должно влиять на оркестратор
                logger.warning(f"Notification listener failed on {event.type}: {e}")

    def recent(self, limit: int = 50) -> list[ScraperProgress | ScraperCompleted | ScraperFailed]:
        """Последние события, от старых к новым."""
        if limit <= 0:
            return []
        return list(self.history)[-limit:]
