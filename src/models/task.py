"""Pydantic-модели задачи скрапинга и статуса очереди."""
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

TaskType = Literal["connection", "profile", "activity", "company", "batch_profile"]
TaskStatus = Literal["pending", "running", "completed", "failed", "cancelled"]

# Терминальные статусы, которые убирает clear_completed_tasks
PURGEABLE_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


class TaskPriority(IntEnum):
    """Приоритет задачи — определяет очередь (tier)."""

    HIGH = 0  # Запросы пользователя (профиль, компания)
    MEDIUM = 1  # Activity для pathfinding
    LOW = 2  # Фоновая синхронизация


class TaskProgress(BaseModel):
    """Прогресс долгой batch-задачи."""

    current: int
    total: int | None = None
    status_text: str = ""
    last_update: datetime


class TaskRequest(BaseModel):
    """Задача без системных полей — то, что присылает триггер или пользователь."""

    type: TaskType
    priority: TaskPriority = TaskPriority.HIGH
    params: dict[str, Any] = {}


class ScrapeTask(BaseModel):
    """Задача в очереди оркестратора."""

    id: str
    type: TaskType
    priority: TaskPriority
    params: dict[str, Any] = {}
    status: TaskStatus = "pending"
    retries: int = 0
    error: str | None = None
    progress: TaskProgress | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_purgeable(self) -> bool:
        return self.status in PURGEABLE_STATUSES


class QueueStatus(BaseModel):
    """Снимок очереди для UI и API."""

    high_priority: int
    medium_priority: int
    low_priority: int
    current_task: ScrapeTask | None
    is_paused: bool
    total_completed: int
    total_failed: int


class QueueSnapshot(BaseModel):
    """Состояние очереди в хранилище (ключ scraper_queue)."""

    high: list[ScrapeTask] = []
    medium: list[ScrapeTask] = []
    low: list[ScrapeTask] = []
    current_task: ScrapeTask | None = None
    is_paused: bool = False


class QueueStats(BaseModel):
    """Счётчики за всё время (ключ scraper_stats)."""

    total_completed: int = 0
    total_failed: int = 0
