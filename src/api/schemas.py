"""Pydantic-схемы для API управления очередью."""
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.models.task import ScrapeTask, TaskPriority, TaskRequest
from src.notifications import ScraperEvent


class EnqueueRequest(TaskRequest):
    """Запрос на постановку задачи (аналог ENQUEUE_SCRAPE)."""

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority_name(cls, v: Any) -> Any:
        """Разрешить имя приоритета: "high" / "HIGH" → TaskPriority.HIGH."""
        if isinstance(v, str):
            if v.strip().isdigit():
                return int(v)
            try:
                return TaskPriority[v.strip().upper()]
            except KeyError:
                raise ValueError(f"unknown priority: {v}")
        return v


class EnqueueResponse(BaseModel):
    """Ответ на POST /api/tasks."""

    task_id: str


class CancelResponse(BaseModel):
    """Ответ на DELETE /api/tasks/{task_id}."""

    task_id: str
    cancelled: bool


class ClearResponse(BaseModel):
    """Ответ на POST /api/queue/clear."""

    removed: int


class TaskListResponse(BaseModel):
    """Все задачи очередей + текущая."""

    tasks: list[ScrapeTask]
    current_task: ScrapeTask | None = None


class EventListResponse(BaseModel):
    """Последние уведомления."""

    events: list[ScraperEvent]


class RateLimiterStatsResponse(BaseModel):
    """Состояние rate limiter."""

    queue_length: int
    request_count: int
    max_requests: int
    time_until_reset: float
    processing: bool


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: str
    is_paused: bool
    is_processing: bool
    tasks_pending: int
    tasks_total: int
    rate_limiter: RateLimiterStatsResponse | None = None


class QueueAction(BaseModel):
    """Ответ на pause/resume."""

    is_paused: bool = Field(description="Состояние паузы после операции")
