"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import MagicMock

from src.models.task import QueueStatus, ScrapeTask, TaskPriority
from src.worker.orchestrator import ScrapingOrchestrator


def make_settings():
    """Создать мок Settings с API-ключом."""
    settings = MagicMock()
    settings.scraper_api_key.get_secret_value.return_value = "sk-test-key"
    return settings


def make_task(task_id: str = "task-1", **overrides) -> ScrapeTask:
    """Задача очереди для ответов мока."""
    data = {"id": task_id, "type": "profile", "priority": TaskPriority.HIGH}
    data.update(overrides)
    return ScrapeTask(**data)


def make_status(**overrides) -> QueueStatus:
    data = {
        "high_priority": 0,
        "medium_priority": 0,
        "low_priority": 0,
        "current_task": None,
        "is_paused": False,
        "total_completed": 0,
        "total_failed": 0,
    }
    data.update(overrides)
    return QueueStatus(**data)


def make_orchestrator(tasks: list[ScrapeTask] | None = None, status: QueueStatus | None = None):
    """Создать мок ScrapingOrchestrator (async-методы — AsyncMock)."""
    orchestrator = MagicMock(spec=ScrapingOrchestrator)
    orchestrator.is_paused = False
    orchestrator.is_processing = False
    orchestrator.list_tasks.return_value = tasks or []
    orchestrator.get_queue_status.return_value = status or make_status()
    orchestrator.get_task.return_value = None
    orchestrator.enqueue_task.return_value = "new-task-id"
    orchestrator.cancel_task.return_value = True
    orchestrator.clear_completed_tasks.return_value = 0
    return orchestrator


def make_app(orchestrator=None, settings=None, limiter=None, notifier=None):
    """Создать FastAPI app с моками."""
    from src.api.app import create_app

    return create_app(
        orchestrator=orchestrator or make_orchestrator(),
        settings=settings or make_settings(),
        limiter=limiter,
        notifier=notifier,
    )


# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}
