"""FastAPI-приложение для управления очередью скрапинга."""
import hmac
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Path, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from src.api.schemas import (
    CancelResponse,
    ClearResponse,
    EnqueueRequest,
    EnqueueResponse,
    EventListResponse,
    HealthResponse,
    QueueAction,
    RateLimiterStatsResponse,
    TaskListResponse,
)
from src.config import Settings
from src.models.task import QueueStatus, ScrapeTask
from src.notifications import BroadcastNotifier
from src.rate_limiter import RateLimiter
from src.worker.orchestrator import ScrapingOrchestrator

security = HTTPBearer(auto_error=False)


def create_app(
    orchestrator: ScrapingOrchestrator,
    settings: Settings,
    limiter: RateLimiter | None = None,
    notifier: BroadcastNotifier | None = None,
) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="Scraping Orchestrator API", version="0.1.0")

    app.state.orchestrator = orchestrator
    app.state.limiter = limiter
    app.state.notifier = notifier
    app.state.settings = settings

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа."""
        expected = settings.scraper_api_key.get_secret_value()
        if credentials is None or not hmac.compare_digest(
            credentials.credentials, expected
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Healthcheck — без авторизации."""
        tasks = orchestrator.list_tasks()
        limiter_stats = (
            RateLimiterStatsResponse(**asdict(limiter.get_stats())) if limiter else None
        )
        return HealthResponse(
            status="ok",
            is_paused=orchestrator.is_paused,
            is_processing=orchestrator.is_processing,
            tasks_pending=sum(1 for t in tasks if t.status == "pending"),
            tasks_total=len(tasks),
            rate_limiter=limiter_stats,
        )

    @app.post(
        "/api/tasks", status_code=201,
        response_model=EnqueueResponse, dependencies=[Depends(verify_api_key)],
    )
    async def enqueue(body: EnqueueRequest) -> EnqueueResponse:
        """Поставить задачу в очередь."""
        task_id = await orchestrator.enqueue_task(body)
        return EnqueueResponse(task_id=task_id)

    @app.get("/api/tasks", response_model=TaskListResponse, dependencies=[Depends(verify_api_key)])
    async def list_tasks() -> TaskListResponse:
        """Все задачи в очередях и текущая задача."""
        status = orchestrator.get_queue_status()
        return TaskListResponse(tasks=orchestrator.list_tasks(), current_task=status.current_task)

    @app.get(
        "/api/tasks/{task_id}", response_model=ScrapeTask, dependencies=[Depends(verify_api_key)],
    )
    async def get_task(task_id: str = Path(description="ID задачи")) -> ScrapeTask:
        """Получить задачу по ID."""
        task = orchestrator.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.delete(
        "/api/tasks/{task_id}", response_model=CancelResponse, dependencies=[Depends(verify_api_key)],
    )
    async def cancel_task(task_id: str = Path(description="ID задачи")) -> CancelResponse:
        """Отменить задачу (текущая — с постановкой очереди на паузу)."""
        cancelled = await orchestrator.cancel_task(task_id)
        if not cancelled:
            raise HTTPException(status_code=404, detail="Task not found")
        return CancelResponse(task_id=task_id, cancelled=True)

    @app.get("/api/queue", response_model=QueueStatus, dependencies=[Depends(verify_api_key)])
    async def queue_status() -> QueueStatus:
        """Снимок очереди."""
        return orchestrator.get_queue_status()

    @app.post("/api/queue/pause", response_model=QueueAction, dependencies=[Depends(verify_api_key)])
    async def pause() -> QueueAction:
        """Пауза всей обработки."""
        await orchestrator.pause_all()
        return QueueAction(is_paused=orchestrator.is_paused)

    @app.post("/api/queue/resume", response_model=QueueAction, dependencies=[Depends(verify_api_key)])
    async def resume() -> QueueAction:
        """Снять паузу."""
        await orchestrator.resume_all()
        return QueueAction(is_paused=orchestrator.is_paused)

    @app.post("/api/queue/clear", response_model=ClearResponse, dependencies=[Depends(verify_api_key)])
    async def clear_completed() -> ClearResponse:
        """Удалить completed/failed/cancelled задачи."""
        removed = await orchestrator.clear_completed_tasks()
        logger.debug(f"API: cleared {removed} tasks")
        return ClearResponse(removed=removed)

    @app.get("/api/events", response_model=EventListResponse, dependencies=[Depends(verify_api_key)])
    async def events(limit: int = Query(default=50, ge=1, le=200)) -> EventListResponse:
        """Последние уведомления progress / completed / failed."""
        if notifier is None:
            return EventListResponse(events=[])
        return EventListResponse(events=notifier.recent(limit))

    return app
