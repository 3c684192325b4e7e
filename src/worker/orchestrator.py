"""
Оркестратор задач скрапинга.

Три очереди по приоритетам, один цикл обработки (одна задача в работе),
ретраи с backoff, pause/resume/cancel и сохранение очереди в хранилище
после каждого перехода статуса.
"""
import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

from loguru import logger
from pydantic import ValidationError

from src.config import Settings
from src.models.task import (
    QueueSnapshot,
    QueueStats,
    QueueStatus,
    ScrapeTask,
    TaskPriority,
    TaskProgress,
    TaskRequest,
)
from src.notifications import Notifier, ScraperCompleted, ScraperFailed, ScraperProgress
from src.platforms.exceptions import PreconditionNotMetError, UnknownTaskTypeError
from src.storage import QUEUE_KEY, STATS_KEY, StateStore
from src.worker.handlers import Handler, ProgressCallback
from src.worker.queue import PriorityTaskQueues


@dataclass(frozen=True)
class RetryPolicy:
    """Потолок ретраев и backoff в зависимости от класса ошибки."""

    max_retries: int = 3
    precondition_max_retries: int = 20
    precondition_backoff: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            precondition_max_retries=settings.precondition_max_retries,
            precondition_backoff=settings.precondition_backoff_seconds,
        )

    def ceiling(self, error: Exception) -> int:
        if isinstance(error, UnknownTaskTypeError):
            return 0
        if isinstance(error, PreconditionNotMetError):
            return self.precondition_max_retries
        return self.max_retries

    def backoff(self, error: Exception, retries: int) -> float:
        """
        Пауза перед повтором. retries — сколько повторов уже было.
        Обычные ошибки: 1s, 2s, 4s...; precondition — фиксированные 30s.
        """
        if isinstance(error, PreconditionNotMetError):
            return self.precondition_backoff
        return float(2 ** retries)


class ScrapingOrchestrator:
    """
    Очередь задач скрапинга с приоритетами.
    Все мутации очереди происходят в одном event loop: публичные методы
    и цикл обработки не прерывают друг друга посреди изменения.
    """

    def __init__(
        self,
        handlers: Mapping[str, Handler],
        store: StateStore,
        notifier: Notifier | None = None,
        retry_policy: RetryPolicy | None = None,
        progress_throttle: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.handlers = dict(handlers)
        self.store = store
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy()
        self.progress_throttle = progress_throttle
        self._clock = clock
        self._sleep = sleep

        self.queues = PriorityTaskQueues()
        self._current_task: ScrapeTask | None = None
        self._paused = False
        self._processing = False
        self._stopping = False
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._loop_task: asyncio.Task[None] | None = None
        self._stats = QueueStats()

        # task_id -> момент последнего progress-уведомления
        self._last_progress: dict[str, float] = {}

    @classmethod
    async def create(
        cls,
        handlers: Mapping[str, Handler],
        store: StateStore,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> "ScrapingOrchestrator":
        """Создать оркестратор и восстановить очередь из хранилища."""
        if settings is not None:
            kwargs.setdefault("retry_policy", RetryPolicy.from_settings(settings))
            kwargs.setdefault("progress_throttle", settings.progress_throttle_seconds)
        orchestrator = cls(handlers, store, notifier, **kwargs)
        await orchestrator.load()
        return orchestrator

    # --- Публичный API ---

    async def enqueue_task(self, request: TaskRequest | Mapping[str, Any]) -> str:
        """Добавить задачу в очередь её приоритета. Не ждёт выполнения."""
        await self.load()
        if not isinstance(request, TaskRequest):
            request = TaskRequest.model_validate(request)

        task = ScrapeTask(
            id=str(uuid.uuid4()),
            type=request.type,
            priority=request.priority,
            params=dict(request.params),
            created_at=datetime.now(UTC),
        )
        self.queues.add(task)
        await self._persist()

        logger.info(f"Enqueued task {task.id} ({task.type}, priority={task.priority.name})")
        self._start_processing()
        return task.id

    async def pause_all(self) -> None:
        """Остановить выборку новых задач. Текущая задача дорабатывает."""
        await self.load()
        if not self._paused:
            logger.info("Pausing all scraping")
        self._paused = True
        await self._persist()

    async def resume_all(self) -> None:
        """Снять паузу и продолжить обработку, если есть pending задачи."""
        await self.load()
        logger.info("Resuming all scraping")
        self._paused = False
        await self._persist()
        self._start_processing()

    async def cancel_task(self, task_id: str) -> bool:
        """
        Отменить задачу. Текущая задача помечается cancelled, оркестратор
        встаёт на паузу, а после возврата хэндлера задача остаётся в своём
        tier до clear_completed_tasks. Задача из очереди просто удаляется.
        """
        await self.load()
        current = self._current_task
        if current is not None and current.id == task_id:
            current.status = "cancelled"
            self._paused = True
            await self._persist()
            logger.info(f"Task {task_id} cancelled while running, orchestrator paused")
            return True

        removed = self.queues.remove(task_id)
        if removed is None:
            logger.warning(f"Task {task_id} not found")
            return False

        removed.status = "cancelled"
        self._last_progress.pop(task_id, None)
        await self._persist()
        logger.info(f"Task {task_id} cancelled")
        return True

    def get_queue_status(self) -> QueueStatus:
        """Снимок очереди: длины tier, текущая задача, пауза, счётчики."""
        current = self._current_task.model_copy(deep=True) if self._current_task else None
        return QueueStatus(
            high_priority=self.queues.count(TaskPriority.HIGH),
            medium_priority=self.queues.count(TaskPriority.MEDIUM),
            low_priority=self.queues.count(TaskPriority.LOW),
            current_task=current,
            is_paused=self._paused,
            total_completed=self._stats.total_completed,
            total_failed=self._stats.total_failed,
        )

    def list_tasks(self) -> list[ScrapeTask]:
        """Все задачи очередей в порядке приоритета (копии)."""
        return [task.model_copy(deep=True) for task in self.queues]

    def get_task(self, task_id: str) -> ScrapeTask | None:
        if self._current_task is not None and self._current_task.id == task_id:
            return self._current_task.model_copy(deep=True)
        task = self.queues.find(task_id)
        return task.model_copy(deep=True) if task else None

    async def clear_completed_tasks(self) -> int:
        """Удалить completed/failed/cancelled задачи из всех очередей."""
        await self.load()
        removed = self.queues.purge_terminal()
        await self._persist()
        logger.info(f"Cleared {removed} finished tasks")
        return removed

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def wait_idle(self) -> None:
        """Дождаться остановки цикла обработки (очередь пуста или пауза)."""
        while self._loop_task is not None and not self._loop_task.done():
            await asyncio.shield(self._loop_task)

    async def close(self, timeout: float = 30.0) -> None:
        """Graceful shutdown: дать текущей задаче доработать, сохранить очередь."""
        self._stopping = True
        task = self._loop_task
        if task is not None and not task.done():
            logger.info(f"Waiting up to {timeout:g}s for the current task to finish...")
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning("Current task did not finish in time, cancelling loop")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self._persist()

    # --- Прогресс ---

    def report_progress(
        self,
        task: ScrapeTask,
        current: int,
        total: int | None = None,
        status_text: str = "",
    ) -> None:
        """Обновить прогресс задачи. Уведомление — не чаще раза в progress_throttle."""
        now_dt = datetime.now(UTC)
        task.progress = TaskProgress(
            current=current, total=total, status_text=status_text, last_update=now_dt,
        )

        now = self._clock()
        last = self._last_progress.get(task.id)
        if last is not None and now - last < self.progress_throttle:
            return
        self._last_progress[task.id] = now

        self._notify(ScraperProgress(
            task_id=task.id,
            task_type=task.type,
            current=current,
            total=total,
            status=status_text,
            last_update=now_dt,
        ))

    # --- Цикл обработки ---

    def _start_processing(self) -> None:
        """Запустить цикл, если он не идёт, не на паузе и есть работа."""
        if self._processing or self._paused or self._stopping or not self._loaded:
            return
        if not self.queues.has_pending():
            return
        self._processing = True
        self._loop_task = asyncio.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        """Основной цикл: по одной задаче, пока есть pending и нет паузы."""
        logger.debug("Starting queue processing")
        try:
            while True:
                if self._paused or self._stopping:
                    logger.info("Queue processing paused")
                    break

                task = self.queues.next_pending()
                if task is None:
                    logger.debug("Queue empty, stopping processing")
                    break

                self.queues.take(task)
                self._current_task = task
                task.status = "running"
                await self._persist()

                logger.info(f"Executing task {task.id} ({task.type}, retries={task.retries})")
                await self._execute(task)

                self._current_task = None
                if task.status != "pending":
                    self._last_progress.pop(task.id, None)
                await self._persist()
        finally:
            self._processing = False
            logger.debug("Queue processing stopped")

    async def _execute(self, task: ScrapeTask) -> None:
        """Выполнить задачу и применить результат: completed / retry / failed."""
        try:
            handler = self.handlers.get(task.type)
            if handler is None:
                raise UnknownTaskTypeError(task.type)
            result = await handler(task.params, self._progress_callback(task))
        except Exception as e:
            if task.status == "cancelled":
                logger.info(f"Cancelled task {task.id} finished with error: {e}")
                self.queues.add(task)
                return
            await self._handle_failure(task, e)
            return

        if task.status == "cancelled":
            # Результат отменённой задачи не учитывается в счётчиках
            logger.info(f"Cancelled task {task.id} finished, result discarded")
            self.queues.add(task)
            return

        task.status = "completed"
        task.error = None
        self._stats.total_completed += 1
        self.queues.add(task)
        logger.info(f"Task {task.id} completed successfully")
        self._notify(ScraperCompleted(task_id=task.id, result=result))

    async def _handle_failure(self, task: ScrapeTask, error: Exception) -> None:
        message = str(error) or type(error).__name__
        is_precondition = isinstance(error, PreconditionNotMetError)
        ceiling = self.retry_policy.ceiling(error)
        log = logger.bind(task_id=task.id)

        if is_precondition:
            log.info(f"Task {task.id} waiting: {message}")
        else:
            log.error(f"Task {task.id} failed: {type(error).__name__}: {message}")

        task.error = message
        if task.retries < ceiling:
            backoff = self.retry_policy.backoff(error, task.retries)
            task.retries += 1
            task.status = "pending"
            # Повтор уходит в конец своего tier
            self.queues.add(task)
            self._current_task = None
            await self._persist()
            log.info(
                f"Task {task.id} retry in {backoff:g}s (attempt {task.retries + 1}/{ceiling + 1})"
            )
            await self._sleep(backoff)
            return

        task.status = "failed"
        self._stats.total_failed += 1
        self.queues.add(task)
        log.error(f"Task {task.id} permanently failed after {task.retries} retries: {message}")
        self._notify(ScraperFailed(task_id=task.id, error=message))

    def _progress_callback(self, task: ScrapeTask) -> ProgressCallback:
        return partial(self.report_progress, task)

    def _notify(self, event: ScraperProgress | ScraperCompleted | ScraperFailed) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(event)
        except Exception as e:
            logger.warning(f"Failed to publish {event.type} for task {event.task_id}: {e}")

    # --- Персистентность ---

    def _snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            high=self.queues.tiers[TaskPriority.HIGH],
            medium=self.queues.tiers[TaskPriority.MEDIUM],
            low=self.queues.tiers[TaskPriority.LOW],
            current_task=self._current_task,
            is_paused=self._paused,
        )

    async def _persist(self) -> None:
        """Сохранить очередь и счётчики. Ошибка хранилища не фатальна."""
        if not self._loaded:
            # До загрузки в памяти нет сохранённого состояния
            return
        try:
            await self.store.set(QUEUE_KEY, self._snapshot().model_dump(mode="json"))
            await self.store.set(STATS_KEY, self._stats.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Failed to save queue: {type(e).__name__}: {e}")

    async def load(self) -> None:
        """Восстановить очередь из хранилища (один раз) и продолжить обработку."""
        async with self._load_lock:
            if self._loaded:
                return
            await self._restore()
            self._loaded = True
        self._start_processing()

    async def _restore(self) -> None:
        """Прочитать снимок очереди и счётчики. Параллельные вызовы load ждут его."""
        try:
            raw_queue = await self.store.get(QUEUE_KEY)
            raw_stats = await self.store.get(STATS_KEY)
        except Exception as e:
            logger.error(f"Failed to load queue: {type(e).__name__}: {e}")
            raw_queue, raw_stats = None, None

        snapshot = QueueSnapshot()
        if raw_queue:
            try:
                snapshot = QueueSnapshot.model_validate(raw_queue)
            except ValidationError as e:
                logger.error(f"Stored queue is invalid, starting empty: {e}")
        if raw_stats:
            try:
                self._stats = QueueStats.model_validate(raw_stats)
            except ValidationError as e:
                logger.error(f"Stored stats are invalid, resetting: {e}")

        self.queues.replace(TaskPriority.HIGH, snapshot.high)
        self.queues.replace(TaskPriority.MEDIUM, snapshot.medium)
        self.queues.replace(TaskPriority.LOW, snapshot.low)
        self._paused = snapshot.is_paused
        self._recover_interrupted(snapshot.current_task)

        logger.info(
            f"Queue loaded: {len(self.queues)} tasks, paused={self._paused}, "
            f"completed={self._stats.total_completed}, failed={self._stats.total_failed}"
        )

    def _recover_interrupted(self, current: ScrapeTask | None) -> None:
        """Задача, прерванная рестартом, снова становится pending в начале tier."""
        for task in self.queues:
            if task.status == "running":
                task.status = "pending"
        if current is None or self.queues.find(current.id) is not None:
            return
        if current.status == "cancelled":
            self.queues.add(current)
            return
        current.status = "pending"
        self.queues.tiers[current.priority].insert(0, current)
        logger.warning(f"Task {current.id} was interrupted by restart, requeued")
