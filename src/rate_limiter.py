"""Очередь запросов к сайту с часовой квотой и человекоподобными паузами."""
import asyncio
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from src.config import Settings
from src.platforms.exceptions import RateLimiterQueueFullError

T = TypeVar("T")

HOUR_SECONDS = 3600.0
DEFAULT_MAX_QUEUE_SIZE = 1000


@dataclass
class RateLimiterStats:
    """Снимок состояния limiter для мониторинга."""

    queue_length: int
    request_count: int
    max_requests: int
    time_until_reset: float
    processing: bool


class RateLimiter:
    """
    Сериализует асинхронные операции: не больше max_requests_per_hour в час
    и случайная пауза [min_delay, max_delay] секунд между операциями.
    Один фоновый цикл, стартует лениво при enqueue и завершается на пустой очереди.
    """

    def __init__(
        self,
        max_requests_per_hour: int = 100,
        min_delay: float = 5.0,
        max_delay: float = 15.0,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        if max_delay < min_delay:
            raise ValueError(f"max_delay ({max_delay}) < min_delay ({min_delay})")
        self.max_requests_per_hour = max_requests_per_hour
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_queue_size = max_queue_size
        self._clock = clock
        self._sleep = sleep
        self._uniform = uniform

        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._processing = False
        self._worker: asyncio.Task[None] | None = None
        self.request_count = 0
        self.hour_started_at = clock()

        logger.info(
            f"RateLimiter initialized: {max_requests_per_hour} req/hr, "
            f"{min_delay:g}-{max_delay:g}s delays"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        """Создать limiter с параметрами из Settings."""
        return cls(
            max_requests_per_hour=settings.requests_per_hour,
            min_delay=settings.scrape_delay_min,
            max_delay=settings.scrape_delay_max,
            max_queue_size=settings.rate_limiter_max_queue,
        )

    def enqueue(self, operation: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """
        Поставить операцию в очередь. Возвращает future с результатом операции.
        Переполнение очереди — синхронный RateLimiterQueueFullError.
        """
        if len(self._queue) >= self.max_queue_size:
            raise RateLimiterQueueFullError(self.max_queue_size)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append((operation, future))

        if not self._processing:
            self._processing = True
            self._worker = asyncio.create_task(self._process_queue())
        return future

    async def _process_queue(self) -> None:
        """Обрабатывать очередь по одной операции, соблюдая квоту и паузы."""
        logger.debug(f"RateLimiter: starting queue processing ({len(self._queue)} pending)")
        try:
            while self._discard_cancelled():
                elapsed = self._clock() - self.hour_started_at
                if elapsed > HOUR_SECONDS:
                    logger.debug(
                        f"RateLimiter: hour elapsed, resetting counter "
                        f"(was {self.request_count} requests)"
                    )
                    self._reset_window()
                    elapsed = 0.0

                if self.request_count >= self.max_requests_per_hour:
                    wait = max(0.0, HOUR_SECONDS - elapsed)
                    logger.warning(
                        f"RateLimiter: limit reached ({self.request_count}/"
                        f"{self.max_requests_per_hour}), waiting {wait / 60:.0f} min"
                    )
                    await self._sleep(wait)
                    self._reset_window()
                    logger.info("RateLimiter: limit reset, resuming queue")

                operation, future = self._queue.popleft()
                if future.cancelled():
                    # Вызывающий уже отказался от результата
                    continue
                try:
                    result = await operation()
                except Exception as e:
                    # Ошибка уходит только вызывающему, цикл продолжает работу
                    logger.error(f"RateLimiter: request failed (continuing queue): {e}")
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)

                self.request_count += 1
                logger.debug(
                    f"RateLimiter: request {self.request_count}/{self.max_requests_per_hour} "
                    f"complete, {len(self._queue)} remaining"
                )

                if self._discard_cancelled():
                    delay = self._uniform(self.min_delay, self.max_delay)
                    logger.debug(f"RateLimiter: waiting {delay:.1f}s before next request")
                    await self._sleep(delay)
        finally:
            self._processing = False
            logger.debug("RateLimiter: queue empty, stopping")

    def _discard_cancelled(self) -> bool:
        """Убрать из головы очереди отменённые запросы. True, если работа осталась."""
        while self._queue and self._queue[0][1].cancelled():
            self._queue.popleft()
            logger.debug("RateLimiter: dropped cancelled request")
        return bool(self._queue)

    def _reset_window(self) -> None:
        self.request_count = 0
        self.hour_started_at = self._clock()

    def get_stats(self) -> RateLimiterStats:
        """Текущее состояние очереди и счётчиков."""
        time_until_reset = max(0.0, HOUR_SECONDS - (self._clock() - self.hour_started_at))
        return RateLimiterStats(
            queue_length=len(self._queue),
            request_count=self.request_count,
            max_requests=self.max_requests_per_hour,
            time_until_reset=time_until_reset,
            processing=self._processing,
        )

    async def join(self) -> None:
        """Дождаться, пока фоновый цикл разберёт очередь."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)
