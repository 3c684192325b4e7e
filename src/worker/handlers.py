"""Хэндлеры задач: контракт, обёртки (timeout, rate limit) и batch_profile."""
import asyncio
import importlib
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from loguru import logger

from src.platforms.base import ProfileScraper
from src.platforms.exceptions import HandlerTimeoutError, ScraperError
from src.rate_limiter import RateLimiter


class ProgressCallback(Protocol):
    """Колбэк прогресса, который оркестратор передаёт хэндлеру."""

    def __call__(self, current: int, total: int | None = None, status_text: str = "") -> None:
        ...


# Хэндлер: (params, report_progress) -> результат, ошибка через исключение
Handler = Callable[[dict[str, Any], ProgressCallback], Awaitable[Any]]


def with_timeout(handler: Handler, timeout: float) -> Handler:
    """Ограничить время хэндлера: по истечении — HandlerTimeoutError."""

    async def wrapped(params: dict[str, Any], report_progress: ProgressCallback) -> Any:
        try:
            return await asyncio.wait_for(handler(params, report_progress), timeout=timeout)
        except TimeoutError as e:
            raise HandlerTimeoutError(timeout) from e

    return wrapped


def rate_limited(handler: Handler, limiter: RateLimiter) -> Handler:
    """Пропустить вызов хэндлера через общий RateLimiter."""

    async def wrapped(params: dict[str, Any], report_progress: ProgressCallback) -> Any:
        return await limiter.enqueue(lambda: handler(params, report_progress))

    return wrapped


def make_batch_profile_handler(
    scraper: ProfileScraper,
    limiter: RateLimiter | None = None,
) -> Handler:
    """
    Хэндлер batch_profile: скрапит params["profile_urls"] по одному.
    Ошибка на одном профиле не останавливает batch; прогресс — после каждого.
    """

    async def handle_batch_profile(
        params: dict[str, Any], report_progress: ProgressCallback,
    ) -> dict[str, int]:
        profile_urls: list[str] = list(params.get("profile_urls") or [])
        total = len(profile_urls)
        scraped = 0
        failed = 0

        for index, url in enumerate(profile_urls, start=1):
            try:
                if limiter is not None:
                    await limiter.enqueue(lambda url=url: scraper.scrape_profile(url))
                else:
                    await scraper.scrape_profile(url)
                scraped += 1
            except ScraperError as e:
                failed += 1
                logger.warning(f"Failed to scrape profile {url}: {e}")
            except Exception as e:
                failed += 1
                logger.error(f"Unexpected error scraping profile {url}: {type(e).__name__}: {e}")

            report_progress(index, total, f"Scraping profiles... ({index}/{total})")

        logger.info(f"Batch profile scrape done: scraped={scraped}, failed={failed}, total={total}")
        return {"scraped": scraped, "failed": failed, "total": total}

    return handle_batch_profile


def load_handlers(
    dotted_path: str,
    limiter: RateLimiter | None = None,
    timeout: float = 0,
) -> dict[str, Handler]:
    """
    Импортировать модуль хоста и взять таблицу хэндлеров.

    build_handlers(limiter, timeout) — хост сам решает, где нужен rate limit
    и таймаут. Иначе берётся HANDLERS, и короткие хэндлеры оборачиваются
    в with_timeout.
    """
    if not dotted_path:
        logger.warning("handlers_module is not set, every task will fail as unknown type")
        return {}

    module = importlib.import_module(dotted_path)
    factory = getattr(module, "build_handlers", None)
    if callable(factory):
        handlers = factory(limiter, timeout)
    else:
        handlers = getattr(module, "HANDLERS", None)
        if isinstance(handlers, Mapping):
            handlers = apply_timeouts(handlers, timeout)
    if not isinstance(handlers, Mapping):
        raise ValueError(f"{dotted_path}: handlers must be a mapping of task type to handler")

    logger.info(f"Loaded {len(handlers)} handlers from {dotted_path}: {sorted(handlers)}")
    return dict(handlers)


# Типы, которые сами отчитываются прогрессом и длятся дольше одного запроса
LONG_RUNNING_TYPES: frozenset[str] = frozenset({"batch_profile"})


def apply_timeouts(handlers: Mapping[str, Handler], timeout: float) -> dict[str, Handler]:
    """Обернуть короткие хэндлеры в with_timeout. timeout <= 0 — без ограничения."""
    if timeout <= 0:
        return dict(handlers)
    return {
        task_type: handler if task_type in LONG_RUNNING_TYPES else with_timeout(handler, timeout)
        for task_type, handler in handlers.items()
    }
