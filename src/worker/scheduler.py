"""APScheduler-триггеры: ежедневная синхронизация connections и фоновое обновление профилей."""
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from src.config import Settings
from src.models.task import TaskPriority, TaskRequest
from src.platforms.base import ProfileDirectory, ProfileRecord
from src.storage import SYNC_KEY, StateStore
from src.worker.orchestrator import ScrapingOrchestrator


@dataclass
class ScrapingStats:
    """Свежесть собранных данных."""

    total_profiles: int
    recent_profiles: int
    stale_profiles: int
    never_scraped: int
    last_connection_sync: str | None


def _is_fresh(record: ProfileRecord, threshold_days: int, now: datetime) -> bool:
    if record.scraped_at is None:
        return False
    scraped_at = record.scraped_at
    if scraped_at.tzinfo is None:
        scraped_at = scraped_at.replace(tzinfo=UTC)
    return now - scraped_at < timedelta(days=threshold_days)


async def _get_last_sync(store: StateStore) -> datetime | None:
    value = await store.get(SYNC_KEY)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {SYNC_KEY} value in store: {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


async def is_recently_scraped(
    directory: ProfileDirectory, profile_id: str, threshold_days: int = 7,
) -> bool:
    """Профиль скрапился меньше threshold_days дней назад."""
    try:
        record = await directory.get_profile(profile_id)
    except Exception as e:
        logger.error(f"Error checking if profile {profile_id} recently scraped: {e}")
        return False
    if record is None:
        return False
    return _is_fresh(record, threshold_days, datetime.now(UTC))


async def get_stale_profiles(directory: ProfileDirectory, threshold_days: int = 7) -> list[ProfileRecord]:
    """Профили, которые не скрапились ни разу или дольше threshold_days."""
    try:
        records = await directory.list_profiles()
    except Exception as e:
        logger.error(f"Failed to get stale profiles: {e}")
        return []

    now = datetime.now(UTC)
    stale = [r for r in records if not _is_fresh(r, threshold_days, now)]
    logger.info(f"Found stale profiles: {len(stale)}/{len(records)} (threshold={threshold_days}d)")
    return stale


async def should_scrape_connections(store: StateStore, min_hours: float = 6) -> bool:
    """Ручной запуск синхронизации разрешён не чаще раза в min_hours."""
    try:
        last_sync = await _get_last_sync(store)
    except Exception as e:
        logger.error(f"Error checking connection sync status: {e}")
        return True
    if last_sync is None:
        return True
    return datetime.now(UTC) - last_sync >= timedelta(hours=min_hours)


async def trigger_connection_sync(
    orchestrator: ScrapingOrchestrator, store: StateStore,
) -> str | None:
    """Поставить LOW-задачу синхронизации connections и запомнить время."""
    try:
        task_id = await orchestrator.enqueue_task(TaskRequest(
            type="connection",
            priority=TaskPriority.LOW,
            params={"resume": True},
        ))
        await store.set(SYNC_KEY, datetime.now(UTC).isoformat())
    except Exception as e:
        logger.error(f"Failed to trigger connection sync: {e}")
        return None

    logger.info(f"Connection sync enqueued: {task_id}")
    return task_id


async def check_and_schedule_sync(
    orchestrator: ScrapingOrchestrator, store: StateStore, settings: Settings,
) -> str | None:
    """Запустить синхронизацию, если с прошлой прошло connection_sync_hours."""
    try:
        last_sync = await _get_last_sync(store)
    except Exception as e:
        logger.error(f"Error checking sync schedule: {e}")
        return None

    if last_sync is not None:
        hours_since = (datetime.now(UTC) - last_sync).total_seconds() / 3600
        logger.debug(f"Checking sync schedule: {hours_since:.1f}h since last sync")
        if hours_since < settings.connection_sync_hours:
            return None

    logger.info("Triggering overdue connection sync")
    return await trigger_connection_sync(orchestrator, store)


async def enqueue_stale_profiles(
    orchestrator: ScrapingOrchestrator, directory: ProfileDirectory, settings: Settings,
) -> str | None:
    """Фоновое обновление: batch_profile по первым stale_batch_size устаревшим профилям."""
    status = orchestrator.get_queue_status()
    if status.low_priority > 0:
        logger.debug(f"Low priority tasks already queued ({status.low_priority}), skipping")
        return None

    stale = await get_stale_profiles(directory, settings.stale_profile_days)
    if not stale:
        return None

    batch = stale[: settings.stale_batch_size]
    task_id = await orchestrator.enqueue_task(TaskRequest(
        type="batch_profile",
        priority=TaskPriority.LOW,
        params={"profile_urls": [record.url for record in batch]},
    ))
    logger.info(f"Enqueued stale profile update for {len(batch)} profiles: {task_id}")
    return task_id


async def get_scraping_stats(
    directory: ProfileDirectory, store: StateStore, settings: Settings,
) -> ScrapingStats:
    """Статистика свежести профилей и время последней синхронизации."""
    try:
        records = await directory.list_profiles()
        last_sync = await store.get(SYNC_KEY)
    except Exception as e:
        logger.error(f"Failed to get scraping stats: {e}")
        return ScrapingStats(0, 0, 0, 0, None)

    now = datetime.now(UTC)
    never = sum(1 for r in records if r.scraped_at is None)
    recent = sum(1 for r in records if _is_fresh(r, settings.stale_profile_days, now))
    return ScrapingStats(
        total_profiles=len(records),
        recent_profiles=recent,
        stale_profiles=len(records) - recent - never,
        never_scraped=never,
        last_connection_sync=last_sync or None,
    )


def create_scheduler(
    orchestrator: ScrapingOrchestrator,
    store: StateStore,
    settings: Settings,
    directory: ProfileDirectory | None = None,
) -> AsyncIOScheduler:
    """Создать и настроить APScheduler."""
    scheduler = AsyncIOScheduler(
        job_defaults={
            # None = без ограничения (job всегда выполнится при опоздании)
            "misfire_grace_time": None,
            "coalesce": True,
        }
    )

    # Проверка при старте и затем раз в connection_sync_check_minutes
    scheduler.add_job(
        check_and_schedule_sync,
        "interval",
        minutes=settings.connection_sync_check_minutes,
        next_run_time=datetime.now(UTC),
        kwargs={"orchestrator": orchestrator, "store": store, "settings": settings},
        id="check_connection_sync",
    )

    # Обновление устаревших профилей, пока пользователь не активен
    if directory is not None:
        scheduler.add_job(
            enqueue_stale_profiles,
            "interval",
            seconds=settings.idle_check_seconds,
            kwargs={"orchestrator": orchestrator, "directory": directory, "settings": settings},
            id="enqueue_stale_profiles",
        )
    else:
        logger.info("No profile directory configured, stale profile refresh disabled")

    return scheduler
