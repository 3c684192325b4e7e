"""Точка входа — инициализация оркестратора, API и фоновых триггеров."""
import asyncio
import signal
import sys

import uvicorn
from loguru import logger
from supabase import create_client

from src.api.app import create_app
from src.config import Settings, load_settings
from src.log_sink import create_supabase_sink
from src.notifications import BroadcastNotifier
from src.rate_limiter import RateLimiter
from src.storage import create_state_store
from src.worker.handlers import load_handlers
from src.worker.orchestrator import ScrapingOrchestrator
from src.worker.scheduler import create_scheduler


def setup_logging(settings: Settings) -> None:
    """stderr + файл в DEBUG."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/orchestrator.log", rotation="100 MB", retention="7 days")


async def main() -> None:
    """Инициализация и запуск API + оркестратора."""
    settings = load_settings()
    setup_logging(settings)
    logger.info("Starting scraping orchestrator")

    db = None
    if settings.state_backend == "supabase":
        db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())
        # Персистить WARNING+ логи в Supabase
        logger.add(create_supabase_sink(db), level="WARNING", enqueue=True, serialize=False)

    store = create_state_store(settings, db)
    notifier = BroadcastNotifier()
    limiter = RateLimiter.from_settings(settings)

    handlers = load_handlers(
        settings.handlers_module, limiter, settings.handler_timeout_seconds,
    )
    orchestrator = await ScrapingOrchestrator.create(handlers, store, notifier, settings=settings)

    app = create_app(orchestrator, settings, limiter=limiter, notifier=notifier)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.scraper_port, log_level="warning")
    server = uvicorn.Server(config)

    # Graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: setattr(server, "should_exit", True))

    scheduler = create_scheduler(orchestrator, store, settings)
    scheduler.start()
    logger.info("Scheduler started")

    logger.info(f"API server starting on port {settings.scraper_port}")
    try:
        await server.serve()
    finally:
        scheduler.shutdown(wait=False)
        await orchestrator.close(timeout=30)
        logger.info("Orchestrator stopped gracefully")


if __name__ == "__main__":
    asyncio.run(main())
