"""Тесты хэндлеров: обёртки, batch_profile, загрузка таблицы хоста."""
import asyncio
import sys
import types
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.platforms.exceptions import HandlerTimeoutError, ScraperError
from src.rate_limiter import RateLimiter
from src.worker.handlers import (
    apply_timeouts,
    load_handlers,
    make_batch_profile_handler,
    rate_limited,
    with_timeout,
)
from tests.conftest import FakeClock


async def _ok(params: dict[str, Any], report_progress) -> str:
    return f"ok:{params.get('profile_url')}"


class TestWithTimeout:
    """Ограничение времени хэндлера."""

    async def test_fast_handler_passes_through(self) -> None:
        wrapped = with_timeout(_ok, timeout=1.0)
        assert await wrapped({"profile_url": "u"}, MagicMock()) == "ok:u"

    async def test_slow_handler_times_out(self) -> None:
        async def hangs(params: dict[str, Any], report_progress) -> None:
            await asyncio.Event().wait()

        wrapped = with_timeout(hangs, timeout=0.01)

        with pytest.raises(HandlerTimeoutError, match="did not respond within 0.01s"):
            await wrapped({}, MagicMock())

    async def test_handler_error_not_masked(self) -> None:
        async def fails(params: dict[str, Any], report_progress) -> None:
            raise ScraperError("no such element")

        with pytest.raises(ScraperError, match="no such element"):
            await with_timeout(fails, timeout=1.0)({}, MagicMock())


class TestRateLimited:
    """Вызов хэндлера через RateLimiter."""

    async def test_counts_request(self, fake_clock: FakeClock) -> None:
        limiter = RateLimiter(
            min_delay=0.0, max_delay=0.0, clock=fake_clock, sleep=fake_clock.sleep,
        )
        wrapped = rate_limited(_ok, limiter)

        assert await wrapped({"profile_url": "u"}, MagicMock()) == "ok:u"
        assert limiter.request_count == 1


class TestBatchProfileHandler:
    """batch_profile: по одному профилю, ошибки не прерывают batch."""

    async def test_scrapes_all_and_reports_progress(self) -> None:
        scraper = MagicMock()
        scraper.scrape_profile = AsyncMock(return_value={"name": "x"})
        progress = MagicMock()
        handler = make_batch_profile_handler(scraper)

        result = await handler({"profile_urls": ["u1", "u2"]}, progress)

        assert result == {"scraped": 2, "failed": 0, "total": 2}
        assert [c.args[0] for c in scraper.scrape_profile.await_args_list] == ["u1", "u2"]
        progress.assert_any_call(1, 2, "Scraping profiles... (1/2)")
        progress.assert_called_with(2, 2, "Scraping profiles... (2/2)")

    async def test_item_failures_are_counted(self) -> None:
        scraper = MagicMock()
        scraper.scrape_profile = AsyncMock(
            side_effect=[ScraperError("private profile"), {"name": "ok"}, RuntimeError("crash")],
        )
        handler = make_batch_profile_handler(scraper)

        result = await handler({"profile_urls": ["u1", "u2", "u3"]}, MagicMock())

        assert result == {"scraped": 1, "failed": 2, "total": 3}

    async def test_empty_batch(self) -> None:
        scraper = MagicMock()
        scraper.scrape_profile = AsyncMock()
        progress = MagicMock()

        result = await make_batch_profile_handler(scraper)({}, progress)

        assert result == {"scraped": 0, "failed": 0, "total": 0}
        progress.assert_not_called()

    async def test_goes_through_limiter(self, fake_clock: FakeClock) -> None:
        scraper = MagicMock()
        scraper.scrape_profile = AsyncMock(return_value=None)
        limiter = RateLimiter(
            min_delay=0.0, max_delay=0.0, clock=fake_clock, sleep=fake_clock.sleep,
        )
        handler = make_batch_profile_handler(scraper, limiter)

        await handler({"profile_urls": ["u1", "u2", "u3"]}, MagicMock())

        assert limiter.request_count == 3


class TestApplyTimeouts:
    """Таймаут только для коротких хэндлеров."""

    def test_zero_timeout_keeps_handlers(self) -> None:
        handlers = {"profile": _ok}
        assert apply_timeouts(handlers, 0) == handlers

    def test_batch_profile_not_wrapped(self) -> None:
        wrapped = apply_timeouts({"profile": _ok, "batch_profile": _ok}, 28)

        assert wrapped["batch_profile"] is _ok
        assert wrapped["profile"] is not _ok


class TestLoadHandlers:
    """Импорт таблицы хэндлеров из модуля хоста."""

    def test_empty_path(self) -> None:
        assert load_handlers("") == {}

    def test_handlers_table(self, monkeypatch: pytest.MonkeyPatch) -> None:
        module = types.ModuleType("host_handlers")
        module.HANDLERS = {"profile": _ok, "batch_profile": _ok}
        monkeypatch.setitem(sys.modules, "host_handlers", module)

        handlers = load_handlers("host_handlers", timeout=10)

        assert set(handlers) == {"profile", "batch_profile"}
        assert handlers["batch_profile"] is _ok
        assert handlers["profile"] is not _ok

    def test_build_handlers_factory(self, monkeypatch: pytest.MonkeyPatch) -> None:
        limiter = MagicMock()
        factory = MagicMock(return_value={"company": _ok})
        module = types.ModuleType("host_factory")
        module.build_handlers = factory
        monkeypatch.setitem(sys.modules, "host_factory", module)

        handlers = load_handlers("host_factory", limiter, 28)

        factory.assert_called_once_with(limiter, 28)
        assert handlers == {"company": _ok}

    def test_invalid_table(self, monkeypatch: pytest.MonkeyPatch) -> None:
        module = types.ModuleType("host_broken")
        module.HANDLERS = ["profile"]
        monkeypatch.setitem(sys.modules, "host_broken", module)

        with pytest.raises(ValueError, match="mapping"):
            load_handlers("host_broken")

    def test_missing_module(self) -> None:
        with pytest.raises(ModuleNotFoundError):
            load_handlers("no_such_handlers_module_xyz")
