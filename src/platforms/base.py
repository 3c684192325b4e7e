"""Интерфейсы внешних коллабораторов: скрапер профилей и справочник профилей."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol


@dataclass
class ProfileRecord:
    """Профиль из локального графа сети — нужен только для свежести данных."""

    id: str
    scraped_at: datetime | None = None

    @property
    def url(self) -> str:
        return f"https://linkedin.com/in/{self.id}"


class ProfileScraper(Protocol):
    """Скрапер одного профиля (реализует хост, например content script)."""

    async def scrape_profile(self, profile_url: str) -> Any:
        """Скрапнуть профиль и сохранить результат."""
        ...


class ProfileDirectory(Protocol):
    """Доступ к уже известным профилям (граф сети)."""

    async def list_profiles(self) -> list[ProfileRecord]:
        """Все профили с датой последнего скрапа."""
        ...

    async def get_profile(self, profile_id: str) -> ProfileRecord | None:
        """Профиль по id или None."""
        ...
