"""Общие фикстуры: фейковые часы и sleep для детерминированных тестов."""
import asyncio

import pytest


class FakeClock:
    """Монотонные часы, которые двигает только fake sleep."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Отдать управление циклу, как настоящий sleep
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
