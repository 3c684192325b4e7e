"""Кастомные исключения скрапера и оркестратора."""


class ScraperError(Exception):
    """Общая ошибка скрапинга."""


class PreconditionNotMetError(ScraperError):
    """Нужный внешний контекст недоступен (например, не открыта страница connections).

    Оркестратор ретраит такие ошибки долго и с фиксированным интервалом.
    """


class HandlerTimeoutError(ScraperError):
    """Хэндлер не ответил за отведённое время."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Handler did not respond within {timeout:g}s")


class UnknownTaskTypeError(ScraperError):
    """Для типа задачи не зарегистрирован хэндлер — ретрай бесполезен."""

    def __init__(self, task_type: str) -> None:
        self.task_type = task_type
        super().__init__(f"Unknown task type: {task_type}")


class RateLimiterQueueFullError(ScraperError):
    """Очередь rate limiter переполнена."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        super().__init__(f"Rate limiter queue full ({max_size} requests)")
