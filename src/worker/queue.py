"""Три очереди задач по приоритетам (HIGH / MEDIUM / LOW)."""
from collections.abc import Iterator

from src.models.task import ScrapeTask, TaskPriority


class PriorityTaskQueues:
    """
    Упорядоченные списки задач, по одному на tier.
    Внутри tier — порядок добавления; выбор — первая pending задача
    из самого приоритетного tier.
    """

    def __init__(self) -> None:
        self.tiers: dict[TaskPriority, list[ScrapeTask]] = {
            priority: [] for priority in TaskPriority
        }

    def add(self, task: ScrapeTask) -> None:
        """Добавить задачу в конец её tier."""
        self.tiers[task.priority].append(task)

    def next_pending(self) -> ScrapeTask | None:
        """Первая pending задача по приоритету, FIFO внутри tier."""
        for priority in TaskPriority:
            for task in self.tiers[priority]:
                if task.status == "pending":
                    return task
        return None

    def has_pending(self) -> bool:
        return self.next_pending() is not None

    def take(self, task: ScrapeTask) -> None:
        """Вынуть конкретную задачу из её tier (она становится текущей)."""
        self.tiers[task.priority].remove(task)

    def remove(self, task_id: str) -> ScrapeTask | None:
        """Удалить задачу по id из любого tier. None — если не найдена."""
        for queue in self.tiers.values():
            for index, task in enumerate(queue):
                if task.id == task_id:
                    return queue.pop(index)
        return None

    def find(self, task_id: str) -> ScrapeTask | None:
        for task in self:
            if task.id == task_id:
                return task
        return None

    def purge_terminal(self) -> int:
        """Убрать завершённые задачи (completed/failed/cancelled). Возвращает количество удалённых."""
        removed = 0
        for priority, queue in self.tiers.items():
            kept = [task for task in queue if not task.is_purgeable]
            removed += len(queue) - len(kept)
            self.tiers[priority] = kept
        return removed

    def count(self, priority: TaskPriority) -> int:
        return len(self.tiers[priority])

    def replace(self, priority: TaskPriority, tasks: list[ScrapeTask]) -> None:
        self.tiers[priority] = list(tasks)

    def __iter__(self) -> Iterator[ScrapeTask]:
        for priority in TaskPriority:
            yield from self.tiers[priority]

    def __len__(self) -> int:
        return sum(len(queue) for queue in self.tiers.values())
