"""Loguru sink для записи WARNING+ логов оркестратора в Supabase."""

from supabase import Client

LOGS_TABLE = "scraper_logs"


def create_supabase_sink(db: Client, table: str = LOGS_TABLE):
    """Фабрика: вернуть sink-функцию, привязанную к db-клиенту.

    task_id берётся из logger.bind(task_id=...) — так строки лога
    связываются с задачей очереди.
    """

    def sink(message) -> None:
        record = message.record
        try:
            db.table(table).insert({
                "level": record["level"].name,
                "module": record["name"],
                "function": record["function"],
                "task_id": record["extra"].get("task_id"),
                "message": str(record["message"]),
            }).execute()
        except Exception:
            pass  # Ошибка логирования не должна ронять приложение

    return sink
