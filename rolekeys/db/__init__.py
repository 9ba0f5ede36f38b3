"""Database layer."""

from rolekeys.db.executor import EngineSqlExecutor, SqlExecutor
from rolekeys.db.session import close_db, get_async_session, init_db

__all__ = ["init_db", "close_db", "get_async_session", "SqlExecutor", "EngineSqlExecutor"]
