"""SQLite-based history persistence using aiosqlite.

This module provides the HistoryStore class for persisting chat history,
completed task plans and saved prompts to a SQLite database. All operations
are async and designed to fail gracefully -- a database error should never
crash a running session.

Tables:
    chat_messages: Capped, ordered chat history ({role, content, timestamp}).
    task_history: Completed TaskPlans serialized as JSON.
    prompts: Named prompts saved with ``/save`` and expanded with ``@name``.

Usage:
    >>> from models.database import HistoryStore
    >>> store = HistoryStore("~/.codeplanner/history.db")
    >>> await store.init()
    >>> await store.append_chat_message(ChatMessage(role="user", content="hi"), cap=20)
"""

import time
from pathlib import Path

import aiosqlite
import structlog
from pydantic import ValidationError

from models.schemas import ChatMessage, TaskPlan

logger = structlog.get_logger(__name__)


class HistoryStore:
    """Async SQLite store for chat, task and prompt history.

    Every public method except ``init`` catches exceptions internally and
    logs them rather than propagating, so history problems degrade to an
    empty history instead of breaking the session.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the history store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = str(Path(db_path).expanduser())

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS chat_messages (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        role TEXT NOT NULL,
                        content TEXT NOT NULL,
                        timestamp REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS task_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        original_request TEXT NOT NULL,
                        plan_json TEXT NOT NULL,
                        completed_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS prompts (
                        name TEXT PRIMARY KEY,
                        content TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.commit()
            logger.info("history_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "history_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Chat history
    # -----------------------------------------------------------------

    async def load_chat_history(self, limit: int) -> list[ChatMessage]:
        """Return the newest ``limit`` chat messages, oldest first."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    """
                    SELECT role, content, timestamp FROM chat_messages
                    ORDER BY id DESC LIMIT ?
                    """,
                    (limit,),
                )
                rows = await cursor.fetchall()
            return [
                ChatMessage(role=role, content=content, timestamp=timestamp)
                for role, content, timestamp in reversed(rows)
            ]
        except Exception as e:
            logger.error("chat_history_load_failed", error=str(e))
            return []

    async def append_chat_message(self, message: ChatMessage, cap: int) -> None:
        """Append a message and drop everything older than the newest ``cap``."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO chat_messages (role, content, timestamp) VALUES (?, ?, ?)",
                    (message.role, message.content, message.timestamp),
                )
                await db.execute(
                    """
                    DELETE FROM chat_messages WHERE id NOT IN (
                        SELECT id FROM chat_messages ORDER BY id DESC LIMIT ?
                    )
                    """,
                    (cap,),
                )
                await db.commit()
        except Exception as e:
            logger.error("chat_message_save_failed", role=message.role, error=str(e))

    async def clear_chat_history(self) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM chat_messages")
                await db.commit()
            logger.info("chat_history_cleared")
        except Exception as e:
            logger.error("chat_history_clear_failed", error=str(e))

    # -----------------------------------------------------------------
    # Task history
    # -----------------------------------------------------------------

    async def add_completed_plan(self, plan: TaskPlan) -> None:
        """Store a completed plan, stamping ``completed_at`` if unset."""
        if plan.completed_at is None:
            plan.completed_at = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO task_history (original_request, plan_json, completed_at)
                    VALUES (?, ?, ?)
                    """,
                    (plan.original_request, plan.model_dump_json(), plan.completed_at),
                )
                await db.commit()
            logger.debug(
                "task_plan_recorded",
                subtasks=len(plan.subtasks),
                completed_at=plan.completed_at,
            )
        except Exception as e:
            logger.error("task_plan_record_failed", error=str(e))

    async def get_completed_plans(self, limit: int | None = None) -> list[TaskPlan]:
        """Return completed plans in completion order (oldest first).

        Args:
            limit: If given, only the newest ``limit`` plans are returned.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                if limit is None:
                    cursor = await db.execute(
                        "SELECT plan_json FROM task_history ORDER BY id ASC"
                    )
                    rows = list(await cursor.fetchall())
                else:
                    cursor = await db.execute(
                        "SELECT plan_json FROM task_history ORDER BY id DESC LIMIT ?",
                        (limit,),
                    )
                    rows = list(reversed(await cursor.fetchall()))
        except Exception as e:
            logger.error("task_history_load_failed", error=str(e))
            return []

        plans: list[TaskPlan] = []
        for (plan_json,) in rows:
            try:
                plans.append(TaskPlan.model_validate_json(plan_json))
            except ValidationError as e:
                logger.warning("task_history_entry_invalid", error=str(e))
        return plans

    # -----------------------------------------------------------------
    # Saved prompts
    # -----------------------------------------------------------------

    async def save_prompt(self, name: str, content: str) -> bool:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO prompts (name, content, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (name, content, time.time()),
                )
                await db.commit()
            logger.info("prompt_saved", name=name)
            return True
        except Exception as e:
            logger.error("prompt_save_failed", name=name, error=str(e))
            return False

    async def get_prompt(self, name: str) -> str | None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT content FROM prompts WHERE name = ?",
                    (name,),
                )
                row = await cursor.fetchone()
            return row[0] if row else None
        except Exception as e:
            logger.error("prompt_get_failed", name=name, error=str(e))
            return None

    async def list_prompts(self) -> list[str]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT name FROM prompts ORDER BY name")
                rows = await cursor.fetchall()
            return [name for (name,) in rows]
        except Exception as e:
            logger.error("prompt_list_failed", error=str(e))
            return []
