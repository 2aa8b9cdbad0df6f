"""
SQLite-backed orchestration store.

Persists agent lifecycle records, conversation messages, result documents and
the prompt library in one database file, and answers the history and stats
queries the CLI shows.
"""

import json
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import List, Optional, Union

from database.recorder import OrchestrationRecorder
from models import (
    AgentRecord,
    AgentStatus,
    AgentType,
    ConversationRecord,
    DocumentRecord,
    MessageRole,
    PromptRecord,
    StoreStats,
)


logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".account-orchestrator" / "orchestration.db"


class StorageError(Exception):
    """Raised when the store cannot be initialized."""
    pass


class SQLiteStore(OrchestrationRecorder):
    """Orchestration recorder and query interface over a SQLite file."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        """Create tables and indexes if they do not exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS agents (
                        id TEXT PRIMARY KEY,
                        type TEXT NOT NULL,
                        parent_id TEXT,
                        backend_id TEXT,
                        status TEXT NOT NULL,
                        task TEXT NOT NULL,
                        result TEXT,
                        created_at REAL NOT NULL,
                        completed_at REAL
                    );

                    CREATE TABLE IF NOT EXISTS conversations (
                        id TEXT PRIMARY KEY,
                        agent_id TEXT NOT NULL,
                        parent_id TEXT,
                        backend_id TEXT,
                        role TEXT NOT NULL,
                        content TEXT NOT NULL,
                        timestamp REAL NOT NULL,
                        tokens_used INTEGER,
                        cost REAL
                    );

                    CREATE TABLE IF NOT EXISTS documents (
                        id TEXT PRIMARY KEY,
                        task_id TEXT NOT NULL,
                        type TEXT NOT NULL,
                        title TEXT NOT NULL,
                        content TEXT NOT NULL,
                        format TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        tags TEXT  -- JSON array
                    );

                    CREATE TABLE IF NOT EXISTS prompts (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL UNIQUE,
                        category TEXT NOT NULL,
                        content TEXT NOT NULL,
                        variables TEXT,  -- JSON array
                        description TEXT,
                        usage_count INTEGER DEFAULT 0,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_conversations_agent ON conversations (agent_id);
                    CREATE INDEX IF NOT EXISTS idx_conversations_timestamp ON conversations (timestamp);
                    CREATE INDEX IF NOT EXISTS idx_documents_task ON documents (task_id);
                    CREATE INDEX IF NOT EXISTS idx_prompts_category ON prompts (category);
                    CREATE INDEX IF NOT EXISTS idx_agents_parent ON agents (parent_id);
                    CREATE INDEX IF NOT EXISTS idx_agents_status ON agents (status);
                """)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StorageError(f"Failed to initialize database at {self.db_path}: {e}") from e

    # Recorder interface

    def record_agent_start(self, agent_id, parent_id, backend_id, description, agent_type=AgentType.SUB):
        record = AgentRecord(
            id=agent_id,
            type=AgentType(agent_type),
            parent_id=parent_id,
            backend_id=backend_id,
            task=description
        )
        return self.save_agent(record)

    def record_agent_end(self, agent_id, status, result_text=None):
        return self.update_agent_status(agent_id, AgentStatus(status), result_text)

    def record_message(self, agent_id, backend_id, role, text, tokens=None, cost=None, parent_id=None):
        record = ConversationRecord(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            parent_id=parent_id,
            backend_id=backend_id,
            role=MessageRole(role),
            content=text,
            tokens_used=tokens,
            cost=cost
        )
        return self.save_conversation(record)

    def record_document(self, task_id, title, text, tags=None):
        record = DocumentRecord(
            id=str(uuid.uuid4()),
            task_id=task_id,
            title=title,
            content=text,
            tags=list(tags or [])
        )
        return self.save_document(record)

    # Agents

    def save_agent(self, record: AgentRecord) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO agents (id, type, parent_id, backend_id, status, task, result, created_at, completed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id, record.type.value, record.parent_id, record.backend_id,
                    record.status.value, record.task, record.result,
                    record.created_at, record.completed_at
                ))
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to store agent {record.id}: {e}")
            return False

    def update_agent_status(self, agent_id: str, status: AgentStatus, result: Optional[str] = None) -> bool:
        completed_at = time.time() if status in (AgentStatus.COMPLETED, AgentStatus.FAILED) else None
        try:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE agents SET status = ?, result = ?, completed_at = ? WHERE id = ?",
                    (status.value, result, completed_at, agent_id)
                )
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to update agent {agent_id}: {e}")
            return False

    def get_agent(self, agent_id: str) -> Optional[AgentRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return AgentRecord(**dict(row)) if row else None

    def get_sub_agents(self, parent_id: str) -> List[AgentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agents WHERE parent_id = ? ORDER BY created_at ASC", (parent_id,)
            ).fetchall()
        return [AgentRecord(**dict(row)) for row in rows]

    def get_active_agents(self) -> List[AgentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agents WHERE status = ? ORDER BY created_at DESC", (AgentStatus.ACTIVE.value,)
            ).fetchall()
        return [AgentRecord(**dict(row)) for row in rows]

    # Conversations

    def save_conversation(self, record: ConversationRecord) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO conversations (id, agent_id, parent_id, backend_id, role, content, timestamp, tokens_used, cost)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id, record.agent_id, record.parent_id, record.backend_id,
                    record.role.value, record.content, record.timestamp,
                    record.tokens_used, record.cost
                ))
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to store conversation message: {e}")
            return False

    def get_conversation_history(self, agent_id: str, limit: int = 100) -> List[ConversationRecord]:
        """Messages of an agent and of the agents it spawned, newest first."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM conversations
                WHERE agent_id = ? OR parent_id = ?
                ORDER BY timestamp DESC
                LIMIT ?
            """, (agent_id, agent_id, limit)).fetchall()
        return [ConversationRecord(**dict(row)) for row in rows]

    def get_all_conversations(self, limit: int = 50) -> List[ConversationRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM conversations ORDER BY timestamp DESC LIMIT ?", (limit,)
            ).fetchall()
        return [ConversationRecord(**dict(row)) for row in rows]

    # Documents

    def save_document(self, record: DocumentRecord) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO documents (id, task_id, type, title, content, format, created_at, tags)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id, record.task_id, record.type, record.title, record.content,
                    record.format, record.created_at, json.dumps(record.tags)
                ))
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to store document for task {record.task_id}: {e}")
            return False

    def get_documents(self, task_id: str) -> List[DocumentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE task_id = ? ORDER BY created_at DESC", (task_id,)
            ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def search_documents(self, query: str, limit: int = 20) -> List[DocumentRecord]:
        pattern = f"%{query}%"
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM documents
                WHERE title LIKE ? OR content LIKE ? OR tags LIKE ?
                ORDER BY created_at DESC
                LIMIT ?
            """, (pattern, pattern, pattern, limit)).fetchall()
        return [self._row_to_document(row) for row in rows]

    def _row_to_document(self, row: sqlite3.Row) -> DocumentRecord:
        data = dict(row)
        data["tags"] = json.loads(data["tags"]) if data.get("tags") else []
        return DocumentRecord(**data)

    # Prompts

    def save_prompt(self, record: PromptRecord) -> bool:
        """Insert a prompt or update the existing one with the same name."""
        now = time.time()
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO prompts (id, name, category, content, variables, description, usage_count, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        category = excluded.category,
                        content = excluded.content,
                        variables = excluded.variables,
                        description = excluded.description,
                        updated_at = excluded.updated_at
                """, (
                    record.id, record.name, record.category, record.content,
                    json.dumps(record.variables), record.description, now, now
                ))
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to store prompt {record.name}: {e}")
            return False

    def get_prompt(self, name: str, count_usage: bool = True) -> Optional[PromptRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM prompts WHERE name = ?", (name,)).fetchone()
            if row and count_usage:
                conn.execute("UPDATE prompts SET usage_count = usage_count + 1 WHERE name = ?", (name,))
        return self._row_to_prompt(row) if row else None

    def list_prompts(self, category: Optional[str] = None) -> List[PromptRecord]:
        with self._connect() as conn:
            if category:
                rows = conn.execute(
                    "SELECT * FROM prompts WHERE category = ? ORDER BY usage_count DESC", (category,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM prompts ORDER BY usage_count DESC").fetchall()
        return [self._row_to_prompt(row) for row in rows]

    def search_prompts(self, query: str, limit: int = 20) -> List[PromptRecord]:
        pattern = f"%{query}%"
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM prompts
                WHERE name LIKE ? OR description LIKE ? OR content LIKE ?
                ORDER BY usage_count DESC
                LIMIT ?
            """, (pattern, pattern, pattern, limit)).fetchall()
        return [self._row_to_prompt(row) for row in rows]

    def delete_prompt(self, name: str) -> bool:
        """Delete a prompt by name. Returns True if it existed."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM prompts WHERE name = ?", (name,))
        return cursor.rowcount > 0

    def _row_to_prompt(self, row: sqlite3.Row) -> PromptRecord:
        data = dict(row)
        data["variables"] = json.loads(data["variables"]) if data.get("variables") else []
        return PromptRecord(**data)

    # Statistics

    def get_stats(self) -> StoreStats:
        with self._connect() as conn:
            def count(table: str) -> int:
                return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

            usage_rows = conn.execute("""
                SELECT backend_id, COUNT(*) AS agent_count FROM agents
                WHERE backend_id IS NOT NULL
                GROUP BY backend_id
            """).fetchall()

            return StoreStats(
                total_conversations=count("conversations"),
                total_documents=count("documents"),
                total_prompts=count("prompts"),
                total_agents=count("agents"),
                backend_usage={row["backend_id"]: row["agent_count"] for row in usage_rows}
            )
