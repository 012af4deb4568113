"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from task_orchestrator.storage.lifecycle import (
    COMPLETING_TASK_STATUSES,
    check_step_edges,
    check_task_edges,
)
from task_orchestrator.storage.models import (
    AgentLogRecord,
    LogLevel,
    PlannedStep,
    StepRecord,
    StepStatus,
    TaskPriority,
    TaskRecord,
    TaskResultRecord,
    TaskStatus,
    ToolUsageRecord,
)


class PostgresTaskStorage:
    """Persist tasks, plans and audit records in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("TASK_ORCHESTRATOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id UUID PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    completed_at TIMESTAMPTZ
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_steps (
                    step_id UUID PRIMARY KEY,
                    task_id UUID NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    step_number INTEGER NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL,
                    tool_hints JSONB NOT NULL DEFAULT '[]'::jsonb,
                    estimated_seconds INTEGER,
                    result_json JSONB,
                    created_at TIMESTAMPTZ NOT NULL,
                    started_at TIMESTAMPTZ,
                    completed_at TIMESTAMPTZ,
                    UNIQUE (task_id, step_number)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_results (
                    task_id UUID PRIMARY KEY REFERENCES tasks(task_id) ON DELETE CASCADE,
                    content TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    metadata_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agent_logs (
                    log_id UUID PRIMARY KEY,
                    task_id UUID NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    step_id UUID,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details_json JSONB,
                    agent_type TEXT,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agent_logs_task_id
                ON agent_logs(task_id, created_at)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tool_usages (
                    usage_id UUID PRIMARY KEY,
                    task_id UUID NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    step_id UUID,
                    tool_name TEXT NOT NULL,
                    command_json JSONB NOT NULL,
                    started_at TIMESTAMPTZ NOT NULL,
                    ended_at TIMESTAMPTZ,
                    success BOOLEAN,
                    output_json JSONB,
                    error TEXT
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tool_usages_task_id
                ON tool_usages(task_id, started_at)
                """)
            conn.commit()

    def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> TaskRecord:
        task_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO tasks (
                    task_id, title, description, status, priority, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    task_id,
                    title,
                    description,
                    TaskStatus.PENDING.value,
                    TaskPriority(priority).value,
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist task")
        return self._row_to_task(row)

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id::text = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self) -> list[TaskRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC").fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_task_fields(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: TaskPriority | None = None,
    ) -> TaskRecord:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tasks
                SET title = COALESCE(%s, title),
                    description = COALESCE(%s, description),
                    priority = COALESCE(%s, priority),
                    updated_at = %s
                WHERE task_id::text = %s
                RETURNING *
                """,
                (
                    title,
                    description,
                    TaskPriority(priority).value if priority is not None else None,
                    datetime.now(tz=UTC),
                    task_id,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise KeyError(f"Task {task_id} does not exist")
        return self._row_to_task(row)

    def delete_task(self, task_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE task_id::text = %s", (task_id,))
            conn.commit()
        return cursor.rowcount > 0

    def transition_task(
        self,
        task_id: str,
        *,
        to_status: TaskStatus,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        check_task_edges(from_statuses, to_status)
        with self._lock, self._connect() as conn:
            row = self._transition_task_row(conn, task_id, to_status, from_statuses)
            conn.commit()
        return self._row_to_task(row) if row is not None else None

    def cancel_task(
        self,
        task_id: str,
        *,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        check_task_edges(from_statuses, TaskStatus.FAILED)
        with self._lock, self._connect() as conn:
            row = self._transition_task_row(conn, task_id, TaskStatus.FAILED, from_statuses)
            if row is None:
                conn.rollback()
                return None
            conn.execute(
                """
                UPDATE task_steps
                SET status = %s, completed_at = %s
                WHERE task_id::text = %s AND status = %s
                """,
                (
                    StepStatus.FAILED.value,
                    datetime.now(tz=UTC),
                    task_id,
                    StepStatus.IN_PROGRESS.value,
                ),
            )
            conn.commit()
        return self._row_to_task(row)

    def replace_steps(self, task_id: str, steps: list[PlannedStep]) -> list[StepRecord]:
        now = datetime.now(tz=UTC)
        rows: list[Any] = []
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM task_steps WHERE task_id::text = %s", (task_id,))
            for index, planned in enumerate(steps, start=1):
                row = conn.execute(
                    """
                    INSERT INTO task_steps (
                        step_id, task_id, step_number, description, status,
                        tool_hints, estimated_seconds, created_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        uuid.uuid4(),
                        task_id,
                        index,
                        planned.description,
                        StepStatus.PENDING.value,
                        self._json_wrapper(list(planned.tool_hints)),
                        planned.estimated_seconds,
                        now,
                    ),
                ).fetchone()
                rows.append(row)
            conn.commit()
        return [self._row_to_step(row) for row in rows]

    def list_steps(self, task_id: str) -> list[StepRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM task_steps
                WHERE task_id::text = %s
                ORDER BY step_number ASC
                """,
                (task_id,),
            ).fetchall()
        return [self._row_to_step(row) for row in rows]

    def transition_step(
        self,
        step_id: str,
        *,
        to_status: StepStatus,
        from_statuses: frozenset[StepStatus],
        result: Any = None,
        task_status_guard: TaskStatus | None = None,
    ) -> StepRecord | None:
        check_step_edges(from_statuses, to_status)
        now = datetime.now(tz=UTC)
        started_at = now if to_status == StepStatus.IN_PROGRESS else None
        completed_at = None if to_status == StepStatus.IN_PROGRESS else now
        guard_sql = ""
        params: list[Any] = [
            to_status.value,
            started_at,
            completed_at,
            self._json_wrapper(result) if result is not None else None,
            step_id,
            [status.value for status in from_statuses],
        ]
        if task_status_guard is not None:
            guard_sql = """
                  AND EXISTS (
                      SELECT 1 FROM tasks
                      WHERE tasks.task_id = task_steps.task_id AND tasks.status = %s
                      FOR SHARE
                  )
            """
            params.append(task_status_guard.value)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE task_steps
                SET status = %s,
                    started_at = COALESCE(%s, started_at),
                    completed_at = COALESCE(%s, completed_at),
                    result_json = COALESCE(%s, result_json)
                WHERE step_id::text = %s
                  AND status = ANY(%s)
                  {guard_sql}
                RETURNING *
                """,
                tuple(params),
            ).fetchone()
            conn.commit()
        return self._row_to_step(row) if row is not None else None

    def save_task_result(
        self,
        task_id: str,
        *,
        content: str,
        content_type: str = "application/json",
        metadata: dict[str, Any] | None = None,
    ) -> TaskResultRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO task_results (
                    task_id, content, content_type, metadata_json, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (task_id) DO UPDATE
                SET content = EXCLUDED.content,
                    content_type = EXCLUDED.content_type,
                    metadata_json = EXCLUDED.metadata_json,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
                """,
                (task_id, content, content_type, self._json_wrapper(metadata or {}), now, now),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist task result")
        return self._row_to_result(row)

    def get_task_result(self, task_id: str) -> TaskResultRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM task_results WHERE task_id::text = %s",
                (task_id,),
            ).fetchone()
        return self._row_to_result(row) if row is not None else None

    def append_log(
        self,
        *,
        task_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        step_id: str | None = None,
        details: dict[str, Any] | None = None,
        agent_type: str | None = None,
    ) -> AgentLogRecord:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO agent_logs (
                    log_id, task_id, step_id, level, message, details_json, agent_type, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid.uuid4(),
                    task_id,
                    step_id,
                    LogLevel(level).value,
                    message,
                    self._json_wrapper(details) if details is not None else None,
                    agent_type,
                    datetime.now(tz=UTC),
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist agent log")
        return self._row_to_log(row)

    def list_logs(self, task_id: str) -> list[AgentLogRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM agent_logs
                WHERE task_id::text = %s
                ORDER BY created_at ASC
                """,
                (task_id,),
            ).fetchall()
        return [self._row_to_log(row) for row in rows]

    def start_tool_usage(
        self,
        *,
        task_id: str,
        tool_name: str,
        command: dict[str, Any],
        step_id: str | None = None,
        started_at: datetime | None = None,
    ) -> ToolUsageRecord:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO tool_usages (
                    usage_id, task_id, step_id, tool_name, command_json, started_at
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid.uuid4(),
                    task_id,
                    step_id,
                    tool_name,
                    self._json_wrapper(command),
                    started_at or datetime.now(tz=UTC),
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist tool usage")
        return self._row_to_tool_usage(row)

    def finish_tool_usage(
        self,
        usage_id: str,
        *,
        success: bool,
        output: Any = None,
        error: str | None = None,
    ) -> ToolUsageRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tool_usages
                SET ended_at = %s, success = %s, output_json = %s, error = %s
                WHERE usage_id::text = %s AND ended_at IS NULL
                RETURNING *
                """,
                (
                    datetime.now(tz=UTC),
                    success,
                    self._json_wrapper(output) if output is not None else None,
                    error,
                    usage_id,
                ),
            ).fetchone()
            conn.commit()
        return self._row_to_tool_usage(row) if row is not None else None

    def list_tool_usages(self, task_id: str) -> list[ToolUsageRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tool_usages
                WHERE task_id::text = %s
                ORDER BY started_at ASC
                """,
                (task_id,),
            ).fetchall()
        return [self._row_to_tool_usage(row) for row in rows]

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _transition_task_row(
        conn: Any,
        task_id: str,
        to_status: TaskStatus,
        from_statuses: frozenset[TaskStatus],
    ) -> Any:
        now = datetime.now(tz=UTC)
        completed_at = now if to_status in COMPLETING_TASK_STATUSES else None
        return conn.execute(
            """
            UPDATE tasks
            SET status = %s,
                updated_at = %s,
                completed_at = COALESCE(%s, completed_at)
            WHERE task_id::text = %s AND status = ANY(%s)
            RETURNING *
            """,
            (
                to_status.value,
                now,
                completed_at,
                task_id,
                [status.value for status in from_statuses],
            ),
        ).fetchone()

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime | None:
        if raw is None:
            return None
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        return TaskRecord(
            task_id=str(row["task_id"]),
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            priority=TaskPriority(row["priority"]),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
            completed_at=cls._parse_datetime(row["completed_at"]),
        )

    @classmethod
    def _row_to_step(cls, row: Any) -> StepRecord:
        return StepRecord(
            step_id=str(row["step_id"]),
            task_id=str(row["task_id"]),
            step_number=int(row["step_number"]),
            description=row["description"],
            status=StepStatus(row["status"]),
            tool_hints=list(cls._parse_json(row["tool_hints"]) or []),
            estimated_seconds=row["estimated_seconds"],
            result=cls._parse_json(row["result_json"]),
            created_at=cls._parse_datetime(row["created_at"]),
            started_at=cls._parse_datetime(row["started_at"]),
            completed_at=cls._parse_datetime(row["completed_at"]),
        )

    @classmethod
    def _row_to_result(cls, row: Any) -> TaskResultRecord:
        return TaskResultRecord(
            task_id=str(row["task_id"]),
            content=row["content"],
            content_type=row["content_type"],
            metadata=cls._parse_json(row["metadata_json"]) or {},
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_log(cls, row: Any) -> AgentLogRecord:
        return AgentLogRecord(
            log_id=str(row["log_id"]),
            task_id=str(row["task_id"]),
            step_id=str(row["step_id"]) if row["step_id"] is not None else None,
            level=LogLevel(row["level"]),
            message=row["message"],
            details=cls._parse_json(row["details_json"]),
            agent_type=row["agent_type"],
            timestamp=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_tool_usage(cls, row: Any) -> ToolUsageRecord:
        return ToolUsageRecord(
            usage_id=str(row["usage_id"]),
            task_id=str(row["task_id"]),
            step_id=str(row["step_id"]) if row["step_id"] is not None else None,
            tool_name=row["tool_name"],
            command=cls._parse_json(row["command_json"]) or {},
            started_at=cls._parse_datetime(row["started_at"]),
            ended_at=cls._parse_datetime(row["ended_at"]),
            success=row["success"],
            output=cls._parse_json(row["output_json"]),
            error=row["error"],
        )
