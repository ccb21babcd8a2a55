"""
Versioned Record Store on SQLite

Provides append-only version storage for projects, tasks and documents plus
the task dependency and board position tables. Every edit appends a row; the
previous row is retired in the same transaction so exactly one row per entity
is current at any time.
"""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import ConflictError
from .pagination import CursorData

POSITION_STEP = 1000.0


@dataclass(frozen=True)
class VersionedTable:
    """Static description of one versioned entity table."""

    name: str
    id_column: str
    columns: Tuple[str, ...]
    label: str

    @property
    def all_columns(self) -> Tuple[str, ...]:
        return (self.id_column, "version") + self.columns + (
            "is_current", "created_by_user_id", "created_at", "deleted_at"
        )


PROJECTS = VersionedTable(
    "projects", "project_id", ("organization_id", "key", "name", "body"), "Project"
)
TASKS = VersionedTable(
    "tasks",
    "task_id",
    ("organization_id", "project_id", "key", "title", "type", "status", "priority", "epic_key", "body"),
    "Task",
)
DOCUMENTS = VersionedTable(
    "documents", "document_id", ("organization_id", "project_id", "key", "title", "body"), "Document"
)


def utc_now() -> str:
    """Fixed-width UTC timestamp; string order equals time order."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class LedgerDatabase:
    """
    SQLite store for versioned entities and the task dependency graph.

    Features:
    - WAL mode for concurrent readers alongside a writer
    - Re-entrant connection lock for thread safety within one process
    - BEGIN IMMEDIATE transactions that serialize writers across processes
    - Partial unique indexes enforcing one current row per entity and key
    """

    def __init__(self, db_path: str):
        """
        Open (and if needed create) the ledger database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._transaction_depth = 0

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self, drop_existing: bool = False) -> None:
        """Open the connection, configure pragmas and create the schema.

        Args:
            drop_existing: If True, drops all existing tables first
        """
        try:
            # Autocommit mode; transactions are opened explicitly
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False,
            )
            self._connection.row_factory = sqlite3.Row

            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")

            if drop_existing:
                self._drop_existing_tables()
            self._create_schema()

        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize database at {self.db_path}: {e}")

    def _create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        cursor = self._connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                organization_id TEXT NOT NULL,
                key TEXT NOT NULL,
                name TEXT NOT NULL,
                body TEXT NOT NULL DEFAULT '',
                is_current INTEGER NOT NULL DEFAULT 1,
                created_by_user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                deleted_at TEXT NULL,
                PRIMARY KEY (project_id, version)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                task_id TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                organization_id TEXT NOT NULL,
                project_id TEXT NOT NULL,
                key TEXT NOT NULL,
                title TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'task',
                status TEXT,
                priority INTEGER,
                epic_key TEXT,
                body TEXT NOT NULL DEFAULT '',
                is_current INTEGER NOT NULL DEFAULT 1,
                created_by_user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                deleted_at TEXT NULL,
                PRIMARY KEY (task_id, version),
                CONSTRAINT tasks_type_check CHECK (type IN ('task', 'epic')),
                CONSTRAINT tasks_status_check CHECK (
                    (type = 'epic' AND status IS NULL)
                    OR (type = 'task' AND status IN ('open', 'in_progress', 'closed'))
                ),
                CONSTRAINT tasks_priority_check CHECK (
                    priority IS NULL OR (priority >= 0 AND priority <= 3)
                )
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                document_id TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                organization_id TEXT NOT NULL,
                project_id TEXT NOT NULL,
                key TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT NOT NULL DEFAULT '',
                is_current INTEGER NOT NULL DEFAULT 1,
                created_by_user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                deleted_at TEXT NULL,
                PRIMARY KEY (document_id, version)
            )
        """)

        # Edges are never reused: a dependency update retires the old set
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS task_dependencies (
                edge_id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id TEXT NOT NULL,
                depends_on_task_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                deleted_at TEXT NULL,
                CONSTRAINT task_deps_no_self_ref CHECK (task_id != depends_on_task_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS task_positions (
                task_id TEXT PRIMARY KEY,
                position REAL NOT NULL DEFAULT 0
            )
        """)

        # Current-version invariant and per-organization key uniqueness
        for table in (PROJECTS, TASKS, DOCUMENTS):
            cursor.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {table.name}_current_unique
                ON {table.name} ({table.id_column})
                WHERE is_current = 1 AND deleted_at IS NULL
            """)
            cursor.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {table.name}_org_key_unique
                ON {table.name} (organization_id, key)
                WHERE is_current = 1 AND deleted_at IS NULL
            """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_projects_org_created
            ON projects (organization_id, created_at DESC, project_id DESC)
            WHERE is_current = 1 AND deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_project_status
            ON tasks (project_id, status)
            WHERE is_current = 1 AND deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_epic_key
            ON tasks (epic_key)
            WHERE is_current = 1 AND deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_project
            ON documents (project_id, created_at DESC)
            WHERE is_current = 1 AND deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_task_deps_live_pair
            ON task_dependencies (task_id, depends_on_task_id)
            WHERE deleted_at IS NULL
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_task_deps_depends_on
            ON task_dependencies (depends_on_task_id)
            WHERE deleted_at IS NULL
        """)

    def _drop_existing_tables(self) -> None:
        cursor = self._connection.cursor()
        cursor.execute("DROP TABLE IF EXISTS task_positions")
        cursor.execute("DROP TABLE IF EXISTS task_dependencies")
        cursor.execute("DROP TABLE IF EXISTS documents")
        cursor.execute("DROP TABLE IF EXISTS tasks")
        cursor.execute("DROP TABLE IF EXISTS projects")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run a block inside one write transaction.

        BEGIN IMMEDIATE takes the database write lock up front, so a
        read-validate-write sequence cannot interleave with another writer.
        Nested calls join the outermost transaction; it commits when the
        outermost block exits and rolls back if any block raises.
        """
        with self._connection_lock:
            cursor = self._connection.cursor()
            if self._transaction_depth > 0:
                self._transaction_depth += 1
                try:
                    yield cursor
                finally:
                    self._transaction_depth -= 1
                return

            cursor.execute("BEGIN IMMEDIATE")
            self._transaction_depth = 1
            try:
                yield cursor
                cursor.execute("COMMIT")
            except BaseException:
                cursor.execute("ROLLBACK")
                raise
            finally:
                self._transaction_depth = 0

    def _fetch_one(self, sql: str, params: Iterable[Any]) -> Optional[Dict[str, Any]]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(sql, tuple(params))
            row = cursor.fetchone()
            return dict(row) if row else None

    def _fetch_all(self, sql: str, params: Iterable[Any]) -> List[Dict[str, Any]]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]

    # Versioned entity operations

    def _insert_row(self, cursor: sqlite3.Cursor, table: VersionedTable, row: Dict[str, Any]) -> None:
        columns = table.all_columns
        placeholders = ", ".join("?" for _ in columns)
        try:
            cursor.execute(
                f"INSERT INTO {table.name} ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(row[column] for column in columns),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ConflictError(f"{table.label} key {row['key']} is already in use")
            raise

    def insert_first_version(
        self, table: VersionedTable, fields: Dict[str, Any], user_id: str
    ) -> Dict[str, Any]:
        """
        Create a new entity at version 1.

        Args:
            table: Target versioned table
            fields: Values for every column in table.columns
            user_id: Acting user recorded on the row

        Returns:
            The inserted row as a dict

        Raises:
            ConflictError: If the key is taken by another current entity
        """
        row = {column: fields.get(column) for column in table.columns}
        row[table.id_column] = str(uuid.uuid4())
        row["version"] = 1
        row["is_current"] = 1
        row["created_by_user_id"] = user_id
        row["created_at"] = utc_now()
        row["deleted_at"] = None

        with self.transaction() as cursor:
            self._insert_row(cursor, table, row)
        return row

    def append_version(
        self,
        table: VersionedTable,
        current: Dict[str, Any],
        changes: Dict[str, Any],
        user_id: str,
        deleted: bool = False,
    ) -> Dict[str, Any]:
        """
        Retire the current row of an entity and insert its successor.

        Unspecified fields are carried forward from `current`. With
        `deleted=True` the successor is the terminal version: it keeps the
        prior field values, has deleted_at set and is not current.

        Args:
            table: Target versioned table
            current: The entity's current row as returned by this store
            changes: Column overrides for the new version
            user_id: Acting user recorded on the new row
            deleted: Append a terminal deleted version instead of an update

        Returns:
            The new row as a dict

        Raises:
            ConflictError: If `current` was retired by another writer
        """
        unknown = set(changes) - set(table.columns)
        if unknown:
            raise ValueError(f"Unknown {table.label.lower()} fields: {sorted(unknown)}")

        now = utc_now()
        row = {column: current[column] for column in table.columns}
        row.update(changes)
        row[table.id_column] = current[table.id_column]
        row["version"] = current["version"] + 1
        row["is_current"] = 0 if deleted else 1
        row["created_by_user_id"] = user_id
        row["created_at"] = now
        row["deleted_at"] = now if deleted else None

        with self.transaction() as cursor:
            cursor.execute(
                f"""
                UPDATE {table.name} SET is_current = 0
                WHERE {table.id_column} = ? AND version = ? AND is_current = 1
                  AND deleted_at IS NULL
                """,
                (current[table.id_column], current["version"]),
            )
            if cursor.rowcount != 1:
                raise ConflictError(
                    f"{table.label} {current['key']} was modified concurrently; reload and retry"
                )
            self._insert_row(cursor, table, row)
        return row

    def get_current_by_key(
        self, table: VersionedTable, organization_id: str, key: str
    ) -> Optional[Dict[str, Any]]:
        """Return the current row with this key in the organization, if any."""
        return self._fetch_one(
            f"""
            SELECT * FROM {table.name}
            WHERE organization_id = ? AND key = ? AND is_current = 1 AND deleted_at IS NULL
            """,
            (organization_id, key),
        )

    def get_current_by_id(self, table: VersionedTable, entity_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"""
            SELECT * FROM {table.name}
            WHERE {table.id_column} = ? AND is_current = 1 AND deleted_at IS NULL
            """,
            (entity_id,),
        )

    def key_in_use(self, table: VersionedTable, organization_id: str, key: str) -> bool:
        return self.get_current_by_key(table, organization_id, key) is not None

    def find_entity_id(self, table: VersionedTable, organization_id: str, key: str) -> Optional[str]:
        """
        Resolve a key to an entity id, including deleted entities.

        When a key was reused after deletion the most recently written
        entity wins.
        """
        row = self._fetch_one(
            f"""
            SELECT {table.id_column} AS entity_id FROM {table.name}
            WHERE organization_id = ? AND key = ?
            ORDER BY created_at DESC, version DESC
            LIMIT 1
            """,
            (organization_id, key),
        )
        return row["entity_id"] if row else None

    def list_versions(self, table: VersionedTable, entity_id: str) -> List[Dict[str, Any]]:
        """Return every version of an entity, newest first."""
        return self._fetch_all(
            f"SELECT * FROM {table.name} WHERE {table.id_column} = ? ORDER BY version DESC",
            (entity_id,),
        )

    # Listings (seek pagination on created_at DESC, id DESC)

    def list_current_projects(
        self, organization_id: str, after: Optional[CursorData], limit: int
    ) -> List[Dict[str, Any]]:
        """
        Return up to `limit` current projects older than the cursor.

        Args:
            organization_id: Organization scope
            after: Sort key of the last row of the previous page
            limit: Maximum rows to return
        """
        cursor_at, cursor_id = after if after else (None, None)
        return self._fetch_all(
            """
            SELECT * FROM projects
            WHERE organization_id = ? AND is_current = 1 AND deleted_at IS NULL
              AND (? IS NULL OR (created_at, project_id) < (?, ?))
            ORDER BY created_at DESC, project_id DESC
            LIMIT ?
            """,
            (organization_id, cursor_at, cursor_at, cursor_id, limit),
        )

    def list_current_tasks(
        self,
        project_id: str,
        organization_id: str,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        epic_key: Optional[str] = None,
        after: Optional[CursorData] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """
        Return up to `limit` current tasks of a project older than the cursor.

        Args:
            project_id: Project scope
            organization_id: Organization scope
            status: Optional status filter
            task_type: Optional type filter ("task" or "epic")
            epic_key: Optional parent epic filter
            after: Sort key of the last row of the previous page
            limit: Maximum rows to return
        """
        cursor_at, cursor_id = after if after else (None, None)
        return self._fetch_all(
            """
            SELECT t.*, p.position AS position
            FROM tasks t
            LEFT JOIN task_positions p ON p.task_id = t.task_id
            WHERE t.project_id = ? AND t.organization_id = ?
              AND t.is_current = 1 AND t.deleted_at IS NULL
              AND (? IS NULL OR t.status = ?)
              AND (? IS NULL OR t.type = ?)
              AND (? IS NULL OR t.epic_key = ?)
              AND (? IS NULL OR (t.created_at, t.task_id) < (?, ?))
            ORDER BY t.created_at DESC, t.task_id DESC
            LIMIT ?
            """,
            (
                project_id, organization_id,
                status, status,
                task_type, task_type,
                epic_key, epic_key,
                cursor_at, cursor_at, cursor_id,
                limit,
            ),
        )

    def list_current_documents(
        self, project_id: str, organization_id: str, after: Optional[CursorData], limit: int
    ) -> List[Dict[str, Any]]:
        cursor_at, cursor_id = after if after else (None, None)
        return self._fetch_all(
            """
            SELECT * FROM documents
            WHERE project_id = ? AND organization_id = ?
              AND is_current = 1 AND deleted_at IS NULL
              AND (? IS NULL OR (created_at, document_id) < (?, ?))
            ORDER BY created_at DESC, document_id DESC
            LIMIT ?
            """,
            (project_id, organization_id, cursor_at, cursor_at, cursor_id, limit),
        )

    def load_project_tasks(self, project_id: str, organization_id: str) -> List[Dict[str, Any]]:
        """Return every current task and epic of a project (graph snapshot nodes)."""
        return self._fetch_all(
            """
            SELECT t.*, p.position AS position
            FROM tasks t
            LEFT JOIN task_positions p ON p.task_id = t.task_id
            WHERE t.project_id = ? AND t.organization_id = ?
              AND t.is_current = 1 AND t.deleted_at IS NULL
            ORDER BY t.created_at ASC, t.task_id ASC
            """,
            (project_id, organization_id),
        )

    def list_board_tasks(self, project_id: str, organization_id: str) -> List[Dict[str, Any]]:
        """Return current plain tasks of a project ordered by board position."""
        return self._fetch_all(
            """
            SELECT t.*, p.position AS position
            FROM tasks t
            LEFT JOIN task_positions p ON p.task_id = t.task_id
            WHERE t.project_id = ? AND t.organization_id = ?
              AND t.type = 'task' AND t.is_current = 1 AND t.deleted_at IS NULL
            ORDER BY COALESCE(p.position, 0) ASC, t.created_at ASC, t.task_id ASC
            """,
            (project_id, organization_id),
        )

    def list_current_ids(self, table: VersionedTable, project_id: str) -> List[Dict[str, Any]]:
        """Return the current rows of a project-scoped table."""
        return self._fetch_all(
            f"""
            SELECT * FROM {table.name}
            WHERE project_id = ? AND is_current = 1 AND deleted_at IS NULL
            """,
            (project_id,),
        )

    # Dependency edges

    def load_project_edges(self, project_id: str, organization_id: str) -> List[Tuple[str, str]]:
        """
        Return live (task_id, depends_on_task_id) pairs whose dependent task
        is current in the project. The depended-on task may be deleted.
        """
        rows = self._fetch_all(
            """
            SELECT d.task_id, d.depends_on_task_id
            FROM task_dependencies d
            JOIN tasks t ON t.task_id = d.task_id
                AND t.is_current = 1 AND t.deleted_at IS NULL
            WHERE d.deleted_at IS NULL AND t.project_id = ? AND t.organization_id = ?
            ORDER BY d.task_id, d.depends_on_task_id
            """,
            (project_id, organization_id),
        )
        return [(row["task_id"], row["depends_on_task_id"]) for row in rows]

    def get_dependency_ids(self, task_ids: List[str]) -> Dict[str, List[str]]:
        """Map each task id to the ids of the tasks it currently depends on."""
        result: Dict[str, List[str]] = {task_id: [] for task_id in task_ids}
        if not task_ids:
            return result
        placeholders = ",".join("?" * len(task_ids))
        rows = self._fetch_all(
            f"""
            SELECT task_id, depends_on_task_id FROM task_dependencies
            WHERE deleted_at IS NULL AND task_id IN ({placeholders})
            ORDER BY edge_id
            """,
            task_ids,
        )
        for row in rows:
            result[row["task_id"]].append(row["depends_on_task_id"])
        return result

    def replace_dependencies(self, task_id: str, depends_on_ids: List[str]) -> None:
        """Soft-delete a task's outgoing edges and insert a fresh set."""
        now = utc_now()
        with self.transaction() as cursor:
            cursor.execute(
                """
                UPDATE task_dependencies SET deleted_at = ?
                WHERE task_id = ? AND deleted_at IS NULL
                """,
                (now, task_id),
            )
            cursor.executemany(
                """
                INSERT INTO task_dependencies (task_id, depends_on_task_id, created_at)
                VALUES (?, ?, ?)
                """,
                [(task_id, dep, now) for dep in depends_on_ids],
            )

    def soft_delete_edges(self, task_ids: List[str]) -> int:
        """Soft-delete every live edge touching the given tasks."""
        if not task_ids:
            return 0
        placeholders = ",".join("?" * len(task_ids))
        with self.transaction() as cursor:
            cursor.execute(
                f"""
                UPDATE task_dependencies SET deleted_at = ?
                WHERE deleted_at IS NULL
                  AND (task_id IN ({placeholders}) OR depends_on_task_id IN ({placeholders}))
                """,
                (utc_now(), *task_ids, *task_ids),
            )
            return cursor.rowcount

    # Board positions

    def next_position(self, project_id: str) -> float:
        row = self._fetch_one(
            """
            SELECT MAX(p.position) AS max_position
            FROM task_positions p
            JOIN tasks t ON t.task_id = p.task_id
                AND t.is_current = 1 AND t.deleted_at IS NULL
            WHERE t.project_id = ?
            """,
            (project_id,),
        )
        current_max = row["max_position"] if row and row["max_position"] is not None else 0.0
        return current_max + POSITION_STEP

    def set_position(self, task_id: str, position: float) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO task_positions (task_id, position) VALUES (?, ?)
                ON CONFLICT(task_id) DO UPDATE SET position = excluded.position
                """,
                (task_id, position),
            )

    def get_position(self, task_id: str) -> Optional[float]:
        row = self._fetch_one("SELECT position FROM task_positions WHERE task_id = ?", (task_id,))
        return row["position"] if row else None

    def delete_positions(self, task_ids: List[str]) -> None:
        if not task_ids:
            return
        placeholders = ",".join("?" * len(task_ids))
        with self.transaction() as cursor:
            cursor.execute(f"DELETE FROM task_positions WHERE task_id IN ({placeholders})", task_ids)

    # Lifecycle

    def ping(self) -> bool:
        """Run a trivial query to prove the connection works."""
        with self._connection_lock:
            self._connection.execute("SELECT 1").fetchone()
        return True

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def initialize_fresh(self) -> None:
        """Drop all tables and recreate the schema."""
        if self._connection:
            self.close()
        self._initialize_database(drop_existing=True)
