from __future__ import annotations

import asyncio
import base64
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Protocol

import duckdb

from .errors import SessionClosedError
from .models import CatalogState, CellExecutionError, CellExecutionResult, ExecutionTask, NotebookCell
from .naming import cell_view_names
from .sql_statements import SqlStatement, StatementCategory, StatementKind, split_sql_statements, validate_statements
from .utils import quote_identifier

logger = logging.getLogger(__name__)

MAX_PREVIEW_ROWS = 500
SUCCESS_QUERY = "SELECT 'All statements executed successfully' AS Result"
_TERMINAL = ("completed", "failed", "cancelled")


class AbortSignal(Protocol):
    def is_set(self) -> bool: ...


def _aborted(abort: AbortSignal | None) -> bool:
    return abort is not None and abort.is_set()


def _json_safe(value):
    """BLOB values come back as bytes; they are previewed base64-encoded."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _rollback(conn: duckdb.DuckDBPyConnection, cell_id: str) -> None:
    try:
        conn.execute("ROLLBACK")
    except duckdb.Error as e:
        logger.warning("rollback_failed", extra={"cell_id": cell_id, "error": str(e)})


def materialize_cell_views(
    conn: duckdb.DuckDBPyConnection,
    cell: NotebookCell,
    statements: list[SqlStatement],
) -> list[str]:
    """Expose the cell's last result as temp views named after the cell.

    Best effort: a cell that does not end in a selectable statement, or whose
    query cannot be wrapped in a view, simply gets no view.
    """
    if not statements or not statements[-1].is_selectable:
        return []

    body = statements[-1].code
    created: list[str] = []
    for name in cell_view_names(cell):
        try:
            conn.execute(f"CREATE OR REPLACE TEMP VIEW {quote_identifier(name)} AS ({body})")
        except duckdb.Error as e:
            logger.debug(
                "view_materialization_failed",
                extra={"cell_id": cell.cell_id, "view": name, "error": str(e)},
            )
            continue
        created.append(name)
    return created


def refresh_catalog(conn: duckdb.DuckDBPyConnection) -> CatalogState:
    databases = conn.execute(
        "SELECT DISTINCT database_name FROM duckdb_databases() WHERE NOT internal ORDER BY 1"
    ).fetchall()
    relations = conn.execute(
        """
        SELECT database_name || '.' || schema_name || '.' || table_name AS fqn
        FROM duckdb_tables() WHERE NOT temporary
        UNION
        SELECT database_name || '.' || schema_name || '.' || view_name AS fqn
        FROM duckdb_views() WHERE NOT internal AND NOT temporary
        ORDER BY fqn
        """
    ).fetchall()
    return CatalogState(databases=[r[0] for r in databases], relations=[r[0] for r in relations])


def _changes_catalog(statements: list[SqlStatement]) -> bool:
    return any(
        s.category is StatementCategory.DDL or s.kind in (StatementKind.ATTACH, StatementKind.DETACH)
        for s in statements
    )


def execute_cell_sql(
    conn: duckdb.DuckDBPyConnection,
    cell: NotebookCell,
    *,
    abort: AbortSignal | None = None,
    catalog: CatalogState | None = None,
    protected_views: Iterable[str] = (),
) -> CellExecutionResult:
    """Run one cell's statements on ``conn`` and report the outcome.

    Multi-statement cells that modify data run in a transaction; a failing
    statement or an abort rolls back that transaction only. ``abort`` is
    checked before every statement and before committing.
    """
    start = time.perf_counter()
    catalog = catalog or CatalogState()

    def _result(status: str, **kwargs) -> CellExecutionResult:
        kwargs.setdefault("catalog", catalog)
        return CellExecutionResult(
            cell_id=cell.cell_id,
            status=status,
            duration_ms=int((time.perf_counter() - start) * 1000),
            **kwargs,
        )

    def _cancelled() -> CellExecutionResult:
        if in_transaction:
            _rollback(conn, cell.cell_id)
        logger.info("cell_execution_cancelled", extra={"cell_id": cell.cell_id})
        return _result("cancelled", error=CellExecutionError(message="Execution cancelled"))

    statements = split_sql_statements(cell.content)
    if not statements:
        return _result("completed")

    errors = validate_statements(statements, protected_views)
    if errors:
        return _result("failed", error=CellExecutionError(message="\n".join(errors)))

    needs_transaction = len(statements) > 1 and any(s.needs_transaction for s in statements)
    in_transaction = False

    if _aborted(abort):
        return _cancelled()

    if needs_transaction:
        conn.execute("BEGIN TRANSACTION")
        in_transaction = True

    last = statements[-1]
    columns: list[str] = []
    rows: list[list] = []
    truncated = False

    for stmt in statements:
        if _aborted(abort):
            return _cancelled()
        try:
            result = conn.execute(stmt.code)
            if stmt is last and stmt.is_selectable and result.description:
                columns = [d[0] for d in result.description]
                fetched = result.fetchmany(MAX_PREVIEW_ROWS + 1)
                truncated = len(fetched) > MAX_PREVIEW_ROWS
                rows = [[_json_safe(v) for v in r] for r in fetched[:MAX_PREVIEW_ROWS]]
        except duckdb.Error as e:
            if in_transaction:
                _rollback(conn, cell.cell_id)
            err = CellExecutionError(
                message=str(e),
                line_number=stmt.line_number,
                statement_index=stmt.statement_index + 1,
                statement_kind=stmt.kind.value,
            )
            logger.info(
                "cell_execution_failed",
                extra={"cell_id": cell.cell_id, "statement_index": err.statement_index},
            )
            return _result("failed", error=err)

    if _aborted(abort):
        return _cancelled()

    if in_transaction:
        try:
            conn.execute("COMMIT")
        except duckdb.Error as e:
            _rollback(conn, cell.cell_id)
            return _result("failed", error=CellExecutionError(message=str(e)))

    views = materialize_cell_views(conn, cell, statements)

    if _changes_catalog(statements):
        catalog = refresh_catalog(conn)

    return _result(
        "completed",
        last_query=last.code if last.is_selectable else SUCCESS_QUERY,
        columns=columns,
        rows=rows,
        truncated=truncated,
        views_created=views,
        catalog=catalog,
    )


class NotebookSession:
    """One shared connection per notebook.

    Temp views only exist on the connection that created them, so every cell
    of a notebook runs here, one at a time.
    """

    def __init__(self, notebook_id: str, conn: duckdb.DuckDBPyConnection) -> None:
        self.notebook_id = notebook_id
        self._conn = conn
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def execute_cell(
        self,
        cell: NotebookCell,
        *,
        abort: AbortSignal | None = None,
        catalog: CatalogState | None = None,
        protected_views: Iterable[str] = (),
    ) -> CellExecutionResult:
        async with self._lock:
            if self._closed:
                raise SessionClosedError(f"Session closed: {self.notebook_id}")
            return await asyncio.to_thread(
                execute_cell_sql,
                self._conn,
                cell,
                abort=abort,
                catalog=catalog,
                protected_views=tuple(protected_views),
            )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._conn.close()


class ExecutionManager:
    def __init__(
        self,
        *,
        database: str = ":memory:",
        connect: Callable[[str], duckdb.DuckDBPyConnection] = duckdb.connect,
    ) -> None:
        self._database = database
        self._connect = connect
        self._sessions: dict[str, NotebookSession] = {}
        self._tasks: dict[str, ExecutionTask] = {}
        self._aborts: dict[str, threading.Event] = {}
        self._runners: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def session(self, notebook_id: str) -> NotebookSession:
        s = self._sessions.get(notebook_id)
        if s is None or s.is_closed:
            s = NotebookSession(notebook_id, self._connect(self._database))
            self._sessions[notebook_id] = s
        return s

    async def submit_execution(
        self,
        notebook_id: str,
        cell: NotebookCell,
        *,
        catalog: CatalogState | None = None,
        protected_views: Iterable[str] = (),
    ) -> str:
        execution_id = uuid.uuid4().hex
        now = datetime.now(UTC)
        task = ExecutionTask(
            execution_id=execution_id,
            notebook_id=notebook_id,
            cell_id=cell.cell_id,
            status="pending",
            created_at=now,
            updated_at=now,
        )

        async with self._lock:
            self._tasks[execution_id] = task
            abort = threading.Event()
            self._aborts[execution_id] = abort
            session = self.session(notebook_id)
            self._runners[execution_id] = asyncio.create_task(
                self._run(task, session, cell, abort, catalog, tuple(protected_views))
            )

        logger.info(
            "execution_submitted",
            extra={"execution_id": execution_id, "notebook_id": notebook_id, "cell_id": cell.cell_id},
        )
        return execution_id

    async def _run(
        self,
        task: ExecutionTask,
        session: NotebookSession,
        cell: NotebookCell,
        abort: threading.Event,
        catalog: CatalogState | None,
        protected_views: tuple[str, ...],
    ) -> None:
        task.status = "running"
        task.updated_at = datetime.now(UTC)
        try:
            result = await session.execute_cell(
                cell,
                abort=abort,
                catalog=catalog,
                protected_views=protected_views,
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("execution_crashed", extra={"execution_id": task.execution_id})
            if task.status not in _TERMINAL:
                task.status = "failed"
                task.error = str(e)
                task.updated_at = datetime.now(UTC)
            return

        if task.status in _TERMINAL:
            return
        task.result = result
        task.status = result.status
        task.error = result.error.format() if result.error else None
        task.updated_at = datetime.now(UTC)

    def _task(self, execution_id: str) -> ExecutionTask:
        t = self._tasks.get(execution_id)
        if not t:
            raise KeyError(f"Unknown execution_id={execution_id}")
        return t

    def get_task(self, execution_id: str) -> ExecutionTask:
        return self._task(execution_id)

    def get_execution_status(self, execution_id: str) -> str:
        return self._task(execution_id).status

    def get_execution_result(self, execution_id: str) -> CellExecutionResult | None:
        return self._task(execution_id).result

    def cancel_execution(self, execution_id: str) -> None:
        t = self._task(execution_id)
        if t.status in _TERMINAL:
            return
        self._aborts[execution_id].set()

    async def wait_for_completion(self, execution_id: str, *, timeout_s: float) -> ExecutionTask:
        start = time.time()
        while True:
            t = self._task(execution_id)
            if t.status in _TERMINAL:
                return t
            if time.time() - start > timeout_s:
                self._aborts[execution_id].set()
                t.status = "failed"
                t.error = "timeout"
                t.updated_at = datetime.now(UTC)
                return t
            await asyncio.sleep(0.05)

    def drop_session(self, notebook_id: str) -> None:
        s = self._sessions.pop(notebook_id, None)
        if s is not None:
            s.close()
