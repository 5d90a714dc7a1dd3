from __future__ import annotations

import os

from mcp.server.fastmcp import FastMCP

from .analyzer import analyze_notebook, export_notebook_to_script, get_cell, get_focused_context
from .errors import InvalidCellNameError
from .execution_manager import ExecutionManager
from .models import CatalogState, ExecutionTask, NotebookAnalysis
from .naming import cell_view_names, normalize_cell_name, provided_names, validate_cell_name
from .rename_refactor import preview_alias_rename
from .state_engine import build_rerun_plan, compute_notebook_state, mark_cell_executed

mcp = FastMCP("SQL Notebook Engine")

# Host-side session state, keyed by notebook path.
_executed: dict[str, set[str]] = {}
_stale: dict[str, frozenset[str]] = {}
_catalogs: dict[str, CatalogState] = {}
_recorded: set[str] = set()


def _use_lineage() -> bool:
    return os.environ.get("SQLNB_LINEAGE", "").lower() == "sqlglot"


def _analyze(path: str) -> NotebookAnalysis:
    dialect = os.environ.get("SQLNB_DIALECT", "duckdb")
    return analyze_notebook(path, use_lineage=_use_lineage(), dialect=dialect)


def _record_completion(path: str, analysis: NotebookAnalysis, task: ExecutionTask) -> None:
    if task.execution_id in _recorded or task.status != "completed" or task.result is None:
        return
    _recorded.add(task.execution_id)
    _executed.setdefault(path, set()).add(task.cell_id)
    _stale[path] = mark_cell_executed(_stale.get(path, frozenset()), task.cell_id, analysis.graph)
    _catalogs[path] = task.result.catalog


def _protected_views(analysis: NotebookAnalysis, cell_id: str) -> list[str]:
    return [n for c in analysis.cells if c.is_sql and c.cell_id != cell_id for n in cell_view_names(c)]


@mcp.tool()
def notebook_analyze(path: str) -> dict:
    """Analyze a .sqlnb notebook: cells, references, resolved edges, cycles and execution order."""
    return _analyze(path).model_dump(mode="json")


@mcp.tool()
def notebook_state(path: str) -> dict:
    """Per-cell status (unexecuted, executed, stale) and warning flags for this server session."""
    analysis = _analyze(path)
    state = compute_notebook_state(
        analysis,
        executed_cell_ids=_executed.get(path, ()),
        stale_cells=_stale.get(path, ()),
    )
    return state.model_dump(mode="json")


@mcp.tool()
def notebook_stale_cells(path: str) -> list[str]:
    """Cells whose upstream changed since they last ran."""
    return sorted(_stale.get(path, ()))


@mcp.tool()
def notebook_rerun_plan(path: str, focus_cell_id: str) -> dict:
    """Cells to run, in order, so that the focus cell sees fresh upstream results."""
    analysis = _analyze(path)
    get_cell(analysis, focus_cell_id)
    plan = build_rerun_plan(
        analysis,
        focus_cell_id,
        executed_cell_ids=_executed.get(path, ()),
        stale_cells=_stale.get(path, ()),
    )
    return plan.model_dump(mode="json")


@mcp.tool()
def notebook_context(path: str, focus_cell_id: str, max_cells: int = 25) -> dict:
    """Return a focused, dependency-aware context slice for a given cell."""
    ctx = get_focused_context(
        path,
        focus_cell_id=focus_cell_id,
        max_cells=max_cells,
        use_lineage=_use_lineage(),
    )
    return ctx.model_dump(mode="json")


@mcp.tool()
def notebook_export_script(path: str) -> str:
    """Export the notebook as one SQL script that recreates every cell view in dependency order."""
    return export_notebook_to_script(path, use_lineage=_use_lineage())


@mcp.tool()
def notebook_rename_preview(path: str, cell_id: str, next_name: str | None = None) -> dict:
    """Preview the edits other cells need when a cell's alias changes (empty name clears it)."""
    analysis = _analyze(path)
    get_cell(analysis, cell_id)

    name = normalize_cell_name(next_name)
    if name:
        existing = [
            n for c in analysis.cells if c.is_sql and c.cell_id != cell_id for n in provided_names(c).names
        ]
        err = validate_cell_name(name, existing)
        if err:
            raise InvalidCellNameError(err)

    return preview_alias_rename(analysis.cells, cell_id, name).model_dump(mode="json")


_execution_manager_singleton: ExecutionManager | None = None
_execution_manager_key: str | None = None


def _execution_manager() -> ExecutionManager:
    global _execution_manager_singleton, _execution_manager_key  # noqa: PLW0603

    database = os.environ.get("SQLNB_DATABASE", ":memory:")
    if _execution_manager_singleton is None or _execution_manager_key != database:
        _execution_manager_singleton = ExecutionManager(database=database)
        _execution_manager_key = database
    return _execution_manager_singleton


async def _submit(path: str, cell_id: str) -> tuple[ExecutionManager, str]:
    analysis = _analyze(path)
    cell = get_cell(analysis, cell_id)
    em = _execution_manager()
    execution_id = await em.submit_execution(
        path,
        cell,
        catalog=_catalogs.get(path),
        protected_views=_protected_views(analysis, cell_id),
    )
    return em, execution_id


@mcp.tool()
async def notebook_execute_cell(path: str, cell_id: str, timeout_s: float = 30.0) -> dict:
    """Run one SQL cell on the notebook's shared DuckDB session and wait for the result.

    On success the cell's result becomes queryable from later cells under its
    ref and alias, and every downstream cell is marked stale.
    """
    em, execution_id = await _submit(path, cell_id)
    task = await em.wait_for_completion(execution_id, timeout_s=timeout_s)
    _record_completion(path, _analyze(path), task)
    return task.model_dump(mode="json")


@mcp.tool()
async def notebook_execution_submit(path: str, cell_id: str) -> dict:
    em, execution_id = await _submit(path, cell_id)
    return {"execution_id": execution_id, "status": em.get_execution_status(execution_id)}


@mcp.tool()
def notebook_execution_status(execution_id: str) -> dict:
    em = _execution_manager()
    task = em.get_task(execution_id)
    _record_completion(task.notebook_id, _analyze(task.notebook_id), task)
    return task.model_dump(mode="json")


@mcp.tool()
def notebook_execution_cancel(execution_id: str) -> dict:
    em = _execution_manager()
    em.cancel_execution(execution_id)
    return {"execution_id": execution_id, "status": em.get_execution_status(execution_id)}


def main() -> None:
    transport = os.environ.get("MCP_TRANSPORT", "stdio")

    if transport == "streamable-http":
        host = os.environ.get("MCP_HOST", "127.0.0.1")
        port = int(os.environ.get("MCP_PORT", "8000"))
        mcp.settings.host = host
        mcp.settings.port = port
        mcp.settings.json_response = True
        mcp.run(transport="streamable-http")
        return

    # Default to stdio.
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
