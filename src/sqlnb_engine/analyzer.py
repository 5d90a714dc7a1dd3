from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from .context_builder import format_cells_as_context
from .dependency_graph import (
    build_available_cell_names,
    build_resolved_dependency_graph,
    compute_cell_dependencies,
    detect_circular_dependency_cells,
    execution_order,
    find_upstream_dependency_cells,
)
from .errors import CellNotFoundError
from .lineage import analyze_sql_lineage
from .models import FocusedContext, NotebookAnalysis, NotebookCell
from .naming import cell_view_names
from .notebook_io import load_notebook, notebook_cells
from .references import LineageFn
from .sql_statements import split_sql_statements
from .utils import quote_identifier


def analyze_cells(
    cells: list[NotebookCell],
    *,
    lineage: LineageFn | None = None,
    dialect: str = "duckdb",
    path: str | None = None,
) -> NotebookAnalysis:
    """Recompute the whole dependency picture for ``cells``.

    Pure: the same cells give the same snapshot, nothing is remembered
    between calls.
    """
    ordered = sorted(cells, key=lambda c: c.index)
    available = build_available_cell_names(ordered)
    deps = compute_cell_dependencies(ordered, available, lineage=lineage, dialect=dialect)
    graph = build_resolved_dependency_graph(ordered, deps)

    return NotebookAnalysis(
        path=path,
        cells=ordered,
        dependencies=deps,
        graph=graph,
        cycle_cells=detect_circular_dependency_cells(graph.edges),
        execution_order=execution_order(ordered, graph),
    )


def analyze_notebook(
    path: str,
    *,
    use_lineage: bool = False,
    dialect: str = "duckdb",
) -> NotebookAnalysis:
    mtime = os.path.getmtime(path) if os.path.exists(path) else 0.0
    cached = _analyze_notebook_cached(path, mtime, use_lineage=use_lineage, dialect=dialect)
    # Callers get their own copy; the cached snapshot is shared.
    return cached.model_copy(deep=True)


@lru_cache(maxsize=32)
def _analyze_notebook_cached(
    path: str,
    mtime: float,
    *,
    use_lineage: bool,
    dialect: str,
) -> NotebookAnalysis:
    nb = load_notebook(path)
    return analyze_cells(
        notebook_cells(nb),
        lineage=analyze_sql_lineage if use_lineage else None,
        dialect=dialect,
        path=str(Path(path)),
    )


def get_cell(analysis: NotebookAnalysis, cell_id: str) -> NotebookCell:
    for c in analysis.cells:
        if c.cell_id == cell_id:
            return c
    raise CellNotFoundError(f"Cell not found: {cell_id}")


def get_focused_context(
    path: str,
    *,
    focus_cell_id: str,
    max_cells: int = 25,
    use_lineage: bool = False,
) -> FocusedContext:
    analysis = analyze_notebook(path, use_lineage=use_lineage)
    get_cell(analysis, focus_cell_id)

    upstream = find_upstream_dependency_cells(focus_cell_id, analysis.graph.edges)
    selected_ids = [cid for cid in analysis.execution_order if cid in upstream and cid != focus_cell_id]
    # Keep the nearest providers when trimming.
    selected_ids = selected_ids[-(max_cells - 1):] if max_cells > 1 else []
    selected_ids.append(focus_cell_id)

    cell_by_id = {c.cell_id: c for c in analysis.cells}
    selected_cells = [cell_by_id[cid] for cid in selected_ids]

    return FocusedContext(
        path=analysis.path or path,
        focus_cell_id=focus_cell_id,
        selected_cell_ids=selected_ids,
        context_text=format_cells_as_context(selected_cells),
    )


def export_notebook_to_script(path: str, *, use_lineage: bool = False) -> str:
    """A standalone script that recreates every cell's named views in dependency order."""
    analysis = analyze_notebook(path, use_lineage=use_lineage)
    cell_by_id = {c.cell_id: c for c in analysis.cells}

    parts: list[str] = [f"-- Generated from notebook: {analysis.path}\n"]
    if analysis.cycle_cells:
        parts.append(f"-- WARNING: circular dependencies between {', '.join(sorted(analysis.cycle_cells))}\n")

    for cid in analysis.execution_order:
        c = cell_by_id[cid]
        statements = split_sql_statements(c.content)
        parts.append(f"-- --- cell: {c.cell_id} (index={c.index}) ---")
        if not statements:
            parts.append("")
            continue

        for s in statements[:-1]:
            parts.append(f"{s.code};")
        last = statements[-1]
        if last.is_selectable:
            for name in cell_view_names(c):
                parts.append(f"CREATE OR REPLACE TEMP VIEW {quote_identifier(name)} AS ({last.code});")
        else:
            parts.append(f"{last.code};")
        parts.append("")

    return "\n".join(parts).strip() + "\n"
