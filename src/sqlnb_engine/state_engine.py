from __future__ import annotations

from collections.abc import Iterable

from .dependency_graph import find_stale_cells, find_upstream_dependency_cells
from .models import (
    NotebookAnalysis,
    NotebookCellState,
    NotebookRerunPlan,
    NotebookState,
    ResolvedDependencyGraph,
)
from .naming import provided_names, validate_cell_name


def mark_cell_executed(
    stale_cells: Iterable[str],
    executed_cell_id: str,
    graph: ResolvedDependencyGraph,
) -> frozenset[str]:
    """Staleness after ``executed_cell_id`` finished.

    Every transitive consumer is added and the executed cell's own flag is
    cleared, even when it feeds back into itself through a cycle.
    Returns a new set; the caller's set is left alone.
    """
    stale = set(stale_cells) | find_stale_cells(executed_cell_id, graph)
    stale.discard(executed_cell_id)
    return frozenset(stale)


def compute_notebook_state(
    analysis: NotebookAnalysis,
    *,
    executed_cell_ids: Iterable[str] = (),
    stale_cells: Iterable[str] = (),
) -> NotebookState:
    executed = set(executed_cell_ids)
    stale = set(stale_cells)
    graph = analysis.graph

    states: list[NotebookCellState] = []
    for c in analysis.cells:
        if not c.is_sql:
            continue

        names = provided_names(c)
        is_stale = c.cell_id in stale
        if c.cell_id not in executed:
            status = "unexecuted"
        elif is_stale:
            status = "stale"
        else:
            status = "executed"

        states.append(
            NotebookCellState(
                cell_id=c.cell_id,
                status=status,
                display_name=names.alias or names.ref,
                stale=is_stale,
                has_circular_dependency=c.cell_id in analysis.cycle_cells,
                has_duplicate_name=c.cell_id in graph.duplicate_name_cells,
                unresolved_references=list(graph.unresolved_references.get(c.cell_id, [])),
                alias_error=validate_cell_name(names.alias) if names.alias else None,
                upstream_cell_ids=sorted(graph.edges.get(c.cell_id, set())),
            )
        )

    return NotebookState(path=analysis.path, cells=states)


def build_rerun_plan(
    analysis: NotebookAnalysis,
    focus_cell_id: str,
    *,
    executed_cell_ids: Iterable[str] = (),
    stale_cells: Iterable[str] = (),
) -> NotebookRerunPlan:
    state = compute_notebook_state(
        analysis,
        executed_cell_ids=executed_cell_ids,
        stale_cells=stale_cells,
    )
    state_by_id = {s.cell_id: s for s in state.cells}

    upstream = find_upstream_dependency_cells(focus_cell_id, analysis.graph.edges)
    ordered = [cid for cid in analysis.execution_order if cid in upstream and cid != focus_cell_id]

    cells_to_rerun: list[str] = []
    reasons: dict[str, list[str]] = {}

    for cid in ordered:
        s = state_by_id.get(cid)
        if not s:
            continue
        if s.status == "unexecuted":
            cells_to_rerun.append(cid)
            reasons[cid] = ["unexecuted"]
        elif s.status == "stale":
            cells_to_rerun.append(cid)
            reasons[cid] = ["stale"]

    # Focus cell is always the final action.
    cells_to_rerun.append(focus_cell_id)
    reasons.setdefault(focus_cell_id, []).append("focus")

    return NotebookRerunPlan(
        path=analysis.path,
        focus_cell_id=focus_cell_id,
        cells_to_rerun=cells_to_rerun,
        reasons_by_cell_id=reasons,
    )
