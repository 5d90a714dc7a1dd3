from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable, Mapping, Set

import networkx as nx

from .models import NotebookCell, ResolvedDependencyGraph
from .naming import provided_names
from .references import LineageFn, extract_cell_references

CellDependencyMap = dict[str, list[str]]


def _sql_cells(cells: Iterable[NotebookCell]) -> list[NotebookCell]:
    return [c for c in cells if c.is_sql]


def build_available_cell_names(cells: list[NotebookCell]) -> set[str]:
    names: set[str] = set()
    for cell in _sql_cells(cells):
        names.update(provided_names(cell).names)
    return names


def compute_cell_dependencies(
    cells: list[NotebookCell],
    available_names: set[str] | None = None,
    *,
    lineage: LineageFn | None = None,
    dialect: str = "duckdb",
) -> CellDependencyMap:
    if available_names is None:
        available_names = build_available_cell_names(cells)

    deps: CellDependencyMap = {}
    for cell in _sql_cells(cells):
        own = provided_names(cell).names
        own_lower = {n.lower() for n in own}
        others = {n for n in available_names if n.lower() not in own_lower}
        refs = extract_cell_references(
            cell.content,
            others,
            exclude=own,
            lineage=lineage,
            dialect=dialect,
        )
        if refs:
            deps[cell.cell_id] = refs
    return deps


def _name_to_providers(cells: list[NotebookCell]) -> tuple[dict[str, set[str]], set[str]]:
    providers_by_name: dict[str, set[str]] = defaultdict(set)
    duplicates: set[str] = set()

    for cell in _sql_cells(cells):
        for raw in provided_names(cell).names:
            providers = providers_by_name[raw.lower()]
            if providers and cell.cell_id not in providers:
                # Both sides of a clash are marked, and stay marked for this build.
                duplicates.update(providers)
                duplicates.add(cell.cell_id)
            providers.add(cell.cell_id)

    return providers_by_name, duplicates


def build_resolved_dependency_graph(
    cells: list[NotebookCell],
    dependencies: Mapping[str, list[str]],
) -> ResolvedDependencyGraph:
    providers_by_name, duplicates = _name_to_providers(cells)

    edges: dict[str, set[str]] = {}
    unresolved: dict[str, list[str]] = {}

    for cell in _sql_cells(cells):
        edges.setdefault(cell.cell_id, set())
        missing: list[str] = []

        for ref in dependencies.get(cell.cell_id, []):
            providers = providers_by_name.get(ref.lower(), set())
            if len(providers) != 1:
                # Absent or ambiguous; never pick one.
                missing.append(ref)
                continue
            (provider_id,) = providers
            if provider_id == cell.cell_id:
                continue
            edges[cell.cell_id].add(provider_id)

        if missing:
            unresolved[cell.cell_id] = missing

    return ResolvedDependencyGraph(
        edges=edges,
        duplicate_name_cells=duplicates,
        unresolved_references=unresolved,
    )


def detect_circular_dependency_cells(edges: Mapping[str, Set[str]]) -> set[str]:
    """Every cell on a path that closes a dependency cycle.

    Iterative DFS: a node is ``in progress`` while it sits on ``path`` and
    ``done`` afterwards, so each node and edge is walked once.
    """
    in_progress: set[str] = set()
    done: set[str] = set()
    cyclic: set[str] = set()

    for root in edges:
        if root in done:
            continue

        path: list[str] = [root]
        stack = [iter(sorted(edges.get(root, ())))]
        in_progress.add(root)

        while stack:
            node = path[-1]
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                path.pop()
                in_progress.discard(node)
                done.add(node)
                continue

            if dep in in_progress:
                cyclic.update(path[path.index(dep):])
                cyclic.add(dep)
            elif dep not in done:
                in_progress.add(dep)
                path.append(dep)
                stack.append(iter(sorted(edges.get(dep, ()))))

    return cyclic


def _consumers_by_provider(edges: Mapping[str, Set[str]]) -> dict[str, set[str]]:
    consumers: dict[str, set[str]] = defaultdict(set)
    for consumer_id, providers in edges.items():
        for provider_id in providers:
            consumers[provider_id].add(consumer_id)
    return consumers


def _closure(start: str, adjacency: Mapping[str, Set[str]], *, include_start: bool) -> set[str]:
    seen: set[str] = {start} if include_start else set()
    q: deque[str] = deque(sorted(adjacency.get(start, ())))

    while q:
        cid = q.popleft()
        if cid in seen:
            continue
        seen.add(cid)
        for nxt in sorted(adjacency.get(cid, ())):
            if nxt not in seen:
                q.append(nxt)
    return seen


def find_stale_cells(executed_cell_id: str, graph: ResolvedDependencyGraph) -> set[str]:
    """Cells whose result is out of date once ``executed_cell_id`` re-ran.

    The executed cell itself is only included when it feeds back into itself
    through a cycle.
    """
    consumers = _consumers_by_provider(graph.edges)
    return _closure(executed_cell_id, consumers, include_start=False)


def find_upstream_dependency_cells(target_cell_id: str, edges: Mapping[str, Set[str]]) -> set[str]:
    return _closure(target_cell_id, edges, include_start=True)


def find_downstream_dependency_cells(target_cell_id: str, edges: Mapping[str, Set[str]]) -> set[str]:
    return _closure(target_cell_id, _consumers_by_provider(edges), include_start=True)


def find_cells_referencing(target_cell_id: str, graph: ResolvedDependencyGraph) -> list[str]:
    return [
        cid
        for cid, providers in graph.edges.items()
        if cid != target_cell_id and target_cell_id in providers
    ]


def edge_references(provider: NotebookCell, consumer_refs: list[str]) -> list[str]:
    """The consumer's references that name ``provider``, for labelling an edge."""
    names = {n.lower() for n in provided_names(provider).names}
    seen: set[str] = set()
    labels: list[str] = []
    for ref in consumer_refs:
        key = ref.lower()
        if key not in names or key in seen:
            continue
        seen.add(key)
        labels.append(ref)
    return labels


def execution_order(cells: list[NotebookCell], graph: ResolvedDependencyGraph) -> list[str]:
    sql_cells = _sql_cells(cells)
    index = {c.cell_id: i for i, c in enumerate(sql_cells)}

    g = nx.DiGraph()
    g.add_nodes_from(index)
    for consumer_id, providers in graph.edges.items():
        for provider_id in providers:
            g.add_edge(provider_id, consumer_id)

    try:
        return list(nx.lexicographical_topological_sort(g, key=lambda cid: index.get(cid, len(index))))
    except nx.NetworkXUnfeasible:
        # Cycles are flagged separately; fall back to notebook order.
        return [c.cell_id for c in sql_cells]
