import random

from sqlnb_engine.dependency_graph import (
    build_available_cell_names,
    build_resolved_dependency_graph,
    compute_cell_dependencies,
    detect_circular_dependency_cells,
    edge_references,
    execution_order,
    find_cells_referencing,
    find_downstream_dependency_cells,
    find_stale_cells,
    find_upstream_dependency_cells,
)
from sqlnb_engine.models import NotebookCell, ResolvedDependencyGraph


def _cell(cell_id: str, content: str, *, alias: str | None = None, index: int = 0, cell_type: str = "sql"):
    return NotebookCell(cell_id=cell_id, index=index, cell_type=cell_type, content=content, alias=alias)


def _resolve(cells: list[NotebookCell]):
    deps = compute_cell_dependencies(cells)
    return deps, build_resolved_dependency_graph(cells, deps)


def test_alias_reference_resolves_to_single_provider() -> None:
    cells = [
        _cell("1", "SELECT 1", index=0),
        _cell("2", "SELECT 1", alias="base", index=1),
        _cell("3", "SELECT * FROM base", index=2),
    ]

    deps, graph = _resolve(cells)

    assert deps == {"3": ["base"]}
    assert graph.edges == {"1": set(), "2": set(), "3": {"2"}}
    assert graph.unresolved_references == {}
    assert graph.duplicate_name_cells == set()
    assert detect_circular_dependency_cells(graph.edges) == set()


def test_duplicate_alias_marks_both_cells() -> None:
    cells = [
        _cell("1", "SELECT 1", alias="x", index=0),
        _cell("2", "SELECT 2", alias="x", index=1),
    ]

    _, graph = _resolve(cells)

    assert graph.duplicate_name_cells == {"1", "2"}


def test_duplicate_marking_is_cumulative() -> None:
    cells = [
        _cell("1", "SELECT 1", alias="x", index=0),
        _cell("2", "SELECT 2", alias="X", index=1),
        _cell("3", "SELECT 3", alias="x", index=2),
    ]

    _, graph = _resolve(cells)

    assert graph.duplicate_name_cells == {"1", "2", "3"}


def test_cycle_through_machine_ref() -> None:
    cells = [
        _cell("1", "SELECT * FROM b", index=0),
        _cell("2", "SELECT * FROM __nb_cell_1", alias="b", index=1),
    ]

    _, graph = _resolve(cells)

    assert graph.edges == {"1": {"2"}, "2": {"1"}}
    assert detect_circular_dependency_cells(graph.edges) == {"1", "2"}
    # Cycles fall back to notebook order.
    assert execution_order(cells, graph) == ["1", "2"]


def test_three_cycle_found_from_any_start() -> None:
    edges = {"a": {"c"}, "b": {"a"}, "c": {"b"}}
    ids = list(edges)

    for _ in range(6):
        random.shuffle(ids)
        shuffled = {k: edges[k] for k in ids}
        assert detect_circular_dependency_cells(shuffled) == {"a", "b", "c"}


def test_cycle_detection_ignores_cells_only_feeding_a_cycle() -> None:
    edges = {"a": set(), "b": {"a", "c"}, "c": {"b"}, "d": {"c"}}

    assert detect_circular_dependency_cells(edges) == {"b", "c"}


def test_self_reference_is_ignored() -> None:
    cells = [
        _cell("1", "SELECT * FROM orders UNION ALL SELECT * FROM __nb_cell_1", alias="orders", index=0),
    ]

    deps, graph = _resolve(cells)

    assert deps == {}
    assert graph.edges == {"1": set()}
    assert graph.unresolved_references == {}


def test_ambiguous_reference_is_unresolved_regardless_of_order() -> None:
    providers = [
        _cell("p1", "SELECT 1", alias="shared"),
        _cell("p2", "SELECT 2", alias="shared"),
    ]
    consumer = _cell("c", "SELECT * FROM shared")

    for ordered in (providers, list(reversed(providers))):
        cells = [c.model_copy(update={"index": i}) for i, c in enumerate([*ordered, consumer])]
        _, graph = _resolve(cells)

        assert graph.edges["c"] == set()
        assert graph.unresolved_references == {"c": ["shared"]}


def test_dangling_machine_ref_is_unresolved() -> None:
    cells = [_cell("1", "SELECT * FROM __nb_cell_deleted")]

    deps, graph = _resolve(cells)

    assert deps == {"1": ["__nb_cell_deleted"]}
    assert graph.unresolved_references == {"1": ["__nb_cell_deleted"]}


def test_no_references_gives_empty_edges_per_sql_cell() -> None:
    cells = [
        _cell("1", "SELECT 1", index=0),
        _cell("m", "# notes about orders", index=1, cell_type="markdown"),
        _cell("2", "SELECT 'orders' -- orders", index=2),
    ]

    deps, graph = _resolve(cells)

    assert deps == {}
    assert graph.edges == {"1": set(), "2": set()}
    assert graph.unresolved_references == {}


def test_alias_and_machine_ref_both_resolve() -> None:
    cells = [
        _cell("a", "SELECT 1", alias="orders", index=0),
        _cell("b", "SELECT * FROM ORDERS", index=1),
        _cell("c", "SELECT * FROM __nb_cell_a", index=2),
        _cell("d", "SELECT * FROM orderz", index=3),
    ]

    _, graph = _resolve(cells)

    assert graph.edges["b"] == {"a"}
    assert graph.edges["c"] == {"a"}
    assert graph.edges["d"] == set()


def test_available_names_cover_sql_cells_only() -> None:
    cells = [
        _cell("1", "SELECT 1", alias="orders"),
        _cell("m", "text", alias="notes", cell_type="markdown"),
    ]

    assert build_available_cell_names(cells) == {"__nb_cell_1", "orders"}


def _chain_graph() -> ResolvedDependencyGraph:
    return ResolvedDependencyGraph(edges={"a": set(), "b": {"a"}, "c": {"b"}})


def test_staleness_is_transitive_and_idempotent() -> None:
    graph = _chain_graph()

    assert find_stale_cells("a", graph) == {"b", "c"}
    assert find_stale_cells("a", graph) == {"b", "c"}
    assert find_stale_cells("c", graph) == set()


def test_staleness_terminates_on_cycle() -> None:
    graph = ResolvedDependencyGraph(edges={"a": {"b"}, "b": {"a"}})

    assert find_stale_cells("a", graph) == {"a", "b"}


def test_upstream_and_downstream_closures_include_target() -> None:
    edges = _chain_graph().edges

    assert find_upstream_dependency_cells("c", edges) == {"a", "b", "c"}
    assert find_downstream_dependency_cells("a", edges) == {"a", "b", "c"}
    assert find_downstream_dependency_cells("c", edges) == {"c"}


def test_find_cells_referencing_direct_consumers() -> None:
    graph = ResolvedDependencyGraph(edges={"a": set(), "b": {"a"}, "c": {"a", "b"}})

    assert sorted(find_cells_referencing("a", graph)) == ["b", "c"]
    assert find_cells_referencing("c", graph) == []


def test_edge_references_labels() -> None:
    provider = _cell("a", "SELECT 1", alias="orders")

    labels = edge_references(provider, ["Orders", "__nb_cell_a", "orders", "other"])

    assert labels == ["Orders", "__nb_cell_a"]


def test_execution_order_puts_providers_first() -> None:
    cells = [
        _cell("1", "SELECT * FROM base", index=0),
        _cell("2", "SELECT 1", index=1),
        _cell("3", "SELECT 1", alias="base", index=2),
    ]

    _, graph = _resolve(cells)

    assert execution_order(cells, graph) == ["2", "3", "1"]
