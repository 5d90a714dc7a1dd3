"""Table/view lineage for a cell's SQL using the sqlglot AST.

Produces the same shape an external lineage service would return, so the
reference extractor treats the built-in analyzer and a plugged-in one alike.
"""

from __future__ import annotations

import sqlglot
from sqlglot import exp

from .models import LineageAnalysis, LineageNode, LineageStatement, LineageSummary


def _statement_nodes(parsed: exp.Expression) -> list[LineageNode]:
    cte_names: set[str] = set()
    for cte in parsed.find_all(exp.CTE):
        if cte.alias:
            cte_names.add(cte.alias.lower())

    nodes: list[LineageNode] = []
    for table in parsed.find_all(exp.Table):
        name = table.name
        if not name:
            # Table functions such as read_csv(...)
            continue
        if not table.db and name.lower() in cte_names:
            continue
        qualified = ".".join(p for p in (table.catalog, table.db, name) if p)
        nodes.append(LineageNode(type="table", label=name, qualified_name=qualified))
    return nodes


def analyze_sql_lineage(sql: str, dialect: str = "duckdb") -> LineageAnalysis:
    try:
        parsed = sqlglot.parse(sql, read=dialect)
    except sqlglot.errors.SqlglotError:
        return LineageAnalysis(statements=[], summary=LineageSummary(has_errors=True))

    statements = [LineageStatement(nodes=_statement_nodes(p)) for p in parsed if p is not None]
    return LineageAnalysis(statements=statements, summary=LineageSummary(has_errors=False))
