from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import ValidationError

from .models import LineageAnalysis
from .naming import is_machine_ref
from .sql_lexer import iter_name_tokens
from .utils import dedupe_casefold

logger = logging.getLogger(__name__)

# Returns a LineageAnalysis or a mapping in its camelCase wire shape.
LineageFn = Callable[[str, str], Any]

_QUOTE_PAIRS = (('"', '"'), ("`", "`"), ("[", "]"))


def _strip_quotes(identifier: str) -> str:
    s = identifier.strip()
    for open_q, close_q in _QUOTE_PAIRS:
        if len(s) >= 2 and s.startswith(open_q) and s.endswith(close_q):
            return s[1:-1]
    return s


def _candidates(identifier: str) -> list[str]:
    raw = _strip_quotes(identifier)
    if not raw:
        return []
    out = [raw]
    if "." in raw:
        last = _strip_quotes(raw.rsplit(".", 1)[1])
        if last:
            out.append(last)
    return out


class _Matcher:
    def __init__(self, available_names: Iterable[str], exclude: Iterable[str]) -> None:
        self.excluded = {e.lower() for e in exclude}
        self.available = {n.lower() for n in available_names} - self.excluded
        self.found: list[str] = []

    def offer(self, name: str) -> None:
        key = name.lower()
        if key in self.excluded:
            return
        if key in self.available or is_machine_ref(name):
            self.found.append(name)

    def result(self) -> list[str]:
        return dedupe_casefold(self.found)


def _run_lineage(lineage: LineageFn, sql: str, dialect: str) -> LineageAnalysis | None:
    try:
        raw = lineage(sql, dialect)
        analysis = raw if isinstance(raw, LineageAnalysis) else LineageAnalysis.model_validate(raw)
    except ValidationError as e:
        logger.debug("lineage_fallback", extra={"reason": "invalid_analysis", "error": str(e)})
        return None
    except Exception as e:  # noqa: BLE001
        logger.debug("lineage_fallback", extra={"reason": "analysis_failed", "error": str(e)})
        return None

    if analysis.summary.has_errors or not analysis.statements:
        logger.debug("lineage_fallback", extra={"reason": "no_statements_or_errors"})
        return None
    return analysis


def _extract_with_lineage(analysis: LineageAnalysis, matcher: _Matcher) -> bool:
    saw_node = False
    for stmt in analysis.statements:
        for node in stmt.nodes:
            if node.type not in ("table", "view"):
                continue
            saw_node = True
            for identifier in (node.label, node.qualified_name or ""):
                for candidate in _candidates(identifier):
                    matcher.offer(candidate)
    return saw_node


def _extract_lexically(sql: str, matcher: _Matcher) -> None:
    for tok in iter_name_tokens(sql):
        matcher.offer(tok.value)


def extract_cell_references(
    sql: str,
    available_names: Iterable[str],
    *,
    exclude: Iterable[str] = (),
    lineage: LineageFn | None = None,
    dialect: str = "duckdb",
) -> list[str]:
    """Return the names from ``available_names`` that ``sql`` refers to.

    Names keep the spelling used in the text, in first-seen order, without
    case-insensitive repeats. Identifiers carrying the machine-reference
    prefix are reported even when no cell provides them any more, so they
    surface as unresolved. Names in ``exclude`` are never reported.

    With ``lineage`` the table/view nodes of that analysis are used. The
    lexical scan takes over when the analysis raises, reports errors, has no
    statements or has no table/view nodes at all.
    """
    available_names = list(available_names)
    exclude = list(exclude)

    if lineage is not None:
        analysis = _run_lineage(lineage, sql, dialect)
        if analysis is not None:
            matcher = _Matcher(available_names, exclude)
            if _extract_with_lineage(analysis, matcher):
                return matcher.result()
            logger.debug("lineage_fallback", extra={"reason": "no_table_nodes"})

    matcher = _Matcher(available_names, exclude)
    _extract_lexically(sql, matcher)
    return matcher.result()
