from sqlnb_engine.references import extract_cell_references
from sqlnb_engine.sql_lexer import iter_name_tokens, iter_sql_tokens


def _lineage(*nodes: dict, has_errors: bool = False):
    def _fn(sql: str, dialect: str) -> dict:  # noqa: ARG001
        return {"statements": [{"nodes": list(nodes)}], "summary": {"hasErrors": has_errors}}

    return _fn


def test_lexer_skips_comments_and_strings() -> None:
    sql = "SELECT a -- base\n/* base */ FROM 'base' , \"My \"\"T\"\"\" x"
    kinds = [(t.kind, t.value) for t in iter_sql_tokens(sql)]

    assert ("comment", "-- base") in kinds
    assert ("comment", "/* base */") in kinds
    assert ("string", "'base'") in kinds
    assert ("quoted_identifier", 'My "T"') in kinds
    assert [t.value for t in iter_name_tokens(sql)] == ["SELECT", "a", "FROM", 'My "T"', "x"]


def test_lexer_unterminated_quoted_identifier_is_not_a_name() -> None:
    assert [t.value for t in iter_name_tokens('SELECT "base')] == ["SELECT"]


def test_lexer_spans_cover_source() -> None:
    sql = 'SELECT "a b" FROM t'
    tok = [t for t in iter_sql_tokens(sql) if t.kind == "quoted_identifier"][0]

    assert sql[tok.start : tok.end] == '"a b"'


def test_lexical_extraction_matches_case_insensitively_in_first_seen_order() -> None:
    refs = extract_cell_references(
        "SELECT * FROM Orders JOIN customers USING (id) JOIN ORDERS o2 ON true",
        {"orders", "customers", "unused"},
    )

    assert refs == ["Orders", "customers"]


def test_lexical_extraction_ignores_comments_and_strings() -> None:
    refs = extract_cell_references(
        "-- from base\nSELECT 'base' AS label /* base */",
        {"base"},
    )

    assert refs == []


def test_quoted_identifier_is_matched() -> None:
    assert extract_cell_references('SELECT * FROM "Base"', {"base"}) == ["Base"]


def test_dangling_machine_prefix_is_reported() -> None:
    refs = extract_cell_references("SELECT * FROM __NB_CELL_gone", set())

    assert refs == ["__NB_CELL_gone"]


def test_excluded_names_are_never_reported() -> None:
    refs = extract_cell_references(
        "SELECT * FROM me JOIN __nb_cell_1 JOIN other",
        {"me", "other", "__nb_cell_1"},
        exclude=["me", "__nb_cell_1"],
    )

    assert refs == ["other"]


def test_available_names_may_be_a_generator() -> None:
    names = (n for n in ["a", "b"])

    assert extract_cell_references("SELECT * FROM a, b", names) == ["a", "b"]


def test_lineage_nodes_are_used_when_available() -> None:
    lineage = _lineage(
        {"type": "table", "label": "orders", "qualifiedName": "main.orders"},
        {"type": "column", "label": "customers"},
    )

    # "customers" only appears as a column node; "base" only in a comment
    refs = extract_cell_references(
        "SELECT customers FROM orders -- base",
        {"orders", "customers", "base"},
        lineage=lineage,
    )

    assert refs == ["orders"]


def test_lineage_strips_quotes_and_uses_last_segment() -> None:
    lineage = _lineage(
        {"type": "view", "label": '"Base"', "qualifiedName": "memory.main.[Base]"},
        {"type": "table", "label": "`raw`"},
    )

    refs = extract_cell_references("ignored", {"base", "raw"}, lineage=lineage)

    assert refs == ["Base", "raw"]


def test_lineage_reports_both_full_and_last_segment_matches() -> None:
    lineage = _lineage({"type": "table", "label": "s.t", "qualifiedName": "s.t"})

    refs = extract_cell_references("SELECT * FROM s.t", {"s.t", "t"}, lineage=lineage)

    assert refs == ["s.t", "t"]


def test_lineage_accepts_dangling_machine_prefix() -> None:
    lineage = _lineage({"type": "table", "label": "__nb_cell_old"})

    assert extract_cell_references("x", set(), lineage=lineage) == ["__nb_cell_old"]


def test_lineage_errors_fall_back_to_lexer() -> None:
    lineage = _lineage({"type": "table", "label": "other"}, has_errors=True)

    refs = extract_cell_references("SELECT * FROM base", {"base", "other"}, lineage=lineage)

    assert refs == ["base"]


def test_lineage_exception_falls_back_to_lexer() -> None:
    def _boom(sql: str, dialect: str):  # noqa: ARG001
        raise RuntimeError("analyzer down")

    assert extract_cell_references("SELECT * FROM base", {"base"}, lineage=_boom) == ["base"]


def test_lineage_without_statements_or_table_nodes_falls_back() -> None:
    def _empty(sql: str, dialect: str) -> dict:  # noqa: ARG001
        return {"statements": [], "summary": {"hasErrors": False}}

    columns_only = _lineage({"type": "column", "label": "x"})

    assert extract_cell_references("SELECT * FROM base", {"base"}, lineage=_empty) == ["base"]
    assert extract_cell_references("SELECT * FROM base", {"base"}, lineage=columns_only) == ["base"]


def test_lineage_receives_dialect() -> None:
    seen: list[str] = []

    def _fn(sql: str, dialect: str) -> dict:
        seen.append(dialect)
        return {"statements": [{"nodes": [{"type": "table", "label": "base"}]}], "summary": {"hasErrors": False}}

    extract_cell_references("SELECT 1", {"base"}, lineage=_fn, dialect="postgres")

    assert seen == ["postgres"]
