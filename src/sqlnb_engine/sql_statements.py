"""Splitting and classification of the statements inside one SQL cell."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .sql_lexer import SqlToken, iter_sql_tokens


class StatementKind(str, Enum):
    ALTER = "ALTER"
    ANALYZE = "ANALYZE"
    ATTACH = "ATTACH"
    BEGIN_TRANSACTION = "BEGIN_TRANSACTION"
    CALL = "CALL"
    CHECKPOINT = "CHECKPOINT"
    COMMENT_ON = "COMMENT_ON"
    COMMIT = "COMMIT"
    COPY = "COPY"
    CREATE = "CREATE"
    DELETE = "DELETE"
    DESCRIBE = "DESCRIBE"
    DETACH = "DETACH"
    DROP = "DROP"
    EXPLAIN = "EXPLAIN"
    EXPORT_DATABASE = "EXPORT_DATABASE"
    FORCE_CHECKPOINT = "FORCE_CHECKPOINT"
    FROM = "FROM"
    IMPORT_DATABASE = "IMPORT_DATABASE"
    INSERT = "INSERT"
    INSTALL = "INSTALL"
    LOAD = "LOAD"
    PIVOT = "PIVOT"
    RESET = "RESET"
    ROLLBACK = "ROLLBACK"
    SELECT = "SELECT"
    SET = "SET"
    SHOW = "SHOW"
    SUMMARIZE = "SUMMARIZE"
    TRUNCATE = "TRUNCATE"
    UNPIVOT = "UNPIVOT"
    UPDATE = "UPDATE"
    USE = "USE"
    VACUUM = "VACUUM"
    WITH = "WITH"
    UNKNOWN = "UNKNOWN"


class StatementCategory(str, Enum):
    DDL = "DDL"
    DML = "DML"
    TCL = "TCL"
    UTL = "UTL"
    UNKNOWN = "UNKNOWN"


K = StatementKind
C = StatementCategory

# leading keyword -> kind
_KEYWORDS: dict[str, StatementKind] = {
    "ALTER": K.ALTER,
    "ANALYZE": K.ANALYZE,
    "ATTACH": K.ATTACH,
    "BEGIN": K.BEGIN_TRANSACTION,
    "CALL": K.CALL,
    "CHECKPOINT": K.CHECKPOINT,
    "COMMENT": K.COMMENT_ON,
    "COMMIT": K.COMMIT,
    "COPY": K.COPY,
    "CREATE": K.CREATE,
    "DELETE": K.DELETE,
    "DESCRIBE": K.DESCRIBE,
    "DETACH": K.DETACH,
    "DROP": K.DROP,
    "EXPLAIN": K.EXPLAIN,
    "EXPORT": K.EXPORT_DATABASE,
    "FORCE": K.FORCE_CHECKPOINT,
    "FROM": K.FROM,
    "IMPORT": K.IMPORT_DATABASE,
    "INSERT": K.INSERT,
    "INSTALL": K.INSTALL,
    "LOAD": K.LOAD,
    "PIVOT": K.PIVOT,
    "RESET": K.RESET,
    "ROLLBACK": K.ROLLBACK,
    "ABORT": K.ROLLBACK,
    "SELECT": K.SELECT,
    "SET": K.SET,
    "SHOW": K.SHOW,
    "SUMMARIZE": K.SUMMARIZE,
    "TRUNCATE": K.TRUNCATE,
    "UNPIVOT": K.UNPIVOT,
    "UPDATE": K.UPDATE,
    "USE": K.USE,
    "VACUUM": K.VACUUM,
    "WITH": K.WITH,
}

_CATEGORY: dict[StatementKind, StatementCategory] = {
    K.ALTER: C.DDL,
    K.COMMENT_ON: C.DDL,
    K.CREATE: C.DDL,
    K.DROP: C.DDL,
    K.CALL: C.DML,
    K.DELETE: C.DML,
    K.DESCRIBE: C.DML,
    K.FROM: C.DML,
    K.INSERT: C.DML,
    K.PIVOT: C.DML,
    K.SELECT: C.DML,
    K.SHOW: C.DML,
    K.SUMMARIZE: C.DML,
    K.TRUNCATE: C.DML,
    K.UNPIVOT: C.DML,
    K.UPDATE: C.DML,
    K.BEGIN_TRANSACTION: C.TCL,
    K.COMMIT: C.TCL,
    K.ROLLBACK: C.TCL,
    K.WITH: C.UNKNOWN,
    K.UNKNOWN: C.UNKNOWN,
}

_TRANSACTIONAL = frozenset({K.ALTER, K.ATTACH, K.DETACH, K.CREATE, K.DROP, K.DELETE, K.TRUNCATE, K.INSERT, K.UPDATE})

# Kinds that can be the displayed result of a cell.
SELECTABLE = frozenset(
    {K.SELECT, K.WITH, K.DESCRIBE, K.SHOW, K.PIVOT, K.UNPIVOT, K.FROM, K.SUMMARIZE, K.CALL, K.EXPLAIN}
)

# Transaction control, extension management, database export/import, USE and
# FORCE CHECKPOINT would break the shared session.
_ALLOWED_IN_CELL = frozenset(
    {
        K.ALTER, K.ANALYZE, K.ATTACH, K.CALL, K.CHECKPOINT, K.COMMENT_ON, K.COPY,
        K.CREATE, K.DELETE, K.DESCRIBE, K.DETACH, K.DROP, K.EXPLAIN, K.FROM,
        K.INSERT, K.PIVOT, K.RESET, K.SELECT, K.SET, K.SHOW, K.SUMMARIZE,
        K.TRUNCATE, K.UNPIVOT, K.UPDATE, K.VACUUM, K.WITH,
    }
)  # fmt: skip


@dataclass(frozen=True)
class SqlStatement:
    code: str
    statement_index: int
    line_number: int
    kind: StatementKind

    @property
    def category(self) -> StatementCategory:
        return _CATEGORY.get(self.kind, C.UTL)

    @property
    def needs_transaction(self) -> bool:
        return self.kind in _TRANSACTIONAL

    @property
    def is_selectable(self) -> bool:
        return self.kind in SELECTABLE

    @property
    def is_allowed_in_cell(self) -> bool:
        return self.kind in _ALLOWED_IN_CELL


def classify_statement(code: str) -> StatementKind:
    for tok in iter_sql_tokens(code):
        if tok.kind == "comment":
            continue
        if tok.kind == "identifier":
            return _KEYWORDS.get(tok.value.upper(), K.UNKNOWN)
        # e.g. a parenthesised query
        if tok.value == "(":
            return K.SELECT
        return K.UNKNOWN
    return K.UNKNOWN


def _flush(sql: str, tokens: list[SqlToken], out: list[SqlStatement]) -> None:
    body = [t for t in tokens if t.kind != "comment"]
    if not body:
        return
    start, end = body[0].start, body[-1].end
    code = sql[start:end]
    out.append(
        SqlStatement(
            code=code,
            statement_index=len(out),
            line_number=sql.count("\n", 0, start) + 1,
            kind=classify_statement(code),
        )
    )


def split_sql_statements(sql: str) -> list[SqlStatement]:
    """Split on ``;`` outside comments, strings and quoted identifiers."""
    out: list[SqlStatement] = []
    current: list[SqlToken] = []
    for tok in iter_sql_tokens(sql):
        if tok.kind == "other" and tok.value == ";":
            _flush(sql, current, out)
            current = []
            continue
        current.append(tok)
    _flush(sql, current, out)
    return out


def _dropped_name(code: str) -> str | None:
    names = [t for t in iter_sql_tokens(code) if t.kind in ("identifier", "quoted_identifier")]
    # DROP [TABLE|VIEW|...] [IF EXISTS] name
    words = [t.value.upper() if t.kind == "identifier" else None for t in names]
    i = 1
    if i < len(words) and words[i] in ("TABLE", "VIEW", "MACRO", "SEQUENCE", "SCHEMA", "TYPE", "INDEX", "SECRET"):
        i += 1
    if i + 1 < len(words) and words[i] == "IF" and words[i + 1] == "EXISTS":
        i += 2
    if i >= len(names):
        return None
    # schema-qualified: keep the last segment
    j = i
    while j + 1 < len(names) and code[names[j].end : names[j + 1].start].strip() == ".":
        j += 1
    return names[j].value


def validate_statements(statements: list[SqlStatement], protected_views: Iterable[str] = ()) -> list[str]:
    errors: list[str] = []
    protected = {v.lower() for v in protected_views}

    for s in statements:
        if not s.is_allowed_in_cell:
            label = s.kind.value
            if s.kind is K.UNKNOWN:
                label = s.code if len(s.code) <= 20 else f"{s.code[:20]}..."
            errors.append(f"The `{label}` statement is not allowed.")
            continue

        if s.kind is K.DROP and protected:
            name = _dropped_name(s.code)
            if name and name.lower() in protected:
                errors.append(f"Cannot drop `{name}`: it is a protected view.")

    return errors
