from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

TokenKind = Literal["identifier", "quoted_identifier", "string", "comment", "other"]


@dataclass(frozen=True)
class SqlToken:
    kind: TokenKind
    value: str
    start: int
    end: int


def _is_identifier_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_identifier_part(ch: str) -> bool:
    return _is_identifier_start(ch) or ("0" <= ch <= "9")


def iter_sql_tokens(sql: str) -> Iterator[SqlToken]:
    """Walk ``sql`` once and yield its tokens.

    Whitespace is skipped. Comments and single-quoted strings come out as a
    single token each so callers can ignore them. Quoted identifiers carry
    their unescaped value; an unterminated one is emitted as ``other``.
    Any character that starts none of the above is one ``other`` token.
    """
    n = len(sql)
    i = 0
    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch.isspace():
            i += 1
            continue

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            end = n if end == -1 else end
            yield SqlToken("comment", sql[i:end], i, end)
            i = end
            continue

        if ch == "/" and nxt == "*":
            close = sql.find("*/", i + 2)
            end = n if close == -1 else close + 2
            yield SqlToken("comment", sql[i:end], i, end)
            i = end
            continue

        if ch == "'":
            end = i + 1
            while end < n:
                if sql[end] == "'":
                    if end + 1 < n and sql[end + 1] == "'":
                        end += 2
                        continue
                    end += 1
                    break
                end += 1
            yield SqlToken("string", sql[i:end], i, end)
            i = end
            continue

        if ch == '"':
            end = i + 1
            value: list[str] = []
            closed = False
            while end < n:
                if sql[end] == '"':
                    if end + 1 < n and sql[end + 1] == '"':
                        value.append('"')
                        end += 2
                        continue
                    closed = True
                    end += 1
                    break
                value.append(sql[end])
                end += 1
            if closed:
                yield SqlToken("quoted_identifier", "".join(value), i, end)
            else:
                yield SqlToken("other", sql[i:end], i, end)
            i = end
            continue

        if _is_identifier_start(ch):
            end = i + 1
            while end < n and _is_identifier_part(sql[end]):
                end += 1
            yield SqlToken("identifier", sql[i:end], i, end)
            i = end
            continue

        yield SqlToken("other", ch, i, i + 1)
        i += 1


def iter_name_tokens(sql: str) -> Iterator[SqlToken]:
    for tok in iter_sql_tokens(sql):
        if tok.kind in ("identifier", "quoted_identifier"):
            yield tok
