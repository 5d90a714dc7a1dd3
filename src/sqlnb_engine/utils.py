from __future__ import annotations

import re

_NON_IDENTIFIER = re.compile(r"[^A-Za-z0-9_]")


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def to_identifier_chars(text: str) -> str:
    return _NON_IDENTIFIER.sub("_", text)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def dedupe_casefold(items: list[str]) -> list[str]:
    """Drop case-insensitive repeats, keeping the first spelling seen."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = item.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out
