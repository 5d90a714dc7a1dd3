from __future__ import annotations

import re
from collections.abc import Iterable

from .models import NotebookCell, ProvidedNames
from .utils import to_identifier_chars

# Machine references live in their own namespace; user aliases may not use it.
CELL_REF_PREFIX = "__nb_cell_"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NAME_ANNOTATION_RE = re.compile(r"^\s*--\s*@name(?:\s*:\s*|\s+)(\S+)\s*$")


def make_cell_ref(cell_id: str) -> str:
    return f"{CELL_REF_PREFIX}{to_identifier_chars(str(cell_id))}"


def ensure_cell_ref(cell_id: str, ref: str | None = None) -> str:
    if ref and ref.strip():
        return ref.strip()
    return make_cell_ref(cell_id)


def is_machine_ref(name: str) -> bool:
    return name.lower().startswith(CELL_REF_PREFIX)


def normalize_cell_name(name: str | None) -> str | None:
    if name is None:
        return None
    trimmed = name.strip()
    return trimmed or None


def provided_names(cell: NotebookCell) -> ProvidedNames:
    return ProvidedNames(
        ref=ensure_cell_ref(cell.cell_id, cell.ref),
        alias=normalize_cell_name(cell.alias),
    )


def _is_valid_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name))


def validate_cell_name(name: str, existing: Iterable[str] = ()) -> str | None:
    """Return an error message when ``name`` cannot be used as a cell alias."""
    if not _is_valid_identifier(name):
        return (
            f'Invalid cell name "{name}": must be a valid SQL identifier '
            "(letters, digits, underscores, no leading digit)"
        )
    if is_machine_ref(name):
        return f'Cell name "{name}" cannot start with reserved prefix "{CELL_REF_PREFIX}"'
    if name.lower() in {e.lower() for e in existing}:
        return f'Cell name "{name}" is already used by another SQL cell'
    return None


def parse_user_cell_name(content: str) -> str | None:
    """Read a ``-- @name: my_view`` annotation from the first line."""
    if not content:
        return None
    first_line = content.split("\n", 1)[0]
    m = _NAME_ANNOTATION_RE.match(first_line)
    if not m:
        return None
    name = m.group(1)
    return name if _is_valid_identifier(name) else None


def cell_view_names(cell: NotebookCell) -> list[str]:
    """Names a cell's result is materialized under: its ref, plus a valid alias."""
    names = [ensure_cell_ref(cell.cell_id, cell.ref)]
    alias = normalize_cell_name(cell.alias) or parse_user_cell_name(cell.content)
    if alias and validate_cell_name(alias) is None:
        names.append(alias)
    return names
