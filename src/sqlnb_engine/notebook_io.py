from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from .errors import NotebookNotFoundError, NotebookParseError
from .models import NotebookCell, SqlnbCell, SqlnbNotebook
from .naming import ensure_cell_ref, normalize_cell_name, parse_user_cell_name
from .utils import normalize_newlines


def load_notebook(path: str) -> SqlnbNotebook:
    p = Path(path)
    if not p.exists():
        raise NotebookNotFoundError(f"Notebook not found: {path}")

    try:
        return SqlnbNotebook.model_validate_json(p.read_text(encoding="utf-8"))
    except (ValidationError, OSError, UnicodeDecodeError) as e:
        raise NotebookParseError(f"Failed to parse notebook: {path}") from e


def _cell_id(cell: SqlnbCell, index: int) -> str:
    if cell.id and cell.id.strip():
        return cell.id
    return f"cell_{index}"  # stable fallback


def notebook_cells(nb: SqlnbNotebook) -> list[NotebookCell]:
    out: list[NotebookCell] = []
    for i, cell in enumerate(nb.cells):
        content = normalize_newlines(cell.content)
        cid = _cell_id(cell, i)
        alias = None
        if cell.type == "sql":
            alias = normalize_cell_name(cell.name) or parse_user_cell_name(content)
        out.append(
            NotebookCell(
                cell_id=cid,
                index=i,
                cell_type=cell.type,
                content=content,
                ref=ensure_cell_ref(cid, cell.ref) if cell.type == "sql" else None,
                alias=alias,
            )
        )
    return out


def save_notebook(path: str, name: str, cells: list[NotebookCell]) -> SqlnbNotebook:
    sqlnb_cells: list[SqlnbCell] = []
    for c in sorted(cells, key=lambda c: c.index):
        if c.cell_type not in ("sql", "markdown"):
            continue
        sqlnb_cells.append(
            SqlnbCell(
                type=c.cell_type,
                content=c.content,
                name=normalize_cell_name(c.alias) if c.is_sql else None,
                id=c.cell_id,
                ref=ensure_cell_ref(c.cell_id, c.ref) if c.is_sql else None,
            )
        )

    nb = SqlnbNotebook(
        name=name,
        cells=sqlnb_cells,
        metadata={"createdAt": datetime.now(UTC).isoformat()},
    )
    payload = nb.model_dump(mode="json", exclude_none=True)
    Path(path).write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return nb
