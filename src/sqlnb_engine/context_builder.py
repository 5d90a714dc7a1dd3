from __future__ import annotations

from .models import NotebookCell
from .naming import provided_names


def format_cells_as_context(cells: list[NotebookCell]) -> str:
    parts: list[str] = []
    for c in cells:
        names = provided_names(c)
        alias = f", alias={names.alias}" if names.alias else ""
        header = f"-- --- cell: {c.cell_id} (index={c.index}, type={c.cell_type}, ref={names.ref}{alias}) ---"
        parts.append(header)
        if c.is_sql:
            parts.append(f"```sql\n{c.content}\n```")
        else:
            parts.append(c.content)
        parts.append("")

    return "\n".join(parts).strip() + "\n"
