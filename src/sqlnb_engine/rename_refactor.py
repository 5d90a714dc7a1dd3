from __future__ import annotations

from .models import AliasRenamePatch, AliasRenamePreview, NotebookCell
from .naming import ensure_cell_ref, normalize_cell_name
from .sql_lexer import iter_name_tokens
from .utils import quote_identifier


def replace_identifier(sql: str, old_name: str, new_name: str) -> tuple[str, int]:
    """Rewrite references to ``old_name`` outside comments and string literals.

    Quoted identifiers stay quoted. Matching is case-insensitive.
    """
    old = old_name.lower()
    out: list[str] = []
    cursor = 0
    replacements = 0

    for tok in iter_name_tokens(sql):
        if tok.value.lower() != old:
            continue
        out.append(sql[cursor : tok.start])
        out.append(quote_identifier(new_name) if tok.kind == "quoted_identifier" else new_name)
        cursor = tok.end
        replacements += 1

    out.append(sql[cursor:])
    return "".join(out), replacements


def preview_alias_rename(
    cells: list[NotebookCell],
    target_cell_id: str,
    next_name: str | None,
) -> AliasRenamePreview:
    """Patches that keep other cells pointing at ``target_cell_id`` after a rename.

    Clearing the alias rewrites references to the cell's machine ref.
    """
    target = next((c for c in cells if c.cell_id == target_cell_id), None)
    normalized_next = normalize_cell_name(next_name)
    if target is None or not target.is_sql:
        return AliasRenamePreview(next_name=normalized_next)

    old_name = normalize_cell_name(target.alias)
    replacement = normalized_next or ensure_cell_ref(target.cell_id, target.ref)
    preview = AliasRenamePreview(old_name=old_name, next_name=normalized_next, replacement_name=replacement)
    if not old_name or old_name.lower() == replacement.lower():
        return preview

    for c in sorted(cells, key=lambda c: c.index):
        if c.cell_id == target_cell_id or not c.is_sql:
            continue
        if old_name.lower() not in c.content.lower():
            continue
        new_content, n = replace_identifier(c.content, old_name, replacement)
        if n == 0 or new_content == c.content:
            continue
        preview.patches.append(
            AliasRenamePatch(cell_id=c.cell_id, old_content=c.content, new_content=new_content, replacements=n)
        )

    return preview
