from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

CellType = Literal["sql", "markdown", "other"]


class NotebookCell(BaseModel):
    cell_id: str
    index: int = 0
    cell_type: CellType = "sql"
    content: str = ""

    ref: str | None = Field(default=None, description="Persisted machine reference, derived from cell_id if absent")
    alias: str | None = Field(default=None, description="User-chosen name")

    @property
    def is_sql(self) -> bool:
        return self.cell_type == "sql"


class ProvidedNames(BaseModel):
    model_config = ConfigDict(frozen=True)

    ref: str
    alias: str | None = None

    @property
    def names(self) -> list[str]:
        if self.alias:
            return [self.ref, self.alias]
        return [self.ref]


# --- Lineage analysis (boundary shape of a pluggable SQL-lineage analyzer) ---


class LineageNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    label: str = ""
    qualified_name: str | None = Field(default=None, alias="qualifiedName")


class LineageStatement(BaseModel):
    nodes: list[LineageNode] = Field(default_factory=list)


class LineageSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_errors: bool = Field(default=False, alias="hasErrors")


class LineageAnalysis(BaseModel):
    statements: list[LineageStatement] = Field(default_factory=list)
    summary: LineageSummary = Field(default_factory=LineageSummary)


# --- Dependency graph snapshots ---


class ResolvedDependencyGraph(BaseModel):
    model_config = ConfigDict(frozen=True)

    edges: dict[str, frozenset[str]] = Field(
        default_factory=dict,
        description="consumer cell_id -> provider cell_ids",
    )
    duplicate_name_cells: frozenset[str] = Field(default_factory=frozenset)
    unresolved_references: dict[str, list[str]] = Field(default_factory=dict)


class NotebookAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str | None = None
    cells: list[NotebookCell]

    dependencies: dict[str, list[str]] = Field(
        default_factory=dict,
        description="consumer cell_id -> referenced names, first-seen order",
    )
    graph: ResolvedDependencyGraph = Field(default_factory=ResolvedDependencyGraph)
    cycle_cells: frozenset[str] = Field(default_factory=frozenset)
    execution_order: list[str] = Field(default_factory=list)


class FocusedContext(BaseModel):
    path: str
    focus_cell_id: str | None = None
    selected_cell_ids: list[str]
    context_text: str


CellStatus = Literal["unexecuted", "executed", "stale"]


class NotebookCellState(BaseModel):
    cell_id: str
    status: CellStatus
    display_name: str
    stale: bool = False
    has_circular_dependency: bool = False
    has_duplicate_name: bool = False
    unresolved_references: list[str] = Field(default_factory=list)
    alias_error: str | None = None
    upstream_cell_ids: list[str] = Field(default_factory=list)


class NotebookState(BaseModel):
    path: str | None = None
    cells: list[NotebookCellState]


class NotebookRerunPlan(BaseModel):
    path: str | None = None
    focus_cell_id: str
    cells_to_rerun: list[str]
    reasons_by_cell_id: dict[str, list[str]] = Field(default_factory=dict)


class AliasRenamePatch(BaseModel):
    cell_id: str
    old_content: str
    new_content: str
    replacements: int


class AliasRenamePreview(BaseModel):
    old_name: str | None = None
    next_name: str | None = None
    replacement_name: str | None = None
    patches: list[AliasRenamePatch] = Field(default_factory=list)


# --- Execution ---


class CatalogState(BaseModel):
    model_config = ConfigDict(frozen=True)

    databases: list[str] = Field(default_factory=list)
    relations: list[str] = Field(default_factory=list)


class CellExecutionError(BaseModel):
    message: str
    line_number: int | None = None
    statement_index: int | None = Field(default=None, description="1-based statement index within the cell")
    statement_kind: str | None = None

    def format(self) -> str:
        if self.line_number is None:
            return self.message
        return f"Line {self.line_number}, statement {self.statement_index} ({self.statement_kind}):\n{self.message}"


ExecutionStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


class CellExecutionResult(BaseModel):
    cell_id: str
    status: ExecutionStatus
    last_query: str | None = None
    columns: list[str] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
    truncated: bool = False
    error: CellExecutionError | None = None
    views_created: list[str] = Field(default_factory=list)
    catalog: CatalogState = Field(default_factory=CatalogState)
    duration_ms: int = 0


class ExecutionTask(BaseModel):
    execution_id: str
    notebook_id: str
    cell_id: str
    status: ExecutionStatus
    result: CellExecutionResult | None = None
    created_at: datetime
    updated_at: datetime
    error: str | None = None


# --- .sqlnb file format ---

SQLNB_FORMAT_VERSION = 1


class SqlnbCell(BaseModel):
    type: Literal["sql", "markdown"]
    content: str
    name: str | None = None
    id: str | None = None
    ref: str | None = None


class SqlnbNotebook(BaseModel):
    version: Literal[1] = SQLNB_FORMAT_VERSION
    name: str = Field(min_length=1)
    cells: list[SqlnbCell]
    metadata: dict[str, Any] = Field(default_factory=dict)
