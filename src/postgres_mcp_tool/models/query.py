"""Query execution models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ColumnDescriptor(BaseModel):
    """Result column metadata."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Column label")
    data_type: str = Field(..., description="PostgreSQL type name")
    nullable: bool | None = Field(
        None, description="Nullability; None when the driver does not report it"
    )


class QueryResult(BaseModel):
    """Snapshot of one executed query."""

    model_config = ConfigDict(frozen=True)

    columns: list[ColumnDescriptor] = Field(default_factory=list, description="Ordered columns")
    rows: list[dict[str, Any]] = Field(default_factory=list, description="Rows as column mappings")
    execution_time_ms: float = Field(..., ge=0, description="Execution time in milliseconds")
    row_count: int = Field(..., ge=0, description="Number of rows returned")
    has_more_rows: bool = Field(
        default=False, description="Whether rows beyond the cap existed"
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class PiiFilteredQuery(BaseModel):
    """Outcome of PII filtering for one statement."""

    model_config = ConfigDict(frozen=True)

    sql: str = Field(..., description="Statement to execute")
    original_sql: str = Field(..., description="Statement as submitted")
    protection_applied: bool = Field(
        default=False, description="Whether columns were classified for this statement"
    )
    pii_columns: list[str] = Field(
        default_factory=list, description="PII or unclassified columns as table.column"
    )
    removed_items: list[str] = Field(
        default_factory=list, description="Select-list items dropped from the statement"
    )
    abandoned: bool = Field(
        default=False, description="Discovery failed and the statement runs unmodified"
    )

    @property
    def modified(self) -> bool:
        return self.sql != self.original_sql

    def to_dict(self) -> dict[str, Any]:
        return {
            "protection_applied": self.protection_applied,
            "modified": self.modified,
            "abandoned": self.abandoned,
            "pii_columns": self.pii_columns,
            "removed_items": self.removed_items,
        }
