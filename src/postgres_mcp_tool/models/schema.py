"""Catalog models for PostgreSQL introspection.

This module defines data models for tables, columns and key relationships
derived on demand from the system catalogs.
"""

from typing import Any

from pydantic import BaseModel, Field


class TableSummary(BaseModel):
    """A relation visible to the connected user."""

    name: str = Field(..., description="Table name")
    schema_name: str = Field(default="public", description="Schema name")
    table_type: str = Field(
        ..., description="TABLE, PARTITIONED TABLE, VIEW or MATERIALIZED VIEW"
    )

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ColumnInfo(BaseModel):
    """Information about a database column."""

    name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="PostgreSQL data type")
    is_nullable: bool = Field(..., description="Whether column allows NULL values")
    default_value: str | None = Field(None, description="Default value expression")
    is_primary_key: bool = Field(default=False, description="Whether column is primary key")
    is_foreign_key: bool = Field(
        default=False, description="Whether column references another table"
    )
    is_unique: bool = Field(default=False, description="Whether column has unique constraint")
    comment: str | None = Field(None, description="Column comment/description")


class PrimaryKeyColumn(BaseModel):
    """One column of a primary key."""

    column_name: str = Field(..., description="Column name")
    key_sequence: int = Field(..., ge=1, description="1-based position within the key")
    constraint_name: str = Field(..., description="Primary key constraint name")


class ForeignKeyRelationship(BaseModel):
    """One column pair of a foreign key constraint."""

    constraint_name: str = Field(..., description="Foreign key constraint name")
    source_table: str = Field(..., description="Referencing table")
    source_column: str = Field(..., description="Referencing column")
    target_table: str = Field(..., description="Referenced table")
    target_column: str = Field(..., description="Referenced column")
    on_delete: str = Field(default="NO ACTION", description="Referential action on delete")
    on_update: str = Field(default="NO ACTION", description="Referential action on update")


class UniqueConstraint(BaseModel):
    """A unique constraint with its columns in constraint order."""

    constraint_name: str = Field(..., description="Unique constraint name")
    table_name: str = Field(..., description="Constrained table")
    columns: list[str] = Field(default_factory=list, description="Columns in position order")


class RelationshipSummary(BaseModel):
    """Key structure of one table, derived from the catalog on every call."""

    table_name: str = Field(..., description="Inspected table")
    primary_keys: list[PrimaryKeyColumn] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyRelationship] = Field(
        default_factory=list, description="Outbound references"
    )
    referenced_by: list[ForeignKeyRelationship] = Field(
        default_factory=list, description="Inbound references from other tables"
    )
    unique_constraints: list[UniqueConstraint] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class JoinSuggestion(BaseModel):
    """A join derived from a foreign key."""

    from_table: str = Field(..., description="Table the suggestion starts from")
    to_table: str = Field(..., description="Table to join")
    join_condition: str = Field(..., description="ON condition")
    join_type: str = Field(default="INNER JOIN", description="Join keyword")

    @property
    def clause(self) -> str:
        """Render the join, e.g. ``INNER JOIN users ON orders.user_id = users.id``."""
        return f"{self.join_type} {self.to_table} ON {self.join_condition}"


class DatabaseInfo(BaseModel):
    """Identity of the database behind a target."""

    database_name: str = Field(..., description="Current database")
    server_version: str = Field(..., description="PostgreSQL server version")
    current_user: str = Field(..., description="Session user")
    connection_info: str = Field(..., description="host:port/database")
