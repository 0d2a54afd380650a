"""PostgreSQL catalog introspection.

This module lists relations and reads column metadata, including the column
comments that carry sensitivity annotations.
"""

from typing import TYPE_CHECKING

from postgres_mcp_tool.models.errors import TableNotFoundError
from postgres_mcp_tool.models.schema import ColumnInfo, DatabaseInfo, TableSummary

if TYPE_CHECKING:
    from postgres_mcp_tool.db.pool import TargetPool

SYSTEM_SCHEMAS = ("pg_catalog", "information_schema", "pg_toast")

RELKIND_TYPES = {
    "r": "TABLE",
    "p": "PARTITIONED TABLE",
    "v": "VIEW",
    "m": "MATERIALIZED VIEW",
}


def split_table_name(table: str) -> tuple[str | None, str]:
    """Split ``schema.table`` into its parts.

    Quotes are stripped; unquoted names are not case-folded because callers
    pass catalog names back as they were listed.

    Example:
        >>> split_table_name("sales.orders")
        ('sales', 'orders')
        >>> split_table_name("orders")
        (None, 'orders')
    """
    schema, _, name = table.strip().rpartition(".")
    return (schema.strip('"') or None), name.strip('"')


class SchemaIntrospector:
    """Reads relation and column metadata from the system catalogs.

    Attributes:
        pool: Target pool to read through.
    """

    def __init__(self, pool: "TargetPool") -> None:
        self.pool = pool

    async def list_tables(self) -> list[TableSummary]:
        """List tables, partitioned tables, views and materialized views.

        Returns:
            list[TableSummary]: Relations ordered by schema then name.
        """
        query = """
            SELECT
                c.relname AS table_name,
                n.nspname AS schema_name,
                c.relkind::text AS relkind
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE c.relkind IN ('r', 'p', 'v', 'm')
              AND NOT c.relispartition
              AND n.nspname <> ALL($1::text[])
              AND n.nspname NOT LIKE 'pg_temp%'
            ORDER BY n.nspname, c.relname
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, list(SYSTEM_SCHEMAS))

        return [
            TableSummary(
                name=row["table_name"],
                schema_name=row["schema_name"],
                table_type=RELKIND_TYPES.get(row["relkind"], "TABLE"),
            )
            for row in rows
        ]

    async def get_columns(self, table: str) -> list[ColumnInfo]:
        """Get catalog-ordered column information for a table.

        Args:
            table: Table name, optionally schema-qualified.

        Returns:
            list[ColumnInfo]: Columns with key flags and comments.

        Raises:
            TableNotFoundError: If no such table is visible.
        """
        schema_name, table_name = split_table_name(table)
        query = """
            SELECT
                n.nspname AS schema_name,
                a.attname AS column_name,
                pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
                NOT a.attnotnull AS is_nullable,
                pg_get_expr(ad.adbin, ad.adrelid) AS default_value,
                col_description(a.attrelid, a.attnum) AS comment,
                EXISTS (
                    SELECT 1 FROM pg_constraint con
                    WHERE con.conrelid = c.oid AND con.contype = 'p'
                      AND a.attnum = ANY(con.conkey)
                ) AS is_primary_key,
                EXISTS (
                    SELECT 1 FROM pg_constraint con
                    WHERE con.conrelid = c.oid AND con.contype = 'f'
                      AND a.attnum = ANY(con.conkey)
                ) AS is_foreign_key,
                EXISTS (
                    SELECT 1 FROM pg_constraint con
                    WHERE con.conrelid = c.oid AND con.contype = 'u'
                      AND a.attnum = ANY(con.conkey)
                ) AS is_unique
            FROM pg_attribute a
            JOIN pg_class c ON a.attrelid = c.oid
            JOIN pg_namespace n ON c.relnamespace = n.oid
            LEFT JOIN pg_attrdef ad ON a.attrelid = ad.adrelid AND a.attnum = ad.adnum
            WHERE c.relname = $1
              AND ($2::text IS NULL OR n.nspname = $2)
              AND n.nspname <> ALL($3::text[])
              AND c.relkind IN ('r', 'p', 'v', 'm', 'f')
              AND a.attnum > 0
              AND NOT a.attisdropped
            ORDER BY n.nspname = 'public' DESC, n.nspname, a.attnum
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, table_name, schema_name, list(SYSTEM_SCHEMAS))

        if not rows:
            raise TableNotFoundError(table, str(self.pool.target))

        # Same table name in several schemas: public wins, then alphabetical
        resolved_schema = rows[0]["schema_name"]
        return [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                is_nullable=row["is_nullable"],
                default_value=row["default_value"],
                is_primary_key=row["is_primary_key"],
                is_foreign_key=row["is_foreign_key"],
                is_unique=row["is_unique"],
                comment=row["comment"],
            )
            for row in rows
            if row["schema_name"] == resolved_schema
        ]

    async def column_names(self, table: str) -> list[str]:
        return [column.name for column in await self.get_columns(table)]

    async def column_comments(self, table: str) -> dict[str, str]:
        """Map column name to comment for the commented columns of a table."""
        return {
            column.name: column.comment
            for column in await self.get_columns(table)
            if column.comment
        }

    async def database_info(self) -> DatabaseInfo:
        """Read the database name, server version and session user."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT current_database() AS database_name, "
                "current_setting('server_version') AS server_version, "
                "current_user AS user_name"
            )

        return DatabaseInfo(
            database_name=row["database_name"],
            server_version=row["server_version"],
            current_user=row["user_name"],
            connection_info=self.pool.config.descriptor,
        )
