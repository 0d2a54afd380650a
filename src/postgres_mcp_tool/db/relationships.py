"""Primary, foreign and unique key metadata derived from pg_constraint.

Nothing is cached: every call reads the catalog, which stays the source of
truth across migrations.
"""

from typing import TYPE_CHECKING

from asyncpg.connection import Connection

from postgres_mcp_tool.db.introspection import SYSTEM_SCHEMAS, split_table_name
from postgres_mcp_tool.models.schema import (
    ForeignKeyRelationship,
    JoinSuggestion,
    PrimaryKeyColumn,
    RelationshipSummary,
    UniqueConstraint,
)

if TYPE_CHECKING:
    from postgres_mcp_tool.db.pool import TargetPool

# pg_constraint.confdeltype / confupdtype codes
REFERENTIAL_ACTIONS = {
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
    "r": "RESTRICT",
}


def referential_action(code: str | None) -> str:
    """Map a catalog action code to its SQL name; unknown codes are NO ACTION."""
    return REFERENTIAL_ACTIONS.get(code or "", "NO ACTION")


_FOREIGN_KEY_SELECT = """
    SELECT
        con.conname AS constraint_name,
        src.relname AS source_table,
        sa.attname AS source_column,
        rc.relname AS target_table,
        ra.attname AS target_column,
        con.confdeltype::text AS delete_action,
        con.confupdtype::text AS update_action
    FROM pg_constraint con
    JOIN pg_class src ON src.oid = con.conrelid
    JOIN pg_namespace sn ON sn.oid = src.relnamespace
    JOIN pg_class rc ON rc.oid = con.confrelid
    JOIN pg_namespace rn ON rn.oid = rc.relnamespace
    CROSS JOIN LATERAL unnest(con.conkey, con.confkey)
        WITH ORDINALITY AS k(src_attnum, ref_attnum, ord)
    JOIN pg_attribute sa ON sa.attrelid = con.conrelid AND sa.attnum = k.src_attnum
    JOIN pg_attribute ra ON ra.attrelid = con.confrelid AND ra.attnum = k.ref_attnum
    WHERE con.contype = 'f'
"""


class RelationshipInspector:
    """Derives key structure and join suggestions for one table.

    Tables may be given bare (``orders``) or schema-qualified
    (``sales.orders``); bare names match any non-system schema.

    Example:
        >>> inspector = RelationshipInspector(pool)
        >>> [s.clause for s in await inspector.join_suggestions("orders")]
        ['INNER JOIN users ON orders.user_id = users.id']
    """

    def __init__(self, pool: "TargetPool") -> None:
        self.pool = pool

    async def primary_keys(self, table: str) -> list[PrimaryKeyColumn]:
        """Primary key columns ordered by key sequence ascending."""
        schema_name, table_name = split_table_name(table)
        query = """
            SELECT
                con.conname AS constraint_name,
                a.attname AS column_name,
                k.ord AS key_sequence
            FROM pg_constraint con
            JOIN pg_class c ON c.oid = con.conrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            CROSS JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = k.attnum
            WHERE con.contype = 'p'
              AND c.relname = $1
              AND ($2::text IS NULL OR n.nspname = $2)
              AND n.nspname <> ALL($3::text[])
            ORDER BY k.ord
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, table_name, schema_name, list(SYSTEM_SCHEMAS))

        keys = [
            PrimaryKeyColumn(
                column_name=row["column_name"],
                key_sequence=row["key_sequence"],
                constraint_name=row["constraint_name"],
            )
            for row in rows
        ]
        return sorted(keys, key=lambda key: key.key_sequence)

    async def foreign_keys(self, table: str) -> list[ForeignKeyRelationship]:
        """Outbound references from ``table`` to other tables."""
        schema_name, table_name = split_table_name(table)
        query = (
            _FOREIGN_KEY_SELECT
            + """
              AND src.relname = $1
              AND ($2::text IS NULL OR sn.nspname = $2)
              AND sn.nspname <> ALL($3::text[])
            ORDER BY con.conname, k.ord
        """
        )
        async with self.pool.acquire() as conn:
            return await self._fetch_foreign_keys(conn, query, table_name, schema_name)

    async def referenced_by(self, table: str) -> list[ForeignKeyRelationship]:
        """Inbound references from other tables to ``table``."""
        schema_name, table_name = split_table_name(table)
        query = (
            _FOREIGN_KEY_SELECT
            + """
              AND rc.relname = $1
              AND ($2::text IS NULL OR rn.nspname = $2)
              AND rn.nspname <> ALL($3::text[])
            ORDER BY src.relname, con.conname, k.ord
        """
        )
        async with self.pool.acquire() as conn:
            return await self._fetch_foreign_keys(conn, query, table_name, schema_name)

    async def unique_constraints(self, table: str) -> list[UniqueConstraint]:
        """Unique constraints grouped by name, columns in constraint position order."""
        schema_name, table_name = split_table_name(table)
        query = """
            SELECT
                con.conname AS constraint_name,
                c.relname AS table_name,
                a.attname AS column_name
            FROM pg_constraint con
            JOIN pg_class c ON c.oid = con.conrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            CROSS JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = k.attnum
            WHERE con.contype = 'u'
              AND c.relname = $1
              AND ($2::text IS NULL OR n.nspname = $2)
              AND n.nspname <> ALL($3::text[])
            ORDER BY con.conname, k.ord
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, table_name, schema_name, list(SYSTEM_SCHEMAS))

        constraints: dict[str, UniqueConstraint] = {}
        for row in rows:
            constraint = constraints.setdefault(
                row["constraint_name"],
                UniqueConstraint(
                    constraint_name=row["constraint_name"],
                    table_name=row["table_name"],
                ),
            )
            constraint.columns.append(row["column_name"])
        return list(constraints.values())

    async def relationships(self, table: str) -> RelationshipSummary:
        return RelationshipSummary(
            table_name=table,
            primary_keys=await self.primary_keys(table),
            foreign_keys=await self.foreign_keys(table),
            referenced_by=await self.referenced_by(table),
            unique_constraints=await self.unique_constraints(table),
        )

    async def join_suggestions(self, table: str) -> list[JoinSuggestion]:
        """Propose one INNER JOIN per foreign key touching ``table``.

        Outbound keys come first, then inbound keys, each in discovery order.
        No de-duplication or ranking is applied.
        """
        _, table_name = split_table_name(table)
        outbound = await self.foreign_keys(table)
        inbound = await self.referenced_by(table)
        suggestions = [
            JoinSuggestion(
                from_table=table_name,
                to_table=fk.target_table,
                join_condition=(
                    f"{table_name}.{fk.source_column} = {fk.target_table}.{fk.target_column}"
                ),
            )
            for fk in outbound
        ]
        suggestions.extend(
            JoinSuggestion(
                from_table=table_name,
                to_table=ref.source_table,
                join_condition=(
                    f"{table_name}.{ref.target_column} = {ref.source_table}.{ref.source_column}"
                ),
            )
            for ref in inbound
        )
        return suggestions

    @staticmethod
    async def _fetch_foreign_keys(
        conn: Connection, query: str, table_name: str, schema_name: str | None
    ) -> list[ForeignKeyRelationship]:
        rows = await conn.fetch(query, table_name, schema_name, list(SYSTEM_SCHEMAS))
        return [
            ForeignKeyRelationship(
                constraint_name=row["constraint_name"],
                source_table=row["source_table"],
                source_column=row["source_column"],
                target_table=row["target_table"],
                target_column=row["target_column"],
                on_delete=referential_action(row["delete_action"]),
                on_update=referential_action(row["update_action"]),
            )
            for row in rows
        ]
