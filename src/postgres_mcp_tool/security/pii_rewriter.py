"""PII column filtering for the protected target.

Statements are rewritten textually, not parsed: tables are discovered by
scanning for identifiers after FROM, JOIN and commas, and every select list
is split on top-level commas. A select item is dropped when it mentions a
column that is not explicitly classified as non-personal. Star projections
and whole-row references cannot be filtered this way, so they are refused
whenever PII is present.

Comments are removed before scanning, and unquoted names are folded to lower
case while quoted ones keep their case. A table named after JOIN or after the
FROM that ends a select list must resolve in the catalog (or be a CTE or a
system relation); otherwise the statement is refused rather than run
unfiltered.

Known limits: CTE and subquery aliases are not resolved, and a PII column
name used as an alias elsewhere in a select item drops that item too.
"""

import logging
import re
from collections.abc import Iterator
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from postgres_mcp_tool.db.introspection import SYSTEM_SCHEMAS
from postgres_mcp_tool.models.errors import (
    RewriteAbandonedError,
    TableNotFoundError,
    UnsafeRewriteError,
)
from postgres_mcp_tool.models.query import PiiFilteredQuery, QueryResult
from postgres_mcp_tool.models.target import PROTECTED_TARGET, Target
from postgres_mcp_tool.observability.metrics import metrics
from postgres_mcp_tool.security.sensitivity import SensitivityClassifier

if TYPE_CHECKING:
    from postgres_mcp_tool.db.pool import TargetPool

logger = logging.getLogger(__name__)

# Words that may follow a table name but are never its alias
NON_ALIAS_KEYWORDS = frozenset(
    {
        "as", "cross", "except", "fetch", "for", "from", "full", "group", "having",
        "inner", "intersect", "into", "join", "lateral", "left", "limit", "natural",
        "offset", "on", "only", "order", "outer", "right", "select", "tablesample",
        "union", "using", "where", "window",
    }
)  # fmt: skip

_IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][\w$]*)'
_QUALIFIED = rf"{_IDENT}(?:\s*\.\s*{_IDENT})?"
_NOT_KEYWORD = rf"(?!(?:{'|'.join(sorted(NON_ALIAS_KEYWORDS))})(?![\w$]))"
_ALIAS = rf"(?:\s+(?:AS\s+)?{_NOT_KEYWORD}({_IDENT}))?"
# FROM ONLY parent, JOIN LATERAL fn(...)
_RELATION_PREFIX = r"(?:(?:ONLY|LATERAL)(?![\w$])\s*)?(?!(?:ONLY|LATERAL)(?![\w$]))"

TABLE_REFERENCE_PATTERN = re.compile(
    rf"(\bFROM|\bJOIN|,)\s*{_RELATION_PREFIX}({_QUALIFIED}){_ALIAS}", re.IGNORECASE
)

FROM_CLAUSE_PATTERN = re.compile(
    rf"\b(?:FROM|JOIN)\s*{_RELATION_PREFIX}{_QUALIFIED}{_ALIAS}", re.IGNORECASE
)

CTE_NAME_PATTERN = re.compile(
    rf"(?:\bWITH(?:\s+RECURSIVE)?|,)\s*({_IDENT})\s*(?:\([^()]*\)\s*)?"
    r"AS\s+(?:NOT\s+)?(?:MATERIALIZED\s+)?\(",
    re.IGNORECASE,
)

# Comments are blanked; quoted text is matched first so "--" inside it survives
COMMENT_PATTERN = re.compile(
    r"""('(?:[^']|'')*'|"(?:[^"]|"")*")|--[^\n]*|/\*.*?(?:\*/|\Z)""", re.DOTALL
)

SELECT_MODIFIER_PATTERN = re.compile(
    r"\s*(?:(?:DISTINCT\s+ON\s*\([^)]*\)|DISTINCT|ALL)(?![\w$]))?\s*",
    re.IGNORECASE,
)

STAR_ITEM_PATTERN = re.compile(r'^\*$|(?:^|[\s(,])(?:"?[\w$]+"?\s*\.\s*)+\*')

STRING_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'")

TOKEN_PATTERN = re.compile(r'(?<![\w$."])"?([A-Za-z_][\w$]*)"?')

# Keywords that end a select list at its own nesting depth
SELECT_LIST_TERMINATORS = (
    "from",
    "into",
    "where",
    "group",
    "having",
    "window",
    "order",
    "limit",
    "offset",
    "fetch",
    "union",
    "intersect",
    "except",
)


def strip_comments(sql: str) -> str:
    """Replace ``--`` and ``/* */`` comments with a space, leaving quoted text alone.

    Example:
        >>> strip_comments("SELECT /* all */ * FROM users")
        'SELECT   * FROM users'
    """
    return COMMENT_PATTERN.sub(lambda m: m.group(1) or " ", sql)


def _normalize_identifier(name: str) -> str:
    """Fold unquoted parts to lower case and unquote quoted ones, as PostgreSQL does."""
    parts = re.findall(r'"((?:[^"]|"")+)"|([^\s."]+)', name)
    return ".".join(
        quoted.replace('""', '"') if quoted else bare.lower() for quoted, bare in parts
    )


class TableReference(BaseModel):
    """A relation named in a statement.

    ``in_from_clause`` is set for names that follow JOIN, or the FROM that
    ends a select list. Those must resolve; names after other FROMs
    (``EXTRACT(year FROM created_at)``) and after commas may be columns.
    """

    model_config = ConfigDict(frozen=True)

    table: str
    alias: str | None
    in_from_clause: bool


def find_table_references(sql: str) -> list[TableReference]:
    """Scan ``sql`` (comments already stripped) for table references.

    Function calls such as ``generate_series(1, 3)`` are skipped, and so is
    anything inside a string literal.
    """
    # Blank literal contents in place so positions still line up with _scan
    sql = STRING_LITERAL_PATTERN.sub(lambda m: "'" + " " * (len(m.group()) - 2) + "'", sql)
    clause_starts = {
        end for _, end in _select_list_spans(sql) if _keyword_at(sql, end, "from")
    }
    references: list[TableReference] = []
    for match in TABLE_REFERENCE_PATTERN.finditer(sql):
        if sql[match.end(2) :].lstrip().startswith("("):
            continue
        keyword = match.group(1).lower()
        in_from_clause = keyword == "join" or (
            keyword == "from" and match.start(1) in clause_starts
        )
        alias = _normalize_identifier(match.group(3)) if match.group(3) else None
        reference = TableReference(
            table=_normalize_identifier(match.group(2)),
            alias=None if alias in NON_ALIAS_KEYWORDS else alias,
            in_from_clause=in_from_clause,
        )
        if reference not in references:
            references.append(reference)
    return references


def extract_table_references(sql: str) -> list[tuple[str, str | None]]:
    """Find ``(table, alias)`` pairs after FROM, JOIN and commas.

    A heuristic scan: it also picks up select-list identifiers after commas,
    which later resolve to no table and are ignored.
    """
    pairs: list[tuple[str, str | None]] = []
    for reference in find_table_references(strip_comments(sql)):
        if (reference.table, reference.alias) not in pairs:
            pairs.append((reference.table, reference.alias))
    return pairs


def extract_table_names(sql: str) -> list[str]:
    """Case-folded, de-duplicated table names in order of appearance.

    Example:
        >>> extract_table_names('SELECT o.id FROM Orders o JOIN sales."Customers" c ON ...')
        ['orders', 'sales.Customers']
    """
    names: list[str] = []
    for table, _ in extract_table_references(sql):
        if table not in names:
            names.append(table)
    return names


def extract_cte_names(sql: str) -> set[str]:
    return {_normalize_identifier(name) for name in CTE_NAME_PATTERN.findall(sql)}


def _is_system_relation(table: str) -> bool:
    schema, _, name = table.rpartition(".")
    return schema in SYSTEM_SCHEMAS or (not schema and name.startswith("pg_"))


def _scan(sql: str) -> Iterator[tuple[int, str, int]]:
    """Yield ``(index, char, depth)`` for characters outside quotes and comments.

    An opening parenthesis reports the depth outside it, and so does its
    matching closing parenthesis.
    """
    depth = 0
    i = 0
    length = len(sql)
    while i < length:
        ch = sql[i]
        if ch in ("'", '"'):
            end = i + 1
            while end < length:
                if sql[end] == ch:
                    if end + 1 < length and sql[end + 1] == ch:
                        end += 2
                        continue
                    break
                end += 1
            i = end + 1
            continue
        if sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = length if newline == -1 else newline + 1
            continue
        if sql.startswith("/*", i):
            close = sql.find("*/", i + 2)
            i = length if close == -1 else close + 2
            continue
        if ch == "(":
            yield i, ch, depth
            depth += 1
        elif ch == ")":
            depth -= 1
            yield i, ch, depth
        else:
            yield i, ch, depth
        i += 1


def _keyword_at(sql: str, index: int, keyword: str) -> bool:
    end = index + len(keyword)
    if sql[index:end].lower() != keyword:
        return False
    before = sql[index - 1] if index > 0 else " "
    after = sql[end] if end < len(sql) else " "
    return not (before.isalnum() or before in "_$") and not (after.isalnum() or after in "_$")


def find_select_lists(sql: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` spans of select lists, outermost first.

    Select lists nested inside another list's items are omitted: an item is
    either dropped whole or contains no PII column at all.
    """
    outermost: list[tuple[int, int]] = []
    for start, end in _select_list_spans(sql):
        if outermost and start < outermost[-1][1]:
            continue
        outermost.append((start, end))
    return outermost


def _select_list_spans(sql: str) -> list[tuple[int, int]]:
    """Spans of every select list in ``sql``, nested ones included."""
    chars = list(_scan(sql))
    spans: list[tuple[int, int]] = []
    for position, (index, ch, depth) in enumerate(chars):
        if ch not in "sS" or not _keyword_at(sql, index, "select"):
            continue
        start = SELECT_MODIFIER_PATTERN.match(sql, index + len("select")).end()
        end = len(sql)
        for other_index, other_ch, other_depth in chars[position + 1 :]:
            if other_index < start:
                continue
            if other_depth < depth:
                end = other_index
                break
            if other_depth != depth:
                continue
            if other_ch == ";":
                end = other_index
                break
            if any(_keyword_at(sql, other_index, kw) for kw in SELECT_LIST_TERMINATORS):
                # "a IS DISTINCT FROM b" stays inside the item
                if re.search(r"\bdistinct\s*$", sql[:other_index], re.IGNORECASE):
                    continue
                end = other_index
                break
        spans.append((start, end))
    return spans


def split_select_items(select_list: str) -> list[str]:
    """Split a select list on commas outside parentheses, quotes and comments."""
    items: list[str] = []
    last = 0
    for index, ch, depth in _scan(select_list):
        if ch == "," and depth == 0:
            items.append(select_list[last:index])
            last = index + 1
    items.append(select_list[last:])
    return [item.strip() for item in items if item.strip()]


def _references_whole_row(item: str, row_names: set[str]) -> bool:
    """Detect ``u`` or ``users`` used as a value, e.g. ``row_to_json(u)``."""
    text = STRING_LITERAL_PATTERN.sub("''", item)
    # Table names in a nested FROM clause are not values
    text = FROM_CLAUSE_PATTERN.sub(" ", text)
    for match in TOKEN_PATTERN.finditer(text):
        if match.group(1).lower() not in row_names:
            continue
        following = text[match.end() :].lstrip()
        if following.startswith((".", "(")):
            continue
        if re.search(r"\bAS\s*$", text[: match.start()], re.IGNORECASE):
            continue
        return True
    return False


class PiiRewriter:
    """Strips PII and unclassified columns from statements on the protected target.

    Example:
        >>> rewriter = PiiRewriter(protection_enabled=True)
        >>> filtered, result = await rewriter.run(pool, "SELECT id, email FROM users", 100)
        >>> filtered.sql
        'SELECT id FROM users'
    """

    def __init__(self, protection_enabled: bool = True) -> None:
        self.protection_enabled = protection_enabled

    def applies_to(self, target: Target) -> bool:
        return self.protection_enabled and target is PROTECTED_TARGET

    async def filter_query(
        self, sql: str, target: Target, classifier: SensitivityClassifier
    ) -> PiiFilteredQuery:
        """Rewrite ``sql`` so only columns classified safe are returned.

        Args:
            sql: Statement as submitted.
            target: Target the statement will run against.
            classifier: Classifier bound to the target's catalog.

        Returns:
            PiiFilteredQuery: Statement to run plus a report of what was removed.

        Raises:
            UnsafeRewriteError: If PII is present and the statement uses a star
                projection or whole-row reference, if no column would remain, or
                if a FROM or JOIN table cannot be found.
        """
        if not self.applies_to(target):
            if target is PROTECTED_TARGET:
                metrics.increment_pii_rewrite("passthrough")
            return PiiFilteredQuery(sql=sql, original_sql=sql)

        text = strip_comments(sql)
        try:
            pii_names, pii_columns, row_names = await self._discover(text, classifier)
        except UnsafeRewriteError:
            metrics.increment_pii_rewrite("refused")
            raise
        except Exception as e:
            abandoned = RewriteAbandonedError(
                message=f"PII column discovery failed on target '{target}'; running unfiltered",
                details={"error_type": type(e).__name__, "error": str(e)},
            )
            logger.warning(abandoned.message, extra=abandoned.details)
            metrics.increment_pii_rewrite("abandoned")
            return PiiFilteredQuery(sql=sql, original_sql=sql, abandoned=True)

        if not pii_names:
            metrics.increment_pii_rewrite("clean")
            return PiiFilteredQuery(sql=sql, original_sql=sql, protection_applied=True)

        try:
            rewritten, removed = self._rewrite(text, pii_names, row_names, pii_columns)
        except UnsafeRewriteError:
            metrics.increment_pii_rewrite("refused")
            raise

        if not removed:
            metrics.increment_pii_rewrite("clean")
            return PiiFilteredQuery(
                sql=sql, original_sql=sql, protection_applied=True, pii_columns=pii_columns
            )

        metrics.increment_pii_rewrite("rewritten")
        logger.info(
            "Removed PII columns from statement",
            extra={"target": target.value, "removed_items": len(removed)},
        )
        return PiiFilteredQuery(
            sql=rewritten,
            original_sql=sql,
            protection_applied=True,
            pii_columns=pii_columns,
            removed_items=removed,
        )

    async def run(
        self, pool: "TargetPool", sql: str, max_rows: int
    ) -> tuple[PiiFilteredQuery, QueryResult]:
        """Filter ``sql`` for the pool's target and execute it with the same row cap."""
        classifier = SensitivityClassifier(pool.introspector)
        filtered = await self.filter_query(sql, pool.target, classifier)
        result = await pool.executor.execute(filtered.sql, max_rows=max_rows)
        return filtered, result

    async def _discover(
        self, sql: str, classifier: SensitivityClassifier
    ) -> tuple[set[str], list[str], set[str]]:
        pii_names: set[str] = set()
        pii_columns: list[str] = []
        row_names: set[str] = set()
        aliases: dict[str, set[str]] = {}
        must_resolve: set[str] = set()
        for reference in find_table_references(sql):
            aliases.setdefault(reference.table, set())
            if reference.alias:
                aliases[reference.table].add(reference.alias)
            if reference.in_from_clause:
                must_resolve.add(reference.table)
        cte_names = extract_cte_names(sql)

        for table, table_aliases in aliases.items():
            try:
                classifications = await classifier.classify_table(table)
            except TableNotFoundError:
                if (
                    table in must_resolve
                    and table not in cte_names
                    and not _is_system_relation(table)
                ):
                    raise UnsafeRewriteError(
                        message=(
                            f"Table '{table}' could not be found, so its columns cannot be "
                            "classified on the protected target. Check the name and quoting; "
                            "use the list-tables tool to see the available tables."
                        ),
                        details={"table": table},
                    ) from None
                # A column after a comma, or a FROM inside a function call
                continue
            names = {table, table.rpartition(".")[2], *table_aliases}
            row_names.update(name.lower() for name in names)
            for column in classifications:
                if not column.is_safe:
                    pii_names.add(column.column_name.lower())
                    pii_columns.append(f"{table}.{column.column_name}")
        return pii_names, pii_columns, row_names

    def _rewrite(
        self,
        sql: str,
        pii_names: set[str],
        row_names: set[str],
        pii_columns: list[str],
    ) -> tuple[str, list[str]]:
        patterns = [
            re.compile(rf"(?<![\w$]){re.escape(name)}(?![\w$])", re.IGNORECASE)
            for name in sorted(pii_names)
        ]
        removed: list[str] = []
        rewritten = sql
        for start, end in reversed(find_select_lists(sql)):
            items = split_select_items(sql[start:end])
            for item in items:
                if STAR_ITEM_PATTERN.search(item) or _references_whole_row(item, row_names):
                    raise UnsafeRewriteError(
                        message=(
                            "SELECT * (or a whole-row reference) is not allowed on the protected "
                            "target because the queried tables contain PII or unclassified "
                            "columns. List the columns explicitly; use the pii-columns tool to "
                            "see which are accessible."
                        ),
                        details={"item": item, "pii_columns": pii_columns},
                    )

            kept = [
                item
                for item in items
                if not any(p.search(STRING_LITERAL_PATTERN.sub("''", item)) for p in patterns)
            ]
            if len(kept) == len(items):
                continue
            if not kept:
                raise UnsafeRewriteError(
                    message=(
                        "Every selected column on the protected target is PII or unclassified, "
                        "so nothing can be returned. Select columns marked "
                        '\'{"privacy": "non-personal"}\'; use the pii-columns tool to list them.'
                    ),
                    details={"pii_columns": pii_columns},
                )
            removed[:0] = [item for item in items if item not in kept]
            separator = "" if end >= len(sql) or sql[end] in ");" else " "
            rewritten = rewritten[:start] + ", ".join(kept) + separator + rewritten[end:]
        return rewritten, removed
