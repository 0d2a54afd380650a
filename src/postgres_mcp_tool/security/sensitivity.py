"""Column sensitivity annotations read from catalog comments.

Columns are annotated with a JSON comment, either an object or a
one-element array wrapping one::

    COMMENT ON COLUMN users.country IS '{"sensitivity": "internal", "privacy": "non-personal"}';

Missing or malformed annotations are normal and classify as unknown, which
the PII filter treats the same as personal data.
"""

import json
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from postgres_mcp_tool.db.introspection import SchemaIntrospector

NON_PERSONAL = "non-personal"
PERSONAL = "personal"
HIGH_SENSITIVITY_TIERS = frozenset({"restricted", "confidential"})


class Classification(StrEnum):
    """Tri-state column classification; only SAFE columns pass the PII filter."""

    SAFE = "safe"
    PII = "pii"
    UNKNOWN = "unknown"


class ColumnSensitivity(BaseModel):
    """Parsed sensitivity annotation of one column."""

    model_config = ConfigDict(frozen=True)

    sensitivity: str = Field(..., description="Tier such as public, internal, restricted")
    privacy: str = Field(..., description="personal or non-personal")

    @property
    def is_pii(self) -> bool:
        return self.privacy == PERSONAL

    @property
    def is_high_sensitivity(self) -> bool:
        return self.sensitivity.lower() in HIGH_SENSITIVITY_TIERS


class ColumnClassification(BaseModel):
    """Classification of one column, with the annotation it came from."""

    model_config = ConfigDict(frozen=True)

    column_name: str
    classification: Classification
    sensitivity: ColumnSensitivity | None = None

    @property
    def is_safe(self) -> bool:
        return self.classification is Classification.SAFE

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "column": self.column_name,
            "classification": self.classification.value,
        }
        if self.sensitivity is not None:
            result["sensitivity"] = self.sensitivity.sensitivity
            result["privacy"] = self.sensitivity.privacy
            result["high_sensitivity"] = self.sensitivity.is_high_sensitivity
        return result


def parse_sensitivity_comment(comment: str | None) -> ColumnSensitivity | None:
    """Parse a column comment into a sensitivity annotation.

    Args:
        comment: Raw column comment; may be None or blank.

    Returns:
        ColumnSensitivity if the comment is an object with a string
        ``privacy`` (optionally wrapped in a one-element array), else None.

    Example:
        >>> parse_sensitivity_comment('[{"sensitivity": "public", "privacy": "non-personal"}]')
        ColumnSensitivity(sensitivity='public', privacy='non-personal')
        >>> parse_sensitivity_comment("primary contact email") is None
        True
    """
    if comment is None or not comment.strip():
        return None
    try:
        document = json.loads(comment)
    except ValueError:
        return None

    if isinstance(document, list):
        if len(document) != 1:
            return None
        document = document[0]
    if not isinstance(document, dict):
        return None

    privacy = document.get("privacy")
    sensitivity = document.get("sensitivity", "unknown")
    if not isinstance(privacy, str) or not isinstance(sensitivity, str):
        return None
    return ColumnSensitivity(sensitivity=sensitivity, privacy=privacy)


def classify(sensitivity: ColumnSensitivity | None) -> Classification:
    if sensitivity is None:
        return Classification.UNKNOWN
    if sensitivity.privacy == NON_PERSONAL:
        return Classification.SAFE
    return Classification.PII


class SensitivityClassifier:
    """Classifies a table's columns from their catalog comments.

    Example:
        >>> classifier = SensitivityClassifier(pool.introspector)
        >>> [c.classification for c in await classifier.classify_table("users")]
        [<Classification.SAFE: 'safe'>, <Classification.UNKNOWN: 'unknown'>]
    """

    def __init__(self, introspector: "SchemaIntrospector") -> None:
        self.introspector = introspector

    async def column_sensitivity(self, table: str) -> dict[str, ColumnSensitivity]:
        """Map column name to its parsed annotation, for annotated columns only."""
        comments = await self.introspector.column_comments(table)
        parsed = {name: parse_sensitivity_comment(comment) for name, comment in comments.items()}
        return {name: value for name, value in parsed.items() if value is not None}

    async def classify_table(self, table: str) -> list[ColumnClassification]:
        """Classify every column of ``table`` in catalog order.

        Raises:
            TableNotFoundError: If the table does not exist.
        """
        classifications = []
        for column in await self.introspector.get_columns(table):
            sensitivity = parse_sensitivity_comment(column.comment)
            classifications.append(
                ColumnClassification(
                    column_name=column.name,
                    classification=classify(sensitivity),
                    sensitivity=sensitivity,
                )
            )
        return classifications
