"""Column sensitivity classification and PII filtering."""

from postgres_mcp_tool.security.pii_rewriter import (
    PiiRewriter,
    extract_table_names,
    find_select_lists,
    split_select_items,
)
from postgres_mcp_tool.security.sensitivity import (
    Classification,
    ColumnClassification,
    ColumnSensitivity,
    SensitivityClassifier,
    classify,
    parse_sensitivity_comment,
)

__all__ = [
    "Classification",
    "ColumnClassification",
    "ColumnSensitivity",
    "PiiRewriter",
    "SensitivityClassifier",
    "classify",
    "extract_table_names",
    "find_select_lists",
    "parse_sensitivity_comment",
    "split_select_items",
]
