"""Readable summaries of ``EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON)`` output."""

import json
from typing import Any

OVERESTIMATE_RATIO = 10.0
UNDERESTIMATE_RATIO = 0.1


def estimate_accuracy(plan_rows: float, actual_rows: float) -> str:
    """Label how far the planner's row estimate was from reality.

    Example:
        >>> estimate_accuracy(plan_rows=1000, actual_rows=10)
        'overestimated'
    """
    ratio = plan_rows / max(actual_rows, 1)
    if ratio > OVERESTIMATE_RATIO:
        return "overestimated"
    if ratio < UNDERESTIMATE_RATIO:
        return "underestimated"
    return "accurate"


def summarize_plan(plan_text: str) -> list[str]:
    """Summarize a JSON plan as one line per node, children indented.

    Args:
        plan_text: Raw JSON returned by EXPLAIN ... FORMAT JSON.

    Returns:
        list[str]: Summary lines; empty when the text is not a JSON plan.

    Example:
        >>> summarize_plan(raw)[:2]
        ['Planning time: 0.112 ms, execution time: 0.480 ms',
         'Seq Scan on users (time 0.031 ms, rows 3 vs 3 estimated: accurate, cache hit 100.0%)']
    """
    try:
        document = json.loads(plan_text)
    except (TypeError, ValueError):
        return []

    if isinstance(document, list) and document:
        document = document[0]
    if not isinstance(document, dict) or not isinstance(document.get("Plan"), dict):
        return []

    lines: list[str] = []
    planning = document.get("Planning Time")
    execution = document.get("Execution Time")
    if planning is not None and execution is not None:
        lines.append(f"Planning time: {planning:.3f} ms, execution time: {execution:.3f} ms")

    _summarize_node(document["Plan"], 0, lines)
    return lines


def _summarize_node(node: dict[str, Any], depth: int, lines: list[str]) -> None:
    line = node.get("Node Type", "Unknown")
    if "Relation Name" in node:
        line += f" on {node['Relation Name']}"
    if "Index Name" in node:
        line += f" using {node['Index Name']}"

    details: list[str] = []
    if "Actual Total Time" in node:
        details.append(f"time {node['Actual Total Time']:.3f} ms")
    if "Actual Rows" in node and "Plan Rows" in node:
        actual, planned = node["Actual Rows"], node["Plan Rows"]
        details.append(
            f"rows {actual} vs {planned} estimated: {estimate_accuracy(planned, actual)}"
        )

    hits = node.get("Shared Hit Blocks", 0)
    reads = node.get("Shared Read Blocks", 0)
    if hits + reads > 0:
        details.append(f"cache hit {hits * 100 / (hits + reads):.1f}%")

    if details:
        line += f" ({', '.join(details)})"
    lines.append("  " * depth + line)

    for child in node.get("Plans", []):
        _summarize_node(child, depth + 1, lines)
