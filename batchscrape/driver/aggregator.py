"""Summaries of finished batches.

Pure functions of the ordered BatchItemResult sequence: no I/O, no state.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from batchscrape.data_types import BatchItemResult, BatchResult

PREVIEW_LENGTH = 100


@dataclass(frozen=True)
class BatchSummary:
    """Counts and per-target outcomes of a batch.

    Attributes:
        total: Number of targets.
        success_count: Targets that produced a payload.
        failure_count: Targets that exhausted their retries.
        outcomes: One dict per target, in submission order.
    """

    total: int
    success_count: int
    failure_count: int
    outcomes: tuple[dict[str, Any], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "items": list(self.outcomes),
        }


def summarize(items: Sequence[BatchItemResult]) -> BatchSummary:
    """Compute counts and per-target outcomes."""
    success_count = sum(1 for item in items if item.success)
    return BatchSummary(
        total=len(items),
        success_count=success_count,
        failure_count=len(items) - success_count,
        outcomes=tuple(item.to_dict() for item in items),
    )


def preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    """Truncate content to ``length`` characters, marking the cut."""
    if len(content) <= length:
        return content
    return content[:length] + "..."


def render_item(item: BatchItemResult) -> str:
    """Render one target's outcome as a short block of text."""
    marker = "✓" if item.success else "✗"
    lines = [f"[{item.index + 1}] {marker} {item.target.url}"]
    if item.success and item.payload is not None:
        lines.append(f"    Content: {preview(item.payload.content)}")
    else:
        kind = item.error_kind.value if item.error_kind else "unknown"
        lines.append(f"    Error ({kind}): {item.error_message}")
    lines.append(f"    Attempts: {item.attempts_made}")
    lines.append(f"    Completed: {item.completed_at.isoformat()}")
    return "\n".join(lines)


def render_summary(result: BatchResult) -> str:
    """Render a whole batch as human-readable text.

    The first line carries the counts; one block per target follows, in
    submission order.
    """
    summary = summarize(result.items)
    header = (
        f"Batch complete: {summary.success_count} succeeded, "
        f"{summary.failure_count} failed, {summary.total} total"
    )
    blocks = [render_item(item) for item in result.items]
    return "\n\n".join([header, *blocks])
