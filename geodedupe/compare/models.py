"""Result types produced by shard comparisons."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional, Tuple

MATCH_COLUMNS = ("geohash", "source_id", "target_id", "source", "target", "similarity")


@dataclass(slots=True, frozen=True)
class MatchRow:
    """One candidate duplicate pair."""

    geohash: str
    source_id: str
    target_id: str
    source_content: str
    target_content: str
    similarity: float

    def to_row(self) -> Dict[str, str]:
        """Return the row as ordered output columns."""
        return {
            "geohash": self.geohash,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "source": self.source_content,
            "target": self.target_content,
            "similarity": f"{self.similarity:f}",
        }

    def pair_key(self) -> Tuple[str, str]:
        """Order-independent identity of the matched pair."""
        return tuple(sorted((self.source_id, self.target_id)))  # type: ignore[return-value]


@dataclass(slots=True, frozen=True)
class ShardResult:
    """Outcome of matching a single geohash shard."""

    geohash: str
    source_count: int = 0
    target_count: int = 0
    match_count: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RunStatus(IntEnum):
    """Overall outcome of a comparison run, doubling as the CLI exit code."""

    CLEAN = 0
    DEGRADED = 1
    FAILED_TO_START = 2


@dataclass(slots=True)
class ComparisonSummary:
    """Aggregate counts for a comparison run."""

    total_shards: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    matches: int = 0
    elapsed: float = 0.0
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> RunStatus:
        if self.failed or self.cancelled:
            return RunStatus.DEGRADED
        return RunStatus.CLEAN

    def as_dict(self) -> Dict[str, object]:
        return {
            "total_shards": self.total_shards,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "matches": self.matches,
            "elapsed": round(self.elapsed, 3),
            "status": self.status.name,
        }
