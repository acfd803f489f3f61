# src/windchime/demux/stats.py
from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional


@dataclass
class RunStatistics:
    """
    Pair counts for one demultiplex run.

    Workers each fill their own instance; the engine folds them together with
    merge() once a batch is done, so no counter is ever shared between threads.
    Malformed pairs count as seen and as unassigned.
    """
    pairs_seen: int = 0
    assigned: Counter = field(default_factory=Counter)
    no_match: int = 0
    ambiguous: int = 0
    malformed: int = 0

    @property
    def total_assigned(self) -> int:
        return sum(self.assigned.values())

    @property
    def unassigned(self) -> int:
        return self.no_match + self.ambiguous + self.malformed

    def merge(self, other: "RunStatistics") -> "RunStatistics":
        self.pairs_seen += other.pairs_seen
        self.assigned.update(other.assigned)
        self.no_match += other.no_match
        self.ambiguous += other.ambiguous
        self.malformed += other.malformed
        return self

    @classmethod
    def reduce(cls, parts: Iterable["RunStatistics"]) -> "RunStatistics":
        total = cls()
        for p in parts:
            total.merge(p)
        return total

    def per_sample(self, sample_ids: Iterable[str]) -> Dict[str, int]:
        return {s: self.assigned.get(s, 0) for s in sample_ids}

    def as_dict(self) -> Dict[str, Any]:
        return {
            "pairs_seen": self.pairs_seen,
            "assigned": dict(sorted(self.assigned.items())),
            "total_assigned": self.total_assigned,
            "unassigned": self.unassigned,
            "no_match": self.no_match,
            "ambiguous": self.ambiguous,
            "malformed": self.malformed,
        }


def summarize(stats: RunStatistics, error: Optional[BaseException] = None) -> str:
    """One-line outcome. Success and failure are never worded alike."""
    if error is not None:
        reason = str(error) or error.__class__.__name__
        return f"aborted: {reason} (pairs seen before abort: {stats.pairs_seen})"
    return (
        f"completed with {stats.unassigned} unassigned "
        f"({stats.total_assigned}/{stats.pairs_seen} pairs assigned to {len(+stats.assigned)} samples)"
    )
