# src/windchime/demux/matcher.py
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import List, Optional, Union

from .barcodes import BarcodeEntry, BarcodeTable
from .fastq import ReadPair


@dataclass(frozen=True)
class MatchPolicy:
    offset: int = 0
    max_mismatches: int = 1

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.max_mismatches < 0:
            raise ValueError(f"max_mismatches must be >= 0, got {self.max_mismatches}")


@dataclass(frozen=True)
class Assigned:
    sample_id: str
    distance: int


@dataclass(frozen=True)
class Unassigned:
    reason: str  # "no_match" | "ambiguous"


AssignmentResult = Union[Assigned, Unassigned]
NO_MATCH = Unassigned("no_match")
AMBIGUOUS = Unassigned("ambiguous")


def hamming(query: str, ref: str) -> int:
    """Mismatches across equal-length strings; an 'N' on either side always counts."""
    return sum(1 for q, r in zip(query, ref) if q != r or q == "N")


def window_distance(sequence: str, barcode: str, offset: int) -> Optional[int]:
    """Hamming distance of the barcode against sequence[offset:]; None if the read is too short."""
    window = sequence[offset:offset + len(barcode)]
    if len(window) < len(barcode):
        return None
    return hamming(window.upper(), barcode)


def _entry_distance(pair: ReadPair, entry: BarcodeEntry, policy: MatchPolicy) -> Optional[int]:
    d = window_distance(pair.forward_sequence, entry.barcode, policy.offset)
    if d is None or d > policy.max_mismatches:
        return None
    if entry.reverse_barcode is None:
        return d
    dr = window_distance(pair.reverse_sequence, entry.reverse_barcode, policy.offset)
    if dr is None or dr > policy.max_mismatches:
        return None
    return d + dr


def classify(pair: ReadPair, table: BarcodeTable, policy: MatchPolicy) -> AssignmentResult:
    """
    Assign a read pair to the unique closest barcode entry within the mismatch threshold.

    Dual-barcoded entries must be within the threshold on both reads and are ranked
    by the summed distance. Ties at the minimum are Unassigned("ambiguous"), so the
    result never depends on table order.
    """
    best: Optional[int] = None
    winners: List[str] = []
    for entry in table:
        d = _entry_distance(pair, entry, policy)
        if d is None:
            continue
        if best is None or d < best:
            best, winners = d, [entry.sample_id]
        elif d == best:
            winners.append(entry.sample_id)
    if best is None:
        return NO_MATCH
    if len(winners) > 1:
        return AMBIGUOUS
    return Assigned(winners[0], best)


def trim_pair(pair: ReadPair, entry: BarcodeEntry, policy: MatchPolicy) -> ReadPair:
    """Drop everything up to the end of the barcode window (forward, and reverse when dual)."""
    cut = policy.offset + len(entry.barcode)
    trimmed = replace(pair, forward_sequence=pair.forward_sequence[cut:], forward_quality=pair.forward_quality[cut:])
    if entry.reverse_barcode is not None:
        rcut = policy.offset + len(entry.reverse_barcode)
        trimmed = replace(trimmed, reverse_sequence=pair.reverse_sequence[rcut:], reverse_quality=pair.reverse_quality[rcut:])
    return trimmed


class BarcodeMatcher:
    """Binds a table and policy so workers can call `matcher.classify(pair)`."""

    def __init__(self, table: BarcodeTable, policy: MatchPolicy = MatchPolicy(), trim: bool = False):
        self.table = table
        self.policy = policy
        self.trim = trim

    def classify(self, pair: ReadPair) -> AssignmentResult:
        return classify(pair, self.table, self.policy)

    def prepare(self, pair: ReadPair, sample_id: str) -> ReadPair:
        """The record as it should be written for `sample_id`."""
        if not self.trim:
            return pair
        return trim_pair(pair, self.table[sample_id], self.policy)
