# src/windchime/demux/errors.py
from __future__ import annotations
from typing import Optional


class DemuxError(Exception):
    """Base class for demultiplexing failures. `stats` holds partial counts when known."""

    stats = None


class BarcodeTableError(DemuxError, ValueError):
    pass


class AmbiguousBarcode(BarcodeTableError):
    def __init__(self, barcode: str, reverse_barcode: Optional[str], samples: tuple[str, str]):
        self.barcode = barcode
        self.reverse_barcode = reverse_barcode
        self.samples = samples
        pair = barcode if reverse_barcode is None else f"{barcode}+{reverse_barcode}"
        super().__init__(f"Barcode {pair} is shared by samples {samples[0]!r} and {samples[1]!r}")


class MalformedRecord(DemuxError):
    def __init__(self, path: str, record_index: int, reason: str):
        self.path = path
        self.record_index = record_index
        self.reason = reason
        super().__init__(f"{path}: record {record_index}: {reason}")


class MalformedInput(DemuxError):
    """Too many malformed records; the inputs are probably not FASTQ."""


class PairMismatch(DemuxError):
    def __init__(self, record_index: int, forward_id: str, reverse_id: str):
        self.record_index = record_index
        self.forward_id = forward_id
        self.reverse_id = reverse_id
        super().__init__(
            f"Read pair {record_index}: forward id {forward_id!r} does not match reverse id {reverse_id!r}"
        )


class DesyncError(DemuxError):
    def __init__(self, forward_count: int, reverse_count: int):
        self.forward_count = forward_count
        self.reverse_count = reverse_count
        super().__init__(
            f"Forward and reverse inputs differ in length "
            f"(forward has >= {forward_count} records, reverse has >= {reverse_count})"
        )


class NoSamplesAssigned(DemuxError):
    def __init__(self, pairs_seen: int):
        self.pairs_seen = pairs_seen
        super().__init__(
            f"No read pairs were assigned to any sample ({pairs_seen} pairs seen); "
            "check the barcode table, the barcode window offset and the input files"
        )
