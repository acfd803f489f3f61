# src/windchime/demux/fastq.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, IO, Iterator, Optional, Tuple
import gzip

from .errors import DesyncError, MalformedRecord, PairMismatch

Block = Tuple[str, str, str]  # (header, sequence, quality)
_MALFORMED = object()


@dataclass(frozen=True)
class ReadPair:
    id: str
    forward_header: str
    forward_sequence: str
    forward_quality: str
    reverse_header: str
    reverse_sequence: str
    reverse_quality: str

    def forward_record(self) -> str:
        return f"{self.forward_header}\n{self.forward_sequence}\n+\n{self.forward_quality}\n"

    def reverse_record(self) -> str:
        return f"{self.reverse_header}\n{self.reverse_sequence}\n+\n{self.reverse_quality}\n"


def open_fastq(path: Path | str) -> IO[str]:
    """Open a FASTQ for text reading; '.gz' files are decompressed as they are read."""
    if str(path).endswith(".gz"):
        return gzip.open(str(path), "rt")
    return open(path, "r")


def core_id(header: str) -> str:
    """'@READ/1 1:N:0' -> 'READ'."""
    name = header[1:].split(None, 1)[0] if len(header) > 1 else ""
    if name.endswith(("/1", "/2")):
        name = name[:-2]
    return name


def read_block(fh: IO[str], path: str, index: int) -> Optional[Block]:
    """Read one four-line record. Returns None at a clean end of file."""
    header = fh.readline()
    if not header:
        return None
    seq, plus, qual = fh.readline(), fh.readline(), fh.readline()
    if not qual:
        raise MalformedRecord(path, index, "truncated record (fewer than four lines)")
    header = header.rstrip("\r\n"); seq = seq.rstrip("\r\n"); plus = plus.rstrip("\r\n"); qual = qual.rstrip("\r\n")
    if not header.startswith("@"):
        raise MalformedRecord(path, index, f"identifier line does not start with '@': {header[:40]!r}")
    if not plus.startswith("+"):
        raise MalformedRecord(path, index, f"separator line does not start with '+': {plus[:40]!r}")
    if len(seq) != len(qual):
        raise MalformedRecord(path, index, f"sequence length {len(seq)} != quality length {len(qual)}")
    return header, seq, qual


class PairedFastqReader:
    """
    Stream synchronized forward/reverse records from two FASTQ files.

    Iterating yields ReadPair objects one at a time and can only be done once.
    Malformed blocks raise MalformedRecord unless `on_malformed` is given, in which
    case the error is handed to it and the pair is skipped. Streams of different
    length raise DesyncError; mates whose names differ raise PairMismatch.
    """

    def __init__(
        self,
        forward: Path | str,
        reverse: Path | str,
        on_malformed: Optional[Callable[[MalformedRecord], None]] = None,
    ):
        self.forward = Path(forward)
        self.reverse = Path(reverse)
        self.on_malformed = on_malformed
        self.pairs_read = 0
        self._started = False

    def _next_block(self, fh: IO[str], path: Path, index: int):
        try:
            return read_block(fh, str(path), index), None
        except MalformedRecord as e:
            return _MALFORMED, e

    def __iter__(self) -> Iterator[ReadPair]:
        if self._started:
            raise RuntimeError("PairedFastqReader can only be iterated once")
        self._started = True
        return self._pairs()

    def _pairs(self) -> Iterator[ReadPair]:
        with open_fastq(self.forward) as f1, open_fastq(self.reverse) as f2:
            index = 0
            while True:
                index += 1
                fwd, err1 = self._next_block(f1, self.forward, index)
                rev, err2 = self._next_block(f2, self.reverse, index)
                if fwd is None and rev is None:
                    return
                if fwd is None or rev is None:
                    raise DesyncError(
                        forward_count=index - 1 if fwd is None else index,
                        reverse_count=index - 1 if rev is None else index,
                    )
                error = err1 or err2
                if error is not None:
                    if self.on_malformed is None:
                        raise error
                    self.on_malformed(error)
                    continue

                fid, rid = core_id(fwd[0]), core_id(rev[0])
                if fid != rid:
                    raise PairMismatch(index, fid, rid)
                self.pairs_read += 1
                yield ReadPair(fid, fwd[0], fwd[1], fwd[2], rev[0], rev[1], rev[2])
