# src/windchime/demux/barcodes.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple
import csv, re

from .errors import AmbiguousBarcode, BarcodeTableError

_BASES = re.compile(r"^[ACGTN]+$")

_SAMPLE_COLS = ("sample-id", "sample_id")
_FWD_COLS = ("barcode", "barcode-sequence", "barcode_sequence")
_REV_COLS = ("reverse-barcode", "reverse_barcode", "reverse-barcode-sequence", "reverse_barcode_sequence")


def _bad_sample_id(sample_id: str) -> bool:
    return (
        sample_id in (".", "..")
        or "/" in sample_id
        or "\\" in sample_id
        or sample_id != sample_id.strip()
    )


@dataclass(frozen=True)
class BarcodeEntry:
    sample_id: str
    barcode: str
    reverse_barcode: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.barcode, self.reverse_barcode)


class BarcodeTable:
    """
    Read-only sample → barcode mapping.

    Entries keep the order they were loaded in (this is the manifest order).
    Either every entry carries a reverse barcode or none does.
    """

    def __init__(self, entries: List[BarcodeEntry]):
        if not entries:
            raise BarcodeTableError("Barcode table has no entries")
        seen_ids: Dict[str, BarcodeEntry] = {}
        seen_keys: Dict[Tuple[str, Optional[str]], str] = {}
        for e in entries:
            if not e.sample_id:
                raise BarcodeTableError("Empty sample id in barcode table")
            if _bad_sample_id(e.sample_id):
                raise BarcodeTableError(
                    f"Invalid sample id {e.sample_id!r}: no path separators, not '.' or '..', "
                    "no leading or trailing whitespace"
                )
            if e.sample_id in seen_ids:
                raise BarcodeTableError(f"Duplicate sample id {e.sample_id!r}")
            for seq in (e.barcode, e.reverse_barcode):
                if seq is not None and not _BASES.match(seq):
                    raise BarcodeTableError(f"Invalid barcode {seq!r} for sample {e.sample_id!r}")
            if e.key in seen_keys:
                raise AmbiguousBarcode(e.barcode, e.reverse_barcode, (seen_keys[e.key], e.sample_id))
            seen_ids[e.sample_id] = e
            seen_keys[e.key] = e.sample_id

        duals = {e.reverse_barcode is not None for e in entries}
        if len(duals) > 1:
            raise BarcodeTableError("Either every sample needs a reverse barcode or none may have one")

        self._entries = tuple(entries)
        self._by_id = seen_ids
        self.dual = duals.pop()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[BarcodeEntry]:
        return iter(self._entries)

    def __getitem__(self, sample_id: str) -> BarcodeEntry:
        return self._by_id[sample_id]

    @property
    def sample_ids(self) -> List[str]:
        return [e.sample_id for e in self._entries]


def _pick(header: List[str], names: Tuple[str, ...]) -> Optional[int]:
    lowered = [h.strip().lower() for h in header]
    for n in names:
        if n in lowered:
            return lowered.index(n)
    return None


def load_barcode_table(path: Path | str) -> BarcodeTable:
    """
    Parse a barcode TSV into a BarcodeTable.

    The first non-comment line is the header and must name a sample column
    ('sample-id') and a barcode column ('barcode'); 'reverse-barcode' is optional.
    Blank lines and lines starting with '#' are skipped.
    """
    with open(path, "r", newline="") as fh:
        rows = [r for r in csv.reader(fh, delimiter="\t") if r and any(c.strip() for c in r) and not r[0].startswith("#")]
    if not rows:
        raise BarcodeTableError(f"{path}: empty barcode table")

    header, body = rows[0], rows[1:]
    i_sample = _pick(header, _SAMPLE_COLS)
    i_fwd = _pick(header, _FWD_COLS)
    i_rev = _pick(header, _REV_COLS)
    if i_sample is None or i_fwd is None:
        raise BarcodeTableError(f"{path}: header must contain 'sample-id' and 'barcode' columns, got {header}")

    entries: List[BarcodeEntry] = []
    for lineno, row in enumerate(body, start=2):
        if len(row) <= max(i_sample, i_fwd):
            raise BarcodeTableError(f"{path}: row {lineno} has {len(row)} columns: {row}")
        rev = row[i_rev].strip().upper() if i_rev is not None and i_rev < len(row) else ""
        entries.append(BarcodeEntry(
            sample_id=row[i_sample].strip(),
            barcode=row[i_fwd].strip().upper(),
            reverse_barcode=rev or None,
        ))
    return BarcodeTable(entries)
