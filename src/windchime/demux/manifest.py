# src/windchime/demux/manifest.py
from __future__ import annotations
from pathlib import Path
from typing import Iterable, List
import logging

from ..utils.fs import atomic_write_text
from .errors import NoSamplesAssigned
from .stats import RunStatistics
from .writers import SampleOutputs

log = logging.getLogger(__name__)

MANIFEST_HEADER = ("sample-id", "forward-absolute-filepath", "reverse-absolute-filepath")


def emit(run_statistics: RunStatistics, sample_outputs: Iterable[SampleOutputs], path: Path | str) -> Path:
    """
    Write a QIIME 2 PairedEndFastqManifestPhred33V2 manifest.

    One row per sample with assigned pairs, in the order given, with absolute paths.
    Samples without assigned pairs are left out with a warning. Raises
    NoSamplesAssigned when the run assigned nothing at all.
    """
    path = Path(path)
    if run_statistics.total_assigned == 0:
        raise NoSamplesAssigned(run_statistics.pairs_seen)

    rows: List[str] = ["\t".join(MANIFEST_HEADER)]
    for out in sample_outputs:
        n = run_statistics.assigned.get(out.sample_id, 0)
        if n == 0:
            log.warning(f"sample {out.sample_id} has no assigned read pairs; omitted from manifest")
            continue
        rows.append("\t".join((
            out.sample_id,
            str(Path(out.forward_path).resolve()),
            str(Path(out.reverse_path).resolve()),
        )))

    atomic_write_text(path, "\n".join(rows) + "\n")
    log.info(f"wrote manifest with {len(rows) - 1} samples to {path}")
    return path


def read_manifest(path: Path | str) -> List[tuple[str, Path, Path]]:
    """Parse a manifest written by emit() back into (sample_id, forward, reverse) rows."""
    rows = []
    with open(path) as fh:
        header = fh.readline().rstrip("\n").split("\t")
        if tuple(header) != MANIFEST_HEADER:
            raise ValueError(f"{path}: unexpected manifest header {header}")
        for ln in fh:
            ln = ln.rstrip("\n")
            if not ln:
                continue
            sample_id, fwd, rev = ln.split("\t")
            rows.append((sample_id, Path(fwd), Path(rev)))
    return rows
