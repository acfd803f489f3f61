from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import logging

from ..config import DemuxSettings
from ..qc.collectors import write_demux_stats_tsv
from .barcodes import load_barcode_table
from .engine import DemuxEngine, MalformedThreshold, default_workers
from .fastq import PairedFastqReader
from .manifest import emit
from .matcher import BarcodeMatcher, MatchPolicy
from .stats import RunStatistics
from .writers import SampleOutputs, WriterPool

log = logging.getLogger(__name__)

STATS_NAME = "demux_stats.tsv"


@dataclass
class DemuxResult:
    stats: RunStatistics
    sample_ids: List[str]
    outputs: List[SampleOutputs]
    manifest: Path
    stats_tsv: Path


def run_demux(
    barcodes: Path,
    forward: Path,
    reverse: Path,
    output_dir: Path,
    manifest: Path,
    settings: Optional[DemuxSettings] = None,
    workers: int = 1,
) -> DemuxResult:
    """
    Demultiplex a pooled paired-end run into per-sample FASTQs and write the manifest.

    This is the one-shot entry point behind `windchime demux`: it loads the barcode
    table, streams both inputs through the engine, writes the per-sample statistics
    TSV, and emits the QIIME 2 manifest.

    Args:
        barcodes: Barcode TSV (sample-id, barcode[, reverse-barcode])
        forward: Pooled R1 FASTQ (.fastq or .fastq.gz)
        reverse: Pooled R2 FASTQ (.fastq or .fastq.gz)
        output_dir: Where the per-sample FASTQs and stats go
        manifest: Manifest path to write
        settings: Matching/threshold/compression settings; defaults if None
        workers: Worker threads; 0 means one per CPU

    Returns:
        DemuxResult with the final statistics and the samples written

    Raises:
        BarcodeTableError / AmbiguousBarcode: bad barcode table, nothing is read
        DesyncError / PairMismatch / MalformedInput: bad inputs, outputs removed
        OSError: an output could not be written, outputs removed
        NoSamplesAssigned: nothing matched any barcode, outputs removed
    """
    settings = settings or DemuxSettings()
    workers = workers or default_workers()
    output_dir = Path(output_dir)

    table = load_barcode_table(barcodes)
    log.info(
        f"loaded {len(table)} samples from {barcodes} "
        f"({'dual' if table.dual else 'single'} barcodes, offset={settings.offset}, "
        f"max_mismatches={settings.max_mismatches}, workers={workers})"
    )

    matcher = BarcodeMatcher(
        table,
        MatchPolicy(offset=settings.offset, max_mismatches=settings.max_mismatches),
        trim=settings.trim_barcode,
    )
    pool = WriterPool(output_dir, table.sample_ids, compresslevel=settings.compresslevel)
    engine = DemuxEngine(
        matcher,
        pool,
        workers=workers,
        batch_size=settings.batch_size,
        threshold=MalformedThreshold(probe=settings.malformed_probe, max_fraction=settings.max_malformed_fraction),
    )
    stats_tsv = output_dir / STATS_NAME
    try:
        stats = engine.run(PairedFastqReader(forward, reverse))
    except Exception as e:
        partial = getattr(e, "stats", None)
        if partial is not None:
            write_demux_stats_tsv(stats_tsv, partial, table.sample_ids)
        # a manifest left from an earlier run must not pass for this run's output
        if Path(manifest).exists():
            log.info(f"removing manifest {manifest} of the previous run")
            Path(manifest).unlink()
        raise

    write_demux_stats_tsv(stats_tsv, stats, table.sample_ids)
    outputs = [pool.outputs[s] for s in table.sample_ids]
    manifest_path = emit(stats, outputs, manifest)
    return DemuxResult(
        stats=stats,
        sample_ids=table.sample_ids,
        outputs=[o for o in outputs if o.pairs_written],
        manifest=manifest_path,
        stats_tsv=stats_tsv,
    )
