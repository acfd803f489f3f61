from __future__ import annotations
from pathlib import Path
from typing import Iterable

from ..demux.stats import RunStatistics


def write_demux_stats_tsv(out: Path, stats: RunStatistics, sample_ids: Iterable[str]) -> None:
    """
    Write per-sample demultiplexing counts to a TSV file.

    Every sample in the barcode table gets a row, including samples with no
    assigned pairs, followed by one 'unassigned' row that splits the remainder
    by cause.

    Args:
        out: Output file path for the TSV
        stats: Final (or partial, for an aborted run) run statistics
        sample_ids: Samples in barcode-table order

    Output format:
        sample_id     assigned_pairs    frac_of_input
        S1            500000            0.500000
        S2            300000            0.300000
        unassigned    200000            0.200000    no_match=150000;ambiguous=40000;malformed=10000
    """
    out.parent.mkdir(parents=True, exist_ok=True)

    total = stats.pairs_seen or 1
    header = "sample_id\tassigned_pairs\tfrac_of_input\tnote\n"
    lines = [header] + [
        f"{s}\t{n}\t{n / total:.6f}\t\n"
        for s, n in stats.per_sample(sample_ids).items()
    ]
    note = f"no_match={stats.no_match};ambiguous={stats.ambiguous};malformed={stats.malformed}"
    lines.append(f"unassigned\t{stats.unassigned}\t{stats.unassigned / total:.6f}\t{note}\n")

    out.write_text("".join(lines))
