from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Tuple
import csv, logging

log = logging.getLogger(__name__)


def _read_asv_table(path: Path) -> Tuple[List[str], List[List[str]]]:
    """biom-convert TSV: a '# Constructed from biom file' line, then a '#OTU ID' header."""
    header: List[str] = []
    rows: List[List[str]] = []
    with open(path, newline="") as fh:
        for row in csv.reader(fh, delimiter="\t"):
            if not row:
                continue
            if not header:
                if row[0].startswith("#") and not row[0].startswith("#OTU"):
                    continue
                header = row
                continue
            rows.append(row)
    if not header:
        raise ValueError(f"{path}: no header row found")
    return header, rows


def merge_asv_taxonomy(asv_tsv: Path, taxonomy_tsv: Path, out: Path, prefix: str = "pr2_") -> int:
    """
    Join ASV counts with the exported taxonomy on feature id.

    Output columns: 'Feature.ID', the sample count columns, then the taxonomy
    columns prefixed with `prefix`. Features without a taxonomy row get empty
    taxonomy cells. Rows keep the ASV table order. Returns the number of rows written.
    """
    asv_header, asv_rows = _read_asv_table(asv_tsv)

    with open(taxonomy_tsv, newline="") as fh:
        reader = csv.reader(fh, delimiter="\t")
        tax_header = next(reader)
        taxonomy: Dict[str, List[str]] = {r[0]: r[1:] for r in reader if r}

    n_tax = len(tax_header) - 1
    header = ["Feature.ID", *asv_header[1:], *(f"{prefix}{c}" for c in tax_header[1:])]
    missing = 0
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", newline="") as fh:
        w = csv.writer(fh, delimiter="\t", lineterminator="\n")
        w.writerow(header)
        for row in asv_rows:
            tax = taxonomy.get(row[0])
            if tax is None:
                missing += 1
                tax = [""] * n_tax
            w.writerow([*row, *tax])
    if missing:
        log.warning(f"{missing} features in {asv_tsv.name} have no taxonomy assignment")
    log.info(f"Merged ASV count and taxonomy table written to {out}")
    return len(asv_rows)
