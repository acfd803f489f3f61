from pathlib import Path
import gzip
import pytest


def _write_fastq(path: Path, records, suffix: str = "") -> Path:
    """records: iterable of (name, sequence); qualities are all 'I'."""
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "wt") as fh:
        for name, seq in records:
            fh.write(f"@{name}{suffix}\n{seq}\n+\n{'I' * len(seq)}\n")
    return path


def _read_fastq(path: Path):
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "rt") as fh:
        lines = fh.read().splitlines()
    return [tuple(lines[i:i + 4]) for i in range(0, len(lines), 4)]


@pytest.fixture
def write_fastq():
    return _write_fastq


@pytest.fixture
def read_fastq():
    return _read_fastq


@pytest.fixture
def barcode_tsv(tmp_path: Path):
    def _make(rows, header=("sample-id", "barcode"), name="barcodes.tsv") -> Path:
        p = tmp_path / name
        p.write_text("\n".join("\t".join(r) for r in [header, *rows]) + "\n")
        return p
    return _make
