from collections import Counter
from pathlib import Path
import logging
import pytest

from windchime.demux.errors import NoSamplesAssigned
from windchime.demux.manifest import MANIFEST_HEADER, emit, read_manifest
from windchime.demux.stats import RunStatistics, summarize
from windchime.demux.writers import SampleOutputs
from windchime.qc.collectors import write_demux_stats_tsv


def _outputs(tmp_path: Path, *samples):
    return [SampleOutputs(s, tmp_path / f"{s}_R1.fastq.gz", tmp_path / f"{s}_R2.fastq.gz") for s in samples]


def test_emit_keeps_order_and_skips_empty_samples(tmp_path: Path, caplog):
    stats = RunStatistics(pairs_seen=10, assigned=Counter({"B": 4, "A": 5}), no_match=1)
    caplog.set_level(logging.WARNING)
    path = emit(stats, _outputs(tmp_path, "B", "C", "A"), tmp_path / "manifest.tsv")

    lines = path.read_text().splitlines()
    assert lines[0] == "\t".join(MANIFEST_HEADER)
    assert [ln.split("\t")[0] for ln in lines[1:]] == ["B", "A"]
    assert "sample C has no assigned read pairs" in caplog.text

    rows = read_manifest(path)
    assert rows[0][1] == (tmp_path / "B_R1.fastq.gz").resolve()
    assert rows[1][2].name == "A_R2.fastq.gz"


def test_emit_nothing_assigned(tmp_path: Path):
    stats = RunStatistics(pairs_seen=7, no_match=7)
    with pytest.raises(NoSamplesAssigned) as ei:
        emit(stats, _outputs(tmp_path, "A"), tmp_path / "manifest.tsv")
    assert ei.value.pairs_seen == 7
    assert not (tmp_path / "manifest.tsv").exists()


def test_read_manifest_rejects_foreign_header(tmp_path: Path):
    p = tmp_path / "m.tsv"
    p.write_text("sample-id\tabsolute-filepath\tdirection\n")
    with pytest.raises(ValueError):
        read_manifest(p)


def test_stats_merge_and_summary():
    a = RunStatistics(pairs_seen=3, assigned=Counter({"S1": 2}), no_match=1)
    b = RunStatistics(pairs_seen=2, assigned=Counter({"S1": 1}), ambiguous=1)
    total = RunStatistics.reduce([a, b])
    assert total.pairs_seen == 5 and total.assigned["S1"] == 3
    assert total.unassigned == 2
    assert summarize(total).startswith("completed with 2 unassigned")
    assert summarize(total, RuntimeError("boom")).startswith("aborted: boom")


def test_stats_tsv(tmp_path: Path):
    stats = RunStatistics(pairs_seen=10, assigned=Counter({"S1": 6}), no_match=3, malformed=1)
    out = tmp_path / "qc" / "demux_stats.tsv"
    write_demux_stats_tsv(out, stats, ["S1", "S2"])
    rows = [ln.split("\t") for ln in out.read_text().splitlines()]
    assert rows[0] == ["sample_id", "assigned_pairs", "frac_of_input", "note"]
    assert rows[1][:3] == ["S1", "6", "0.600000"]
    assert rows[2][:2] == ["S2", "0"]
    assert rows[3] == ["unassigned", "4", "0.400000", "no_match=3;ambiguous=0;malformed=1"]
