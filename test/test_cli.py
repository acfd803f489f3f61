from pathlib import Path
import pytest
from typer.testing import CliRunner

from windchime.cli import app
from windchime.demux.engine import FAILED_MARKER
from windchime.demux.manifest import read_manifest

runner = CliRunner()


@pytest.fixture
def pooled(tmp_path: Path, write_fastq, barcode_tsv, monkeypatch):
    monkeypatch.chdir(tmp_path)
    bc = barcode_tsv([("S1", "ACGT"), ("S2", "TTTT")])
    r1 = write_fastq(tmp_path / "pool_R1.fastq.gz", [("a", "ACGTAAAA"), ("b", "TTTTAAAA"), ("c", "GGGGAAAA")], "/1")
    r2 = write_fastq(tmp_path / "pool_R2.fastq.gz", [("a", "CCCC"), ("b", "CCCC"), ("c", "CCCC")], "/2")
    return bc, r1, r2


def test_demux_end_to_end(tmp_path: Path, pooled):
    bc, r1, r2 = pooled
    out = tmp_path / "out"
    result = runner.invoke(app, [
        "demux", "-b", str(bc), "--forward", str(r1), "--reverse", str(r2),
        "-o", str(out), "--max-mismatches", "0", "--cores", "2",
    ])
    assert result.exit_code == 0, result.output
    assert "completed with 1 unassigned" in result.output
    assert [r[0] for r in read_manifest(out / "manifest.tsv")] == ["S1", "S2"]
    assert (out / "demux_stats.tsv").exists()
    assert (out / "windchime.log").exists()

    status = runner.invoke(app, ["status", "-o", str(out)])
    assert status.exit_code == 0
    assert "demux: completed" in status.output


def test_demux_desync_exits_nonzero(tmp_path: Path, pooled, write_fastq):
    bc, r1, _ = pooled
    short = write_fastq(tmp_path / "short_R2.fastq.gz", [("a", "CCCC"), ("b", "CCCC")], "/2")
    out = tmp_path / "out"
    result = runner.invoke(app, ["demux", "-b", str(bc), "--forward", str(r1), "--reverse", str(short), "-o", str(out)])
    assert result.exit_code == 1
    assert "aborted" in result.output
    assert (out / FAILED_MARKER).exists()
    assert not list(out.glob("*.fastq.gz"))

    status = runner.invoke(app, ["status", "-o", str(out)])
    assert "last run aborted" in status.output


def test_demux_nothing_assigned(tmp_path: Path, pooled):
    bc, r1, r2 = pooled
    result = runner.invoke(app, [
        "demux", "-b", str(bc), "--forward", str(r1), "--reverse", str(r2),
        "-o", str(tmp_path / "out"), "--offset", "5",
    ])
    assert result.exit_code == 1
    assert "aborted" in result.output


def test_demux_requires_inputs(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["demux", "-o", str(tmp_path / "out")])
    assert result.exit_code == 1
    assert "--forward" in result.output


def test_config_file_supplies_inputs(tmp_path: Path, pooled):
    bc, r1, r2 = pooled
    cfg = tmp_path / "run.yaml"
    cfg.write_text(f"barcodes: {bc}\nforward: {r1}\nreverse: {r2}\noutput_dir: {tmp_path / 'cfg_out'}\n"
                   "demux:\n  max_mismatches: 0\n")
    result = runner.invoke(app, ["-c", str(cfg), "demux"])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "cfg_out" / "manifest.tsv").exists()


def test_pipeline_rejects_unknown_target(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["pipeline", "-t", "28s", "-o", str(tmp_path / "out")])
    assert result.exit_code != 0


def test_failed_rerun_is_reported_as_aborted(tmp_path: Path, pooled):
    bc, r1, r2 = pooled
    out = tmp_path / "out"
    args = ["demux", "-b", str(bc), "--forward", str(r1), "--reverse", str(r2), "-o", str(out)]
    assert runner.invoke(app, args).exit_code == 0
    assert (out / "manifest.tsv").exists()

    second = runner.invoke(app, args + ["--offset", "5"])
    assert second.exit_code == 1
    assert not (out / "manifest.tsv").exists()
    assert not (out / "demux.ok.json").exists()
    assert (out / FAILED_MARKER).exists()

    status = runner.invoke(app, ["status", "-o", str(out)])
    assert "last run aborted" in status.output
    assert "demux: completed" not in status.output
