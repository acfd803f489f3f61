from pathlib import Path
import pytest
from pydantic import ValidationError

from windchime.config import DEFAULT_ENV, WindchimeConfig


def test_defaults():
    cfg = WindchimeConfig()
    assert cfg.env_name == DEFAULT_ENV
    assert cfg.target == "18s"
    assert cfg.demux.max_mismatches == 1 and cfg.demux.offset == 0
    assert not cfg.demux.trim_barcode
    assert cfg.manifest_path == Path("windchime_out") / "manifest.tsv"


def test_config_loads(tmp_path: Path):
    y = tmp_path / "w.yaml"
    y.write_text("""
output_dir: results
target: 16S
cores: 4
forward: pool_R1.fastq.gz
reverse: pool_R2.fastq.gz
demux:
  offset: 2
  max_mismatches: 0
""")
    cfg = WindchimeConfig.from_yaml(y)
    assert cfg.target == "16s"
    assert cfg.cores == 4
    assert cfg.forward == Path("pool_R1.fastq.gz")
    assert cfg.demux.offset == 2 and cfg.demux.max_mismatches == 0
    assert cfg.manifest_path == Path("results/manifest.tsv")


def test_invalid_values(tmp_path: Path):
    with pytest.raises(ValidationError):
        WindchimeConfig(target="28s")
    with pytest.raises(ValidationError):
        WindchimeConfig(demux={"max_mismatches": -1})


def test_load_prefers_local_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert WindchimeConfig.load().target == "18s"
    (tmp_path / "windchime.yaml").write_text("target: 16s\n")
    assert WindchimeConfig.load().target == "16s"


def test_empty_yaml_gives_defaults(tmp_path: Path):
    y = tmp_path / "empty.yaml"
    y.write_text("")
    assert WindchimeConfig.from_yaml(y) == WindchimeConfig()
