# src/windchime/config.py
from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from pathlib import Path
from typing import Literal, Optional
import yaml

DEFAULT_ENV = "qiime2-amplicon-2024.10"
DEFAULT_OUTPUT_DIR = Path("windchime_out")
CONFIG_NAME = "windchime.yaml"


class DemuxSettings(BaseModel):
    offset: int = Field(0, ge=0, description="0-based start of the barcode window in each read")
    max_mismatches: int = Field(1, ge=0, description="Hamming distance allowed per read")
    trim_barcode: bool = Field(False, description="Drop the read prefix up to the end of the barcode window")
    compresslevel: int = Field(6, ge=1, le=9)
    batch_size: int = Field(1000, ge=1, description="Read pairs handed to a worker at a time")
    malformed_probe: int = Field(100, ge=1, description="Abort if this many leading pairs are all malformed")
    max_malformed_fraction: float = Field(0.1, ge=0.0, le=1.0)


class WindchimeConfig(BaseModel):
    output_dir: Path = DEFAULT_OUTPUT_DIR
    env_name: str = DEFAULT_ENV
    barcodes: Path = Path("barcodes.tsv")
    forward: Optional[Path] = Field(None, description="Pooled forward (R1) FASTQ")
    reverse: Optional[Path] = Field(None, description="Pooled reverse (R2) FASTQ")
    manifest: str = Field("manifest.tsv", description="Manifest file name inside output_dir")
    metadata: Path = Path("metadata.tsv")
    cores: int = Field(1, ge=0, description="Worker threads / external tool cores; 0 = all CPUs")
    target: Literal["16s", "18s"] = "18s"
    skip_existing: bool = False
    demux: DemuxSettings = Field(default_factory=DemuxSettings)

    @field_validator("target", mode="before")
    @classmethod
    def _lower_target(cls, v):
        return v.lower() if isinstance(v, str) else v

    @property
    def manifest_path(self) -> Path:
        return self.output_dir / self.manifest

    @classmethod
    def from_yaml(cls, path: Path) -> "WindchimeConfig":
        with open(path, "r") as fh:
            data = yaml.safe_load(fh) or {}
        return cls(**data)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "WindchimeConfig":
        """Explicit path, else ./windchime.yaml if present, else defaults."""
        if path is not None:
            return cls.from_yaml(path)
        if Path(CONFIG_NAME).exists():
            return cls.from_yaml(Path(CONFIG_NAME))
        return cls()
