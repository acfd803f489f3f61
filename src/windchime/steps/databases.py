"""
PR2 reference database fetch: download the gzipped FASTA and taxonomy, then decompress.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import gzip, logging, os, shutil

import requests

from ..utils.fs import ensure_dir

log = logging.getLogger(__name__)

PR2_BASE_URL = "https://windchime.poleshift.cloud"
CHUNK = 1 << 20


@dataclass(frozen=True)
class RemoteFile:
    url: str
    gz_name: str
    name: str


PR2_FILES = (
    RemoteFile(f"{PR2_BASE_URL}/pr2_version_5.0.0_SSU_mothur.fasta.gz",
               "pr2_with_taxonomy_simple.fasta.gz", "pr2_with_taxonomy_simple.fasta"),
    RemoteFile(f"{PR2_BASE_URL}/pr2_version_5.0.0_SSU_mothur.tax.gz",
               "pr2_taxonomy.tsv.gz", "pr2_taxonomy.tsv"),
)


def pr2_dir(output_dir: Path) -> Path:
    return output_dir / "db" / "pr2"


def download_file(url: str, dst: Path, *, force: bool = False,
                  session: Optional[requests.Session] = None, timeout: float = 60.0) -> bool:
    """
    Stream `url` to `dst`. The body goes to '<dst>.part' first and is renamed on
    success, so an interrupted download never leaves a file at `dst`.
    Returns False when skipped because `dst` already exists.
    """
    if dst.exists() and not force:
        log.info(f"{dst} already exists, skipping download")
        return False
    http = session or requests.Session()
    tmp = Path(str(dst) + ".part")
    log.info(f"Downloading {url} -> {dst}")
    try:
        with http.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            with open(tmp, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=CHUNK):
                    fh.write(chunk)
        os.replace(tmp, dst)
    finally:
        tmp.unlink(missing_ok=True)
    return True


def gunzip_file(src: Path, dst: Path, *, force: bool = False) -> bool:
    if dst.exists() and not force:
        log.info(f"{dst} already exists, skipping decompression")
        return False
    tmp = Path(str(dst) + ".part")
    log.info(f"Decompressing {src} -> {dst}")
    try:
        with gzip.open(src, "rb") as fin, open(tmp, "wb") as fout:
            shutil.copyfileobj(fin, fout, CHUNK)
        os.replace(tmp, dst)
    finally:
        tmp.unlink(missing_ok=True)
    return True


def fetch_databases(dest_dir: Path, force: bool = False,
                    session: Optional[requests.Session] = None) -> List[Path]:
    """Make sure the decompressed PR2 files exist under dest_dir. Returns their paths."""
    ensure_dir(dest_dir)
    out: List[Path] = []
    for f in PR2_FILES:
        gz = dest_dir / f.gz_name
        plain = dest_dir / f.name
        download_file(f.url, gz, force=force, session=session)
        gunzip_file(gz, plain, force=force)
        out.append(plain)
    log.info("Database download and extraction complete")
    return out
