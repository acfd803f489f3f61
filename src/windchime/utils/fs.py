from __future__ import annotations
from pathlib import Path
import json, os, tempfile
from typing import Any

def ensure_dir(p: Path) -> Path:
    p.mkdir(parents=True, exist_ok=True)
    return p

def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    tmp_path.replace(path)

def atomic_write_json(path: Path, obj: Any, indent: int = 2) -> None:
    atomic_write_text(path, json.dumps(obj, indent=indent))

def is_nonempty(path: Path) -> bool:
    """A file with at least one byte, or a directory with at least one entry."""
    if path.is_dir():
        return any(path.iterdir())
    return path.is_file() and path.stat().st_size > 0

def ok_path(target: Path) -> Path:
    return target.with_suffix(target.suffix + ".ok.json") if target.suffix else Path(str(target) + ".ok.json")

def write_ok(target: Path, meta: dict) -> None:
    atomic_write_json(ok_path(target), meta)

def has_ok(target: Path) -> bool:
    return ok_path(target).exists()
