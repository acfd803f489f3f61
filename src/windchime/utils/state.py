from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
import json
from typing import Dict, Any, Iterable

from .fs import atomic_write_json

STATE_NAME = "windchime_state.json"


def state_path(output_dir: Path) -> Path:
    return output_dir / STATE_NAME


def ensure_state(path: Path) -> Dict[str, Any]:
    if path.exists():
        return load_state(path)
    s = {"version": 1, "tasks": []}
    save_state(s, path)
    return s


def load_state(path: Path) -> Dict[str, Any]:
    with open(path, "r") as fh:
        return json.load(fh)


def save_state(state: Dict[str, Any], path: Path) -> None:
    atomic_write_json(path, state)


def _find_task(state: Dict[str, Any], task_id: str) -> Dict[str, Any] | None:
    for t in state.get("tasks", []):
        if t.get("id") == task_id:
            return t
    return None


def add_or_get_task(state: Dict[str, Any], task_id: str, **attrs) -> Dict[str, Any]:
    t = _find_task(state, task_id)
    if t is None:
        t = {"id": task_id, **attrs, "steps": {}}
        state.setdefault("tasks", []).append(t)
    else:
        t.update(attrs)
    return t


def mark_task_step(state: Dict[str, Any], task_id: str, step: str, status: str, **meta) -> None:
    t = _find_task(state, task_id)
    if t is None:
        raise KeyError(f"Unknown task {task_id}")
    entry = {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()}
    entry.update(meta)
    # steps keep first-seen order so status tables follow pipeline order
    t.setdefault("steps", {})[step] = entry


def iter_tasks(state: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    return list(state.get("tasks", []))
