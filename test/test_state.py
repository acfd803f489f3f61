from pathlib import Path
import pytest

from windchime.utils.fs import has_ok, is_nonempty, write_ok
from windchime.utils.state import (
    add_or_get_task, ensure_state, iter_tasks, load_state, mark_task_step, save_state, state_path,
)


def test_state_roundtrip(tmp_path: Path):
    p = state_path(tmp_path)
    s = ensure_state(p)
    assert p.exists() and s["tasks"] == []

    add_or_get_task(s, "pipeline:18s", kind="pipeline")
    add_or_get_task(s, "pipeline:18s", manifest="m.tsv")
    mark_task_step(s, "pipeline:18s", "import", "done")
    save_state(s, p)

    tasks = iter_tasks(load_state(p))
    assert len(tasks) == 1
    assert tasks[0]["manifest"] == "m.tsv" and tasks[0]["kind"] == "pipeline"
    assert tasks[0]["steps"]["import"]["status"] == "done"
    assert "updated_at" in tasks[0]["steps"]["import"]


def test_mark_unknown_task():
    with pytest.raises(KeyError):
        mark_task_step({"tasks": []}, "nope", "x", "done")


def test_nonempty_and_ok_markers(tmp_path: Path):
    f = tmp_path / "f.qza"
    d = tmp_path / "d"
    assert not is_nonempty(f)
    f.write_text("")
    assert not is_nonempty(f)
    f.write_text("x")
    assert is_nonempty(f)
    d.mkdir()
    assert not is_nonempty(d)
    (d / "x").write_text("")
    assert is_nonempty(d)

    assert not has_ok(tmp_path / "demux")
    write_ok(tmp_path / "demux", {"pairs_seen": 1})
    assert (tmp_path / "demux.ok.json").exists() and has_ok(tmp_path / "demux")
