# src/windchime/steps/base.py
from __future__ import annotations
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence
import logging, shutil

from ..exec.local import run_cmd
from ..utils.fs import is_nonempty
from ..utils.state import mark_task_step

log = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], int]


def which_or_raise(*bins: str) -> None:
    missing = [b for b in bins if shutil.which(b) is None]
    if missing:
        raise RuntimeError(f"Missing required executables: {', '.join(missing)}")


class StepFailed(RuntimeError):
    def __init__(self, step: "ExternalStep", returncode: int):
        self.step = step
        self.returncode = returncode
        super().__init__(f"{step.description} failed (exit {returncode}): {' '.join(map(str, step.build_args()))}")


class ExternalStep:
    """
    One external command in the workflow.

    Subclasses provide build_args(); run() executes it through a runner and
    interpret_exit_code() turns the exit status into success or StepFailed.
    `outputs` lists the artifacts the step produces: with skip_existing the step
    is skipped only when every one of them exists and is non-empty. A step with
    no declared outputs always runs.
    """

    name: str = "step"
    description: str = "external step"

    def __init__(self, outputs: Iterable[Path] = ()):
        self.outputs: List[Path] = [Path(p) for p in outputs]

    def build_args(self) -> List[str]:
        raise NotImplementedError

    def interpret_exit_code(self, code: int) -> None:
        if code != 0:
            raise StepFailed(self, code)

    def is_complete(self) -> bool:
        return bool(self.outputs) and all(is_nonempty(p) for p in self.outputs)

    def prepare(self) -> None:
        for p in self.outputs:
            p.parent.mkdir(parents=True, exist_ok=True)

    def run(self, runner: Runner = run_cmd) -> None:
        self.prepare()
        self.interpret_exit_code(runner(self.build_args()))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class CommandStep(ExternalStep):
    """A fixed argument vector."""

    def __init__(self, name: str, description: str, args: Sequence[str], outputs: Iterable[Path] = ()):
        super().__init__(outputs)
        self.name = name
        self.description = description
        self.args = [str(a) for a in args]

    def build_args(self) -> List[str]:
        return list(self.args)


class CondaRunStep(CommandStep):
    """`conda run -n <env> <program> ...`"""

    def __init__(self, env_name: str, name: str, description: str, args: Sequence[str], outputs: Iterable[Path] = ()):
        super().__init__(name, description, args, outputs)
        self.env_name = env_name

    def build_args(self) -> List[str]:
        return ["conda", "run", "-n", self.env_name, *self.args]


class QiimeStep(CondaRunStep):
    def __init__(self, env_name: str, name: str, description: str, args: Sequence[str], outputs: Iterable[Path] = ()):
        super().__init__(env_name, name, description, ["qiime", *args], outputs)


class PythonStep(ExternalStep):
    """An in-process step; it still declares outputs so skip_existing treats it like the rest."""

    def __init__(self, name: str, description: str, func: Callable[[], None], outputs: Iterable[Path] = ()):
        super().__init__(outputs)
        self.name = name
        self.description = description
        self.func = func

    def build_args(self) -> List[str]:
        return [f"<python:{self.func.__name__}>"]

    def run(self, runner: Runner = run_cmd) -> None:
        self.prepare()
        self.func()


def run_steps(
    steps: Sequence[ExternalStep],
    *,
    runner: Runner = run_cmd,
    skip_existing: bool = False,
    state: Optional[Dict] = None,
    task_id: Optional[str] = None,
    on_change: Optional[Callable[[], None]] = None,
) -> Dict[str, str]:
    """
    Run steps in order and stop at the first failure.

    When `state`/`task_id` are given each step's status ('skipped', 'done',
    'failed') is recorded there and `on_change` is called so the caller can persist it.
    Returns {step name: status}.
    """
    results: Dict[str, str] = {}

    def _mark(step: ExternalStep, status: str, **meta) -> None:
        results[step.name] = status
        if state is not None and task_id is not None:
            mark_task_step(state, task_id, step.name, status, **meta)
            if on_change:
                on_change()

    for step in steps:
        if skip_existing and step.is_complete():
            log.info(f"Skipping '{step.description}' ({', '.join(p.name for p in step.outputs)} present)")
            _mark(step, "skipped")
            continue
        log.info(f"==> {step.description}")
        try:
            step.run(runner)
        except StepFailed as e:
            _mark(step, "failed", returncode=e.returncode)
            raise
        except Exception as e:
            _mark(step, "failed", error=str(e))
            raise
        _mark(step, "done")
    return results
