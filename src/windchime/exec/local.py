from __future__ import annotations
from subprocess import DEVNULL, Popen
from typing import Sequence
import logging

log = logging.getLogger(__name__)


def run_cmd(cmd: Sequence[str], *, verbose: bool = False) -> int:
    """Run a command and return its exit code. Output streams to the terminal only when verbose."""
    log.info("[CMD] " + " ".join(map(str, cmd)))
    sink = None if verbose else DEVNULL
    p = Popen([str(c) for c in cmd], stdin=DEVNULL, stdout=sink, stderr=sink)
    return p.wait()
