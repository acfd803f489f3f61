from __future__ import annotations
from pathlib import Path
import logging
import time
from rich.logging import RichHandler

_DEF_LEVEL = logging.WARNING
_FILE_FMT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_NAME = "windchime.log"


def setup_logging(verbosity: int = 0) -> None:
    level = _DEF_LEVEL
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    # clear existing
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = RichHandler(rich_tracebacks=True, show_time=False)
    handler.setLevel(level)
    root.addHandler(handler)


def add_file_log(output_dir: Path) -> Path:
    """Append INFO and above to <output_dir>/windchime.log with UTC ISO-8601 timestamps."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = (output_dir / LOG_NAME).resolve()
    root = logging.getLogger()
    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path:
            return path
    fh = logging.FileHandler(path, mode="a")
    fmt = logging.Formatter(_FILE_FMT, datefmt="%Y-%m-%dT%H:%M:%S%z")
    fmt.converter = time.gmtime
    fh.setFormatter(fmt)
    fh.setLevel(logging.INFO)
    root.addHandler(fh)
    return path
