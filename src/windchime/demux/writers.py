# src/windchime/demux/writers.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, IO, Iterable, List, Sequence, Tuple
import gzip, logging, os, threading

from ..utils.fs import ensure_dir
from .fastq import ReadPair

log = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"


def sample_fastq_name(sample_id: str, read: str) -> str:
    """Casava-style name the QIIME 2 importers recognise, e.g. 'S1_L001_R1_001.fastq.gz'."""
    return f"{sample_id}_L001_{read}_001.fastq.gz"


def _partial(path: Path) -> Path:
    return Path(str(path) + PARTIAL_SUFFIX)


@dataclass
class SampleOutputs:
    sample_id: str
    forward_path: Path
    reverse_path: Path
    pairs_written: int = 0


class WriterPool:
    """
    One gzip stream per (sample, direction), opened on the first write for that sample.

    Writes for a sample hold that sample's lock for both directions, so the Nth
    forward record always pairs with the Nth reverse record. A pool-wide lock is
    held only while a sample's streams are looked up or lazily created. Streams write to
    '<name>.partial' and only get their final name in commit(); abort() deletes them.
    """

    def __init__(self, output_dir: Path | str, sample_ids: Iterable[str], compresslevel: int = 6):
        self.output_dir = ensure_dir(Path(output_dir).resolve())
        self.compresslevel = compresslevel
        self.outputs: Dict[str, SampleOutputs] = {}
        for s in sample_ids:
            self.outputs[s] = SampleOutputs(
                sample_id=s,
                forward_path=self.output_dir / sample_fastq_name(s, "R1"),
                reverse_path=self.output_dir / sample_fastq_name(s, "R2"),
            )
        self._locks = {s: threading.Lock() for s in self.outputs}
        self._streams: Dict[str, Tuple[IO[str], IO[str]]] = {}
        self._finalized: List[Path] = []
        self._state = "open"
        self._state_lock = threading.Lock()
        self._open_lock = threading.Lock()
        for out in self.outputs.values():
            for p in (out.forward_path, out.reverse_path):
                _partial(p).unlink(missing_ok=True)

    @property
    def closed(self) -> bool:
        return self._state != "open"

    def _open(self, out: SampleOutputs) -> Tuple[IO[str], IO[str]]:
        log.debug(f"opening outputs for {out.sample_id}")
        fwd = gzip.open(_partial(out.forward_path), "wt", compresslevel=self.compresslevel)
        try:
            rev = gzip.open(_partial(out.reverse_path), "wt", compresslevel=self.compresslevel)
        except OSError:
            fwd.close()
            raise
        return fwd, rev

    def write(self, sample_id: str, pairs: Sequence[ReadPair]) -> None:
        if not pairs:
            return
        out = self.outputs[sample_id]
        with self._locks[sample_id]:
            if self.closed:
                raise RuntimeError(f"WriterPool is {self._state}; cannot write {sample_id}")
            with self._open_lock:
                streams = self._streams.get(sample_id)
                if streams is None:
                    streams = self._streams[sample_id] = self._open(out)
            fwd, rev = streams
            fwd.write("".join(p.forward_record() for p in pairs))
            rev.write("".join(p.reverse_record() for p in pairs))
            out.pairs_written += len(pairs)

    def _transition(self, new_state: str) -> bool:
        with self._state_lock:
            if self._state in ("committed", "aborted"):
                return False
            if new_state == "committing" and self._state != "open":
                return False
            self._state = new_state
            return True

    def commit(self) -> List[SampleOutputs]:
        """Close every stream and move the partial files into place. Returns the samples written."""
        if not self._transition("committing"):
            raise RuntimeError(f"WriterPool already {self._state}")
        for sample_id, (fwd, rev) in self._streams.items():
            fwd.close()
            rev.close()
        written: List[SampleOutputs] = []
        for out in self.outputs.values():
            if out.sample_id in self._streams:
                for p in (out.forward_path, out.reverse_path):
                    os.replace(_partial(p), p)
                    self._finalized.append(p)
                written.append(out)
            else:
                # stale files from an earlier run must not look like this run's output
                for p in (out.forward_path, out.reverse_path):
                    if p.exists():
                        log.debug(f"removing stale {p}")
                        p.unlink()
        self._streams.clear()
        self._transition("committed")
        return written

    def abort(self) -> None:
        """Close and delete every partial output. Safe to call more than once."""
        if not self._transition("aborted"):
            return
        for sample_id, (fwd, rev) in self._streams.items():
            for h in (fwd, rev):
                try:
                    h.close()
                except OSError as e:
                    log.warning(f"error closing partial output for {sample_id}: {e}")
        self._streams.clear()
        for out in self.outputs.values():
            for p in (out.forward_path, out.reverse_path):
                _partial(p).unlink(missing_ok=True)
        for p in self._finalized:
            p.unlink(missing_ok=True)
        log.info(f"removed partial demultiplex outputs under {self.output_dir}")
