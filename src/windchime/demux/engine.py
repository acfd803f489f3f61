# src/windchime/demux/engine.py
from __future__ import annotations
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from itertools import islice
from typing import Dict, Iterable, Iterator, List, Set
import logging, os

from ..utils.fs import atomic_write_json, ok_path, write_ok
from .errors import MalformedInput, MalformedRecord, NoSamplesAssigned
from .fastq import PairedFastqReader, ReadPair
from .matcher import Assigned, BarcodeMatcher
from .stats import RunStatistics
from .writers import WriterPool

log = logging.getLogger(__name__)

FAILED_MARKER = "demux.failed.json"
OK_STEM = "demux"


@dataclass(frozen=True)
class MalformedThreshold:
    """
    When skipping malformed pairs stops being acceptable.

    Abort if each of the first `probe` pairs is malformed (wrong file format), or if
    more than `max_fraction` of pairs are malformed once `probe` pairs have been seen.
    """
    probe: int = 100
    max_fraction: float = 0.1

    def check(self, malformed: int, seen: int) -> None:
        if seen == malformed and malformed >= self.probe:
            raise MalformedInput(f"the first {malformed} read pairs are all malformed; inputs are probably not FASTQ")
        if seen >= self.probe and malformed / seen > self.max_fraction:
            raise MalformedInput(
                f"{malformed} of {seen} read pairs are malformed "
                f"(more than {self.max_fraction:.1%}); refusing to continue"
            )


def default_workers() -> int:
    return os.cpu_count() or 1


def _batched(pairs: Iterable[ReadPair], size: int) -> Iterator[List[ReadPair]]:
    it = iter(pairs)
    while True:
        batch = list(islice(it, size))
        if not batch:
            return
        yield batch


class DemuxEngine:
    """
    Classify read pairs on a worker pool and route them to the writer pool.

    The reader runs on the calling thread and hands out batches; at most
    2 x workers batches are in flight. Each worker returns its own RunStatistics,
    which are reduced here. Any exception aborts the run: the writer pool deletes
    its partial files, a failure marker is written, and the exception is re-raised
    with the statistics gathered so far attached as `err.stats`. A run that assigns
    no pair at all is aborted the same way with NoSamplesAssigned.
    """

    def __init__(
        self,
        matcher: BarcodeMatcher,
        writers: WriterPool,
        workers: int = 1,
        batch_size: int = 1000,
        threshold: MalformedThreshold = MalformedThreshold(),
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.matcher = matcher
        self.writers = writers
        self.workers = workers
        self.batch_size = batch_size
        self.threshold = threshold
        self._malformed = 0
        self._reader: PairedFastqReader | None = None

    # -- worker side --------------------------------------------------------
    def _process(self, batch: List[ReadPair]) -> RunStatistics:
        local = RunStatistics()
        groups: Dict[str, List[ReadPair]] = {}
        for pair in batch:
            local.pairs_seen += 1
            result = self.matcher.classify(pair)
            if isinstance(result, Assigned):
                groups.setdefault(result.sample_id, []).append(self.matcher.prepare(pair, result.sample_id))
                local.assigned[result.sample_id] += 1
            elif result.reason == "ambiguous":
                local.ambiguous += 1
            else:
                local.no_match += 1
        for sample_id in sorted(groups):
            self.writers.write(sample_id, groups[sample_id])
        return local

    # -- reader side --------------------------------------------------------
    def _on_malformed(self, err: MalformedRecord) -> None:
        self._malformed += 1
        log.debug(f"skipping malformed pair: {err}")
        self.threshold.check(self._malformed, self._seen())

    def _seen(self) -> int:
        return (self._reader.pairs_read if self._reader else 0) + self._malformed

    def _dispatch(self, reader: PairedFastqReader, pool: ThreadPoolExecutor, parts: List[RunStatistics]) -> None:
        pending: Set[Future] = set()
        for batch in _batched(reader, self.batch_size):
            pending.add(pool.submit(self._process, batch))
            if len(pending) >= 2 * self.workers:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                parts.extend(f.result() for f in done)
        done, _ = wait(pending)
        parts.extend(f.result() for f in done)

    def run(self, reader: PairedFastqReader) -> RunStatistics:
        if reader.on_malformed is None:
            reader.on_malformed = self._on_malformed
        self._reader = reader
        self._malformed = 0
        out_dir = self.writers.output_dir
        ok_path(out_dir / OK_STEM).unlink(missing_ok=True)

        parts: List[RunStatistics] = []
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="demux")
        try:
            self._dispatch(reader, pool, parts)
            pool.shutdown(wait=True)
            if self._malformed:
                self.threshold.check(self._malformed, self._seen())
            stats = self._finalize(parts)
            if stats.total_assigned == 0:
                raise NoSamplesAssigned(stats.pairs_seen)
            self.writers.commit()
        except BaseException as err:
            pool.shutdown(wait=True, cancel_futures=True)
            self.writers.abort()
            stats = self._finalize(parts)
            atomic_write_json(out_dir / FAILED_MARKER, {
                "error": f"{err.__class__.__name__}: {err}",
                "stats": stats.as_dict(),
            })
            err.stats = stats
            log.error(f"demultiplexing aborted: {err.__class__.__name__}: {err}")
            raise

        (out_dir / FAILED_MARKER).unlink(missing_ok=True)
        write_ok(out_dir / OK_STEM, stats.as_dict())
        log.info(
            f"demultiplexed {stats.pairs_seen} pairs: {stats.total_assigned} assigned, "
            f"{stats.unassigned} unassigned ({stats.ambiguous} ambiguous, {stats.malformed} malformed)"
        )
        return stats

    def _finalize(self, parts: List[RunStatistics]) -> RunStatistics:
        stats = RunStatistics.reduce(parts)
        stats.malformed = self._malformed
        stats.pairs_seen += self._malformed
        return stats


def run(
    reader: PairedFastqReader,
    matcher: BarcodeMatcher,
    writer_pool: WriterPool,
    workers: int = 1,
    batch_size: int = 1000,
    threshold: MalformedThreshold = MalformedThreshold(),
) -> RunStatistics:
    """Demultiplex everything `reader` yields. See DemuxEngine."""
    engine = DemuxEngine(matcher, writer_pool, workers=workers, batch_size=batch_size, threshold=threshold)
    return engine.run(reader)
