"""Split a pooled paired-end run into per-sample FASTQs by inline barcode."""
from .barcodes import BarcodeEntry, BarcodeTable, load_barcode_table
from .engine import DemuxEngine, MalformedThreshold, run
from .errors import (
    AmbiguousBarcode,
    BarcodeTableError,
    DemuxError,
    DesyncError,
    MalformedInput,
    MalformedRecord,
    NoSamplesAssigned,
    PairMismatch,
)
from .fastq import PairedFastqReader, ReadPair
from .manifest import emit
from .matcher import Assigned, BarcodeMatcher, MatchPolicy, Unassigned, classify
from .stats import RunStatistics, summarize
from .writers import SampleOutputs, WriterPool
