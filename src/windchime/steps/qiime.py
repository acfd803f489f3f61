# src/windchime/steps/qiime.py
"""
QIIME 2 amplicon workflow: import → trim → denoise → classify → merge.

Every stage is an ExternalStep with declared outputs, so `skip_existing` can
resume a run after the last step whose artifacts are all in place.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional
import logging, shutil

from ..demux.manifest import read_manifest
from ..exec.local import run_cmd
from ..utils.state import add_or_get_task, ensure_state, save_state, state_path
from .base import CondaRunStep, ExternalStep, PythonStep, QiimeStep, Runner, run_steps
from .databases import pr2_dir
from .merge import merge_asv_taxonomy

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetRegion:
    adapter_f: str
    adapter_r: str
    primer_f: str
    primer_r: str


TARGETS: Dict[str, TargetRegion] = {
    "18s": TargetRegion(
        adapter_f="^TTGTACACACCGCCC...GTAGGTGAACCTGCRGAAGG",
        adapter_r="^CCTTCYGCAGGTTCACCTAC...GGGCGGTGTGTACAA",
        primer_f="TTGTACACACCGCCC",
        primer_r="CCTTCYGCAGGTTCACCTAC",
    ),
    "16s": TargetRegion(
        adapter_f="^GTGYCAGCMGCCGCGGTAA...AAACTYAAAKRAATTGRCGG",
        adapter_r="^CCGYCAATTYMTTTRAGTTT...TTACCGCGGCKGCTGRCAC",
        primer_f="GTGYCAGCMGCCGCGGTAA",
        primer_r="CCGYCAATTYMTTTRAGTTT",
    ),
}

# DADA2 denoise-paired settings
TRUNC_Q = 2
TRUNC_LEN_F = 219
TRUNC_LEN_R = 194
MAX_EE_F = 2
MAX_EE_R = 4
N_READS_LEARN = 1_000_000

FINAL_TABLE = "asv_count_tax.tsv"


def resolve_target(target: str) -> TargetRegion:
    try:
        return TARGETS[target.lower()]
    except KeyError:
        raise ValueError(f"Unsupported target: {target}. Use '16s' or '18s'.") from None


def build_pipeline(
    env_name: str,
    manifest: Path,
    output_dir: Path,
    target: str,
    *,
    cores: int = 1,
    metadata: Optional[Path] = None,
) -> List[ExternalStep]:
    """The ordered step list for one target region. `cores` of 0 lets each tool use every CPU."""
    region = resolve_target(target)
    out = output_dir
    db = pr2_dir(out)
    tgt = target.lower()

    def q(name: str, description: str, *args, outputs=()) -> QiimeStep:
        return QiimeStep(env_name, name, description, [str(a) for a in args], outputs)

    demux_qza = out / "paired-end-demux.qza"
    demux_qzv = out / "paired-end-demux.qzv"
    trimmed_qza = out / "paired-end-demux-trimmed.qza"
    trimmed_qzv = out / "paired-end-demux-trimmed.qzv"
    asvs = out / "asvs"
    table_qza, rep_seqs_qza, stats_qza = asvs / "table-dada2.qza", asvs / "rep-seqs-dada2.qza", asvs / "stats-dada2.qza"
    asv_table = out / "asv_table"
    pr2_qza, pr2_tax_qza = db / "pr2.qza", db / "pr2_tax.qza"
    extracts_qza = db / f"pr2_extracts_{tgt}.qza"
    classifier_qza = db / f"pr2_classifier_{tgt}.qza"
    tax_qza, tax_qzv = out / "pr2_tax_sklearn.qza", out / "pr2_tax_sklearn.qzv"
    tax_dir = out / "asv_tax_dir"

    summarize_table = ["feature-table", "summarize", "--i-table", table_qza, "--o-visualization", asvs / "table-dada2.qzv"]
    if metadata is not None and Path(metadata).exists():
        summarize_table += ["--m-sample-metadata-file", metadata]

    def _copy_taxonomy() -> None:
        shutil.copyfile(tax_dir / "taxonomy.tsv", tax_dir / "pr2_taxonomy.tsv")

    def _merge() -> None:
        merge_asv_taxonomy(asv_table / "asv-table.tsv", tax_dir / "pr2_taxonomy.tsv", out / FINAL_TABLE)

    return [
        q("import", "Importing files with manifest",
          "tools", "import", "--type", "SampleData[PairedEndSequencesWithQuality]",
          "--input-path", manifest, "--output-path", demux_qza,
          "--input-format", "PairedEndFastqManifestPhred33V2", outputs=[demux_qza]),
        q("validate", "Validating imported file", "tools", "validate", demux_qza),
        q("summarize-demux", "Summarizing demultiplexed data",
          "demux", "summarize", "--i-data", demux_qza, "--o-visualization", demux_qzv, outputs=[demux_qzv]),
        q("cutadapt", "Trimming reads with Cutadapt",
          "cutadapt", "trim-paired", "--i-demultiplexed-sequences", demux_qza,
          "--p-cores", max(cores, 1), "--p-adapter-f", region.adapter_f, "--p-adapter-r", region.adapter_r,
          "--p-error-rate", "0.1", "--p-overlap", "3", "--verbose",
          "--o-trimmed-sequences", trimmed_qza, outputs=[trimmed_qza]),
        q("summarize-trimmed", "Summarizing trimmed data",
          "demux", "summarize", "--i-data", trimmed_qza, "--p-n", "100000",
          "--o-visualization", trimmed_qzv, outputs=[trimmed_qzv]),
        q("dada2", "Running DADA2 denoise-paired",
          "dada2", "denoise-paired", "--i-demultiplexed-seqs", trimmed_qza,
          "--p-n-threads", cores, "--p-trunc-q", TRUNC_Q,
          "--p-trunc-len-f", TRUNC_LEN_F, "--p-trunc-len-r", TRUNC_LEN_R,
          "--p-max-ee-f", MAX_EE_F, "--p-max-ee-r", MAX_EE_R,
          "--p-n-reads-learn", N_READS_LEARN, "--p-chimera-method", "pooled",
          "--o-table", table_qza, "--o-representative-sequences", rep_seqs_qza,
          "--o-denoising-stats", stats_qza, outputs=[table_qza, rep_seqs_qza, stats_qza]),
        q("dada2-stats", "Tabulating DADA2 denoising stats",
          "metadata", "tabulate", "--m-input-file", stats_qza,
          "--o-visualization", asvs / "stats-dada2.qzv", outputs=[asvs / "stats-dada2.qzv"]),
        q("summarize-table", "Summarizing feature table", *summarize_table, outputs=[asvs / "table-dada2.qzv"]),
        q("export-table", "Exporting ASV table",
          "tools", "export", "--input-path", table_qza, "--output-path", asv_table,
          outputs=[asv_table / "feature-table.biom"]),
        CondaRunStep(env_name, "biom-to-tsv", "Converting BIOM to TSV",
                     ["biom", "convert", "-i", asv_table / "feature-table.biom",
                      "-o", asv_table / "asv-table.tsv", "--to-tsv"],
                     outputs=[asv_table / "asv-table.tsv"]),
        q("export-rep-seqs", "Exporting representative sequences",
          "tools", "export", "--input-path", rep_seqs_qza, "--output-path", asvs,
          outputs=[asvs / "dna-sequences.fasta"]),
        q("tabulate-rep-seqs", "Tabulating representative sequences",
          "feature-table", "tabulate-seqs", "--i-data", rep_seqs_qza,
          "--o-visualization", asvs / "rep-seqs-dada2.qzv", outputs=[asvs / "rep-seqs-dada2.qzv"]),
        q("import-pr2-seqs", "Importing pr2 sequences",
          "tools", "import", "--type", "FeatureData[Sequence]",
          "--input-path", db / "pr2_with_taxonomy_simple.fasta", "--output-path", pr2_qza, outputs=[pr2_qza]),
        q("import-pr2-tax", "Importing pr2 taxonomy",
          "tools", "import", "--type", "FeatureData[Taxonomy]", "--input-format", "HeaderlessTSVTaxonomyFormat",
          "--input-path", db / "pr2_taxonomy.tsv", "--output-path", pr2_tax_qza, outputs=[pr2_tax_qza]),
        q("extract-reads", "Extracting pr2 reads",
          "feature-classifier", "extract-reads", "--i-sequences", pr2_qza,
          "--p-f-primer", region.primer_f, "--p-r-primer", region.primer_r,
          "--o-reads", extracts_qza, outputs=[extracts_qza]),
        q("fit-classifier", "Fitting pr2 classifier",
          "feature-classifier", "fit-classifier-naive-bayes",
          "--i-reference-reads", extracts_qza, "--i-reference-taxonomy", pr2_tax_qza,
          "--o-classifier", classifier_qza, "--p-classify--chunk-size", "100000", outputs=[classifier_qza]),
        q("classify", "Classifying reads with pr2 classifier",
          "feature-classifier", "classify-sklearn", "--p-n-jobs", cores,
          "--i-classifier", classifier_qza, "--i-reads", rep_seqs_qza,
          "--o-classification", tax_qza, outputs=[tax_qza]),
        q("tabulate-taxonomy", "Tabulating classified taxonomy",
          "metadata", "tabulate", "--m-input-file", tax_qza, "--o-visualization", tax_qzv, outputs=[tax_qzv]),
        q("export-taxonomy", "Exporting pr2 taxonomy",
          "tools", "export", "--input-path", tax_qza, "--output-path", tax_dir,
          outputs=[tax_dir / "taxonomy.tsv"]),
        PythonStep("name-taxonomy", "Naming pr2 taxonomy file", _copy_taxonomy,
                   outputs=[tax_dir / "pr2_taxonomy.tsv"]),
        PythonStep("merge", "Merging ASV and taxonomy tables", _merge, outputs=[out / FINAL_TABLE]),
    ]


def check_manifest(manifest: Path) -> int:
    """The manifest must exist and every file it lists must be present. Returns the sample count."""
    if not manifest.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest}")
    rows = read_manifest(manifest)
    missing = [str(p) for _, f, r in rows for p in (f, r) if not p.exists()]
    if missing:
        raise FileNotFoundError(f"Manifest {manifest} lists missing files: {', '.join(missing)}")
    return len(rows)


def run_pipeline(
    env_name: str,
    manifest: Path,
    output_dir: Path,
    target: str,
    *,
    cores: int = 1,
    metadata: Optional[Path] = None,
    skip_existing: bool = False,
    runner: Runner = run_cmd,
) -> Dict[str, str]:
    """
    Run the workflow for `target` against `manifest`; raises StepFailed on the first failure.

    Step status is persisted to <output_dir>/windchime_state.json under the task
    'pipeline:<target>' so `windchime status` can show progress.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    n = check_manifest(manifest)
    steps = build_pipeline(env_name, manifest.resolve(), output_dir, target,
                           cores=cores, metadata=metadata)
    log.info(f"Running {len(steps)} QIIME 2 steps for {n} samples (target={target}, env={env_name})")

    spath = state_path(output_dir)
    state = ensure_state(spath)
    task_id = f"pipeline:{target.lower()}"
    add_or_get_task(state, task_id, kind="pipeline", target=target.lower(), manifest=str(manifest))
    save_state(state, spath)

    results = run_steps(
        steps, runner=runner, skip_existing=skip_existing,
        state=state, task_id=task_id, on_change=lambda: save_state(state, spath),
    )
    log.info(f"Pipeline completed successfully; merged results in {output_dir / FINAL_TABLE}")
    return results
