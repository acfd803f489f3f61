# src/windchime/cli.py
from __future__ import annotations
from functools import partial
from pathlib import Path
from typing import Optional
import logging
import typer
from rich.table import Table
from rich.console import Console

from .config import DEFAULT_ENV, WindchimeConfig
from .demux.engine import FAILED_MARKER, OK_STEM
from .demux.errors import DemuxError
from .demux.run import run_demux
from .demux.stats import RunStatistics, summarize
from .exec.local import run_cmd
from .steps.base import StepFailed
from .steps.databases import fetch_databases, pr2_dir
from .steps.env import install_env
from .steps.qiime import resolve_target, run_pipeline
from .utils.fs import has_ok
from .utils.logging import add_file_log, setup_logging
from .utils.state import load_state, state_path, iter_tasks

app = typer.Typer(add_completion=False, help="windchime: QIIME 2 16S/18S amplicon pipeline with built-in demultiplexing")
console = Console()
log = logging.getLogger(__name__)


@app.callback()
def _main(
    ctx: typer.Context,
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="-v/-vv for more logs; -v also shows tool output"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", exists=True, dir_okay=False,
                                          help="YAML config (default: ./windchime.yaml if present)"),
):
    setup_logging(verbose)
    ctx.obj = {"config": WindchimeConfig.load(config), "verbose": verbose}


def _config(ctx: typer.Context, **overrides) -> WindchimeConfig:
    cfg: WindchimeConfig = ctx.obj["config"]
    demux_over = {k[len("demux_"):]: v for k, v in overrides.items() if k.startswith("demux_") and v is not None}
    top = {k: v for k, v in overrides.items() if not k.startswith("demux_") and v is not None}
    if demux_over:
        top["demux"] = cfg.demux.model_copy(update=demux_over)
    cfg = cfg.model_copy(update=top)
    add_file_log(cfg.output_dir)
    return cfg


def _runner(ctx: typer.Context):
    return partial(run_cmd, verbose=ctx.obj["verbose"] > 0)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    raise typer.Exit(1)


def _print_stats(stats: RunStatistics, sample_ids, error: Optional[BaseException] = None) -> None:
    table = Table(title="Demultiplexing")
    table.add_column("Sample", overflow="fold")
    table.add_column("Pairs", justify="right")
    for s, n in stats.per_sample(sample_ids).items():
        table.add_row(s, str(n))
    table.add_row("[dim]unassigned[/]", str(stats.unassigned))
    table.add_row("[dim]  ambiguous[/]", str(stats.ambiguous))
    table.add_row("[dim]  malformed[/]", str(stats.malformed))
    table.add_row("[bold]total seen[/]", str(stats.pairs_seen))
    console.print(table)
    colour = "red" if error is not None else "green"
    console.print(f"[{colour}]{summarize(stats, error)}[/]")


def _do_demux(cfg: WindchimeConfig) -> None:
    if cfg.forward is None or cfg.reverse is None:
        _fail("demux needs --forward and --reverse (or 'forward'/'reverse' in the config file)")
    try:
        result = run_demux(
            barcodes=cfg.barcodes,
            forward=cfg.forward,
            reverse=cfg.reverse,
            output_dir=cfg.output_dir,
            manifest=cfg.manifest_path,
            settings=cfg.demux,
            workers=cfg.cores,
        )
    except (DemuxError, OSError) as e:
        stats = getattr(e, "stats", None)
        if stats is not None:
            _print_stats(stats, sorted(stats.assigned), e)
        else:
            console.print(f"[red]aborted: {e}[/]")
        raise typer.Exit(1)
    _print_stats(result.stats, result.sample_ids)
    console.print(f"[bold]Manifest[/]: {result.manifest}")


def _do_pipeline(ctx: typer.Context, cfg: WindchimeConfig) -> None:
    try:
        run_pipeline(
            cfg.env_name, cfg.manifest_path, cfg.output_dir, cfg.target,
            cores=cfg.cores, metadata=cfg.metadata, skip_existing=cfg.skip_existing, runner=_runner(ctx),
        )
    except (StepFailed, FileNotFoundError, RuntimeError, ValueError) as e:
        _fail(str(e))
    console.print(f"[green]Pipeline completed successfully![/] See {cfg.output_dir / 'asv_count_tax.tsv'}")


def _check_target(target: Optional[str]) -> Optional[str]:
    if target is None:
        return None
    try:
        resolve_target(target)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    return target.lower()


# ------------------------------------------------------------------------------------
# Environment + databases
# ------------------------------------------------------------------------------------
@app.command("install-env")
def install_env_cmd(
    ctx: typer.Context,
    env_name: Optional[str] = typer.Option(None, "--env-name", "-e", help=f"Conda env name (default {DEFAULT_ENV})"),
):
    """Create the QIIME 2 amplicon conda environment unless it already exists."""
    cfg = _config(ctx, env_name=env_name)
    try:
        created = install_env(cfg.env_name, runner=_runner(ctx))
    except (StepFailed, RuntimeError) as e:
        _fail(str(e))
    console.print(f"[green]Environment '{cfg.env_name}' {'created' if created else 'already present'}.")


@app.command("download-dbs")
def download_dbs(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Download and decompress even if files exist"),
    dest: Optional[Path] = typer.Option(None, help="Destination directory (default <output_dir>/db/pr2)"),
):
    """Fetch the PR2 reference sequences and taxonomy."""
    cfg = _config(ctx)
    try:
        paths = fetch_databases(dest or pr2_dir(cfg.output_dir), force=force)
    except Exception as e:
        _fail(f"database download failed: {e}")
    for p in paths:
        console.print(f"[green]ready[/] {p}")


# ------------------------------------------------------------------------------------
# Demultiplexing
# ------------------------------------------------------------------------------------
@app.command()
def demux(
    ctx: typer.Context,
    barcodes: Optional[Path] = typer.Option(None, "--barcodes", "-b", help="TSV: sample-id, barcode[, reverse-barcode]"),
    forward: Optional[Path] = typer.Option(None, "--forward", help="Pooled R1 FASTQ(.gz)"),
    reverse: Optional[Path] = typer.Option(None, "--reverse", help="Pooled R2 FASTQ(.gz)"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o"),
    manifest: Optional[str] = typer.Option(None, "--manifest", "-m", help="Manifest file name inside the output dir"),
    cores: Optional[int] = typer.Option(None, min=0, help="Worker threads (0 = all CPUs)"),
    offset: Optional[int] = typer.Option(None, min=0, help="Barcode window start in each read"),
    max_mismatches: Optional[int] = typer.Option(None, min=0, help="Hamming mismatches allowed per read"),
    trim: Optional[bool] = typer.Option(None, "--trim/--no-trim", help="Strip the barcode window from written reads"),
):
    """Split pooled paired-end reads into per-sample FASTQs and write the QIIME 2 manifest."""
    cfg = _config(
        ctx, barcodes=barcodes, forward=forward, reverse=reverse, output_dir=output_dir,
        manifest=manifest, cores=cores, demux_offset=offset, demux_max_mismatches=max_mismatches,
        demux_trim_barcode=trim,
    )
    _do_demux(cfg)


# ------------------------------------------------------------------------------------
# QIIME 2 pipeline
# ------------------------------------------------------------------------------------
@app.command()
def pipeline(
    ctx: typer.Context,
    env_name: Optional[str] = typer.Option(None, "--env-name", "-e"),
    manifest: Optional[str] = typer.Option(None, "--manifest", "-m", help="Manifest file name inside the output dir"),
    metadata: Optional[Path] = typer.Option(None, "--metadata", help="Sample metadata TSV for the table summary"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o"),
    cores: Optional[int] = typer.Option(None, min=0, help="Cores for cutadapt/DADA2/classifier (0 = all)"),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="16s or 18s"),
    skip_existing: Optional[bool] = typer.Option(None, "--skip-existing/--no-skip-existing",
                                                 help="Skip steps whose outputs already exist"),
):
    """Run import → trim → DADA2 → classify → merge on an existing manifest."""
    cfg = _config(
        ctx, env_name=env_name, manifest=manifest, metadata=metadata, output_dir=output_dir,
        cores=cores, target=_check_target(target), skip_existing=skip_existing,
    )
    console.print(f"Running QIIME 2 pipeline with environment: {cfg.env_name}")
    _do_pipeline(ctx, cfg)


@app.command("run-all")
def run_all(
    ctx: typer.Context,
    env_name: Optional[str] = typer.Option(None, "--env-name", "-e"),
    barcodes: Optional[Path] = typer.Option(None, "--barcodes", "-b"),
    forward: Optional[Path] = typer.Option(None, "--forward"),
    reverse: Optional[Path] = typer.Option(None, "--reverse"),
    manifest: Optional[str] = typer.Option(None, "--manifest", "-m"),
    metadata: Optional[Path] = typer.Option(None, "--metadata"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o"),
    cores: Optional[int] = typer.Option(None, min=0),
    target: Optional[str] = typer.Option(None, "--target", "-t"),
    skip_existing: Optional[bool] = typer.Option(None, "--skip-existing/--no-skip-existing"),
):
    """install-env → demux → download-dbs → pipeline."""
    cfg = _config(
        ctx, env_name=env_name, barcodes=barcodes, forward=forward, reverse=reverse, manifest=manifest,
        metadata=metadata, output_dir=output_dir, cores=cores, target=_check_target(target),
        skip_existing=skip_existing,
    )
    console.print(f"==> Checking conda environment '{cfg.env_name}'")
    try:
        install_env(cfg.env_name, runner=_runner(ctx))
    except (StepFailed, RuntimeError) as e:
        _fail(f"installing environment: {e}")

    console.print("==> Demultiplexing and writing the manifest")
    _do_demux(cfg)

    console.print("==> Downloading database files if necessary")
    try:
        fetch_databases(pr2_dir(cfg.output_dir), force=False)
    except Exception as e:
        _fail(f"database download failed: {e}")

    console.print(f"==> Running QIIME 2 pipeline using manifest {cfg.manifest_path}")
    _do_pipeline(ctx, cfg)


# ------------------------------------------------------------------------------------
# Status
# ------------------------------------------------------------------------------------
@app.command()
def status(ctx: typer.Context, output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o")):
    """Show demultiplexing outcome and pipeline step progress."""
    cfg = _config(ctx, output_dir=output_dir)
    out = cfg.output_dir
    if (out / FAILED_MARKER).exists():
        console.print(f"[red]demux: last run aborted[/] (see {out / FAILED_MARKER})")
    elif has_ok(out / OK_STEM):
        console.print("[green]demux: completed[/]")
    else:
        console.print("[yellow]demux: not run[/]")

    spath = state_path(out)
    if not spath.exists():
        console.print("No pipeline state recorded yet.")
        return
    table = Table(title="windchime status")
    table.add_column("Task", overflow="fold")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Updated", overflow="fold")
    for t in iter_tasks(load_state(spath)):
        for name, info in t.get("steps", {}).items():
            st = info.get("status", "?")
            colour = {"done": "green", "skipped": "cyan", "failed": "red"}.get(st, "white")
            table.add_row(t.get("id", "?"), name, f"[{colour}]{st}[/]", info.get("updated_at", ""))
    console.print(table)


# ------------------------------------------------------------------------------------
# Interactive wizard
# ------------------------------------------------------------------------------------
@app.command()
def wizard(ctx: typer.Context):
    """Prompt for each stage in turn."""
    cfg = _config(ctx)
    console.print("[bold]Welcome to the windchime wizard![/]")
    env_name = typer.prompt("QIIME 2 environment name", default=cfg.env_name)
    cfg = cfg.model_copy(update={"env_name": env_name})
    if typer.confirm("Install/check this environment now?", default=True):
        try:
            install_env(env_name, runner=_runner(ctx))
        except (StepFailed, RuntimeError) as e:
            _fail(str(e))

    barcodes = typer.prompt("Barcode table (blank to skip demultiplexing)", default="", show_default=False)
    if barcodes.strip():
        forward = typer.prompt("Pooled forward (R1) FASTQ")
        reverse = typer.prompt("Pooled reverse (R2) FASTQ")
        cfg = cfg.model_copy(update={"barcodes": Path(barcodes), "forward": Path(forward), "reverse": Path(reverse)})
        _do_demux(cfg)

    if typer.confirm("Download reference databases now?", default=True):
        try:
            fetch_databases(pr2_dir(cfg.output_dir))
        except Exception as e:
            _fail(f"database download failed: {e}")

    if typer.confirm("Run the QIIME 2 pipeline now?", default=True):
        cores = typer.prompt("Number of CPU cores to use", default=cfg.cores, type=int)
        target = _check_target(typer.prompt("Target region (16s/18s)", default=cfg.target))
        cfg = cfg.model_copy(update={"cores": cores, "target": target})
        _do_pipeline(ctx, cfg)
    console.print("[green]Wizard completed successfully![/]")


def main():
    app()


if __name__ == "__main__":
    main()
