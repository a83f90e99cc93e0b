import logging
from pathlib import Path
from typing import Optional, Sequence

import click

from .cli.align_sample import align_sample
from .cli.batch import PIPELINE_STEPS, batch_samples, run_pipeline
from .cli.configure_sample import configure_sample
from .config import load_sample_table, parse_memory
from .constants import PROVENANCE_CSV
from .informatics.reference import build_reference
from .informatics.sra_functions import fetch_accessions, read_accessions
from .logging_utils import setup_logging


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the log to this file.",
)
def cli(verbose: bool, log_file: Optional[Path]):
    """Command-line interface for solokit."""
    setup_logging(level=logging.DEBUG if verbose else logging.INFO, log_file=log_file)


def _sample_options(func):
    """Options shared by the single-sample commands."""
    options = [
        click.argument("sample"),
        click.option("--read1", "-1", required=True, help="Comma-separated read-1 FASTQ files."),
        click.option("--read2", "-2", required=True, help="Comma-separated read-2 FASTQ files."),
        click.option(
            "--reference",
            "-r",
            required=True,
            type=click.Path(exists=True, file_okay=False, path_type=Path),
            help="STAR genome directory.",
        ),
        click.option(
            "--whitelists",
            "-w",
            required=True,
            type=click.Path(exists=True, file_okay=False, path_type=Path),
            help="Directory holding the 10x barcode whitelists.",
        ),
        click.option(
            "--outdir",
            "-o",
            default=".",
            show_default=True,
            type=click.Path(file_okay=False, path_type=Path),
            help="Samples are written to OUTDIR/SAMPLE.",
        ),
        click.option("--threads", "-t", default=8, show_default=True, type=click.IntRange(min=1)),
        click.option(
            "--provenance",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help=f"Provenance table to append to (default: OUTDIR/{PROVENANCE_CSV}).",
        ),
        click.option("--star", default="STAR", show_default=True, help="STAR executable."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _alignment_options(func):
    options = [
        click.option("--memory", "-m", default="32G", show_default=True, help="Memory for BAM sorting, e.g. 64G."),
        click.option("--bam/--no-bam", "create_bam", default=True, show_default=True, help="Write a sorted, indexed BAM."),
        click.option(
            "--keep-unmapped/--no-unmapped",
            "keep_unmapped",
            default=True,
            show_default=True,
            help="Keep unmapped reads as compressed FASTQ.",
        ),
        click.option(
            "--samtools-backend",
            type=click.Choice(["auto", "python", "cli"]),
            default="auto",
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _memory_bytes(memory: str) -> int:
    try:
        return parse_memory(memory)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--memory") from e


####### Configure one sample ###########
@cli.command()
@_sample_options
def configure(sample, read1, read2, reference, whitelists, outdir, threads, provenance, star):
    """Infer the STARsolo parameters of SAMPLE without aligning it."""
    provenance = provenance or outdir / PROVENANCE_CSV
    try:
        config_pass = configure_sample(
            sample, read1, read2, reference, whitelists, outdir,
            threads=threads, provenance_csv=provenance, star=star,
        )
    except Exception as e:
        raise click.ClickException(f"{sample}: {e}") from e
    rc = config_pass.run_config
    click.echo(
        f"{rc.sample}: {rc.cb_whitelist} CB={rc.cb_length} UMI={rc.umi_length} "
        f"paired={rc.paired} strand={rc.strand}"
    )
##########################################

####### Configure and align one sample ###########
@cli.command()
@_sample_options
@_alignment_options
def align(sample, read1, read2, reference, whitelists, outdir, threads, provenance, star,
          memory, create_bam, keep_unmapped, samtools_backend):
    """Configure SAMPLE and align it with STARsolo."""
    memory_bytes = _memory_bytes(memory)
    provenance = provenance or outdir / PROVENANCE_CSV
    try:
        align_sample(
            sample, read1, read2, reference, whitelists, outdir,
            threads=threads,
            memory_bytes=memory_bytes,
            create_bam=create_bam,
            keep_unmapped=keep_unmapped,
            provenance_csv=provenance,
            samtools_backend=samtools_backend,
            star=star,
        )
    except Exception as e:
        raise click.ClickException(f"{sample}: {e}") from e
    click.echo(f"✓ {sample} aligned into {outdir / sample}")
##########################################

####### batch command ###########
@cli.command()
@click.argument("samples", type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path))
@click.option(
    "--fastq-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where <sample>_R1/_R2.fastq.gz live for samples without explicit reads (default: SAMPLES folder).",
)
@click.option("--reference", "-r", required=True, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--whitelists", "-w", required=True, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--outdir", "-o", default=".", show_default=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--threads", "-t", default=8, show_default=True, type=click.IntRange(min=1), help="Threads per sample.")
@click.option("--n-jobs", "-j", default=1, show_default=True, type=int, help="Samples processed at once; -1 for all CPUs.")
@click.option("--configure-only", is_flag=True, help="Infer parameters without aligning.")
@click.option("--star", default="STAR", show_default=True)
@_alignment_options
def batch(samples: Path, fastq_dir, reference, whitelists, outdir, threads, n_jobs, configure_only, star,
          memory, create_bam, keep_unmapped, samtools_backend):
    """
    Configure (and align) every sample listed in SAMPLES.

    SAMPLES is a CSV/TSV with a ``sample`` column and optional ``read1``/``read2``
    columns, or a plain text file with one sample ID per line.
    """
    memory_bytes = _memory_bytes(memory)
    try:
        table = load_sample_table(samples, fastq_dir or samples.parent)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Failed to read sample table {samples}: {e}") from e

    click.echo(f"Processing {len(table)} samples from {samples}")
    summary = batch_samples(
        table,
        reference,
        whitelists,
        outdir,
        threads=threads,
        n_jobs=n_jobs,
        memory_bytes=memory_bytes,
        create_bam=create_bam,
        keep_unmapped=keep_unmapped,
        configure_only=configure_only,
        samtools_backend=samtools_backend,
        star=star,
    )
    for row in summary.itertuples(index=False):
        status = "ok" if row.status == "ok" else f"FAILED ({row.error}: {row.message})"
        click.echo(f"  {row.sample}: {status}")
    n_failed = int((summary["status"] == "failed").sum())
    if n_failed:
        raise click.ClickException(f"{n_failed} of {len(summary)} samples failed.")
    click.echo("Batch processing complete.")
##########################################

####### Reference ###########
@cli.command()
@click.option("--genome", "-g", default=None, help="Genome assembly, e.g. GRCh38.")
@click.option("--version", "version", default=None, help="GENCODE release, e.g. 48 or M37.")
@click.option("--species", "-s", type=click.Choice(["human", "mouse"]), default=None, help="Latest human or mouse release.")
@click.option("--tool", default="STAR", show_default=True, help="STAR or cellranger executable.")
@click.option("--threads", "-t", default=12, show_default=True, type=click.IntRange(min=1))
@click.option("--filter/--no-filter", "gtf_filter", default=False, show_default=True, help="Filter the GTF for single-cell use.")
@click.option("--outdir", "-o", required=True, type=click.Path(file_okay=False, path_type=Path))
def reference(genome, version, species, tool, threads, gtf_filter, outdir):
    """Download a GENCODE genome and build the aligner reference in OUTDIR."""
    try:
        out = build_reference(
            outdir, genome=genome, version=version, species=species,
            tool=tool, threads=threads, gtf_filter=gtf_filter,
        )
    except (RuntimeError, ValueError, OSError) as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✓ Reference written to: {out}")
##########################################

####### Fetch raw data ###########
@cli.command()
@click.argument("accessions")
@click.option("--outdir", "-o", default=".", show_default=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--tmpdir", default=None, type=click.Path(file_okay=False, path_type=Path))
@click.option("--threads", "-t", default=8, show_default=True, type=click.IntRange(min=1))
@click.option("--rename", is_flag=True, help="Symlink <acc>_<role>.fastq.gz to the downloaded files.")
def fetch(accessions, outdir, tmpdir, threads, rename):
    """
    Download SRA data for ACCESSIONS: one SRP/SRS/SRX/SRR accession or a file
    with one accession per line.
    """
    ids = read_accessions(accessions)
    if not ids:
        raise click.ClickException(f"No accessions found in {accessions}")
    succeeded, failed = fetch_accessions(ids, outdir, tmpdir, threads, rename=rename)
    click.echo(f"{len(succeeded)} accessions fetched, {len(failed)} failed.")
    if failed:
        raise click.ClickException(f"Failed accessions: {', '.join(failed)} (see {outdir / 'fail.log'})")
##########################################

####### Run a pipeline config ###########
@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--step",
    "steps",
    multiple=True,
    type=click.Choice(list(PIPELINE_STEPS)),
    help="Step to run (repeatable). Default: all steps.",
)
@click.option("--configure-only", is_flag=True, help="Infer parameters without aligning.")
def run(config_path, steps: Sequence[str], configure_only: bool):
    """Run the pipeline described by CONFIG_PATH."""
    try:
        summary = run_pipeline(config_path, steps=tuple(steps) or PIPELINE_STEPS, configure_only=configure_only)
    except (RuntimeError, ValueError, OSError) as e:
        raise click.ClickException(str(e)) from e
    if summary is not None:
        n_failed = int((summary["status"] == "failed").sum())
        click.echo(f"{len(summary) - n_failed} of {len(summary)} samples completed.")
##########################################
