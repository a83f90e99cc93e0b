from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

from ..constants import FAILED_SAMPLES_CSV, SOLO_OUT_DIR
from ..informatics.run_config import RunConfig, append_provenance, build_alignment_command
from ..informatics.star_functions import compress_solo_outputs, compress_unmapped, index_bam, run_star
from ..logging_utils import get_logger
from ..readwrite import remove_paths
from .configure_sample import configure_sample, record_failure

logger = get_logger(__name__)

PathLike = Union[str, Path]


def dispatch_alignment(
    run_config: RunConfig,
    reference: PathLike,
    sample_dir: PathLike,
    threads: int = 8,
    memory_bytes: Optional[int] = None,
    create_bam: bool = True,
    keep_unmapped: bool = True,
    samtools_backend: str = "auto",
    star: str = "STAR",
) -> Path:
    """Run STARsolo for a configured sample, then index the BAM and compress outputs."""
    sample_dir = Path(sample_dir)
    cmd = build_alignment_command(
        run_config,
        reference,
        sample_dir,
        threads=threads,
        memory_bytes=memory_bytes,
        create_bam=create_bam,
        keep_unmapped=keep_unmapped,
        star=star,
    )
    logger.info("Running STARsolo...")
    try:
        run_star(cmd, log_prefix=f"STARsolo {run_config.sample}")
    finally:
        remove_paths([sample_dir / "_STARtmp"])

    if create_bam:
        index_bam(sample_dir, threads=threads, samtools_backend=samtools_backend)
    if keep_unmapped:
        compress_unmapped(sample_dir, threads=threads)
    compress_solo_outputs(sample_dir / SOLO_OUT_DIR, threads=threads)
    logger.info("STARsolo completed for %s", run_config.sample)
    return sample_dir


def align_sample(
    sample: str,
    read1: Union[str, Sequence[PathLike]],
    read2: Union[str, Sequence[PathLike]],
    reference: PathLike,
    whitelists: PathLike,
    outdir: PathLike,
    threads: int = 8,
    memory_bytes: Optional[int] = None,
    create_bam: bool = True,
    keep_unmapped: bool = True,
    provenance_csv: Optional[PathLike] = None,
    samtools_backend: str = "auto",
    star: str = "STAR",
) -> RunConfig:
    """
    Configure and align one sample.

    Command line accesses this through ``solokit align``.

    The RunConfig is appended to ``provenance_csv`` only once the alignment has
    succeeded; a failure in either pass goes to ``failed_samples.csv`` next to it.

    Returns
    -------
    RunConfig
        The parameters the sample was aligned with.
    """
    failures_csv = Path(provenance_csv).parent / FAILED_SAMPLES_CSV if provenance_csv is not None else None
    try:
        config_pass = configure_sample(
            sample,
            read1,
            read2,
            reference,
            whitelists,
            outdir,
            threads=threads,
            star=star,
        )
        run_config = config_pass.run_config
        config_pass.mark_dispatched()
        dispatch_alignment(
            run_config,
            reference,
            config_pass.sample_dir,
            threads=threads,
            memory_bytes=memory_bytes,
            create_bam=create_bam,
            keep_unmapped=keep_unmapped,
            samtools_backend=samtools_backend,
            star=star,
        )
    except Exception as e:
        logger.error("[%s] failed: %s", sample, e)
        if failures_csv is not None:
            record_failure(sample, e, failures_csv)
        raise
    # only aligned samples enter the provenance table
    if provenance_csv is not None:
        append_provenance(run_config, provenance_csv)
    return run_config
