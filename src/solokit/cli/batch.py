from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import pandas as pd
from tqdm import tqdm

from ..config import PipelineConfig
from ..constants import FAILED_SAMPLES_CSV, PROVENANCE_CSV
from ..errors import error_kind
from ..informatics.reference import build_reference
from ..informatics.run_config import append_provenance
from ..informatics.sra_functions import fetch_accessions
from ..logging_utils import get_logger, setup_logging
from ..parallel_utils import resolve_n_jobs
from ..readwrite import append_row_to_csv, date_string, make_dirs, time_string
from .align_sample import align_sample
from .configure_sample import FAILURE_COLUMNS, configure_sample

logger = get_logger(__name__)

PathLike = Union[str, Path]

PIPELINE_STEPS = ("fetch", "reference", "align")


def _process_sample(job: Dict[str, Any]) -> Dict[str, Any]:
    """Worker: configure (and optionally align) one sample; never raises."""
    setup_logging(level=job.pop("log_level", logging.INFO))
    configure_only = job.pop("configure_only", False)
    sample = job["sample"]
    try:
        if configure_only:
            run_config = configure_sample(
                sample,
                job["read1"],
                job["read2"],
                job["reference"],
                job["whitelists"],
                job["outdir"],
                threads=job["threads"],
                star=job["star"],
            ).run_config
        else:
            run_config = align_sample(**job)
    except Exception as e:
        return {"sample": sample, "run_config": None, "error": error_kind(e), "message": str(e)}
    return {"sample": sample, "run_config": run_config, "error": None, "message": ""}


def batch_samples(
    samples: pd.DataFrame,
    reference: PathLike,
    whitelists: PathLike,
    outdir: PathLike,
    threads: int = 8,
    n_jobs: int = 1,
    memory_bytes: Optional[int] = None,
    create_bam: bool = True,
    keep_unmapped: bool = True,
    configure_only: bool = False,
    samtools_backend: str = "auto",
    star: str = "STAR",
) -> pd.DataFrame:
    """
    Process many samples, one worker process per sample.

    Each sample works in ``<outdir>/<sample>``. Successful samples are appended
    to ``<outdir>/run_configs.csv`` and failed ones to
    ``<outdir>/failed_samples.csv``; a failure never stops the other samples.

    Parameters
    ----------
    samples : pd.DataFrame
        Table with ``sample``, ``read1`` and ``read2`` columns.

    Returns
    -------
    pd.DataFrame
        One row per sample with ``sample``, ``status``, ``error`` and ``message``.
    """
    outdir = Path(outdir)
    make_dirs([outdir])
    provenance_csv = outdir / PROVENANCE_CSV
    failures_csv = outdir / FAILED_SAMPLES_CSV
    log_level = logging.getLogger("solokit").getEffectiveLevel()

    jobs = []
    for row in samples.to_dict("records"):
        job = {
            "sample": row["sample"],
            "read1": row["read1"],
            "read2": row["read2"],
            "reference": str(reference),
            "whitelists": str(whitelists),
            "outdir": str(outdir),
            "threads": threads,
            "star": star,
            "configure_only": configure_only,
            "log_level": log_level,
        }
        if not configure_only:
            job.update(
                memory_bytes=memory_bytes,
                create_bam=create_bam,
                keep_unmapped=keep_unmapped,
                samtools_backend=samtools_backend,
            )
        jobs.append(job)

    n_workers = min(resolve_n_jobs(n_jobs), max(1, len(jobs)))
    results = []
    with ProcessPoolExecutor(max_workers=n_workers) as pool:
        futures = {pool.submit(_process_sample, dict(job)): job for job in jobs}
        for fut in tqdm(as_completed(futures), total=len(futures), desc="Samples"):
            try:
                res = fut.result()
            except Exception as e:
                # worker process died before returning
                sample = futures[fut]["sample"]
                logger.error("[%s] worker failed: %s", sample, e)
                res = {"sample": sample, "run_config": None, "error": error_kind(e), "message": str(e)}
            if res["run_config"] is not None:
                append_provenance(res["run_config"], provenance_csv)
                status = "ok"
            else:
                append_row_to_csv(
                    failures_csv,
                    {
                        "sample": res["sample"],
                        "error": res["error"],
                        "message": res["message"],
                        "date": date_string(),
                        "time": time_string(),
                    },
                    FAILURE_COLUMNS,
                )
                status = "failed"
            results.append({"sample": res["sample"], "status": status, "error": res["error"] or "", "message": res["message"]})

    summary = pd.DataFrame(results, columns=["sample", "status", "error", "message"])
    n_failed = int((summary["status"] == "failed").sum())
    if n_failed:
        logger.warning("%d of %d samples failed; see %s", n_failed, len(summary), failures_csv)
    logger.info("Processed %d samples", len(summary))
    return summary


def run_pipeline(config_path: PathLike, steps: Sequence[str] = PIPELINE_STEPS, configure_only: bool = False) -> Optional[pd.DataFrame]:
    """
    Run the steps of a YAML pipeline config.

    Command line accesses this through ``solokit run <config_path>``.
    """
    cfg = PipelineConfig.from_yaml(config_path)
    unknown = [s for s in steps if s not in PIPELINE_STEPS]
    if unknown:
        raise ValueError(f"Unknown pipeline steps: {unknown}; choose from {PIPELINE_STEPS}")
    make_dirs([cfg.outdir])
    setup_logging(log_file=Path(cfg.outdir) / "logs" / f"solokit_{date_string()}.log")

    if "fetch" in steps:
        ids = cfg.sample_table()["sample"].tolist()
        fetch_accessions(ids, cfg.fastq_dir, cfg.download_tmpdir, cfg.download_threads, rename=cfg.rename_by_role)

    if "reference" in steps:
        build_reference(
            cfg.reference_dir,
            genome=cfg.genome,
            version=cfg.version,
            species=cfg.species,
            tool=cfg.reference_tool,
            threads=cfg.reference_threads,
            gtf_filter=cfg.reference_filter,
        )

    if "align" not in steps:
        return None
    if not cfg.whitelists:
        raise ValueError("alignment.whitelists is required for the align step.")
    return batch_samples(
        cfg.sample_table(),
        cfg.reference_dir,
        cfg.whitelists,
        cfg.alignment_dir,
        threads=cfg.alignment_threads,
        n_jobs=cfg.n_jobs,
        memory_bytes=cfg.memory_bytes,
        create_bam=cfg.create_bam,
        keep_unmapped=cfg.keep_unmapped,
        configure_only=configure_only,
        samtools_backend=cfg.samtools_backend,
    )
