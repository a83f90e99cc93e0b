"""Strand inference by probing the aligner with both strand assumptions."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

import pandas as pd

from solokit.constants import (
    FORWARD,
    GENEFULL_UNIQUE_ROW,
    LOW_STRAND_CONFIDENCE_PERCENT,
    PROBE_DIRS,
    REVERSE,
)
from solokit.logging_utils import get_logger
from solokit.parallel_utils import split_threads

from .chemistry import ChemistryProfile
from .star_functions import run_star, solo_common_args

logger = get_logger(__name__)

PathLike = Union[str, Path]

PROBE_SOLO_DIR = "Solo.out"


@dataclass(frozen=True)
class StrandDecision:
    strand: str
    percent_forward: int
    percent_reverse: int
    paired: bool


def build_probe_command(
    orientation: str,
    sample_r1: PathLike,
    sample_r2: PathLike,
    reference: PathLike,
    profile: ChemistryProfile,
    probe_dir: PathLike,
    threads: int = 1,
    star: str = "STAR",
) -> List[str]:
    """STARsolo quantification of the subsample assuming ``orientation``; no BAM is written."""
    if orientation not in (FORWARD, REVERSE):
        raise ValueError(f"orientation must be {FORWARD} or {REVERSE}, got {orientation}")
    probe_dir = Path(probe_dir)
    return [
        star,
        "--runThreadN", str(threads),
        "--genomeDir", str(reference),
        "--readFilesIn", str(sample_r2), str(sample_r1),
        "--runDirPerm", "All_RWX",
        "--outSAMtype", "None",
        "--soloBarcodeReadLength", "0",
        *solo_common_args(profile, orientation),
        "--clipAdapterType", "CellRanger4",
        "--soloFeatures", "Gene", "GeneFull",
        "--outTmpDir", str(probe_dir / "_STARtmp"),
        "--outFileNamePrefix", f"{probe_dir}/",
        "--soloOutFileNames", f"{PROBE_SOLO_DIR}/", "features.tsv", "barcodes.tsv", "matrix.mtx",
    ]


def probe_summary_path(probe_dir: PathLike) -> Path:
    return Path(probe_dir) / PROBE_SOLO_DIR / "GeneFull" / "Summary.csv"


def parse_genefull_summary(summary_csv: PathLike) -> int:
    """
    Percent of reads uniquely assigned to full gene bodies, rounded half up.

    STARsolo writes ``Summary.csv`` as two headerless columns, metric and fraction.
    """
    summary_csv = Path(summary_csv)
    if not summary_csv.exists():
        raise RuntimeError(f"STARsolo summary not found: {summary_csv}")
    df = pd.read_csv(summary_csv, header=None, names=["metric", "value"], dtype={"metric": str})
    rows = df.loc[df["metric"].str.strip() == GENEFULL_UNIQUE_ROW, "value"]
    if rows.empty:
        raise RuntimeError(f"'{GENEFULL_UNIQUE_ROW}' missing from {summary_csv}")
    return int(float(rows.iloc[0]) * 100 + 0.5)


def run_strand_probe(
    orientation: str,
    sample_r1: PathLike,
    sample_r2: PathLike,
    reference: PathLike,
    profile: ChemistryProfile,
    scratch_dir: PathLike,
    threads: int = 1,
    star: str = "STAR",
) -> int:
    """Run one throwaway quantification and return its GeneFull percentage."""
    probe_dir = Path(scratch_dir) / PROBE_DIRS[orientation]
    probe_dir.mkdir(parents=True, exist_ok=True)
    cmd = build_probe_command(orientation, sample_r1, sample_r2, reference, profile, probe_dir, threads, star)
    run_star(cmd, log_prefix=f"STAR probe {orientation}", level="debug")
    pct = parse_genefull_summary(probe_summary_path(probe_dir))
    logger.debug("Strand probe %s: %d%% of reads on GeneFull", orientation, pct)
    return pct


def probe_strand(
    sample_r1: PathLike,
    sample_r2: PathLike,
    reference: PathLike,
    profile: ChemistryProfile,
    scratch_dir: PathLike,
    threads: int = 2,
    star: str = "STAR",
) -> Tuple[int, int]:
    """
    Run the forward and reverse probes concurrently and return ``(percent_forward, percent_reverse)``.

    Each probe works in its own directory and gets half of the thread budget.
    A failing probe fails the whole call.
    """
    logger.info("Inferring strand-specificity...")
    per_probe = split_threads(threads, 2)
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [
            pool.submit(
                run_strand_probe, orientation, sample_r1, sample_r2, reference, profile, scratch_dir, per_probe, star
            )
            for orientation in (FORWARD, REVERSE)
        ]
        pct_fwd, pct_rev = (f.result() for f in futures)
    return pct_fwd, pct_rev


def decide_strand(percent_forward: int, percent_reverse: int, paired: bool) -> StrandDecision:
    """
    Choose the orientation with more reads on GeneFull; ties keep Forward.

    A paired-end library that turns out Forward is a 3' library and is
    processed as single-end. The override only touches ``paired``.
    """
    strand = REVERSE if percent_reverse > percent_forward else FORWARD

    if percent_forward < LOW_STRAND_CONFIDENCE_PERCENT and percent_reverse < LOW_STRAND_CONFIDENCE_PERCENT:
        logger.warning(
            "Low percentage of reads mapping to GeneFull: forward = %d , reverse = %d",
            percent_forward,
            percent_reverse,
        )

    if strand == FORWARD and paired:
        logger.info("Paired-end library maps Forward (3'); processing it as single-end.")
        paired = False

    return StrandDecision(
        strand=strand,
        percent_forward=percent_forward,
        percent_reverse=percent_reverse,
        paired=paired,
    )
