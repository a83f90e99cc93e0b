from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

from ..constants import (
    FAILED_SAMPLES_CSV,
    HEAD_READS_PER_FILE,
    RUN_CONFIG_CSV,
    RUN_SUMMARY_TXT,
    SAMPLE_SEED,
    SAMPLE_SIZE,
    SCRATCH_DIR,
)
from ..errors import error_kind
from ..informatics.chemistry import ChemistryResolution, resolve_chemistry
from ..informatics.fastq_functions import (
    iter_sequences,
    read_files_command,
    read_length_stats,
    split_file_list,
    subsample_read_pairs,
)
from ..informatics.run_config import RunConfig, append_provenance, build_run_config, write_run_summary
from ..informatics.strand import StrandDecision, decide_strand, probe_strand
from ..informatics.whitelist_functions import count_whitelist_matches
from ..logging_utils import get_logger
from ..readwrite import append_row_to_csv, date_string, make_dirs, remove_paths, time_string

logger = get_logger(__name__)

PathLike = Union[str, Path]

FAILURE_COLUMNS = ("sample", "error", "message", "date", "time")


class PassState(str, Enum):
    INIT = "Init"
    SAMPLED = "Sampled"
    WHITELIST_SCORED = "WhitelistScored"
    CHEMISTRY_RESOLVED = "ChemistryResolved"
    STRAND_PROBED = "StrandProbed"
    CONFIGURED = "Configured"
    DISPATCHED = "Dispatched"
    FAILED = "Failed"


_NEXT_STATE = {
    PassState.INIT: PassState.SAMPLED,
    PassState.SAMPLED: PassState.WHITELIST_SCORED,
    PassState.WHITELIST_SCORED: PassState.CHEMISTRY_RESOLVED,
    PassState.CHEMISTRY_RESOLVED: PassState.STRAND_PROBED,
    PassState.STRAND_PROBED: PassState.CONFIGURED,
    PassState.CONFIGURED: PassState.DISPATCHED,
}


class ConfigurationPass:
    """
    Infers the alignment parameters of one sample.

    Scratch files live in ``<outdir>/<sample>/_solokit_scratch`` and are removed
    when :meth:`run` returns or raises.
    """

    def __init__(
        self,
        sample: str,
        read1: Union[str, Sequence[PathLike]],
        read2: Union[str, Sequence[PathLike]],
        reference: PathLike,
        whitelists: PathLike,
        outdir: PathLike,
        threads: int = 8,
        star: str = "STAR",
        n_reads: int = SAMPLE_SIZE,
        seed: int = SAMPLE_SEED,
        head_reads: int = HEAD_READS_PER_FILE,
    ):
        self.sample = sample
        self.read1 = split_file_list(read1)
        self.read2 = split_file_list(read2)
        self.reference = Path(reference)
        self.whitelists = Path(whitelists)
        self.sample_dir = Path(outdir) / sample
        self.scratch_dir = self.sample_dir / SCRATCH_DIR
        self.threads = threads
        self.star = star
        self.n_reads = n_reads
        self.seed = seed
        self.head_reads = head_reads

        self.state = PassState.INIT
        self.error: Optional[BaseException] = None
        self.counts: Dict[str, int] = {}
        self.chemistry: Optional[ChemistryResolution] = None
        self.decision: Optional[StrandDecision] = None
        self.run_config: Optional[RunConfig] = None

    def advance(self, state: PassState) -> None:
        expected = _NEXT_STATE.get(self.state)
        if state is not expected:
            raise RuntimeError(f"[{self.sample}] invalid transition {self.state.value} -> {state.value}")
        logger.debug("[%s] %s -> %s", self.sample, self.state.value, state.value)
        self.state = state

    def fail(self, exc: BaseException) -> None:
        self.state = PassState.FAILED
        self.error = exc
        logger.error("[%s] configuration failed (%s): %s", self.sample, error_kind(exc), exc)

    def mark_dispatched(self) -> None:
        self.advance(PassState.DISPATCHED)

    def run(self) -> RunConfig:
        make_dirs([self.sample_dir])
        try:
            return self._run()
        except Exception as e:
            self.fail(e)
            raise
        finally:
            remove_paths([self.scratch_dir])

    def _run(self) -> RunConfig:
        ################################### 1) Sample read pairs ###################################
        sample_r1, sample_r2, _ = subsample_read_pairs(
            self.read1,
            self.read2,
            self.scratch_dir,
            n_reads=self.n_reads,
            seed=self.seed,
            head_reads=self.head_reads,
            threads=self.threads,
        )
        stats = read_length_stats(sample_r1, sample_r2)
        self.advance(PassState.SAMPLED)

        ################################### 2) Score whitelists ###################################
        logger.info("Evaluating whitelists...")
        self.counts = count_whitelist_matches(iter_sequences(sample_r1), self.whitelists)
        self.advance(PassState.WHITELIST_SCORED)

        ################################### 3) Resolve chemistry ###################################
        self.chemistry = resolve_chemistry(self.counts, stats, self.whitelists)
        self.advance(PassState.CHEMISTRY_RESOLVED)

        ################################### 4) Probe strand ###################################
        pct_fwd, pct_rev = probe_strand(
            sample_r1,
            sample_r2,
            self.reference,
            self.chemistry.profile,
            self.scratch_dir,
            threads=self.threads,
            star=self.star,
        )
        self.decision = decide_strand(pct_fwd, pct_rev, self.chemistry.paired)
        self.advance(PassState.STRAND_PROBED)

        ################################### 5) Configure run ###################################
        self.run_config = build_run_config(
            self.sample,
            self.chemistry,
            self.decision,
            self.read1,
            self.read2,
            gzip=read_files_command(self.read1 + self.read2),
        )
        logger.info("Done setting up the STARsolo run; here are final processing options:")
        write_run_summary(self.run_config, self.sample_dir / RUN_SUMMARY_TXT, self.counts)
        append_provenance(self.run_config, self.sample_dir / RUN_CONFIG_CSV)
        self.advance(PassState.CONFIGURED)
        return self.run_config


def record_failure(sample: str, exc: BaseException, csv_path: PathLike) -> Path:
    """Append a failed sample to the failure log kept next to the provenance table."""
    append_row_to_csv(
        csv_path,
        {
            "sample": sample,
            "error": error_kind(exc),
            "message": str(exc),
            "date": date_string(),
            "time": time_string(),
        },
        FAILURE_COLUMNS,
    )
    return Path(csv_path)


def configure_sample(
    sample: str,
    read1: Union[str, Sequence[PathLike]],
    read2: Union[str, Sequence[PathLike]],
    reference: PathLike,
    whitelists: PathLike,
    outdir: PathLike,
    threads: int = 8,
    provenance_csv: Optional[PathLike] = None,
    star: str = "STAR",
) -> ConfigurationPass:
    """
    Run the configuration pass of one sample.

    On success the RunConfig is appended to ``provenance_csv`` (when given).
    On failure the sample is appended to ``failed_samples.csv`` in the same
    folder and the error is re-raised.

    Returns
    -------
    ConfigurationPass
        The finished pass, in state ``Configured``.
    """
    config_pass = ConfigurationPass(sample, read1, read2, reference, whitelists, outdir, threads=threads, star=star)
    try:
        run_config = config_pass.run()
    except Exception as e:
        if provenance_csv is not None:
            record_failure(sample, e, Path(provenance_csv).parent / FAILED_SAMPLES_CSV)
        raise
    if provenance_csv is not None:
        append_provenance(run_config, provenance_csv)
    return config_pass
