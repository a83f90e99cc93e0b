"""Chemistry resolution from whitelist match counts and read lengths."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Tuple, Union

from solokit.constants import (
    CHEMISTRY_LENGTHS,
    CHEMISTRY_PRECEDENCE,
    MAX_TRIMMED_BARCODE_READ_LENGTH,
    MIN_BARCODE_READ_LENGTH,
    MIN_BIOLOGICAL_READ_LENGTH,
    PAIRED_BARCODE_READ_LENGTH,
    WHITELIST_MATCH_THRESHOLD,
    WHITELISTS,
)
from solokit.errors import (
    BarcodeTooShortError,
    BiologicalReadTooShortError,
    InconsistentLengthError,
    NoWhitelistMatchError,
)
from solokit.logging_utils import get_logger

from .fastq_functions import ReadLengthStats

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChemistryProfile:
    whitelist: str
    cb_length: int
    umi_length: int
    whitelist_path: Optional[str] = None

    @property
    def barcode_umi_length(self) -> int:
        return self.cb_length + self.umi_length


@dataclass(frozen=True)
class ChemistryResolution:
    profile: ChemistryProfile
    paired: bool
    counts: Mapping[str, int] = field(default_factory=dict)


Predicate = Callable[[Mapping[str, int]], bool]


def _above_threshold(name: str, threshold: int) -> Predicate:
    def predicate(counts: Mapping[str, int]) -> bool:
        return counts.get(name, 0) > threshold

    return predicate


def chemistry_priority(threshold: int = WHITELIST_MATCH_THRESHOLD) -> List[Tuple[Predicate, ChemistryProfile]]:
    """Ordered ``(predicate, profile)`` pairs; the first predicate that holds selects its profile."""
    return [
        (_above_threshold(name, threshold), ChemistryProfile(name, *CHEMISTRY_LENGTHS[name]))
        for name in CHEMISTRY_PRECEDENCE
    ]


CHEMISTRY_PRIORITY = chemistry_priority()


def _format_counts(counts: Mapping[str, int]) -> str:
    return ", ".join(f"{counts.get(name, 0)} ({name})" for name in WHITELISTS)


def validate_read_lengths(stats: ReadLengthStats) -> None:
    """Reject samples whose read lengths rule out a reliable configuration."""
    r1 = stats.r1_mean_length
    if r1 < MIN_BARCODE_READ_LENGTH:
        raise BarcodeTooShortError(
            f"Read 1 (barcode) is {r1} bp, less than {MIN_BARCODE_READ_LENGTH} bp. Please check the fastq files.",
            measurement=r1,
        )
    if stats.r1_distinct_lengths > 1 and r1 <= MAX_TRIMMED_BARCODE_READ_LENGTH:
        raise InconsistentLengthError(
            f"Read 1 (barcode) has varying length ({stats.r1_distinct_lengths} distinct lengths, "
            f"mean {r1}); it was possibly quality-trimmed. Please check the fastq files.",
            measurement=stats.r1_distinct_lengths,
        )
    if stats.r2_mean_length < MIN_BIOLOGICAL_READ_LENGTH:
        raise BiologicalReadTooShortError(
            f"Read 2 (biological read) is {stats.r2_mean_length} bp, less than "
            f"{MIN_BIOLOGICAL_READ_LENGTH} bp. Please check the fastq files.",
            measurement=stats.r2_mean_length,
        )


def select_whitelist(
    counts: Mapping[str, int],
    priority: Optional[List[Tuple[Predicate, ChemistryProfile]]] = None,
) -> ChemistryProfile:
    for predicate, profile in priority or CHEMISTRY_PRIORITY:
        if predicate(counts):
            return profile
    raise NoWhitelistMatchError(
        "No whitelist has matched a random selection of barcodes! "
        f"Match counts: {_format_counts(counts)}.",
        counts=counts,
    )


def is_paired(r1_mean_length: int) -> bool:
    """A read 1 longer than barcode + UMI carries cDNA (5' paired-end protocols)."""
    return r1_mean_length > PAIRED_BARCODE_READ_LENGTH


def correct_umi_length(cb_length: int, umi_length: int, r1_mean_length: int) -> int:
    """
    Fit the UMI into the observed read 1.

    Some v3 libraries are sequenced with a 26 bp read 1; the UMI is then cut to
    what the read actually holds.
    """
    bc_umi = cb_length + umi_length
    if bc_umi > r1_mean_length:
        new_umi = r1_mean_length - cb_length
        logger.warning(
            "Read 1 length (%d) is less than the sum of appropriate barcode and UMI (%d). "
            "Changing UMI setting from %d to %d!",
            r1_mean_length,
            bc_umi,
            umi_length,
            new_umi,
        )
        return new_umi
    if bc_umi < r1_mean_length:
        logger.warning(
            "Read 1 length (%d) is more than the sum of appropriate barcode and UMI (%d).",
            r1_mean_length,
            bc_umi,
        )
    return umi_length


def resolve_chemistry(
    counts: Mapping[str, int],
    stats: ReadLengthStats,
    whitelists_dir: Optional[Union[str, Path]] = None,
    threshold: int = WHITELIST_MATCH_THRESHOLD,
) -> ChemistryResolution:
    """
    Pick the whitelist, barcode/UMI lengths and paired-end flag for a sample.

    Parameters
    ----------
    counts : mapping
        Whitelist name -> matches in the subsample.
    stats : ReadLengthStats
        Read lengths of the subsample.
    whitelists_dir : path, optional
        Directory of the whitelist files, used to record the selected file path.
    threshold : int
        Matches a whitelist needs to be accepted.

    Returns
    -------
    ChemistryResolution
    """
    validate_read_lengths(stats)

    priority = CHEMISTRY_PRIORITY if threshold == WHITELIST_MATCH_THRESHOLD else chemistry_priority(threshold)
    profile = select_whitelist(counts, priority)
    paired = is_paired(stats.r1_mean_length)
    umi_length = correct_umi_length(profile.cb_length, profile.umi_length, stats.r1_mean_length)

    path = None
    if whitelists_dir is not None:
        path = str(Path(whitelists_dir) / WHITELISTS[profile.whitelist][0])
    profile = ChemistryProfile(profile.whitelist, profile.cb_length, umi_length, path)

    logger.info(
        "Selected whitelist %s (CB length %d, UMI length %d, paired=%s)",
        profile.whitelist,
        profile.cb_length,
        profile.umi_length,
        paired,
    )
    return ChemistryResolution(profile=profile, paired=paired, counts=dict(counts))
