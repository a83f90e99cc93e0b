from __future__ import annotations
from typing import Any, Final, Mapping, Tuple
from types import MappingProxyType


## Helpers ##
def _deep_freeze(obj: Any) -> Any:
    """Recursively freeze common containers. Use for constant exports."""
    if isinstance(obj, dict):
        return MappingProxyType({k: _deep_freeze(v) for k, v in obj.items()})
    if isinstance(obj, (list, tuple)):
        return tuple(_deep_freeze(v) for v in obj)
    if isinstance(obj, set):
        return frozenset(_deep_freeze(v) for v in obj)
    return obj  # ints/strs/tuples (already immutable)


## Sampling ##
SAMPLE_SIZE: Final[int] = 200_000
SAMPLE_SEED: Final[int] = 100
# 4,000,000 FASTQ lines per input file
HEAD_READS_PER_FILE: Final[int] = 1_000_000

## Whitelist / chemistry ##
WHITELIST_MATCH_THRESHOLD: Final[int] = 50_000

# name -> (whitelist file, prefix length matched against read 1)
_private_whitelists = {
    "v1": ("737K-april-2014_rc.txt", 14),
    "v2": ("737K-august-2016.txt", 16),
    "v3": ("3M-february-2018_TRU.txt", 16),
    "v4-3p": ("3M-3pgex-may-2023_TRU.txt", 16),
    "v4-5p": ("3M-5pgex-jan-2023.txt", 16),
    "multiome": ("737K-arc-v1.txt", 16),
}
WHITELISTS: Final[Mapping[str, Tuple[str, int]]] = _deep_freeze(_private_whitelists)

# Selection order; first whitelist above the threshold wins.
CHEMISTRY_PRECEDENCE: Final[Tuple[str, ...]] = ("v3", "v2", "multiome", "v1", "v4-3p", "v4-5p")

# name -> (barcode length, UMI length)
_private_chemistry_lengths = {
    "v1": (14, 10),
    "v2": (16, 10),
    "v3": (16, 12),
    "v4-3p": (16, 12),
    "v4-5p": (16, 12),
    "multiome": (16, 12),
}
CHEMISTRY_LENGTHS: Final[Mapping[str, Tuple[int, int]]] = _deep_freeze(_private_chemistry_lengths)

## Read length gates ##
MIN_BARCODE_READ_LENGTH: Final[int] = 24
MIN_BIOLOGICAL_READ_LENGTH: Final[int] = 40
MAX_TRIMMED_BARCODE_READ_LENGTH: Final[int] = 30
PAIRED_BARCODE_READ_LENGTH: Final[int] = 50

## Strand ##
FORWARD: Final[str] = "Forward"
REVERSE: Final[str] = "Reverse"
LOW_STRAND_CONFIDENCE_PERCENT: Final[int] = 50
GENEFULL_UNIQUE_ROW: Final[str] = "Reads Mapped to GeneFull: Unique GeneFull"

## Alignment layout ##
PAIRED_R1_CLIP: Final[int] = 39
GZIP_READ_COMMAND: Final[str] = "zcat"
SCRATCH_DIR: Final[str] = "_solokit_scratch"
SAMPLE_R1: Final[str] = "test.R1.fastq"
SAMPLE_R2: Final[str] = "test.R2.fastq"
PROBE_DIRS: Final[Mapping[str, str]] = _deep_freeze({FORWARD: "test_forward", REVERSE: "test_reverse"})
SOLO_OUT_DIR: Final[str] = "outs"
SOLO_FEATURE_SUBDIRS: Final[Tuple[str, ...]] = (
    "Gene/raw",
    "Gene/filtered",
    "GeneFull/raw",
    "GeneFull/filtered",
    "Velocyto/raw",
    "Velocyto/filtered",
)
SORTED_BAM: Final[str] = "Aligned.sortedByCoord.out.bam"
UNMAPPED_MATES: Final[Tuple[str, ...]] = ("Unmapped.out.mate1", "Unmapped.out.mate2")

## Provenance ##
RUN_CONFIG_CSV: Final[str] = "run_config.csv"
RUN_SUMMARY_TXT: Final[str] = "strand.txt"
PROVENANCE_CSV: Final[str] = "run_configs.csv"
FAILED_SAMPLES_CSV: Final[str] = "failed_samples.csv"
