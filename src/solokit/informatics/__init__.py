from .chemistry import ChemistryProfile, ChemistryResolution, resolve_chemistry
from .fastq_functions import ReadLengthStats, read_length_stats, subsample_read_pairs
from .reference import build_reference
from .run_config import RunConfig, append_provenance, build_alignment_command, load_run_configs
from .sra_functions import fetch_accessions
from .strand import StrandDecision, decide_strand, probe_strand
from .whitelist_functions import count_whitelist_matches

__all__ = [
    "ChemistryProfile",
    "ChemistryResolution",
    "ReadLengthStats",
    "RunConfig",
    "StrandDecision",
    "append_provenance",
    "build_alignment_command",
    "build_reference",
    "count_whitelist_matches",
    "decide_strand",
    "fetch_accessions",
    "load_run_configs",
    "probe_strand",
    "read_length_stats",
    "resolve_chemistry",
    "subsample_read_pairs",
]
