"""Final alignment parameters of a sample and their provenance record."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from solokit.constants import FORWARD, PAIRED_R1_CLIP, REVERSE, SOLO_OUT_DIR, WHITELISTS
from solokit.logging_utils import get_logger
from solokit.readwrite import append_row_to_csv, read_csv_table

from .chemistry import ChemistryProfile, ChemistryResolution
from .star_functions import solo_common_args
from .strand import StrandDecision

logger = get_logger(__name__)

PathLike = Union[str, Path]

PROVENANCE_COLUMNS: Tuple[str, ...] = (
    "sample",
    "paired",
    "strand",
    "percent_forward",
    "percent_reverse",
    "cb_whitelist",
    "cb_length",
    "umi_length",
    "gzip",
    "read1_files",
    "read2_files",
)


def _join_files(files) -> str:
    return ",".join(str(f) for f in files)


def _split_files(value: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in str(value).split(",") if p.strip())


def _parse_flag(value: str) -> bool:
    if str(value) not in ("True", "False"):
        raise ValueError(f"Expected True or False, got {value!r}")
    return str(value) == "True"


@dataclass(frozen=True)
class RunConfig:
    """Everything needed to align one sample; one provenance row."""

    sample: str
    paired: bool
    strand: str
    percent_forward: int
    percent_reverse: int
    cb_whitelist: str
    cb_length: int
    umi_length: int
    gzip: str
    read1_files: Tuple[str, ...]
    read2_files: Tuple[str, ...]

    def __post_init__(self):
        if self.strand not in (FORWARD, REVERSE):
            raise ValueError(f"strand must be {FORWARD} or {REVERSE}, got {self.strand}")
        if len(self.read1_files) != len(self.read2_files):
            raise ValueError("read1_files and read2_files must have the same length")

    @property
    def profile(self) -> ChemistryProfile:
        name = next(
            (n for n, (fname, _) in WHITELISTS.items() if Path(self.cb_whitelist).name == fname),
            Path(self.cb_whitelist).name,
        )
        return ChemistryProfile(name, self.cb_length, self.umi_length, self.cb_whitelist)

    def to_row(self) -> Dict[str, str]:
        row = {k: str(v) for k, v in asdict(self).items()}
        row["read1_files"] = _join_files(self.read1_files)
        row["read2_files"] = _join_files(self.read2_files)
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, str]) -> "RunConfig":
        missing = [c for c in PROVENANCE_COLUMNS if c not in row]
        if missing:
            raise ValueError(f"Provenance row is missing columns: {missing}")
        return cls(
            sample=str(row["sample"]),
            paired=_parse_flag(row["paired"]),
            strand=str(row["strand"]),
            percent_forward=int(row["percent_forward"]),
            percent_reverse=int(row["percent_reverse"]),
            cb_whitelist=str(row["cb_whitelist"]),
            cb_length=int(row["cb_length"]),
            umi_length=int(row["umi_length"]),
            gzip=str(row["gzip"]),
            read1_files=_split_files(row["read1_files"]),
            read2_files=_split_files(row["read2_files"]),
        )


def build_run_config(
    sample: str,
    chemistry: ChemistryResolution,
    decision: StrandDecision,
    read1_files,
    read2_files,
    gzip: str = "",
) -> RunConfig:
    """Combine the chemistry and strand decisions into the sample's RunConfig."""
    return RunConfig(
        sample=sample,
        paired=decision.paired,
        strand=decision.strand,
        percent_forward=decision.percent_forward,
        percent_reverse=decision.percent_reverse,
        cb_whitelist=str(chemistry.profile.whitelist_path or chemistry.profile.whitelist),
        cb_length=chemistry.profile.cb_length,
        umi_length=chemistry.profile.umi_length,
        gzip=gzip,
        read1_files=tuple(str(f) for f in read1_files),
        read2_files=tuple(str(f) for f in read2_files),
    )


def append_provenance(run_config: RunConfig, csv_path: PathLike) -> Path:
    """Append one row for ``run_config`` to the cumulative provenance table."""
    append_row_to_csv(csv_path, run_config.to_row(), PROVENANCE_COLUMNS)
    logger.debug("Appended %s to %s", run_config.sample, csv_path)
    return Path(csv_path)


def read_provenance(csv_path: PathLike):
    return read_csv_table(csv_path)


def load_run_configs(csv_path: PathLike) -> List[RunConfig]:
    return [RunConfig.from_row(row) for row in read_provenance(csv_path).to_dict("records")]


def format_run_summary(run_config: RunConfig, counts: Optional[Mapping[str, int]] = None) -> str:
    rule = "-" * 77
    counts_str = ", ".join(f"{n} ({name})" for name, n in (counts or {}).items())
    lines = [
        f"Sample: {run_config.sample}",
        f"Paired-end mode: {run_config.paired}",
        f"Strand (Forward = 3', Reverse = 5'): {run_config.strand}, %reads mapped to GeneFull: "
        f"forward = {run_config.percent_forward} , reverse = {run_config.percent_reverse}",
        f"CB whitelist: {run_config.cb_whitelist}, matches: {counts_str}",
        f"CB length: {run_config.cb_length}",
        f"UMI length: {run_config.umi_length}",
        f"GZIP: {run_config.gzip}",
        rule,
        f"Read 1 files: {_join_files(run_config.read1_files)}",
        rule,
        f"Read 2 files: {_join_files(run_config.read2_files)}",
        rule,
    ]
    return "\n".join(lines) + "\n"


def write_run_summary(run_config: RunConfig, path: PathLike, counts: Optional[Mapping[str, int]] = None) -> Path:
    """Write the human-readable summary of the final processing options."""
    path = Path(path)
    text = format_run_summary(run_config, counts)
    path.write_text(text)
    for line in text.splitlines():
        logger.info(line)
    return path


def build_alignment_command(
    run_config: RunConfig,
    reference: PathLike,
    outdir: PathLike,
    threads: int = 8,
    memory_bytes: Optional[int] = None,
    create_bam: bool = True,
    keep_unmapped: bool = True,
    star: str = "STAR",
) -> List[str]:
    """
    STARsolo arguments for the real run of a sample.

    Paired mode feeds read 1 then read 2, takes the barcode from mate 1 and
    clips the first 39 bases of read 1; the strand is Forward. Single-end mode
    feeds the biological read first with a zero-length barcode read.
    """
    outdir = Path(outdir)
    read1 = _join_files(run_config.read1_files)
    read2 = _join_files(run_config.read2_files)
    cmd = [star, "--runThreadN", str(threads), "--genomeDir", str(reference)]

    if run_config.paired:
        cmd += ["--readFilesIn", read1, read2]
    else:
        cmd += ["--readFilesIn", read2, read1]
    cmd += ["--runDirPerm", "All_RWX"]
    if run_config.gzip:
        cmd += ["--readFilesCommand", run_config.gzip]

    if create_bam:
        cmd += ["--outSAMtype", "BAM", "SortedByCoordinate"]
        if memory_bytes:
            cmd += ["--limitBAMsortRAM", str(memory_bytes)]
        cmd += [
            "--outSAMunmapped", "Within",
            "--outMultimapperOrder", "Random",
            "--runRNGseed", "1",
            "--outSAMattributes", "NH", "HI", "AS", "nM", "CB", "UB", "CR", "CY", "UR", "UY", "GX", "GN",
        ]
    else:
        cmd += ["--outSAMtype", "None"]
    if keep_unmapped:
        cmd += ["--outReadsUnmapped", "Fastx"]

    if run_config.paired:
        cmd += [
            "--soloBarcodeMate", "1",
            "--clip5pNbases", str(PAIRED_R1_CLIP), "0",
            "--soloCBstart", "1",
        ]
        cmd += solo_common_args(run_config.profile, FORWARD)
    else:
        cmd += ["--soloBarcodeReadLength", "0"]
        cmd += solo_common_args(run_config.profile, run_config.strand)
        cmd += ["--clipAdapterType", "CellRanger4"]

    cmd += [
        "--soloFeatures", "Gene", "GeneFull", "Velocyto",
        "--outTmpDir", str(outdir / "_STARtmp"),
        "--outFileNamePrefix", f"{outdir}/",
        "--soloOutFileNames", f"{SOLO_OUT_DIR}/", "features.tsv", "barcodes.tsv", "matrix.mtx",
        "--soloMultiMappers", "EM",
    ]
    return cmd
