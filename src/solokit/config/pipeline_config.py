# pipeline_config.py
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import yaml

from ..logging_utils import get_logger

logger = get_logger(__name__)

_MEMORY_RE = re.compile(r"^([0-9]+)([GgMm])$")


# -------------------------
# Utility parsing functions
# -------------------------
def _parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    s = str(v).strip().lower()
    if s in ("1", "true", "t", "yes", "y", "on"):
        return True
    if s in ("0", "false", "f", "no", "n", "off", ""):
        return False
    try:
        return float(s) != 0.0
    except ValueError:
        return False


def _parse_numeric(v: Any, fallback: Any = None) -> Any:
    if v is None:
        return fallback
    if isinstance(v, (int, float)):
        return v
    s = str(v).strip()
    if s == "" or s.lower() == "none":
        return fallback
    try:
        return int(s)
    except ValueError:
        try:
            return float(s)
        except ValueError:
            return fallback


def _optional_str(v: Any) -> Optional[str]:
    return None if v is None else str(v)


def parse_memory(memory: str) -> int:
    """Convert a memory budget such as ``"64G"`` or ``"8000M"`` to bytes."""
    m = _MEMORY_RE.match(str(memory).strip())
    if not m:
        raise ValueError(f"Invalid memory format: {memory} (should be like 32G or 8000M)")
    amount, unit = int(m.group(1)), m.group(2).upper()
    if unit == "G":
        return amount * 1024 * 1024 * 1024
    return amount * 1024 * 1024


def deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two dicts: returns new dict = a merged with b, where b overrides.
    If both values are dicts -> merge recursively; else b replaces a.
    """
    out = dict(a or {})
    for k, v in (b or {}).items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_sample_table(samples: Union[str, Path], fastq_dir: Union[str, Path]) -> pd.DataFrame:
    """
    Load the sample list as a table with ``sample``, ``read1`` and ``read2`` columns.

    A ``.csv``/``.tsv`` table must provide a ``sample`` column and may provide
    ``read1``/``read2`` (comma-separated file lists). Any other file is read as
    one sample ID per line, with reads expected at
    ``<fastq_dir>/<sample>_R1.fastq.gz`` and ``<fastq_dir>/<sample>_R2.fastq.gz``.
    """
    samples = Path(samples)
    fastq_dir = Path(fastq_dir)
    suffix = samples.suffix.lower()

    if suffix in {".csv", ".tsv", ".tab"}:
        sep = "\t" if suffix in {".tsv", ".tab"} else ","
        df = pd.read_csv(samples, sep=sep, dtype=str, keep_default_na=False)
        if "sample" not in df.columns:
            raise ValueError(f"Sample table {samples} has no 'sample' column.")
    else:
        ids = []
        with samples.open() as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    ids.append(line)
        df = pd.DataFrame({"sample": ids})

    if df.empty:
        raise ValueError(f"No samples found in {samples}")

    for col, role in (("read1", "R1"), ("read2", "R2")):
        if col not in df.columns:
            df[col] = ""
        missing = df[col].str.strip() == ""
        df.loc[missing, col] = [
            str(fastq_dir / f"{s}_{role}.fastq.gz") for s in df.loc[missing, "sample"]
        ]
    return df[["sample", "read1", "read2"]]


@dataclass
class PipelineConfig:
    # General I/O
    samples: Optional[str] = None
    outdir: str = "."
    fastq_dir: Optional[str] = None
    config_source: Optional[str] = None

    # Download
    download_threads: int = 8
    download_tmpdir: Optional[str] = None
    rename_by_role: bool = True

    # Reference
    genome: Optional[str] = None
    version: Optional[str] = None
    species: Optional[str] = None
    reference_tool: str = "STAR"
    reference_threads: int = 12
    reference_filter: bool = False
    reference_dir: Optional[str] = None

    # Alignment
    whitelists: Optional[str] = None
    alignment_threads: int = 8
    memory: str = "32G"
    create_bam: bool = True
    keep_unmapped: bool = True
    n_jobs: int = 1
    samtools_backend: str = "auto"

    extra: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------ #
    @classmethod
    def from_dict(cls, raw: Dict[str, Any], config_source: Optional[str] = None) -> "PipelineConfig":
        """
        Build a config from the nested mapping used in YAML files::

            samples: samples.txt
            outdir: results
            download: {threads: 8, tmpdir: /scratch}
            reference: {genome: GRCh38, version: "48", tool: STAR, threads: 12}
            alignment: {threads: 16, memory: 64G, create_bam: true, keep_unmapped: true}
        """
        raw = dict(raw or {})
        download = dict(raw.pop("download", None) or {})
        reference = dict(raw.pop("reference", None) or {})
        alignment = dict(raw.pop("alignment", None) or {})

        outdir = str(raw.pop("outdir", "."))
        samples = raw.pop("samples", None)
        fastq_dir = raw.pop("fastq_dir", None)
        reference_dir = reference.pop("dir", None) or str(Path(outdir) / "reference")

        cfg = cls(
            samples=str(samples) if samples is not None else None,
            outdir=outdir,
            fastq_dir=str(fastq_dir) if fastq_dir else str(Path(outdir) / "fastq"),
            config_source=config_source,
            download_threads=int(_parse_numeric(download.pop("threads", None), 8)),
            download_tmpdir=download.pop("tmpdir", None),
            rename_by_role=_parse_bool(download.pop("rename", True)),
            genome=reference.pop("genome", None),
            version=_optional_str(reference.pop("version", None)),
            species=reference.pop("species", None),
            reference_tool=str(reference.pop("tool", "STAR")),
            reference_threads=int(_parse_numeric(reference.pop("threads", None), 12)),
            reference_filter=_parse_bool(reference.pop("filter", False)),
            reference_dir=reference_dir,
            whitelists=alignment.pop("whitelists", None),
            alignment_threads=int(_parse_numeric(alignment.pop("threads", None), 8)),
            memory=str(alignment.pop("memory", "32G")),
            create_bam=_parse_bool(alignment.pop("create_bam", True)),
            keep_unmapped=_parse_bool(alignment.pop("keep_unmapped", True)),
            n_jobs=int(_parse_numeric(alignment.pop("n_jobs", None), 1)),
            samtools_backend=str(alignment.pop("samtools_backend", "auto")),
        )
        # unknown keys
        leftovers = deep_merge(raw, {"download": download, "reference": reference, "alignment": alignment})
        cfg.extra = {k: v for k, v in leftovers.items() if v not in ({}, None)}
        if cfg.extra:
            logger.warning("Unrecognized config keys: %s", sorted(cfg.extra))
        return cfg

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PipelineConfig":
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must contain a mapping at top level.")
        cfg = cls.from_dict(raw, config_source=str(path))
        cfg.validate()
        return cfg

    # ------------------------------------------------------------------ #
    @property
    def memory_bytes(self) -> int:
        return parse_memory(self.memory)

    @property
    def alignment_dir(self) -> Path:
        return Path(self.outdir) / "alignments"

    def sample_table(self) -> pd.DataFrame:
        if not self.samples:
            raise ValueError("No 'samples' file configured.")
        return load_sample_table(self.samples, self.fastq_dir or Path(self.outdir) / "fastq")

    def validate(self, raise_on_error: bool = True) -> List[str]:
        errors: List[str] = []
        if not self.samples:
            errors.append("samples is required.")
        if not self.outdir:
            errors.append("outdir is required.")
        for name in ("download_threads", "reference_threads", "alignment_threads"):
            if int(getattr(self, name)) < 1:
                errors.append(f"{name} must be >= 1.")
        try:
            parse_memory(self.memory)
        except ValueError as e:
            errors.append(str(e))
        if self.samtools_backend not in {"auto", "python", "cli"}:
            errors.append("samtools_backend must be one of: auto, python, cli")

        if raise_on_error and errors:
            raise ValueError("PipelineConfig validation failed:\n  " + "\n  ".join(errors))
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_yaml(self, path: Optional[Union[str, Path]] = None) -> str:
        """
        Dump config to YAML (string if path None) or save to file at path.
        """
        data = self.to_dict()
        if path is None:
            return yaml.safe_dump(data, sort_keys=False)
        p = Path(path)
        p.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf8")
        return str(p)

    def __repr__(self) -> str:
        return f"<PipelineConfig samples={self.samples} outdir={self.outdir} source={self.config_source}>"
