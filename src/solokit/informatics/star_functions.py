from __future__ import annotations

import gzip
import importlib.util
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence, Union

from solokit.constants import SOLO_FEATURE_SUBDIRS, SORTED_BAM, UNMAPPED_MATES
from solokit.logging_utils import get_logger
from solokit.optional_imports import require

if TYPE_CHECKING:
    from .chemistry import ChemistryProfile

logger = get_logger(__name__)

PathLike = Union[str, Path]


def solo_common_args(profile: "ChemistryProfile", strand: str) -> List[str]:
    """STARsolo barcode/UMI arguments shared by the strand probes and the final run."""
    if not profile.whitelist_path:
        raise ValueError(f"No whitelist file recorded for chemistry {profile.whitelist}")
    return [
        "--soloType", "CB_UMI_Simple",
        "--soloCBwhitelist", str(profile.whitelist_path),
        "--soloCBlen", str(profile.cb_length),
        "--soloUMIstart", str(profile.cb_length + 1),
        "--soloUMIlen", str(profile.umi_length),
        "--soloStrand", strand,
        "--soloUMIdedup", "1MM_CR",
        "--soloCBmatchWLtype", "1MM_multi_Nbase_pseudocounts",
        "--soloUMIfiltering", "MultiGeneUMI_CR",
        "--soloCellFilter", "EmptyDrops_CR",
        "--outFilterScoreMin", "30",
    ]


def run_star(cmd: Sequence[str], log_prefix: str = "STAR", level: str = "info") -> None:
    """
    Run a STAR command, streaming its stderr into the log.

    Raises
    ------
    RuntimeError
        If the executable is missing or exits non-zero.
    """
    cmd = [str(c) for c in cmd]
    if shutil.which(cmd[0]) is None:
        raise RuntimeError(f"{cmd[0]} is required but not available in PATH.")
    log = getattr(logger, level)
    logger.debug("Running %s: %s", log_prefix, " ".join(cmd))

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    assert proc.stderr is not None
    for line in proc.stderr:
        if line.strip():
            log("[%s] %s", log_prefix, line.rstrip())

    ret = proc.wait()
    if ret != 0:
        raise RuntimeError(f"{log_prefix} failed with exit code {ret}")


def _pysam_available() -> bool:
    return importlib.util.find_spec("pysam") is not None


def _resolve_samtools_backend(backend: str | None) -> str:
    """Pick ``"python"`` (pysam) or ``"cli"`` (samtools) for BAM indexing; ``auto`` prefers samtools."""
    choice = (backend or "auto").strip().lower()
    if choice not in {"auto", "python", "cli"}:
        raise ValueError("samtools_backend must be one of: auto, python, cli")

    if choice == "python":
        if not _pysam_available():
            raise RuntimeError("samtools_backend=python requires pysam to be installed.")
        return "python"
    have_samtools = shutil.which("samtools") is not None
    if choice == "cli":
        if not have_samtools:
            raise RuntimeError("samtools_backend=cli requires samtools in PATH.")
        return "cli"

    if have_samtools:
        return "cli"
    if _pysam_available():
        return "python"
    raise RuntimeError("Neither pysam nor samtools is available in PATH.")


def _index_bam_with_pysam(bam_path: PathLike, threads: Optional[int] = None) -> None:
    pysam = require("pysam", extra="pysam", purpose="indexing the STARsolo BAM")
    logger.debug("Indexing BAM using pysam")
    if threads:
        pysam.index("-@", str(threads), str(bam_path))
    else:
        pysam.index(str(bam_path))


def _index_bam_with_samtools(bam_path: PathLike, threads: Optional[int] = None) -> None:
    """Index a BAM file using samtools."""
    if not shutil.which("samtools"):
        raise RuntimeError("samtools is required but not available in PATH.")
    cmd = ["samtools", "index"]
    if threads:
        cmd += ["-@", str(threads)]
    cmd.append(str(bam_path))
    logger.debug("Indexing BAM using samtools: %s", " ".join(cmd))
    cp = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
    if cp.returncode != 0:
        raise RuntimeError(f"samtools index failed (exit {cp.returncode}):\n{cp.stderr}")


def index_bam(sample_dir: PathLike, threads: Optional[int] = None, samtools_backend: str | None = "auto") -> Optional[Path]:
    """Index the sorted BAM of a finished run; skipped when no (or an empty) BAM was written."""
    bam = Path(sample_dir) / SORTED_BAM
    if not bam.exists() or bam.stat().st_size == 0:
        logger.debug("No sorted BAM in %s; skipping indexing", sample_dir)
        return None
    logger.info("Indexing BAM file...")
    if _resolve_samtools_backend(samtools_backend) == "python":
        _index_bam_with_pysam(bam, threads)
    else:
        _index_bam_with_samtools(bam, threads)
    return bam


def _gzip_file(path: Path, level: int = 6) -> Path:
    """Compress ``path`` to ``path.gz`` in Python and remove the original."""
    out = path.with_name(path.name + ".gz")
    with open(path, "rb") as src, gzip.open(out, "wb", compresslevel=level) as dst:
        shutil.copyfileobj(src, dst)
    path.unlink()
    return out


def _pigz_file(path: Path, threads: int, level: int = 9) -> Path:
    cmd = ["pigz", f"-{level}", "-p", str(threads), str(path)]
    logger.debug("Compressing with pigz: %s", " ".join(cmd))
    cp = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
    if cp.returncode != 0:
        raise RuntimeError(f"pigz failed (exit {cp.returncode}):\n{cp.stderr}")
    return path.with_name(path.name + ".gz")


def compress_unmapped(sample_dir: PathLike, threads: int = 1) -> List[Path]:
    """Compress ``Unmapped.out.mate1/2`` when STAR wrote them; pigz if available, else gzip."""
    mates = [Path(sample_dir) / m for m in UNMAPPED_MATES]
    mates = [m for m in mates if m.exists() and m.stat().st_size > 0]
    if not mates:
        return []
    logger.info("Compressing unmapped reads...")
    have_pigz = shutil.which("pigz") is not None
    per_file = max(1, threads // len(mates))
    with ThreadPoolExecutor(max_workers=len(mates)) as pool:
        if have_pigz:
            futures = [pool.submit(_pigz_file, m, per_file) for m in mates]
        else:
            futures = [pool.submit(_gzip_file, m, 9) for m in mates]
        return [f.result() for f in futures]


def compress_solo_outputs(outs_dir: PathLike, threads: int = 1) -> List[Path]:
    """Gzip every uncompressed matrix/feature/barcode file of the STARsolo output folders."""
    outs_dir = Path(outs_dir)
    if not outs_dir.is_dir():
        return []
    targets = []
    for subdir in SOLO_FEATURE_SUBDIRS:
        target_dir = outs_dir / subdir
        if target_dir.is_dir():
            targets.extend(p for p in sorted(target_dir.iterdir()) if p.is_file() and p.suffix != ".gz")
    if not targets:
        return []
    logger.info("Compressing STARsolo output...")
    with ThreadPoolExecutor(max_workers=max(1, threads)) as pool:
        compressed = list(pool.map(_gzip_file, targets))
    logger.info("Compression complete.")
    return compressed
