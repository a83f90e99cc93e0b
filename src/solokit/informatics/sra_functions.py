"""Wrappers around the SRA toolkit for fetching raw runs of a sample."""

from __future__ import annotations

import re
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from solokit.logging_utils import get_logger

from .fastq_functions import iter_sequences

logger = get_logger(__name__)

PathLike = Union[str, Path]

_ACCESSION_RE = re.compile(r"^(SRP|SRS|SRX|SRR)\d+$")
_SUFFIX_RE = re.compile(r"_([0-9]+)\.fastq\.gz$")


def accession_kind(accession: str) -> str:
    m = _ACCESSION_RE.match(accession.strip())
    if not m:
        raise ValueError(f"Unrecognized accession: {accession}")
    return m.group(1)


def _run_tool(cmd: Sequence[str], capture: bool = False) -> str:
    cmd = [str(c) for c in cmd]
    if shutil.which(cmd[0]) is None:
        raise RuntimeError(f"{cmd[0]} is required but not available in PATH.")
    logger.debug("Running: %s", " ".join(cmd))
    cp = subprocess.run(
        cmd,
        stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    if cp.returncode != 0:
        raise RuntimeError(f"{cmd[0]} failed (exit {cp.returncode}):\n{cp.stderr}")
    return cp.stdout or ""


def _pysradb_column(cmd: Sequence[str], column: int) -> List[str]:
    """Values of a whitespace-separated column of a pysradb table, header skipped, order kept."""
    out = _run_tool(cmd, capture=True)
    values: List[str] = []
    for line in out.splitlines()[1:]:
        cols = line.split()
        if len(cols) > column and cols[column] not in values:
            values.append(cols[column])
    return values


def resolve_to_srx(accession: str, pysradb: str = "pysradb") -> List[str]:
    kind = accession_kind(accession)
    if kind == "SRP":
        return sorted(_pysradb_column([pysradb, "metadata", accession, "--assay"], 2))
    if kind == "SRS":
        return _pysradb_column([pysradb, "srs-to-srx", accession], 1)
    return [accession]


def resolve_to_srr(accession: str, pysradb: str = "pysradb") -> List[str]:
    kind = accession_kind(accession)
    if kind == "SRX":
        return _pysradb_column([pysradb, "srx-to-srr", accession], 1)
    if kind == "SRR":
        return [accession]
    raise ValueError(f"Cannot resolve to SRR: {accession}")


def download_run(
    run: str,
    outdir: PathLike,
    tmpdir: Optional[PathLike] = None,
    threads: int = 8,
    prefetch: str = "prefetch",
    fasterq_dump: str = "fasterq-dump",
    pigz: str = "pigz",
) -> List[Path]:
    """
    Download one SRR with prefetch, dump it with fasterq-dump (technical reads
    included) and compress the FASTQs with pigz into ``outdir``.

    Runs whose ``<run>_*.fastq.gz`` already exist are skipped.
    """
    outdir = Path(outdir)
    existing = sorted(outdir.glob(f"{run}_*.fastq.gz"))
    if existing:
        logger.info("%s outputs exist - skipping", run)
        return existing

    tmp = Path(tmpdir) / run if tmpdir else outdir / run
    tmp.mkdir(parents=True, exist_ok=True)
    try:
        logger.info("[%s] Downloading with prefetch...", run)
        sra = tmp / f"{run}.sra"
        _run_tool([prefetch, "--max-size", "u", "--output-file", sra, run])
        if not sra.exists():
            raise RuntimeError(f"[{run}] SRA file not found")

        logger.info("[%s] Running fasterq-dump...", run)
        _run_tool([fasterq_dump, sra, "-O", tmp, "-t", tmp, "-e", threads, "-S", "--include-technical", "-f"])

        logger.info("[%s] Compressing...", run)
        fastqs = sorted(tmp.glob("*.fastq"))
        if fastqs:
            _run_tool([pigz, "-p", threads, *fastqs])

        moved = []
        for f in sorted(tmp.glob("*.fastq.gz")):
            target = outdir / f.name
            shutil.move(str(f), target)
            moved.append(target)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
    logger.info("[%s] DONE", run)
    return moved


def merge_runs(srx: str, runs: Sequence[str], outdir: PathLike) -> List[Path]:
    """
    Merge the FASTQs of all runs of an experiment into ``<srx>_<n>.fastq.gz``.

    Concatenated gzip members form a valid gzip stream, so files are joined as bytes.
    """
    outdir = Path(outdir)
    if not runs:
        return []
    if len(runs) == 1:
        merged = []
        for f in sorted(outdir.glob(f"{runs[0]}_*.fastq.gz")):
            target = f.with_name(f.name.replace(runs[0], srx, 1))
            f.rename(target)
            merged.append(target)
        return merged

    logger.info("[%s] Merging %d runs", srx, len(runs))
    suffixes = set()
    for f in outdir.glob(f"{runs[0]}_*.fastq.gz"):
        m = _SUFFIX_RE.search(f.name)
        if m:
            suffixes.add(m.group(1))
    merged = []
    for s in sorted(suffixes, key=int):
        target = outdir / f"{srx}_{s}.fastq.gz"
        with open(target, "wb") as out:
            for r in runs:
                with open(outdir / f"{r}_{s}.fastq.gz", "rb") as src:
                    shutil.copyfileobj(src, out)
        merged.append(target)
    for r in runs:
        for f in outdir.glob(f"{r}_*.fastq.gz"):
            f.unlink()
    logger.info("[%s] Merge complete", srx)
    return merged


def infer_read_roles(lengths: Dict[str, int]) -> Dict[str, str]:
    """
    Assign I1/I2/R1/R2 roles to the numbered FASTQs of one accession.

    Parameters
    ----------
    lengths : dict
        File suffix number (as string) -> first read length.

    Returns
    -------
    dict
        Suffix -> role; files that fit no role are ``Unknown``.
    """
    order = sorted(lengths, key=int)
    roles: Dict[str, str] = {}

    index_roles = iter(("I1", "I2"))
    for r in order:
        if 7 <= lengths[r] <= 10:
            role = next(index_roles, None)
            if role is not None:
                roles[r] = role

    rest = [r for r in order if r not in roles]
    if len(rest) == 2:
        a, b = rest
        if 25 <= lengths[b] <= 35 and not 25 <= lengths[a] <= 35:
            roles[b], roles[a] = "R1", "R2"
        else:
            roles[a], roles[b] = "R1", "R2"
    elif len(rest) == 1:
        roles[rest[0]] = "R1"

    return {r: roles.get(r, "Unknown") for r in order}


def summarize_fastqs(accession: str, outdir: PathLike) -> pd.DataFrame:
    """Write ``<accession>.fastq_summary.csv`` with file name, first read length and inferred role."""
    outdir = Path(outdir)
    files: Dict[str, Path] = {}
    lengths: Dict[str, int] = {}
    for f in sorted(outdir.glob(f"{accession}_*.fastq.gz")):
        m = _SUFFIX_RE.search(f.name)
        if not m or f.is_symlink():
            continue
        if f.stat().st_size == 0:
            logger.warning("[%s] Warning: file %s is empty", accession, f)
            continue
        first = next(iter_sequences(f), None)
        if first is None:
            logger.warning("[%s] Warning: file %s has no reads", accession, f)
            continue
        files[m.group(1)] = f
        lengths[m.group(1)] = len(first)

    roles = infer_read_roles(lengths)
    df = pd.DataFrame(
        [{"filename": files[s].name, "read_length": lengths[s], "role": roles[s]} for s in roles],
        columns=["filename", "read_length", "role"],
    )
    df.to_csv(outdir / f"{accession}.fastq_summary.csv", index=False)
    logger.info("[%s] Summary + role annotation complete", accession)
    return df


def rename_by_role(accession: str, outdir: PathLike) -> List[Path]:
    """Symlink ``<accession>_<role>.fastq.gz`` to each file with a known role."""
    outdir = Path(outdir)
    summary = outdir / f"{accession}.fastq_summary.csv"
    if not summary.exists():
        logger.info("[%s] No summary to rename from", accession)
        return []
    links = []
    for row in pd.read_csv(summary, dtype=str).to_dict("records"):
        if row["role"] == "Unknown":
            continue
        link = outdir / f"{accession}_{row['role']}.fastq.gz"
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(row["filename"])
        links.append(link)
    logger.info("[%s] Rename complete", accession)
    return links


def process_accession(accession: str, outdir: PathLike, tmpdir: Optional[PathLike] = None, threads: int = 8) -> List[str]:
    """Download, merge and summarize an accession; returns the accessions whose files were produced."""
    if accession_kind(accession) == "SRR":
        download_run(accession, outdir, tmpdir, threads)
        summarize_fastqs(accession, outdir)
        return [accession]
    srxs = resolve_to_srx(accession)
    for srx in srxs:
        runs = resolve_to_srr(srx)
        for srr in runs:
            download_run(srr, outdir, tmpdir, threads)
        merge_runs(srx, runs, outdir)
        summarize_fastqs(srx, outdir)
    return srxs


def _read_log(path: Path) -> List[str]:
    return [line.strip() for line in path.read_text().splitlines() if line.strip()] if path.exists() else []


def read_accessions(value: Union[str, PathLike]) -> List[str]:
    """A single accession, or a file with one accession per line (``#`` comments allowed)."""
    p = Path(value)
    if p.is_file():
        return [line.strip() for line in p.read_text().splitlines() if line.strip() and not line.startswith("#")]
    return [str(value)]


def fetch_accessions(
    accessions: Iterable[str],
    outdir: PathLike,
    tmpdir: Optional[PathLike] = None,
    threads: int = 8,
    rename: bool = False,
) -> Tuple[List[str], List[str]]:
    """
    Fetch every accession, recording it in ``success.log`` or ``fail.log``.

    Accessions already in ``success.log`` are not downloaded again. A failing
    accession is logged and the loop continues.
    """
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    success_log = outdir / "success.log"
    fail_log = outdir / "fail.log"
    done = set(_read_log(success_log))

    succeeded, failed = [], []
    for acc in accessions:
        if acc in done:
            logger.info("[%s] Already completed.", acc)
            produced = [acc]
        else:
            try:
                produced = process_accession(acc, outdir, tmpdir, threads)
            except (RuntimeError, ValueError, OSError) as e:
                logger.error("[%s] Failed: %s", acc, e)
                with open(fail_log, "a") as fh:
                    fh.write(f"{acc}\n")
                failed.append(acc)
                continue
            with open(success_log, "a") as fh:
                fh.write(f"{acc}\n")
        succeeded.append(acc)
        if rename:
            for name in produced:
                rename_by_role(name, outdir)
    logger.info("All accessions processed.")
    return succeeded, failed
