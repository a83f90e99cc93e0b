"""GENCODE reference download, single-cell GTF filtering and index building."""

from __future__ import annotations

import gzip
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

import requests
from tqdm import tqdm

from solokit.logging_utils import get_logger

from .star_functions import run_star

logger = get_logger(__name__)

PathLike = Union[str, Path]

GENCODE_BASE = "https://ftp.ebi.ac.uk/pub/databases/gencode"

SPECIES_SHORTCUTS: Dict[str, Tuple[str, str]] = {
    "human": ("GRCh38", "48"),
    "mouse": ("GRCm39", "M37"),
}

SC_BIOTYPES: Tuple[str, ...] = (
    "protein_coding",
    "protein_coding_LoF",
    "lncRNA",
    "IG_C_gene",
    "IG_D_gene",
    "IG_J_gene",
    "IG_LV_gene",
    "IG_V_gene",
    "IG_V_pseudogene",
    "IG_J_pseudogene",
    "IG_C_pseudogene",
    "TR_C_gene",
    "TR_D_gene",
    "TR_J_gene",
    "TR_V_gene",
    "TR_V_pseudogene",
    "TR_J_pseudogene",
)

# chrY records kept when masking the pseudo-autosomal regions of GRCh38 (GENCODE >= 44)
CHRY_PAR_KEEP = (2_752_083, 56_887_903)
CHRY_PAR_EXCLUDED_GENE = "ENSG00000290840"

_ATTR_RE = re.compile(r'(\S+) "([^"]*)"')


@dataclass(frozen=True)
class ReferenceSources:
    genome: str
    version: str
    fasta_url: str
    gtf_url: str
    fasta: Path
    gtf: Path


def resolve_genome(genome: Optional[str] = None, version: Optional[str] = None, species: Optional[str] = None) -> Tuple[str, str]:
    """Apply the ``human``/``mouse`` shortcut or check that genome and version are both given."""
    if species:
        if species not in SPECIES_SHORTCUTS:
            raise ValueError(f"Invalid species: {species} (choose 'human' or 'mouse')")
        return SPECIES_SHORTCUTS[species]
    if not genome or not version:
        raise ValueError("Must specify genome and version or use species")
    return genome, str(version)


def resolve_reference_sources(genome: str, version: str, source_dir: PathLike) -> ReferenceSources:
    source_dir = Path(source_dir)
    if genome.startswith("GRCh"):
        organism = "human"
    elif genome.startswith("GRCm"):
        organism = "mouse"
    else:
        raise ValueError(f"Unsupported genome: {genome}")
    base = f"{GENCODE_BASE}/Gencode_{organism}/release_{version}"
    fasta_name = f"{genome}.primary_assembly.genome.fa"
    gtf_name = f"gencode.v{version}.primary_assembly.annotation.gtf"
    return ReferenceSources(
        genome=genome,
        version=version,
        fasta_url=f"{base}/{fasta_name}.gz",
        gtf_url=f"{base}/{gtf_name}.gz",
        fasta=source_dir / fasta_name,
        gtf=source_dir / gtf_name,
    )


def download_and_decompress(url: str, dest: PathLike, chunk: int = 1 << 20, timeout: int = 600) -> Path:
    """
    Stream a gzip-compressed file from ``url`` and write it decompressed to ``dest``.

    Existing files are left alone. The download goes to ``<dest>.gz.part`` and
    is only decompressed after it completed.
    """
    dest = Path(dest)
    if dest.exists():
        logger.info("%s already present; skipping download", dest.name)
        return dest
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".gz.part")

    logger.info("Downloading %s", url)
    with requests.get(url, stream=True, timeout=timeout) as r:
        r.raise_for_status()
        total = int(r.headers.get("Content-Length", 0))
        with open(tmp, "wb") as f, tqdm(total=total, unit="B", unit_scale=True, desc=dest.name) as pbar:
            for chunk_bytes in r.iter_content(chunk_size=chunk):
                if not chunk_bytes:
                    continue
                f.write(chunk_bytes)
                pbar.update(len(chunk_bytes))

    partial = dest.with_name(dest.name + ".part")
    with gzip.open(tmp, "rb") as gzin, open(partial, "wb") as out:
        shutil.copyfileobj(gzin, out)
    os.replace(partial, dest)
    tmp.unlink()
    return dest


def _gtf_attributes(field: str) -> Dict[str, List[str]]:
    attrs: Dict[str, List[str]] = {}
    for key, value in _ATTR_RE.findall(field):
        attrs.setdefault(key, []).append(value)
    return attrs


def gene_allowlist(gtf: PathLike, biotypes: Tuple[str, ...] = SC_BIOTYPES) -> Set[str]:
    """
    Gene IDs of transcripts whose gene and transcript biotypes are both allowed
    and that are not tagged as readthrough transcripts.
    """
    allowed = set(biotypes)
    genes: Set[str] = set()
    with open(gtf) as fh:
        for line in fh:
            if line.startswith("#"):
                continue
            cols = line.rstrip("\n").split("\t")
            if len(cols) < 9 or cols[2] != "transcript":
                continue
            attrs = _gtf_attributes(cols[8])
            if not set(attrs.get("gene_type", [])) & allowed:
                continue
            if not set(attrs.get("transcript_type", [])) & allowed:
                continue
            if "readthrough_transcript" in attrs.get("tag", []):
                continue
            genes.update(attrs.get("gene_id", []))
    return genes


def masks_chry_par(genome: str, version: str) -> bool:
    if genome != "GRCh38":
        return False
    digits = re.sub(r"[^0-9]", "", str(version))
    return bool(digits) and int(digits) >= 44


def _keep_chry_record(cols: List[str], line: str) -> bool:
    if cols[0] != "chrY":
        return True
    start = int(cols[3])
    return CHRY_PAR_KEEP[0] <= start < CHRY_PAR_KEEP[1] and CHRY_PAR_EXCLUDED_GENE not in line


def filter_gtf(gtf_in: PathLike, gtf_out: PathLike, genome: str, version: str) -> Path:
    """
    Restrict a GENCODE GTF to genes useful for single-cell quantification.

    Header lines are kept. For GRCh38 from GENCODE 44 on, chrY records of the
    pseudo-autosomal regions are dropped as well.
    """
    allow = gene_allowlist(gtf_in)
    filter_chry = masks_chry_par(genome, version)
    if filter_chry:
        logger.info("chrY PAR filtering will be applied")

    gtf_out = Path(gtf_out)
    kept = 0
    with open(gtf_in) as fin, open(gtf_out, "w") as fout:
        for line in fin:
            if line.startswith("#"):
                fout.write(line)
                continue
            cols = line.split("\t")
            if len(cols) < 9:
                continue
            gene_ids = _gtf_attributes(cols[8]).get("gene_id", [])
            if not any(g in allow for g in gene_ids):
                continue
            if filter_chry and not _keep_chry_record(cols, line):
                continue
            fout.write(line)
            kept += 1
    logger.info("Filtered GTF written to %s (%d records, %d genes allowed)", gtf_out, kept, len(allow))
    return gtf_out


def build_star_index_command(fasta: PathLike, gtf: PathLike, build_dir: PathLike, threads: int = 12, star: str = "STAR") -> List[str]:
    build_dir = Path(build_dir)
    return [
        star,
        "--runThreadN", str(threads),
        "--runMode", "genomeGenerate",
        "--outTmpDir", str(build_dir / "_STARtmp"),
        "--genomeDir", str(build_dir),
        "--genomeFastaFiles", str(fasta),
        "--sjdbGTFfile", str(gtf),
    ]


def build_cellranger_command(cellranger: str, genome: str, version: str, fasta: PathLike, gtf: PathLike, threads: int = 12) -> List[str]:
    return [
        cellranger,
        "mkref",
        f"--genome={genome}",
        f"--ref-version={version}",
        f"--fasta={fasta}",
        f"--genes={gtf}",
        f"--nthreads={threads}",
    ]


def _faidx(fasta: Path) -> None:
    if shutil.which("samtools") is None:
        return
    logger.info("Indexing FASTA file with samtools...")
    cp = subprocess.run(["samtools", "faidx", str(fasta)], stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
    if cp.returncode != 0:
        raise RuntimeError(f"samtools faidx failed (exit {cp.returncode}):\n{cp.stderr}")


def build_reference(
    outdir: PathLike,
    genome: Optional[str] = None,
    version: Optional[str] = None,
    species: Optional[str] = None,
    tool: str = "STAR",
    threads: int = 12,
    gtf_filter: bool = False,
) -> Path:
    """
    Download a GENCODE genome and annotation and build the aligner reference.

    Sources are cached in ``<outdir>/../sources``; the index is built in ``outdir``.

    Returns
    -------
    Path
        The reference directory.
    """
    genome, version = resolve_genome(genome, version, species)
    build_dir = Path(outdir)
    source_dir = build_dir.parent / "sources"
    build_dir.mkdir(parents=True, exist_ok=True)
    source_dir.mkdir(parents=True, exist_ok=True)

    tool_name = Path(tool).name
    if tool_name not in ("STAR", "cellranger"):
        raise ValueError(f"Unsupported tool: {tool}")

    sources = resolve_reference_sources(genome, version, source_dir)
    download_and_decompress(sources.fasta_url, sources.fasta)
    download_and_decompress(sources.gtf_url, sources.gtf)
    _faidx(sources.fasta)

    gtf = sources.gtf
    if gtf_filter:
        logger.info("Filtering GTF for single-cell use...")
        gtf = filter_gtf(sources.gtf, source_dir / "filtered.gtf", genome, version)

    start = time.time()
    if tool_name == "STAR":
        logger.info("Building STAR index...")
        run_star(build_star_index_command(sources.fasta, gtf, build_dir, threads, star=tool), log_prefix="STAR genomeGenerate")
    else:
        logger.info("Building Cell Ranger reference...")
        cmd = build_cellranger_command(tool, genome, version, sources.fasta, gtf, threads)
        cp = subprocess.run(cmd, cwd=build_dir, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
        if cp.returncode != 0:
            raise RuntimeError(f"cellranger mkref failed (exit {cp.returncode}):\n{cp.stderr}")
    logger.info("%s reference built at %s in %.0f s", tool_name, build_dir, time.time() - start)
    return build_dir
