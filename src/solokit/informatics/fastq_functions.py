from __future__ import annotations

import gzip
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import chain, islice, zip_longest
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple, Union

import numpy as np
from Bio.SeqIO.QualityIO import FastqGeneralIterator
from tqdm import tqdm

from solokit.constants import GZIP_READ_COMMAND, HEAD_READS_PER_FILE, SAMPLE_R1, SAMPLE_R2, SAMPLE_SEED, SAMPLE_SIZE
from solokit.errors import InsufficientDataError
from solokit.logging_utils import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]
FastqRecord = Tuple[str, str, str]

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class ReadLengthStats:
    """Read length summary of a sampled read-1/read-2 pair of FASTQs."""

    n_reads: int
    r1_mean_length: int
    r2_mean_length: int
    r1_distinct_lengths: int


def split_file_list(value: Union[str, PathLike, Sequence[PathLike]]) -> List[Path]:
    """Turn a comma-separated string (or a sequence of paths) into a list of Paths."""
    if isinstance(value, (str, Path)):
        parts = [p.strip() for p in str(value).split(",")]
    else:
        parts = [str(p).strip() for p in value]
    return [Path(p) for p in parts if p]


def is_gzipped(path: PathLike) -> bool:
    with open(path, "rb") as fh:
        return fh.read(2) == _GZIP_MAGIC


def _open_fh(path: PathLike):
    return gzip.open(path, "rt") if is_gzipped(path) else open(path, "rt")


def read_files_command(files: Iterable[PathLike]) -> str:
    """STAR ``--readFilesCommand`` needed for ``files``: ``zcat`` when they are gzip-compressed."""
    files = list(files)
    flags = {is_gzipped(f) for f in files}
    if len(flags) > 1:
        logger.warning("Mixed gzip and plain FASTQ inputs; treating all as gzip: %s", files)
    return GZIP_READ_COMMAND if True in flags else ""


def iter_fastq(path: PathLike) -> Iterator[FastqRecord]:
    """Stream ``(title, sequence, quality)`` records from a plain or gzip FASTQ."""
    with _open_fh(path) as fh:
        yield from FastqGeneralIterator(fh)


def iter_sequences(path: PathLike) -> Iterator[str]:
    for _, seq, _ in iter_fastq(path):
        yield seq


def _format_record(record: FastqRecord) -> str:
    title, seq, qual = record
    return f"@{title}\n{seq}\n+\n{qual}\n"


def _write_head_chunk(src: Path, dest: Path, max_reads: int) -> int:
    n = 0
    with open(dest, "w") as out:
        for record in islice(iter_fastq(src), max_reads):
            out.write(_format_record(record))
            n += 1
    logger.debug("Extracted %d reads from %s into %s", n, src, dest)
    return n


def extract_head_chunks(
    files: Sequence[PathLike],
    scratch_dir: PathLike,
    tag: str,
    max_reads: int = HEAD_READS_PER_FILE,
    threads: int = 1,
) -> List[Path]:
    """
    Decompress the first ``max_reads`` records of every input file into scratch chunks.

    Chunks are numbered (``0.R1_head``, ``1.R1_head``, ...) because runs split
    by bamtofastq often reuse identical file names in different folders.
    Extraction runs concurrently and returns once every chunk is written.
    """
    scratch_dir = Path(scratch_dir)
    scratch_dir.mkdir(parents=True, exist_ok=True)
    files = [Path(f) for f in files]
    for f in files:
        if not f.exists():
            raise FileNotFoundError(f"FASTQ file not found: {f}")

    chunks = [scratch_dir / f"{i}.{tag}_head" for i in range(len(files))]
    with ThreadPoolExecutor(max_workers=max(1, min(threads, len(files)))) as pool:
        futures = [pool.submit(_write_head_chunk, f, c, max_reads) for f, c in zip(files, chunks)]
        counts = [fut.result() for fut in futures]
    logger.info("Extracted %d %s reads from %d file(s)", sum(counts), tag, len(files))
    return chunks


def _count_records(files: Sequence[PathLike]) -> int:
    return sum(1 for f in files for _ in iter_fastq(f))


def sample_read_pairs(
    r1_files: Sequence[PathLike],
    r2_files: Sequence[PathLike],
    out_r1: PathLike,
    out_r2: PathLike,
    n_reads: int = SAMPLE_SIZE,
    seed: int = SAMPLE_SEED,
    progress: bool = False,
) -> int:
    """
    Draw a uniform random subsample of read pairs from concatenated inputs.

    Parameters
    ----------
    r1_files, r2_files : sequence of paths
        Read-1 and read-2 FASTQs, positionally paired.
    out_r1, out_r2 : path
        Uncompressed FASTQ outputs.
    n_reads : int
        Number of pairs to draw. Inputs with fewer pairs are copied whole.
    seed : int
        Seed of the generator; the same seed gives the same subsample.

    Returns
    -------
    int
        Number of pairs written.
    """
    if len(r1_files) != len(r2_files):
        raise ValueError(
            f"Read 1 and read 2 file lists differ in length: {len(r1_files)} vs {len(r2_files)}"
        )

    total = _count_records(r1_files)
    total_r2 = _count_records(r2_files)
    if total != total_r2:
        raise ValueError(f"Read 1 has {total} records but read 2 has {total_r2}.")
    if total == 0:
        raise InsufficientDataError("No reads found in the sample input.")

    if total <= n_reads:
        keep = np.arange(total)
    else:
        rng = np.random.default_rng(seed)
        keep = np.sort(rng.choice(total, size=n_reads, replace=False))
    logger.debug("Sampling %d of %d read pairs (seed=%d)", len(keep), total, seed)

    pairs = zip_longest(
        chain.from_iterable(iter_fastq(f) for f in r1_files),
        chain.from_iterable(iter_fastq(f) for f in r2_files),
    )
    written = 0
    next_keep = iter(keep.tolist())
    target = next(next_keep, None)
    with open(out_r1, "w") as fh1, open(out_r2, "w") as fh2:
        for i, (rec1, rec2) in enumerate(tqdm(pairs, total=total, desc="Sampling read pairs", disable=not progress)):
            if target is None:
                break
            if i != target:
                continue
            fh1.write(_format_record(rec1))
            fh2.write(_format_record(rec2))
            written += 1
            target = next(next_keep, None)
    return written


def subsample_read_pairs(
    read1: Union[str, Sequence[PathLike]],
    read2: Union[str, Sequence[PathLike]],
    scratch_dir: PathLike,
    n_reads: int = SAMPLE_SIZE,
    seed: int = SAMPLE_SEED,
    head_reads: int = HEAD_READS_PER_FILE,
    threads: int = 1,
) -> Tuple[Path, Path, int]:
    """
    Build the ``test.R1.fastq``/``test.R2.fastq`` subsample of one sample.

    Head chunks of every read-1 and read-2 file are extracted concurrently,
    pooled, and sampled with a shared seed. The head chunks are removed before
    returning; the two sampled files stay in ``scratch_dir``.
    """
    r1_files = split_file_list(read1)
    r2_files = split_file_list(read2)
    if len(r1_files) != len(r2_files):
        raise ValueError(
            f"Read 1 and read 2 file lists differ in length: {len(r1_files)} vs {len(r2_files)}"
        )
    if not r1_files:
        raise InsufficientDataError("No read files given.")

    scratch_dir = Path(scratch_dir)
    logger.info("Extracting reads for testing...")
    with ThreadPoolExecutor(max_workers=2) as pool:
        per_tag = max(1, threads // 2)
        f1 = pool.submit(extract_head_chunks, r1_files, scratch_dir, "R1", head_reads, per_tag)
        f2 = pool.submit(extract_head_chunks, r2_files, scratch_dir, "R2", head_reads, per_tag)
        r1_chunks, r2_chunks = f1.result(), f2.result()

    out_r1 = scratch_dir / SAMPLE_R1
    out_r2 = scratch_dir / SAMPLE_R2
    try:
        n = sample_read_pairs(r1_chunks, r2_chunks, out_r1, out_r2, n_reads=n_reads, seed=seed)
    finally:
        for chunk in chain(r1_chunks, r2_chunks):
            chunk.unlink(missing_ok=True)
    logger.info("Sampled %d read pairs", n)
    return out_r1, out_r2, n


def read_length_stats(r1_fastq: PathLike, r2_fastq: PathLike) -> ReadLengthStats:
    """Mean read lengths (rounded half up) and the number of distinct read-1 lengths."""
    r1_total = 0
    n = 0
    lengths = set()
    for seq in iter_sequences(r1_fastq):
        r1_total += len(seq)
        lengths.add(len(seq))
        n += 1

    r2_total = 0
    n2 = 0
    for seq in iter_sequences(r2_fastq):
        r2_total += len(seq)
        n2 += 1

    if n == 0 or n2 == 0:
        raise InsufficientDataError(f"No reads found in {r1_fastq if n == 0 else r2_fastq}")

    return ReadLengthStats(
        n_reads=n,
        r1_mean_length=int(r1_total / n + 0.5),
        r2_mean_length=int(r2_total / n2 + 0.5),
        r1_distinct_lengths=len(lengths),
    )
