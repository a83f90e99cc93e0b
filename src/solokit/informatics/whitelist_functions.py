from __future__ import annotations

import gzip
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

from solokit.constants import WHITELISTS
from solokit.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WhitelistSpec:
    """A known barcode whitelist and the read-1 prefix length it is matched on."""

    name: str
    filename: str
    prefix_length: int

    def path(self, whitelists_dir: Union[str, Path]) -> Path:
        return Path(whitelists_dir) / self.filename


@dataclass(frozen=True)
class WhitelistCandidate:
    spec: WhitelistSpec
    matches: int


def known_whitelists() -> List[WhitelistSpec]:
    return [WhitelistSpec(name, filename, prefix) for name, (filename, prefix) in WHITELISTS.items()]


def iter_whitelist(path: Union[str, Path]) -> Iterator[str]:
    """Stream the barcodes of a whitelist file (one per line, optionally gzip-compressed)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Whitelist not found: {path}")
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "rt") as fh:
        for line in fh:
            barcode = line.strip()
            if barcode:
                yield barcode


def prefix_counts(barcode_reads: Iterable[str], prefix_length: int) -> Counter:
    return Counter(seq[:prefix_length] for seq in barcode_reads)


def score_whitelist(prefixes: Counter, whitelist_path: Union[str, Path]) -> int:
    """
    Number of reads whose prefix is a barcode of the whitelist at ``whitelist_path``.

    The whitelist is streamed against the read prefixes, so memory stays bounded
    by the subsample. A barcode listed twice is counted once.
    """
    remaining = dict(prefixes)
    matches = 0
    for barcode in iter_whitelist(whitelist_path):
        matches += remaining.pop(barcode, 0)
        if not remaining:
            break
    return matches


def score_whitelists(
    barcode_reads: Sequence[str],
    whitelists_dir: Union[str, Path],
    specs: Optional[Sequence[WhitelistSpec]] = None,
) -> List[WhitelistCandidate]:
    specs = list(specs) if specs is not None else known_whitelists()
    by_length: Dict[int, Counter] = {}
    candidates = []
    for spec in specs:
        if spec.prefix_length not in by_length:
            by_length[spec.prefix_length] = prefix_counts(barcode_reads, spec.prefix_length)
        matches = score_whitelist(by_length[spec.prefix_length], spec.path(whitelists_dir))
        logger.debug("Whitelist %s (%s): %d matches", spec.name, spec.filename, matches)
        candidates.append(WhitelistCandidate(spec, matches))
    return candidates


def count_whitelist_matches(
    barcode_reads: Iterable[str],
    whitelists_dir: Union[str, Path],
    specs: Optional[Sequence[WhitelistSpec]] = None,
) -> Dict[str, int]:
    """
    Count, per known whitelist, the sampled barcode reads found in it.

    Parameters
    ----------
    barcode_reads : iterable of str
        Read-1 sequences of the subsample.
    whitelists_dir : path
        Directory holding the whitelist files.
    specs : sequence of WhitelistSpec, optional
        Whitelists to score; defaults to every known chemistry.

    Returns
    -------
    dict
        Whitelist name -> match count.
    """
    reads = list(barcode_reads)
    candidates = score_whitelists(reads, whitelists_dir, specs)
    counts = {c.spec.name: c.matches for c in candidates}
    logger.info(
        "Whitelist matches out of %d: %s",
        len(reads),
        ", ".join(f"{name}={n}" for name, n in counts.items()),
    )
    return counts
