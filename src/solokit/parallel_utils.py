"""Worker and thread budget helpers for sample-level parallelism."""

from __future__ import annotations

import os


def resolve_n_jobs(n_jobs: int) -> int:
    """Resolve n_jobs to a concrete positive worker count.

    Parameters
    ----------
    n_jobs:
        Number of workers. Negative values map to ``os.cpu_count()``.
        Zero is treated as 1.
    """
    if n_jobs < 0:
        return os.cpu_count() or 1
    return max(1, n_jobs)


def split_threads(threads: int, n_tasks: int) -> int:
    """Share a thread budget between ``n_tasks`` concurrent tool invocations.

    Every task gets at least one thread, so the total may exceed ``threads``
    when there are more tasks than threads.
    """
    return max(1, int(threads) // max(1, int(n_tasks)))
