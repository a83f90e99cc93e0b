from __future__ import annotations

import logging
from pathlib import Path

import pytest


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Mark all tests under tests/unit as unit tests."""
    for item in items:
        path = Path(str(item.fspath)).as_posix()
        if "/tests/unit/" in f"/{path}":
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _reset_solokit_logger():
    """Undo setup_logging() calls made by CLI and batch tests so caplog keeps working."""
    yield
    logger = logging.getLogger("solokit")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def write_fastq():
    """Write ``(title, sequence)`` records as FASTQ, gzip-compressed when the name ends in ``.gz``."""
    import gzip

    def _write(path, records):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = "".join(f"@{title}\n{seq}\n+\n{'I' * len(seq)}\n" for title, seq in records)
        if path.suffix == ".gz":
            with gzip.open(path, "wt") as fh:
                fh.write(text)
        else:
            path.write_text(text)
        return path

    return _write
