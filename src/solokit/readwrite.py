## readwrite ##
from __future__ import annotations

import csv
import shutil
from pathlib import Path
from typing import Iterable, Mapping, Sequence, Union

import pandas as pd

from .logging_utils import get_logger

logger = get_logger(__name__)

######################################################################################################
## Datetime functionality
def date_string():
    """
    Each time this is called, it returns the current date string
    """
    from datetime import datetime
    current_date = datetime.now()
    date_string = current_date.strftime("%Y%m%d")
    date_string = date_string[2:]
    return date_string

def time_string():
    """
    Each time this is called, it returns the current time string
    """
    from datetime import datetime
    current_time = datetime.now()
    return current_time.strftime("%H:%M:%S")
######################################################################################################

######################################################################################################
## General file and directory handling
def make_dirs(directories: Union[str, Path, Iterable[Union[str, Path]]]) -> None:
    """
    Create one or multiple directories.

    Parameters
    ----------
    directories : str | Path | list/iterable of str | Path
        Paths of directories to create.

    Returns
    -------
    None
    """

    # allow user to pass a single string/Path
    if isinstance(directories, (str, Path)):
        directories = [directories]

    for d in directories:
        Path(d).mkdir(parents=True, exist_ok=True)


def remove_paths(paths: Iterable[Union[str, Path]]) -> None:
    """Remove files and directory trees, ignoring the ones that do not exist."""
    for p in paths:
        p = Path(p)
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p, ignore_errors=True)
        elif p.exists() or p.is_symlink():
            p.unlink()
        else:
            continue
        logger.debug("Removed %s", p)


def append_row_to_csv(
    csv_path: str | Path,
    row: Mapping[str, object],
    columns: Sequence[str],
) -> pd.DataFrame:
    """
    Append a single row to a CSV table, writing the header only when the file is new.

    All fields are quoted, so comma-separated file lists survive a round trip.
    Existing rows are never rewritten.

    Parameters
    ----------
    csv_path : str | Path
        Path to the CSV file.
    row : mapping
        Column name -> value. Missing columns are written as empty strings.
    columns : sequence of str
        Column order.

    Returns
    -------
    pd.DataFrame : the single-row frame that was appended.
    """
    csv_path = Path(csv_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    df = pd.DataFrame([{c: row.get(c, "") for c in columns}], columns=list(columns))
    is_new = not csv_path.exists() or csv_path.stat().st_size == 0
    df.to_csv(csv_path, mode="a", header=is_new, index=False, quoting=csv.QUOTE_ALL)
    return df


def read_csv_table(csv_path: str | Path) -> pd.DataFrame:
    """Read a CSV table with every field kept as a string."""
    return pd.read_csv(csv_path, dtype=str, keep_default_na=False)
######################################################################################################
