"""Imports of the optional extras declared in pyproject.toml."""

from __future__ import annotations

from importlib import import_module
from typing import Any


def require(package: str, *, extra: str, purpose: str) -> Any:
    """Import ``package`` or raise pointing at ``pip install 'solokit[<extra>]'``."""
    try:
        return import_module(package)
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            f"Optional dependency '{package}' is required for {purpose}. "
            f"Install it with: pip install 'solokit[{extra}]'"
        ) from exc
