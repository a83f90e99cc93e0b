"""Error taxonomy for the per-sample configuration pass.

Every error here is fatal for one sample only. The batch runner records the
``kind`` of the error in the failure log and moves on to the next sample.
"""

from __future__ import annotations

from typing import Mapping, Optional


class SolokitError(RuntimeError):
    """Base class for sample-level configuration failures."""

    kind = "SolokitError"


class InsufficientDataError(SolokitError):
    """No usable read pairs in the sample input."""

    kind = "InsufficientDataError"


class ReadQualityError(SolokitError):
    """Input-quality gate failure, carrying the offending measurement."""

    kind = "ReadQualityError"

    def __init__(self, message: str, measurement: Optional[float] = None):
        super().__init__(message)
        self.measurement = measurement


class InconsistentLengthError(ReadQualityError):
    kind = "InconsistentLengthError"


class BarcodeTooShortError(ReadQualityError):
    kind = "BarcodeTooShortError"


class BiologicalReadTooShortError(ReadQualityError):
    kind = "BiologicalReadTooShortError"


class NoWhitelistMatchError(SolokitError):
    """No known whitelist matched enough sampled barcodes."""

    kind = "NoWhitelistMatchError"

    def __init__(self, message: str, counts: Optional[Mapping[str, int]] = None):
        super().__init__(message)
        self.counts = dict(counts or {})


def error_kind(exc: BaseException) -> str:
    """Name recorded in the failure log for ``exc``."""
    return getattr(exc, "kind", type(exc).__name__)
