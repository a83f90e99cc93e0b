from .align_sample import align_sample, dispatch_alignment
from .batch import batch_samples, run_pipeline
from .configure_sample import ConfigurationPass, PassState, configure_sample

__all__ = [
    "ConfigurationPass",
    "PassState",
    "align_sample",
    "batch_samples",
    "configure_sample",
    "dispatch_alignment",
    "run_pipeline",
]
