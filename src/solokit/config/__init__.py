from .pipeline_config import PipelineConfig, deep_merge, load_sample_table, parse_memory

__all__ = ["PipelineConfig", "deep_merge", "load_sample_table", "parse_memory"]
