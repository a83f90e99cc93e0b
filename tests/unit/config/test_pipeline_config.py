from pathlib import Path

import pytest
import yaml

from solokit.config import PipelineConfig, deep_merge, load_sample_table, parse_memory
from solokit.config.pipeline_config import _parse_bool


def test_parse_memory():
    assert parse_memory("64G") == 64 * 1024**3
    assert parse_memory("8000m") == 8000 * 1024**2
    with pytest.raises(ValueError, match="Invalid memory format"):
        parse_memory("64GB")


@pytest.mark.parametrize("value, expected", [("yes", True), ("0", False), (None, False), (True, True), ("off", False)])
def test_parse_bool(value, expected):
    assert _parse_bool(value) is expected


def test_deep_merge_overrides_nested_values():
    merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1}


def test_from_dict_reads_nested_sections(tmp_path):
    cfg = PipelineConfig.from_dict(
        {
            "samples": "samples.txt",
            "outdir": str(tmp_path),
            "download": {"threads": "4", "tmpdir": "/scratch"},
            "reference": {"species": "human", "tool": "STAR", "filter": "false", "version": 48},
            "alignment": {"threads": 16, "memory": "64G", "create_bam": "no", "whitelists": "/wl"},
        }
    )

    assert cfg.download_threads == 4
    assert cfg.download_tmpdir == "/scratch"
    assert cfg.species == "human"
    assert cfg.version == "48"
    assert cfg.reference_filter is False
    assert cfg.reference_dir == str(tmp_path / "reference")
    assert cfg.alignment_threads == 16
    assert cfg.memory_bytes == 64 * 1024**3
    assert cfg.create_bam is False
    assert cfg.keep_unmapped is True
    assert cfg.whitelists == "/wl"
    assert cfg.alignment_dir == tmp_path / "alignments"
    assert cfg.extra == {}


def test_from_dict_keeps_unknown_keys():
    cfg = PipelineConfig.from_dict({"samples": "s.txt", "alignment": {"soloFeatures": "Gene"}, "color": "red"})
    assert cfg.extra == {"alignment": {"soloFeatures": "Gene"}, "color": "red"}


def test_gtf_filter_is_off_by_default():
    cfg = PipelineConfig.from_dict({"samples": "s.txt", "reference": {"species": "mouse"}})
    assert cfg.reference_filter is False


def test_from_yaml_validates(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"outdir": "out", "alignment": {"memory": "lots"}}))
    with pytest.raises(ValueError) as excinfo:
        PipelineConfig.from_yaml(path)
    assert "samples is required" in str(excinfo.value)
    assert "Invalid memory format" in str(excinfo.value)


def test_to_yaml_round_trip(tmp_path):
    cfg = PipelineConfig.from_dict({"samples": "s.txt", "outdir": "out"})
    out = cfg.to_yaml(tmp_path / "dump.yaml")
    data = yaml.safe_load(Path(out).read_text())
    assert data["samples"] == "s.txt"
    assert data["memory"] == "32G"


def test_load_sample_table_from_id_list(tmp_path):
    listing = tmp_path / "samples.txt"
    listing.write_text("SRX1\n# skip\nSRX2\n")

    df = load_sample_table(listing, tmp_path / "fastq")

    assert df["sample"].tolist() == ["SRX1", "SRX2"]
    assert df.loc[0, "read1"] == str(tmp_path / "fastq" / "SRX1_R1.fastq.gz")
    assert df.loc[1, "read2"] == str(tmp_path / "fastq" / "SRX2_R2.fastq.gz")


def test_load_sample_table_from_csv(tmp_path):
    table = tmp_path / "samples.csv"
    table.write_text('sample,read1,read2\nS1,"a_R1.fq.gz,b_R1.fq.gz","a_R2.fq.gz,b_R2.fq.gz"\nS2,,\n')

    df = load_sample_table(table, "/fq")

    assert df.loc[0, "read1"] == "a_R1.fq.gz,b_R1.fq.gz"
    assert df.loc[1, "read1"] == str(Path("/fq") / "S2_R1.fastq.gz")


def test_load_sample_table_requires_sample_column(tmp_path):
    table = tmp_path / "samples.tsv"
    table.write_text("id\tread1\nS1\tx\n")
    with pytest.raises(ValueError, match="no 'sample' column"):
        load_sample_table(table, tmp_path)
