import importlib
import pandas as pd
import pytest

configure_module = importlib.import_module("solokit.cli.configure_sample")
from solokit.cli.configure_sample import ConfigurationPass, PassState, configure_sample
from solokit.errors import BarcodeTooShortError
from solokit.informatics.run_config import load_run_configs

V3_COUNTS = {"v1": 3, "v2": 900, "v3": 150_000, "v4-3p": 40, "v4-5p": 0, "multiome": 1200}


@pytest.fixture
def sample_reads(tmp_path, write_fastq):
    def _make(r1_len=28, r2_len=90, n=50):
        r1 = write_fastq(tmp_path / "fq" / "S1_R1.fastq.gz", [(f"r{i}", "ACGT" * (r1_len // 4) + "A" * (r1_len % 4)) for i in range(n)])
        r2 = write_fastq(tmp_path / "fq" / "S1_R2.fastq.gz", [(f"r{i}", "C" * r2_len) for i in range(n)])
        return r1, r2

    return _make


@pytest.fixture
def fake_tools(monkeypatch):
    probes = []

    def fake_count(reads, whitelists_dir, specs=None):
        list(reads)
        return dict(V3_COUNTS)

    def fake_probe(sample_r1, sample_r2, reference, profile, scratch_dir, threads=2, star="STAR"):
        assert sample_r1.exists() and sample_r2.exists()
        probes.append(profile)
        return 30, 70

    monkeypatch.setattr(configure_module, "count_whitelist_matches", fake_count)
    monkeypatch.setattr(configure_module, "probe_strand", fake_probe)
    return probes


def test_configure_sample_writes_run_config(tmp_path, sample_reads, fake_tools):
    r1, r2 = sample_reads()
    provenance = tmp_path / "out" / "run_configs.csv"

    config_pass = configure_sample("S1", str(r1), str(r2), tmp_path / "ref", tmp_path / "wl", tmp_path / "out", threads=2, provenance_csv=provenance)

    rc = config_pass.run_config
    assert config_pass.state is PassState.CONFIGURED
    assert (rc.cb_length, rc.umi_length) == (16, 12)
    assert rc.cb_whitelist == str(tmp_path / "wl" / "3M-february-2018_TRU.txt")
    assert rc.strand == "Reverse"
    assert rc.paired is False
    assert rc.gzip == "zcat"
    assert rc.read1_files == (str(r1),)
    assert fake_tools[0].whitelist == "v3"

    sample_dir = tmp_path / "out" / "S1"
    assert not (sample_dir / "_solokit_scratch").exists()
    assert "Strand (Forward = 3', Reverse = 5'): Reverse" in (sample_dir / "strand.txt").read_text()
    assert load_run_configs(sample_dir / "run_config.csv") == [rc]
    assert load_run_configs(provenance) == [rc]


def test_failed_pass_cleans_scratch_and_records_failure(tmp_path, sample_reads, fake_tools):
    r1, r2 = sample_reads(r1_len=20)
    provenance = tmp_path / "out" / "run_configs.csv"

    with pytest.raises(BarcodeTooShortError):
        configure_sample("S1", str(r1), str(r2), tmp_path / "ref", tmp_path / "wl", tmp_path / "out", provenance_csv=provenance)

    assert not (tmp_path / "out" / "S1" / "_solokit_scratch").exists()
    assert not provenance.exists()
    failures = pd.read_csv(tmp_path / "out" / "failed_samples.csv", dtype=str)
    assert failures["sample"].tolist() == ["S1"]
    assert failures["error"].tolist() == ["BarcodeTooShortError"]
    assert not fake_tools


def test_pass_state_tracks_failure(tmp_path, sample_reads, fake_tools):
    r1, r2 = sample_reads(r1_len=20)
    config_pass = ConfigurationPass("S1", str(r1), str(r2), tmp_path / "ref", tmp_path / "wl", tmp_path / "out")

    with pytest.raises(BarcodeTooShortError):
        config_pass.run()

    assert config_pass.state is PassState.FAILED
    assert isinstance(config_pass.error, BarcodeTooShortError)
    assert config_pass.run_config is None


def test_pass_rejects_out_of_order_transitions(tmp_path):
    config_pass = ConfigurationPass("S1", "r1.fq", "r2.fq", tmp_path, tmp_path, tmp_path)
    with pytest.raises(RuntimeError, match="invalid transition Init -> Dispatched"):
        config_pass.mark_dispatched()


def test_missing_input_fails_the_pass(tmp_path, fake_tools):
    config_pass = ConfigurationPass("S1", str(tmp_path / "nope_R1.fq.gz"), str(tmp_path / "nope_R2.fq.gz"), tmp_path, tmp_path, tmp_path / "out")
    with pytest.raises(FileNotFoundError):
        config_pass.run()
    assert config_pass.state is PassState.FAILED
    assert not (tmp_path / "out" / "S1" / "_solokit_scratch").exists()
