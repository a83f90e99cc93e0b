import pandas as pd
from click.testing import CliRunner

import solokit.cli_entry as cli_entry
from solokit.cli_entry import cli
from solokit.errors import NoWhitelistMatchError
from solokit.informatics.run_config import RunConfig


def _run_config():
    return RunConfig(
        sample="S1",
        paired=True,
        strand="Reverse",
        percent_forward=20,
        percent_reverse=75,
        cb_whitelist="/wl/3M-february-2018_TRU.txt",
        cb_length=16,
        umi_length=12,
        gzip="zcat",
        read1_files=("a_R1.fq.gz",),
        read2_files=("a_R2.fq.gz",),
    )


def _sample_args(tmp_path):
    ref = tmp_path / "ref"
    wl = tmp_path / "wl"
    ref.mkdir()
    wl.mkdir()
    return ["S1", "-1", "a_R1.fq.gz", "-2", "a_R2.fq.gz", "-r", str(ref), "-w", str(wl), "-o", str(tmp_path / "out")]


def test_configure_reports_parameters(tmp_path, monkeypatch):
    seen = {}

    class FakePass:
        run_config = _run_config()

    def fake_configure(sample, read1, read2, reference, whitelists, outdir, threads=8, provenance_csv=None, star="STAR"):
        seen.update(sample=sample, provenance=provenance_csv, threads=threads)
        return FakePass()

    monkeypatch.setattr(cli_entry, "configure_sample", fake_configure)
    result = CliRunner().invoke(cli, ["configure", *_sample_args(tmp_path), "-t", "4"])

    assert result.exit_code == 0, result.output
    assert "S1: /wl/3M-february-2018_TRU.txt CB=16 UMI=12 paired=True strand=Reverse" in result.output
    assert seen == {"sample": "S1", "provenance": tmp_path / "out" / "run_configs.csv", "threads": 4}


def test_configure_turns_sample_errors_into_click_errors(tmp_path, monkeypatch):
    def failing_configure(*args, **kwargs):
        raise NoWhitelistMatchError("No whitelist has matched a random selection of barcodes!")

    monkeypatch.setattr(cli_entry, "configure_sample", failing_configure)
    result = CliRunner().invoke(cli, ["configure", *_sample_args(tmp_path)])

    assert result.exit_code == 1
    assert "No whitelist has matched" in result.output


def test_align_rejects_bad_memory(tmp_path):
    result = CliRunner().invoke(cli, ["align", *_sample_args(tmp_path), "--memory", "12X"])
    assert result.exit_code == 2
    assert "Invalid memory format" in result.output


def test_align_passes_memory_in_bytes(tmp_path, monkeypatch):
    seen = {}

    def fake_align(sample, read1, read2, reference, whitelists, outdir, **kwargs):
        seen.update(kwargs)
        return _run_config()

    monkeypatch.setattr(cli_entry, "align_sample", fake_align)
    result = CliRunner().invoke(cli, ["align", *_sample_args(tmp_path), "-m", "2G", "--no-bam"])

    assert result.exit_code == 0, result.output
    assert seen["memory_bytes"] == 2 * 1024**3
    assert seen["create_bam"] is False
    assert seen["keep_unmapped"] is True


def test_batch_exits_non_zero_when_a_sample_fails(tmp_path, monkeypatch):
    listing = tmp_path / "samples.txt"
    listing.write_text("S1\nS2\n")
    (tmp_path / "ref").mkdir()
    (tmp_path / "wl").mkdir()
    seen = {}

    def fake_batch(table, reference, whitelists, outdir, **kwargs):
        seen["table"] = table
        seen.update(kwargs)
        return pd.DataFrame(
            [
                {"sample": "S1", "status": "ok", "error": "", "message": ""},
                {"sample": "S2", "status": "failed", "error": "BarcodeTooShortError", "message": "too short"},
            ]
        )

    monkeypatch.setattr(cli_entry, "batch_samples", fake_batch)
    result = CliRunner().invoke(
        cli,
        ["batch", str(listing), "-r", str(tmp_path / "ref"), "-w", str(tmp_path / "wl"), "-j", "2", "--configure-only"],
    )

    assert result.exit_code == 1
    assert "S2: FAILED (BarcodeTooShortError: too short)" in result.output
    assert "1 of 2 samples failed" in result.output
    assert seen["table"]["read1"].tolist() == [str(tmp_path / "S1_R1.fastq.gz"), str(tmp_path / "S2_R1.fastq.gz")]
    assert seen["n_jobs"] == 2
    assert seen["configure_only"] is True


def test_reference_rejects_unknown_species(tmp_path):
    result = CliRunner().invoke(cli, ["reference", "--species", "rat", "-o", str(tmp_path)])
    assert result.exit_code == 2


def test_reference_reports_missing_genome(tmp_path):
    result = CliRunner().invoke(cli, ["reference", "-o", str(tmp_path / "ref")])
    assert result.exit_code == 1
    assert "Must specify genome and version" in result.output


def test_fetch_reports_failures(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_entry, "fetch_accessions", lambda ids, outdir, tmpdir, threads, rename=False: (["SRX1"], ["SRX2"]))
    listing = tmp_path / "acc.txt"
    listing.write_text("SRX1\nSRX2\n")

    result = CliRunner().invoke(cli, ["fetch", str(listing), "-o", str(tmp_path)])

    assert result.exit_code == 1
    assert "1 accessions fetched, 1 failed." in result.output
    assert "SRX2" in result.output


def test_run_executes_selected_steps(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("samples: samples.txt\n")
    seen = {}

    def fake_run_pipeline(path, steps, configure_only):
        seen.update(path=path, steps=steps, configure_only=configure_only)
        return None

    monkeypatch.setattr(cli_entry, "run_pipeline", fake_run_pipeline)
    result = CliRunner().invoke(cli, ["run", str(config), "--step", "reference"])

    assert result.exit_code == 0, result.output
    assert seen == {"path": str(config), "steps": ("reference",), "configure_only": False}
