import logging

import pytest

from solokit.errors import (
    BarcodeTooShortError,
    BiologicalReadTooShortError,
    InconsistentLengthError,
    NoWhitelistMatchError,
)
from solokit.informatics.chemistry import is_paired, resolve_chemistry, select_whitelist
from solokit.informatics.fastq_functions import ReadLengthStats


def _stats(r1=28, r2=90, distinct=1):
    return ReadLengthStats(n_reads=200_000, r1_mean_length=r1, r2_mean_length=r2, r1_distinct_lengths=distinct)


def _counts(**overrides):
    counts = {"v1": 10, "v2": 100, "v3": 1000, "v4-3p": 0, "v4-5p": 0, "multiome": 50}
    counts.update({k.replace("_", "-"): v for k, v in overrides.items()})
    return counts


def test_v3_selection_gives_16_12(tmp_path):
    res = resolve_chemistry(_counts(v3=150_000), _stats(r1=28), tmp_path)

    assert res.profile.whitelist == "v3"
    assert (res.profile.cb_length, res.profile.umi_length) == (16, 12)
    assert res.profile.whitelist_path == str(tmp_path / "3M-february-2018_TRU.txt")
    assert res.paired is False


def test_single_clear_match():
    counts = {"v3": 60_000, "v2": 100, "v1": 50, "v4-3p": 0, "v4-5p": 0, "multiome": 0}
    res = resolve_chemistry(counts, _stats(r1=28))
    assert res.profile.whitelist == "v3"
    assert (res.profile.cb_length, res.profile.umi_length) == (16, 12)
    assert res.counts == counts


def test_precedence_prefers_v3_over_v2():
    profile = select_whitelist(_counts(v2=120_000, v3=60_000))
    assert profile.whitelist == "v3"


def test_precedence_prefers_multiome_over_v1_and_v4():
    profile = select_whitelist(_counts(v1=90_000, multiome=55_000, v4_3p=150_000))
    assert profile.whitelist == "multiome"


def test_v1_lengths():
    res = resolve_chemistry(_counts(v1=80_000), _stats(r1=24))
    assert (res.profile.cb_length, res.profile.umi_length) == (14, 10)


def test_threshold_is_strict():
    with pytest.raises(NoWhitelistMatchError):
        select_whitelist(_counts(v3=50_000))


def test_no_whitelist_match_keeps_counts():
    counts = _counts()
    with pytest.raises(NoWhitelistMatchError, match="No whitelist has matched") as excinfo:
        resolve_chemistry(counts, _stats())
    assert excinfo.value.counts == counts
    assert excinfo.value.kind == "NoWhitelistMatchError"


def test_short_read1_shrinks_umi_with_warning(caplog):
    caplog.set_level(logging.WARNING)
    res = resolve_chemistry(_counts(v3=150_000), _stats(r1=26))

    assert res.profile.cb_length == 16
    assert res.profile.umi_length == 10
    assert "Changing UMI setting from 12 to 10!" in caplog.text


def test_long_read1_keeps_umi_with_warning(caplog):
    caplog.set_level(logging.WARNING)
    res = resolve_chemistry(_counts(v2=150_000), _stats(r1=28))

    assert res.profile.umi_length == 10
    assert "is more than the sum of appropriate barcode and UMI (26)" in caplog.text


def test_paired_when_read1_longer_than_50():
    assert is_paired(51)
    assert not is_paired(50)
    res = resolve_chemistry(_counts(v3=150_000), _stats(r1=150))
    assert res.paired is True
    assert res.profile.umi_length == 12


def test_barcode_read_too_short():
    with pytest.raises(BarcodeTooShortError) as excinfo:
        resolve_chemistry(_counts(v3=150_000), _stats(r1=20))
    assert excinfo.value.measurement == 20


def test_length_gates_run_before_whitelist_selection():
    with pytest.raises(BarcodeTooShortError):
        resolve_chemistry(_counts(), _stats(r1=20))


def test_short_barcode_read_wins_over_varying_length():
    with pytest.raises(BarcodeTooShortError) as excinfo:
        resolve_chemistry(_counts(v3=150_000), _stats(r1=20, distinct=2))
    assert excinfo.value.kind == "BarcodeTooShortError"


def test_trimmed_barcode_read_is_rejected():
    with pytest.raises(InconsistentLengthError):
        resolve_chemistry(_counts(v3=150_000), _stats(r1=28, distinct=3))


def test_varying_long_read1_is_accepted():
    res = resolve_chemistry(_counts(v3=150_000), _stats(r1=140, distinct=5))
    assert res.paired is True


def test_biological_read_too_short():
    with pytest.raises(BiologicalReadTooShortError) as excinfo:
        resolve_chemistry(_counts(v3=150_000), _stats(r2=35))
    assert excinfo.value.measurement == 35


def test_custom_threshold():
    res = resolve_chemistry(_counts(), _stats(), threshold=500)
    assert res.profile.whitelist == "v3"
