import numpy as np
import pandas as pd
import pytest

from alphaplex.exceptions import SchemaError
from alphaplex.identification.store import IdentificationStore
from alphaplex.quant.crosstab import build_crosstab, normalize_intensities
from alphaplex.quant.reporter import ReporterIntensityTable
from alphaplex.quant.study_design import StudyDesign
from conftest import mock_psm_df, mock_reporter_df, mock_study_design_tables


def _inputs(intensities, records=None, **design_kwargs):
    if records is None:
        records = [(1, "PEPTIDEK", "PROT1"), (2, "ELVISK", "PROT1")]
    store = IdentificationStore(mock_psm_df(records))
    reporter_table = ReporterIntensityTable(mock_reporter_df(intensities))
    study_design = StudyDesign(*mock_study_design_tables(**design_kwargs))
    return store, reporter_table, study_design


TWO_PSMS = {
    ("D1", 1): {"126": 100.0, "127": 50.0, "128": 150.0, "129": 250.0},
    ("D1", 2): {"126": 300.0, "128": 200.0, "129": 200.0},
}


def test_normalize_intensities():
    _, reporter_table, study_design = _inputs(TWO_PSMS)

    ratio_df = normalize_intensities(reporter_table.data, study_design)

    ratio_df = ratio_df.sort_values(["scan_id", "measurement_name"])
    assert ratio_df["measurement_name"].tolist() == ["S1", "S2", "S1"]
    assert ratio_df["reference_intensity"].tolist() == [200.0, 200.0, 200.0]
    assert ratio_df["ratio"].tolist() == [0.5, 0.25, 1.5]


@pytest.mark.parametrize(
    ("summary", "expected_s1"),
    [
        ("sum", 2.0),
        ("median", 1.0),
        ("mean-log", (np.log2(0.5) + np.log2(1.5)) / 2),
    ],
)
def test_build_crosstab(summary, expected_s1):
    store, reporter_table, study_design = _inputs(TWO_PSMS)

    # when
    crosstab = build_crosstab(store, reporter_table, study_design, summary=summary)

    assert crosstab.index.tolist() == ["PROT1"]
    assert crosstab.columns.tolist() == ["S1", "S2"]
    assert np.isclose(crosstab.loc["PROT1", "S1"], expected_s1)


def test_build_crosstab_zero_reference_is_missing():
    intensities = {
        ("D1", 1): {"126": 100.0, "127": 50.0, "128": 0.0, "129": 0.0},
    }
    store, reporter_table, study_design = _inputs(
        intensities, records=[(1, "PEPTIDEK", "PROT1")]
    )

    crosstab = build_crosstab(store, reporter_table, study_design, summary="sum")

    assert crosstab.loc["PROT1"].isna().all()


def test_build_crosstab_missing_combinations_are_missing():
    intensities = {
        ("D1", 1): {"126": 100.0, "127": 50.0, "128": 200.0, "129": 200.0},
        ("D2", 2): {"126": 100.0, "128": 200.0, "129": 200.0},
    }
    records = [(1, "PEPTIDEK", "PROT1", "D1"), (2, "ELVISK", "PROT2", "D2")]
    store, reporter_table, study_design = _inputs(intensities, records=records)

    crosstab = build_crosstab(store, reporter_table, study_design, summary="sum")

    assert crosstab.index.tolist() == ["PROT1", "PROT2"]
    assert crosstab.loc["PROT2", "S1"] == 0.5
    assert np.isnan(crosstab.loc["PROT2", "S2"])


def test_build_crosstab_by_composite_key():
    store, reporter_table, study_design = _inputs(TWO_PSMS)

    crosstab = build_crosstab(
        store, reporter_table, study_design, ["peptide", "accession"], summary="sum"
    )

    assert crosstab.index.names == ["peptide", "accession"]
    assert crosstab.loc[("ELVISK", "PROT1"), "S1"] == 1.5
    assert crosstab.loc[("PEPTIDEK", "PROT1"), "S1"] == 0.5


def test_build_crosstab_excludes_missing_keys():
    store, reporter_table, study_design = _inputs(TWO_PSMS)
    store.annotate("site", pd.Series(["PROT1-S1s"], index=[0]))

    crosstab = build_crosstab(store, reporter_table, study_design, "site", summary="sum")

    assert crosstab.index.tolist() == ["PROT1-S1s"]
    assert crosstab.loc["PROT1-S1s", "S1"] == 0.5


def test_build_crosstab_only_uses_active_psms():
    store, reporter_table, study_design = _inputs(TWO_PSMS)
    store.apply_filter(lambda records: records["scan_id"] == 2, name="second_scan")

    crosstab = build_crosstab(store, reporter_table, study_design, summary="sum")

    assert crosstab.loc["PROT1", "S1"] == 1.5


def test_build_crosstab_median_center():
    intensities = {
        ("D1", 1): {"126": 100.0, "127": 400.0, "128": 200.0, "129": 200.0},
        ("D1", 2): {"126": 800.0, "127": 200.0, "128": 200.0, "129": 200.0},
        ("D1", 3): {"126": 400.0, "127": 100.0, "128": 200.0, "129": 200.0},
    }
    records = [(1, "PEPTIDEK", "PROT1"), (2, "ELVISK", "PROT2"), (3, "LIVESK", "PROT3")]
    store, reporter_table, study_design = _inputs(intensities, records=records)

    linear = build_crosstab(
        store, reporter_table, study_design, summary="median", median_center=True
    )
    log = build_crosstab(
        store, reporter_table, study_design, summary="mean-log", median_center=True
    )

    assert np.allclose(linear.median(), 1.0)
    assert np.allclose(log.median(), 0.0)
    assert np.allclose(linear.loc["PROT1"], [0.25, 2.0])


def test_build_crosstab_thread_count_does_not_change_result():
    intensities = {
        (dataset, scan): {
            "126": 100.0 * scan,
            "127": 50.0 * scan,
            "128": 100.0 + scan,
            "129": 300.0 - scan,
        }
        for dataset, scan in [("D1", 1), ("D2", 2), ("D3", 3), ("D4", 4)]
    }
    records = [
        (1, "PEPTIDEK", "PROT1", "D1"),
        (2, "ELVISK", "PROT1", "D2"),
        (3, "LIVESK", "PROT2", "D3"),
        (4, "SAMESETK", "PROT2", "D4"),
    ]
    store, reporter_table, study_design = _inputs(
        intensities,
        records=records,
        plexes={"plex1": ["D1", "D2"], "plex2": ["D3", "D4"]},
    )
    single = build_crosstab(store, reporter_table, study_design, summary="sum")
    threaded = build_crosstab(
        store, reporter_table, study_design, summary="sum", thread_count=2
    )

    pd.testing.assert_frame_equal(single, threaded)
    assert np.isclose(single.loc["PROT1", "S1"], 100.0 / 200.0 + 200.0 / 200.0)


def test_build_crosstab_unknown_alias_raises_before_quantification():
    with pytest.raises(SchemaError):
        _inputs(TWO_PSMS, reference="mean(R1, R9)")


def test_build_crosstab_unknown_key_raises():
    store, reporter_table, study_design = _inputs(TWO_PSMS)

    with pytest.raises(SchemaError):
        build_crosstab(store, reporter_table, study_design, "gene", summary="sum")


def test_build_crosstab_unknown_summary_raises():
    store, reporter_table, study_design = _inputs(TWO_PSMS)

    with pytest.raises(ValueError):
        build_crosstab(store, reporter_table, study_design, summary="max")


def test_build_crosstab_without_reporter_intensities_is_empty():
    store, reporter_table, study_design = _inputs(
        {("D9", 1): {"126": 100.0, "128": 100.0, "129": 100.0}}
    )

    crosstab = build_crosstab(store, reporter_table, study_design, summary="sum")

    assert len(crosstab) == 0
    assert crosstab.columns.tolist() == ["S1", "S2"]
