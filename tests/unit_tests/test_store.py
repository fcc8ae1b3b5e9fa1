import itertools

import numpy as np
import pandas as pd
import pytest

from alphaplex.exceptions import SchemaError
from alphaplex.identification.store import Filter, IdentificationStore
from conftest import mock_psm_df


def _store() -> IdentificationStore:
    psm_df = mock_psm_df(
        [
            (1, "K.PEPTIDEK.A", "A;B"),
            (2, "ELVISK", "B"),
            (3, "LIVESK", "C"),
            (4, "VL*AAGK", "C"),
        ]
    )
    psm_df["pep_qvalue"] = [0.001, 0.02, 0.005, 0.1]
    return IdentificationStore(psm_df)


def test_store_explodes_accessions_and_strips_flanks():
    store = _store()

    assert len(store.records) == 5
    assert store.records["accession"].tolist() == ["A", "B", "B", "C", "C"]
    assert store.records["peptide"].tolist()[0] == "PEPTIDEK"
    assert store.records["sequence"].tolist()[-1] == "VLAAGK"
    assert store.show() == {"psms": 4, "peptides": 4, "accessions": 3}


def test_store_empty_raises():
    with pytest.raises(SchemaError):
        IdentificationStore(mock_psm_df([]))


def test_store_missing_column_raises():
    psm_df = mock_psm_df([(1, "PEPTIDEK", "A")]).drop(columns=["accession", "decoy"])

    with pytest.raises(SchemaError):
        IdentificationStore(psm_df)


def test_store_missing_accession_raises():
    psm_df = mock_psm_df([(1, "PEPTIDEK", "A"), (2, "ELVISK", None)])

    with pytest.raises(SchemaError, match="row 1"):
        IdentificationStore(psm_df)


def test_store_removes_blank_accessions():
    psm_df = mock_psm_df([(1, "PEPTIDEK", "A"), (2, "ELVISK", " ; ")])

    store = IdentificationStore(psm_df)

    assert store.records["accession"].tolist() == ["A"]


def test_store_accepts_string_dtype_columns():
    psm_df = mock_psm_df([(1, "PEPTIDEK", "A"), (2, "ELVISK", "B")])
    for column in ["dataset_id", "peptide", "accession"]:
        psm_df[column] = psm_df[column].astype("string")
    psm_df["pep_qvalue"] = [0.001, np.nan]

    store = IdentificationStore(psm_df)

    assert store.records["accession"].tolist() == ["A", "B"]


def test_apply_filter_narrows_active_rows_only():
    store = _store()

    # when
    store.apply_filter(lambda records: records["pep_qvalue"] <= 0.01, name="qvalue")

    assert len(store.records) == 5
    assert store.active_rows()["scan_id"].tolist() == [1, 1, 3]
    assert store.filters == ["qvalue"]
    assert store.history[-1] == {"stage": "qvalue", "psms": 2, "peptides": 2, "accessions": 3}


def test_apply_filter_is_idempotent():
    store = _store()
    qvalue_filter = Filter("qvalue", lambda records: records["pep_qvalue"] <= 0.01)

    store.apply_filter(qvalue_filter)
    first = store.active_rows()
    store.apply_filter(qvalue_filter)

    pd.testing.assert_frame_equal(store.active_rows(), first)


def test_apply_filter_order_does_not_change_active_rows():
    filters = [
        Filter("qvalue", lambda records: records["pep_qvalue"] <= 0.01),
        Filter("accession", lambda records: records["accession"] != "A"),
        Filter("length", lambda records: records["sequence"].str.len() >= 6),
    ]

    active = []
    for order in itertools.permutations(filters):
        store = _store()
        for f in order:
            store.apply_filter(f)
        active.append(store.active_rows())

    for rows in active[1:]:
        pd.testing.assert_frame_equal(rows, active[0])


def test_apply_filter_malformed_mask_raises():
    store = _store()

    with pytest.raises(ValueError):
        store.apply_filter(lambda records: np.ones(2, dtype=bool), name="broken")

    assert store.filters == []


def test_annotate_aligns_by_index():
    store = _store()
    store.apply_filter(lambda records: records["accession"] == "C", name="only_c")

    # when
    active = store.active_rows()
    store.annotate("note", pd.Series("c", index=active.index))

    assert store.records["note"].isna().tolist() == [True, True, True, False, False]
    assert store.active_rows()["note"].tolist() == ["c", "c"]


def test_annotate_input_column_raises():
    store = _store()

    with pytest.raises(ValueError):
        store.annotate("peptide", pd.Series("X", index=store.records.index))


def test_history_df():
    store = _store()
    store.apply_filter(lambda records: records["accession"] == "C", name="only_c")

    history_df = store.history_df()

    assert history_df["stage"].tolist() == ["input", "only_c"]
    assert history_df["psms"].tolist() == [4, 2]
