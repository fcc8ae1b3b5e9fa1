import numpy as np
import pytest

from alphaplex.exceptions import AmbiguousSiteWarning, NoMatchError
from alphaplex.identification.store import IdentificationStore
from alphaplex.sites.coverage import compute_protein_coverage
from alphaplex.sites.mapper import (
    SiteMapper,
    locate_peptide,
    map_peptide,
    parse_modified_peptide,
)
from conftest import mock_psm_df

SEQUENCES = {
    "P1": "MKVLAAG",
    "P2": "VLAAGSVLAAGS",
}


@pytest.mark.parametrize(
    ("peptide", "expected"),
    [
        ("VL*AAG", ("VLAAG", [(2, "Phospho")])),
        ("K.VL*AAG.R", ("VLAAG", [(2, "Phospho")])),
        ("*VLAAG", ("VLAAG", [(1, "Phospho")])),
        ("S*T*Y", ("STY", [(1, "Phospho"), (2, "Phospho")])),
        ("VLAAG", ("VLAAG", [])),
    ],
)
def test_parse_modified_peptide(peptide, expected):
    assert parse_modified_peptide(peptide) == expected


def test_parse_modified_peptide_custom_markers():
    assert parse_modified_peptide("M#PEPS*K", {"#": "Oxidation", "*": "Phospho"}) == (
        "MPEPSK",
        [(1, "Oxidation"), (5, "Phospho")],
    )


def test_locate_peptide_finds_overlapping_matches():
    assert locate_peptide("AA", "AAAB") == [0, 1]
    assert locate_peptide("XY", "AAAB") == []


def test_map_peptide():
    mapping = map_peptide("VL*AAG", "P1", SEQUENCES["P1"])

    assert mapping.start == 3
    assert len(mapping.sites) == 1
    assert mapping.sites[0].position == 4
    assert mapping.sites[0].residue == "L"
    assert mapping.site_id == "P1-L4l"
    assert not mapping.ambiguous


def test_map_peptide_multiple_sites():
    mapping = map_peptide("MK*VL*AAG", "P1", SEQUENCES["P1"])

    assert [site.position for site in mapping.sites] == [2, 4]
    assert mapping.site_id == "P1-K2kL4l"


def test_map_peptide_repeat_uses_first_match():
    mapping = map_peptide("SVL*AAG", "P2", SEQUENCES["P2"])

    assert mapping.start == 6
    assert not mapping.ambiguous

    mapping = map_peptide("VL*AAG", "P2", SEQUENCES["P2"])

    assert mapping.start == 1
    assert mapping.sites[0].position == 2
    assert mapping.ambiguous


def test_map_peptide_not_found_raises():
    with pytest.raises(NoMatchError):
        map_peptide("WWW*K", "P1", SEQUENCES["P1"])


def _store(records, ascore=None) -> IdentificationStore:
    psm_df = mock_psm_df(records)
    if ascore is not None:
        psm_df["ascore"] = ascore
    return IdentificationStore(psm_df)


def test_site_mapper_statuses():
    store = _store(
        [
            (1, "VL*AAG", "P1"),
            (2, "MKVL", "P1"),
            (3, "S*PEPK", "P9"),
            (4, "QQ*Q", "P1"),
        ]
    )

    # when
    SiteMapper(SEQUENCES, on_no_match="flag")(store)

    records = store.records
    assert records["site_status"].tolist() == ["mapped", "unmodified", "unresolved", "no_match"]
    assert records["site"].tolist()[0] == "P1-L4l"
    assert records["site"].isna().tolist() == [False, True, True, True]
    assert records["site_positions"].tolist()[0] == "4"
    assert records["site_residues"].tolist()[0] == "L"
    assert records["site_modifications"].tolist()[0] == "Phospho"
    assert records["site_confident"].tolist() == [True, False, False, False]


def test_site_mapper_no_match_raises():
    store = _store([(1, "VL*AAG", "P1"), (2, "QQ*Q", "P1")])

    with pytest.raises(NoMatchError):
        SiteMapper(SEQUENCES)(store)


def test_site_mapper_flags_ambiguous_sites():
    store = _store([(1, "VL*AAG", "P2"), (2, "SVL*AAG", "P2")])

    with pytest.warns(AmbiguousSiteWarning):
        SiteMapper(SEQUENCES)(store)

    records = store.records
    assert records["site_ambiguous"].tolist() == [True, False]
    assert records["site"].tolist() == ["P2-L2l", "P2-L8l"]
    assert records["site_confident"].tolist() == [False, True]


def test_site_mapper_uses_ascore_for_confidence():
    store = _store([(1, "VL*AAG", "P1"), (2, "V*LAAG", "P1")], ascore=[20.0, 10.0])

    SiteMapper(SEQUENCES, min_ascore=17.0)(store)

    assert store.records["site_confident"].tolist() == [True, False]
    assert store.records["site"].tolist() == ["P1-L4l", "P1-V3v"]


def test_site_mapper_only_annotates_active_rows():
    store = _store([(1, "VL*AAG", "P1"), (2, "QQ*Q", "P1")])
    store.apply_filter(lambda records: records["scan_id"] == 1, name="first_scan")

    # the inactive row would raise a NoMatchError
    SiteMapper(SEQUENCES)(store)

    assert store.records["site_status"].tolist()[0] == "mapped"
    assert store.records["site_status"].isna().tolist() == [False, True]


def test_site_mapper_invalid_policy_raises():
    with pytest.raises(ValueError):
        SiteMapper(SEQUENCES, on_no_match="ignore")


def test_compute_protein_coverage():
    store = _store([(1, "MKV", "P1"), (2, "AA*G", "P1"), (3, "VLAAGS", "P2")])

    coverage_df = compute_protein_coverage(store, SEQUENCES)

    assert coverage_df["accession"].tolist() == ["P1", "P2"]
    assert coverage_df["covered_residues"].tolist() == [6, 12]
    assert np.allclose(coverage_df["coverage"], [6 / 7, 1.0])
