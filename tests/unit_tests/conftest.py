import numpy as np
import pandas as pd
import pytest

AMINO_ACIDS = list("ACDEFGHIKLMNPQRSTVWY")


def mock_psm_df(records: list[tuple]) -> pd.DataFrame:
    """Create a target PSM table from (scan_id, peptide, accession[, dataset_id]) tuples, the dataset defaults to D1."""
    return pd.DataFrame(
        {
            "scan_id": [r[0] for r in records],
            "dataset_id": [r[3] if len(r) > 3 else "D1" for r in records],
            "peptide": [r[1] for r in records],
            "accession": [r[2] for r in records],
            "decoy": False,
        }
    )


def mock_study_design_tables(
    plexes: dict[str, list[str]] | None = None,
    reference: str = "mean(R1, R2)",
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Create fractions, samples and references for plexes with channels 126 to 129.

    Channels 126 and 127 are the samples S1 and S2, channels 128 and 129 are reference only channels R1 and R2.

    Parameters
    ----------
    plexes : dict[str, list[str]], optional
        Datasets per plex, defaults to a single plex "plex1" with datasets D1 and D2.

    reference : str
        Reference expression used for all plexes.
    """
    if plexes is None:
        plexes = {"plex1": ["D1", "D2"]}

    fractions = pd.DataFrame(
        [(dataset, plex) for plex, datasets in plexes.items() for dataset in datasets],
        columns=["dataset_id", "plex_id"],
    )
    samples = pd.DataFrame(
        [
            (plex, channel, measurement, alias)
            for plex in plexes
            for channel, measurement, alias in [
                ("126", "S1", "S1"),
                ("127", "S2", "S2"),
                ("128", None, "R1"),
                ("129", None, "R2"),
            ]
        ],
        columns=["plex_id", "channel_id", "measurement_name", "reporter_alias"],
    )
    references = pd.DataFrame(
        {"plex_id": list(plexes), "reference": reference},
    )
    return fractions, samples, references


def mock_reporter_df(intensities: dict[tuple[str, int], dict[str, float]]) -> pd.DataFrame:
    """Create a long reporter table from {(dataset_id, scan_id): {channel_id: intensity}} without interference."""
    return pd.DataFrame(
        [
            {
                "scan_id": scan,
                "dataset_id": dataset,
                "channel_id": channel,
                "intensity": intensity,
                "interference_score": 1.0,
                "signal_to_noise": 10.0,
            }
            for (dataset, scan), channels in intensities.items()
            for channel, intensity in channels.items()
        ]
    )


def mock_plex_dataset(
    n_proteins: int = 5,
    n_peptides_per_protein: int = 6,
    seed: int = 42,
) -> dict:
    """Create a consistent set of pipeline inputs.

    Target peptides are cut from random protein sequences and score well, every protein has a reversed decoy
    counterpart ``XXX_P{i}`` with two poorly scoring peptides.
    All scans are quantified in a single plex with the channels of `mock_study_design_tables`.

    Returns
    -------
    dict
        Keyword arguments for `PlexPipeline.run`.
    """
    rng = np.random.default_rng(seed)
    sequences = {
        f"P{i}": "".join(rng.choice(AMINO_ACIDS, 500)) for i in range(n_proteins)
    }

    rows = []
    scan = 0
    for accession, sequence in sequences.items():
        for j in range(n_peptides_per_protein):
            scan += 1
            rows.append(
                {
                    "scan_id": scan,
                    "dataset_id": "D1" if scan % 2 else "D2",
                    "peptide": sequence[j * 20 : j * 20 + 10],
                    "accession": accession,
                    "pep_qvalue": 0.001,
                    "mass_error_ppm": rng.uniform(-2, 2),
                }
            )
        for j in range(2):
            scan += 1
            rows.append(
                {
                    "scan_id": scan,
                    "dataset_id": "D1" if scan % 2 else "D2",
                    "peptide": sequence[::-1][j * 20 : j * 20 + 10],
                    "accession": f"XXX_{accession}",
                    "pep_qvalue": 0.5,
                    "mass_error_ppm": rng.uniform(-2, 2),
                }
            )
    psm_df = pd.DataFrame(rows)

    intensities = {
        (dataset, scan): {
            channel: rng.uniform(100, 1000) for channel in ["126", "127", "128", "129"]
        }
        for dataset, scan in zip(psm_df["dataset_id"], psm_df["scan_id"], strict=True)
    }
    fractions, samples, references = mock_study_design_tables()

    return {
        "psm_df": psm_df,
        "sequences": sequences,
        "reporter_df": mock_reporter_df(intensities),
        "fractions": fractions,
        "samples": samples,
        "references": references,
    }


@pytest.fixture
def plex_dataset():
    return mock_plex_dataset()
