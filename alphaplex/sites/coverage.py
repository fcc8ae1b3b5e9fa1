import logging

import numpy as np
import pandas as pd

from alphaplex.constants.keys import PsmCols
from alphaplex.identification.store import IdentificationStore
from alphaplex.sites.mapper import locate_peptide

logger = logging.getLogger()


def compute_protein_coverage(
    store: IdentificationStore, sequences: dict[str, str]
) -> pd.DataFrame:
    """Fraction of each accession's residues covered by the active peptides.

    All occurrences of a peptide within its accession count towards coverage.

    Parameters
    ----------
    store : IdentificationStore
        Store whose active rows provide the (sequence, accession) pairs.

    sequences : dict[str, str]
        Reference protein sequences by accession.

    Returns
    -------
    pd.DataFrame
        One row per accession with a known sequence, columns accession, length, covered_residues, coverage.
    """
    active = store.active_rows()
    pairs = active[[PsmCols.SEQUENCE, PsmCols.ACCESSION]].drop_duplicates()

    coverage = []
    for accession, group in pairs.groupby(PsmCols.ACCESSION, sort=True):
        if accession not in sequences:
            continue
        reference = sequences[accession]
        covered = np.zeros(len(reference), dtype=bool)
        for sequence in group[PsmCols.SEQUENCE]:
            for offset in locate_peptide(sequence, reference):
                covered[offset : offset + len(sequence)] = True

        coverage.append(
            {
                PsmCols.ACCESSION: accession,
                "length": len(reference),
                "covered_residues": int(covered.sum()),
                "coverage": covered.mean() if len(reference) > 0 else np.nan,
            }
        )

    coverage_df = pd.DataFrame(
        coverage, columns=[PsmCols.ACCESSION, "length", "covered_residues", "coverage"]
    )
    logger.info(
        f"Median sequence coverage {coverage_df['coverage'].median():.2%} over {len(coverage_df):,} accessions"
    )
    return coverage_df
