"""Normalization of raw PSM tables before they enter the identification store."""

import logging
import re

import numpy as np
import pandas as pd

from alphaplex.constants.keys import PsmCols
from alphaplex.exceptions import SchemaError

logger = logging.getLogger()

# mass difference between the 13C and 12C isotopes
C13_C12_DELTA = 1.0033548378

_FLANKING_PATTERN = r"^[A-Z\-]\.(.+)\.[A-Z\-]$"
_NON_RESIDUE_PATTERN = re.compile(r"[^A-Z]")


def strip_flanking_residues(peptide: str) -> str:
    """Remove the flanking residues reported by some search engines.

    ``K.PEPT*IDE.R`` becomes ``PEPT*IDE``, peptides without flanks are returned unchanged.
    """
    match = re.match(_FLANKING_PATTERN, peptide)
    if match is None:
        return peptide
    return match.group(1)


def clean_sequence(peptide: str) -> str:
    """Return the plain amino acid sequence, removing modification markers and flanks."""
    return _NON_RESIDUE_PATTERN.sub("", strip_flanking_residues(peptide))


def split_accessions(accessions: pd.Series, delimiter: str = ";") -> pd.Series:
    """Split delimiter separated accessions into lists of stripped, non-empty identifiers."""
    return accessions.astype(str).map(
        lambda value: [a.strip() for a in value.split(delimiter) if a.strip()]
    )


def assign_decoys(
    psm_df: pd.DataFrame, decoy_prefix: str = "XXX_", delimiter: str = ";"
) -> pd.DataFrame:
    """Derive the decoy flag from the accession prefix.

    A PSM is considered a decoy only if all of its accessions carry the decoy prefix.
    An existing decoy column is left untouched.

    Parameters
    ----------
    psm_df : pd.DataFrame
        PSM table with an accession column.

    decoy_prefix : str, default "XXX_"
        Prefix of decoy accessions.

    delimiter : str, default ";"
        Delimiter used for PSMs matching multiple accessions.

    Returns
    -------
    pd.DataFrame
        PSM table with a boolean decoy column.
    """
    if PsmCols.DECOY in psm_df.columns:
        return psm_df

    if PsmCols.ACCESSION not in psm_df.columns:
        raise SchemaError(
            f"Column {PsmCols.ACCESSION} is required to derive decoy labels"
        )

    psm_df = psm_df.copy()
    psm_df[PsmCols.DECOY] = split_accessions(psm_df[PsmCols.ACCESSION], delimiter).map(
        lambda accessions: len(accessions) > 0
        and all(a.startswith(decoy_prefix) for a in accessions)
    )
    logger.info(
        f"Labeled {psm_df[PsmCols.DECOY].sum():,} of {len(psm_df):,} PSMs as decoys using prefix '{decoy_prefix}'"
    )
    return psm_df


def correct_peak_selection(psm_df: pd.DataFrame) -> pd.DataFrame:
    """Correct the precursor mass error for isotope peaks picked instead of the monoisotopic peak.

    The mass difference between observed and calculated precursor is reduced by the closest whole number
    of C13 isotope steps. The experimental m/z and the ppm mass error are updated accordingly.

    Parameters
    ----------
    psm_df : pd.DataFrame
        PSM table with experimental m/z, calculated m/z and charge columns.

    Returns
    -------
    pd.DataFrame
        Copy of the PSM table with corrected experimental m/z and mass error columns.
    """
    required = [PsmCols.EXPERIMENTAL_MZ, PsmCols.CALCULATED_MZ, PsmCols.CHARGE]
    missing = [c for c in required if c not in psm_df.columns]
    if missing:
        raise SchemaError(f"Peak selection correction requires columns {missing}")

    psm_df = psm_df.copy()
    charge = psm_df[PsmCols.CHARGE].to_numpy(dtype=np.float64)
    calculated_mz = psm_df[PsmCols.CALCULATED_MZ].to_numpy(dtype=np.float64)

    delta_mass = (psm_df[PsmCols.EXPERIMENTAL_MZ].to_numpy() - calculated_mz) * charge
    isotope_steps = np.round(delta_mass / C13_C12_DELTA)
    delta_mass = delta_mass - isotope_steps * C13_C12_DELTA

    n_corrected = int(np.count_nonzero(isotope_steps))
    logger.info(f"Corrected isotope peak selection for {n_corrected:,} PSMs")

    psm_df[PsmCols.EXPERIMENTAL_MZ] = calculated_mz + delta_mass / charge
    psm_df[PsmCols.MASS_ERROR_PPM] = delta_mass / (calculated_mz * charge) * 1e6
    return psm_df
