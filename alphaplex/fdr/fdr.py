"""Module performing False Discovery Rate (FDR) control by searching filter thresholds."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from tqdm import tqdm

from alphaplex.constants.keys import PsmCols
from alphaplex.exceptions import InsufficientDataError

logger = logging.getLogger()

LOWER = "lower"
HIGHER = "higher"


@dataclass(frozen=True)
class ScoreColumn:
    """Numeric column used as filter criterion.

    Parameters
    ----------
    column : str
        Name of the column.

    direction : str, default "lower"
        "lower" if smaller values are better (q-values, mass errors), "higher" otherwise.

    absolute : bool, default False
        Whether the absolute value is compared, e.g. for mass errors.
    """

    column: str
    direction: str = LOWER
    absolute: bool = False

    def __post_init__(self):
        if self.direction not in (LOWER, HIGHER):
            raise ValueError(
                f"direction must be '{LOWER}' or '{HIGHER}', got '{self.direction}'"
            )

    @classmethod
    def from_dict(cls, d: dict) -> ScoreColumn:
        return cls(
            column=d["column"],
            direction=d.get("direction", LOWER),
            absolute=d.get("absolute", False),
        )

    def oriented(self, df: pd.DataFrame) -> np.ndarray:
        """Values oriented such that smaller is always better."""
        values = df[self.column].to_numpy(dtype=np.float64)
        if self.absolute:
            values = np.abs(values)
        return values if self.direction == LOWER else -values

    def to_native(self, threshold: float) -> float:
        return threshold if self.direction == LOWER else -threshold

    def passes(self, df: pd.DataFrame, threshold: float) -> np.ndarray:
        """Mask of rows within the native threshold. Missing values never pass."""
        oriented_threshold = self.to_native(threshold)
        with np.errstate(invalid="ignore"):
            return self.oriented(df) <= oriented_threshold


@dataclass
class FdrResult:
    """Outcome of a threshold search."""

    level: str
    fdr_target: float
    thresholds: dict[str, float]
    n_target: int
    n_decoy: int
    fdr: float
    score_columns: tuple[ScoreColumn, ...] = field(default_factory=tuple, repr=False)

    def passes(self, df: pd.DataFrame) -> np.ndarray:
        """Mask of rows satisfying all thresholds."""
        mask = np.ones(len(df), dtype=bool)
        for score_column in self.score_columns:
            mask &= score_column.passes(df, self.thresholds[score_column.column])
        return mask


def estimate_fdr(n_decoy: int, n_target: int, decoy_factor: float = 1.0) -> float:
    """Decoy based FDR estimate, `decoy_factor * n_decoy / n_target`."""
    if n_target == 0:
        return 0.0 if n_decoy == 0 else np.inf
    return decoy_factor * n_decoy / n_target


def _candidate_thresholds(
    values: np.ndarray, max_candidates: int | None = None
) -> np.ndarray:
    """Sorted candidate thresholds for one column.

    All observed values are candidates unless `max_candidates` caps them to a quantile grid.
    """
    unique = np.unique(values[np.isfinite(values)])
    if max_candidates is None or len(unique) <= max_candidates:
        return unique
    quantiles = np.linspace(0, 1, max_candidates)
    return np.unique(np.quantile(unique, quantiles, method="lower"))


def _best_last_threshold(
    last_values: np.ndarray,
    unit_codes: np.ndarray,
    unit_is_decoy: np.ndarray,
    fdr_target: float,
    decoy_factor: float,
) -> tuple[float, int, int] | None:
    """Exact search over the last column for a pre-filtered set of rows.

    Every unit is represented by its best row. Returns the loosest threshold of the best
    (n_target, n_decoy) combination or None if no threshold satisfies the FDR target.
    """
    n_units = len(unit_is_decoy)
    best = np.full(n_units, np.inf)
    np.minimum.at(best, unit_codes, last_values)

    present = np.isfinite(best)
    if not present.any():
        return None

    best = best[present]
    is_decoy = unit_is_decoy[present]

    order = np.argsort(best, kind="stable")
    best = best[order]
    is_decoy = is_decoy[order]

    decoy_cumsum = np.cumsum(is_decoy)
    target_cumsum = np.cumsum(~is_decoy)

    # only the last position of a run of equal values is a valid cut
    cut = np.append(best[1:] != best[:-1], True)
    decoy_cumsum = decoy_cumsum[cut]
    target_cumsum = target_cumsum[cut]
    thresholds = best[cut]

    with np.errstate(divide="ignore", invalid="ignore"):
        fdr = np.where(
            target_cumsum > 0,
            decoy_factor * decoy_cumsum / np.maximum(target_cumsum, 1),
            np.inf,
        )
    feasible = np.flatnonzero(fdr <= fdr_target)
    if len(feasible) == 0:
        return None

    # most targets, then fewest decoys, then the strictest threshold
    n_target = target_cumsum[feasible]
    candidates = feasible[n_target == n_target.max()]
    idx = candidates[np.argmin(decoy_cumsum[candidates])]

    return float(thresholds[idx]), int(target_cumsum[idx]), int(decoy_cumsum[idx])


def search_thresholds(  # noqa: PLR0913 # too many arguments
    df: pd.DataFrame,
    score_columns: list[ScoreColumn],
    *,
    unit_columns: list[str],
    decoy_column: str = PsmCols.DECOY,
    fdr_target: float = 0.01,
    decoy_factor: float = 1.0,
    min_decoys: int = 5,
    max_candidates: int | None = None,
    level: str = "",
    show_progress: bool = False,
) -> FdrResult:
    """Find the threshold combination retaining the most target units at an estimated FDR <= `fdr_target`.

    Rows are grouped into units by `unit_columns` and the decoy flag, e.g. peptides. A unit passes a threshold
    combination if at least one of its rows passes. For all but the last score column every value observed
    on a target row is a candidate, loosening a threshold past decoy rows only can not retain more targets.
    For the last column every observed value is evaluated at once on the cumulative counts.
    Combinations are visited from loose to strict and skipped if the targets passing the other columns
    can not exceed the best result so far. The search is exact and deterministic unless `max_candidates`
    is set.

    Parameters
    ----------
    df : pd.DataFrame
        Table containing the score columns, the unit columns and the decoy column.

    score_columns : list[ScoreColumn]
        Columns to search thresholds for.

    unit_columns : list[str]
        Columns defining the units at which the FDR is estimated.

    decoy_column : str, default "decoy"
        Boolean column marking decoys.

    fdr_target : float, default 0.01
        Maximum estimated FDR.

    decoy_factor : float, default 1.0
        Multiplier applied to decoy counts, e.g. to account for unequal target and decoy database sizes.

    min_decoys : int, default 5
        Minimum number of decoy units required to estimate the FDR.

    max_candidates : int, optional
        Caps the candidate thresholds of every column but the last to a quantile grid of this size.
        Useful with more than two score columns, where the number of combinations grows quickly.
        By default all candidates are searched.

    level : str
        Name of the level, used for reporting.

    show_progress : bool, default False
        Whether to show a progress bar over the grid.

    Returns
    -------
    FdrResult
        Chosen thresholds in native units and the resulting counts.

    Raises
    ------
    InsufficientDataError
        If fewer than `min_decoys` decoy units or no target units are present.
    """
    if not score_columns:
        raise ValueError("At least one score column is required")
    if not 0 < fdr_target <= 1:
        raise ValueError(f"fdr_target must lie in (0, 1], got {fdr_target}")

    columns = [s.column for s in score_columns]
    complete = df.dropna(subset=columns)
    if len(complete) < len(df):
        logger.warning(
            f"dropped {len(df) - len(complete)} rows due to missing values in {columns}"
        )

    unit_groups = complete.groupby(unit_columns + [decoy_column], sort=True)
    unit_codes = unit_groups.ngroup().to_numpy()
    unit_is_decoy = unit_groups[decoy_column].first().to_numpy(dtype=bool)

    n_decoy_units = int(unit_is_decoy.sum())
    n_target_units = len(unit_is_decoy) - n_decoy_units
    if n_decoy_units < min_decoys:
        raise InsufficientDataError(
            f"{n_decoy_units} decoy {level or 'unit'}s available, at least {min_decoys} required"
        )
    if n_target_units == 0:
        raise InsufficientDataError(f"No target {level or 'unit'}s available")

    oriented = np.column_stack([s.oriented(complete) for s in score_columns])
    target_rows = ~unit_is_decoy[unit_codes]
    grids = [
        _candidate_thresholds(oriented[target_rows, j], max_candidates)[::-1]
        for j in range(len(score_columns) - 1)
    ]
    combinations = list(itertools.product(*grids))

    best_result = None
    for combination in tqdm(
        combinations, desc=f"{level} FDR threshold search", disable=not show_progress
    ):
        mask = np.ones(len(complete), dtype=bool)
        for j, threshold in enumerate(combination):
            mask &= oriented[:, j] <= threshold

        if best_result is not None:
            n_reachable = np.count_nonzero(
                np.bincount(unit_codes[mask & target_rows], minlength=len(unit_is_decoy))
            )
            if n_reachable < best_result[1]:
                continue

        last = _best_last_threshold(
            oriented[mask, -1],
            unit_codes[mask],
            unit_is_decoy,
            fdr_target,
            decoy_factor,
        )
        if last is None:
            continue

        last_threshold, n_target, n_decoy = last
        # combinations are visited from loose to strict, ties keep the stricter one
        if (
            best_result is None
            or n_target > best_result[1]
            or (n_target == best_result[1] and n_decoy <= best_result[2])
        ):
            best_result = ((*combination, last_threshold), n_target, n_decoy)

    if best_result is None:
        logger.warning(
            f"No {level} threshold satisfies an FDR of {fdr_target}, all rows will be removed"
        )
        oriented_thresholds = [-np.inf] * len(score_columns)
        n_target, n_decoy = 0, 0
    else:
        oriented_thresholds, n_target, n_decoy = best_result

    thresholds = {
        s.column: float(s.to_native(t))
        for s, t in zip(score_columns, oriented_thresholds, strict=True)
    }
    result = FdrResult(
        level=level,
        fdr_target=fdr_target,
        thresholds=thresholds,
        n_target=n_target,
        n_decoy=n_decoy,
        fdr=estimate_fdr(n_decoy, n_target, decoy_factor),
        score_columns=tuple(score_columns),
    )
    logger.info(
        f"{level} FDR: {n_target:,} targets and {n_decoy:,} decoys pass {thresholds} (estimated FDR {result.fdr:.4f})"
    )
    return result


def peptides_per_1000aa(
    psm_df: pd.DataFrame,
    sequences: dict[str, str],
    decoy_prefix: str = "XXX_",
) -> pd.DataFrame:
    """Number of distinct peptides per accession, normalized to 1000 residues of protein length.

    Decoy accessions without a sequence of their own are resolved by removing the decoy prefix,
    as reversed decoys share the length of their target.

    Parameters
    ----------
    psm_df : pd.DataFrame
        PSM table with one accession per row.

    sequences : dict[str, str]
        Reference protein sequences by accession.

    decoy_prefix : str, default "XXX_"
        Prefix of decoy accessions.

    Returns
    -------
    pd.DataFrame
        One row per accession with columns accession, decoy, length and peptides_per_1000aa.
        Accessions without known length are dropped.
    """
    protein_df = psm_df.groupby(PsmCols.ACCESSION, sort=True).agg(
        n_peptides=(PsmCols.PEPTIDE, "nunique"),
        all_decoy=(PsmCols.DECOY, "all"),
    )
    protein_df = protein_df.reset_index()
    protein_df[PsmCols.DECOY] = protein_df["all_decoy"] | protein_df[
        PsmCols.ACCESSION
    ].str.startswith(decoy_prefix)

    def _length(accession: str) -> float:
        if accession in sequences:
            return len(sequences[accession])
        if accession.startswith(decoy_prefix):
            target = accession[len(decoy_prefix) :]
            if target in sequences:
                return len(sequences[target])
        return np.nan

    protein_df["length"] = protein_df[PsmCols.ACCESSION].map(_length)

    n_missing = int(protein_df["length"].isna().sum())
    if n_missing > 0:
        logger.warning(
            f"No sequence found for {n_missing} accessions, they are removed at protein level"
        )
    protein_df = protein_df.dropna(subset=["length"])

    protein_df[PsmCols.PEPTIDES_PER_1000AA] = (
        protein_df["n_peptides"] / protein_df["length"] * 1000
    )
    return protein_df[
        [PsmCols.ACCESSION, PsmCols.DECOY, "length", PsmCols.PEPTIDES_PER_1000AA]
    ]
