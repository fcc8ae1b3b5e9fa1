"""Aggregation of reference normalized reporter intensities into a feature by measurement matrix."""

import logging
import multiprocessing.pool

import numpy as np
import pandas as pd

from alphaplex.constants.keys import (
    PsmCols,
    QuantCols,
    ReporterCols,
    StudyDesignCols,
    SummaryStatistic,
)
from alphaplex.exceptions import SchemaError
from alphaplex.identification.store import IdentificationStore
from alphaplex.quant.reporter import ReporterIntensityTable
from alphaplex.quant.study_design import StudyDesign

logger = logging.getLogger()

_SCAN_KEY = [PsmCols.DATASET, PsmCols.SCAN]
_GROUP_KEY = [StudyDesignCols.PLEX, StudyDesignCols.QUANT_BLOCK]


def _reference_intensities(
    plex_df: pd.DataFrame, block_key: tuple[str, int], study_design: StudyDesign
) -> pd.DataFrame:
    """Evaluate the reference expression of a (plex_id, quant_block) for every scan of the plex.

    Parameters
    ----------
    plex_df : pd.DataFrame
        Long format intensities of all channels of the plex, with reporter_alias.

    block_key : tuple[str, int]
        The (plex_id, quant_block) whose reference is evaluated.

    Returns
    -------
    pd.DataFrame
        dataset_id, scan_id, plex_id, quant_block and reference_intensity per scan.
    """
    wide_df = plex_df.pivot(
        index=_SCAN_KEY, columns=StudyDesignCols.ALIAS, values=ReporterCols.INTENSITY
    )
    n = len(wide_df)
    # aliases without any measured intensity in this plex are missing for all scans
    values = {
        alias: wide_df[alias].to_numpy() if alias in wide_df.columns else np.full(n, np.nan)
        for alias in study_design.reference(*block_key).aliases()
    }
    reference = study_design.reference(*block_key).evaluate(values, n)

    reference_df = wide_df.index.to_frame(index=False)
    reference_df[StudyDesignCols.PLEX] = block_key[0]
    reference_df[StudyDesignCols.QUANT_BLOCK] = block_key[1]
    reference_df[QuantCols.REFERENCE_INTENSITY] = reference
    return reference_df


def normalize_intensities(
    reporter_df: pd.DataFrame, study_design: StudyDesign, thread_count: int = 1
) -> pd.DataFrame:
    """Divide every reporter intensity by the reference intensity of its scan and quant block.

    Ratios are missing if the reference intensity is zero, negative, infinite or missing.
    Reference only channels, which have no measurement name, are dropped after the reference is computed.

    Parameters
    ----------
    reporter_df : pd.DataFrame
        Long format reporter intensities.

    study_design : StudyDesign
        Study design providing the plex, alias and quant block of each channel.

    thread_count : int, default 1
        Number of threads used to evaluate the (plex_id, quant_block) groups.

    Returns
    -------
    pd.DataFrame
        dataset_id, scan_id, measurement_name, reference_intensity and ratio per measured channel.
    """
    intensity_df = reporter_df.merge(
        study_design.fractions, on=StudyDesignCols.DATASET, how="inner"
    )
    n_unknown_datasets = reporter_df[StudyDesignCols.DATASET].nunique() - intensity_df[
        StudyDesignCols.DATASET
    ].nunique()
    if n_unknown_datasets > 0:
        logger.warning(
            f"{n_unknown_datasets} datasets with reporter intensities are not part of the study design"
        )

    intensity_df = intensity_df.merge(
        study_design.samples,
        on=[StudyDesignCols.PLEX, StudyDesignCols.CHANNEL],
        how="inner",
    )

    block_keys = sorted(
        {
            (plex, int(block))
            for plex, block in zip(
                intensity_df[StudyDesignCols.PLEX],
                intensity_df[StudyDesignCols.QUANT_BLOCK],
                strict=True,
            )
        }
    )
    plex_dfs = {
        plex: plex_df for plex, plex_df in intensity_df.groupby(StudyDesignCols.PLEX)
    }

    def _evaluate(block_key):
        return _reference_intensities(plex_dfs[block_key[0]], block_key, study_design)

    if thread_count > 1 and len(block_keys) > 1:
        with multiprocessing.pool.ThreadPool(thread_count) as pool:
            reference_dfs = pool.map(_evaluate, block_keys)
    else:
        reference_dfs = [_evaluate(block_key) for block_key in block_keys]

    if len(reference_dfs) == 0:
        return (
            intensity_df[_SCAN_KEY + [StudyDesignCols.MEASUREMENT]]
            .iloc[:0]
            .assign(**{QuantCols.REFERENCE_INTENSITY: np.nan, QuantCols.RATIO: np.nan})
        )

    reference_df = pd.concat(reference_dfs, ignore_index=True)
    intensity_df = intensity_df.merge(
        reference_df, on=_SCAN_KEY + _GROUP_KEY, how="left"
    )

    intensity = intensity_df[ReporterCols.INTENSITY].to_numpy(dtype=np.float64)
    reference = intensity_df[QuantCols.REFERENCE_INTENSITY].to_numpy(dtype=np.float64)
    valid = np.isfinite(reference) & (reference > 0)
    ratio = np.full(len(intensity_df), np.nan)
    ratio[valid] = intensity[valid] / reference[valid]
    intensity_df[QuantCols.RATIO] = ratio

    n_invalid = int((~valid).sum())
    if n_invalid > 0:
        logger.info(
            f"{n_invalid:,} of {len(valid):,} intensities have no usable reference intensity"
        )

    intensity_df = intensity_df[intensity_df[StudyDesignCols.MEASUREMENT].notna()]
    return intensity_df[
        _SCAN_KEY
        + [StudyDesignCols.MEASUREMENT, QuantCols.REFERENCE_INTENSITY, QuantCols.RATIO]
    ].reset_index(drop=True)


def _summarize(grouped: pd.core.groupby.SeriesGroupBy, summary: str) -> pd.Series:
    if summary == SummaryStatistic.SUM:
        # all missing stays missing
        return grouped.sum(min_count=1)
    if summary == SummaryStatistic.MEDIAN:
        return grouped.median()
    return grouped.mean()


def build_crosstab(
    store: IdentificationStore,
    reporter_table: ReporterIntensityTable,
    study_design: StudyDesign,
    aggregation_key: str | list[str] = PsmCols.ACCESSION,
    *,
    summary: str,
    median_center: bool = False,
    thread_count: int = 1,
) -> pd.DataFrame:
    """Build the quantitative matrix of aggregation keys by measurement names.

    Procedure:
    1.  The active PSMs are joined to their reporter intensities by (scan_id, dataset_id), then to the
        fractions for the plex_id and to the samples for measurement_name, reporter_alias and quant_block.
    2.  Within each (plex_id, quant_block) the reference expression is evaluated per scan and every
        intensity is divided by it.
    3.  Ratios sharing an (aggregation key, measurement_name) pair are summarized.

    Parameters
    ----------
    store : IdentificationStore
        Store whose active PSMs are quantified.

    reporter_table : ReporterIntensityTable
        QC filtered reporter intensities.

    study_design : StudyDesign
        Fractions, samples and references.

    aggregation_key : str | list[str], default "accession"
        PSM column or columns defining the matrix rows, e.g. "accession", "site" or ["peptide", "accession"].
        PSMs with a missing key value, e.g. unmodified peptides when aggregating by site, are excluded.

    summary : str
        "sum" or "median" of the linear ratios, or "mean-log" for the mean of the log2 ratios.

    median_center : bool, default False
        Center every measurement column on its median, by division for linear summaries and by subtraction
        for "mean-log".

    thread_count : int, default 1
        Number of threads used to evaluate the reference expressions.

    Returns
    -------
    pd.DataFrame
        One row per aggregation key value, one column per measurement name. Cells without any
        quantification are missing, never zero.

    Raises
    ------
    SchemaError
        If an aggregation key column is not present in the identification store.
    """
    keys = [aggregation_key] if isinstance(aggregation_key, str) else list(aggregation_key)
    if len(keys) == 0:
        raise SchemaError("Aggregation key must name at least one column")
    if summary not in SummaryStatistic.get_values():
        raise ValueError(
            f"Unknown summary '{summary}', expected one of {SummaryStatistic.get_values()}"
        )

    active = store.active_rows()
    missing = [key for key in keys if key not in active.columns]
    if missing:
        raise SchemaError(
            f"Aggregation key columns {missing} are not present in the identification store"
        )

    psm_keys = active[_SCAN_KEY + keys].drop_duplicates()
    n_missing_key = int(psm_keys[keys].isna().any(axis=1).sum())
    if n_missing_key > 0:
        logger.info(f"Excluding {n_missing_key:,} PSMs without a value for {keys}")
        psm_keys = psm_keys.dropna(subset=keys)

    reporter_df = reporter_table.data
    quantified_scans = psm_keys[_SCAN_KEY].drop_duplicates()
    reporter_df = reporter_df.merge(quantified_scans, on=_SCAN_KEY, how="inner")

    ratio_df = normalize_intensities(reporter_df, study_design, thread_count)
    ratio_df = psm_keys.merge(ratio_df, on=_SCAN_KEY, how="inner")
    if len(ratio_df) == 0:
        logger.warning("No PSM could be matched to a reporter intensity, the crosstab is empty")
        index = pd.MultiIndex.from_tuples([], names=keys) if len(keys) > 1 else pd.Index([], name=keys[0])
        return pd.DataFrame(
            index=index,
            columns=pd.Index(study_design.measurement_names, name=StudyDesignCols.MEASUREMENT),
            dtype=np.float64,
        )

    if summary == SummaryStatistic.MEAN_LOG:
        ratio = ratio_df[QuantCols.RATIO].to_numpy(dtype=np.float64)
        log_ratio = np.full(len(ratio), np.nan)
        positive = ratio > 0
        log_ratio[positive] = np.log2(ratio[positive])
        ratio_df[QuantCols.RATIO] = log_ratio

    grouped = ratio_df.groupby(keys + [StudyDesignCols.MEASUREMENT], sort=True)[
        QuantCols.RATIO
    ]
    crosstab = _summarize(grouped, summary).unstack(StudyDesignCols.MEASUREMENT)
    crosstab = crosstab.reindex(columns=study_design.measurement_names)
    crosstab.columns.name = StudyDesignCols.MEASUREMENT

    if median_center:
        medians = crosstab.median(axis=0, skipna=True)
        if summary == SummaryStatistic.MEAN_LOG:
            crosstab = crosstab - medians
        else:
            crosstab = crosstab / medians

    logger.info(
        f"Crosstab with {len(crosstab):,} {'/'.join(keys)} rows and {crosstab.shape[1]:,} measurements, "
        f"{crosstab.notna().to_numpy().mean() if crosstab.size else 0:.1%} of cells quantified"
    )
    return crosstab
