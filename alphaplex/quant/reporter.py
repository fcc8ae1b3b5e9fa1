import logging

import numpy as np
import pandas as pd

from alphaplex.constants.keys import ReporterCols
from alphaplex.exceptions import SchemaError
from alphaplex.validation.schemas import reporter_schema

logger = logging.getLogger()


class ReporterIntensityTable:
    def __init__(self, reporter_df: pd.DataFrame) -> None:
        """Reporter ion intensities per PSM and channel together with their QC metrics.

        The table is immutable, filtering returns a new table.

        Parameters
        ----------
        reporter_df : pd.DataFrame
            Long format table with columns scan_id, dataset_id, channel_id, intensity,
            interference_score and signal_to_noise.

        Raises
        ------
        SchemaError
            If columns are missing, values are out of range or a (scan_id, dataset_id, channel_id) occurs twice.
        """
        df = reporter_df.copy()
        reporter_schema.validate(df)
        _check_ranges(df)

        key = [ReporterCols.DATASET, ReporterCols.SCAN, ReporterCols.CHANNEL]
        duplicated = df.duplicated(subset=key)
        if duplicated.any():
            row = df[duplicated].iloc[0]
            raise SchemaError(
                f"Duplicate reporter intensity for {dict(row[key])} (row {df.index[duplicated][0]})"
            )

        self._df = df.reset_index(drop=True)

    @classmethod
    def _from_validated(cls, df: pd.DataFrame) -> "ReporterIntensityTable":
        table = cls.__new__(cls)
        table._df = df
        return table

    @classmethod
    def from_wide(
        cls,
        wide_df: pd.DataFrame,
        channel_columns: dict[str, str],
        signal_to_noise_columns: dict[str, str] | None = None,
        interference_column: str = ReporterCols.INTERFERENCE_SCORE,
    ) -> "ReporterIntensityTable":
        """Build the table from a wide table with one intensity column per channel, as written by MASIC.

        Parameters
        ----------
        wide_df : pd.DataFrame
            Table with scan_id, dataset_id, an interference column and one column per channel.

        channel_columns : dict[str, str]
            Intensity column name to channel_id, e.g. ``{"Ion_126.128": "126"}``.

        signal_to_noise_columns : dict[str, str], optional
            Signal to noise column name to channel_id. Missing signal to noise values are stored as NaN.

        interference_column : str, default "interference_score"
            Column holding the precursor interference score of the scan.

        Returns
        -------
        ReporterIntensityTable
            Long format table; missing intensities are dropped.
        """
        id_columns = [ReporterCols.SCAN, ReporterCols.DATASET]
        long_df = wide_df.melt(
            id_vars=id_columns + [interference_column],
            value_vars=list(channel_columns),
            var_name=ReporterCols.CHANNEL,
            value_name=ReporterCols.INTENSITY,
        )
        long_df[ReporterCols.CHANNEL] = long_df[ReporterCols.CHANNEL].map(channel_columns)
        long_df = long_df.rename(
            columns={interference_column: ReporterCols.INTERFERENCE_SCORE}
        )

        if signal_to_noise_columns:
            s2n_df = wide_df.melt(
                id_vars=id_columns,
                value_vars=list(signal_to_noise_columns),
                var_name=ReporterCols.CHANNEL,
                value_name=ReporterCols.SIGNAL_TO_NOISE,
            )
            s2n_df[ReporterCols.CHANNEL] = s2n_df[ReporterCols.CHANNEL].map(
                signal_to_noise_columns
            )
            long_df = long_df.merge(
                s2n_df, on=id_columns + [ReporterCols.CHANNEL], how="left"
            )
        else:
            long_df[ReporterCols.SIGNAL_TO_NOISE] = np.nan

        long_df = long_df.dropna(subset=[ReporterCols.INTENSITY])
        return cls(long_df)

    @property
    def data(self) -> pd.DataFrame:
        """Copy of the underlying long format table."""
        return self._df.copy()

    def __len__(self) -> int:
        return len(self._df)

    def filter(
        self, min_interference_score: float = 0.0, min_signal_to_noise: float = 0.0
    ) -> "ReporterIntensityTable":
        """Return the rows meeting both QC thresholds as a new table.

        A threshold of 0 disables filtering on that metric. Intensities without a signal to noise ratio pass the
        signal to noise threshold.

        Parameters
        ----------
        min_interference_score : float, default 0.0
            Minimum interference score, 1 means no interference with co-isolated precursors.

        min_signal_to_noise : float, default 0.0
            Minimum signal to noise ratio of the reporter ion.

        Returns
        -------
        ReporterIntensityTable
            Filtered table.
        """
        mask = np.ones(len(self._df), dtype=bool)
        if min_interference_score > 0:
            mask &= (
                self._df[ReporterCols.INTERFERENCE_SCORE].to_numpy() >= min_interference_score
            )
        if min_signal_to_noise > 0:
            signal_to_noise = self._df[ReporterCols.SIGNAL_TO_NOISE].to_numpy()
            # intensities without a measured S/N are not filtered on it
            unmeasured = np.isnan(signal_to_noise)
            if unmeasured.any():
                logger.warning(
                    f"{unmeasured.sum():,} of {len(unmeasured):,} intensities have no signal to noise ratio "
                    f"and are kept by the S/N >= {min_signal_to_noise} filter"
                )
            mask &= unmeasured | (signal_to_noise >= min_signal_to_noise)

        logger.info(
            f"Reporter QC filter (interference >= {min_interference_score}, S/N >= {min_signal_to_noise}): "
            f"{mask.sum():,} of {len(mask):,} intensities retained"
        )
        return self._from_validated(self._df[mask].reset_index(drop=True))


def _check_ranges(df: pd.DataFrame) -> None:
    checks = [
        (ReporterCols.INTENSITY, df[ReporterCols.INTENSITY] < 0, ">= 0"),
        (
            ReporterCols.INTERFERENCE_SCORE,
            (df[ReporterCols.INTERFERENCE_SCORE] < 0)
            | (df[ReporterCols.INTERFERENCE_SCORE] > 1),
            "in [0, 1]",
        ),
        (ReporterCols.SIGNAL_TO_NOISE, df[ReporterCols.SIGNAL_TO_NOISE] < 0, ">= 0"),
    ]
    for column, invalid, expected in checks:
        if invalid.any():
            index = df.index[invalid.to_numpy()][0]
            raise SchemaError(
                f"{column} must be {expected}, found {df.loc[index, column]} (row {index})"
            )
