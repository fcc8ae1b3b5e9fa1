"""Column schemas for the input tables.

A schema lists the columns a table must or may carry together with their dtype. Validation happens in place:
present columns are cast, so downstream code can rely on the dtypes.
"""

import logging

import numpy as np
import pandas as pd

from alphaplex.exceptions import SchemaError

logger = logging.getLogger()


class Column:
    required = True

    def __init__(self, name: str, dtype, nullable: bool = True):
        """Column of a validated table.

        Parameters
        ----------
        name : str
            Column name.

        dtype : type
            numpy or python type the column is cast to.

        nullable : bool, default True
            Whether missing values are allowed. Checked before casting, as casting to str turns them into text.
        """
        self.name = name
        self.dtype = dtype
        self.nullable = nullable

    def cast(self, df: pd.DataFrame) -> None:
        """Cast the column in place.

        Raises
        ------
        SchemaError
            If the values can not be represented by the dtype.
        """
        if df[self.name].dtype == self.dtype:
            return
        try:
            df[self.name] = df[self.name].astype(self.dtype)
        except (TypeError, ValueError) as e:
            raise SchemaError(
                f"Column '{self.name}' can not be cast to {np.dtype(self.dtype).name}",
                detail_msg=str(e),
            ) from e


class Required(Column):
    """Column that must be present."""


class Optional(Column):
    """Column that is cast if present and ignored otherwise."""

    required = False


class Schema:
    def __init__(self, name: str, columns: list[Column]):
        self.name = name
        self.schema = columns
        if not all(isinstance(column, Column) for column in columns):
            raise ValueError(f"Schema {name} must only contain Column objects")

    @property
    def columns(self) -> list[str]:
        return [column.name for column in self.schema]

    def validate(self, df: pd.DataFrame, warn_on_critical_values: bool = False) -> None:
        """Cast the columns of `df` in place.

        Parameters
        ----------
        df : pd.DataFrame
            Table to validate.

        warn_on_critical_values : bool, default False
            Log a warning for every float column containing NaN or infinite values.

        Raises
        ------
        SchemaError
            If a required column is missing, a non nullable column has missing values or a column can not be cast.
        """
        missing = [
            column.name
            for column in self.schema
            if column.required and column.name not in df.columns
        ]
        if missing:
            raise SchemaError(
                f"{self.name} table is missing the required columns {missing}"
            )

        for column in self.schema:
            if column.name not in df.columns:
                continue
            if not column.nullable:
                _raise_on_missing_values(df, column.name, self.name)
            column.cast(df)

        if warn_on_critical_values:
            for name in df.columns:
                if pd.api.types.is_float_dtype(df[name]):
                    self._warn_on_critical_values(df[name])

    def _warn_on_critical_values(self, values: pd.Series) -> None:
        n = len(values)
        for label, count in [
            ("NaNs", int(values.isna().sum())),
            ("Infs", int(np.isinf(values.to_numpy(dtype=np.float64, na_value=np.nan)).sum())),
        ]:
            if count > 0:
                logger.warning(
                    f"{self.name}: {values.name} has {count} {label} ({count / n:.2%} of {n})"
                )


def _raise_on_missing_values(df: pd.DataFrame, column: str, table: str) -> None:
    missing = df[column].isna().to_numpy()
    if missing.any():
        index = df.index[missing][0]
        raise SchemaError(
            f"{table} table has {int(missing.sum())} missing values in column '{column}' (row {index})"
        )
