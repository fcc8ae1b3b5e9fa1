"""In-memory identification store holding PSMs and the filters layered over them."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import pandas as pd

from alphaplex.constants.keys import PsmCols
from alphaplex.exceptions import SchemaError
from alphaplex.identification.preprocessing import (
    assign_decoys,
    clean_sequence,
    split_accessions,
    strip_flanking_residues,
)
from alphaplex.reporting.logging import log_counts
from alphaplex.validation.schemas import psm_schema

logger = logging.getLogger()


@dataclass(frozen=True)
class Filter:
    """Named row predicate.

    The predicate receives the full, unfiltered record table and returns a boolean mask aligned to its index.
    """

    name: str
    predicate: Callable[[pd.DataFrame], pd.Series | np.ndarray]

    def __call__(self, records: pd.DataFrame) -> np.ndarray:
        mask = np.asarray(self.predicate(records), dtype=bool)
        if mask.shape != (len(records),):
            raise ValueError(
                f"Filter '{self.name}' returned a mask of shape {mask.shape}, expected ({len(records)},)"
            )
        return mask


class IdentificationStore:
    def __init__(
        self,
        psm_df: pd.DataFrame,
        decoy_prefix: str = "XXX_",
        accession_delimiter: str = ";",
    ) -> None:
        """Store for peptide-spectrum matches with non-destructive, cumulative row filters.

        The full record set is kept for the lifetime of the store. Filters are predicates over the full
        records and are combined at read time, so the active rows do not depend on the order in which filters
        were applied.

        PSMs matching multiple accessions, either as delimiter separated values or as repeated rows,
        are stored as one row per (PSM, accession) candidate.

        Parameters
        ----------
        psm_df : pd.DataFrame
            PSM table with at least scan_id, dataset_id, peptide and accession columns.

        decoy_prefix : str, default "XXX_"
            Prefix used to label decoys if the table has no decoy column.

        accession_delimiter : str, default ";"
            Delimiter separating multiple accessions of a single PSM.

        """
        if len(psm_df) == 0:
            raise SchemaError("PSM table is empty")

        self.decoy_prefix = decoy_prefix
        self.accession_delimiter = accession_delimiter

        records = assign_decoys(psm_df, decoy_prefix, accession_delimiter).copy()
        psm_schema.validate(records, warn_on_critical_values=True)

        records[PsmCols.PEPTIDE] = records[PsmCols.PEPTIDE].map(strip_flanking_residues)
        records[PsmCols.SEQUENCE] = records[PsmCols.PEPTIDE].map(clean_sequence)
        records[PsmCols.ACCESSION] = split_accessions(
            records[PsmCols.ACCESSION], accession_delimiter
        )
        records = records.explode(PsmCols.ACCESSION)
        # blank accessions explode to missing values
        blank = records[PsmCols.ACCESSION].isna()
        if blank.any():
            logger.warning(f"Removing {int(blank.sum()):,} PSMs with a blank accession")
            records = records[~blank]
        records = records.drop_duplicates(
            subset=[PsmCols.DATASET, PsmCols.SCAN, PsmCols.PEPTIDE, PsmCols.ACCESSION]
        ).reset_index(drop=True)

        self._records = records
        self._filters: list[Filter] = []
        self.history: list[dict] = []
        self._record_history("input", self.show())

    @property
    def records(self) -> pd.DataFrame:
        """The full, unfiltered record table."""
        return self._records

    @property
    def filters(self) -> list[str]:
        """Names of the applied filters in the order they were applied."""
        return [f.name for f in self._filters]

    def apply_filter(
        self,
        predicate: Callable[[pd.DataFrame], pd.Series | np.ndarray] | Filter,
        name: str | None = None,
    ) -> "IdentificationStore":
        """Narrow the active rows by an additional predicate.

        Rows failing a previously applied filter stay inactive. Applying the same filter twice does not
        change the active rows.

        Parameters
        ----------
        predicate : callable or Filter
            Callable receiving the full record table and returning a boolean mask.

        name : str, optional
            Name used in the diagnostics. Defaults to the name of the callable.

        Returns
        -------
        IdentificationStore
            The store itself, to allow chaining.
        """
        if not isinstance(predicate, Filter):
            if name is None:
                name = getattr(predicate, "__name__", f"filter_{len(self._filters)}")
            predicate = Filter(name, predicate)

        # evaluate once to fail early on malformed predicates
        predicate(self._records)
        self._filters.append(predicate)

        counts = self.show()
        self._record_history(predicate.name, counts)
        log_counts(predicate.name, counts)
        return self

    def active_mask(self, exclude: list[str] | None = None) -> np.ndarray:
        """Combined mask of the applied filters, skipping the filters named in `exclude`."""
        exclude = exclude or []
        mask = np.ones(len(self._records), dtype=bool)
        for f in self._filters:
            if f.name not in exclude:
                mask &= f(self._records)
        return mask

    def active_rows(self, exclude: list[str] | None = None) -> pd.DataFrame:
        """Return a copy of the rows satisfying all applied filters, except those named in `exclude`."""
        return self._records[self.active_mask(exclude)].copy()

    def show(self) -> dict[str, int]:
        """Return diagnostic counts of the active rows."""
        active = self._records[self.active_mask()]
        return {
            "psms": len(active.drop_duplicates(subset=[PsmCols.DATASET, PsmCols.SCAN])),
            "peptides": active[PsmCols.PEPTIDE].nunique(),
            "accessions": active[PsmCols.ACCESSION].nunique(),
        }

    def annotate(self, column: str, values: pd.Series) -> None:
        """Attach a per-row annotation, aligned by the record index.

        Rows missing from `values` are set to missing. An existing annotation column is replaced.
        """
        if column in psm_schema.columns:
            raise ValueError(f"Column '{column}' is an input column and can not be annotated")
        self._records[column] = values.reindex(self._records.index)

    def history_df(self) -> pd.DataFrame:
        """Diagnostic counts after every filtering stage as a table."""
        return pd.DataFrame(self.history)

    def _record_history(self, stage: str, counts: dict[str, int]) -> None:
        self.history.append({"stage": stage, **counts})

    def __repr__(self) -> str:
        counts = ", ".join(f"{k}={v}" for k, v in self.show().items())
        return f"<IdentificationStore {counts}, filters={self.filters}>"
