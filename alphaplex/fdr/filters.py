"""Processing steps applying FDR controlled filters to an identification store."""

import logging

import pandas as pd

from alphaplex.constants.keys import FdrLevel, PsmCols
from alphaplex.fdr.fdr import (
    HIGHER,
    LOWER,
    FdrResult,
    ScoreColumn,
    peptides_per_1000aa,
    search_thresholds,
)
from alphaplex.identification.store import Filter, IdentificationStore
from alphaplex.workflow.base import ProcessingStep

logger = logging.getLogger()

DEFAULT_PEPTIDE_SCORE_COLUMNS = [
    ScoreColumn(PsmCols.QVALUE, LOWER),
    ScoreColumn(PsmCols.MASS_ERROR_PPM, LOWER, absolute=True),
]


class _FdrFilter(ProcessingStep):
    level = ""

    def __init__(
        self,
        fdr_target: float = 0.01,
        min_decoys: int = 5,
        decoy_factor: float = 1.0,
        max_candidates: int | None = None,
        show_progress: bool = False,
    ) -> None:
        super().__init__()
        self.fdr_target = fdr_target
        self.min_decoys = min_decoys
        self.decoy_factor = decoy_factor
        self.max_candidates = max_candidates
        self.show_progress = show_progress

        self.result: FdrResult | None = None

    def _search(
        self, df: pd.DataFrame, score_columns: list[ScoreColumn], unit_columns: list[str]
    ) -> FdrResult:
        return search_thresholds(
            df,
            score_columns,
            unit_columns=unit_columns,
            fdr_target=self.fdr_target,
            decoy_factor=self.decoy_factor,
            min_decoys=self.min_decoys,
            max_candidates=self.max_candidates,
            level=self.level,
            show_progress=self.show_progress,
        )


class PeptideFdrFilter(_FdrFilter):
    level = FdrLevel.PEPTIDE

    def __init__(
        self,
        score_columns: list[ScoreColumn] | None = None,
        **kwargs,
    ) -> None:
        """Filter PSMs by score thresholds controlling the FDR of unique peptide sequences.

        Each peptide is represented by its best PSM, so a peptide passes if any of its PSMs does.
        The chosen thresholds are applied to all PSMs in the store.

        Parameters
        ----------
        score_columns : list[ScoreColumn], optional
            Columns to search thresholds for. Defaults to the peptide q-value and the absolute ppm mass error.

        **kwargs
            fdr_target, min_decoys, decoy_factor, max_candidates and show_progress.
        """
        super().__init__(**kwargs)
        self.score_columns = (
            DEFAULT_PEPTIDE_SCORE_COLUMNS if score_columns is None else score_columns
        )

    def validate(self, store: IdentificationStore) -> bool:
        missing = [
            s.column for s in self.score_columns if s.column not in store.records.columns
        ]
        if missing:
            logger.error(f"PSM table is missing score columns {missing}")
            return False
        return True

    def forward(self, store: IdentificationStore) -> IdentificationStore:
        active = store.active_rows()
        result = self._search(active, self.score_columns, [PsmCols.PEPTIDE])
        self.result = result

        store.apply_filter(Filter(f"fdr_{self.level}_level", result.passes))
        return store


class ProteinFdrFilter(_FdrFilter):
    level = FdrLevel.ACCESSION

    def __init__(
        self,
        sequences: dict[str, str],
        decoy_prefix: str = "XXX_",
        **kwargs,
    ) -> None:
        """Filter accessions by peptides per 1000 residues, controlling the FDR of accessions.

        Normalizing the peptide count by protein length avoids penalizing short proteins.

        Parameters
        ----------
        sequences : dict[str, str]
            Reference protein sequences by accession, used for the protein length.

        decoy_prefix : str, default "XXX_"
            Prefix of decoy accessions.

        **kwargs
            fdr_target, min_decoys, decoy_factor, max_candidates and show_progress.
        """
        super().__init__(**kwargs)
        self.sequences = sequences
        self.decoy_prefix = decoy_prefix
        self.score_columns = [ScoreColumn(PsmCols.PEPTIDES_PER_1000AA, HIGHER)]

    def validate(self, store: IdentificationStore) -> bool:
        if len(self.sequences) == 0:
            logger.error("No reference sequences provided for protein level FDR")
            return False
        return True

    def forward(self, store: IdentificationStore) -> IdentificationStore:
        protein_df = peptides_per_1000aa(
            store.active_rows(), self.sequences, self.decoy_prefix
        )
        result = self._search(protein_df, self.score_columns, [PsmCols.ACCESSION])
        self.result = result

        passing = set(protein_df.loc[result.passes(protein_df), PsmCols.ACCESSION])
        store.annotate(
            PsmCols.PEPTIDES_PER_1000AA,
            store.records[PsmCols.ACCESSION].map(
                protein_df.set_index(PsmCols.ACCESSION)[PsmCols.PEPTIDES_PER_1000AA]
            ),
        )
        store.apply_filter(
            Filter(
                f"fdr_{self.level}_level",
                lambda records: records[PsmCols.ACCESSION].isin(passing).to_numpy(),
            )
        )
        logger.info(f"{len(passing):,} of {len(protein_df):,} accessions pass")
        return store


def remove_decoys(store: IdentificationStore) -> IdentificationStore:
    """Deactivate all decoy PSMs."""
    return store.apply_filter(
        Filter("remove_decoys", lambda records: ~records[PsmCols.DECOY].to_numpy(dtype=bool))
    )
