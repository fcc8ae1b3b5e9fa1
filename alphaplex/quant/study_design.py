import logging

import pandas as pd

from alphaplex.constants.keys import StudyDesignCols
from alphaplex.exceptions import SchemaError
from alphaplex.quant.expression import Expression, parse_reference
from alphaplex.validation.schemas import (
    fractions_schema,
    references_schema,
    samples_schema,
)

logger = logging.getLogger()

DEFAULT_QUANT_BLOCK = 1


def _with_quant_block(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    if StudyDesignCols.QUANT_BLOCK not in df.columns:
        df[StudyDesignCols.QUANT_BLOCK] = DEFAULT_QUANT_BLOCK
    else:
        df[StudyDesignCols.QUANT_BLOCK] = df[StudyDesignCols.QUANT_BLOCK].fillna(
            DEFAULT_QUANT_BLOCK
        )
    return df


def _raise_on_duplicates(df: pd.DataFrame, key: list[str], relation: str) -> None:
    duplicated = df.duplicated(subset=key)
    if duplicated.any():
        index = df.index[duplicated.to_numpy()][0]
        values = {column: df.loc[index, column] for column in key}
        raise SchemaError(f"Duplicate {relation} entry for {values} (row {index})")


class StudyDesign:
    def __init__(
        self,
        fractions: pd.DataFrame,
        samples: pd.DataFrame,
        references: pd.DataFrame,
    ) -> None:
        """Study design relating datasets, reporter channels and reference definitions.

        All consistency checks run on construction, before any intensity is touched.

        Parameters
        ----------
        fractions : pd.DataFrame
            dataset_id to plex_id, one row per dataset.

        samples : pd.DataFrame
            plex_id, channel_id, measurement_name, reporter_alias and an optional quant_block (default 1).
            Channels with a missing measurement_name are only available as reference.

        references : pd.DataFrame
            plex_id, optional quant_block (default 1) and the reference expression over reporter aliases.

        Raises
        ------
        SchemaError
            If a relation misses columns, contains duplicate keys, or a reference expression is malformed or
            refers to an alias not present in the samples of its plex.
        """
        fractions = fractions.copy()
        samples = _with_quant_block(samples)
        references = _with_quant_block(references)

        fractions_schema.validate(fractions)
        samples_schema.validate(samples)
        references_schema.validate(references)

        _raise_on_duplicates(fractions, [StudyDesignCols.DATASET], "fractions")
        _raise_on_duplicates(
            samples, [StudyDesignCols.PLEX, StudyDesignCols.CHANNEL], "samples"
        )
        _raise_on_duplicates(
            samples, [StudyDesignCols.PLEX, StudyDesignCols.ALIAS], "samples"
        )
        _raise_on_duplicates(
            references, [StudyDesignCols.PLEX, StudyDesignCols.QUANT_BLOCK], "references"
        )

        self.fractions = fractions.reset_index(drop=True)
        self.samples = samples.reset_index(drop=True)
        self.references = references.reset_index(drop=True)
        self.expressions = self._parse_references()
        self._check_blocks_have_reference()

        logger.info(
            f"Study design with {len(self.fractions):,} datasets, "
            f"{self.fractions[StudyDesignCols.PLEX].nunique():,} plexes and "
            f"{self.samples[StudyDesignCols.MEASUREMENT].nunique():,} measurements"
        )

    def _parse_references(self) -> dict[tuple[str, int], Expression]:
        aliases_per_plex = (
            self.samples.groupby(StudyDesignCols.PLEX)[StudyDesignCols.ALIAS]
            .agg(set)
            .to_dict()
        )

        expressions = {}
        for index, row in self.references.iterrows():
            plex = row[StudyDesignCols.PLEX]
            block = int(row[StudyDesignCols.QUANT_BLOCK])
            if plex not in aliases_per_plex:
                raise SchemaError(
                    f"Reference for plex '{plex}' (row {index}) has no samples in this plex"
                )

            expression = parse_reference(row[StudyDesignCols.REFERENCE])
            unknown = expression.aliases() - aliases_per_plex[plex]
            if unknown:
                raise SchemaError(
                    f"Reference '{row[StudyDesignCols.REFERENCE]}' for plex '{plex}', quant block {block} "
                    f"(row {index}) refers to unknown reporter aliases {sorted(unknown)}"
                )
            expressions[(plex, block)] = expression
        return expressions

    def _check_blocks_have_reference(self) -> None:
        blocks = self.samples[
            [StudyDesignCols.PLEX, StudyDesignCols.QUANT_BLOCK]
        ].drop_duplicates()
        for index, plex, block in zip(
            blocks.index,
            blocks[StudyDesignCols.PLEX],
            blocks[StudyDesignCols.QUANT_BLOCK],
            strict=True,
        ):
            if (plex, int(block)) not in self.expressions:
                raise SchemaError(
                    f"No reference defined for plex '{plex}', quant block {block} (samples row {index})"
                )

    @property
    def measurement_names(self) -> list[str]:
        """Measurement names in order of first appearance in the samples."""
        names = self.samples[StudyDesignCols.MEASUREMENT].dropna()
        return list(dict.fromkeys(names))

    def reference(self, plex_id: str, quant_block: int = DEFAULT_QUANT_BLOCK) -> Expression:
        """Reference expression of a (plex_id, quant_block) group."""
        return self.expressions[(plex_id, int(quant_block))]
