import logging
from dataclasses import dataclass

import pandas as pd

import alphaplex
from alphaplex.constants.keys import ConfigKeys
from alphaplex.fdr.fdr import ScoreColumn
from alphaplex.fdr.filters import PeptideFdrFilter, ProteinFdrFilter, remove_decoys
from alphaplex.identification.store import IdentificationStore
from alphaplex.inference.parsimony import ParsimoniousSetResolver
from alphaplex.quant.crosstab import build_crosstab
from alphaplex.quant.reporter import ReporterIntensityTable
from alphaplex.quant.study_design import StudyDesign
from alphaplex.reporting.logging import init_logging
from alphaplex.sites.mapper import SiteMapper
from alphaplex.workflow.base import ProcessingPipeline
from alphaplex.workflow.config import (
    USER_DEFINED,
    Config,
    load_default_config,
    validate_config,
)

logger = logging.getLogger()


@dataclass
class PipelineResult:
    """Outputs of a pipeline run.

    Attributes
    ----------
    psms : pd.DataFrame
        Active PSMs with the inferred accession and, if enabled, the site annotations.

    crosstab : pd.DataFrame
        Aggregation key by measurement name matrix.

    diagnostics : pd.DataFrame
        PSM, peptide and accession counts after every filtering stage.

    store : IdentificationStore
        The identification store, including all filtered records.
    """

    psms: pd.DataFrame
    crosstab: pd.DataFrame
    diagnostics: pd.DataFrame
    store: IdentificationStore


class PlexPipeline:
    def __init__(
        self,
        config: dict | Config | None = None,
        log_folder: str | None = None,
    ) -> None:
        """Highest level class running the identification filters and the quantification of a multiplexed study.

        Parameters
        ----------
        config : dict | Config, optional
            Updates to the default configuration.

        log_folder : str, optional
            Folder for the log file. If None, only the console is logged to.

        Raises
        ------
        ConfigError
            If the config contains unknown keys, values of the wrong type or values out of range.
        """
        init_logging(log_folder)
        logger.progress(f"alphaPlex version: {alphaplex.__version__}")

        self.config = load_default_config()
        if config is not None:
            update_config = (
                config if isinstance(config, Config) else Config(config, name=USER_DEFINED)
            )
            self.config.update([update_config], do_print=True)
        validate_config(self.config)

        # handlers are recreated at the configured level, appending to the log file
        init_logging(
            log_folder,
            log_level=self.config[ConfigKeys.GENERAL][ConfigKeys.LOG_LEVEL],
            overwrite=False,
        )

    def _identification_steps(self, sequences: dict[str, str]) -> ProcessingPipeline:
        general_config = self.config[ConfigKeys.GENERAL]
        fdr_config = self.config[ConfigKeys.FDR]
        inference_config = self.config[ConfigKeys.INFERENCE]
        sites_config = self.config[ConfigKeys.SITES]

        fdr_kwargs = {
            "fdr_target": fdr_config[ConfigKeys.FDR_TARGET],
            "min_decoys": fdr_config[ConfigKeys.MIN_DECOYS],
            "decoy_factor": fdr_config[ConfigKeys.DECOY_FACTOR],
            "max_candidates": fdr_config[ConfigKeys.MAX_CANDIDATES],
            "show_progress": fdr_config[ConfigKeys.SHOW_PROGRESS],
        }

        steps = []
        if fdr_config[ConfigKeys.PEPTIDE_LEVEL]:
            steps.append(
                PeptideFdrFilter(
                    score_columns=[
                        ScoreColumn.from_dict(d)
                        for d in fdr_config[ConfigKeys.PEPTIDE_SCORE_COLUMNS]
                    ],
                    **fdr_kwargs,
                )
            )
        if fdr_config[ConfigKeys.PROTEIN_LEVEL]:
            steps.append(
                ProteinFdrFilter(
                    sequences,
                    decoy_prefix=general_config[ConfigKeys.DECOY_PREFIX],
                    **fdr_kwargs,
                )
            )
        steps.append(remove_decoys)
        steps.append(
            ParsimoniousSetResolver(
                unique_only=inference_config[ConfigKeys.UNIQUE_ONLY],
                max_iterations=inference_config[ConfigKeys.MAX_ITERATIONS],
            )
        )
        if sites_config[ConfigKeys.ENABLED]:
            steps.append(
                SiteMapper(
                    sequences,
                    markers={m["symbol"]: m["modification"] for m in sites_config[ConfigKeys.MARKERS]},
                    min_ascore=sites_config[ConfigKeys.MIN_ASCORE],
                    on_no_match=sites_config[ConfigKeys.ON_NO_MATCH],
                )
            )
        return ProcessingPipeline(steps)

    def run(
        self,
        psm_df: pd.DataFrame,
        sequences: dict[str, str],
        reporter_df: pd.DataFrame,
        fractions: pd.DataFrame,
        samples: pd.DataFrame,
        references: pd.DataFrame,
    ) -> PipelineResult:
        """Filter, infer and annotate the PSMs, then aggregate their reporter intensities.

        Parameters
        ----------
        psm_df : pd.DataFrame
            PSM table.

        sequences : dict[str, str]
            Reference protein sequences by accession, decoy sequences are derived by the decoy prefix.

        reporter_df : pd.DataFrame
            Long format reporter intensities.

        fractions, samples, references : pd.DataFrame
            Study design relations.

        Returns
        -------
        PipelineResult
            Annotated PSMs, the crosstab and the diagnostic counts.
        """
        general_config = self.config[ConfigKeys.GENERAL]
        reporter_config = self.config[ConfigKeys.REPORTER]
        quant_config = self.config[ConfigKeys.QUANT]

        # inconsistent study designs fail before any filtering
        study_design = StudyDesign(fractions, samples, references)
        reporter_table = ReporterIntensityTable(reporter_df)

        logger.progress("Filtering identifications")
        store = IdentificationStore(
            psm_df,
            decoy_prefix=general_config[ConfigKeys.DECOY_PREFIX],
            accession_delimiter=general_config[ConfigKeys.ACCESSION_DELIMITER],
        )
        store = self._identification_steps(sequences)(store)

        logger.progress("Quantifying reporter intensities")
        reporter_table = reporter_table.filter(
            min_interference_score=reporter_config[ConfigKeys.MIN_INTERFERENCE_SCORE],
            min_signal_to_noise=reporter_config[ConfigKeys.MIN_SIGNAL_TO_NOISE],
        )
        crosstab = build_crosstab(
            store,
            reporter_table,
            study_design,
            quant_config[ConfigKeys.AGGREGATION_KEY],
            summary=quant_config[ConfigKeys.SUMMARY],
            median_center=quant_config[ConfigKeys.MEDIAN_CENTER],
            thread_count=general_config[ConfigKeys.THREAD_COUNT],
        )

        logger.progress("Done")
        return PipelineResult(
            psms=store.active_rows(),
            crosstab=crosstab,
            diagnostics=store.history_df(),
            store=store,
        )
