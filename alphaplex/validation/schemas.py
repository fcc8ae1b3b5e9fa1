import numpy as np

from alphaplex.constants.keys import PsmCols, ReporterCols, StudyDesignCols
from alphaplex.validation.base import Optional, Required, Schema

psm_schema = Schema(
    "psm",
    [
        Required(PsmCols.SCAN, np.int64, nullable=False),
        Required(PsmCols.DATASET, str, nullable=False),
        Required(PsmCols.PEPTIDE, str, nullable=False),
        Required(PsmCols.ACCESSION, str, nullable=False),
        Optional(PsmCols.DECOY, bool),
        Optional(PsmCols.QVALUE, np.float64),
        Optional(PsmCols.MASS_ERROR_PPM, np.float64),
        Optional(PsmCols.ASCORE, np.float64),
    ],
)

reporter_schema = Schema(
    "reporter_intensity",
    [
        Required(ReporterCols.SCAN, np.int64, nullable=False),
        Required(ReporterCols.DATASET, str, nullable=False),
        Required(ReporterCols.CHANNEL, str, nullable=False),
        Required(ReporterCols.INTENSITY, np.float64),
        Required(ReporterCols.INTERFERENCE_SCORE, np.float64),
        Required(ReporterCols.SIGNAL_TO_NOISE, np.float64),
    ],
)

fractions_schema = Schema(
    "fractions",
    [
        Required(StudyDesignCols.DATASET, str, nullable=False),
        Required(StudyDesignCols.PLEX, str, nullable=False),
    ],
)

samples_schema = Schema(
    "samples",
    [
        Required(StudyDesignCols.PLEX, str, nullable=False),
        Required(StudyDesignCols.CHANNEL, str, nullable=False),
        # channels without measurement name only serve as reference
        Required(StudyDesignCols.MEASUREMENT, object),
        Required(StudyDesignCols.ALIAS, str, nullable=False),
        Optional(StudyDesignCols.QUANT_BLOCK, np.int64),
    ],
)

references_schema = Schema(
    "references",
    [
        Required(StudyDesignCols.PLEX, str, nullable=False),
        Required(StudyDesignCols.REFERENCE, str, nullable=False),
        Optional(StudyDesignCols.QUANT_BLOCK, np.int64),
    ],
)
