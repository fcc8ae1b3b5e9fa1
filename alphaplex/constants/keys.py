class ConstantsClass(type):
    """A metaclass for classes that should only contain string constants."""

    def __setattr__(self, name, value):
        raise TypeError("Constants class cannot be modified")

    def get_values(cls):
        """Get all user-defined string values of the class."""
        return [
            value
            for key, value in cls.__dict__.items()
            if not key.startswith("__") and isinstance(value, str)
        ]


class PsmCols(metaclass=ConstantsClass):
    """String constants for accessing columns of the identification (PSM) table."""

    SCAN = "scan_id"
    DATASET = "dataset_id"
    PEPTIDE = "peptide"
    ACCESSION = "accession"
    DECOY = "decoy"
    QVALUE = "pep_qvalue"
    MASS_ERROR_PPM = "mass_error_ppm"
    ASCORE = "ascore"

    # peak selection correction
    EXPERIMENTAL_MZ = "experimental_mz"
    CALCULATED_MZ = "calculated_mz"
    CHARGE = "charge"

    # derived
    SEQUENCE = "sequence"
    PEPTIDES_PER_1000AA = "peptides_per_1000aa"
    ACCESSION_GROUP = "accession_group"


class SiteCols(metaclass=ConstantsClass):
    """String constants for the site annotation columns."""

    SITE = "site"
    START = "site_start"
    POSITIONS = "site_positions"
    RESIDUES = "site_residues"
    MODIFICATIONS = "site_modifications"
    AMBIGUOUS = "site_ambiguous"
    STATUS = "site_status"
    CONFIDENT = "site_confident"


class SiteStatus(metaclass=ConstantsClass):
    """String constants for the outcome of mapping a PSM onto its reference sequence."""

    MAPPED = "mapped"
    UNMODIFIED = "unmodified"
    UNRESOLVED = "unresolved"
    NO_MATCH = "no_match"


class ReporterCols(metaclass=ConstantsClass):
    """String constants for accessing columns of the reporter intensity table."""

    SCAN = PsmCols.SCAN
    DATASET = PsmCols.DATASET
    CHANNEL = "channel_id"
    INTENSITY = "intensity"
    INTERFERENCE_SCORE = "interference_score"
    SIGNAL_TO_NOISE = "signal_to_noise"


class StudyDesignCols(metaclass=ConstantsClass):
    """String constants for accessing columns of the study design relations."""

    DATASET = PsmCols.DATASET
    PLEX = "plex_id"
    CHANNEL = ReporterCols.CHANNEL
    MEASUREMENT = "measurement_name"
    ALIAS = "reporter_alias"
    QUANT_BLOCK = "quant_block"
    REFERENCE = "reference"


class QuantCols(metaclass=ConstantsClass):
    """String constants for columns created while building the crosstab."""

    REFERENCE_INTENSITY = "reference_intensity"
    RATIO = "ratio"


class SummaryStatistic(metaclass=ConstantsClass):
    """String constants for aggregating normalized intensities."""

    SUM = "sum"
    MEDIAN = "median"
    MEAN_LOG = "mean-log"


class FdrLevel(metaclass=ConstantsClass):
    """String constants for the granularity at which the FDR is estimated."""

    PSM = "psm"
    PEPTIDE = "peptide"
    ACCESSION = "accession"


class NoMatchPolicy(metaclass=ConstantsClass):
    RAISE = "raise"
    FLAG = "flag"


class ConfigKeys(metaclass=ConstantsClass):
    """String constants for accessing the config."""

    GENERAL = "general"
    LOG_LEVEL = "log_level"
    DECOY_PREFIX = "decoy_prefix"
    ACCESSION_DELIMITER = "accession_delimiter"
    THREAD_COUNT = "thread_count"

    FDR = "fdr"
    PEPTIDE_LEVEL = "peptide_level"
    PROTEIN_LEVEL = "protein_level"
    FDR_TARGET = "fdr_target"
    MIN_DECOYS = "min_decoys"
    DECOY_FACTOR = "decoy_factor"
    MAX_CANDIDATES = "max_candidates"
    PEPTIDE_SCORE_COLUMNS = "peptide_score_columns"
    SHOW_PROGRESS = "show_progress"

    INFERENCE = "inference"
    UNIQUE_ONLY = "unique_only"
    MAX_ITERATIONS = "max_iterations"

    SITES = "sites"
    ENABLED = "enabled"
    MARKERS = "markers"
    MIN_ASCORE = "min_ascore"
    ON_NO_MATCH = "on_no_match"

    REPORTER = "reporter"
    MIN_INTERFERENCE_SCORE = "min_interference_score"
    MIN_SIGNAL_TO_NOISE = "min_signal_to_noise"

    QUANT = "quant"
    AGGREGATION_KEY = "aggregation_key"
    SUMMARY = "summary"
    MEDIAN_CENTER = "median_center"
