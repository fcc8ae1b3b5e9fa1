"""Errors raised by alphaPlex.

`BusinessError` subclasses describe problems with the data being processed, `UserError` subclasses problems
with what the user provided. Both carry an error code, a generic message, the specific message of the
occurrence and an optional detail message with hints.
"""


class CustomError(Exception):
    """Base class of all alphaPlex errors."""

    _error_code = ""
    _msg = ""
    _detail_msg = ""

    def __init__(self, msg: str = "", detail_msg: str = ""):
        self._user_msg = msg
        if detail_msg:
            self._detail_msg = detail_msg
        super().__init__(msg or self._msg)

    @property
    def error_code(self) -> str:
        return self._error_code

    @property
    def msg(self) -> str:
        return self._msg

    @property
    def detail_msg(self) -> str:
        return self._detail_msg

    def __str__(self):
        lines = [f"{self._error_code}: {self._msg}"]
        if self._user_msg:
            lines.append(f"'{self._user_msg}'")
        if self._detail_msg:
            lines.append(self._detail_msg)
        return "\n".join(lines)


class BusinessError(CustomError):
    """The input data does not allow to complete the task."""


class UserError(CustomError):
    """A user provided input, e.g. the study design, is inconsistent."""


class InsufficientDataError(BusinessError):
    """Too few decoys or PSMs to estimate the FDR or to resolve accessions."""

    _error_code = "INSUFFICIENT_DATA"

    _msg = "Too few identifications to control the false discovery rate."

    _detail_msg = """Without enough decoy identifications the FDR can not be estimated and filtering would be uncontrolled.

    1. Check that the search engine exported decoy PSMs.
    2. Check that `general.decoy_prefix` matches the decoy accessions.
    3. Lower `fdr.min_decoys` only for data sets known to be small."""


class NoMatchError(BusinessError):
    """A peptide does not occur verbatim in the sequence of its accession."""

    _error_code = "NO_MATCH"

    _msg = "Peptide not found in reference sequence."

    _detail_msg = """Check that the reference sequences are the ones used for the database search,
    or set `sites.on_no_match` to `flag` to mark these PSMs instead of stopping."""


class SchemaError(UserError):
    """An input table or study design relation is missing columns or is inconsistent."""

    _error_code = "SCHEMA_ERROR"

    _msg = "Input table does not match the expected schema."


class ConfigError(BusinessError):
    """A config value is unknown, of the wrong type or out of range."""

    _error_code = "CONFIG_ERROR"

    _msg = "Malformed or invalid configuration."

    def __init__(
        self,
        key: str = "",
        value: str = "",
        config_name: str = "",
        detail_msg: str = "",
    ):
        self.key = key
        self.value = value
        self.config_name = config_name
        origin = f" in config '{config_name}'" if config_name else ""
        super().__init__(f"{key}={value!r}{origin}", detail_msg)


class KeyAddedConfigError(ConfigError):
    """A config update introduces a key that does not exist in the default config."""

    def __init__(self, key: str, value: str, config_name: str):
        super().__init__(
            key,
            value,
            config_name,
            detail_msg=f"Unknown key '{key}', updates can only change keys of the default config.",
        )


class TypeMismatchConfigError(ConfigError):
    """A config update changes the type of a value."""

    def __init__(self, key: str, value: str, config_name: str, extra_msg: str):
        super().__init__(
            key,
            value,
            config_name,
            detail_msg=f"Types of values must match the default config: {extra_msg}",
        )


class AmbiguousSiteWarning(UserWarning):
    """A peptide matches its reference sequence at more than one position.

    Processing continues with the lowest offset and the PSM is flagged as ambiguous.
    """
