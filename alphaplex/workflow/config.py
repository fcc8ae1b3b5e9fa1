"""Configuration of an alphaPlex run.

The shipped `default.yaml` defines every key and the type of its value. User configs can only change
existing values: unknown keys and values of a different type are rejected. Configs are applied in order,
so later configs win. Lists are replaced as a whole.
"""

import json
import logging
import os
from collections import UserDict
from copy import deepcopy
from dataclasses import dataclass
from typing import Any

import yaml

from alphaplex.constants.keys import ConfigKeys, NoMatchPolicy, SummaryStatistic
from alphaplex.exceptions import (
    ConfigError,
    KeyAddedConfigError,
    TypeMismatchConfigError,
)

logger = logging.getLogger()

LOG_LEVELS = ["DEBUG", "INFO", "PROGRESS", "WARNING", "ERROR", "CRITICAL"]

DEFAULT = "default"
USER_DEFINED = "user defined"

DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "constants", "default.yaml"
)


@dataclass(frozen=True)
class _Change:
    key: str
    value: Any
    origin: str


class Config(UserDict):
    """Nested dict of config sections with yaml and json IO, updated only through `update`."""

    def __init__(self, data: dict = None, name: str = DEFAULT) -> None:
        # UserDict.__init__ would route through the overwritten update
        self.data = {**data} if data is not None else {}
        self.name = name

    def from_yaml(self, path: str) -> None:
        with open(path) as f:
            self.data = yaml.safe_load(f)

    def from_json(self, path: str) -> None:
        with open(path) as f:
            self.data = json.load(f)

    def to_yaml(self, path: str) -> None:
        with open(path, "w") as f:
            yaml.dump(self.data, f, sort_keys=False)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.data, f)

    def __setitem__(self, key, item):
        raise NotImplementedError("Use update() to change config values.")

    def __delitem__(self, key):
        raise NotImplementedError("Config keys can not be removed.")

    def copy(self):
        raise NotImplementedError("Use deepcopy() to copy the config.")

    def update(self, configs: list["Config"], do_print: bool = False):
        """Apply other configs on top of this one, in order.

        Parameters
        ----------
        configs : list[Config]
            Configs to apply. A value set by several configs takes the value of the last one.

        do_print : bool, default False
            Log the resulting config as a tree, highlighting values that changed and the config they came from.

        Raises
        ------
        KeyAddedConfigError
            If a config contains a key that is not present in this config.

        TypeMismatchConfigError
            If a config changes the type of a value.
        """
        merged = deepcopy(self.data)
        changes: dict[str, _Change] = {}

        for config in configs:
            logger.info(f"Updating config with '{config.name}'")
            for change in _merge(merged, config.data, config.name):
                changes[change.key] = change

        if do_print:
            for line in _tree_lines(merged, self.data, changes):
                logger.info(line)

        self.data = merged


def load_default_config() -> Config:
    """Load the default configuration shipped with alphaPlex."""
    config = Config(name=DEFAULT)
    config.from_yaml(DEFAULT_CONFIG_PATH)
    return config


def validate_config(config: Config) -> None:
    """Check value ranges that cannot be expressed by the types of the default config.

    Raises
    ------
    ConfigError
        If a value is out of its allowed range.
    """
    fdr_config = config[ConfigKeys.FDR]
    quant_config = config[ConfigKeys.QUANT]
    general_config = config[ConfigKeys.GENERAL]
    sites_config = config[ConfigKeys.SITES]

    checks = [
        (
            ConfigKeys.GENERAL,
            ConfigKeys.LOG_LEVEL,
            str(general_config[ConfigKeys.LOG_LEVEL]).upper() in LOG_LEVELS,
            f"Log level must be one of {LOG_LEVELS}.",
        ),
        (
            ConfigKeys.FDR,
            ConfigKeys.FDR_TARGET,
            0 < fdr_config[ConfigKeys.FDR_TARGET] <= 1,
            "FDR target must lie in (0, 1].",
        ),
        (
            ConfigKeys.FDR,
            ConfigKeys.MIN_DECOYS,
            fdr_config[ConfigKeys.MIN_DECOYS] >= 1,
            "At least one decoy is required to estimate the FDR.",
        ),
        (
            ConfigKeys.QUANT,
            ConfigKeys.AGGREGATION_KEY,
            len(quant_config[ConfigKeys.AGGREGATION_KEY]) > 0,
            "At least one aggregation column is required.",
        ),
        (
            ConfigKeys.QUANT,
            ConfigKeys.SUMMARY,
            quant_config[ConfigKeys.SUMMARY] in SummaryStatistic.get_values(),
            f"Summary must be one of {SummaryStatistic.get_values()}.",
        ),
        (
            ConfigKeys.SITES,
            ConfigKeys.ON_NO_MATCH,
            sites_config[ConfigKeys.ON_NO_MATCH] in NoMatchPolicy.get_values(),
            f"Policy must be one of {NoMatchPolicy.get_values()}.",
        ),
    ]
    for section, key, is_valid, message in checks:
        if not is_valid:
            raise ConfigError(
                f"{section}.{key}", config[section][key], detail_msg=message
            )


def _coerce_bool(value: Any) -> Any:
    # yaml strings and command line style inputs
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _merge(
    target: dict, source: dict, config_name: str, prefix: str = ""
) -> list[_Change]:
    """Write the values of `source` into `target` in place and return the changed leaf values."""
    changes = []
    for key, value in source.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if key not in target:
            raise KeyAddedConfigError(full_key, value, config_name)

        value = _coerce_bool(value)
        current = target[key]
        same_type = type(current) is type(value) or (
            _is_number(current) and _is_number(value)
        )
        if current is not None and not same_type:
            raise TypeMismatchConfigError(
                full_key, value, config_name, f"{type(value)} != {type(current)}"
            )

        if isinstance(current, dict):
            changes += _merge(current, value, config_name, prefix=full_key)
        else:
            target[key] = value
            changes.append(_Change(full_key, value, config_name))
    return changes


def _tree_lines(
    config: dict, default: dict | None, changes: dict[str, _Change], prefix: str = ""
) -> list[str]:
    """Render the config as tree lines, values differing from `default` are colored with their origin."""
    lines = []
    indent = prefix.count(".") if prefix else -1
    for i, (key, value) in enumerate(config.items()):
        full_key = f"{prefix}.{key}" if prefix else key
        branch = "└──" if i == len(config) - 1 else "├──"
        pad = "│   " * (indent + 1)
        default_value = default.get(key) if isinstance(default, dict) else None

        if isinstance(value, dict):
            lines.append(f"{pad}{branch}{key}")
            lines += _tree_lines(value, default_value, changes, prefix=full_key)
        elif value != default_value:
            origin = changes[full_key].origin if full_key in changes else DEFAULT
            lines.append(f"{pad}\x1b[32;20m{branch}{key}: {value} ({origin})\x1b[0m")
        else:
            lines.append(f"{pad}{branch}{key}: {value}")
    return lines
