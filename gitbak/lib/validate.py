"""
JSON Schema check of the resolved gitbak configuration.

Runs after the cross-field rules in config.finalize(), so anything caught
here is a shape problem such as a branch name git would refuse or a
commit prefix spanning several lines.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema

from gitbak.lib.errors import ConfigError

CONFIG_SCHEMA = Path(__file__).resolve().parent.parent / "schemas" / "config.schema.json"


@lru_cache(maxsize=None)
def config_schema() -> dict:
    return json.loads(CONFIG_SCHEMA.read_text(encoding="utf-8"))


def config_errors(data: dict) -> list[ConfigError]:
    """Every schema violation in data, ordered by field name."""
    schema = config_schema()
    validator = jsonschema.validators.validator_for(schema)(schema)
    errors = []
    for err in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        if err.absolute_path:
            field = ".".join(str(p) for p in err.absolute_path)
            errors.append(ConfigError(field, err.message, err.instance))
        else:
            errors.append(ConfigError("config", err.message))
    return errors


def validate_config(data: dict) -> None:
    """
    Raises:
        ConfigError: for the first violation, naming the offending field
    """
    errors = config_errors(data)
    if errors:
        raise errors[0]
