"""
Schema validation for ticketflow.

The lifecycle config and the project field cache are validated against
JSON Schemas shipped in ticketflow/schemas before anything reads them.
A mismatch fails hard and names the offending location.
"""

import json
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match

from ticketflow.lib.errors import ConfigError

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class SchemaError(ConfigError):
    """A config or cache file failed schema validation."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


# Compiled validators, keyed by schema name
_validators: dict[str, jsonschema.Draft7Validator] = {}


def get_validator(schema_name: str) -> jsonschema.Draft7Validator:
    if schema_name not in _validators:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise SchemaError(schema_name, f"Schema file not found: {schema_path}")
        schema = json.loads(schema_path.read_text())
        jsonschema.Draft7Validator.check_schema(schema)
        _validators[schema_name] = jsonschema.Draft7Validator(schema)
    return _validators[schema_name]


def validate(data: dict, schema_name: str) -> None:
    """Validate data against a named schema ("lifecycle", "projects").

    When several rules fail, the most relevant one is reported.

    Raises:
        SchemaError: If validation fails
    """
    error = best_match(get_validator(schema_name).iter_errors(data))
    if error is not None:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        raise SchemaError(schema_name, error.message, path)


def validate_file(filepath: Path, schema_name: str) -> dict:
    """Load a JSON file and validate it.

    Raises:
        SchemaError: If the file is missing, not JSON, or doesn't match
    """
    if not filepath.exists():
        raise SchemaError(schema_name, f"File not found: {filepath}")

    try:
        data = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        raise SchemaError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data
