"""JSON Schema validation infrastructure.

Provides schema validation for certnet wire messages with:
- Automatic schema resolution via $ref
- Cross-reference registry for every schema shipped in certnet/schemas
- Cached validators
- Clear error reporting
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from certnet.core import PACKAGE_ROOT, load_json

SCHEMAS_DIR = PACKAGE_ROOT / "schemas"

CERTIFIED_TRANSACTIONS_MESSAGE_SCHEMA = "certified-transactions-message.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Build a schema registry for all certnet schemas.

    This enables $ref resolution across the schema corpus.
    """
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.certnet.dev/{schema_path.name}"
        resource = Resource.from_contents(schema, default_specification=DRAFT202012)
        resources.append((schema_id, resource))

    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str, schemas_dir: Path = SCHEMAS_DIR) -> Draft202012Validator:
    """Create a validator for a schema shipped with the package.

    Args:
        schema_name: File name of the schema inside `schemas_dir`
        schemas_dir: Directory holding the schema corpus

    Returns:
        A configured Draft202012Validator
    """
    schema_path = schemas_dir / schema_name
    if not schema_path.is_file():
        raise FileNotFoundError(f"Schema not found: {schema_path}")
    schema = load_json(schema_path)
    return Draft202012Validator(schema, registry=_schema_registry(schemas_dir))


def validate_against_schema(obj: Any, schema_name: str) -> List[str]:
    """Validate an object against a schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
