from functools import lru_cache
from typing import Any, Dict, List

from jsonschema import Draft202012Validator, SchemaError
from packaging import version

from tasknest.logs import get_logger
from tasknest.models import TaskTable
from tasknest.recovery import CorruptionError, FatalError, MigrationNeededError
from tasknest.version import APP_SCHEMA_VERSION

log = get_logger("data.validate")

@lru_cache(maxsize=1)
def table_schema() -> Dict[str, Any]:
    """JSON schema of the persisted node table, generated from the pydantic model."""
    schema = TaskTable.model_json_schema(mode="serialization")
    schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
    return schema

def schema_errors(data: Dict[str, Any]) -> List[str]:
    """
    Validate a loaded document against the table schema.

    Returns:
        Human readable error messages, empty when the document is valid.
    """
    try:
        validator = Draft202012Validator(table_schema())
    except SchemaError as e:
        raise FatalError(f"Generated table schema is invalid: {e.message}") from e
    return [
        f"{'/'.join(str(p) for p in error.absolute_path) or '<root>'}: {error.message}"
        for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    ]

def check_schema_version(found: str, app_version: str = APP_SCHEMA_VERSION) -> None:
    """
    Refuse documents written by a newer layout than this application understands.

    Raises:
        CorruptionError: If the version string cannot be parsed.
        MigrationNeededError: If the document is newer than the application.
    """
    try:
        found_version = version.parse(found)
    except version.InvalidVersion as e:
        raise CorruptionError(f"Unreadable schema version: {found!r}") from e

    if found_version > version.parse(app_version):
        raise MigrationNeededError(
            f"Data was written with schema {found}, this application understands up to {app_version}"
        )
    if found_version < version.parse(app_version):
        log.info(f"Data schema {found} is older than {app_version}; it will be rewritten on the next save")

def validate_table_document(data: Dict[str, Any], source: str = "<memory>") -> None:
    """Run version and schema checks for a loaded node table."""
    found = str(data.get("schema_version", ""))
    if not found:
        raise CorruptionError(f"{source} has no schema_version")
    check_schema_version(found)

    errors = schema_errors(data)
    if errors:
        for message in errors:
            log.error(f"{source} FAILED validation: {message}")
        raise CorruptionError(f"{source} is not a valid task table: {errors[0]}")
    log.debug(f"{source} is VALID for schema version {found}")
