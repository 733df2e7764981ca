"""
Configuration loading for Azure DevOps field tooling

Connection settings come from command-line options with environment
fallbacks (optionally read from a .env file); field mappings come from a
JSON file or a single source/target pair.
"""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from dotenv import load_dotenv

from .models import FieldMapping
from .validation import (
    ValidationError,
    validate_field_reference,
    validate_organization_url,
    validate_project,
)
from .log_sanitizer import register_secret

logger = logging.getLogger(__name__)

ORG_URL_ENV = "AZURE_DEVOPS_ORG_URL"
PROJECT_ENV = "AZURE_DEVOPS_PROJECT"
PAT_ENV = "AZURE_DEVOPS_PAT"

# Accepted spellings for mapping record keys
SOURCE_KEYS = ("sourceField", "source_field", "source")
TARGET_KEYS = ("targetField", "target_field", "target")


class ConfigurationError(ValidationError):
    """Raised when configuration is missing or unusable. Always fatal."""
    pass


@dataclass(frozen=True)
class ConnectionSettings:
    """Where to connect and with which token"""
    organization_url: str
    project: Optional[str]
    token: str

    def __repr__(self) -> str:
        return (
            f"ConnectionSettings(organization_url='{self.organization_url}', "
            f"project='{self.project}', token='***')"
        )


def load_environment(env_file: Optional[str] = None) -> None:
    """Load variables from a .env file without overriding the real environment."""
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)


def resolve_connection_settings(
    organization_url: Optional[str] = None,
    project: Optional[str] = None,
    token: Optional[str] = None,
    require_project: bool = True
) -> ConnectionSettings:
    """
    Resolve connection settings from explicit values and the environment.

    Args:
        organization_url: Organization / collection URL, or None for $AZURE_DEVOPS_ORG_URL
        project: Project name, or None for $AZURE_DEVOPS_PROJECT
        token: Personal access token, or None for $AZURE_DEVOPS_PAT
        require_project: Whether a project name is mandatory

    Returns:
        Validated ConnectionSettings

    Raises:
        ConfigurationError: If a required value is missing or invalid
    """
    organization_url = organization_url or os.getenv(ORG_URL_ENV)
    project = project or os.getenv(PROJECT_ENV)
    token = token or os.getenv(PAT_ENV)

    missing = []
    if not organization_url:
        missing.append(f"--org-url (or {ORG_URL_ENV})")
    if require_project and not project:
        missing.append(f"--project (or {PROJECT_ENV})")
    if not token:
        missing.append(f"--token (or {PAT_ENV})")

    if missing:
        raise ConfigurationError(
            "Missing required configuration: " + ", ".join(missing)
        )

    register_secret(token)

    try:
        organization_url = validate_organization_url(organization_url)
        if project:
            project = validate_project(project)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e

    return ConnectionSettings(
        organization_url=organization_url,
        project=project,
        token=token
    )


def _first_key(record: dict, keys: Iterable[str]) -> Optional[Any]:
    for key in keys:
        if key in record:
            return record[key]
    return None


def parse_field_mappings(data: Any, source: str = "mapping configuration") -> List[FieldMapping]:
    """
    Build a mapping list from decoded JSON.

    Accepts either a list of {"sourceField": ..., "targetField": ...} records
    or an object with such a list under "mappings".

    Raises:
        ConfigurationError: If the structure or any record is invalid
    """
    if isinstance(data, dict):
        if "mappings" not in data:
            raise ConfigurationError(f"{source}: expected a 'mappings' list")
        data = data["mappings"]

    if not isinstance(data, list):
        raise ConfigurationError(f"{source}: expected a list of field mappings")

    mappings = []
    for idx, record in enumerate(data):
        if not isinstance(record, dict):
            raise ConfigurationError(f"{source}: mapping at index {idx} is not an object")

        source_field = _first_key(record, SOURCE_KEYS)
        target_field = _first_key(record, TARGET_KEYS)
        if not source_field:
            raise ConfigurationError(f"{source}: mapping at index {idx} missing 'sourceField'")
        if not target_field:
            raise ConfigurationError(f"{source}: mapping at index {idx} missing 'targetField'")

        mappings.append(build_mapping(source_field, target_field, context=f"{source}: mapping at index {idx}"))

    mappings = dedupe_mappings(mappings)
    if not mappings:
        raise ConfigurationError(f"{source}: no field mappings defined")

    return mappings


def build_mapping(source_field: str, target_field: str, context: str = "mapping") -> FieldMapping:
    """Validate one source/target pair."""
    try:
        source_field = validate_field_reference(source_field)
        target_field = validate_field_reference(target_field)
    except ValidationError as e:
        raise ConfigurationError(f"{context}: {e}") from e

    if source_field == target_field:
        raise ConfigurationError(
            f"{context}: source and target are the same field ({source_field})"
        )

    return FieldMapping(source_field=source_field, target_field=target_field)


def dedupe_mappings(mappings: Iterable[FieldMapping]) -> List[FieldMapping]:
    """Drop repeated pairs, keeping first-seen order for the logs."""
    unique: List[FieldMapping] = []
    for mapping in mappings:
        if mapping in unique:
            logger.debug(f"Ignoring duplicate mapping {mapping}")
            continue
        unique.append(mapping)
    return unique


def load_field_mappings(path: Union[str, Path]) -> List[FieldMapping]:
    """
    Read field mappings from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Mapping configuration file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Mapping configuration {path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read mapping configuration {path}: {e}") from e

    return parse_field_mappings(data, source=str(path))


def resolve_field_mappings(
    config_path: Optional[str] = None,
    source_field: Optional[str] = None,
    target_field: Optional[str] = None
) -> List[FieldMapping]:
    """
    Resolve the mapping list from either a configuration file or one pair.

    Raises:
        ConfigurationError: If neither or both forms are given
    """
    has_pair = bool(source_field or target_field)

    if config_path and has_pair:
        raise ConfigurationError("Use either --config or --source-field/--target-field, not both")

    if config_path:
        return load_field_mappings(config_path)

    if has_pair:
        if not (source_field and target_field):
            raise ConfigurationError("--source-field and --target-field must be given together")
        return [build_mapping(source_field, target_field, context="command line")]

    raise ConfigurationError("No field mappings: pass --config or --source-field/--target-field")
