"""
Input validation and WIQL string sanitization.

Every command-line value and mapping record is checked here before the
first network call, so a typo aborts the run instead of half-applying it.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from .constants import QueryLimits


class ValidationError(Exception):
    """Raised when a command-line value or mapping record is unusable."""
    pass


class FieldReferenceValidator:
    """Reference names such as Custom.OldField (not display names)."""

    # e.g. Custom.OldField, Microsoft.VSTS.Common.Priority, Custom.Legacy_Id
    REFERENCE_NAME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)+$')

    @staticmethod
    def validate(reference_name: str) -> str:
        """
        Validate the shape of a field reference name.

        Accepts the bare reference name and the forms operators tend to paste
        from WIQL or patch documents ("[Custom.X]", "/fields/Custom.X").

        Args:
            reference_name: The field reference name to validate

        Returns:
            The bare reference name

        Raises:
            ValidationError: If the name is empty or malformed
        """
        if not reference_name or not reference_name.strip():
            raise ValidationError("Field reference name cannot be empty")

        clean_name = reference_name.strip()
        if clean_name.startswith('/fields/'):
            clean_name = clean_name[len('/fields/'):]
        if clean_name.startswith('[') and clean_name.endswith(']'):
            clean_name = clean_name[1:-1]

        if not FieldReferenceValidator.REFERENCE_NAME_PATTERN.match(clean_name):
            raise ValidationError(
                f"Invalid field reference name: '{reference_name}'. "
                f"Use the API reference name (e.g. Custom.MyField), not the display name."
            )

        return clean_name


class WiqlValidator:
    """Shape checks for WIQL text built or rewritten by these commands."""

    # Service limit on WIQL text length
    MAX_QUERY_LENGTH = 32000

    SELECT_FROM = re.compile(r'\bSELECT\b.+?\bFROM\s+(WorkItems|WorkItemLinks)\b', re.IGNORECASE | re.DOTALL)

    @staticmethod
    def validate(query: str) -> str:
        """
        Reject WIQL that cannot be a work item query.

        Only the outline is checked (length, SELECT ... FROM WorkItems,
        bracket balance); the service does the real parse.

        Returns:
            The query, unchanged

        Raises:
            ValidationError: If the query is empty or malformed
        """
        if not query or not query.strip():
            raise ValidationError("WIQL query cannot be empty")

        if len(query) > WiqlValidator.MAX_QUERY_LENGTH:
            raise ValidationError(
                f"WIQL query is {len(query)} characters; the maximum length is "
                f"{WiqlValidator.MAX_QUERY_LENGTH}"
            )

        upper = query.upper()
        for keyword in ('SELECT', 'FROM'):
            if keyword not in upper:
                raise ValidationError(f"WIQL query has no {keyword} clause")

        if not WiqlValidator.SELECT_FROM.search(query):
            raise ValidationError("WIQL query must select FROM WorkItems or WorkItemLinks")

        if not WiqlValidator.brackets_balanced(query):
            raise ValidationError("WIQL query has unbalanced square brackets")

        return query

    @staticmethod
    def brackets_balanced(query: str) -> bool:
        depth = 0
        for char in query:
            depth += {'[': 1, ']': -1}.get(char, 0)
            if depth < 0:
                return False
        return depth == 0

    @staticmethod
    def sanitize_string_literal(value: str) -> str:
        """Double single quotes so the value fits in a '...' WIQL literal."""
        if value is None:
            return None
        return value.replace("'", "''")


class OrganizationUrlValidator:
    """Validator for organization / collection URLs."""

    @staticmethod
    def validate(url: str) -> str:
        """
        Validate an Azure DevOps organization or on-premises collection URL.

        Returns:
            The URL without a trailing slash

        Raises:
            ValidationError: If the URL is empty or not http(s)
        """
        if not url or not url.strip():
            raise ValidationError("Organization URL cannot be empty")

        clean_url = url.strip().rstrip('/')
        parsed = urlparse(clean_url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValidationError(
                f"Invalid organization URL: '{url}'. "
                f"Expected e.g. https://dev.azure.com/yourorg or https://tfs.example.com/tfs/DefaultCollection"
            )

        return clean_url


class ProjectValidator:
    """Validator for project names."""

    INVALID_CHARACTERS = set('\\/:*?"<>|;#$*{},+=[]')

    @staticmethod
    def validate(project: str) -> str:
        if not project or not project.strip():
            raise ValidationError("Project name cannot be empty")

        clean_project = project.strip()
        invalid = sorted(set(clean_project) & ProjectValidator.INVALID_CHARACTERS)
        if invalid:
            raise ValidationError(
                f"Invalid project name: '{project}'. "
                f"Project names cannot contain: {' '.join(invalid)}"
            )

        return clean_project


class BatchSizeValidator:
    """Validator for work item batch sizes."""

    @staticmethod
    def validate(batch_size: int) -> int:
        if not isinstance(batch_size, int) or isinstance(batch_size, bool):
            raise ValidationError(f"Batch size must be an integer, got {type(batch_size).__name__}")

        if batch_size < 1 or batch_size > QueryLimits.BATCH_SIZE:
            raise ValidationError(
                f"Invalid batch size: {batch_size}. "
                f"Batch size must be between 1 and {QueryLimits.BATCH_SIZE}"
            )

        return batch_size


# Module-level shortcuts

def validate_field_reference(reference_name: str) -> str:
    """Bare reference name, or ValidationError."""
    return FieldReferenceValidator.validate(reference_name)


def validate_wiql(query: str) -> str:
    """The query unchanged, or ValidationError."""
    return WiqlValidator.validate(query)


def validate_organization_url(url: str) -> str:
    """URL without trailing slash, or ValidationError."""
    return OrganizationUrlValidator.validate(url)


def validate_project(project: str) -> str:
    """Trimmed project name, or ValidationError."""
    return ProjectValidator.validate(project)


def validate_batch_size(batch_size: Optional[int]) -> int:
    """Validate batch size, defaulting to the API maximum."""
    if batch_size is None:
        return QueryLimits.BATCH_SIZE
    return BatchSizeValidator.validate(batch_size)


def sanitize_wiql_string(value: str) -> str:
    """Escape a value for a single-quoted WIQL literal."""
    return WiqlValidator.sanitize_string_literal(value)
