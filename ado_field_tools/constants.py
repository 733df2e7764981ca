"""
Constants and field definitions for Azure DevOps operations.

Defines the system fields, API limits and pacing values shared by the
field copy, query rewrite and WITD export commands.
"""

from typing import List


# ============================================================================
# Field Reference Names
# ============================================================================

class FieldNames:
    """Azure DevOps field reference names."""

    ID = "System.Id"
    TEAM_PROJECT = "System.TeamProject"
    WORK_ITEM_TYPE = "System.WorkItemType"


# ============================================================================
# Query Limits
# ============================================================================

class QueryLimits:
    """Limits imposed by the Azure DevOps REST API."""

    # Maximum ids returned by a single WIQL query
    MAX_LIMIT = 20000

    # Maximum ids per work items batch request
    BATCH_SIZE = 200

    # Saved query tree: levels returned per request and traversal guard
    QUERY_TREE_DEPTH = 1
    MAX_FOLDER_DEPTH = 10


# ============================================================================
# Expand Options
# ============================================================================

class ExpandOptions:
    """Work item expand options for Azure DevOps API."""

    FIELDS = "Fields"


class QueryExpand:
    """Expand options for saved query hierarchy requests."""

    WIQL = "wiql"


class ErrorPolicy:
    """Error policy for work item batch requests."""

    # Leave deleted or inaccessible ids out instead of failing the batch
    OMIT = "omit"


# ============================================================================
# Work Item Types
# ============================================================================

# Types that back test and review tooling rather than user-facing work
SYSTEM_WORK_ITEM_TYPES: List[str] = [
    "Shared Steps",
    "Shared Parameter",
    "Code Review Request",
    "Code Review Response",
    "Feedback Request",
    "Feedback Response",
]


# ============================================================================
# Field Values
# ============================================================================

# Values treated as "no value" when deciding whether to copy a field
EMPTY_FIELD_VALUES = ("", " ")


# ============================================================================
# Write Pacing
# ============================================================================

class Throttle:
    """Fixed pacing between bulk writes. Not a backoff."""

    PAUSE_EVERY = 10
    PAUSE_SECONDS = 1.0


# ============================================================================
# WITD Export
# ============================================================================

class WitdDefaults:
    """Defaults for work item type definition export."""

    FIELD_TYPES = ("String", "Integer")
    FIELD_PREFIX = "Custom."
    BACKUP_DIR = "backup"
    ANNOTATED_DIR = "annotated"
    IMPORT_COMMANDS_FILE = "import_commands.txt"
    WITADMIN_EXECUTABLE = "witadmin"


# ============================================================================
# Helper Functions
# ============================================================================

def format_wiql_fields(fields: List[str]) -> str:
    """
    Format field list for WIQL SELECT clause.

    Args:
        fields: List of field names

    Returns:
        Formatted field list for WIQL (e.g., "[System.Id], [System.Title]")
    """
    return ', '.join(f'[{field}]' for field in fields)


def field_path(reference_name: str) -> str:
    """JSON patch path for a field reference name."""
    return f'/fields/{reference_name}'
