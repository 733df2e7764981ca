"""
Unit tests for constants module.

Tests field names, API limits and helper functions.
"""

from ado_field_tools.constants import (
    ErrorPolicy,
    ExpandOptions,
    FieldNames,
    QueryExpand,
    QueryLimits,
    SYSTEM_WORK_ITEM_TYPES,
    EMPTY_FIELD_VALUES,
    Throttle,
    WitdDefaults,
    field_path,
    format_wiql_fields
)


class TestFieldNames:
    """Test FieldNames class."""

    def test_system_fields(self):
        assert FieldNames.ID == "System.Id"
        assert FieldNames.TEAM_PROJECT == "System.TeamProject"
        assert FieldNames.WORK_ITEM_TYPE == "System.WorkItemType"


class TestLimits:
    """Test API limits and pacing."""

    def test_query_limits(self):
        assert QueryLimits.MAX_LIMIT == 20000
        assert QueryLimits.BATCH_SIZE == 200

    def test_request_options(self):
        assert ExpandOptions.FIELDS == "Fields"
        assert QueryExpand.WIQL == "wiql"
        assert ErrorPolicy.OMIT == "omit"

    def test_pacing(self):
        assert Throttle.PAUSE_EVERY == 10
        assert Throttle.PAUSE_SECONDS == 1.0


class TestWorkItemTypes:
    """Test excluded system types."""

    def test_system_types(self):
        assert SYSTEM_WORK_ITEM_TYPES == [
            "Shared Steps",
            "Shared Parameter",
            "Code Review Request",
            "Code Review Response",
            "Feedback Request",
            "Feedback Response",
        ]

    def test_empty_values(self):
        assert "" in EMPTY_FIELD_VALUES
        assert " " in EMPTY_FIELD_VALUES


class TestHelpers:
    """Test helper functions."""

    def test_format_wiql_fields(self):
        assert format_wiql_fields(["System.Id", "Custom.A"]) == "[System.Id], [Custom.A]"

    def test_field_path(self):
        assert field_path("Custom.B") == "/fields/Custom.B"

    def test_witd_defaults(self):
        assert WitdDefaults.FIELD_TYPES == ("String", "Integer")
        assert WitdDefaults.FIELD_PREFIX == "Custom."
