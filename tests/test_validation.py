"""
Unit tests for validation module.

Tests field reference, URL, project and batch size validation plus WIQL
syntax checks and literal sanitization.
"""

import pytest
from ado_field_tools.validation import (
    validate_field_reference,
    validate_wiql,
    validate_organization_url,
    validate_project,
    validate_batch_size,
    sanitize_wiql_string,
    ValidationError,
    WiqlValidator
)


class TestFieldReferenceValidation:
    """Test field reference name validation."""

    @pytest.mark.parametrize("name", [
        "Custom.OldField",
        "Microsoft.VSTS.Common.Priority",
        "Custom.Legacy_Id",
        "System.Title",
    ])
    def test_valid_reference_names(self, name):
        assert validate_field_reference(name) == name

    def test_strips_brackets_and_patch_path(self):
        """Test forms pasted from WIQL or patch documents are accepted."""
        assert validate_field_reference("[Custom.OldField]") == "Custom.OldField"
        assert validate_field_reference("/fields/Custom.OldField") == "Custom.OldField"
        assert validate_field_reference("  Custom.OldField  ") == "Custom.OldField"

    @pytest.mark.parametrize("name", [
        "",
        "   ",
        "OldField",
        "Old Field",
        "Custom.Old Field",
        "Custom.",
        "1Custom.Field",
        "Custom.Field]",
    ])
    def test_invalid_reference_names(self, name):
        with pytest.raises(ValidationError):
            validate_field_reference(name)

    def test_display_name_hint(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_field_reference("Old Field")
        assert "reference name" in str(exc_info.value)


class TestWiqlValidation:
    """Test WIQL query validation."""

    def test_valid_query(self):
        query = "SELECT [System.Id] FROM WorkItems WHERE [Custom.A] <> ''"
        assert validate_wiql(query) == query

    def test_empty_query(self):
        with pytest.raises(ValidationError, match="cannot be empty"):
            validate_wiql("")

    def test_missing_select(self):
        with pytest.raises(ValidationError, match="SELECT"):
            validate_wiql("FROM WorkItems")

    def test_missing_from(self):
        with pytest.raises(ValidationError, match="FROM"):
            validate_wiql("SELECT [System.Id]")

    def test_invalid_from_target(self):
        with pytest.raises(ValidationError, match="WorkItems"):
            validate_wiql("SELECT [System.Id] FROM Projects")

    def test_unbalanced_brackets(self):
        with pytest.raises(ValidationError, match="unbalanced"):
            validate_wiql("SELECT [System.Id FROM WorkItems")

    def test_query_too_long(self):
        query = "SELECT [System.Id] FROM WorkItems WHERE " + "x" * WiqlValidator.MAX_QUERY_LENGTH
        with pytest.raises(ValidationError, match="maximum length"):
            validate_wiql(query)


class TestWiqlSanitization:
    """Test WIQL string literal sanitization."""

    def test_single_quotes_doubled(self):
        assert sanitize_wiql_string("O'Brien") == "O''Brien"

    def test_plain_value_unchanged(self):
        assert sanitize_wiql_string("Fabrikam") == "Fabrikam"

    def test_none_passthrough(self):
        assert sanitize_wiql_string(None) is None


class TestOrganizationUrlValidation:
    """Test organization URL validation."""

    def test_trailing_slash_removed(self):
        assert validate_organization_url("https://dev.azure.com/fabrikam/") == "https://dev.azure.com/fabrikam"

    def test_on_premises_collection(self):
        url = "http://tfs.example.com:8080/tfs/DefaultCollection"
        assert validate_organization_url(url) == url

    @pytest.mark.parametrize("url", ["", "dev.azure.com/fabrikam", "ftp://dev.azure.com/x", "https://"])
    def test_invalid_urls(self, url):
        with pytest.raises(ValidationError):
            validate_organization_url(url)


class TestProjectValidation:
    """Test project name validation."""

    def test_valid_project(self):
        assert validate_project(" Fabrikam Fiber ") == "Fabrikam Fiber"

    @pytest.mark.parametrize("project", ["", "Fab/rikam", "Fab:rikam", "[Fab]"])
    def test_invalid_project(self, project):
        with pytest.raises(ValidationError):
            validate_project(project)


class TestBatchSizeValidation:
    """Test batch size validation."""

    def test_default(self):
        assert validate_batch_size(None) == 200

    @pytest.mark.parametrize("size", [1, 50, 200])
    def test_valid_sizes(self, size):
        assert validate_batch_size(size) == size

    @pytest.mark.parametrize("size", [0, -1, 201, True, "10"])
    def test_invalid_sizes(self, size):
        with pytest.raises(ValidationError):
            validate_batch_size(size)
