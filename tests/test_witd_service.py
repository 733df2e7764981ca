"""
Unit tests for the work item type definition export.

Tests inventory parsing, target selection, annotation, import commands and
both exporters without touching a real server or witadmin.
"""

import subprocess
import pytest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import Mock
from ado_field_tools.config import ConfigurationError
from ado_field_tools.errors import ExternalToolError, NotFoundError
from ado_field_tools.models import FieldUsage
from ado_field_tools.services.witd_service import (
    RestExporter,
    WitadminExporter,
    WitdService,
    annotate_definition,
    build_import_command,
    collect_targets,
    parse_field_inventory,
    parse_use_line,
    plan_exports,
    safe_file_name
)

INVENTORY = """\
Field: System.Title
Name: Title
Type: String
Reportable: None
Use: Fabrikam (Bug, Task, User Story)
Indexed: False

Field: Custom.LegacyId
Name: Legacy Id
Type: Integer
Reportable: None
Use: Fabrikam (Bug, Task), Contoso (Issue)
Indexed: False

Field: Custom.Notes
Name: Notes
Type: HTML
Use: Fabrikam (User Story)

Field: Custom.Owner
Name: Owner
Type: String
Use: Contoso (Issue, Task)
"""

DEFINITION = '<?xml version="1.0" encoding="utf-8"?>\n<witd:WITD application="Work item type editor" version="1.0" />\n'


def write_inventory(tmp_path, text=INVENTORY):
    path = tmp_path / "fields.txt"
    path.write_text(text, encoding="utf-8")
    return path


class TestInventoryParsing:
    """Test inventory parsing."""

    def test_parse_use_line(self):
        uses = parse_use_line("Fabrikam (Bug, Task), Contoso Web (User Story)")
        assert uses == {"Fabrikam": ["Bug", "Task"], "Contoso Web": ["User Story"]}

    def test_parse_use_line_empty(self):
        assert parse_use_line("") == {}

    def test_parse_field_inventory(self):
        usages = parse_field_inventory(INVENTORY)

        assert [u.reference_name for u in usages] == [
            "System.Title", "Custom.LegacyId", "Custom.Notes", "Custom.Owner"
        ]
        legacy = usages[1]
        assert legacy.name == "Legacy Id"
        assert legacy.field_type == "Integer"
        assert legacy.uses == {"Fabrikam": ["Bug", "Task"], "Contoso": ["Issue"]}

    def test_lines_before_first_field_ignored(self):
        usages = parse_field_inventory("Listing fields\nType: String\nField: Custom.X\nType: String\n")
        assert len(usages) == 1
        assert usages[0].field_type == "String"


class TestTargetSelection:
    """Test collect_targets and plan_exports."""

    def test_collect_targets_filters_prefix_and_type(self):
        targets = collect_targets(parse_field_inventory(INVENTORY))
        assert targets == [
            ("Contoso", "Issue"),
            ("Contoso", "Task"),
            ("Fabrikam", "Bug"),
            ("Fabrikam", "Task"),
        ]

    def test_type_match_case_insensitive(self):
        usage = FieldUsage("Custom.X", field_type="string", uses={"P": ["Bug"]})
        assert collect_targets([usage]) == [("P", "Bug")]

    def test_custom_prefix(self):
        usage = FieldUsage("Fabrikam.X", field_type="String", uses={"P": ["Bug"]})
        assert collect_targets([usage]) == []
        assert collect_targets([usage], field_prefix="Fabrikam.") == [("P", "Bug")]

    def test_plan_exports_layout(self, tmp_path):
        entries = plan_exports([("Fabrikam", "User Story")], tmp_path)
        entry = entries[0]
        assert entry.backup_path == tmp_path / "backup" / "Fabrikam" / "User Story.xml"
        assert entry.annotated_path == tmp_path / "annotated" / "Fabrikam" / "User Story.xml"
        assert entry.target == ("Fabrikam", "User Story")

    def test_safe_file_name(self):
        assert safe_file_name('Bug/Defect: "new"') == "Bug_Defect_ _new_"
        assert safe_file_name("  ") == "_"


class TestAnnotation:
    """Test annotate_definition and import commands."""

    def test_comment_after_xml_declaration(self):
        annotated = annotate_definition(DEFINITION, "Edit me")
        lines = annotated.splitlines()
        assert lines[0] == '<?xml version="1.0" encoding="utf-8"?>'
        assert lines[1] == "<!-- Edit me -->"
        assert "<witd:WITD" in lines[2]

    def test_comment_prepended_without_declaration(self):
        assert annotate_definition("<witd:WITD />", "x").startswith("<!-- x -->\n<witd:WITD")

    def test_double_dash_neutralized(self):
        annotated = annotate_definition("<a/>", "bad -- comment")
        assert "bad - - comment" in annotated

    def test_import_command(self, tmp_path):
        entry = plan_exports([("Fabrikam", "Bug")], tmp_path)[0]
        command = build_import_command("https://tfs.example.com/tfs/Default", entry)
        assert command == (
            f'"witadmin" importwitd /collection:"https://tfs.example.com/tfs/Default" '
            f'/p:"Fabrikam" /f:"{entry.annotated_path}"'
        )


class TestWitadminExporter:
    """Test the witadmin exporter with a fake runner."""

    def make_exporter(self, tmp_path, returncode=0, stderr=""):
        tool = tmp_path / "witadmin.exe"
        tool.write_text("")
        calls = []

        def runner(command, **kwargs):
            calls.append((command, kwargs))
            if returncode == 0:
                Path(command[-1][len("/f:"):]).write_text(DEFINITION, encoding="utf-8")
            return subprocess.CompletedProcess(command, returncode, stdout="", stderr=stderr)

        return WitadminExporter(str(tool), "https://tfs/Default", runner=runner), calls

    def test_missing_tool(self, tmp_path):
        with pytest.raises(ConfigurationError, match="witadmin not found"):
            WitadminExporter(str(tmp_path / "no-such-witadmin.exe"), "https://tfs/Default")

    @pytest.mark.asyncio
    async def test_export_runs_exportwitd(self, tmp_path):
        exporter, calls = self.make_exporter(tmp_path)
        destination = tmp_path / "Bug.xml"

        definition = await exporter.export("Fabrikam", "Bug", destination)

        assert definition == DEFINITION
        command, kwargs = calls[0]
        assert command[1:] == [
            "exportwitd",
            "/collection:https://tfs/Default",
            "/p:Fabrikam",
            "/n:Bug",
            f"/f:{destination}",
        ]
        assert kwargs["capture_output"] is True
        assert kwargs["check"] is False

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, tmp_path):
        exporter, _ = self.make_exporter(tmp_path, returncode=1, stderr="TF201063: type not found")

        with pytest.raises(ExternalToolError) as exc_info:
            await exporter.export("Fabrikam", "Bug", tmp_path / "Bug.xml")
        assert exc_info.value.return_code == 1
        assert "TF201063" in str(exc_info.value)


class TestRestExporter:
    """Test the REST exporter."""

    @pytest.mark.asyncio
    async def test_writes_xml_form(self, tmp_path):
        exporter = RestExporter(auth=Mock())
        exporter._wit_client = Mock()
        exporter._wit_client.get_work_item_type.return_value = SimpleNamespace(xml_form=DEFINITION)
        destination = tmp_path / "Bug.xml"

        definition = await exporter.export("Fabrikam", "Bug", destination)

        assert definition == DEFINITION
        assert destination.read_text(encoding="utf-8") == DEFINITION
        exporter._wit_client.get_work_item_type.assert_called_once_with(project="Fabrikam", type="Bug")

    @pytest.mark.asyncio
    async def test_missing_xml_form(self, tmp_path):
        exporter = RestExporter(auth=Mock())
        exporter._wit_client = Mock()
        exporter._wit_client.get_work_item_type.return_value = SimpleNamespace(xml_form=None)

        with pytest.raises(NotFoundError):
            await exporter.export("Fabrikam", "Bug", tmp_path / "Bug.xml")


class FakeExporter:
    command_name = "C:\\Tools\\witadmin.exe"

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []

    async def export(self, project, work_item_type, destination):
        self.calls.append((project, work_item_type))
        if (project, work_item_type) in self.fail_for:
            raise ExternalToolError("witadmin exportwitd", 1, "access denied")
        destination.write_text(DEFINITION, encoding="utf-8")
        return DEFINITION


class TestWitdService:
    """Test export_definitions."""

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, tmp_path):
        output_dir = tmp_path / "out"
        service = WitdService("https://tfs/Default")

        result = await service.export_definitions(write_inventory(tmp_path), output_dir, dry_run=True)

        assert len(result.planned) == 4
        assert len(result.import_commands) == 4
        assert result.exported == 0
        assert not output_dir.exists()

    @pytest.mark.asyncio
    async def test_export_writes_backup_annotated_and_commands(self, tmp_path):
        output_dir = tmp_path / "out"
        exporter = FakeExporter()
        service = WitdService("https://tfs/Default", exporter=exporter)

        result = await service.export_definitions(write_inventory(tmp_path), output_dir)

        assert result.exported == 4
        assert result.failed == 0
        backup = output_dir / "backup" / "Fabrikam" / "Bug.xml"
        annotated = output_dir / "annotated" / "Fabrikam" / "Bug.xml"
        assert backup.read_text(encoding="utf-8") == DEFINITION
        annotated_text = annotated.read_text(encoding="utf-8")
        assert annotated_text.startswith('<?xml version="1.0" encoding="utf-8"?>\n<!-- Exported ')
        assert "project 'Fabrikam', type 'Bug'" in annotated_text

        commands = (output_dir / "import_commands.txt").read_text(encoding="utf-8").splitlines()
        assert len(commands) == 4
        assert commands[0].startswith('"C:\\Tools\\witadmin.exe" importwitd')
        assert result.import_commands_path == output_dir / "import_commands.txt"

    @pytest.mark.asyncio
    async def test_failed_export_isolated(self, tmp_path):
        exporter = FakeExporter(fail_for=[("Contoso", "Issue")])
        service = WitdService("https://tfs/Default", exporter=exporter)

        result = await service.export_definitions(write_inventory(tmp_path), tmp_path / "out")

        assert len(exporter.calls) == 4
        assert result.exported == 3
        assert result.failed == 1
        assert result.failures[0][:2] == ("Contoso", "Issue")
        assert len(result.import_commands) == 3

    @pytest.mark.asyncio
    async def test_exporter_required_outside_dry_run(self, tmp_path):
        service = WitdService("https://tfs/Default")
        with pytest.raises(ConfigurationError):
            await service.export_definitions(write_inventory(tmp_path), tmp_path / "out")

    def test_missing_inventory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            WitdService("https://tfs/Default").load_inventory(tmp_path / "missing.txt")
