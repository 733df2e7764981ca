"""
Work item type definition (WITD) export service

Reads a field inventory (``witadmin listfields`` output), picks the work item
types that use matching custom fields, exports their definitions, keeps an
untouched backup, writes an annotated copy for editing and lists the
``witadmin importwitd`` commands that replay the edited copies.
"""
import asyncio
import logging
import re
import shutil
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..config import ConfigurationError
from ..constants import WitdDefaults
from ..decorators import azure_devops_operation
from ..errors import AzureDevOpsError, ExternalToolError, NotFoundError
from ..log_sanitizer import safe_log_error, sanitize_error
from ..models import FieldUsage, WitdExportEntry, WitdExportResult

logger = logging.getLogger(__name__)

FIELD_LINE = re.compile(r'^\s*Field:\s*(?P<value>\S.*?)\s*$')
NAME_LINE = re.compile(r'^\s*Name:\s*(?P<value>.*?)\s*$')
TYPE_LINE = re.compile(r'^\s*Type:\s*(?P<value>.*?)\s*$')
USE_LINE = re.compile(r'^\s*Use:\s*(?P<value>.*?)\s*$')
# "ProjectA (Bug, Task)" inside a Use: line
USE_ENTRY = re.compile(r'(?P<project>[^,()]+?)\s*\((?P<types>[^)]*)\)')
XML_DECLARATION = re.compile(r'^\ufeff?\s*<\?xml[^>]*\?>')
UNSAFE_PATH_CHARS = re.compile(r'[\\/:*?"<>|]')


# ============================================================================
# Inventory parsing and planning
# ============================================================================

def parse_use_line(value: str) -> Dict[str, List[str]]:
    """Parse 'ProjA (Bug, Task), ProjB (User Story)' into {project: [types]}."""
    uses: Dict[str, List[str]] = {}
    for match in USE_ENTRY.finditer(value):
        project = match.group('project').strip()
        types = [t.strip() for t in match.group('types').split(',') if t.strip()]
        if not project or not types:
            continue
        known = uses.setdefault(project, [])
        known.extend(t for t in types if t not in known)
    return uses


def parse_field_inventory(text: str) -> List[FieldUsage]:
    """
    Parse a field inventory listing into FieldUsage records.

    Each block starts with 'Field: <reference name>'; 'Name:', 'Type:' and
    'Use:' lines inside the block are picked up, anything else is ignored.
    """
    usages: List[FieldUsage] = []
    current: Optional[FieldUsage] = None

    for line in text.splitlines():
        match = FIELD_LINE.match(line)
        if match:
            current = FieldUsage(reference_name=match.group('value'))
            usages.append(current)
            continue

        if current is None:
            continue

        match = TYPE_LINE.match(line)
        if match:
            current.field_type = match.group('value') or None
            continue

        match = NAME_LINE.match(line)
        if match:
            current.name = match.group('value') or None
            continue

        match = USE_LINE.match(line)
        if match:
            for project, types in parse_use_line(match.group('value')).items():
                known = current.uses.setdefault(project, [])
                known.extend(t for t in types if t not in known)

    return usages


def collect_targets(
    usages: Iterable[FieldUsage],
    field_prefix: str = WitdDefaults.FIELD_PREFIX,
    field_types: Sequence[str] = WitdDefaults.FIELD_TYPES
) -> List[Tuple[str, str]]:
    """
    Distinct (project, work item type) pairs that use a matching field.

    A field matches when its reference name starts with field_prefix and its
    type is one of field_types (case-insensitive). Pairs come back sorted.
    """
    wanted_types = {t.lower() for t in field_types}
    targets = set()

    for usage in usages:
        if not usage.reference_name.startswith(field_prefix):
            continue
        if (usage.field_type or '').lower() not in wanted_types:
            continue
        for project, types in usage.uses.items():
            for work_item_type in types:
                targets.add((project, work_item_type))

    return sorted(targets)


def safe_file_name(name: str) -> str:
    return UNSAFE_PATH_CHARS.sub('_', name).strip() or '_'


def plan_exports(targets: Iterable[Tuple[str, str]], output_dir: Union[str, Path]) -> List[WitdExportEntry]:
    """Lay out backup and annotated paths for each (project, type) pair."""
    output_dir = Path(output_dir)
    entries = []
    for project, work_item_type in targets:
        relative = Path(safe_file_name(project)) / f"{safe_file_name(work_item_type)}.xml"
        entries.append(WitdExportEntry(
            project=project,
            work_item_type=work_item_type,
            backup_path=output_dir / WitdDefaults.BACKUP_DIR / relative,
            annotated_path=output_dir / WitdDefaults.ANNOTATED_DIR / relative,
        ))
    return entries


def annotate_definition(definition: str, comment: str) -> str:
    """Insert an XML comment at the top, after the XML declaration if any."""
    comment = comment.replace('--', '- -')
    block = f"<!-- {comment} -->"

    match = XML_DECLARATION.match(definition)
    if match:
        end = match.end()
        return f"{definition[:end]}\n{block}{definition[end:]}"
    return f"{block}\n{definition}"


def build_import_command(
    collection_url: str,
    entry: WitdExportEntry,
    witadmin: str = WitdDefaults.WITADMIN_EXECUTABLE
) -> str:
    return (
        f'"{witadmin}" importwitd /collection:"{collection_url}" '
        f'/p:"{entry.project}" /f:"{entry.annotated_path}"'
    )


# ============================================================================
# Exporters
# ============================================================================

class WitadminExporter:
    """Exports definitions with the witadmin command-line tool."""

    def __init__(
        self,
        witadmin_path: str,
        collection_url: str,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run
    ):
        """
        Args:
            witadmin_path: Path to witadmin.exe, or a name on PATH
            collection_url: Project collection URL passed as /collection:
            runner: subprocess.run compatible callable

        Raises:
            ConfigurationError: If the tool cannot be found
        """
        resolved = witadmin_path if Path(witadmin_path).is_file() else shutil.which(witadmin_path)
        if not resolved:
            raise ConfigurationError(f"witadmin not found: {witadmin_path}")

        self.witadmin_path = resolved
        self.collection_url = collection_url
        self._runner = runner

    @property
    def command_name(self) -> str:
        return self.witadmin_path

    def _run_export(self, project: str, work_item_type: str, destination: Path) -> None:
        command = [
            self.witadmin_path,
            "exportwitd",
            f"/collection:{self.collection_url}",
            f"/p:{project}",
            f"/n:{work_item_type}",
            f"/f:{destination}",
        ]
        completed = self._runner(command, capture_output=True, text=True, check=False)
        if completed.returncode != 0:
            raise ExternalToolError(
                "witadmin exportwitd",
                completed.returncode,
                completed.stderr or completed.stdout
            )

    async def export(self, project: str, work_item_type: str, destination: Path) -> str:
        """Export into destination and return the definition text."""
        await asyncio.to_thread(self._run_export, project, work_item_type, destination)
        return destination.read_text(encoding='utf-8-sig')


class RestExporter:
    """Exports definitions through the REST API (read-only)."""

    command_name = WitdDefaults.WITADMIN_EXECUTABLE

    def __init__(self, auth):
        self.auth = auth
        self._wit_client = None

    @property
    def wit_client(self):
        """Lazy load work item tracking client"""
        if not self._wit_client:
            self._wit_client = self.auth.get_client('work_item_tracking')
        return self._wit_client

    @azure_devops_operation(timeout_seconds=60)
    async def _get_definition(self, project: str, work_item_type: str) -> Optional[str]:
        wit_type = self.wit_client.get_work_item_type(project=project, type=work_item_type)
        return getattr(wit_type, 'xml_form', None)

    async def export(self, project: str, work_item_type: str, destination: Path) -> str:
        """Fetch the definition, store it at destination and return it."""
        definition = await self._get_definition(project, work_item_type)
        if not definition:
            raise NotFoundError(resource=f"Definition of '{work_item_type}' in '{project}'")
        destination.write_text(definition, encoding='utf-8')
        return definition


# ============================================================================
# Service
# ============================================================================

class WitdService:
    """Plans and runs work item type definition exports"""

    def __init__(self, collection_url: str, exporter=None):
        """
        Args:
            collection_url: Collection URL used in import commands
            exporter: WitadminExporter or RestExporter; not needed for dry runs
        """
        self.collection_url = collection_url
        self.exporter = exporter

    def load_inventory(self, inventory_path: Union[str, Path]) -> List[FieldUsage]:
        """
        Raises:
            ConfigurationError: If the inventory file cannot be read
        """
        path = Path(inventory_path)
        if not path.is_file():
            raise ConfigurationError(f"Field inventory not found: {path}")
        try:
            text = path.read_text(encoding='utf-8-sig')
        except OSError as e:
            raise ConfigurationError(f"Could not read field inventory {path}: {e}") from e
        return parse_field_inventory(text)

    def _annotation(self, entry: WitdExportEntry, field_prefix: str, field_types: Sequence[str]) -> str:
        return (
            f"Exported {datetime.now().strftime('%Y-%m-%d %H:%M:%S')} from {self.collection_url}, "
            f"project '{entry.project}', type '{entry.work_item_type}'. "
            f"This type uses {'/'.join(field_types)} fields named {field_prefix}*. "
            f"Edit this copy, then import it with the command in {WitdDefaults.IMPORT_COMMANDS_FILE}. "
            f"The unmodified definition is in {entry.backup_path}."
        )

    async def export_definitions(
        self,
        inventory_path: Union[str, Path],
        output_dir: Union[str, Path],
        field_prefix: str = WitdDefaults.FIELD_PREFIX,
        field_types: Sequence[str] = WitdDefaults.FIELD_TYPES,
        dry_run: bool = False
    ) -> WitdExportResult:
        """
        Export the definitions of every type that uses a matching field.

        Args:
            inventory_path: Field inventory text file
            output_dir: Root directory for backup/, annotated/ and import commands
            field_prefix: Reference name prefix of the fields of interest
            field_types: Field types of interest
            dry_run: Parse and plan only; no files, no external calls

        Returns:
            WitdExportResult with the plan, counts and import commands
        """
        result = WitdExportResult(dry_run=dry_run)
        output_dir = Path(output_dir)

        usages = self.load_inventory(inventory_path)
        targets = collect_targets(usages, field_prefix, field_types)
        result.planned = plan_exports(targets, output_dir)
        logger.info(
            f"{len(usages)} fields in inventory, {len(result.planned)} work item types "
            f"use {'/'.join(field_types)} fields named {field_prefix}*"
        )

        witadmin = getattr(self.exporter, 'command_name', WitdDefaults.WITADMIN_EXECUTABLE)

        if dry_run:
            for entry in result.planned:
                logger.info(f"[dry run] Would export {entry.project}/{entry.work_item_type} to {entry.backup_path}")
                result.import_commands.append(build_import_command(self.collection_url, entry, witadmin))
            return result

        if self.exporter is None:
            raise ConfigurationError("An exporter (witadmin or REST) is required unless running dry")

        for entry in result.planned:
            try:
                entry.backup_path.parent.mkdir(parents=True, exist_ok=True)
                entry.annotated_path.parent.mkdir(parents=True, exist_ok=True)

                definition = await self.exporter.export(entry.project, entry.work_item_type, entry.backup_path)
                entry.annotated_path.write_text(
                    annotate_definition(definition, self._annotation(entry, field_prefix, field_types)),
                    encoding='utf-8'
                )
            except (AzureDevOpsError, OSError) as e:
                result.failed += 1
                result.failures.append((entry.project, entry.work_item_type, sanitize_error(e)))
                logger.error(safe_log_error(e, f"Failed to export {entry.project}/{entry.work_item_type}"))
                continue

            result.exported += 1
            result.import_commands.append(build_import_command(self.collection_url, entry, witadmin))
            logger.info(f"Exported {entry.project}/{entry.work_item_type} -> {entry.annotated_path}")

        if result.import_commands:
            output_dir.mkdir(parents=True, exist_ok=True)
            commands_path = output_dir / WitdDefaults.IMPORT_COMMANDS_FILE
            commands_path.write_text("\n".join(result.import_commands) + "\n", encoding='utf-8')
            result.import_commands_path = commands_path

        return result
