"""
Data models for Azure DevOps field tooling
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Tuple


@dataclass(frozen=True)
class FieldMapping:
    """A source field whose values are carried over to a target field"""
    source_field: str
    target_field: str

    def __str__(self) -> str:
        return f"{self.source_field} -> {self.target_field}"


@dataclass(frozen=True)
class FieldDescriptor:
    """A field available on a work item type"""
    reference_name: str
    name: Optional[str] = None


@dataclass(frozen=True)
class QueryRecord:
    """A saved query flattened out of the query folder tree"""
    id: str
    name: str
    wiql: str
    path: Optional[str] = None


@dataclass(frozen=True)
class MissingTargetField:
    """A work item type that has a mapping's source field but not its target"""
    work_item_type: str
    mapping: FieldMapping


@dataclass(frozen=True)
class WorkItemFailure:
    """A work item that could not be read or updated"""
    work_item_id: int
    message: str


@dataclass(frozen=True)
class QueryFailure:
    """A saved query that could not be updated"""
    query_id: str
    name: str
    message: str


@dataclass
class FieldCopyResult:
    """Outcome of a field copy run"""
    found: int = 0
    planned: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    missing_targets: List[MissingTargetField] = field(default_factory=list)
    failures: List[WorkItemFailure] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    @property
    def missing_target_types(self) -> List[str]:
        """Work item types skipped for at least one mapping, in report order"""
        seen: List[str] = []
        for missing in self.missing_targets:
            if missing.work_item_type not in seen:
                seen.append(missing.work_item_type)
        return seen

    def record_failure(self, work_item_id: int, message: str) -> None:
        self.failed += 1
        self.failures.append(WorkItemFailure(work_item_id, message))


@dataclass
class QueryRewriteResult:
    """Outcome of a saved query rewrite run"""
    scanned: int = 0
    matched: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[QueryFailure] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    def record_failure(self, query: QueryRecord, message: str) -> None:
        self.failed += 1
        self.failures.append(QueryFailure(query.id, query.name, message))


@dataclass
class FieldUsage:
    """A custom field definition read from a field inventory listing"""
    reference_name: str
    field_type: Optional[str] = None
    name: Optional[str] = None
    uses: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class WitdExportEntry:
    """Planned export of one work item type definition"""
    project: str
    work_item_type: str
    backup_path: Path
    annotated_path: Path

    @property
    def target(self) -> Tuple[str, str]:
        return (self.project, self.work_item_type)


@dataclass
class WitdExportResult:
    """Outcome of a WITD export run"""
    planned: List[WitdExportEntry] = field(default_factory=list)
    exported: int = 0
    failed: int = 0
    failures: List[Tuple[str, str, str]] = field(default_factory=list)
    import_commands: List[str] = field(default_factory=list)
    import_commands_path: Optional[Path] = None
    dry_run: bool = False


@dataclass
class MappingCheckResult:
    """Which mappings may be written for each work item type"""
    work_item_types: List[str] = field(default_factory=list)
    allowed: Dict[str, List[FieldMapping]] = field(default_factory=dict)
    missing_targets: List[MissingTargetField] = field(default_factory=list)

    @property
    def applicable_mappings(self) -> List[FieldMapping]:
        """Mappings allowed on at least one type, in first-seen order"""
        mappings: List[FieldMapping] = []
        for allowed in self.allowed.values():
            for mapping in allowed:
                if mapping not in mappings:
                    mappings.append(mapping)
        return mappings
