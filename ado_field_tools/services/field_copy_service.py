"""
Field copy service for Azure DevOps
Copies values from source fields to target fields on every work item that has them
"""
import logging
from typing import Any, Dict, List, Optional

from azure.devops.v7_1.work_item_tracking.models import JsonPatchOperation

from ..constants import (
    EMPTY_FIELD_VALUES,
    SYSTEM_WORK_ITEM_TYPES,
    FieldNames,
    QueryLimits,
    Throttle,
    field_path,
    format_wiql_fields,
)
from ..decorators import azure_devops_operation, validate_work_item_id
from ..display import Confirmation, always_confirm
from ..errors import AzureDevOpsError
from ..log_sanitizer import safe_log_error, sanitize_error
from ..models import (
    FieldCopyResult,
    FieldMapping,
    MappingCheckResult,
    MissingTargetField,
)
from ..pacing import pace_writes
from ..validation import sanitize_wiql_string, validate_batch_size, validate_wiql
from .discovery_service import DiscoveryService

logger = logging.getLogger(__name__)


def is_present(value: Any) -> bool:
    """A value counts as present unless it is None, empty or a single space."""
    if value is None:
        return False
    if isinstance(value, str) and value in EMPTY_FIELD_VALUES:
        return False
    return True


def build_discovery_wiql(
    project: str,
    source_fields: List[str],
    exclude_system_types: bool = True
) -> str:
    """
    Build the WIQL that finds work items with any source field filled in.

    Args:
        project: Project name
        source_fields: Source field reference names
        exclude_system_types: Leave out Shared Steps, Code Review, Feedback types

    Returns:
        WIQL selecting System.Id
    """
    if not source_fields:
        raise ValueError("At least one source field is required")

    conditions = " OR ".join(f"[{field}] <> ''" for field in source_fields)
    wiql = (
        f"SELECT {format_wiql_fields([FieldNames.ID])} FROM WorkItems "
        f"WHERE [{FieldNames.TEAM_PROJECT}] = '{sanitize_wiql_string(project)}' "
        f"AND ({conditions})"
    )

    if exclude_system_types:
        excluded = ", ".join(f"'{sanitize_wiql_string(t)}'" for t in SYSTEM_WORK_ITEM_TYPES)
        wiql += f" AND [{FieldNames.WORK_ITEM_TYPE}] NOT IN ({excluded})"

    return wiql


def build_patch_document(
    fields: Dict[str, Any],
    mappings: List[FieldMapping]
) -> List[JsonPatchOperation]:
    """
    One "add" operation per mapping whose source value is present.

    Source fields never appear in the document. When two mappings target the
    same field, the first one with a value wins.
    """
    document = []
    targets = set()
    for mapping in mappings:
        value = fields.get(mapping.source_field)
        if not is_present(value) or mapping.target_field in targets:
            continue
        targets.add(mapping.target_field)
        document.append(
            JsonPatchOperation(
                op='add',
                path=field_path(mapping.target_field),
                value=value
            )
        )
    return document


class FieldCopyService:
    """Service that copies field values between custom fields"""

    def __init__(
        self,
        auth,
        project: str,
        discovery: Optional[DiscoveryService] = None,
        pause_every: int = Throttle.PAUSE_EVERY,
        pause_seconds: float = Throttle.PAUSE_SECONDS
    ):
        """
        Initialize field copy service

        Args:
            auth: AzureDevOpsAuth instance
            project: Azure DevOps project name
            discovery: DiscoveryService to share, created if omitted
            pause_every: Number of writes between pauses
            pause_seconds: Length of each pause
        """
        self.auth = auth
        self.project = project
        self.discovery = discovery or DiscoveryService(auth, project)
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds

    @property
    def wit_client(self):
        return self.discovery.wit_client

    async def check_mappings(self, mappings: List[FieldMapping]) -> MappingCheckResult:
        """
        Work out which mappings apply to which work item types.

        A mapping applies to a type that has both fields. A type that has the
        source but not the target is reported as missing its target and gets
        no writes for that mapping. Types without the source are ignored.
        """
        check = MappingCheckResult()
        check.work_item_types = await self.discovery.list_work_item_types()

        if not check.work_item_types:
            logger.warning(f"No work item types found in project '{self.project}'; nothing to check")
            return check

        for work_item_type in check.work_item_types:
            field_names = {f.reference_name for f in await self.discovery.list_fields(work_item_type)}
            allowed = []

            for mapping in mappings:
                if mapping.source_field not in field_names:
                    continue
                if mapping.target_field not in field_names:
                    check.missing_targets.append(MissingTargetField(work_item_type, mapping))
                    logger.warning(
                        f"Work item type '{work_item_type}' has {mapping.source_field} "
                        f"but no {mapping.target_field}; skipping this mapping for it. "
                        f"Add the field under Organization settings > Process > (inherited process) > "
                        f"{work_item_type} > New field, then rerun."
                    )
                    continue
                allowed.append(mapping)

            if allowed:
                check.allowed[work_item_type] = allowed
                logger.info(
                    f"{work_item_type}: {', '.join(str(m) for m in allowed)}"
                )

        return check

    @validate_work_item_id
    @azure_devops_operation(timeout_seconds=30)
    async def _patch_work_item(self, work_item_id: int, document: List[JsonPatchOperation]) -> Any:
        return self.wit_client.update_work_item(
            document=document,
            id=work_item_id,
            project=self.project
        )

    async def copy_fields(
        self,
        mappings: List[FieldMapping],
        confirm: Confirmation = always_confirm,
        batch_size: int = QueryLimits.BATCH_SIZE,
        exclude_system_types: bool = True,
        dry_run: bool = False
    ) -> FieldCopyResult:
        """
        Copy source field values into target fields across the project.

        Args:
            mappings: Field mappings to apply
            confirm: Called once before any write; returning False cancels
            batch_size: Work items fetched per request (max 200)
            exclude_system_types: Skip Shared Steps, Code Review, Feedback types
            dry_run: Plan the writes without sending them

        Returns:
            FieldCopyResult with counts, missing targets and failures
        """
        batch_size = validate_batch_size(batch_size)
        # The discovery query only shrinks once mappings are checked, so the
        # full one must fit before anything is sent
        if mappings:
            validate_wiql(build_discovery_wiql(
                self.project,
                list(dict.fromkeys(m.source_field for m in mappings)),
                exclude_system_types
            ))
        result = FieldCopyResult(dry_run=dry_run)

        check = await self.check_mappings(mappings)
        result.missing_targets = list(check.missing_targets)

        allowed_somewhere = check.applicable_mappings
        applicable = [m for m in mappings if m in allowed_somewhere]
        if not applicable:
            logger.warning("No mapping applies to any work item type; nothing to copy")
            return result

        source_fields = []
        for mapping in applicable:
            if mapping.source_field not in source_fields:
                source_fields.append(mapping.source_field)

        wiql = build_discovery_wiql(self.project, source_fields, exclude_system_types)
        logger.debug(f"Discovery query: {wiql}")

        try:
            ids = await self.discovery.find_work_item_ids(wiql)
        except AzureDevOpsError as e:
            logger.warning(safe_log_error(e, "Could not query work items"))
            return result

        result.found = len(ids)
        logger.info(f"Found {len(ids)} work items with a value in {', '.join(source_fields)}")
        if not ids:
            return result

        pending = []
        async for batch_ids, items, error in self.discovery.iter_work_item_batches(ids, batch_size):
            if error is not None:
                for work_item_id in batch_ids:
                    result.record_failure(work_item_id, f"Could not read work item: {sanitize_error(error)}")
                continue

            returned = {item.id for item in items}
            for work_item_id in batch_ids:
                if work_item_id not in returned:
                    logger.warning(f"Work item #{work_item_id} was not returned; it may have been deleted or hidden")
                    result.record_failure(work_item_id, "Work item not returned (deleted or no access)")

            for item in items:
                fields = item.fields or {}
                work_item_type = fields.get(FieldNames.WORK_ITEM_TYPE)
                document = build_patch_document(fields, check.allowed.get(work_item_type, []))
                if not document:
                    result.skipped += 1
                    continue
                pending.append((item.id, document))

        result.planned = len(pending)

        if dry_run:
            for work_item_id, document in pending:
                logger.info(
                    f"[dry run] Would update #{work_item_id}: "
                    + ", ".join(op.path.replace('/fields/', '') for op in document)
                )
            return result

        if not pending:
            logger.info("No work item needs an update")
            return result

        if not confirm(f"About to update {len(pending)} work items in project '{self.project}'."):
            result.cancelled = True
            logger.warning("Field copy cancelled; no work items were updated")
            return result

        for index, (work_item_id, document) in enumerate(pending, start=1):
            try:
                await self._patch_work_item(work_item_id, document)
                result.updated += 1
                logger.info(
                    f"[{index}/{len(pending)}] Updated #{work_item_id}: "
                    + ", ".join(op.path.replace('/fields/', '') for op in document)
                )
            except AzureDevOpsError as e:
                result.record_failure(work_item_id, sanitize_error(e))
                logger.error(safe_log_error(e, f"[{index}/{len(pending)}] Failed to update #{work_item_id}"))

            await pace_writes(index, len(pending), self.pause_every, self.pause_seconds)

        return result
