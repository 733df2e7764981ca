"""
Discovery service for Azure DevOps
Read-only lookups: work item types, their fields, saved queries and work items
"""
import logging
from typing import Any, AsyncIterator, Iterator, List, Optional, Sequence, TypeVar

from azure.devops.v7_1.work_item_tracking.models import Wiql

from ..constants import ErrorPolicy, ExpandOptions, QueryExpand, QueryLimits
from ..decorators import azure_devops_operation
from ..errors import AzureDevOpsError
from ..log_sanitizer import safe_log_error
from ..models import FieldDescriptor, QueryRecord
from ..validation import validate_batch_size, validate_wiql

logger = logging.getLogger(__name__)

T = TypeVar('T')


def iter_batches(items: Sequence[T], batch_size: int) -> Iterator[List[T]]:
    """
    Slice a sequence into consecutive batches of at most batch_size.

    Yields ceil(len(items) / batch_size) batches covering every item once.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    for start in range(0, len(items), batch_size):
        yield list(items[start:start + batch_size])


class DiscoveryService:
    """Service for read-only discovery calls within one project"""

    def __init__(self, auth, project: str, max_folder_depth: int = QueryLimits.MAX_FOLDER_DEPTH):
        """
        Initialize discovery service

        Args:
            auth: AzureDevOpsAuth instance
            project: Azure DevOps project name
            max_folder_depth: Deepest query folder level that is expanded
        """
        self.auth = auth
        self.project = project
        self.max_folder_depth = max_folder_depth
        self._wit_client = None

    @property
    def wit_client(self):
        """Lazy load work item tracking client"""
        if not self._wit_client:
            self._wit_client = self.auth.get_client('work_item_tracking')
        return self._wit_client

    # ------------------------------------------------------------------
    # Work item types and fields
    # ------------------------------------------------------------------

    @azure_devops_operation(timeout_seconds=30)
    async def _get_type_categories(self) -> List[Any]:
        return self.wit_client.get_work_item_type_categories(project=self.project) or []

    async def list_work_item_types(self) -> List[str]:
        """
        List work item type names for the project.

        Names come from each category's default type and explicit type list,
        de-duplicated in first-seen order. Returns [] when the lookup fails.
        """
        try:
            categories = await self._get_type_categories()
        except AzureDevOpsError as e:
            logger.warning(safe_log_error(e, f"Could not list work item types for project '{self.project}'"))
            return []

        names: List[str] = []
        for category in categories:
            references = []
            if getattr(category, 'default_work_item_type', None):
                references.append(category.default_work_item_type)
            references.extend(getattr(category, 'work_item_types', None) or [])

            for reference in references:
                name = getattr(reference, 'name', None)
                if name and name not in names:
                    names.append(name)

        logger.debug(f"Project '{self.project}' has {len(names)} work item types")
        return names

    @azure_devops_operation(timeout_seconds=30)
    async def _get_type_fields(self, work_item_type: str) -> List[Any]:
        # The SDK percent-encodes route values, so "User Story" is sent as User%20Story
        return self.wit_client.get_work_item_type_fields_with_references(
            project=self.project,
            type=work_item_type
        ) or []

    async def list_fields(self, work_item_type: str) -> List[FieldDescriptor]:
        """
        List the fields of a work item type. Returns [] when the lookup fails.
        """
        try:
            fields = await self._get_type_fields(work_item_type)
        except AzureDevOpsError as e:
            logger.warning(safe_log_error(e, f"Could not list fields for work item type '{work_item_type}'"))
            return []

        return [
            FieldDescriptor(reference_name=f.reference_name, name=getattr(f, 'name', None))
            for f in fields
            if getattr(f, 'reference_name', None)
        ]

    # ------------------------------------------------------------------
    # Saved queries
    # ------------------------------------------------------------------

    @azure_devops_operation(timeout_seconds=60)
    async def _get_query_roots(self) -> List[Any]:
        return self.wit_client.get_queries(
            project=self.project,
            expand=QueryExpand.WIQL,
            depth=QueryLimits.QUERY_TREE_DEPTH
        ) or []

    @azure_devops_operation(timeout_seconds=60)
    async def _get_query_folder(self, folder_id: str) -> Any:
        return self.wit_client.get_query(
            project=self.project,
            query=folder_id,
            expand=QueryExpand.WIQL,
            depth=QueryLimits.QUERY_TREE_DEPTH
        )

    async def _folder_children(self, folder) -> List[Any]:
        children = getattr(folder, 'children', None)
        if children:
            return list(children)
        if not getattr(folder, 'has_children', False):
            return []

        try:
            expanded = await self._get_query_folder(folder.id)
        except AzureDevOpsError as e:
            logger.warning(safe_log_error(e, f"Could not expand query folder '{folder.name}'"))
            return []
        return list(getattr(expanded, 'children', None) or [])

    async def iter_queries(self) -> AsyncIterator[QueryRecord]:
        """
        Walk the saved query tree and yield every query that has WIQL.

        Root items are queries or folders; folders are expanded one level per
        request. Folders below max_folder_depth are reported and skipped.
        """
        try:
            roots = await self._get_query_roots()
        except AzureDevOpsError as e:
            logger.warning(safe_log_error(e, f"Could not list saved queries for project '{self.project}'"))
            return

        # Explicit stack of (item, depth); reversed so output follows tree order
        stack = [(item, 0) for item in reversed(roots)]
        while stack:
            item, depth = stack.pop()

            if getattr(item, 'is_folder', False):
                if depth >= self.max_folder_depth:
                    logger.warning(
                        f"Skipping query folder '{getattr(item, 'path', None) or item.name}': "
                        f"nested deeper than {self.max_folder_depth} levels"
                    )
                    continue
                children = await self._folder_children(item)
                stack.extend((child, depth + 1) for child in reversed(children))
                continue

            wiql = getattr(item, 'wiql', None)
            if not wiql:
                logger.debug(f"Query '{item.name}' has no WIQL, ignoring")
                continue

            yield QueryRecord(
                id=item.id,
                name=item.name,
                wiql=wiql,
                path=getattr(item, 'path', None)
            )

    async def list_queries(self) -> List[QueryRecord]:
        """Flattened list of all saved queries with WIQL"""
        return [query async for query in self.iter_queries()]

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    @azure_devops_operation(timeout_seconds=60)
    async def _query_by_wiql(self, wiql_query: str) -> Any:
        return self.wit_client.query_by_wiql(
            Wiql(query=wiql_query),
            top=QueryLimits.MAX_LIMIT
        )

    async def find_work_item_ids(self, wiql_query: str) -> List[int]:
        """
        Run a WIQL query and return matching work item ids.

        At most QueryLimits.MAX_LIMIT ids come back; hitting the cap is logged
        so the operator can narrow the run.

        Raises:
            ValidationError: If the query is malformed
            AzureDevOpsError: If the service rejects the query
        """
        validate_wiql(wiql_query)

        query_result = await self._query_by_wiql(wiql_query)

        work_items = getattr(query_result, 'work_items', None) or []
        if len(work_items) >= QueryLimits.MAX_LIMIT:
            logger.warning(
                f"Query returned the maximum of {QueryLimits.MAX_LIMIT} work items; "
                "narrow the mapping list or run it per mapping"
            )
        return [item.id for item in work_items]

    @azure_devops_operation(timeout_seconds=60)
    async def _get_work_item_batch(self, ids: List[int], fields: Optional[List[str]]) -> List[Any]:
        if fields:
            return self.wit_client.get_work_items(
                ids=ids,
                project=self.project,
                fields=fields,
                error_policy=ErrorPolicy.OMIT
            ) or []
        # Cannot use both fields and expand parameters together
        return self.wit_client.get_work_items(
            ids=ids,
            project=self.project,
            expand=ExpandOptions.FIELDS,
            error_policy=ErrorPolicy.OMIT
        ) or []

    async def iter_work_item_batches(
        self,
        ids: List[int],
        batch_size: int = QueryLimits.BATCH_SIZE,
        fields: Optional[List[str]] = None
    ) -> AsyncIterator[tuple]:
        """
        Fetch work items in bounded batches.

        Yields (batch_ids, work_items, error) per batch. A failed batch yields
        an empty item list and the error instead of stopping the walk; ids the
        service omitted (deleted, no access) are simply absent.
        """
        batch_size = validate_batch_size(batch_size)
        for batch_ids in iter_batches(ids, batch_size):
            try:
                items = await self._get_work_item_batch(batch_ids, fields)
            except AzureDevOpsError as e:
                logger.warning(safe_log_error(e, f"Could not fetch {len(batch_ids)} work items"))
                yield batch_ids, [], e
                continue
            yield batch_ids, [item for item in items if item is not None], None

    async def get_work_items(
        self,
        ids: List[int],
        batch_size: int = QueryLimits.BATCH_SIZE,
        fields: Optional[List[str]] = None
    ) -> List[Any]:
        """All fetched work items; batches that failed are logged and left out"""
        work_items = []
        async for _, items, _ in self.iter_work_item_batches(ids, batch_size, fields):
            work_items.extend(items)
        return work_items
