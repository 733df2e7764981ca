"""
Query rewrite service for Azure DevOps
Points saved WIQL queries at renamed fields
"""
import logging
import re
from typing import Any, List, Optional, Tuple

from azure.devops.v7_1.work_item_tracking.models import QueryHierarchyItem

from ..constants import Throttle
from ..decorators import azure_devops_operation
from ..display import Confirmation, always_confirm
from ..errors import AzureDevOpsError
from ..log_sanitizer import safe_log_error, sanitize_error
from ..models import FieldMapping, QueryRecord, QueryRewriteResult
from ..pacing import pace_writes
from .discovery_service import DiscoveryService

logger = logging.getLogger(__name__)


def rewrite_wiql(wiql: str, mappings: List[FieldMapping]) -> Tuple[str, List[FieldMapping]]:
    """
    Replace bracketed source field references with their targets.

    Matching is textual and case-sensitive on the whole token "[Source.Field]";
    the WIQL is not parsed, so a token inside a string literal is rewritten
    too. All mappings are applied in a single pass: text produced by one
    mapping is never matched by another.

    Args:
        wiql: Query text
        mappings: Field mappings to apply

    Returns:
        (new_wiql, mappings_that_matched)
    """
    replacements = {}
    for mapping in mappings:
        replacements.setdefault(f"[{mapping.source_field}]", mapping)

    if not wiql or not replacements:
        return wiql, []

    # Longest token first so alternation never prefers a shorter match
    tokens = sorted(replacements, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(token) for token in tokens))

    matched: List[FieldMapping] = []

    def _replace(match) -> str:
        mapping = replacements[match.group(0)]
        if mapping not in matched:
            matched.append(mapping)
        return f"[{mapping.target_field}]"

    new_wiql = pattern.sub(_replace, wiql)
    # Report matches in configuration order
    matched = [m for m in replacements.values() if m in matched]
    return new_wiql, matched


class QueryRewriteService:
    """Service that rewrites field references in saved queries"""

    def __init__(
        self,
        auth,
        project: str,
        discovery: Optional[DiscoveryService] = None,
        pause_every: int = Throttle.PAUSE_EVERY,
        pause_seconds: float = Throttle.PAUSE_SECONDS
    ):
        self.auth = auth
        self.project = project
        self.discovery = discovery or DiscoveryService(auth, project)
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds

    @property
    def wit_client(self):
        return self.discovery.wit_client

    @azure_devops_operation(timeout_seconds=30)
    async def _update_query_wiql(self, query_id: str, wiql: str) -> Any:
        return self.wit_client.update_query(
            query_update=QueryHierarchyItem(wiql=wiql),
            project=self.project,
            query=query_id
        )

    async def rewrite_queries(
        self,
        mappings: List[FieldMapping],
        confirm: Confirmation = always_confirm,
        dry_run: bool = False,
        queries: Optional[List[QueryRecord]] = None
    ) -> QueryRewriteResult:
        """
        Rewrite every saved query that references a mapped source field.

        Each matching query gets exactly one update carrying all of its
        replacements. Queries without a match are skipped, not failed.

        Args:
            mappings: Field mappings to apply
            confirm: Called once before any write; returning False cancels
            dry_run: Report the rewrites without sending them
            queries: Pre-fetched query records (default: walk the project tree)

        Returns:
            QueryRewriteResult with counts and failures
        """
        result = QueryRewriteResult(dry_run=dry_run)

        if queries is None:
            queries = await self.discovery.list_queries()
        result.scanned = len(queries)
        logger.info(f"Scanning {len(queries)} saved queries in project '{self.project}'")

        pending = []
        for query in queries:
            new_wiql, matched = rewrite_wiql(query.wiql, mappings)
            if not matched:
                result.skipped += 1
                logger.debug(f"Skipping query '{query.path or query.name}': no mapped field referenced")
                continue
            pending.append((query, new_wiql, matched))
            logger.info(
                f"Query '{query.path or query.name}' references "
                + ", ".join(m.source_field for m in matched)
            )

        result.matched = len(pending)

        if dry_run:
            for query, new_wiql, _ in pending:
                logger.info(f"[dry run] Would rewrite '{query.path or query.name}' to: {new_wiql}")
            return result

        if not pending:
            logger.info("No saved query needs an update")
            return result

        if not confirm(f"About to update {len(pending)} saved queries in project '{self.project}'."):
            result.cancelled = True
            logger.warning("Query rewrite cancelled; no queries were updated")
            return result

        for index, (query, new_wiql, matched) in enumerate(pending, start=1):
            try:
                await self._update_query_wiql(query.id, new_wiql)
                result.updated += 1
                logger.info(
                    f"[{index}/{len(pending)}] Updated query '{query.path or query.name}' "
                    f"({len(matched)} field reference(s) replaced)"
                )
            except AzureDevOpsError as e:
                result.record_failure(query, sanitize_error(e))
                logger.error(safe_log_error(e, f"[{index}/{len(pending)}] Failed to update query '{query.name}'"))

            await pace_writes(index, len(pending), self.pause_every, self.pause_seconds)

        return result
