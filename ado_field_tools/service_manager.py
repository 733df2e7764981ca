"""
Per-project services sharing one authenticated connection
"""
from typing import Dict, List, Optional

from .auth import AzureDevOpsAuth
from .constants import Throttle
from .services.discovery_service import DiscoveryService
from .services.field_copy_service import FieldCopyService
from .services.query_rewrite_service import QueryRewriteService
from .validation import ValidationError


class ServiceManager:
    """
    Hands out discovery, field copy and query rewrite services per project.

    Services are created on first use and cached by project name. The copy
    and rewrite services of a project reuse that project's DiscoveryService,
    so one work item tracking client serves the whole run.

    Example:
        auth = AzureDevOpsAuth(org_url, token)
        auth.initialize()

        manager = ServiceManager(auth, default_project="Fabrikam")
        result = await manager.get_field_copy_service().copy_fields(mappings)
    """

    def __init__(
        self,
        auth: AzureDevOpsAuth,
        default_project: Optional[str] = None,
        pause_every: int = Throttle.PAUSE_EVERY,
        pause_seconds: float = Throttle.PAUSE_SECONDS
    ):
        if not auth or not auth.connection:
            raise ValueError(
                "ServiceManager needs an initialized AzureDevOpsAuth; "
                "run auth.initialize() first."
            )

        self.auth = auth
        self.default_project = default_project
        # Pacing for the write services
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds

        self._discovery: Dict[str, DiscoveryService] = {}
        self._field_copy: Dict[str, FieldCopyService] = {}
        self._query_rewrite: Dict[str, QueryRewriteService] = {}

    def get_discovery_service(self, project: Optional[str] = None) -> DiscoveryService:
        project = self._resolve_project(project)
        if project not in self._discovery:
            self._discovery[project] = DiscoveryService(self.auth, project)
        return self._discovery[project]

    def get_field_copy_service(self, project: Optional[str] = None) -> FieldCopyService:
        project = self._resolve_project(project)
        if project not in self._field_copy:
            self._field_copy[project] = FieldCopyService(
                self.auth,
                project,
                discovery=self.get_discovery_service(project),
                pause_every=self.pause_every,
                pause_seconds=self.pause_seconds
            )
        return self._field_copy[project]

    def get_query_rewrite_service(self, project: Optional[str] = None) -> QueryRewriteService:
        project = self._resolve_project(project)
        if project not in self._query_rewrite:
            self._query_rewrite[project] = QueryRewriteService(
                self.auth,
                project,
                discovery=self.get_discovery_service(project),
                pause_every=self.pause_every,
                pause_seconds=self.pause_seconds
            )
        return self._query_rewrite[project]

    def _resolve_project(self, project: Optional[str]) -> str:
        """Explicit project, else the default; ValidationError when neither is set."""
        if project and project.strip():
            return project.strip()
        if self.default_project:
            return self.default_project

        raise ValidationError(
            "Project name is required: pass --project or set AZURE_DEVOPS_PROJECT."
        )

    def get_loaded_projects(self) -> List[str]:
        """Sorted names of projects with at least one service created"""
        return sorted(set(self._discovery) | set(self._field_copy) | set(self._query_rewrite))

    def __repr__(self) -> str:
        return (
            f"ServiceManager(projects={len(self.get_loaded_projects())}, "
            f"default='{self.default_project}')"
        )
