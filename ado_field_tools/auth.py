"""
Personal Access Token connection to an Azure DevOps organization or collection.
"""
import logging
from typing import Optional

from azure.devops.connection import Connection
from msrest.authentication import BasicAuthentication

from .config import ConnectionSettings
from .log_sanitizer import register_secret, safe_log_error

logger = logging.getLogger(__name__)


class AzureDevOpsAuth:
    """
    Holds the Azure DevOps connection for a run.

    Only static Personal Access Tokens are supported; the token is sent as
    the password of a basic-auth pair with an empty user name. The token is
    registered with the log sanitizer as soon as it is known.
    """

    def __init__(self, organization_url: str, token: str):
        self.organization_url = organization_url
        self.connection: Optional[Connection] = None
        self._token = token
        self._auth_method = None
        register_secret(token)

    @classmethod
    def from_settings(cls, settings: ConnectionSettings) -> "AzureDevOpsAuth":
        return cls(settings.organization_url, settings.token)

    def initialize(self) -> None:
        """Build the connection. No request is sent until a client is used."""
        if not self._token:
            raise ValueError("A Personal Access Token is required")

        try:
            credentials = BasicAuthentication('', self._token)
            self.connection = Connection(base_url=self.organization_url, creds=credentials)
        except Exception as e:
            logger.error(safe_log_error(e, f"Could not set up a connection to {self.organization_url}"))
            raise

        self._auth_method = "Personal Access Token"
        logger.debug(f"Connection prepared for {self.organization_url}")

    def get_client(self, client_type: str):
        """
        Return a v7.1 SDK client.

        Only 'work_item_tracking' is used: fields, work items, saved queries
        and work item type definitions all live there.
        """
        if not self.connection:
            raise RuntimeError("No connection yet; call initialize() first.")

        factories = {
            'work_item_tracking': self.connection.clients_v7_1.get_work_item_tracking_client,
        }
        if client_type not in factories:
            raise ValueError(f"Unknown client type: {client_type}")

        return factories[client_type]()

    def close(self) -> None:
        self.connection = None

    def get_auth_info(self) -> dict:
        """Connection summary for the run log; never includes the token."""
        return {
            "method": self._auth_method,
            "organization_url": self.organization_url,
            "authenticated": self.connection is not None
        }
