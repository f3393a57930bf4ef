"""
Versioned persistence for dashboards.
"""

from typing import Callable, Optional

from ..models.core import DASHBOARD_SK, Dashboard, dashboard_pk
from ..utils.config import config
from ..utils.dynamodb_client import DynamoDBClient, DynamoDBConflictError, DynamoDBError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_iso
from .domains import DomainConfig

logger = get_logger(__name__)


class DashboardWriteError(Exception):
    """Raised when a dashboard could not be persisted; the stored copy is unchanged."""
    pass


class DashboardStore:
    """Read-merge-write of dashboards guarded by a version token."""

    def __init__(self, record_store: Optional[DynamoDBClient] = None, conflict_retries: Optional[int] = None):
        self.store = record_store or DynamoDBClient(config.dynamodb)
        self.conflict_retries = (config.ingestion.dashboard_conflict_retries
                                 if conflict_retries is None else conflict_retries)

    def get(self, user_id: str, domain: str) -> Optional[Dashboard]:
        """
        Current dashboard for (user, domain), or None if none has been written yet.

        Raises:
            DynamoDBError: If the read fails
        """
        item = self.store.get_item(dashboard_pk(domain, user_id), DASHBOARD_SK)
        return Dashboard.from_item(item) if item else None

    def read_merge_write(self, user_id: str, domain: DomainConfig, merge: Callable[[str], str],
                         today: str) -> Dashboard:
        """
        Apply `merge` to the current dashboard and store the result atomically.

        If another writer replaced the dashboard in between, the merge is
        re-run on the fresh copy, up to the configured number of retries.

        Args:
            user_id: Owner of the dashboard
            domain: Domain of the dashboard
            merge: Function from current markdown to new markdown; may raise
            today: Current date, used to render the template of a new dashboard

        Returns:
            The stored dashboard

        Raises:
            DashboardWriteError: If the write fails or keeps conflicting
        """
        attempts = self.conflict_retries + 1
        for attempt in range(attempts):
            try:
                existing = self.get(user_id, domain.name)
            except DynamoDBError as e:
                raise DashboardWriteError(f'Could not read dashboard {domain.name}: {e}') from e

            if existing is not None and existing.content.strip():
                current = existing.content
            else:
                current = domain.render_template(today)

            content = merge(current)

            timestamp = now_iso()
            dashboard = Dashboard(domain=domain.name,
                                  user_id=user_id,
                                  content=content,
                                  created_at=existing.created_at if existing and existing.created_at else timestamp,
                                  updated_at=timestamp,
                                  version=(existing.version if existing else 0) + 1)
            try:
                self.store.put_item_if_version(dashboard.to_item(), existing.version if existing else None)
                logger.info(f'Saved dashboard {domain.name} for {user_id} (v{dashboard.version})')
                return dashboard
            except DynamoDBConflictError:
                logger.warning(f'Dashboard {domain.name} changed concurrently (attempt {attempt + 1}/{attempts})')
            except DynamoDBError as e:
                raise DashboardWriteError(f'Could not save dashboard {domain.name}: {e}') from e

        raise DashboardWriteError(f'Dashboard {domain.name} kept changing concurrently; left as is')
