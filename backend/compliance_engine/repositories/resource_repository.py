"""
Resource inventory access.

The ``cloud_resources`` table is populated by the ingestion subsystem; this
repository only reads it.
"""

import logging
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.orm import Session

from ..database import CloudResource
from ..models.compliance_models import Resource
from ..services.compliance.interfaces import ResourceSource

logger = logging.getLogger(__name__)

# Filter keys the inventory understands; anything else is ignored
RESOURCE_FILTER_COLUMNS = {
    "resource_type": CloudResource.resource_type,
    "region": CloudResource.region,
    "environment": CloudResource.environment,
}


def to_resource(row: CloudResource) -> Resource:
    return Resource(
        id=row.id,
        organization_id=row.organization_id,
        resource_arn=row.resource_arn,
        resource_type=row.resource_type,
        resource_name=row.resource_name,
        region=row.region,
        environment=row.environment,
        tags=row.tags or {},
        metadata=row.resource_metadata or {},
        is_encrypted=row.is_encrypted,
        is_public=row.is_public,
        has_backup=row.has_backup,
    )


class ResourceRepository(ResourceSource):
    """SQL-backed ResourceSource over the resource inventory."""

    def __init__(self, db: Session, batch_size: int = 500):
        self.db = db
        self.batch_size = batch_size

    def _query(self, organization_id: str, filters: Optional[Dict[str, Any]]):
        query = self.db.query(CloudResource).filter(CloudResource.organization_id == organization_id)

        ignored = []
        for key, value in (filters or {}).items():
            column = RESOURCE_FILTER_COLUMNS.get(key)
            if column is None:
                ignored.append(key)
                continue
            if value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)

        if ignored:
            logger.debug(f"Ignoring unrecognized resource filters: {sorted(ignored)}")

        return query.order_by(CloudResource.created_at.desc(), CloudResource.id)

    def fetch_resources(self, organization_id: str, filters: Optional[Dict[str, Any]] = None) -> Iterator[Resource]:
        """Stream matching resources, newest first."""
        for row in self._query(organization_id, filters).yield_per(self.batch_size):
            yield to_resource(row)
