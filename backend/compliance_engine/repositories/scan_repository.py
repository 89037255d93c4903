"""
Scan record persistence.

Status transitions are partial-field updates built with UpdateBuilder, so a
transition never overwrites counters written by another step. Guarded
transitions only apply when the row is still in an expected state.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import ComplianceScan, new_id, utcnow
from ..models.compliance_models import ScanRecord
from ..models.enums import SCAN_TRANSITIONS, ScanStatus, ScanType
from ..services.compliance.exceptions import InvalidScanTransitionError, ScanAlreadyRunningError
from ..utils.mutation_builders import UpdateBuilder
from ..utils.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

JSON_COLUMNS = frozenset({"resource_filters", "results"})
DATETIME_COLUMNS = ("started_at", "completed_at")
ACTIVE_SCAN_STATUSES = (ScanStatus.PENDING, ScanStatus.RUNNING)
UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "total_resources",
        "resources_scanned",
        "compliant_resources",
        "non_compliant_resources",
        "critical_issues",
        "high_issues",
        "medium_issues",
        "low_issues",
        "compliance_score",
        "started_at",
        "completed_at",
        "duration_seconds",
        "error_message",
        "results",
    }
)


def _column_value(column: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if column in JSON_COLUMNS and value is not None:
        return json.dumps(value, default=str)
    return value


class ScanRepository:
    """Create, update and query compliance scans"""

    def __init__(self, db: Session):
        self.db = db

    def create_scan(
        self,
        organization_id: str,
        framework_id: str,
        scan_type: ScanType = ScanType.MANUAL,
        resource_filters: Optional[Dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
    ) -> ScanRecord:
        """
        Insert a scan in the pending state.

        Raises:
            ScanAlreadyRunningError: The pair already has a pending or running
                scan. Enforced by a partial unique index, so concurrent
                creators cannot both succeed.
        """
        scan = ComplianceScan(
            id=new_id(),
            organization_id=organization_id,
            framework_id=framework_id,
            scan_type=ScanType(scan_type).value,
            status=ScanStatus.PENDING.value,
            resource_filters=dict(resource_filters or {}),
            triggered_by=triggered_by,
            created_at=utcnow(),
        )
        self.db.add(scan)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            active_scan_id = self.find_active_scan(organization_id, framework_id)
            if active_scan_id is None:
                raise
            raise ScanAlreadyRunningError(framework_id, organization_id, active_scan_id)
        self.db.refresh(scan)
        return ScanRecord.model_validate(scan)

    def update_scan(self, scan_id: str, updates: Dict[str, Any]) -> Optional[ScanRecord]:
        """
        Apply a partial update.

        None values are skipped. Returns the updated scan, or None when
        there was nothing to update or the scan does not exist.
        """
        if self._apply_update(scan_id, updates) == 0:
            return None
        return self.find_scan_by_id(scan_id)

    def transition(
        self,
        scan_id: str,
        expected: Iterable[ScanStatus],
        target: ScanStatus,
        updates: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move a scan to ``target`` only if it is currently in ``expected``.

        Returns:
            True if the row was updated.

        Raises:
            InvalidScanTransitionError: ``target`` is not reachable from one
                of the expected states.
        """
        expected = [ScanStatus(status) for status in expected]
        target = ScanStatus(target)
        for status in expected:
            if target not in SCAN_TRANSITIONS[status]:
                raise InvalidScanTransitionError(scan_id, status.value, target.value)

        fields = dict(updates or {})
        fields["status"] = target
        return self._apply_update(scan_id, fields, expected=expected) > 0

    def _apply_update(
        self,
        scan_id: str,
        updates: Dict[str, Any],
        expected: Optional[List[ScanStatus]] = None,
    ) -> int:
        unknown = set(updates) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown scan fields: {sorted(unknown)}")

        builder = UpdateBuilder("compliance_scans")
        for column, value in updates.items():
            builder.set_if(column, _column_value(column, value))
        if not builder.has_changes:
            return 0

        builder.where("id = :scan_id", scan_id, "scan_id")
        if expected:
            builder.where_in("status", [ScanStatus(status).value for status in expected], "expected")

        query, params = builder.build()
        statement = text(query).bindparams(
            *[bindparam(f"set_{column}", type_=DateTime()) for column in DATETIME_COLUMNS if f"set_{column}" in params]
        )
        result = self.db.execute(statement, params)
        self.db.commit()
        return result.rowcount

    def find_scan_by_id(self, scan_id: str) -> Optional[ScanRecord]:
        scan = self.db.query(ComplianceScan).filter(ComplianceScan.id == scan_id).populate_existing().first()
        return ScanRecord.model_validate(scan) if scan else None

    def find_active_scan(self, organization_id: str, framework_id: str) -> Optional[str]:
        """Id of a pending or running scan for the (organization, framework) pair, if any"""
        query, params = (
            QueryBuilder("compliance_scans")
            .select("id")
            .where("organization_id = :organization_id", organization_id, "organization_id")
            .where("framework_id = :framework_id", framework_id, "framework_id")
            .where_in("status", [status.value for status in ACTIVE_SCAN_STATUSES], "status")
            .limit(1)
            .build()
        )
        return self.db.execute(text(query), params).scalar()

    def list_scans(self, organization_id: str, limit: int = 50) -> List[ScanRecord]:
        """Scans for an organization, newest first"""
        scans = (
            self.db.query(ComplianceScan)
            .filter(ComplianceScan.organization_id == organization_id)
            .order_by(ComplianceScan.created_at.desc())
            .limit(limit)
            .all()
        )
        return [ScanRecord.model_validate(scan) for scan in scans]
