"""
Finding persistence.

The write path is a single idempotent upsert keyed on
(scan_id, resource_id, rule_id). Findings are never deleted by the engine.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, bindparam, case, text
from sqlalchemy.orm import Session

from ..database import ComplianceScanFinding, new_id, utcnow
from ..models.compliance_models import Finding
from ..models.enums import SEVERITY_ORDER, FindingStatus
from ..services.compliance.interfaces import FindingSink
from ..utils.logging_security import sanitize_id_for_log
from ..utils.mutation_builders import InsertBuilder, UpdateBuilder
from ..utils.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

FINDING_KEY = ["scan_id", "resource_id", "rule_id"]
# Replaced on re-evaluation; identity and denormalized rule data are kept
FINDING_UPSERT_COLUMNS = ["status", "issue", "recommendation"]
FINDING_COLUMNS = [
    "id",
    "scan_id",
    "rule_id",
    "resource_id",
    "resource_arn",
    "resource_type",
    "resource_name",
    "status",
    "severity",
    "category",
    "issue",
    "recommendation",
    "remediated",
    "detected_at",
]
REQUIRED_FIELDS = ("resource_arn", "resource_type", "status", "severity", "category")

_SEVERITY_RANK = case(
    {severity.value: rank for rank, severity in enumerate(SEVERITY_ORDER)},
    value=ComplianceScanFinding.severity,
    else_=len(SEVERITY_ORDER),
)


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


class FindingRepository(FindingSink):
    """SQL-backed FindingSink plus finding queries"""

    def __init__(self, db: Session):
        self.db = db

    def _build_upsert(self, scan_id: str, rule_id: str, resource_id: str, fields: Dict[str, Any]) -> InsertBuilder:
        missing = [name for name in REQUIRED_FIELDS if fields.get(name) is None]
        if missing:
            raise ValueError(f"Finding is missing required fields: {missing}")

        row = {
            "id": new_id(),
            "scan_id": scan_id,
            "rule_id": rule_id,
            "resource_id": resource_id,
            "resource_arn": fields["resource_arn"],
            "resource_type": fields["resource_type"],
            "resource_name": fields.get("resource_name"),
            "status": _plain(fields["status"]),
            "severity": _plain(fields["severity"]),
            "category": _plain(fields["category"]),
            "issue": fields.get("issue"),
            "recommendation": fields.get("recommendation"),
            "remediated": False,
            "detected_at": utcnow(),
        }
        return (
            InsertBuilder("compliance_scan_findings")
            .columns(*FINDING_COLUMNS)
            .values_dict(row)
            .on_conflict_do_update(FINDING_KEY, FINDING_UPSERT_COLUMNS)
        )

    @staticmethod
    def _statement(query: str):
        return text(query).bindparams(bindparam("v0_detected_at", type_=DateTime()))

    def upsert_finding(self, scan_id: str, rule_id: str, resource_id: str, fields: Dict[str, Any]) -> Finding:
        """
        Insert or replace one finding and return the stored row.

        Args:
            fields: resource_arn, resource_type, resource_name, status,
                severity, category, issue, recommendation
        """
        builder = self._build_upsert(scan_id, rule_id, resource_id, fields).returning("id")
        query, params = builder.build()
        finding_id = self.db.execute(self._statement(query), params).scalar()
        self.db.commit()
        return self.find_finding_by_id(finding_id)

    def upsert_findings(self, scan_id: str, resource_id: str, findings: List[Dict[str, Any]]) -> int:
        """
        Upsert one resource's findings in a single transaction.

        Each entry carries ``rule_id`` plus the upsert fields.
        Returns the number of rows written.
        """
        try:
            for fields in findings:
                query, params = self._build_upsert(scan_id, fields["rule_id"], resource_id, fields).build()
                self.db.execute(self._statement(query), params)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return len(findings)

    def find_finding_by_id(self, finding_id: str) -> Optional[Finding]:
        finding = (
            self.db.query(ComplianceScanFinding)
            .filter(ComplianceScanFinding.id == finding_id)
            .populate_existing()
            .first()
        )
        return Finding.model_validate(finding) if finding else None

    def find_findings_by_scan(self, scan_id: str, status: Optional[FindingStatus] = None) -> List[Finding]:
        """Findings of a scan, most severe first, then oldest first"""
        query = self.db.query(ComplianceScanFinding).filter(ComplianceScanFinding.scan_id == scan_id)
        if status is not None:
            query = query.filter(ComplianceScanFinding.status == FindingStatus(status).value)
        rows = query.order_by(_SEVERITY_RANK, ComplianceScanFinding.detected_at, ComplianceScanFinding.id).all()
        return [Finding.model_validate(row) for row in rows]

    def count_findings(self, scan_id: str, status: Optional[FindingStatus] = None) -> int:
        builder = QueryBuilder("compliance_scan_findings").where("scan_id = :scan_id", scan_id, "scan_id")
        if status is not None:
            builder.where("status = :status", FindingStatus(status).value, "status")
        query, params = builder.count_query()
        return self.db.execute(text(query), params).scalar() or 0

    def mark_finding_remediated(
        self, finding_id: str, remediated_by: str, notes: Optional[str] = None
    ) -> Optional[Finding]:
        """
        Flag a finding as remediated.

        Returns:
            The updated finding, or None if it does not exist.
        """
        query, params = (
            UpdateBuilder("compliance_scan_findings")
            .set("remediated", True)
            .set("remediated_at", utcnow())
            .set("remediated_by", remediated_by)
            .set_if("remediation_notes", notes)
            .where("id = :finding_id", finding_id, "finding_id")
            .build()
        )
        statement = text(query).bindparams(bindparam("set_remediated_at", type_=DateTime()))
        result = self.db.execute(statement, params)
        self.db.commit()
        if result.rowcount == 0:
            return None

        logger.info(
            f"Finding {sanitize_id_for_log(finding_id)} marked remediated by {sanitize_id_for_log(remediated_by)}"
        )
        return self.find_finding_by_id(finding_id)
