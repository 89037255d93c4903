"""
Compliance Data Models

Pydantic value models passed between the repositories and the evaluation
engine. ORM rows are converted into these at the repository boundary so the
evaluator and orchestrator never hold database sessions.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    FindingStatus,
    FrameworkType,
    RuleCategory,
    RuleType,
    ScanStatus,
    ScanType,
    Severity,
)

# Fields of a Resource that property_check may read. Anything else is
# rejected when the rule is created.
INSPECTABLE_PROPERTIES = frozenset(
    {
        "id",
        "resource_arn",
        "resource_type",
        "resource_name",
        "region",
        "environment",
        "is_encrypted",
        "is_public",
        "has_backup",
    }
)


class Resource(BaseModel):
    """
    Inventory record for one infrastructure resource.

    Read-only input owned by the ingestion subsystem.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: Optional[str] = None
    resource_arn: str
    resource_type: str
    resource_name: Optional[str] = None
    region: Optional[str] = None
    environment: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_encrypted: Optional[bool] = None
    is_public: Optional[bool] = None
    has_backup: Optional[bool] = None

    def get_property(self, name: str) -> Any:
        """Read an inspectable field by name."""
        if name not in INSPECTABLE_PROPERTIES:
            raise KeyError(name)
        return getattr(self, name)

    def as_script_data(self) -> Dict[str, Any]:
        """Plain-data view handed to custom_script evaluation."""
        return self.model_dump()


class Framework(BaseModel):
    """A named collection of compliance rules owned by an organization."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    framework_type: FrameworkType = FrameworkType.CUSTOM
    enabled: bool = True
    is_default: bool = False
    standard_name: Optional[str] = None
    version: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Rule(BaseModel):
    """A single declarative check with a type-specific condition payload."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    framework_id: str
    rule_code: str
    title: str
    description: Optional[str] = None
    severity: Severity
    category: RuleCategory
    rule_type: RuleType
    conditions: Dict[str, Any] = Field(default_factory=dict)
    resource_types: List[str] = Field(default_factory=list)
    recommendation: str = ""
    remediation_url: Optional[str] = None
    enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RuleDefinition(BaseModel):
    """Input model for creating a rule (built-in seeds, JSON files)."""

    rule_code: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    severity: Severity
    category: RuleCategory
    rule_type: RuleType
    conditions: Dict[str, Any]
    resource_types: List[str] = Field(default_factory=list)
    recommendation: str
    remediation_url: Optional[str] = None
    enabled: bool = True


class FrameworkDefinition(BaseModel):
    """Input model for creating a framework together with its rules."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    framework_type: FrameworkType = FrameworkType.CUSTOM
    enabled: bool = True
    is_default: bool = False
    standard_name: Optional[str] = None
    version: Optional[str] = None
    rules: List[RuleDefinition] = Field(default_factory=list)


class EvaluationResult(BaseModel):
    """
    Outcome of evaluating one rule against one resource.

    Only pass, fail and error are produced by the evaluator; skip is decided
    by the orchestrator from applicability.
    """

    status: FindingStatus
    issue: Optional[str] = None
    recommendation: Optional[str] = None

    @classmethod
    def passed(cls, recommendation: Optional[str] = None) -> "EvaluationResult":
        return cls(status=FindingStatus.PASS, recommendation=recommendation)

    @classmethod
    def failed(cls, issue: str, recommendation: Optional[str] = None) -> "EvaluationResult":
        return cls(status=FindingStatus.FAIL, issue=issue, recommendation=recommendation)

    @classmethod
    def errored(cls, issue: str) -> "EvaluationResult":
        return cls(status=FindingStatus.ERROR, issue=issue)

    @classmethod
    def skipped(cls) -> "EvaluationResult":
        return cls(status=FindingStatus.SKIP)


class ScanRecord(BaseModel):
    """One execution of a framework's enabled rules against a resource set."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    framework_id: str
    scan_type: ScanType = ScanType.MANUAL
    status: ScanStatus = ScanStatus.PENDING
    resource_filters: Dict[str, Any] = Field(default_factory=dict)

    total_resources: int = 0
    resources_scanned: int = 0
    compliant_resources: int = 0
    non_compliant_resources: int = 0
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    compliance_score: Optional[float] = Field(
        default=None,
        description="compliant_resources / resources_scanned * 100, set on completion",
    )

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None
    results: Optional[Dict[str, Any]] = None
    triggered_by: Optional[str] = None
    created_at: Optional[datetime] = None


class Finding(BaseModel):
    """Persisted outcome of one rule evaluated against one resource within one scan."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    scan_id: str
    rule_id: str
    resource_id: str
    resource_arn: str
    resource_type: str
    resource_name: Optional[str] = None
    status: FindingStatus
    severity: Severity
    category: RuleCategory
    issue: Optional[str] = None
    recommendation: Optional[str] = None
    remediated: bool = False
    remediated_at: Optional[datetime] = None
    remediated_by: Optional[str] = None
    remediation_notes: Optional[str] = None
    detected_at: Optional[datetime] = None


class ScanResults(BaseModel):
    """A scan together with its findings."""

    scan: ScanRecord
    findings: List[Finding] = Field(default_factory=list)
