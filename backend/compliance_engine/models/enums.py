"""
Shared Enums

Enumeration types used across the data model, repositories and the
evaluation engine. Kept separate to avoid circular imports between
repositories and services.

Usage:
    from compliance_engine.models.enums import RuleType, ScanStatus
"""

from enum import Enum


class FrameworkType(str, Enum):
    """Origin of a compliance framework."""

    BUILT_IN = "built_in"
    CUSTOM = "custom"


class Severity(str, Enum):
    """Rule severity, ordered most to least severe."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RuleCategory(str, Enum):
    """Control area a rule belongs to."""

    ENCRYPTION = "encryption"
    BACKUPS = "backups"
    PUBLIC_ACCESS = "public_access"
    TAGGING = "tagging"
    IAM = "iam"
    NETWORKING = "networking"
    CUSTOM = "custom"


class RuleType(str, Enum):
    """
    Rule evaluation strategy.

    Determines the shape of a rule's ``conditions`` payload and which
    evaluator handles it. RELATIONSHIP_CHECK is declared but has no
    evaluator; rules of that type always produce an error finding.
    """

    PROPERTY_CHECK = "property_check"
    TAG_REQUIRED = "tag_required"
    TAG_PATTERN = "tag_pattern"
    METADATA_CHECK = "metadata_check"
    RELATIONSHIP_CHECK = "relationship_check"
    CUSTOM_SCRIPT = "custom_script"


class ScanType(str, Enum):
    """How a scan was triggered."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    CONTINUOUS = "continuous"


class ScanStatus(str, Enum):
    """
    Scan lifecycle.

    pending -> running -> completed | failed. Both terminal states are final.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class FindingStatus(str, Enum):
    """Outcome of one rule evaluated against one resource."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIP = "skip"


SEVERITY_ORDER = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)

# Allowed scan status transitions
SCAN_TRANSITIONS = {
    ScanStatus.PENDING: frozenset({ScanStatus.RUNNING, ScanStatus.FAILED}),
    ScanStatus.RUNNING: frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED}),
    ScanStatus.COMPLETED: frozenset(),
    ScanStatus.FAILED: frozenset(),
}
