"""
Compliance engine data models.
"""

from .compliance_models import (  # noqa: F401
    INSPECTABLE_PROPERTIES,
    EvaluationResult,
    Finding,
    Framework,
    FrameworkDefinition,
    Resource,
    Rule,
    RuleDefinition,
    ScanRecord,
    ScanResults,
)
from .enums import (  # noqa: F401
    FindingStatus,
    FrameworkType,
    RuleCategory,
    RuleType,
    ScanStatus,
    ScanType,
    Severity,
)
