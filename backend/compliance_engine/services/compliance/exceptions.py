"""
Compliance Engine Exceptions

Exception hierarchy for rule evaluation and scan execution. All exceptions
inherit from ComplianceEngineError so callers can catch the whole family.

Exception Hierarchy:
    ComplianceEngineError (base)
    ├── ConfigurationError (scan cannot start meaningfully)
    │   ├── FrameworkNotFoundError
    │   └── NoEnabledRulesError
    ├── ScanStateError (lifecycle violations)
    │   ├── ScanNotFoundError
    │   ├── ScanAlreadyRunningError
    │   ├── FrameworkInUseError
    │   └── InvalidScanTransitionError
    ├── ScanCancelledError
    ├── InfrastructureError (resource source or store unavailable)
    ├── RuleValidationError (rule rejected at creation time)
    └── RuleEvaluationError (scoped to one finding, never aborts a scan)
        ├── InvalidConditionsError
        ├── UnsupportedOperatorError
        ├── UnimplementedRuleTypeError
        ├── PatternTimeoutError
        └── ScriptError
            ├── UnsafeScriptError
            ├── ScriptExecutionError
            └── ScriptTimeoutError

Propagation:
- RuleEvaluationError is converted to an ``error`` finding by the evaluator.
- Everything else raised during a scan fails the whole scan.
"""

from typing import Any, Dict, Optional


class ComplianceEngineError(Exception):
    """
    Base exception for all compliance engine operations.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional context for debugging
        cause: Original exception if wrapping another error
    """

    def __init__(
        self,
        message: str,
        error_code: str = "COMPLIANCE_ENGINE_ERROR",
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.context:
            parts.append(f" (context: {self.context})")
        if self.cause:
            parts.append(f" (caused by: {self.cause})")
        return "".join(parts)


# =============================================================================
# Scan-level errors
# =============================================================================


class ConfigurationError(ComplianceEngineError):
    """Raised before evaluation starts when the framework cannot be scanned."""

    def __init__(self, message: str, error_code: str = "CONFIGURATION_ERROR", **kwargs: Any):
        super().__init__(message, error_code, **kwargs)


class FrameworkNotFoundError(ConfigurationError):
    """Framework does not exist or belongs to another organization."""

    def __init__(self, framework_id: str, organization_id: str):
        super().__init__(
            "Framework not found",
            error_code="FRAMEWORK_NOT_FOUND",
            context={"framework_id": framework_id, "organization_id": organization_id},
        )
        self.framework_id = framework_id


class NoEnabledRulesError(ConfigurationError):
    """Framework has no enabled rules; scanning it would report a meaningless 100%."""

    def __init__(self, framework_id: str):
        super().__init__(
            "No enabled rules in framework",
            error_code="NO_ENABLED_RULES",
            context={"framework_id": framework_id},
        )
        self.framework_id = framework_id


class ScanStateError(ComplianceEngineError):
    """Base for scan lifecycle violations."""

    def __init__(self, message: str, error_code: str = "SCAN_STATE_ERROR", **kwargs: Any):
        super().__init__(message, error_code, **kwargs)


class ScanNotFoundError(ScanStateError):
    def __init__(self, scan_id: str):
        super().__init__("Scan not found", error_code="SCAN_NOT_FOUND", context={"scan_id": scan_id})
        self.scan_id = scan_id


class ScanAlreadyRunningError(ScanStateError):
    """Another scan of the same framework is already pending or running for the organization."""

    def __init__(self, framework_id: str, organization_id: str, running_scan_id: str):
        super().__init__(
            "A scan of this framework is already active",
            error_code="SCAN_ALREADY_RUNNING",
            context={
                "framework_id": framework_id,
                "organization_id": organization_id,
                "running_scan_id": running_scan_id,
            },
        )
        self.running_scan_id = running_scan_id


class FrameworkInUseError(ScanStateError):
    """Framework cannot be deleted while one of its scans is pending or running."""

    def __init__(self, framework_id: str, running_scan_id: str):
        super().__init__(
            "Framework has an active scan",
            error_code="FRAMEWORK_IN_USE",
            context={"framework_id": framework_id, "running_scan_id": running_scan_id},
        )


class InvalidScanTransitionError(ScanStateError):
    def __init__(self, scan_id: str, current: str, target: str):
        super().__init__(
            f"Cannot transition scan from {current} to {target}",
            error_code="INVALID_SCAN_TRANSITION",
            context={"scan_id": scan_id, "current": current, "target": target},
        )


class ScanCancelledError(ComplianceEngineError):
    """Raised inside the evaluation loop when cancellation was requested."""

    def __init__(self, scan_id: str):
        super().__init__("Scan cancelled", error_code="SCAN_CANCELLED", context={"scan_id": scan_id})


class InfrastructureError(ComplianceEngineError):
    """Resource source or persistence store unavailable."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **kwargs: Any):
        super().__init__(message, "INFRASTRUCTURE_ERROR", cause=cause, **kwargs)


class RuleValidationError(ComplianceEngineError):
    """Rule definition rejected at creation time."""

    def __init__(self, message: str, rule_code: Optional[str] = None):
        super().__init__(
            message,
            error_code="RULE_VALIDATION_ERROR",
            context={"rule_code": rule_code} if rule_code else None,
        )


# =============================================================================
# Evaluation errors (finding-scoped)
# =============================================================================


class RuleEvaluationError(ComplianceEngineError):
    """
    Base for errors scoped to a single (rule, resource) evaluation.

    The evaluator turns these into ``error`` findings; the message becomes the
    finding's issue text.
    """

    def __init__(self, message: str, error_code: str = "RULE_EVALUATION_ERROR", **kwargs: Any):
        super().__init__(message, error_code, **kwargs)


class InvalidConditionsError(RuleEvaluationError):
    def __init__(self, message: str):
        super().__init__(message, error_code="INVALID_CONDITIONS")


class UnsupportedOperatorError(RuleEvaluationError):
    def __init__(self, operator: Any, rule_type: str):
        super().__init__(
            f"Unknown operator: {operator}",
            error_code="UNSUPPORTED_OPERATOR",
            context={"operator": operator, "rule_type": rule_type},
        )


class UnimplementedRuleTypeError(RuleEvaluationError):
    def __init__(self, rule_type: str):
        super().__init__(
            f"Unimplemented rule type: {rule_type}",
            error_code="UNIMPLEMENTED_RULE_TYPE",
            context={"rule_type": rule_type},
        )


class ScriptError(RuleEvaluationError):
    """Base for custom_script failures."""

    def __init__(self, message: str, error_code: str = "SCRIPT_ERROR"):
        super().__init__(message, error_code=error_code)


class UnsafeScriptError(ScriptError):
    """Script uses syntax or names outside the sandboxed expression language."""

    def __init__(self, message: str):
        super().__init__(message, error_code="UNSAFE_SCRIPT")


class ScriptExecutionError(ScriptError):
    """Script raised while running (type errors, missing keys, ...)."""

    def __init__(self, message: str):
        super().__init__(message, error_code="SCRIPT_EXECUTION_ERROR")


class ScriptTimeoutError(ScriptError):
    """Script exceeded its time or step budget."""

    def __init__(self, message: str):
        super().__init__(message, error_code="SCRIPT_TIMEOUT")


class PatternTimeoutError(RuleEvaluationError):
    """tag_pattern regex did not finish matching within its time budget."""

    def __init__(self, message: str):
        super().__init__(message, error_code="PATTERN_TIMEOUT")
