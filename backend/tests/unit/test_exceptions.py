"""
Unit tests for the compliance engine exception hierarchy.
"""

import pytest

from compliance_engine.services.compliance.exceptions import (
    ComplianceEngineError,
    ConfigurationError,
    FrameworkInUseError,
    FrameworkNotFoundError,
    InfrastructureError,
    InvalidScanTransitionError,
    NoEnabledRulesError,
    PatternTimeoutError,
    RuleEvaluationError,
    RuleValidationError,
    ScanAlreadyRunningError,
    ScanCancelledError,
    ScanNotFoundError,
    ScanStateError,
    ScriptError,
    ScriptExecutionError,
    ScriptTimeoutError,
    UnimplementedRuleTypeError,
    UnsafeScriptError,
    UnsupportedOperatorError,
)


@pytest.mark.unit
class TestHierarchy:
    @pytest.mark.parametrize(
        "error,parent",
        [
            (FrameworkNotFoundError("fw", "org"), ConfigurationError),
            (NoEnabledRulesError("fw"), ConfigurationError),
            (ScanNotFoundError("s"), ScanStateError),
            (ScanAlreadyRunningError("fw", "org", "s"), ScanStateError),
            (FrameworkInUseError("fw", "s"), ScanStateError),
            (InvalidScanTransitionError("s", "completed", "running"), ScanStateError),
            (UnsupportedOperatorError("~=", "property_check"), RuleEvaluationError),
            (UnimplementedRuleTypeError("relationship_check"), RuleEvaluationError),
            (UnsafeScriptError("no"), ScriptError),
            (ScriptExecutionError("no"), ScriptError),
            (ScriptTimeoutError("no"), ScriptError),
            (ScriptError("no"), RuleEvaluationError),
            (PatternTimeoutError("no"), RuleEvaluationError),
        ],
    )
    def test_parent(self, error, parent) -> None:
        assert isinstance(error, parent)
        assert isinstance(error, ComplianceEngineError)

    def test_scan_level_errors_are_not_evaluation_errors(self) -> None:
        for error in (ScanCancelledError("s"), InfrastructureError("db down"), RuleValidationError("bad")):
            assert not isinstance(error, RuleEvaluationError)


@pytest.mark.unit
class TestMessages:
    def test_messages_used_for_persistence(self) -> None:
        assert NoEnabledRulesError("fw").message == "No enabled rules in framework"
        assert ScanCancelledError("s").message == "Scan cancelled"
        assert UnimplementedRuleTypeError("relationship_check").message == (
            "Unimplemented rule type: relationship_check"
        )
        assert UnsupportedOperatorError("~=", "property_check").message == "Unknown operator: ~="

    def test_error_codes(self) -> None:
        assert ScanAlreadyRunningError("fw", "org", "s").error_code == "SCAN_ALREADY_RUNNING"
        assert InfrastructureError("x").error_code == "INFRASTRUCTURE_ERROR"
        assert UnsafeScriptError("x").error_code == "UNSAFE_SCRIPT"
        assert PatternTimeoutError("x").error_code == "PATTERN_TIMEOUT"

    def test_to_dict(self) -> None:
        cause = OSError("disk full")
        error = InfrastructureError("Store unavailable", cause=cause, context={"scan_id": "s1"})

        assert error.to_dict() == {
            "error": "INFRASTRUCTURE_ERROR",
            "message": "Store unavailable",
            "context": {"scan_id": "s1"},
            "cause": "disk full",
        }

    def test_str_includes_code_context_and_cause(self) -> None:
        error = ComplianceEngineError("Boom", context={"k": "v"}, cause=ValueError("inner"))

        assert str(error) == "[COMPLIANCE_ENGINE_ERROR] Boom (context: {'k': 'v'}) (caused by: inner)"

    def test_rule_validation_context(self) -> None:
        assert RuleValidationError("bad", rule_code="R-1").context == {"rule_code": "R-1"}
        assert RuleValidationError("bad").context == {}

    def test_running_scan_id_exposed(self) -> None:
        error = ScanAlreadyRunningError("fw", "org", "scan-9")

        assert error.running_scan_id == "scan-9"
        assert error.context["framework_id"] == "fw"
