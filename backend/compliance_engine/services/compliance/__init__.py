"""
Compliance evaluation engine.

Modules:
    rule_evaluator      pure (rule, resource) -> result evaluation
    applicability       resource-type scoping of rules
    script_sandbox      restricted interpreter for custom_script rules
    condition_cache     per-process cache of compiled conditions
    aggregation         concurrency-safe scan counters and scoring
    scan_orchestrator   scan lifecycle, worker pool and cancellation
    builtin_frameworks  built-in framework definitions and JSON loader

The orchestrator is imported from its module directly; it depends on the
SQL repositories, which themselves import the interfaces defined here.
"""

from .exceptions import (  # noqa: F401
    ComplianceEngineError,
    ConfigurationError,
    FrameworkInUseError,
    FrameworkNotFoundError,
    InfrastructureError,
    NoEnabledRulesError,
    RuleEvaluationError,
    RuleValidationError,
    ScanAlreadyRunningError,
    ScanCancelledError,
    ScanNotFoundError,
    ScanStateError,
)
from .interfaces import FindingSink, FrameworkRuleStore, ResourceSource  # noqa: F401
