"""
Rule Evaluator

Pure mapping from (rule, resource) to an EvaluationResult. Dispatches on
``rule.rule_type``; each rule type owns the schema of its ``conditions``
payload and its operator set:

    property_check      {property, operator, value}
                        operators: equals (==), not_equals (!=), greater_than (>),
                        less_than (<), contains, not_contains, exists, not_exists
    tag_required        {tag_key}
    tag_pattern         {tag_key, pattern}
    metadata_check      {path, operator, value}
                        operators: equals, not_equals, exists, not_exists
    relationship_check  no evaluator; always an error result
    custom_script       {script}, run in ScriptSandbox

The evaluator performs no I/O. Any failure that can be pinned on one
evaluation (malformed conditions, unknown operator, failing script, script
or regex timeout) comes back as an ``error`` result instead of an exception.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

import regex

from ...config import Settings, get_settings
from ...models.compliance_models import INSPECTABLE_PROPERTIES, EvaluationResult, Resource, Rule
from ...models.enums import RuleType
from ...utils.logging_security import sanitize_for_log
from .condition_cache import ConditionCache
from .exceptions import (
    InvalidConditionsError,
    PatternTimeoutError,
    RuleEvaluationError,
    RuleValidationError,
    ScriptError,
    ScriptExecutionError,
    ScriptTimeoutError,
    UnimplementedRuleTypeError,
    UnsafeScriptError,
    UnsupportedOperatorError,
)
from .script_sandbox import ScriptSandbox

logger = logging.getLogger(__name__)

PROPERTY_OPERATORS = frozenset(
    {"equals", "not_equals", "greater_than", "less_than", "contains", "not_contains", "exists", "not_exists"}
)
PROPERTY_OPERATOR_ALIASES = {"==": "equals", "!=": "not_equals", ">": "greater_than", "<": "less_than"}
METADATA_OPERATORS = frozenset({"equals", "not_equals", "exists", "not_exists"})
VALUELESS_OPERATORS = frozenset({"exists", "not_exists"})


class _Missing:
    """Leaf value for a metadata path that does not resolve."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"


MISSING = _Missing()

RuleHandler = Callable[[Rule, Resource], EvaluationResult]


def strict_equals(left: Any, right: Any) -> bool:
    """Equality that does not treat booleans as the integers 0 and 1."""
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def coerce_to_string(value: Any) -> str:
    """String form used by contains/not_contains."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def ordered_compare(left: Any, right: Any, operator: str) -> bool:
    """
    greater_than / less_than.

    Operands are compared only when both are numbers or both are strings.
    Anything else is an evaluation error, never a silent fail.
    """
    if not ((_is_number(left) and _is_number(right)) or (isinstance(left, str) and isinstance(right, str))):
        raise RuleEvaluationError(
            f"Cannot compare {type(left).__name__} with {type(right).__name__} using {operator}",
            error_code="INCOMPARABLE_OPERANDS",
        )
    return left > right if operator == "greater_than" else left < right


def resolve_metadata_path(metadata: Any, path: str) -> Any:
    """
    Walk a dot-separated path into nested metadata.

    A segment that does not resolve yields MISSING rather than an error.
    Numeric segments index into lists.
    """
    current = metadata
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


def _conditions(rule: Rule) -> Dict[str, Any]:
    if not isinstance(rule.conditions, dict):
        raise InvalidConditionsError(f"Invalid {rule.rule_type.value} conditions")
    return rule.conditions


class RuleEvaluator:
    """
    Dispatches rule evaluation by rule type.

    New rule types are added with ``register``; the dispatch table starts
    with the built-in handlers. Compiled regexes and scripts are cached in a
    ConditionCache owned by this instance.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        condition_cache: Optional[ConditionCache] = None,
        sandbox: Optional[ScriptSandbox] = None,
    ):
        settings = settings or get_settings()
        self.condition_cache = condition_cache or ConditionCache()
        self.pattern_timeout_ms = settings.pattern_timeout_ms
        self.sandbox = sandbox or ScriptSandbox(
            timeout_ms=settings.script_timeout_ms,
            max_steps=settings.script_max_steps,
            max_sequence_length=settings.script_max_sequence_length,
        )
        self._handlers: Dict[RuleType, RuleHandler] = {
            RuleType.PROPERTY_CHECK: self._evaluate_property_check,
            RuleType.TAG_REQUIRED: self._evaluate_tag_required,
            RuleType.TAG_PATTERN: self._evaluate_tag_pattern,
            RuleType.METADATA_CHECK: self._evaluate_metadata_check,
            RuleType.CUSTOM_SCRIPT: self._evaluate_custom_script,
        }

    def register(self, rule_type: RuleType, handler: RuleHandler) -> None:
        """Install or replace the handler for a rule type."""
        self._handlers[rule_type] = handler

    def supports(self, rule_type: RuleType) -> bool:
        return rule_type in self._handlers

    def evaluate(self, rule: Rule, resource: Resource) -> EvaluationResult:
        """
        Evaluate a rule against a resource.

        Returns:
            EvaluationResult with status pass, fail or error. Never raises.
        """
        try:
            handler = self._handlers.get(rule.rule_type)
            if handler is None:
                raise UnimplementedRuleTypeError(rule.rule_type.value)
            return handler(rule, resource)
        except RuleEvaluationError as e:
            logger.warning(
                f"Rule {sanitize_for_log(rule.rule_code)} errored on resource "
                f"{sanitize_for_log(resource.id, max_length=200)}: {sanitize_for_log(e.message, allow_special=True)}"
            )
            return EvaluationResult.errored(e.message)
        except Exception as e:
            logger.exception(f"Unexpected error evaluating rule {sanitize_for_log(rule.rule_code)}")
            return EvaluationResult.errored(f"Evaluation error: {e}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _evaluate_property_check(self, rule: Rule, resource: Resource) -> EvaluationResult:
        conditions = _conditions(rule)
        prop = conditions.get("property")
        operator = conditions.get("operator")
        value = conditions.get("value")

        if not prop or not operator:
            raise InvalidConditionsError("Invalid property_check conditions")

        operator = PROPERTY_OPERATOR_ALIASES.get(operator, operator)
        if operator not in PROPERTY_OPERATORS:
            raise UnsupportedOperatorError(operator, RuleType.PROPERTY_CHECK.value)

        try:
            resource_value = resource.get_property(prop)
        except KeyError:
            raise InvalidConditionsError(f'Unknown property "{prop}"')

        if operator == "equals":
            passed = strict_equals(resource_value, value)
        elif operator == "not_equals":
            passed = not strict_equals(resource_value, value)
        elif operator in ("greater_than", "less_than"):
            passed = ordered_compare(resource_value, value, operator)
        elif operator == "contains":
            passed = coerce_to_string(value) in coerce_to_string(resource_value)
        elif operator == "not_contains":
            passed = coerce_to_string(value) not in coerce_to_string(resource_value)
        elif operator == "exists":
            passed = resource_value is not None
        else:
            passed = resource_value is None

        if passed:
            return EvaluationResult.passed(rule.recommendation)
        return EvaluationResult.failed(
            f'Property "{prop}" check failed: {operator} {coerce_to_string(value)}'.rstrip(),
            rule.recommendation,
        )

    def _evaluate_tag_required(self, rule: Rule, resource: Resource) -> EvaluationResult:
        tag_key = _conditions(rule).get("tag_key")
        if not tag_key:
            raise InvalidConditionsError("Invalid tag_required conditions - tag_key missing")

        if tag_key in (resource.tags or {}):
            return EvaluationResult.passed(rule.recommendation)
        return EvaluationResult.failed(f'Required tag "{tag_key}" is missing', rule.recommendation)

    def _evaluate_tag_pattern(self, rule: Rule, resource: Resource) -> EvaluationResult:
        conditions = _conditions(rule)
        tag_key = conditions.get("tag_key")
        pattern = conditions.get("pattern")
        if not tag_key or not pattern or not isinstance(pattern, str):
            raise InvalidConditionsError("Invalid tag_pattern conditions")

        tags = resource.tags or {}
        if tag_key not in tags:
            return EvaluationResult.failed(f'Tag "{tag_key}" is missing', rule.recommendation)

        compiled = self.condition_cache.get_or_compile(rule.id, "regex", pattern, lambda: _compile_pattern(pattern))
        tag_value = str(tags[tag_key])
        try:
            matched = compiled.search(tag_value, timeout=self.pattern_timeout_ms / 1000)
        except TimeoutError:
            raise PatternTimeoutError(f"Pattern {pattern} timed out after {self.pattern_timeout_ms}ms")
        if matched:
            return EvaluationResult.passed(rule.recommendation)
        return EvaluationResult.failed(
            f'Tag "{tag_key}" value "{tag_value}" does not match pattern {pattern}',
            rule.recommendation,
        )

    def _evaluate_metadata_check(self, rule: Rule, resource: Resource) -> EvaluationResult:
        conditions = _conditions(rule)
        path = conditions.get("path")
        operator = conditions.get("operator")
        value = conditions.get("value")

        if not path or not operator or not isinstance(path, str):
            raise InvalidConditionsError("Invalid metadata_check conditions")
        if operator not in METADATA_OPERATORS:
            raise UnsupportedOperatorError(operator, RuleType.METADATA_CHECK.value)

        metadata_value = resolve_metadata_path(resource.metadata, path)

        if operator == "equals":
            passed = strict_equals(metadata_value, value)
        elif operator == "not_equals":
            passed = not strict_equals(metadata_value, value)
        elif operator == "exists":
            passed = metadata_value is not MISSING
        else:
            passed = metadata_value is MISSING

        if passed:
            return EvaluationResult.passed(rule.recommendation)
        return EvaluationResult.failed(f'Metadata check failed at path "{path}"', rule.recommendation)

    def _evaluate_custom_script(self, rule: Rule, resource: Resource) -> EvaluationResult:
        script = _conditions(rule).get("script")
        if not script or not isinstance(script, str):
            raise InvalidConditionsError("Invalid custom_script conditions - script missing")

        try:
            compiled = self.condition_cache.get_or_compile(
                rule.id, "script", script, lambda: self.sandbox.compile(script)
            )
            passed = self.sandbox.run(compiled, resource.as_script_data())
        except ScriptTimeoutError as e:
            raise ScriptTimeoutError(f"Script timed out: {e.message}")
        except UnsafeScriptError as e:
            raise UnsafeScriptError(f"Script rejected: {e.message}")
        except ScriptError as e:
            raise ScriptExecutionError(f"Script execution error: {e.message}")

        if passed:
            return EvaluationResult.passed(rule.recommendation)
        return EvaluationResult.failed("Custom script check failed", rule.recommendation)

    # ------------------------------------------------------------------
    # Creation-time validation
    # ------------------------------------------------------------------

    def validate(self, rule_type: RuleType, conditions: Any, rule_code: Optional[str] = None) -> None:
        """
        Validate a condition payload before a rule is stored.

        Raises:
            RuleValidationError: Payload does not fit the rule type's schema.
        """

        def reject(message: str) -> None:
            raise RuleValidationError(message, rule_code=rule_code)

        if not isinstance(conditions, dict):
            reject("Conditions must be an object")

        if rule_type == RuleType.PROPERTY_CHECK:
            prop = conditions.get("property")
            operator = PROPERTY_OPERATOR_ALIASES.get(conditions.get("operator"), conditions.get("operator"))
            if prop not in INSPECTABLE_PROPERTIES:
                reject(f"property must be one of: {', '.join(sorted(INSPECTABLE_PROPERTIES))}")
            if operator not in PROPERTY_OPERATORS:
                reject(f"Unsupported property_check operator: {conditions.get('operator')}")
            if operator not in VALUELESS_OPERATORS and "value" not in conditions:
                reject(f"Operator {operator} requires a value")

        elif rule_type == RuleType.TAG_REQUIRED:
            if not isinstance(conditions.get("tag_key"), str) or not conditions["tag_key"]:
                reject("tag_required requires a tag_key")

        elif rule_type == RuleType.TAG_PATTERN:
            if not isinstance(conditions.get("tag_key"), str) or not conditions["tag_key"]:
                reject("tag_pattern requires a tag_key")
            pattern = conditions.get("pattern")
            if not isinstance(pattern, str) or not pattern:
                reject("tag_pattern requires a pattern")
            try:
                regex.compile(pattern)
            except regex.error as e:
                reject(f"Invalid pattern: {e}")

        elif rule_type == RuleType.METADATA_CHECK:
            if not isinstance(conditions.get("path"), str) or not conditions["path"]:
                reject("metadata_check requires a path")
            operator = conditions.get("operator")
            if operator not in METADATA_OPERATORS:
                reject(f"Unsupported metadata_check operator: {operator}")
            if operator not in VALUELESS_OPERATORS and "value" not in conditions:
                reject(f"Operator {operator} requires a value")

        elif rule_type == RuleType.CUSTOM_SCRIPT:
            try:
                self.sandbox.compile(conditions.get("script"))
            except UnsafeScriptError as e:
                reject(f"Invalid script: {e.message}")

        elif rule_type == RuleType.RELATIONSHIP_CHECK:
            logger.warning(
                f"Rule {sanitize_for_log(rule_code)} uses relationship_check, which has no evaluator; "
                "its findings will always be errors"
            )


def _compile_pattern(pattern: str) -> "regex.Pattern":
    try:
        return regex.compile(pattern)
    except regex.error as e:
        raise InvalidConditionsError(f"Invalid pattern {pattern}: {e}")
