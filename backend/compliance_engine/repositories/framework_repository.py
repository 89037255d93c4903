"""
Framework and rule store.

Frameworks and their rules are read by the scan orchestrator through
``get_framework_with_rules`` and managed through the create/update/enable
operations below. Every rule payload is validated against its rule type's
condition schema before it is stored, and edits drop the rule's compiled
conditions from the evaluator cache.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import ComplianceFramework, ComplianceFrameworkRule, new_id, utcnow
from ..models.compliance_models import Framework, FrameworkDefinition, Rule, RuleDefinition
from ..services.compliance.condition_cache import ConditionCache
from ..services.compliance.exceptions import (
    ConfigurationError,
    FrameworkInUseError,
    FrameworkNotFoundError,
    RuleValidationError,
)
from ..services.compliance.interfaces import FrameworkRuleStore
from ..services.compliance.rule_evaluator import RuleEvaluator
from ..utils.logging_security import sanitize_for_log
from .scan_repository import ScanRepository

logger = logging.getLogger(__name__)

RULE_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "severity",
        "category",
        "rule_type",
        "conditions",
        "resource_types",
        "recommendation",
        "remediation_url",
        "enabled",
    }
)


class FrameworkRepository(FrameworkRuleStore):
    """SQL-backed FrameworkRuleStore with framework and rule management"""

    def __init__(
        self,
        db: Session,
        rule_validator: Optional[RuleEvaluator] = None,
        condition_cache: Optional[ConditionCache] = None,
    ):
        self.db = db
        self._rule_validator = rule_validator
        self.condition_cache = condition_cache or (rule_validator.condition_cache if rule_validator else None)

    @property
    def rule_validator(self) -> RuleEvaluator:
        if self._rule_validator is None:
            self._rule_validator = RuleEvaluator(condition_cache=self.condition_cache)
        return self._rule_validator

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _framework_row(self, framework_id: str, organization_id: str) -> Optional[ComplianceFramework]:
        return (
            self.db.query(ComplianceFramework)
            .filter(
                ComplianceFramework.id == framework_id,
                ComplianceFramework.organization_id == organization_id,
            )
            .first()
        )

    def get_framework_with_rules(
        self, framework_id: str, organization_id: str
    ) -> Optional[Tuple[Framework, List[Rule]]]:
        """Framework plus all of its rules, enabled or not, ordered by rule code"""
        framework = self._framework_row(framework_id, organization_id)
        if framework is None:
            return None

        rules = (
            self.db.query(ComplianceFrameworkRule)
            .filter(ComplianceFrameworkRule.framework_id == framework_id)
            .order_by(ComplianceFrameworkRule.rule_code)
            .all()
        )
        return Framework.model_validate(framework), [Rule.model_validate(rule) for rule in rules]

    def find_framework_by_id(self, framework_id: str, organization_id: str) -> Optional[Framework]:
        framework = self._framework_row(framework_id, organization_id)
        return Framework.model_validate(framework) if framework else None

    def find_framework_by_name(self, organization_id: str, name: str) -> Optional[Framework]:
        framework = (
            self.db.query(ComplianceFramework)
            .filter(ComplianceFramework.organization_id == organization_id, ComplianceFramework.name == name)
            .first()
        )
        return Framework.model_validate(framework) if framework else None

    def list_frameworks(self, organization_id: str, enabled_only: bool = False) -> List[Framework]:
        """Frameworks of an organization, built-in first, then by name"""
        query = self.db.query(ComplianceFramework).filter(ComplianceFramework.organization_id == organization_id)
        if enabled_only:
            query = query.filter(ComplianceFramework.enabled.is_(True))
        rows = query.order_by(ComplianceFramework.framework_type, ComplianceFramework.name).all()
        return [Framework.model_validate(row) for row in rows]

    def find_rule_by_id(self, rule_id: str) -> Optional[Rule]:
        rule = self.db.get(ComplianceFrameworkRule, rule_id)
        return Rule.model_validate(rule) if rule else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _validate_rule(self, definition: RuleDefinition) -> None:
        self.rule_validator.validate(definition.rule_type, definition.conditions, rule_code=definition.rule_code)

    @staticmethod
    def _rule_row(framework_id: str, definition: RuleDefinition) -> ComplianceFrameworkRule:
        now = utcnow()
        return ComplianceFrameworkRule(
            id=new_id(),
            framework_id=framework_id,
            rule_code=definition.rule_code,
            title=definition.title,
            description=definition.description,
            severity=definition.severity.value,
            category=definition.category.value,
            rule_type=definition.rule_type.value,
            conditions=definition.conditions,
            resource_types=list(definition.resource_types),
            recommendation=definition.recommendation,
            remediation_url=definition.remediation_url,
            enabled=definition.enabled,
            created_at=now,
            updated_at=now,
        )

    def create_framework(
        self,
        organization_id: str,
        definition: FrameworkDefinition,
        created_by: Optional[str] = None,
    ) -> Framework:
        """
        Create a framework and its rules in one transaction.

        Raises:
            RuleValidationError: A rule payload does not fit its rule type.
            ConfigurationError: The organization already has a framework with this name.
        """
        for rule in definition.rules:
            self._validate_rule(rule)

        codes = [rule.rule_code for rule in definition.rules]
        duplicates = sorted({code for code in codes if codes.count(code) > 1})
        if duplicates:
            raise RuleValidationError(f"Duplicate rule codes: {', '.join(duplicates)}")

        now = utcnow()
        framework = ComplianceFramework(
            id=new_id(),
            organization_id=organization_id,
            name=definition.name,
            description=definition.description,
            framework_type=definition.framework_type.value,
            enabled=definition.enabled,
            is_default=definition.is_default,
            standard_name=definition.standard_name,
            version=definition.version,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        framework.rules = [self._rule_row(framework.id, rule) for rule in definition.rules]

        self.db.add(framework)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConfigurationError(
                f"Framework {definition.name} already exists",
                error_code="FRAMEWORK_EXISTS",
                context={"organization_id": organization_id, "name": definition.name},
                cause=e,
            )
        self.db.refresh(framework)

        logger.info(
            f"Created framework {sanitize_for_log(definition.name)} ({framework.id}) "
            f"with {len(definition.rules)} rules for organization {organization_id}"
        )
        return Framework.model_validate(framework)

    def create_rule(self, framework_id: str, organization_id: str, definition: RuleDefinition) -> Rule:
        """
        Add a rule to an existing framework.

        Raises:
            FrameworkNotFoundError: Unknown framework for the organization.
            RuleValidationError: Invalid payload or duplicate rule code.
        """
        if self._framework_row(framework_id, organization_id) is None:
            raise FrameworkNotFoundError(framework_id, organization_id)
        self._validate_rule(definition)

        rule = self._rule_row(framework_id, definition)
        self.db.add(rule)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise RuleValidationError(
                f"Rule code {definition.rule_code} already exists in framework", rule_code=definition.rule_code
            )
        self.db.refresh(rule)

        logger.info(f"Created rule {sanitize_for_log(definition.rule_code)} in framework {framework_id}")
        return Rule.model_validate(rule)

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> Optional[Rule]:
        """
        Apply a partial update to a rule.

        The merged rule is re-validated before it is stored.

        Returns:
            The updated rule, or None if it does not exist.
        """
        unknown = set(updates) - RULE_UPDATABLE_FIELDS
        if unknown:
            raise RuleValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        row = self.db.get(ComplianceFrameworkRule, rule_id)
        if row is None:
            return None

        current = Rule.model_validate(row).model_dump(include=set(RuleDefinition.model_fields))
        try:
            merged = RuleDefinition(**{**current, **updates})
        except ValidationError as e:
            raise RuleValidationError(f"Invalid rule update: {e}", rule_code=row.rule_code)
        self._validate_rule(merged)

        for name in updates:
            value = getattr(merged, name)
            setattr(row, name, getattr(value, "value", value))
        row.updated_at = utcnow()
        self.db.commit()

        self._invalidate(rule_id)
        logger.info(f"Updated rule {sanitize_for_log(row.rule_code)} ({rule_id}): {sorted(updates)}")
        return self.find_rule_by_id(rule_id)

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> Optional[Rule]:
        return self.update_rule(rule_id, {"enabled": enabled})

    def set_framework_enabled(self, framework_id: str, organization_id: str, enabled: bool) -> Optional[Framework]:
        framework = self._framework_row(framework_id, organization_id)
        if framework is None:
            return None
        framework.enabled = enabled
        framework.updated_at = utcnow()
        self.db.commit()
        logger.info(f"Framework {framework_id} {'enabled' if enabled else 'disabled'}")
        return Framework.model_validate(framework)

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule; findings that reference it are kept"""
        row = self.db.get(ComplianceFrameworkRule, rule_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        self._invalidate(rule_id)
        return True

    def delete_framework(self, framework_id: str, organization_id: str) -> bool:
        """
        Delete a framework and its rules.

        Raises:
            FrameworkInUseError: A scan of the framework is pending or running.
        """
        framework = self._framework_row(framework_id, organization_id)
        if framework is None:
            return False

        running_scan_id = ScanRepository(self.db).find_active_scan(organization_id, framework_id)
        if running_scan_id:
            raise FrameworkInUseError(framework_id, running_scan_id)

        rule_ids = [rule.id for rule in framework.rules]
        self.db.delete(framework)
        self.db.commit()
        for rule_id in rule_ids:
            self._invalidate(rule_id)

        logger.info(f"Deleted framework {framework_id} and {len(rule_ids)} rules")
        return True

    def _invalidate(self, rule_id: str) -> None:
        if self.condition_cache is not None:
            self.condition_cache.invalidate(rule_id)
