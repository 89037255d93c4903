"""
Collaborator interfaces consumed by the scan orchestrator.

The resource inventory and the framework/rule store are owned by other
subsystems; the engine depends only on these contracts. The finding sink is
the engine's single write path for evaluation outcomes. SQL-backed
implementations live in ``compliance_engine.repositories``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ...models.compliance_models import Finding, Framework, Resource, Rule


class ResourceSource(ABC):
    """Read-only supplier of the resources a scan evaluates."""

    @abstractmethod
    def fetch_resources(self, organization_id: str, filters: Optional[Dict[str, Any]] = None) -> Iterable[Resource]:
        """
        Return the organization's resources matching every filter.

        Filters are an AND-conjunction of key/value pairs; keys the source
        does not recognize are ignored. The result may be a lazy iterable;
        an exception raised while iterating fails the scan.
        """


class FrameworkRuleStore(ABC):
    """Read-only supplier of framework definitions during a scan."""

    @abstractmethod
    def get_framework_with_rules(
        self, framework_id: str, organization_id: str
    ) -> Optional[Tuple[Framework, List[Rule]]]:
        """
        Return the framework and all of its rules, enabled or not.

        None when the framework does not exist for the organization.
        """


class FindingSink(ABC):
    """Write destination for evaluation outcomes."""

    @abstractmethod
    def upsert_finding(self, scan_id: str, rule_id: str, resource_id: str, fields: Dict[str, Any]) -> Finding:
        """
        Insert or replace the finding for (scan_id, resource_id, rule_id).

        Re-running the same triple updates status, issue and recommendation
        in place; it never creates a second row.
        """

    def upsert_findings(self, scan_id: str, resource_id: str, findings: List[Dict[str, Any]]) -> int:
        """
        Upsert a resource's findings; each entry carries ``rule_id`` plus the
        upsert fields. Returns the number written.
        """
        for fields in findings:
            self.upsert_finding(scan_id, fields["rule_id"], resource_id, fields)
        return len(findings)
