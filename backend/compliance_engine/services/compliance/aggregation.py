"""
Scan aggregation and scoring.

Workers report one ResourceOutcome per resource; the ScanAggregator folds
them into the scan's counters under a lock, so outcomes may arrive from any
thread in any order.
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict

from ...models.enums import SEVERITY_ORDER, FindingStatus, Severity


def compute_compliance_score(compliant_resources: int, resources_scanned: int) -> float:
    """
    Percentage of scanned resources that passed every applicable rule.

    100 when nothing was scanned; rounded to two decimals.
    """
    if resources_scanned <= 0:
        return 100.0
    score = compliant_resources / resources_scanned * 100
    return round(min(max(score, 0.0), 100.0), 2)


@dataclass
class ResourceOutcome:
    """Tally of one resource's findings within a scan."""

    resource_id: str
    status_counts: Counter = field(default_factory=Counter)
    # severity -> Counter of pass/fail/error
    severity_counts: Dict[str, Counter] = field(default_factory=dict)

    def record(self, status: FindingStatus, severity: Severity) -> None:
        self.status_counts[status.value] += 1
        if status != FindingStatus.SKIP:
            self.severity_counts.setdefault(severity.value, Counter())[status.value] += 1

    @property
    def applicable_rules(self) -> int:
        """Rules that produced a pass or fail; errors and skips do not count."""
        return self.status_counts[FindingStatus.PASS.value] + self.status_counts[FindingStatus.FAIL.value]

    @property
    def failed_rules(self) -> int:
        return self.status_counts[FindingStatus.FAIL.value]

    @property
    def is_compliant(self) -> bool:
        return self.applicable_rules > 0 and self.failed_rules == 0

    @property
    def is_non_compliant(self) -> bool:
        return self.applicable_rules > 0 and self.failed_rules > 0


@dataclass
class ScanTotals:
    """Immutable view of the aggregate counters."""

    resources_scanned: int
    compliant_resources: int
    non_compliant_resources: int
    issues_by_severity: Dict[str, int]
    findings_by_status: Dict[str, int]
    by_severity: Dict[str, Dict[str, int]]
    resources_without_applicable_rules: int

    @property
    def compliance_score(self) -> float:
        return compute_compliance_score(self.compliant_resources, self.resources_scanned)

    def to_scan_fields(self) -> Dict[str, Any]:
        """Column values for the completed scan record."""
        return {
            "resources_scanned": self.resources_scanned,
            "compliant_resources": self.compliant_resources,
            "non_compliant_resources": self.non_compliant_resources,
            "critical_issues": self.issues_by_severity.get(Severity.CRITICAL.value, 0),
            "high_issues": self.issues_by_severity.get(Severity.HIGH.value, 0),
            "medium_issues": self.issues_by_severity.get(Severity.MEDIUM.value, 0),
            "low_issues": self.issues_by_severity.get(Severity.LOW.value, 0),
            "compliance_score": self.compliance_score,
        }

    def to_results(self) -> Dict[str, Any]:
        """Summary stored in the scan's ``results`` document."""
        return {
            "findings_by_status": self.findings_by_status,
            "by_severity": self.by_severity,
            "resources_without_applicable_rules": self.resources_without_applicable_rules,
        }


class ScanAggregator:
    """
    Concurrency-safe accumulator for one scan.

    Each scan owns its own aggregator; nothing is shared between scans.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._resources_scanned = 0
        self._compliant = 0
        self._non_compliant = 0
        self._without_applicable = 0
        self._issues: Counter = Counter()
        self._statuses: Counter = Counter()
        self._by_severity: Dict[str, Counter] = {}

    def record(self, outcome: ResourceOutcome) -> None:
        with self._lock:
            self._resources_scanned += 1
            if outcome.is_compliant:
                self._compliant += 1
            elif outcome.is_non_compliant:
                self._non_compliant += 1
            else:
                self._without_applicable += 1

            self._statuses.update(outcome.status_counts)
            for severity, counts in outcome.severity_counts.items():
                self._by_severity.setdefault(severity, Counter()).update(counts)
                self._issues[severity] += counts[FindingStatus.FAIL.value]

    def snapshot(self) -> ScanTotals:
        with self._lock:
            by_severity = {}
            for severity in SEVERITY_ORDER:
                counts = self._by_severity.get(severity.value, Counter())
                by_severity[severity.value] = {
                    "passed": counts[FindingStatus.PASS.value],
                    "failed": counts[FindingStatus.FAIL.value],
                    "error": counts[FindingStatus.ERROR.value],
                }
            return ScanTotals(
                resources_scanned=self._resources_scanned,
                compliant_resources=self._compliant,
                non_compliant_resources=self._non_compliant,
                issues_by_severity={s.value: self._issues[s.value] for s in SEVERITY_ORDER},
                findings_by_status={s.value: self._statuses[s.value] for s in FindingStatus},
                by_severity=by_severity,
                resources_without_applicable_rules=self._without_applicable,
            )
