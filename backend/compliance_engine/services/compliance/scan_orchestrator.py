"""
Scan Orchestrator

Drives one scan of a framework's enabled rules over an organization's
resources through its lifecycle:

    pending -> running -> completed | failed

Resources are evaluated on a bounded worker pool, one resource per task with
its rules evaluated serially. Each task writes the resource's findings through
the finding sink in its own session and reports a ResourceOutcome to the
scan's ScanAggregator. Findings written before a failure or cancellation are
kept.

Scans are started either synchronously (``execute_scan``) or fire-and-forget
(``start_scan``), in which case completion is observed by polling
``get_scan`` / ``list_findings``.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session, sessionmaker

from ...config import Settings, get_settings
from ...database import get_session_factory, utcnow
from ...models.compliance_models import EvaluationResult, Finding, Resource, Rule, ScanRecord, ScanResults
from ...models.enums import FindingStatus, ScanStatus, ScanType
from ...repositories.finding_repository import FindingRepository
from ...repositories.framework_repository import FrameworkRepository
from ...repositories.resource_repository import ResourceRepository
from ...repositories.scan_repository import ScanRepository
from ...utils.logging_security import sanitize_error_message_for_log, sanitize_for_log
from .aggregation import ResourceOutcome, ScanAggregator
from .applicability import rule_applies_to
from .exceptions import (
    ComplianceEngineError,
    FrameworkNotFoundError,
    InfrastructureError,
    NoEnabledRulesError,
    ScanAlreadyRunningError,
    ScanCancelledError,
    ScanNotFoundError,
)
from .interfaces import FindingSink, FrameworkRuleStore, ResourceSource
from .rule_evaluator import RuleEvaluator

logger = logging.getLogger(__name__)

ResourceSourceFactory = Callable[[Session], ResourceSource]
RuleStoreFactory = Callable[[Session], FrameworkRuleStore]
FindingSinkFactory = Callable[[Session], FindingSink]

CANCELLED_MESSAGE = "Scan cancelled"


class _ActiveScan:
    """In-process bookkeeping for a scan that has not reached a terminal state."""

    def __init__(self, scan_id: str, organization_id: str, framework_id: str):
        self.scan_id = scan_id
        self.key = (organization_id, framework_id)
        self.cancel_event = threading.Event()


class ScanOrchestrator:
    """
    Runs compliance scans.

    Responsibilities:
    1. Create the scan record and enforce one running scan per
       (organization, framework)
    2. Load the framework's enabled rules and the filtered resource set
    3. Evaluate applicable rules on a bounded worker pool, writing one finding
       per (resource, rule)
    4. Aggregate per-resource outcomes and score the scan
    5. Finalize the scan as completed, or failed with an error message
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        evaluator: Optional[RuleEvaluator] = None,
        settings: Optional[Settings] = None,
        resource_source_factory: Optional[ResourceSourceFactory] = None,
        rule_store_factory: Optional[RuleStoreFactory] = None,
        finding_sink_factory: Optional[FindingSinkFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.evaluator = evaluator or RuleEvaluator(settings=self.settings)
        self.resource_source_factory = resource_source_factory or ResourceRepository
        self.rule_store_factory = rule_store_factory or (
            lambda db: FrameworkRepository(db, rule_validator=self.evaluator)
        )
        self.finding_sink_factory = finding_sink_factory or FindingRepository

        self.max_concurrent_evaluations = self.settings.max_concurrent_evaluations
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.scan_executor_workers,
            thread_name_prefix="compliance-scan",
        )
        self._active: Dict[str, _ActiveScan] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "ScanOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting background scans; optionally wait for running ones."""
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Starting scans
    # ------------------------------------------------------------------

    def start_scan(
        self,
        organization_id: str,
        framework_id: str,
        resource_filters: Optional[Dict[str, Any]] = None,
        scan_type: ScanType = ScanType.MANUAL,
        triggered_by: Optional[str] = None,
    ) -> str:
        """
        Start a scan in the background.

        Returns:
            The new scan's id; the scan is pending or already running.

        Raises:
            ScanAlreadyRunningError: The framework already has an active scan
                for this organization.
        """
        active = self._create_scan(organization_id, framework_id, resource_filters, scan_type, triggered_by)
        try:
            self._executor.submit(self._run_in_background, active, organization_id, framework_id, resource_filters)
        except RuntimeError as e:
            # Executor already shut down
            self._finalize_failure(active, e, started=None)
            self._release(active)
            raise InfrastructureError("Scan executor is not accepting work", cause=e)
        return active.scan_id

    def execute_scan(
        self,
        organization_id: str,
        framework_id: str,
        resource_filters: Optional[Dict[str, Any]] = None,
        scan_type: ScanType = ScanType.MANUAL,
        triggered_by: Optional[str] = None,
        raise_on_failure: bool = True,
    ) -> ScanRecord:
        """
        Run a scan to completion on the calling thread.

        Returns:
            The terminal scan record.

        Raises:
            ScanAlreadyRunningError: Another scan of the framework is active.
            ComplianceEngineError: The scan failed and ``raise_on_failure`` is
                set. The error's context carries the scan id.
        """
        active = self._create_scan(organization_id, framework_id, resource_filters, scan_type, triggered_by)
        return self._run(active, organization_id, framework_id, resource_filters, raise_on_failure)

    def _create_scan(
        self,
        organization_id: str,
        framework_id: str,
        resource_filters: Optional[Dict[str, Any]],
        scan_type: ScanType,
        triggered_by: Optional[str],
    ) -> _ActiveScan:
        key = (organization_id, framework_id)
        with self._lock:
            for active in self._active.values():
                if active.key == key:
                    raise ScanAlreadyRunningError(framework_id, organization_id, active.scan_id)

            with self.session_factory() as db:
                scans = ScanRepository(db)
                active_scan_id = scans.find_active_scan(organization_id, framework_id)
                if active_scan_id:
                    raise ScanAlreadyRunningError(framework_id, organization_id, active_scan_id)
                scan = scans.create_scan(
                    organization_id,
                    framework_id,
                    scan_type=scan_type,
                    resource_filters=resource_filters,
                    triggered_by=triggered_by,
                )

            active = _ActiveScan(scan.id, organization_id, framework_id)
            self._active[scan.id] = active

        logger.info(
            f"Created scan {scan.id}: framework={sanitize_for_log(framework_id)}, "
            f"organization={sanitize_for_log(organization_id)}, type={ScanType(scan_type).value}"
        )
        return active

    def _release(self, active: _ActiveScan) -> None:
        with self._lock:
            self._active.pop(active.scan_id, None)

    def _run_in_background(
        self,
        active: _ActiveScan,
        organization_id: str,
        framework_id: str,
        resource_filters: Optional[Dict[str, Any]],
    ) -> None:
        try:
            self._run(active, organization_id, framework_id, resource_filters, raise_on_failure=False)
        except Exception:
            logger.exception(f"Background scan {active.scan_id} could not be finalized")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _run(
        self,
        active: _ActiveScan,
        organization_id: str,
        framework_id: str,
        resource_filters: Optional[Dict[str, Any]],
        raise_on_failure: bool,
    ) -> ScanRecord:
        scan_id = active.scan_id
        started = time.monotonic()
        try:
            if active.cancel_event.is_set():
                raise ScanCancelledError(scan_id)

            with self.session_factory() as db:
                moved = ScanRepository(db).transition(
                    scan_id,
                    [ScanStatus.PENDING],
                    ScanStatus.RUNNING,
                    {"started_at": utcnow()},
                )
            if not moved:
                logger.warning(f"Scan {scan_id} was no longer pending; not starting it")
                return self._require_scan(scan_id)
            logger.info(f"Scan {scan_id} running")

            self._execute(active, organization_id, framework_id, resource_filters, started)

        except Exception as e:
            self._finalize_failure(active, e, started)
            if raise_on_failure:
                if isinstance(e, ComplianceEngineError):
                    e.context.setdefault("scan_id", scan_id)
                    raise
                raise InfrastructureError(_error_message(e), cause=e, context={"scan_id": scan_id})
        finally:
            self._release(active)

        return self._require_scan(scan_id)

    def _execute(
        self,
        active: _ActiveScan,
        organization_id: str,
        framework_id: str,
        resource_filters: Optional[Dict[str, Any]],
        started: float,
    ) -> None:
        scan_id = active.scan_id

        with self.session_factory() as db:
            loaded = self.rule_store_factory(db).get_framework_with_rules(framework_id, organization_id)
        if loaded is None:
            raise FrameworkNotFoundError(framework_id, organization_id)

        framework, rules = loaded
        enabled_rules = [rule for rule in rules if rule.enabled]
        if not enabled_rules:
            raise NoEnabledRulesError(framework_id)

        logger.info(
            f"Scan {scan_id}: framework {sanitize_for_log(framework.name)} has "
            f"{len(enabled_rules)} enabled rules ({len(rules)} total)"
        )

        aggregator = ScanAggregator()
        with self.session_factory() as db:
            resources = self.resource_source_factory(db).fetch_resources(organization_id, resource_filters or {})
            total_resources = self._evaluate_all(active, resources, enabled_rules, aggregator)

        totals = aggregator.snapshot()
        results = totals.to_results()
        results["framework_name"] = framework.name
        results["rules_evaluated"] = len(enabled_rules)

        fields = totals.to_scan_fields()
        fields.update(
            {
                "total_resources": total_resources,
                "results": results,
                "completed_at": utcnow(),
                "duration_seconds": round(time.monotonic() - started, 3),
            }
        )
        with self.session_factory() as db:
            completed = ScanRepository(db).transition(scan_id, [ScanStatus.RUNNING], ScanStatus.COMPLETED, fields)

        if not completed:
            logger.warning(f"Scan {scan_id} left running state before completion; results not recorded")
            return

        logger.info(
            f"Scan {scan_id} completed: {totals.resources_scanned} resources, "
            f"{totals.compliant_resources} compliant, {totals.non_compliant_resources} non-compliant, "
            f"score {totals.compliance_score}"
        )

    def _evaluate_all(
        self,
        active: _ActiveScan,
        resources: Iterable[Resource],
        rules: List[Rule],
        aggregator: ScanAggregator,
    ) -> int:
        """
        Fan resources out to the worker pool.

        At most twice the pool size is in flight, so a lazy resource source
        is consumed as workers free up. Any exception (from the source, a
        worker or cancellation) waits for in-flight work to finish before it
        propagates, so their findings are flushed.
        """
        pool_size = self.max_concurrent_evaluations
        max_in_flight = pool_size * 2
        in_flight: Set[Future] = set()
        submitted = 0

        def collect(done: Iterable[Future]) -> None:
            for future in done:
                outcome = future.result()
                if outcome is not None:
                    aggregator.record(outcome)

        with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix=f"scan-{active.scan_id[:8]}") as pool:
            try:
                for resource in resources:
                    if active.cancel_event.is_set():
                        raise ScanCancelledError(active.scan_id)

                    in_flight.add(pool.submit(self._evaluate_resource, active, resource, rules))
                    submitted += 1

                    if len(in_flight) >= max_in_flight:
                        done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                        collect(done)

                done, in_flight = wait(in_flight)
                collect(done)
            except BaseException:
                wait(in_flight)
                raise

        if active.cancel_event.is_set():
            raise ScanCancelledError(active.scan_id)

        return submitted

    def _evaluate_resource(self, active: _ActiveScan, resource: Resource, rules: List[Rule]) -> Optional[ResourceOutcome]:
        """Evaluate every rule against one resource and persist its findings."""
        if active.cancel_event.is_set():
            return None

        outcome = ResourceOutcome(resource.id)
        findings = []
        for rule in rules:
            if rule_applies_to(rule, resource):
                result = self.evaluator.evaluate(rule, resource)
            else:
                result = EvaluationResult.skipped()

            outcome.record(result.status, rule.severity)
            findings.append(_finding_fields(rule, resource, result))

        with self.session_factory() as db:
            self.finding_sink_factory(db).upsert_findings(active.scan_id, resource.id, findings)

        return outcome

    def _finalize_failure(self, active: _ActiveScan, error: BaseException, started: Optional[float]) -> None:
        message = _error_message(error)
        fields: Dict[str, Any] = {"error_message": message, "completed_at": utcnow()}
        if started is not None:
            fields["duration_seconds"] = round(time.monotonic() - started, 3)

        if isinstance(error, ScanCancelledError):
            logger.info(f"Scan {active.scan_id} cancelled")
        elif isinstance(error, ComplianceEngineError):
            logger.error(f"Scan {active.scan_id} failed: {sanitize_error_message_for_log(message)}")
        else:
            logger.error(f"Scan {active.scan_id} failed: {sanitize_error_message_for_log(message)}", exc_info=error)

        with self.session_factory() as db:
            ScanRepository(db).transition(
                active.scan_id,
                [ScanStatus.PENDING, ScanStatus.RUNNING],
                ScanStatus.FAILED,
                fields,
            )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_scan(self, scan_id: str) -> bool:
        """
        Request cancellation of a pending or running scan.

        A scan driven by this orchestrator stops taking new resources, lets
        in-flight resources finish writing their findings and is then marked
        failed with "Scan cancelled". A scan with no live driver in this
        process (for example after a restart) is marked failed directly.

        Returns:
            True if a cancellation was requested or applied.
        """
        with self._lock:
            active = self._active.get(scan_id)
            if active is not None:
                active.cancel_event.set()
        if active is not None:
            logger.info(f"Cancellation requested for scan {scan_id}")
            return True

        with self.session_factory() as db:
            cancelled = ScanRepository(db).transition(
                scan_id,
                [ScanStatus.PENDING, ScanStatus.RUNNING],
                ScanStatus.FAILED,
                {"error_message": CANCELLED_MESSAGE, "completed_at": utcnow()},
            )
        if cancelled:
            logger.info(f"Scan {scan_id} cancelled without an active worker")
        return cancelled

    def active_scans(self) -> List[str]:
        """Ids of scans this orchestrator is currently driving"""
        with self._lock:
            return list(self._active)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        with self.session_factory() as db:
            return ScanRepository(db).find_scan_by_id(scan_id)

    def _require_scan(self, scan_id: str) -> ScanRecord:
        scan = self.get_scan(scan_id)
        if scan is None:
            raise ScanNotFoundError(scan_id)
        return scan

    def wait_for_scan(self, scan_id: str, timeout: float = 30.0, poll_interval: float = 0.05) -> ScanRecord:
        """
        Poll until the scan reaches a terminal state.

        Raises:
            ScanNotFoundError: Unknown scan.
            TimeoutError: The scan is still active after ``timeout`` seconds.
        """
        deadline = time.monotonic() + timeout
        while True:
            scan = self._require_scan(scan_id)
            if scan.status.is_terminal:
                return scan
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Scan {scan_id} still {scan.status.value} after {timeout}s")
            time.sleep(poll_interval)

    def get_scan_results(self, scan_id: str, organization_id: str) -> Optional[ScanResults]:
        """Scan plus its findings, or None if the scan is not the organization's"""
        with self.session_factory() as db:
            scan = ScanRepository(db).find_scan_by_id(scan_id)
            if scan is None or scan.organization_id != organization_id:
                return None
            findings = FindingRepository(db).find_findings_by_scan(scan_id)
        return ScanResults(scan=scan, findings=findings)

    def list_scans(self, organization_id: str, limit: int = 50) -> List[ScanRecord]:
        with self.session_factory() as db:
            return ScanRepository(db).list_scans(organization_id, limit=limit)

    def list_findings(self, scan_id: str, status: Optional[FindingStatus] = None) -> List[Finding]:
        with self.session_factory() as db:
            return FindingRepository(db).find_findings_by_scan(scan_id, status=status)


def _finding_fields(rule: Rule, resource: Resource, result: EvaluationResult) -> Dict[str, Any]:
    return {
        "rule_id": rule.id,
        "resource_arn": resource.resource_arn,
        "resource_type": resource.resource_type,
        "resource_name": resource.resource_name,
        "status": result.status,
        "severity": rule.severity,
        "category": rule.category,
        "issue": result.issue,
        "recommendation": result.recommendation,
    }


def _error_message(error: BaseException) -> str:
    """Human-readable message persisted on a failed scan; never empty."""
    if isinstance(error, ComplianceEngineError):
        return error.message
    return str(error) or type(error).__name__
