#!/usr/bin/env python3
"""
CLI tool to run a compliance scan and print its summary
Usage: python -m compliance_engine.cli.run_scan --organization ORG (--framework ID | --framework-name NAME)
"""

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from ..config import get_settings
from ..database import get_engine, get_session_factory, init_database
from ..logging_config import configure_logging
from ..models.compliance_models import ScanRecord
from ..models.enums import FindingStatus, ScanStatus, ScanType
from ..repositories.framework_repository import FrameworkRepository
from ..services.compliance.exceptions import ComplianceEngineError
from ..services.compliance.scan_orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)


def parse_filters(values: Optional[List[str]]) -> Dict[str, str]:
    """Turn repeated ``key=value`` arguments into a filter map."""
    filters = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Filter must be key=value: {item}")
        filters[key.strip()] = value.strip()
    return filters


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a compliance scan")
    parser.add_argument("--organization", "-o", required=True, help="Organization id")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--framework", "-f", help="Framework id")
    target.add_argument("--framework-name", help="Framework name, e.g. 'SOC 2 Type II'")
    parser.add_argument(
        "--filter",
        action="append",
        metavar="KEY=VALUE",
        help="Resource filter (resource_type, region, environment); repeatable",
    )
    parser.add_argument(
        "--scan-type", choices=[t.value for t in ScanType], default=ScanType.MANUAL.value, help="Scan type"
    )
    parser.add_argument("--triggered-by", help="User id recorded on the scan")
    parser.add_argument(
        "--show-findings",
        choices=[s.value for s in FindingStatus],
        help="Also print findings with this status",
    )
    parser.add_argument("--json", action="store_true", help="Print the scan record as JSON")
    return parser


def print_summary(scan: ScanRecord) -> None:
    print(f"\n=== Scan {scan.id} ===")
    print(f"Status: {scan.status.value}")
    if scan.error_message:
        print(f"Error: {scan.error_message}")
    print(f"Resources: {scan.resources_scanned} scanned of {scan.total_resources}")
    print(f"Compliant: {scan.compliant_resources}")
    print(f"Non-compliant: {scan.non_compliant_resources}")
    if scan.compliance_score is not None:
        print(f"Compliance score: {scan.compliance_score}%")
    print(
        f"Issues: critical={scan.critical_issues} high={scan.high_issues} "
        f"medium={scan.medium_issues} low={scan.low_issues}"
    )
    if scan.duration_seconds is not None:
        print(f"Duration: {scan.duration_seconds}s")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI interface"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        filters = parse_filters(args.filter)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    settings = get_settings()
    configure_logging(settings)

    try:
        init_database(get_engine())
    except RuntimeError as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    session_factory = get_session_factory()

    framework_id = args.framework
    if framework_id is None:
        with session_factory() as db:
            framework = FrameworkRepository(db).find_framework_by_name(args.organization, args.framework_name)
        if framework is None:
            logger.error(f"Framework not found: {args.framework_name}")
            return 1
        framework_id = framework.id

    with ScanOrchestrator(session_factory=session_factory, settings=settings) as orchestrator:
        try:
            scan = orchestrator.execute_scan(
                args.organization,
                framework_id,
                resource_filters=filters,
                scan_type=ScanType(args.scan_type),
                triggered_by=args.triggered_by,
                raise_on_failure=False,
            )
        except ComplianceEngineError as e:
            logger.error(f"Scan could not be started: {e.message}")
            return 1

        if args.json:
            print(json.dumps(scan.model_dump(mode="json"), indent=2))
        else:
            print_summary(scan)

        if args.show_findings:
            findings = orchestrator.list_findings(scan.id, status=FindingStatus(args.show_findings))
            print(f"\n=== Findings ({args.show_findings}) ===")
            for finding in findings:
                print(f"[{finding.severity.value}] {finding.resource_arn}: {finding.issue or finding.status.value}")

    return 0 if scan.status == ScanStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
