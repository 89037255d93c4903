"""
Integration tests for FindingRepository against SQLite.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from compliance_engine.models.enums import FindingStatus
from compliance_engine.repositories.finding_repository import FindingRepository
from compliance_engine.repositories.scan_repository import ScanRepository
from tests.conftest import ORG_ID


def finding_fields(**overrides):
    fields = {
        "resource_arn": "arn:aws:ec2:us-east-1:123456789012:instance/i-1",
        "resource_type": "ec2",
        "resource_name": "web-1",
        "status": FindingStatus.FAIL,
        "severity": "high",
        "category": "tagging",
        "issue": 'Required tag "Owner" is missing',
        "recommendation": "Add an Owner tag",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def scan_id(db_session) -> str:
    return ScanRepository(db_session).create_scan(ORG_ID, "framework-1").id


@pytest.fixture
def findings(db_session) -> FindingRepository:
    return FindingRepository(db_session)


@pytest.mark.integration
class TestUpsert:
    """Test idempotent finding writes"""

    def test_insert(self, findings, scan_id) -> None:
        finding = findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields())

        assert finding.scan_id == scan_id
        assert finding.status == FindingStatus.FAIL
        assert finding.remediated is False
        assert finding.detected_at is not None

    def test_re_evaluation_replaces_outcome(self, findings, scan_id) -> None:
        first = findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields())
        second = findings.upsert_finding(
            scan_id, "rule-1", "i-1", finding_fields(status="pass", issue=None, recommendation="Keep it")
        )

        assert second.id == first.id
        assert second.status == FindingStatus.PASS
        assert second.issue is None
        assert second.recommendation == "Keep it"
        assert findings.count_findings(scan_id) == 1

    def test_identity_columns_are_kept(self, findings, scan_id) -> None:
        findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields())
        updated = findings.upsert_finding(
            scan_id, "rule-1", "i-1", finding_fields(resource_arn="arn:changed", severity="low")
        )

        assert updated.resource_arn == "arn:aws:ec2:us-east-1:123456789012:instance/i-1"
        assert updated.severity.value == "high"

    def test_distinct_keys_are_distinct_rows(self, findings, scan_id) -> None:
        findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields())
        findings.upsert_finding(scan_id, "rule-2", "i-1", finding_fields())
        findings.upsert_finding(scan_id, "rule-1", "i-2", finding_fields())

        assert findings.count_findings(scan_id) == 3

    def test_missing_required_field(self, findings, scan_id) -> None:
        with pytest.raises(ValueError, match="resource_arn"):
            findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields(resource_arn=None))

    def test_batch_upsert(self, findings, scan_id) -> None:
        batch = [dict(finding_fields(), rule_id=f"rule-{n}") for n in range(3)]

        assert findings.upsert_findings(scan_id, "i-1", batch) == 3
        assert findings.upsert_findings(scan_id, "i-1", batch) == 3
        assert findings.count_findings(scan_id) == 3

    def test_batch_is_all_or_nothing(self, findings, scan_id) -> None:
        batch = [dict(finding_fields(), rule_id="rule-1"), dict(finding_fields(category=None), rule_id="rule-2")]

        with pytest.raises(ValueError):
            findings.upsert_findings(scan_id, "i-1", batch)

        assert findings.count_findings(scan_id) == 0

    def test_unknown_scan_rejected(self, findings) -> None:
        with pytest.raises(IntegrityError):
            findings.upsert_finding("no-such-scan", "rule-1", "i-1", finding_fields())


@pytest.mark.integration
class TestQueries:
    def test_most_severe_first(self, findings, scan_id) -> None:
        for rule_id, severity in (("r-low", "low"), ("r-crit", "critical"), ("r-med", "medium"), ("r-high", "high")):
            findings.upsert_finding(scan_id, rule_id, "i-1", finding_fields(severity=severity))

        ordered = [f.severity.value for f in findings.find_findings_by_scan(scan_id)]

        assert ordered == ["critical", "high", "medium", "low"]

    def test_status_filter_and_count(self, findings, scan_id) -> None:
        findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields(status="pass", issue=None))
        findings.upsert_finding(scan_id, "rule-2", "i-1", finding_fields())
        findings.upsert_finding(scan_id, "rule-3", "i-1", finding_fields(status="error", issue="boom"))

        failed = findings.find_findings_by_scan(scan_id, status=FindingStatus.FAIL)

        assert [f.rule_id for f in failed] == ["rule-2"]
        assert findings.count_findings(scan_id, status="error") == 1
        assert findings.count_findings(scan_id) == 3

    def test_scans_are_isolated(self, findings, db_session, scan_id) -> None:
        other_scan = ScanRepository(db_session).create_scan(ORG_ID, "framework-2").id
        findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields())

        assert findings.find_findings_by_scan(other_scan) == []


@pytest.mark.integration
class TestRemediation:
    def test_mark_remediated(self, findings, scan_id) -> None:
        finding = findings.upsert_finding(scan_id, "rule-1", "i-1", finding_fields())

        updated = findings.mark_finding_remediated(finding.id, "user-1", notes="Tag added")

        assert updated.remediated is True
        assert updated.remediated_by == "user-1"
        assert updated.remediation_notes == "Tag added"
        assert updated.remediated_at is not None

    def test_unknown_finding(self, findings) -> None:
        assert findings.mark_finding_remediated("missing", "user-1") is None
