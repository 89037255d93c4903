"""
Integration tests for the command line entry points.
"""

import json

import pytest

from compliance_engine.cli import load_frameworks, run_scan
from compliance_engine.config import get_settings
from compliance_engine.database import get_engine, get_session_factory
from tests.conftest import ORG_ID


def clear_cached_singletons() -> None:
    get_session_factory.cache_clear()
    get_engine.cache_clear()
    get_settings.cache_clear()


@pytest.fixture
def cli_database(monkeypatch, settings, engine):
    """Point the process-wide settings at the test database"""
    monkeypatch.setenv("COMPLIANCE_ENGINE_DATABASE_URL", settings.database_url)
    monkeypatch.setenv("COMPLIANCE_ENGINE_MAX_CONCURRENT_EVALUATIONS", "2")
    clear_cached_singletons()
    yield
    get_engine().dispose()
    clear_cached_singletons()


@pytest.mark.integration
@pytest.mark.usefixtures("cli_database")
class TestLoadFrameworks:
    def test_seed_builtin_and_list(self, capsys) -> None:
        assert load_frameworks.main(["-o", ORG_ID, "builtin", "--standard", "SOC2"]) == 0
        assert "Created: 1" in capsys.readouterr().out

        assert load_frameworks.main(["-o", ORG_ID, "list"]) == 0
        output = capsys.readouterr().out
        assert "=== Frameworks (1) ===" in output
        assert "SOC 2 Type II [built_in, enabled]" in output

    def test_load_files(self, capsys, tmp_path) -> None:
        definition = {
            "name": "Internal",
            "rules": [
                {
                    "rule_code": "INT-1",
                    "title": "Team tag",
                    "severity": "low",
                    "category": "tagging",
                    "rule_type": "tag_required",
                    "conditions": {"tag_key": "Team"},
                    "recommendation": "Add a Team tag",
                }
            ],
        }
        (tmp_path / "frameworks").mkdir()
        (tmp_path / "frameworks" / "internal.json").write_text(json.dumps(definition))

        assert load_frameworks.main(["-o", ORG_ID, "file", str(tmp_path / "frameworks")]) == 0
        assert "Internal" in capsys.readouterr().out

    def test_invalid_file_fails(self, tmp_path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("[")

        assert load_frameworks.main(["-o", ORG_ID, "file", str(path)]) == 1


@pytest.mark.integration
@pytest.mark.usefixtures("cli_database")
class TestRunScan:
    def test_scan_by_name(self, capsys, inventory) -> None:
        inventory({"id": "bucket-1", "resource_type": "s3", "is_encrypted": True, "is_public": False})
        load_frameworks.main(["-o", ORG_ID, "builtin", "--standard", "AWS-FSB"])
        capsys.readouterr()

        exit_code = run_scan.main(
            ["-o", ORG_ID, "--framework-name", "AWS Foundational Security", "--json", "--filter", "resource_type=s3"]
        )

        scan = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert scan["status"] == "completed"
        assert scan["resource_filters"] == {"resource_type": "s3"}
        assert scan["resources_scanned"] == 1
        # bucket passes encryption and public access, fails the three tag rules
        assert scan["low_issues"] == 3

    def test_summary_and_findings(self, capsys, inventory) -> None:
        inventory({"id": "i-1", "resource_type": "ec2"})
        load_frameworks.main(["-o", ORG_ID, "builtin", "--standard", "SOC2"])
        capsys.readouterr()

        assert run_scan.main(["-o", ORG_ID, "--framework-name", "SOC 2 Type II", "--show-findings", "fail"]) == 0

        output = capsys.readouterr().out
        assert "Status: completed" in output
        assert "Compliance score: 0.0%" in output
        assert "=== Findings (fail) ===" in output

    def test_unknown_framework_name(self) -> None:
        assert run_scan.main(["-o", ORG_ID, "--framework-name", "Nope"]) == 1

    def test_failed_scan_exit_code(self, capsys) -> None:
        assert run_scan.main(["-o", ORG_ID, "--framework", "missing"]) == 1
        assert "Error: Framework not found" in capsys.readouterr().out

    def test_bad_filter(self) -> None:
        with pytest.raises(SystemExit):
            run_scan.main(["-o", ORG_ID, "--framework", "x", "--filter", "region"])


@pytest.mark.unit
class TestParseFilters:
    def test_pairs(self) -> None:
        assert run_scan.parse_filters(["region = us-east-1", "environment=prod=1"]) == {
            "region": "us-east-1",
            "environment": "prod=1",
        }

    def test_empty(self) -> None:
        assert run_scan.parse_filters(None) == {}
