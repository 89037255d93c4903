"""
Unit Tests for QueryBuilder Utility

Tests SQL query construction and parameterization for the compliance tables.

Test Categories:
- Basic query construction (SELECT, FROM)
- WHERE clause handling with parameterization
- IN lists
- LIMIT
- COUNT query generation
- SQL injection prevention
"""

import pytest

from compliance_engine.utils.query_builder import QueryBuilder


@pytest.mark.unit
class TestBasicQueries:
    """Test basic query construction"""

    def test_simple_select(self) -> None:
        query, params = QueryBuilder("compliance_scans").build()

        assert query == "SELECT * FROM compliance_scans"
        assert params == {}

    def test_select_specific_columns(self) -> None:
        query, _ = QueryBuilder("compliance_scans").select("id", "status").build()

        assert query == "SELECT id, status FROM compliance_scans"

    def test_empty_select_falls_back_to_star(self) -> None:
        query, _ = QueryBuilder("compliance_scans").select().build()

        assert query.startswith("SELECT * ")


@pytest.mark.unit
class TestWhereConditions:
    """Test WHERE clause construction"""

    def test_multiple_where_conditions(self) -> None:
        query, params = (
            QueryBuilder("compliance_scans")
            .where("organization_id = :org", "org-1", "org")
            .where("framework_id = :fw", "fw-1", "fw")
            .build()
        )

        assert "WHERE organization_id = :org AND framework_id = :fw" in query
        assert params == {"org": "org-1", "fw": "fw-1"}

    def test_condition_without_value(self) -> None:
        query, params = QueryBuilder("compliance_scans").where("completed_at IS NULL").build()

        assert "WHERE completed_at IS NULL" in query
        assert params == {}

    def test_auto_generated_param_name(self) -> None:
        _, params = QueryBuilder("compliance_scans").where("status = :param_0", "running").build()

        assert params == {"param_0": "running"}


@pytest.mark.unit
class TestWhereIn:
    def test_in_list(self) -> None:
        query, params = QueryBuilder("cloud_resources").where_in("region", ["us-east-1", "eu-west-1"]).build()

        assert "WHERE region IN (:in_region_0, :in_region_1)" in query
        assert params == {"in_region_0": "us-east-1", "in_region_1": "eu-west-1"}

    def test_empty_in_list_matches_nothing(self) -> None:
        query, params = QueryBuilder("cloud_resources").where_in("region", []).build()

        assert "WHERE 1 = 0" in query
        assert params == {}

    def test_custom_prefix_and_dotted_column(self) -> None:
        query, params = QueryBuilder("compliance_scans s").where_in("s.status", ["pending"]).build()
        assert ":in_s_status_0" in query

        query, params = QueryBuilder("compliance_scans").where_in("status", ["pending"], "st").build()
        assert params == {"st_0": "pending"}


@pytest.mark.unit
class TestLimit:
    def test_limit(self) -> None:
        query, _ = QueryBuilder("compliance_scans").select("id").limit(1).build()

        assert query == "SELECT id FROM compliance_scans LIMIT 1"

    def test_negative_limit(self) -> None:
        with pytest.raises(ValueError):
            QueryBuilder("compliance_scans").limit(-1)


@pytest.mark.unit
class TestCountQuery:
    def test_count_ignores_limit(self) -> None:
        builder = QueryBuilder("compliance_scan_findings").where("scan_id = :scan_id", "scan-1", "scan_id").limit(5)

        query, params = builder.count_query()

        assert query == "SELECT COUNT(*) as total FROM compliance_scan_findings WHERE scan_id = :scan_id"
        assert params == {"scan_id": "scan-1"}


@pytest.mark.unit
class TestSqlInjectionPrevention:
    def test_values_never_interpolated(self) -> None:
        malicious = "x'; DROP TABLE compliance_scans; --"
        query, params = QueryBuilder("compliance_scans").where("id = :id", malicious, "id").build()

        assert malicious not in query
        assert params["id"] == malicious

    def test_params_are_copied(self) -> None:
        builder = QueryBuilder("compliance_scans").where("id = :id", "a", "id")
        _, params = builder.build()
        params["id"] = "tampered"

        assert builder.build()[1] == {"id": "a"}
