"""
Unit tests for InsertBuilder and UpdateBuilder.
"""

import pytest

from compliance_engine.utils.mutation_builders import InsertBuilder, UpdateBuilder


@pytest.mark.unit
class TestInsertBuilder:
    """Test INSERT construction"""

    def test_single_row(self) -> None:
        query, params = (
            InsertBuilder("compliance_scans").columns("id", "status").values_dict({"id": "s1", "status": "pending"})
        ).build()

        assert query == "INSERT INTO compliance_scans (id, status) VALUES (:v0_id, :v0_status)"
        assert params == {"v0_id": "s1", "v0_status": "pending"}

    def test_values_dict_infers_columns(self) -> None:
        query, params = InsertBuilder("compliance_scans").values_dict({"id": "s1", "status": "pending"}).build()

        assert "(id, status)" in query
        assert params["v0_status"] == "pending"

    def test_values_dict_follows_column_order(self) -> None:
        query, params = InsertBuilder("t").columns("b", "a").values_dict({"a": 1, "b": 2, "extra": 3}).build()

        assert query == "INSERT INTO t (b, a) VALUES (:v0_b, :v0_a)"
        assert params == {"v0_b": 2, "v0_a": 1}

    def test_finding_upsert(self) -> None:
        row = {"id": "f1", "scan_id": "s1", "resource_id": "r1", "rule_id": "rule1", "status": "fail", "issue": "x"}
        query, _ = (
            InsertBuilder("compliance_scan_findings")
            .columns(*row)
            .values_dict(row)
            .on_conflict_do_update(["scan_id", "resource_id", "rule_id"], ["status", "issue"])
            .returning("id")
            .build()
        )

        assert "ON CONFLICT (scan_id, resource_id, rule_id) DO UPDATE SET status = EXCLUDED.status, " in query
        assert "issue = EXCLUDED.issue" in query
        assert "id = EXCLUDED.id" not in query
        assert query.endswith("RETURNING id")

    def test_multi_row_params_are_distinct(self) -> None:
        _, params = InsertBuilder("t").columns("k").values_dict({"k": 1}).values_dict({"k": 2}).build()

        assert params == {"v0_k": 1, "v1_k": 2}

    @pytest.mark.parametrize(
        "builder",
        [
            InsertBuilder("t"),
            InsertBuilder("t").columns("a"),
        ],
    )
    def test_invalid_inserts(self, builder) -> None:
        with pytest.raises(ValueError):
            builder.build()


@pytest.mark.unit
class TestUpdateBuilder:
    """Test UPDATE construction"""

    def test_scan_transition(self) -> None:
        query, params = (
            UpdateBuilder("compliance_scans")
            .set("status", "running")
            .where("id = :id", "s1", "id")
            .where_in("status", ["pending"])
            .build()
        )

        assert query == (
            "UPDATE compliance_scans SET status = :set_status WHERE id = :id AND status IN (:in_status_0)"
        )
        assert params == {"set_status": "running", "id": "s1", "in_status_0": "pending"}

    def test_set_if_skips_none(self) -> None:
        builder = UpdateBuilder("compliance_scans").set_if("error_message", None).set_if("status", "failed")
        query, params = builder.where("id = :id", "s1", "id").build()

        assert "error_message" not in query
        assert params["set_status"] == "failed"

    def test_requires_where(self) -> None:
        with pytest.raises(ValueError, match="WHERE"):
            UpdateBuilder("compliance_scans").set("status", "failed").build()

    def test_requires_set(self) -> None:
        with pytest.raises(ValueError, match="SET"):
            UpdateBuilder("compliance_scans").where("id = :id", "s1", "id").build()

    def test_empty_where_in_matches_nothing(self) -> None:
        query, _ = UpdateBuilder("t").set("a", 1).where_in("status", []).build()

        assert query.endswith("WHERE 1 = 0")

    def test_has_changes(self) -> None:
        builder = UpdateBuilder("t")
        assert not builder.has_changes

        builder.set_if("a", None)
        assert not builder.has_changes

        builder.set_if("b", 0)
        assert builder.has_changes
