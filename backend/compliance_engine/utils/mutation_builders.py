"""
Mutation Builder Utilities - Fluent SQL Mutation Construction

INSERT and UPDATE builders with automatic parameterization, used for scan
record transitions and the idempotent finding upsert.

- Automatic parameter binding (prevents SQL injection)
- WHERE clause required for UPDATE by default (prevents accidental mass mutations)
- ON CONFLICT upserts (PostgreSQL and SQLite >= 3.24)

Usage:
    # Upsert
    builder = (InsertBuilder("compliance_scan_findings")
        .columns("id", "scan_id", "resource_id", "rule_id", "status")
        .values_dict(row)
        .on_conflict_do_update(["scan_id", "resource_id", "rule_id"], ["status"])
        .returning("id")
    )
    query, params = builder.build()

    # UPDATE
    builder = (UpdateBuilder("compliance_scans")
        .set("status", "running")
        .set_if("error_message", error_message)  # Only if not None
        .where("id = :id", scan_id, "id")
    )
    query, params = builder.build()
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class InsertBuilder:
    """
    Fluent interface for building INSERT queries.

    Attributes:
        table: Table name to insert into
        _columns: List of column names
        _values_list: List of value tuples (for multi-row inserts)
        _returning: List of columns to return
        _on_conflict: ON CONFLICT clause configuration
    """

    table: str
    _columns: List[str] = field(default_factory=list)
    _values_list: List[Tuple[Any, ...]] = field(default_factory=list)
    _returning: List[str] = field(default_factory=list)
    _on_conflict: Optional[Dict[str, Any]] = None

    def columns(self, *cols: str) -> "InsertBuilder":
        """Specify columns for the INSERT."""
        self._columns = list(cols)
        return self

    def values_dict(self, data: Dict[str, Any]) -> "InsertBuilder":
        """
        Add a row of values from a dictionary.

        If columns haven't been set, they are inferred from the dict keys.
        """
        if not self._columns:
            self._columns = list(data.keys())
        vals = tuple(data.get(col) for col in self._columns)
        self._values_list.append(vals)
        return self

    def returning(self, *cols: str) -> "InsertBuilder":
        """Add RETURNING clause."""
        self._returning = list(cols)
        return self

    def on_conflict_do_update(
        self,
        conflict_cols: List[str],
        update_cols: List[str],
    ) -> "InsertBuilder":
        """
        Add ON CONFLICT DO UPDATE clause.

        Args:
            conflict_cols: Columns that define the conflict target.
            update_cols: Columns replaced from the incoming row on conflict.
        """
        self._on_conflict = {"columns": conflict_cols, "update_cols": update_cols}
        return self

    def build(self) -> Tuple[str, Dict[str, Any]]:
        """
        Build final INSERT query with parameters.

        Raises:
            ValueError: If no columns or values are specified, or a row has the
                wrong number of values.
        """
        if not self._columns:
            raise ValueError("InsertBuilder requires columns to be specified")
        if not self._values_list:
            raise ValueError("InsertBuilder requires at least one row of values")

        params: Dict[str, Any] = {}
        query_parts = [f"INSERT INTO {self.table} ({', '.join(self._columns)})"]

        value_rows = []
        for row_idx, row_values in enumerate(self._values_list):
            if len(row_values) != len(self._columns):
                raise ValueError(
                    f"Row {row_idx} has {len(row_values)} values " f"but {len(self._columns)} columns specified"
                )
            placeholders = []
            for col_idx, value in enumerate(row_values):
                param_name = f"v{row_idx}_{self._columns[col_idx]}"
                placeholders.append(f":{param_name}")
                params[param_name] = value
            value_rows.append(f"({', '.join(placeholders)})")

        query_parts.append(f"VALUES {', '.join(value_rows)}")

        if self._on_conflict:
            conflict_cols = ", ".join(self._on_conflict["columns"])
            set_clauses = [f"{col} = EXCLUDED.{col}" for col in self._on_conflict["update_cols"]]
            query_parts.append(f"ON CONFLICT ({conflict_cols}) DO UPDATE SET {', '.join(set_clauses)}")

        if self._returning:
            query_parts.append(f"RETURNING {', '.join(self._returning)}")

        return " ".join(query_parts), params


@dataclass
class UpdateBuilder:
    """
    Fluent interface for building UPDATE queries.

    Requires a WHERE clause by default to prevent accidental mass updates.

    Attributes:
        table: Table name to update
        _set_clauses: List of (column, value, param_name) tuples
        _where: List of WHERE conditions with parameter names
        _params: Dictionary of query parameters
    """

    table: str
    _set_clauses: List[Tuple[str, Any, str]] = field(default_factory=list)
    _where: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    _params: Dict[str, Any] = field(default_factory=dict)

    def set(self, column: str, value: Any) -> "UpdateBuilder":
        """Add a SET clause for a column."""
        param_name = f"set_{column}"
        self._set_clauses.append((column, value, param_name))
        self._params[param_name] = value
        return self

    def set_if(self, column: str, value: Any) -> "UpdateBuilder":
        """Add a SET clause only if value is not None."""
        if value is not None:
            return self.set(column, value)
        return self

    def where(self, condition: str, value: Any = None, param_name: Optional[str] = None) -> "UpdateBuilder":
        """
        Add WHERE condition with parameterization.

        Example:
            builder.where("id = :id", scan_id, "id")
        """
        if value is not None:
            if param_name is None:
                param_name = f"where_{len(self._where)}"
            self._where.append((condition, param_name))
            self._params[param_name] = value
        else:
            self._where.append((condition, None))
        return self

    def where_in(self, column: str, values: List[Any], param_prefix: Optional[str] = None) -> "UpdateBuilder":
        """Add WHERE column IN (...); an empty list matches nothing."""
        if not values:
            self._where.append(("1 = 0", None))
            return self

        prefix = param_prefix or f"in_{column}"
        placeholders = []
        for idx, val in enumerate(values):
            param_name = f"{prefix}_{idx}"
            placeholders.append(f":{param_name}")
            self._params[param_name] = val

        self._where.append((f"{column} IN ({', '.join(placeholders)})", None))
        return self

    @property
    def has_changes(self) -> bool:
        return bool(self._set_clauses)

    def build(self) -> Tuple[str, Dict[str, Any]]:
        """
        Build final UPDATE query with parameters.

        Raises:
            ValueError: If no SET clauses or no WHERE clause.
        """
        if not self._where:
            raise ValueError("UpdateBuilder requires WHERE clause for safety.")
        if not self._set_clauses:
            raise ValueError("UpdateBuilder requires at least one SET clause")

        set_parts = [f"{column} = :{param_name}" for column, _, param_name in self._set_clauses]

        query_parts = [f"UPDATE {self.table}", f"SET {', '.join(set_parts)}"]

        where_conditions = [cond for cond, _ in self._where]
        query_parts.append(f"WHERE {' AND '.join(where_conditions)}")

        return " ".join(query_parts), self._params.copy()
