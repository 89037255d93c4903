"""
QueryBuilder Utility - Fluent SQL Query Construction
Provides SELECT query building with automatic parameterization

Usage:
    builder = (QueryBuilder("compliance_scan_findings")
        .select("id", "status", "severity")
        .where("scan_id = :scan_id", scan_id, "scan_id")
        .limit(100)
    )

    query, params = builder.build()
    result = db.execute(text(query), params)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class QueryBuilder:
    """
    Fluent interface for building SQL queries with security and consistency

    Attributes:
        table: Table name with optional alias (e.g., "compliance_scans s")
        _select: List of columns to select
        _where: List of WHERE conditions with parameter names
        _limit: LIMIT value
        _params: Dictionary of query parameters
    """

    table: str
    _select: List[str] = field(default_factory=lambda: ["*"])
    _where: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    _limit: Optional[int] = None
    _params: Dict[str, Any] = field(default_factory=dict)

    def select(self, *columns: str) -> "QueryBuilder":
        """
        Specify columns to select

        Args:
            *columns: Column names (e.g., "id", "status", "COUNT(*) as total")

        Returns:
            Self for method chaining
        """
        self._select = list(columns) if columns else ["*"]
        return self

    def where(self, condition: str, value: Any = None, param_name: Optional[str] = None) -> "QueryBuilder":
        """
        Add WHERE condition with parameterization

        Args:
            condition: SQL condition with :param_name placeholders
            value: Value to bind to parameter (None for conditions without params)
            param_name: Parameter name (auto-generated if not provided)

        Returns:
            Self for method chaining

        Example:
            builder.where("status = :status", "running", "status")
        """
        if value is not None:
            if param_name is None:
                param_name = f"param_{len(self._params)}"

            self._where.append((condition, param_name))
            self._params[param_name] = value
        else:
            # Condition without parameters (e.g., "completed_at IS NULL")
            self._where.append((condition, None))

        return self

    def where_in(self, column: str, values: List[Any], param_prefix: Optional[str] = None) -> "QueryBuilder":
        """
        Add WHERE column IN (...) clause

        An empty list produces a condition that matches nothing.
        """
        if not values:
            self._where.append(("1 = 0", None))
            return self

        prefix = param_prefix or f"in_{column.replace('.', '_')}"
        placeholders = []
        for idx, val in enumerate(values):
            param_name = f"{prefix}_{idx}"
            placeholders.append(f":{param_name}")
            self._params[param_name] = val

        self._where.append((f"{column} IN ({', '.join(placeholders)})", None))
        return self

    def limit(self, limit: int) -> "QueryBuilder":
        """Add LIMIT"""
        if limit < 0:
            raise ValueError("Limit must be non-negative")
        self._limit = limit
        return self

    def build(self) -> Tuple[str, Dict[str, Any]]:
        """
        Build final SQL query with parameters

        Returns:
            Tuple of (sql_query, parameters_dict)
        """
        query_parts = [f"SELECT {', '.join(self._select)}", f"FROM {self.table}"]

        if self._where:
            where_conditions = [cond for cond, _ in self._where]
            query_parts.append(f"WHERE {' AND '.join(where_conditions)}")

        if self._limit is not None:
            query_parts.append(f"LIMIT {self._limit}")

        return " ".join(query_parts), self._params.copy()

    def count_query(self) -> Tuple[str, Dict[str, Any]]:
        """
        Build COUNT query (no LIMIT)

        Example:
            count_query, params = builder.count_query()
            total = db.execute(text(count_query), params).scalar()
        """
        query_parts = ["SELECT COUNT(*) as total", f"FROM {self.table}"]

        if self._where:
            where_conditions = [cond for cond, _ in self._where]
            query_parts.append(f"WHERE {' AND '.join(where_conditions)}")

        return " ".join(query_parts), self._params.copy()
