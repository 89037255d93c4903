"""
Shared utilities: parameterised SQL builders and log sanitisation.
"""

from .logging_security import sanitize_for_log  # noqa: F401
from .mutation_builders import InsertBuilder, UpdateBuilder  # noqa: F401
from .query_builder import QueryBuilder  # noqa: F401
