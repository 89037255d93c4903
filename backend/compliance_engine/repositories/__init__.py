"""
SQL repositories for the compliance engine.

Each repository wraps one SQLAlchemy session; the scan orchestrator opens a
session per unit of work and builds repositories on top of it.
"""

from .finding_repository import FindingRepository  # noqa: F401
from .framework_repository import FrameworkRepository  # noqa: F401
from .resource_repository import ResourceRepository  # noqa: F401
from .scan_repository import ScanRepository  # noqa: F401
