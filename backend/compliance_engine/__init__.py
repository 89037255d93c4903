"""
Compliance Engine

Rule evaluation and scan execution for organization-defined compliance
frameworks. Frameworks are collections of declarative rules; a scan
evaluates every enabled rule against every relevant infrastructure resource
and records one finding per (scan, resource, rule) triple plus a
reproducible compliance score.
"""

__version__ = "1.0.0"
