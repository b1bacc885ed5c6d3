"""
Release catalog: version ladder, advisories and version helpers.
"""

from .advisory import BreakingChangeAdvisory
from .version_graph import VersionGraph, load_catalog
from .versions import compare_versions, parse_version, version_at_least

__all__ = [
    "BreakingChangeAdvisory",
    "VersionGraph",
    "load_catalog",
    "compare_versions",
    "parse_version",
    "version_at_least",
]
