"""
Version string parsing and comparison.

Handles release identifiers such as ``v2.14``, ``v3.2.1`` and Kubernetes
server versions such as ``v1.29.3+k3s1`` or ``1.21``.
"""

import re
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(version_str: Optional[str]) -> Tuple[int, int, int]:
    """
    Parse a version string into comparable components.

    Supports formats like:
    - v2.14
    - v3.2.1
    - 1.29.3-eks-1234
    - v1.28.2+k3s1

    Args:
        version_str: Version string, with or without a leading "v"

    Returns:
        Tuple of (major, minor, patch); missing parts default to 0
    """
    if not version_str:
        return (0, 0, 0)

    match = _VERSION_PATTERN.match(version_str.strip())
    if not match:
        logger.warning(f"Could not parse version string: {version_str}")
        return (0, 0, 0)

    return tuple(int(part) if part else 0 for part in match.groups())


def compare_versions(left: Optional[str], right: Optional[str]) -> int:
    """
    Compare two version strings.

    Returns:
        -1 when left < right, 0 when equal, 1 when left > right
    """
    a, b = parse_version(left), parse_version(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def version_at_least(actual: Optional[str], minimum: Optional[str]) -> bool:
    """True when ``actual`` satisfies ``minimum``; no minimum always passes."""
    if not minimum:
        return True
    if not actual:
        return False
    return compare_versions(actual, minimum) >= 0


def span_overlaps(
    start: str, end: str, bounds: Tuple[Optional[str], Optional[str]]
) -> bool:
    """True when the closed span ``[start, end]`` touches ``[min, max)``."""
    lower, upper = bounds
    if upper is not None and compare_versions(start, upper) >= 0:
        return False
    if lower is not None and compare_versions(end, lower) < 0:
        return False
    return True
