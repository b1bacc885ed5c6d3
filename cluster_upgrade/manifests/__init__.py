"""
Declarative resource set resolution.
"""

from .resolver import ManifestResolver

__all__ = ["ManifestResolver"]
