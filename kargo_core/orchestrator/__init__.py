"""Orchestrator for kargo-core.

This module provides the orchestrator that admits resources and runs the
controllers, and the resource loader used to read manifests from disk.
"""

from .loader import LoadOptions, ResourceLoader
from .orchestrator import Orchestrator, OrchestratorConfig

__all__ = [
    "Orchestrator",
    "OrchestratorConfig",
    "ResourceLoader",
    "LoadOptions",
]
