"""The applications controller module.

This module provides a controller that refreshes Stages when the Argo CD
Applications they update change.
"""

from .controller import (
    STAGES_BY_ARGOCD_APPLICATIONS_INDEX,
    ApplicationsController,
    application_key,
    in_shard,
    index_stages_by_app,
    refresh_stage,
)

__all__ = [
    "ApplicationsController",
    "STAGES_BY_ARGOCD_APPLICATIONS_INDEX",
    "application_key",
    "in_shard",
    "index_stages_by_app",
    "refresh_stage",
]
