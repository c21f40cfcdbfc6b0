"""Admission webhooks.

Webhooks validate resources before they are written to the store and, for
Projects, provision the resources a Project needs before its other resources
can exist.
"""

from .project import ProjectWebhook
from .warehouse import WarehouseWebhook

__all__ = [
    "ProjectWebhook",
    "WarehouseWebhook",
]
