"""The project controller module.

This module provides a controller that links Project namespaces to their
Project once the Project has been created.
"""

from .controller import ProjectController

__all__ = [
    "ProjectController",
]
