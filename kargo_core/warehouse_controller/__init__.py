"""The warehouse controller module.

This module provides a controller that discovers Freight for Warehouse
resources.
"""

from .controller import WarehouseController

__all__ = [
    "WarehouseController",
]
