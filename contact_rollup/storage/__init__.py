"""
contact_rollup.storage - Persistence for rollup configuration and history
"""

from contact_rollup.storage.base import RollupStore
from contact_rollup.storage.db import RollupDatabase, StoreCapabilities

__all__ = ["RollupDatabase", "RollupStore", "StoreCapabilities"]
