"""
contact_rollup - Contact rollup synchronization engine

Aggregates contacts from many source CRM accounts into one consolidated
target account, with deduplication, scheduled incremental/full syncs and
tag-based wipes of everything the rollup created.
"""

__version__ = "0.1.0"
