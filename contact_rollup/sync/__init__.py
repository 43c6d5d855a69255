"""
contact_rollup.sync - Rollup synchronization engine

Source collection, global deduplication, target writes, wipes and run
recording. Import RollupEngine from contact_rollup.sync.engine.
"""
