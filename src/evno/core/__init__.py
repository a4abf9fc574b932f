"""Core domain package for evno.

Core contains ingestion, deduplication and the polling engine without any
HTTP or storage-specific code, keeping the watcher logic portable.
"""
