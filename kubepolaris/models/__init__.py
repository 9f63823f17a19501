"""Shared data types for clusters, cache state, snapshots and configuration."""
