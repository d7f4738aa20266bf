"""Scheduled deletion of temporal uploads (DuckDB-backed)."""
