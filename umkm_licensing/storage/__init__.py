"""Persistence and cache backends: SQLAlchemy store, Redis and in-memory caches."""
