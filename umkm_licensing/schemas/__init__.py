"""Pydantic records shared by the stores, the cache and the HTTP layer."""
