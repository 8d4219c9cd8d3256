"""UMKM license processing core: workflow engine and cache-aside repositories."""

__version__ = "0.1.0"
