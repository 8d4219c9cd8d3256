# ==== SERVICES PACKAGE ==== #

"""
Services package for license processing business logic.

This package contains the workflow engine, reviewer assignment, statistics
aggregation and notification dispatch used by the HTTP and CLI surfaces.
"""
