# ==== ROUTES PACKAGE ==== #

"""
Routes package for API endpoints.

This package contains the FastAPI route modules for health checks and the
license processing workflow.
"""
