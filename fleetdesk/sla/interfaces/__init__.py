"""
STS Interfaces Layer
====================

Interface adapters (controllers) for the STS module.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from fleetdesk.sla.interfaces.controllers import sts_router

__all__ = ["sts_router"]
