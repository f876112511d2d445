"""FastAPI application for the LeadHub API.

This module contains:
- The application factory and error mapping
- Leads, catalog, user and webhook routers
- Request/response models
"""

from leadhub.api.routes import ErrorResponse, HealthResponse, app, create_app

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "app",
    "create_app",
]
