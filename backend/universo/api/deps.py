"""Shared FastAPI dependencies for the hierarchy routers."""

from __future__ import annotations

from fastapi import Request

from universo.services.publication_service import PublicationService


def get_publication_service(request: Request) -> PublicationService:
    """Return the service created in the application lifespan."""
    return request.app.state.publications
