"""Shared dependencies for API endpoints.

The AuthServices container is built once in ``create_app()`` and read from
``app.state`` per request, so tests can hand the app their own services.
"""

from typing import Annotated

from fastapi import Depends, Request

from wildauth.services.factory import AuthServices


def get_services(request: Request) -> AuthServices:
    """Return the application's credential services."""
    services: AuthServices = request.app.state.services
    return services


Services = Annotated[AuthServices, Depends(get_services)]
