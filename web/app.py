"""
FastAPI application initialization and configuration.
"""
import logging
from typing import Optional
from fastapi import FastAPI

from social_oauth import OAuthManager
from social_oauth.errors import OAuthLifecycleError
from .middleware import log_requests_middleware
from .endpoints import (
    auth_router,
    health_router,
)
from .endpoints.auth import oauth_error_handler

logger = logging.getLogger(__name__)


def create_app(manager: Optional[OAuthManager] = None) -> FastAPI:
    """Build the connector application

    Args:
        manager: OAuthManager to serve; one is built from settings on the
            first request when omitted

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="Social Account Connector", version="1.0.0")
    app.state.manager = manager

    # Add middleware
    app.middleware("http")(log_requests_middleware)
    app.add_exception_handler(OAuthLifecycleError, oauth_error_handler)

    # Register routers
    app.include_router(health_router)
    app.include_router(auth_router)

    logger.debug("FastAPI application initialized with all routers and middleware")
    return app
