"""
Request dependencies shared by the endpoint routers.
"""
import logging
import secrets
from fastapi import Request

from social_oauth import OAuthManager

logger = logging.getLogger(__name__)

CLIENT_COOKIE = "oauth_client"


def get_manager(request: Request) -> OAuthManager:
    """Return the application's OAuthManager, creating it on first use"""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        logger.debug("Creating OAuthManager from settings")
        manager = OAuthManager()
        request.app.state.manager = manager
    return manager


def get_client_id(request: Request) -> str:
    """Browser client identifier from the oauth_client cookie

    A new identifier is issued when the cookie is absent; the start endpoint
    sets it on the response.
    """
    return request.cookies.get(CLIENT_COOKIE) or secrets.token_urlsafe(16)
