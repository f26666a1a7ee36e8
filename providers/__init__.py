"""
Provider OAuth profiles for the supported social platforms.

Each provider normalizes its own token and profile responses; nothing outside
this package branches on provider identity.
"""
from typing import Callable, Dict, Optional
import time

import httpx

import settings
from social_oauth.models import Platform
from providers.base_provider import BaseProvider, quiet_http_loggers
from providers.instagram_provider import InstagramProvider
from providers.tiktok_provider import TikTokProvider

__all__ = [
    'BaseProvider',
    'InstagramProvider',
    'TikTokProvider',
    'build_providers',
    'get_provider',
    'quiet_http_loggers',
    'redirect_uri_for',
]


def redirect_uri_for(platform: str, base_url: Optional[str] = None) -> str:
    """Callback URL registered with the provider"""
    return f"{(base_url or settings.BASE_URL).rstrip('/')}/auth/{platform}/callback"


def get_provider(
    platform: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
    base_url: Optional[str] = None,
) -> BaseProvider:
    """Build a provider configured from settings

    Args:
        platform: 'tiktok' or 'instagram'
        transport: Optional httpx transport override
        clock: Time source
        base_url: Override for the public base URL

    Returns:
        Configured provider instance

    Raises:
        ValueError: Unknown platform
    """
    platform = Platform(platform).value
    if platform == Platform.TIKTOK.value:
        return TikTokProvider(
            client_id=settings.TIKTOK_CLIENT_KEY,
            client_secret=settings.TIKTOK_CLIENT_SECRET,
            redirect_uri=redirect_uri_for(platform, base_url),
            scopes=settings.TIKTOK_SCOPES,
            transport=transport,
            clock=clock,
        )
    return InstagramProvider(
        client_id=settings.INSTAGRAM_APP_ID,
        client_secret=settings.INSTAGRAM_APP_SECRET,
        redirect_uri=redirect_uri_for(platform, base_url),
        scopes=settings.INSTAGRAM_SCOPES,
        transport=transport,
        clock=clock,
    )


def build_providers(
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
) -> Dict[str, BaseProvider]:
    """Build every supported provider keyed by platform name"""
    return {platform.value: get_provider(platform.value, transport, clock) for platform in Platform}
