"""
Health check endpoints.
"""
import time
from fastapi import APIRouter, Depends

from social_oauth import OAuthManager
from ..dependencies import get_manager

router = APIRouter()


@router.get("/health")
async def health_check(manager: OAuthManager = Depends(get_manager)):
    """Readiness with per-provider configuration

    Reports ``degraded`` while any provider is missing client credentials;
    the connect flow for that provider fails with invalid_configuration.
    """
    providers = {name: provider.is_configured() for name, provider in manager.providers.items()}
    return {
        "status": "healthy" if all(providers.values()) else "degraded",
        "providers": providers,
        "account_limit": manager.roster.limit,
        "timestamp": time.time(),
    }


@router.get("/healthz")
async def healthz_check():
    """Liveness only; touches neither providers nor the credential store"""
    return {"status": "ok"}
