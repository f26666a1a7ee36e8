"""
OAuth connect flow and account endpoints.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

import settings
from social_oauth import OAuthManager
from social_oauth.errors import OAuthLifecycleError
from social_oauth.models import Platform
from ..dependencies import CLIENT_COOKIE, get_client_id, get_manager
from ..models import AccountsResponse, AuthorizationResponse, ErrorResponse, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}})


def _app_redirect(params: dict) -> RedirectResponse:
    return RedirectResponse(f"{settings.BASE_URL.rstrip('/')}/?{urlencode(params)}", status_code=302)


def _set_client_cookie(response, client_id: str) -> None:
    response.set_cookie(
        CLIENT_COOKIE,
        client_id,
        max_age=settings.AUTHORIZATION_ATTEMPT_TTL,
        httponly=True,
        secure=settings.BASE_URL.startswith("https://"),
        samesite="lax",
        path="/",
    )


# Static routes are registered before /auth/{provider}
@router.get("/accounts", response_model=AccountsResponse)
async def list_accounts(manager: OAuthManager = Depends(get_manager)):
    """Reconciled roster of every connected account"""
    snapshots = await manager.list_accounts()
    return AccountsResponse(
        accounts=[snapshot.to_dict() for snapshot in snapshots],
        count=len(snapshots),
        limit=manager.roster.limit,
    )


@router.get("/status")
async def auth_status(manager: OAuthManager = Depends(get_manager)):
    """Get credential store status without exposing secrets"""
    return manager.store.get_status()


@router.get("/{provider}", response_model=AuthorizationResponse)
async def start_authorization(
    provider: Platform,
    redirect: bool = False,
    client_id: str = Depends(get_client_id),
    manager: OAuthManager = Depends(get_manager),
):
    """Begin the connect flow

    Returns the provider authorization URL, or redirects the browser to it
    when ``redirect`` is set.
    """
    start = manager.start_authorization(provider.value, client_id)

    if redirect:
        response = RedirectResponse(start.auth_url, status_code=302)
    else:
        response = JSONResponse(
            AuthorizationResponse(
                auth_url=start.auth_url,
                message=f"Redirect user to this URL to authorize {provider.value}",
            ).model_dump()
        )
    _set_client_cookie(response, client_id)
    return response


@router.get("/{provider}/callback")
async def authorization_callback(
    provider: Platform,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    manager: OAuthManager = Depends(get_manager),
):
    """Provider redirect target; always redirects back to the application"""
    client_id = request.cookies.get(CLIENT_COOKIE, "")
    try:
        credential = await manager.handle_callback(
            provider.value, client_id, code, state, error, error_description
        )
    except OAuthLifecycleError as e:
        logger.error(f"{provider.value} callback failed: {e.kind}: {e.description}")
        response = _app_redirect({"error": e.kind})
    else:
        logger.info(f"{provider.value} callback connected account {credential.account_id}")
        response = _app_redirect({f"{provider.value}_connected": "true"})

    response.delete_cookie(CLIENT_COOKIE, path="/")
    return response


@router.get("/{provider}/account/{account_id}")
async def account_status(provider: Platform, account_id: str, manager: OAuthManager = Depends(get_manager)):
    """Account snapshot, refreshed on read when the token expires soon"""
    snapshot = await manager.get_account_status(provider.value, account_id)
    return snapshot.to_dict()


@router.post("/{provider}/account/{account_id}/refresh")
async def refresh_account(
    provider: Platform,
    account_id: str,
    force: bool = True,
    manager: OAuthManager = Depends(get_manager),
):
    snapshot = await manager.refresh_account(provider.value, account_id, force=force)
    return snapshot.to_dict()


@router.post("/{provider}/account/{account_id}/sync")
async def sync_account(provider: Platform, account_id: str, manager: OAuthManager = Depends(get_manager)):
    snapshot = await manager.sync_profile(provider.value, account_id)
    return snapshot.to_dict()


@router.delete("/{provider}/account/{account_id}", response_model=MessageResponse)
async def disconnect_account(provider: Platform, account_id: str, manager: OAuthManager = Depends(get_manager)):
    manager.disconnect(provider.value, account_id)
    return MessageResponse(success=True, message=f"{provider.value} account disconnected")


async def oauth_error_handler(request: Request, exc: OAuthLifecycleError) -> JSONResponse:
    """Render connector errors as {"error", "error_description"} bodies"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
