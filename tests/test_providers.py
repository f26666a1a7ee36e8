import logging
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

import settings
from providers import quiet_http_loggers
from social_oauth.errors import (
    ProfileFetchError,
    RefreshInvalidError,
    RefreshTransientError,
    TokenExchangeError,
)
from social_oauth.models import Credential, TokenResult
from social_oauth.pkce import new_pkce_pair

from conftest import NOW


def query(url):
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


def test_tiktok_authorization_url_carries_pkce_and_state(tiktok):
    pair = new_pkce_pair()
    params = query(tiktok.build_authorization_url("state-1", pair.code_challenge))

    assert params["client_key"] == "tiktok-client-key"
    assert params["scope"] == "user.info.basic,video.list"
    assert params["response_type"] == "code"
    assert params["redirect_uri"] == "http://localhost:9002/auth/tiktok/callback"
    assert params["state"] == "state-1"
    assert params["code_challenge"] == pair.code_challenge
    assert params["code_challenge_method"] == "S256"


def test_tiktok_authorization_requires_challenge(tiktok):
    with pytest.raises(ValueError):
        tiktok.build_authorization_url("state-1")


def test_instagram_authorization_url_has_no_pkce(instagram):
    params = query(instagram.build_authorization_url("state-2"))

    assert params["client_id"] == "instagram-app-id"
    assert params["state"] == "state-2"
    assert "code_challenge" not in params


@pytest.mark.asyncio
async def test_tiktok_exchange_sends_verifier(tiktok, api):
    api.tiktok_token()

    result = await tiktok.exchange_code("abc123", "verifier-xyz")

    assert result == TokenResult(
        access_token="T1",
        expires_in=3600,
        account_id="u1",
        refresh_token="R1",
        scope=["user.info.basic", "video.list"],
    )
    form = parse_qs(api.last(settings.TIKTOK_TOKEN_URL).content.decode())
    assert form["code_verifier"] == ["verifier-xyz"]
    assert form["grant_type"] == ["authorization_code"]


@pytest.mark.asyncio
async def test_tiktok_exchange_error_in_success_body(tiktok, api):
    api.route("POST", settings.TIKTOK_TOKEN_URL, json={
        "error": "invalid_request",
        "error_description": "Code verifier or code challenge is invalid.",
    })

    with pytest.raises(TokenExchangeError) as exc_info:
        await tiktok.exchange_code("abc123", "verifier")
    assert "Code verifier" in exc_info.value.description


@pytest.mark.asyncio
async def test_tiktok_exchange_without_verifier_fails(tiktok, api):
    with pytest.raises(TokenExchangeError):
        await tiktok.exchange_code("abc123", None)
    assert api.calls == []


@pytest.mark.asyncio
async def test_tiktok_refresh_without_rotation(tiktok, api):
    api.tiktok_token(access_token="T2", refresh_token=None, scope="")

    result = await tiktok.refresh("R1")

    assert result.access_token == "T2"
    assert result.refresh_token is None


@pytest.mark.asyncio
async def test_tiktok_refresh_invalid_grant(tiktok, api):
    api.route("POST", settings.TIKTOK_TOKEN_URL, status=400, json={
        "error": "invalid_grant",
        "error_description": "Refresh token is invalid or expired.",
    })

    with pytest.raises(RefreshInvalidError):
        await tiktok.refresh("R1")


@pytest.mark.asyncio
async def test_tiktok_refresh_server_error_is_transient(tiktok, api):
    api.route("POST", settings.TIKTOK_TOKEN_URL, status=500, json={"error": "internal_error"})

    with pytest.raises(RefreshTransientError):
        await tiktok.refresh("R1")


@pytest.mark.asyncio
async def test_tiktok_refresh_timeout_is_transient(tiktok, api):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    api.route("POST", settings.TIKTOK_TOKEN_URL, handler=timeout)

    with pytest.raises(RefreshTransientError):
        await tiktok.refresh("R1")


@pytest.mark.asyncio
async def test_tiktok_profile_is_normalized(tiktok, api):
    api.tiktok_user(follower_count=321)

    profile = await tiktok.fetch_profile("T1", "u1")

    assert profile.username == "creator"
    assert profile.display_name == "Creator"
    assert profile.follower_count == 321
    assert profile.likes_count == 999
    assert api.last(settings.TIKTOK_USER_INFO_URL).headers["Authorization"] == "Bearer T1"


@pytest.mark.asyncio
async def test_tiktok_profile_error_code(tiktok, api):
    api.route("GET", settings.TIKTOK_USER_INFO_URL, json={
        "data": {},
        "error": {"code": "access_token_invalid", "message": "The access token is invalid"},
    })

    with pytest.raises(ProfileFetchError):
        await tiktok.fetch_profile("T1", "u1")


@pytest.mark.asyncio
async def test_instagram_exchange_upgrades_to_long_lived(instagram, api):
    api.instagram_token()
    api.instagram_long_token()

    result = await instagram.exchange_code("ig-code")

    assert result.access_token == "IGL1"
    assert result.long_lived is True
    assert result.expires_in == 5183944
    assert result.account_id == "17841400000000000"
    assert result.scope == ["instagram_business_basic", "instagram_business_content_publish"]
    assert query(str(api.last(settings.INSTAGRAM_LONG_TOKEN_URL).url))["grant_type"] == "ig_exchange_token"


@pytest.mark.asyncio
async def test_instagram_keeps_short_lived_token_when_upgrade_fails(instagram, api):
    api.instagram_token()
    api.route("GET", settings.INSTAGRAM_LONG_TOKEN_URL, status=400, json={
        "error": {"message": "Invalid OAuth access token", "type": "OAuthException", "code": 190},
    })

    result = await instagram.exchange_code("ig-code")

    assert result.access_token == "IGS1"
    assert result.long_lived is False
    assert result.expires_in == 3600


@pytest.mark.asyncio
async def test_instagram_flat_token_response(instagram, api):
    api.route("POST", settings.INSTAGRAM_TOKEN_URL, json={"access_token": "IGS9", "user_id": 42})

    def timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    api.route("GET", settings.INSTAGRAM_LONG_TOKEN_URL, handler=timeout)

    result = await instagram.exchange_code("ig-code")
    assert (result.access_token, result.account_id) == ("IGS9", "42")


@pytest.mark.asyncio
async def test_instagram_refresh_uses_long_lived_token(instagram, api):
    api.route("GET", settings.INSTAGRAM_REFRESH_TOKEN_URL, json={
        "access_token": "IGL2", "token_type": "bearer", "expires_in": 5183944,
    })

    result = await instagram.refresh("IGL1")

    assert result.access_token == "IGL2"
    params = query(str(api.last(settings.INSTAGRAM_REFRESH_TOKEN_URL).url))
    assert params == {"grant_type": "ig_refresh_token", "access_token": "IGL1"}


@pytest.mark.asyncio
async def test_instagram_code_190_is_invalid_grant(instagram, api):
    api.route("GET", settings.INSTAGRAM_REFRESH_TOKEN_URL, status=400, json={
        "error": {"message": "Error validating access token", "type": "OAuthException", "code": 190},
    })

    with pytest.raises(RefreshInvalidError):
        await instagram.refresh("IGL1")


def test_instagram_short_lived_token_is_not_refreshable(instagram):
    credential = Credential(
        provider="instagram", account_id="1", access_token="IGS1",
        expires_at=NOW + 3600, issued_at=NOW, connected_at=NOW, long_lived=False,
    )
    assert instagram.refresh_credential_for(credential) is None
    credential.long_lived = True
    assert instagram.refresh_credential_for(credential) == "IGS1"


@pytest.mark.asyncio
async def test_instagram_profile_maps_graph_fields(instagram, api):
    api.instagram_user(followers_count=777)

    profile = await instagram.fetch_profile("IGL1", "1")

    assert profile.username == "brand"
    assert profile.follower_count == 777
    assert profile.video_count == 42
    assert profile.account_type == "BUSINESS"
    assert profile.profile_deep_link == "https://www.instagram.com/brand/"


@pytest.mark.asyncio
async def test_instagram_tokens_stay_out_of_logs(instagram, api, caplog):
    caplog.set_level(logging.DEBUG)
    api.instagram_token(access_token="IGSECRETSHORTTOKEN456")
    api.instagram_long_token(access_token="IGSECRETACCESSTOKEN123")
    api.route("GET", settings.INSTAGRAM_REFRESH_TOKEN_URL, json={
        "access_token": "IGSECRETROTATEDTOKEN789", "token_type": "bearer", "expires_in": 5183944,
    })
    api.instagram_user()

    result = await instagram.exchange_code("ig-code")
    await instagram.fetch_profile(result.access_token, result.account_id)
    await instagram.refresh(result.access_token)

    assert logging.getLogger("httpx").getEffectiveLevel() >= logging.WARNING
    secrets = ("IGSECRETSHORTTOKEN456", "IGSECRETACCESSTOKEN123", "IGSECRETROTATEDTOKEN789", "instagram-app-secret")
    leaked = [record.getMessage() for record in caplog.records
              if any(secret in record.getMessage() for secret in secrets)]
    assert leaked == []


def test_quiet_http_loggers_raises_client_logger_levels():
    logging.getLogger("httpx").setLevel(logging.INFO)
    logging.getLogger("httpcore").setLevel(logging.DEBUG)

    quiet_http_loggers()

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING
