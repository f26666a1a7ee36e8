"""
TikTok Login Kit provider: OAuth 2.0 authorization code flow with PKCE and
refresh token rotation.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from settings import TIKTOK_AUTHORIZE_URL, TIKTOK_TOKEN_URL, TIKTOK_USER_INFO_URL
from social_oauth.errors import (
    ProfileFetchError,
    RefreshTransientError,
    TokenExchangeError,
    mask_token,
    redact_payload,
)
from social_oauth.models import Credential, Platform, Profile, TokenResult
from social_oauth.pkce import CODE_CHALLENGE_METHOD
from .base_provider import FORM_HEADERS, BaseProvider, as_int, parse_scope

logger = logging.getLogger(__name__)

# TikTok access tokens last 24 hours
DEFAULT_EXPIRES_IN = 86400

USER_INFO_FIELDS = [
    "open_id",
    "union_id",
    "avatar_url",
    "avatar_large_url",
    "display_name",
    "username",
    "bio_description",
    "profile_deep_link",
    "is_verified",
    "follower_count",
    "following_count",
    "likes_count",
    "video_count",
]


class TikTokProvider(BaseProvider):
    """TikTok OAuth profile"""

    name = Platform.TIKTOK.value
    display_name = "TikTok"
    uses_pkce = True
    refresh_window = 5 * 60

    def build_authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        if not code_challenge:
            raise ValueError("TikTok authorization requires a PKCE code challenge")

        params = {
            "client_key": self.client_id,
            "scope": ",".join(self.scopes),
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        return f"{TIKTOK_AUTHORIZE_URL}?{urlencode(params)}"

    def _token_result(self, payload: Dict[str, Any], default_account: str = "") -> TokenResult:
        return TokenResult(
            access_token=payload["access_token"],
            expires_in=as_int(payload.get("expires_in"), DEFAULT_EXPIRES_IN),
            account_id=str(payload.get("open_id") or default_account),
            refresh_token=payload.get("refresh_token") or None,
            scope=parse_scope(payload.get("scope")),
        )

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenResult:
        if not code_verifier:
            raise TokenExchangeError("Missing PKCE code verifier", provider=self.name)

        data = {
            "client_key": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }

        logger.info(f"TikTok OAuth: Exchanging code {mask_token(code)} for token")
        response, payload = await self._request(
            "POST", TIKTOK_TOKEN_URL, TokenExchangeError, "token exchange",
            data=data, headers=FORM_HEADERS,
        )

        # TikTok may report errors with a 200 status
        if not response.is_success or payload.get("error"):
            logger.error(
                f"TikTok token exchange failed with status {response.status_code}: {redact_payload(payload)}"
            )
            reason = payload.get("error_description") or payload.get("error") or "Unknown error"
            raise TokenExchangeError(f"Token exchange failed: {reason}", provider=self.name)

        if not payload.get("access_token") or not payload.get("open_id"):
            logger.error(f"TikTok token response missing required fields: {redact_payload(payload)}")
            raise TokenExchangeError(
                "Invalid token response: missing access_token or open_id", provider=self.name
            )

        result = self._token_result(payload)
        logger.info(
            f"TikTok OAuth: Token exchange successful (open_id={result.account_id}, "
            f"scope={result.scope}, expires_in={result.expires_in})"
        )
        return result

    async def refresh(self, refresh_credential: str) -> TokenResult:
        data = {
            "client_key": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_credential,
        }

        logger.info(f"TikTok Token Refresh: Calling refresh endpoint (refresh_token={mask_token(refresh_credential)})")
        response, payload = await self._request(
            "POST", TIKTOK_TOKEN_URL, RefreshTransientError, "token refresh",
            data=data, headers=FORM_HEADERS,
        )

        if not response.is_success or payload.get("error"):
            self._raise_refresh_error(response, payload)

        if not payload.get("access_token"):
            logger.error(f"TikTok refresh response missing access token: {redact_payload(payload)}")
            raise RefreshTransientError("Invalid refresh response: missing access_token", provider=self.name)

        result = self._token_result(payload)
        logger.info(
            f"TikTok Token Refresh: Refresh successful (expires_in={result.expires_in}, "
            f"rotated={result.refresh_token is not None})"
        )
        return result

    async def fetch_profile(self, access_token: str, account_id: str) -> Profile:
        logger.info(f"TikTok OAuth: Fetching user profile (open_id={account_id})")
        response, payload = await self._request(
            "GET", TIKTOK_USER_INFO_URL, ProfileFetchError, "user info fetch",
            params={"fields": ",".join(USER_INFO_FIELDS)},
            headers={"Authorization": f"Bearer {access_token}"},
        )

        error = payload.get("error")
        error_code = error.get("code") if isinstance(error, dict) else error
        if not response.is_success or (error_code and error_code != "ok"):
            message = error.get("message") if isinstance(error, dict) else error
            logger.error(f"TikTok user info fetch failed with status {response.status_code}: {redact_payload(payload)}")
            raise ProfileFetchError(
                f"Failed to fetch user profile: {message or 'Unknown error'}", provider=self.name
            )

        data = payload.get("data")
        user = data.get("user") if isinstance(data, dict) else None
        if not isinstance(user, dict):
            logger.error("TikTok user info response missing user data")
            raise ProfileFetchError("Invalid user info response: missing user data", provider=self.name)

        profile = Profile(
            username=user.get("username") or "",
            display_name=user.get("display_name") or "",
            avatar_url=user.get("avatar_url") or user.get("avatar_large_url") or "",
            bio=user.get("bio_description") or "",
            follower_count=as_int(user.get("follower_count")),
            following_count=as_int(user.get("following_count")),
            likes_count=as_int(user.get("likes_count")),
            video_count=as_int(user.get("video_count")),
            is_verified=bool(user.get("is_verified")),
            profile_deep_link=user.get("profile_deep_link") or "",
        )
        logger.info(f"TikTok OAuth: User profile fetched (display_name={profile.display_name!r})")
        return profile

    def refresh_credential_for(self, credential: Credential) -> Optional[str]:
        return credential.refresh_token

    def fallback_profile(self, account_id: str) -> Profile:
        return Profile(username=f"user_{account_id[:8]}", display_name="TikTok User")
