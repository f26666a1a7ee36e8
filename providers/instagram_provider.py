"""
Instagram API with Instagram Login provider.

The authorization code yields a short-lived token (about one hour) which is
immediately upgraded to a long-lived token (about 60 days). Long-lived tokens
are refreshed by presenting the token itself; short-lived tokens cannot be
refreshed.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from settings import (
    INSTAGRAM_AUTHORIZE_URL,
    INSTAGRAM_LONG_TOKEN_URL,
    INSTAGRAM_REFRESH_TOKEN_URL,
    INSTAGRAM_TOKEN_URL,
    INSTAGRAM_USER_INFO_URL,
)
from social_oauth.errors import (
    ProfileFetchError,
    RefreshTransientError,
    TokenExchangeError,
    mask_token,
    redact_payload,
)
from social_oauth.models import Credential, Platform, Profile, TokenResult
from .base_provider import FORM_HEADERS, BaseProvider, as_int, parse_scope

logger = logging.getLogger(__name__)

SHORT_LIVED_EXPIRES_IN = 3600
# ~60 days, used when the long-lived response omits expires_in
LONG_LIVED_EXPIRES_IN = 5183944

# Graph API error code for invalid or expired access tokens
INVALID_TOKEN_CODE = 190

USER_INFO_FIELDS = [
    "id",
    "username",
    "name",
    "account_type",
    "profile_picture_url",
    "biography",
    "followers_count",
    "follows_count",
    "media_count",
]


class InstagramProvider(BaseProvider):
    """Instagram OAuth profile"""

    name = Platform.INSTAGRAM.value
    display_name = "Instagram"
    uses_pkce = False
    refresh_window = 24 * 60 * 60

    def build_authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": ",".join(self.scopes),
            "state": state,
        }
        return f"{INSTAGRAM_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenResult:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
            "code": code,
        }

        logger.info(f"Instagram Callback: Exchanging code {mask_token(code)} for short-lived token")
        response, payload = await self._request(
            "POST", INSTAGRAM_TOKEN_URL, TokenExchangeError, "token exchange",
            data=data, headers=FORM_HEADERS,
        )

        if not response.is_success:
            logger.error(
                f"Instagram token exchange failed with status {response.status_code}: {redact_payload(payload)}"
            )
            raise TokenExchangeError(
                f"Token exchange failed: {self._error_message(payload)}", provider=self.name
            )

        # The endpoint answers either with a data[] envelope or a flat object
        entries = payload.get("data")
        token_data = entries[0] if isinstance(entries, list) and entries else payload
        if not isinstance(token_data, dict):
            token_data = {}

        access_token = token_data.get("access_token")
        user_id = token_data.get("user_id")
        if not access_token or not user_id:
            logger.error(f"Instagram token response missing required fields: {redact_payload(payload)}")
            raise TokenExchangeError(
                "Invalid token response: missing access_token or user_id", provider=self.name
            )

        short_lived = TokenResult(
            access_token=access_token,
            expires_in=as_int(token_data.get("expires_in"), SHORT_LIVED_EXPIRES_IN),
            account_id=str(user_id),
            scope=parse_scope(token_data.get("permissions")),
        )
        logger.info(
            f"Instagram Callback: Short-lived token obtained (user_id={short_lived.account_id}, "
            f"permissions={short_lived.scope})"
        )
        return await self.upgrade_to_long_lived(short_lived)

    async def upgrade_to_long_lived(self, short_lived: TokenResult) -> TokenResult:
        """Exchange a short-lived token for a long-lived one

        Any failure is logged and the short-lived result is returned unchanged.
        """
        params = {
            "grant_type": "ig_exchange_token",
            "client_secret": self.client_secret,
            "access_token": short_lived.access_token,
        }

        logger.info("Instagram Callback: Exchanging for long-lived token")
        try:
            response, payload = await self._request(
                "GET", INSTAGRAM_LONG_TOKEN_URL, TokenExchangeError, "long-lived token exchange",
                params=params,
            )
        except TokenExchangeError as e:
            logger.warning(f"Instagram long-lived exchange failed, continuing with short-lived token: {e}")
            return short_lived

        if not response.is_success or not payload.get("access_token"):
            logger.warning(
                f"Instagram long-lived exchange failed with status {response.status_code}, "
                f"continuing with short-lived token: {redact_payload(payload)}"
            )
            return short_lived

        expires_in = as_int(payload.get("expires_in"), LONG_LIVED_EXPIRES_IN) or LONG_LIVED_EXPIRES_IN
        logger.info(
            f"Instagram Callback: Long-lived token obtained (expires_in_days={round(expires_in / 86400)})"
        )
        return TokenResult(
            access_token=payload["access_token"],
            expires_in=expires_in,
            account_id=short_lived.account_id,
            scope=short_lived.scope,
            long_lived=True,
        )

    async def refresh(self, refresh_credential: str) -> TokenResult:
        params = {
            "grant_type": "ig_refresh_token",
            "access_token": refresh_credential,
        }

        logger.info(f"Instagram Account: Refreshing access token {mask_token(refresh_credential)}")
        response, payload = await self._request(
            "GET", INSTAGRAM_REFRESH_TOKEN_URL, RefreshTransientError, "token refresh",
            params=params,
        )

        if not response.is_success or payload.get("error"):
            self._raise_refresh_error(response, payload)

        if not payload.get("access_token"):
            logger.error(f"Instagram refresh response missing access token: {redact_payload(payload)}")
            raise RefreshTransientError("Invalid refresh response: missing access_token", provider=self.name)

        expires_in = as_int(payload.get("expires_in"), LONG_LIVED_EXPIRES_IN) or LONG_LIVED_EXPIRES_IN
        logger.info(f"Instagram Account: Token refreshed (expires_in={expires_in})")
        return TokenResult(
            access_token=payload["access_token"],
            expires_in=expires_in,
            account_id="",
            long_lived=True,
        )

    async def fetch_profile(self, access_token: str, account_id: str) -> Profile:
        logger.info(f"Instagram Callback: Fetching user profile (user_id={account_id})")
        response, payload = await self._request(
            "GET", INSTAGRAM_USER_INFO_URL, ProfileFetchError, "user info fetch",
            params={"fields": ",".join(USER_INFO_FIELDS), "access_token": access_token},
        )

        if not response.is_success or payload.get("error"):
            logger.warning(
                f"Instagram user info fetch failed with status {response.status_code}: {redact_payload(payload)}"
            )
            raise ProfileFetchError(
                f"Failed to fetch user profile: {self._error_message(payload)}", provider=self.name
            )

        username = payload.get("username") or ""
        profile = Profile(
            username=username,
            display_name=payload.get("name") or username,
            avatar_url=payload.get("profile_picture_url") or "",
            bio=payload.get("biography") or "",
            follower_count=as_int(payload.get("followers_count")),
            following_count=as_int(payload.get("follows_count")),
            video_count=as_int(payload.get("media_count")),
            profile_deep_link=f"https://www.instagram.com/{username}/" if username else "",
            account_type=payload.get("account_type") or "",
        )
        logger.info(f"Instagram Callback: User profile fetched (username={profile.username!r})")
        return profile

    def is_invalid_grant(self, payload: Dict[str, Any]) -> bool:
        error = payload.get("error")
        if isinstance(error, dict) and as_int(error.get("code")) == INVALID_TOKEN_CODE:
            return True
        return super().is_invalid_grant(payload)

    def refresh_credential_for(self, credential: Credential) -> Optional[str]:
        # Short-lived tokens cannot be refreshed
        if not credential.long_lived:
            return None
        return credential.access_token

    def fallback_profile(self, account_id: str) -> Profile:
        return Profile(username="Unknown", display_name="Unknown", account_type="BUSINESS")

    @staticmethod
    def _error_message(payload: Dict[str, Any]) -> str:
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("type") or "Unknown error"
        return payload.get("error_message") or payload.get("error_description") or error or "Unknown error"
