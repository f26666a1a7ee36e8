"""
Base provider interface for social platform OAuth profiles.
Defines the contract that both provider implementations follow and the
shared HTTP plumbing for talking to provider endpoints.
"""
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import httpx

from settings import PROVIDER_CONNECT_TIMEOUT, PROVIDER_TIMEOUT
from social_oauth.errors import (
    ConfigurationError,
    OAuthLifecycleError,
    RefreshInvalidError,
    RefreshTransientError,
    redact_payload,
)
from social_oauth.models import Credential, Profile, TokenResult

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Cache-Control": "no-cache",
}

# Provider error codes meaning the grant can never succeed again
INVALID_GRANT_ERRORS = ("invalid_grant", "invalid_token")

HTTP_CLIENT_LOGGERS = ("httpx", "httpcore")


def quiet_http_loggers(level: int = logging.WARNING) -> None:
    """Raise the HTTP client loggers above INFO

    httpx logs every request URL at INFO, and Instagram requests carry the
    access token (and on upgrade the app secret) in the query string.
    """
    for name in HTTP_CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(level)


quiet_http_loggers()


def parse_scope(value: Any) -> List[str]:
    """Normalize a comma/space separated scope string or list into a list"""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    parts = str(value).replace(" ", ",").split(",")
    return [part.strip() for part in parts if part.strip()]


def as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class BaseProvider(ABC):
    """Abstract base class for provider OAuth profiles

    Each subclass is the single place where its provider's wire format is
    translated into TokenResult and Profile.
    """

    name: str = ""
    display_name: str = ""
    uses_pkce: bool = False
    refresh_window: int = 0

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: List[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[httpx.Timeout] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize provider with client credentials

        Args:
            client_id: OAuth client identifier (client key / app id)
            client_secret: OAuth client secret
            redirect_uri: Registered callback URL
            scopes: Requested scopes
            transport: Optional httpx transport (used to fake provider endpoints)
            timeout: Bound for every provider call
            clock: Time source returning epoch seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self.transport = transport
        self.timeout = timeout or httpx.Timeout(PROVIDER_TIMEOUT, connect=PROVIDER_CONNECT_TIMEOUT)
        self.clock = clock

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if client credentials are missing"""
        if not self.is_configured():
            logger.error(f"{self.display_name} OAuth: client credentials not configured")
            raise ConfigurationError(
                f"{self.display_name} client credentials are not configured",
                provider=self.name,
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    async def _request(
        self,
        method: str,
        url: str,
        error_cls: Type[OAuthLifecycleError],
        action: str,
        **kwargs,
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        """Perform a provider call and decode its JSON body

        Timeouts, network failures and undecodable bodies are raised as
        ``error_cls``; status codes are left for the caller to interpret.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{self.display_name} {action} timed out: {e!r}")
            raise error_cls(f"{self.display_name} {action} timed out", provider=self.name) from e
        except httpx.RequestError as e:
            logger.error(f"{self.display_name} {action} request failed: {e!r}")
            raise error_cls(f"{self.display_name} {action} request failed", provider=self.name) from e

        logger.debug(f"{self.display_name} {action} response status: {response.status_code}")

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            payload = {}
            if response.is_success:
                logger.error(f"{self.display_name} {action} returned a non-JSON body")
                raise error_cls(f"{self.display_name} {action} returned an invalid response", provider=self.name)

        if not isinstance(payload, dict):
            payload = {"data": payload}

        return response, payload

    def _raise_refresh_error(self, response: httpx.Response, payload: Dict[str, Any]) -> None:
        """Classify a failed refresh response"""
        logger.error(
            f"{self.display_name} token refresh failed with status {response.status_code}: "
            f"{redact_payload(payload)}"
        )
        if self.is_invalid_grant(payload):
            raise RefreshInvalidError(
                f"{self.display_name} refresh credential is invalid or expired. Re-authentication required.",
                provider=self.name,
            )
        raise RefreshTransientError(
            f"{self.display_name} token refresh failed with status {response.status_code}",
            provider=self.name,
        )

    def is_invalid_grant(self, payload: Dict[str, Any]) -> bool:
        """Whether an error body reports an unrecoverable grant"""
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("code") or error.get("type")
        text = f"{error or ''} {payload.get('error_description') or ''}"
        return any(code in text for code in INVALID_GRANT_ERRORS)

    def now(self) -> int:
        return int(self.clock())

    @abstractmethod
    def build_authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        """Build the provider authorization URL

        Args:
            state: CSRF state token
            code_challenge: PKCE S256 challenge (PKCE providers only)

        Returns:
            Full authorization URL
        """
        pass

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenResult:
        """Exchange an authorization code for tokens

        Raises:
            TokenExchangeError: On any failure
        """
        pass

    @abstractmethod
    async def refresh(self, refresh_credential: str) -> TokenResult:
        """Obtain a new access token

        Raises:
            RefreshInvalidError: The provider rejected the grant
            RefreshTransientError: Retryable failure
        """
        pass

    @abstractmethod
    async def fetch_profile(self, access_token: str, account_id: str) -> Profile:
        """Fetch and normalize the account profile

        Raises:
            ProfileFetchError: On any failure
        """
        pass

    @abstractmethod
    def refresh_credential_for(self, credential: Credential) -> Optional[str]:
        """Secret used to refresh ``credential``, or None if it cannot be refreshed"""
        pass

    def fallback_profile(self, account_id: str) -> Profile:
        """Profile used when enrichment fails on first connect"""
        return Profile()
