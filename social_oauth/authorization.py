"""Authorization flow orchestration

Drives one connect flow per provider and browser client:

    IDLE -> PENDING -> EXCHANGING -> ENRICHING -> CONNECTED

Any failure ends in FAILED; a PENDING attempt that is never called back
falls back to IDLE once its TTL elapses. Every other state stays readable
for one attempt TTL after it is entered and is then evicted.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from settings import AUTHORIZATION_ATTEMPT_TTL, MAX_CONNECTED_ACCOUNTS
from .errors import (
    AccountLimitError,
    AttemptNotFoundError,
    CsrfMismatchError,
    OAuthLifecycleError,
    ProfileFetchError,
    ProviderAuthorizationError,
    TokenExchangeError,
    mask_token,
)
from .models import AuthorizationAttempt, AuthorizationStart, Credential, FlowState
from .pkce import new_pkce_pair, new_state
from .storage import CredentialStore

logger = logging.getLogger(__name__)


class AuthorizationOrchestrator:
    """Runs the authorization state machine for every provider"""

    def __init__(
        self,
        providers: Dict,
        store: CredentialStore,
        attempt_ttl: int = AUTHORIZATION_ATTEMPT_TTL,
        max_accounts: int = MAX_CONNECTED_ACCOUNTS,
        clock: Callable[[], float] = time.time,
    ):
        self.providers = providers
        self.store = store
        self.attempt_ttl = attempt_ttl
        self.max_accounts = max_accounts
        self.clock = clock
        self._flow_states: Dict[Tuple[str, str], Tuple[FlowState, Optional[str]]] = {}
        # Epoch second after which a flow entry reads IDLE
        self._flow_expiry: Dict[Tuple[str, str], int] = {}

    def _provider(self, name: str):
        provider = self.providers.get(name)
        if provider is None:
            raise ValueError(f"Unsupported provider: {name}")
        return provider

    def _transition(
        self,
        provider: str,
        client_id: str,
        state: FlowState,
        reason: Optional[str] = None,
        expires_at: Optional[int] = None,
    ):
        key = (provider, client_id)
        self._flow_states[key] = (state, reason)
        if expires_at is None:
            expires_at = int(self.clock()) + self.attempt_ttl
        self._flow_expiry[key] = expires_at
        logger.debug(f"{provider} flow for client {mask_token(client_id)} -> {state.value}")

    def flow_state(self, provider: str, client_id: str) -> Tuple[FlowState, Optional[str]]:
        """Current state of a client's flow and the failure reason, if any"""
        key = (provider, client_id)
        if self._is_stale(key, self.clock()):
            self._evict(key)
        return self._flow_states.get(key, (FlowState.IDLE, None))

    def _is_stale(self, key: Tuple[str, str], now: float) -> bool:
        expires_at = self._flow_expiry.get(key)
        return expires_at is not None and now >= expires_at

    def _evict(self, key: Tuple[str, str]) -> None:
        self._flow_states.pop(key, None)
        self._flow_expiry.pop(key, None)

    def prune_flows(self) -> int:
        """Drop every flow entry whose TTL has elapsed

        Returns:
            Number of evicted flow entries
        """
        now = self.clock()
        stale = [key for key in list(self._flow_expiry) if self._is_stale(key, now)]
        for key in stale:
            self._evict(key)
        if stale:
            logger.debug(f"Evicted {len(stale)} stale authorization flows")
        return len(stale)

    def start_authorization(self, provider_name: str, client_id: str) -> AuthorizationStart:
        """Begin a flow and return the provider authorization URL

        Any previous live attempt for the same provider and client is replaced.

        Raises:
            ConfigurationError: Provider client credentials are missing
        """
        provider = self._provider(provider_name)
        provider.ensure_configured()

        state = new_state()
        pkce = new_pkce_pair() if provider.uses_pkce else None
        attempt = AuthorizationAttempt(
            provider=provider.name,
            state=state,
            code_verifier=pkce.code_verifier if pkce else None,
            created_at=int(self.clock()),
            ttl=self.attempt_ttl,
        )
        self.store.save_attempt(client_id, attempt)

        auth_url = provider.build_authorization_url(state, pkce.code_challenge if pkce else None)
        self.prune_flows()
        self._transition(provider.name, client_id, FlowState.PENDING, expires_at=attempt.expires_at)

        logger.info(
            f"{provider.display_name} OAuth: Initiating authorization flow "
            f"(redirect_uri={provider.redirect_uri}, scopes={provider.scopes}, state={mask_token(state)})"
        )
        return AuthorizationStart(provider=provider.name, auth_url=auth_url, state=state)

    async def handle_callback(
        self,
        provider_name: str,
        client_id: str,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> Credential:
        """Complete a flow from the provider redirect

        The stored attempt is consumed before anything else, so it is gone on
        every exit path and a replayed callback finds nothing.

        Raises:
            ProviderAuthorizationError: Provider redirected with an error
            AttemptNotFoundError: No live attempt (never started, expired, already used)
            CsrfMismatchError: State absent or not identical to the stored one
            TokenExchangeError: Code exchange failed
            AccountLimitError: Too many accounts connected
        """
        provider = self._provider(provider_name)
        attempt = self.store.consume_attempt(provider.name, client_id)

        try:
            if error:
                logger.error(
                    f"{provider.display_name} Callback: Authorization error: {error} ({error_description or 'no description'})"
                )
                raise ProviderAuthorizationError(
                    error_description or f"{provider.display_name} authorization was denied",
                    provider=provider.name,
                    provider_error=error,
                )

            if attempt is None or attempt.is_expired(self.clock()):
                logger.error(f"{provider.display_name} Callback: No pending authorization attempt")
                raise AttemptNotFoundError(
                    "No pending authorization attempt; start the connection again",
                    provider=provider.name,
                )

            if not state or state != attempt.state:
                logger.error(
                    f"{provider.display_name} Callback: State mismatch "
                    f"(stored={mask_token(attempt.state)}, received={mask_token(state)})"
                )
                raise CsrfMismatchError("State parameter mismatch", provider=provider.name)

            if not code:
                raise TokenExchangeError("Missing authorization code", provider=provider.name)

            self._transition(provider.name, client_id, FlowState.EXCHANGING)
            result = await provider.exchange_code(code, attempt.code_verifier)

            existing = self.store.load_credential(provider.name, result.account_id)
            if existing is None:
                self._check_account_limit(provider.name)

            self._transition(provider.name, client_id, FlowState.ENRICHING)
            try:
                profile = await provider.fetch_profile(result.access_token, result.account_id)
            except ProfileFetchError as e:
                logger.warning(f"{provider.display_name} Callback: {e.description}; using stored profile")
                profile = existing.profile if existing else provider.fallback_profile(result.account_id)

            now = int(self.clock())
            credential = Credential(
                provider=provider.name,
                account_id=result.account_id,
                access_token=result.access_token,
                refresh_token=result.refresh_token,
                permissions=result.scope,
                issued_at=now,
                expires_at=now + result.expires_in,
                connected_at=now,
                long_lived=result.long_lived,
                profile=profile,
            )
            self.store.save_credential(credential)
        except OAuthLifecycleError as e:
            self._transition(provider.name, client_id, FlowState.FAILED, e.kind)
            raise
        except Exception:
            self._transition(provider.name, client_id, FlowState.FAILED, "internal_error")
            raise

        self._transition(provider.name, client_id, FlowState.CONNECTED)
        logger.info(
            f"{provider.display_name} OAuth: Successfully connected account "
            f"(account_id={credential.account_id}, username={credential.profile.username!r}, "
            f"permissions={credential.permissions}, expires_at={credential.expires_at})"
        )
        return credential

    def _check_account_limit(self, provider_name: str) -> None:
        connected = len(self.store.list_credentials())
        if connected >= self.max_accounts:
            logger.warning(f"{provider_name} Callback: account limit of {self.max_accounts} reached")
            raise AccountLimitError(
                f"You can only connect up to {self.max_accounts} accounts.", provider=provider_name
            )
