"""Social account OAuth lifecycle package

Connects TikTok and Instagram accounts and keeps their access credentials
valid: authorization with CSRF state and PKCE, code exchange, profile
enrichment, expiry classification, refresh, and persistence.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from settings import MAX_CONNECTED_ACCOUNTS
from .authorization import AuthorizationOrchestrator
from .errors import OAuthLifecycleError, ReauthRequiredError
from .models import AccountSnapshot, AuthorizationStart, Credential, ExpiryStatus, Platform
from .permissions import publish_capability, require_permission
from .reconciler import AccountRoster, merge
from .storage import CredentialStore, FileBackend, MemoryBackend
from .token_manager import CredentialManager, classify

logger = logging.getLogger(__name__)


class OAuthManager:
    """Connector facade used by the web layer and CLI

    This class wires the lifecycle components together:
    - Authorization flow (start + callback)
    - Expiry classification and refresh on read
    - Profile sync and disconnect
    - Display roster reconciliation
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        providers: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
        max_accounts: int = MAX_CONNECTED_ACCOUNTS,
    ):
        if providers is None:
            from providers import build_providers
            providers = build_providers(clock=clock)

        self.store = store or CredentialStore.from_settings()
        self.providers = providers
        self.authorization = AuthorizationOrchestrator(
            providers, self.store, max_accounts=max_accounts, clock=clock
        )
        self.credentials = CredentialManager(providers, self.store, clock=clock)
        self.roster = AccountRoster(limit=max_accounts)

    # Authorization flow
    def start_authorization(self, provider: str, client_id: str) -> AuthorizationStart:
        """Build the provider authorization URL and store the pending attempt"""
        return self.authorization.start_authorization(provider, client_id)

    async def handle_callback(
        self,
        provider: str,
        client_id: str,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> Credential:
        """Complete the flow and add the account to the roster"""
        credential = await self.authorization.handle_callback(
            provider, client_id, code, state, error, error_description
        )
        self._reconcile(credential)
        return credential

    # Account status
    async def get_account_status(self, provider: str, account_id: str) -> AccountSnapshot:
        """Return the account snapshot, refreshing the token when it expires soon

        Raises:
            ReauthRequiredError: Missing or expired credential
        """
        try:
            snapshot = await self.credentials.get_account_status(provider, account_id)
        except ReauthRequiredError:
            self.roster.remove(provider, account_id)
            raise
        self.roster.upsert(snapshot)
        return snapshot

    async def refresh_account(self, provider: str, account_id: str, force: bool = True) -> AccountSnapshot:
        try:
            snapshot = await self.credentials.refresh_account(provider, account_id, force=force)
        except OAuthLifecycleError as e:
            if getattr(e, "requires_reauth", False):
                self.roster.remove(provider, account_id)
            raise
        self.roster.upsert(snapshot)
        return snapshot

    async def sync_profile(self, provider: str, account_id: str) -> AccountSnapshot:
        snapshot = await self.credentials.sync_profile(provider, account_id)
        self.roster.upsert(snapshot)
        return snapshot

    def disconnect(self, provider: str, account_id: str) -> None:
        self.roster.remove(provider, account_id)
        self.credentials.disconnect(provider, account_id)

    async def list_accounts(self) -> List[AccountSnapshot]:
        """Reconcile every stored credential into the roster and return it"""
        stored = self.store.list_credentials()
        self.roster.retain(c.key for c in stored)
        for credential in stored:
            try:
                await self.get_account_status(credential.provider, credential.account_id)
            except ReauthRequiredError:
                logger.info(f"Skipping {credential.provider} account {credential.account_id}: re-authentication required")
        return self.roster.snapshots

    def _reconcile(self, credential: Credential) -> None:
        # Expired credentials vanish from the store without touching the roster
        self.roster.retain(c.key for c in self.store.list_credentials())
        provider = self.providers[credential.provider]
        now = int(self.credentials.clock())
        status = classify(credential, now, provider.refresh_window)
        self.roster.upsert(AccountSnapshot.from_credential(credential, status, now))


__all__ = [
    "AccountRoster",
    "AccountSnapshot",
    "AuthorizationOrchestrator",
    "AuthorizationStart",
    "Credential",
    "CredentialManager",
    "CredentialStore",
    "ExpiryStatus",
    "FileBackend",
    "MemoryBackend",
    "OAuthManager",
    "Platform",
    "classify",
    "merge",
    "publish_capability",
    "require_permission",
]
