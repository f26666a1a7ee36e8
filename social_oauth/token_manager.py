"""Expiry classification and refresh policy for stored credentials"""

import asyncio
import logging
import time
from dataclasses import fields, replace
from typing import Callable, Dict, List, Tuple

from .errors import (
    NotConnectedError,
    ProfileFetchError,
    ReauthRequiredError,
    RefreshInvalidError,
    RefreshTransientError,
)
from .models import AccountSnapshot, Credential, ExpiryStatus, Profile
from .storage import CredentialStore

logger = logging.getLogger(__name__)


def classify(credential: Credential, now: float, refresh_window: int) -> ExpiryStatus:
    """Classify a credential relative to its provider's refresh window

    Args:
        credential: Stored credential
        now: Current epoch seconds
        refresh_window: Seconds before expiry at which a refresh is attempted

    Returns:
        EXPIRED, EXPIRING_SOON or ACTIVE
    """
    time_until_expiry = credential.expires_at - now
    if time_until_expiry <= 0:
        return ExpiryStatus.EXPIRED
    if time_until_expiry <= refresh_window:
        return ExpiryStatus.EXPIRING_SOON
    return ExpiryStatus.ACTIVE


def merge_profile(previous: Profile, fresh: Profile) -> Profile:
    """Overlay freshly fetched fields onto the previous profile

    Empty or zero values in ``fresh`` keep the previous value.
    """
    updates = {}
    for item in fields(Profile):
        value = getattr(fresh, item.name)
        if value:
            updates[item.name] = value
    return replace(previous, **updates)


class CredentialManager:
    """Serves account status, refreshing credentials that are about to expire

    Refreshes for the same (provider, account_id) are collapsed into one
    in-flight provider call that every concurrent caller awaits.
    """

    def __init__(
        self,
        providers: Dict,
        store: CredentialStore,
        clock: Callable[[], float] = time.time,
    ):
        self.providers = providers
        self.store = store
        self.clock = clock
        self._inflight: Dict[Tuple[str, str], asyncio.Future] = {}

    def _provider(self, name: str):
        provider = self.providers.get(name)
        if provider is None:
            raise ValueError(f"Unsupported provider: {name}")
        return provider

    def now(self) -> int:
        return int(self.clock())

    def _load_live(self, provider, account_id: str) -> Credential:
        """Load a credential that has not yet expired

        Raises:
            ReauthRequiredError: Missing or expired
        """
        credential = self.store.load_credential(provider.name, account_id)
        if credential is None:
            logger.info(f"{provider.display_name} Account: No credential for {account_id}")
            raise ReauthRequiredError(
                f"No {provider.display_name} account connected. Please connect your account.",
                provider=provider.name,
            )
        if classify(credential, self.now(), provider.refresh_window) is ExpiryStatus.EXPIRED:
            logger.info(f"{provider.display_name} Account: Token expired for {account_id}")
            self.store.delete_credential(provider.name, account_id)
            raise ReauthRequiredError(
                f"{provider.display_name} access token has expired. Please reconnect your account.",
                provider=provider.name,
            )
        return credential

    async def get_account_status(self, provider_name: str, account_id: str) -> AccountSnapshot:
        """Read account status, refreshing once if the token expires soon

        A failed refresh never blocks the read; the still-valid current data
        is returned with the failure listed in ``warnings``.

        Raises:
            ReauthRequiredError: No credential, or it has expired
        """
        provider = self._provider(provider_name)
        credential = self._load_live(provider, account_id)
        status = classify(credential, self.now(), provider.refresh_window)
        warnings: List[str] = []

        if status is ExpiryStatus.EXPIRING_SOON:
            refresh_credential = provider.refresh_credential_for(credential)
            if refresh_credential:
                logger.info(
                    f"{provider.display_name} Account: Auto-refreshing token "
                    f"(account_id={account_id}, time_until_expiry={credential.time_until_expiry(self.now())})"
                )
                try:
                    credential = await self._refresh(provider, credential)
                except RefreshTransientError as e:
                    logger.warning(f"{provider.display_name} Account: Auto-refresh failed, continuing with current token: {e}")
                    warnings.append(e.description)
                except RefreshInvalidError as e:
                    logger.warning(f"{provider.display_name} Account: Refresh rejected, credential removed: {e}")
                    warnings.append(e.description)
                status = classify(credential, self.now(), provider.refresh_window)
            else:
                warnings.append(
                    f"{provider.display_name} token expires soon and cannot be refreshed. Please reconnect your account."
                )

        snapshot = AccountSnapshot.from_credential(credential, status, self.now(), warnings)
        logger.info(
            f"{provider.display_name} Account: Returning account status "
            f"(account_id={account_id}, status={status.value}, time_until_expiry={snapshot.time_until_expiry})"
        )
        return snapshot

    async def refresh_account(self, provider_name: str, account_id: str, force: bool = True) -> AccountSnapshot:
        """Explicitly refresh a credential

        Args:
            provider_name: Provider of the account
            account_id: Provider account identifier
            force: Refresh even when the token is outside the refresh window

        Raises:
            ReauthRequiredError: Missing, expired, or not refreshable
            RefreshInvalidError: Provider rejected the grant (credential deleted)
            RefreshTransientError: Retryable failure (credential kept)
        """
        provider = self._provider(provider_name)
        credential = self._load_live(provider, account_id)
        status = classify(credential, self.now(), provider.refresh_window)

        if status is ExpiryStatus.ACTIVE and not force:
            logger.info(f"{provider.display_name} Token Refresh: Token is still valid, skipping refresh")
            return AccountSnapshot.from_credential(credential, status, self.now())

        if not provider.refresh_credential_for(credential):
            raise ReauthRequiredError(
                f"No refresh credential available for this {provider.display_name} account. Please reconnect.",
                provider=provider.name,
            )

        credential = await self._refresh(provider, credential)
        return AccountSnapshot.from_credential(
            credential, classify(credential, self.now(), provider.refresh_window), self.now()
        )

    async def sync_profile(self, provider_name: str, account_id: str) -> AccountSnapshot:
        """Re-fetch profile data, keeping stored values when the fetch fails

        Raises:
            ReauthRequiredError: Missing or expired credential
        """
        provider = self._provider(provider_name)
        credential = self._load_live(provider, account_id)
        warnings: List[str] = []

        try:
            fresh = await provider.fetch_profile(credential.access_token, credential.account_id)
        except ProfileFetchError as e:
            logger.warning(f"{provider.display_name} Account: {e.description}; keeping stored profile")
            warnings.append(e.description)
        else:
            credential = replace(credential, profile=merge_profile(credential.profile, fresh))
            self.store.save_credential(credential)
            logger.info(
                f"{provider.display_name} Account: Account data refreshed "
                f"(account_id={account_id}, followers={credential.profile.follower_count})"
            )

        status = classify(credential, self.now(), provider.refresh_window)
        return AccountSnapshot.from_credential(credential, status, self.now(), warnings)

    def disconnect(self, provider_name: str, account_id: str) -> None:
        """Delete the stored credential

        Raises:
            NotConnectedError: Nothing was stored
        """
        provider = self._provider(provider_name)
        if not self.store.delete_credential(provider.name, account_id):
            raise NotConnectedError(f"No {provider.display_name} account found", provider=provider.name)
        logger.info(f"{provider.display_name} Account: Account {account_id} disconnected")

    async def _refresh(self, provider, credential: Credential) -> Credential:
        key = credential.key
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._do_refresh(provider, credential))
            self._inflight[key] = future

            def _clear(done, key=key):
                if self._inflight.get(key) is done:
                    del self._inflight[key]
                # Waiters may all have been cancelled
                if not done.cancelled():
                    done.exception()

            future.add_done_callback(_clear)
        else:
            logger.debug(f"{provider.display_name} Token Refresh: joining in-flight refresh for {credential.account_id}")
        return await asyncio.shield(future)

    async def _do_refresh(self, provider, credential: Credential) -> Credential:
        current = self.store.load_credential(provider.name, credential.account_id)
        if current is None:
            raise ReauthRequiredError(
                f"No {provider.display_name} account connected. Please connect your account.",
                provider=provider.name,
            )
        if current.access_token != credential.access_token:
            # Refreshed by an earlier call; never reuse a possibly rotated refresh token
            return current

        try:
            result = await provider.refresh(provider.refresh_credential_for(current))
        except RefreshInvalidError:
            self.store.delete_credential(provider.name, current.account_id)
            raise

        updated = current.with_tokens(result, self.now())
        self.store.save_credential(updated)
        logger.info(
            f"{provider.display_name} Token Refresh: Successfully refreshed token "
            f"(account_id={updated.account_id}, new_expires_at={updated.expires_at})"
        )
        return updated
