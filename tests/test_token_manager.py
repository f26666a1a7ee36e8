import asyncio
import gc

import httpx
import pytest

import settings
from social_oauth.errors import (
    NotConnectedError,
    ReauthRequiredError,
    RefreshInvalidError,
    RefreshTransientError,
)
from social_oauth.models import ExpiryStatus, Profile
from social_oauth.token_manager import classify, merge_profile

from conftest import NOW, make_credential


def test_classify_boundaries():
    credential = make_credential(expires_in=300)

    assert classify(credential, NOW - 1, 300) is ExpiryStatus.ACTIVE
    assert classify(credential, NOW, 300) is ExpiryStatus.EXPIRING_SOON
    assert classify(credential, NOW + 299, 300) is ExpiryStatus.EXPIRING_SOON
    assert classify(credential, NOW + 300, 300) is ExpiryStatus.EXPIRED


def test_merge_profile_keeps_known_fields():
    previous = Profile(username="creator", display_name="Creator", follower_count=10, bio="old")
    fresh = Profile(username="creator", follower_count=25)

    merged = merge_profile(previous, fresh)

    assert merged.follower_count == 25
    assert merged.display_name == "Creator"
    assert merged.bio == "old"


@pytest.mark.asyncio
async def test_expiring_soon_triggers_exactly_one_refresh(manager, store, api):
    store.save_credential(make_credential(expires_in=180))
    api.tiktok_token(access_token="T2", refresh_token="R2", expires_in=86400)

    snapshot = await manager.get_account_status("tiktok", "u1")

    assert api.count(settings.TIKTOK_TOKEN_URL) == 1
    assert snapshot.status is ExpiryStatus.ACTIVE
    assert snapshot.access_token == "T2"
    assert snapshot.warnings == []
    stored = store.load_credential("tiktok", "u1")
    assert (stored.access_token, stored.refresh_token) == ("T2", "R2")
    assert stored.expires_at == NOW + 86400
    assert stored.last_refreshed == NOW


@pytest.mark.asyncio
async def test_expired_credential_requires_reauth_without_refresh(manager, store, api, clock):
    store.save_credential(make_credential(expires_in=180))
    clock.advance(181)
    api.tiktok_token(access_token="T2")

    with pytest.raises(ReauthRequiredError):
        await manager.get_account_status("tiktok", "u1")

    assert api.count(settings.TIKTOK_TOKEN_URL) == 0
    assert store.load_credential("tiktok", "u1") is None


@pytest.mark.asyncio
async def test_missing_credential_requires_reauth(manager):
    with pytest.raises(ReauthRequiredError) as exc_info:
        await manager.get_account_status("tiktok", "nobody")
    assert exc_info.value.to_dict()["requires_reauth"] is True


@pytest.mark.asyncio
async def test_concurrent_reads_share_one_refresh(manager, store, api):
    store.save_credential(make_credential(expires_in=120))
    api.tiktok_token(access_token="T2", refresh_token="R2", expires_in=86400)

    snapshots = await asyncio.gather(*[manager.get_account_status("tiktok", "u1") for _ in range(5)])

    assert api.count(settings.TIKTOK_TOKEN_URL) == 1
    assert {snapshot.access_token for snapshot in snapshots} == {"T2"}


@pytest.mark.asyncio
async def test_refresh_without_rotation_keeps_refresh_token(manager, store, api):
    store.save_credential(make_credential(expires_in=60))
    api.tiktok_token(access_token="T2", refresh_token=None, scope="")

    await manager.get_account_status("tiktok", "u1")

    stored = store.load_credential("tiktok", "u1")
    assert stored.access_token == "T2"
    assert stored.refresh_token == "R1"
    assert stored.permissions == ["user.info.basic"]


@pytest.mark.asyncio
async def test_invalid_grant_deletes_credential(manager, store, api):
    store.save_credential(make_credential(expires_in=60))
    api.route("POST", settings.TIKTOK_TOKEN_URL, status=400, json={
        "error": "invalid_grant", "error_description": "Refresh token is expired.",
    })

    snapshot = await manager.get_account_status("tiktok", "u1")

    assert snapshot.access_token == "T1"
    assert len(snapshot.warnings) == 1
    assert store.load_credential("tiktok", "u1") is None
    with pytest.raises(ReauthRequiredError):
        await manager.get_account_status("tiktok", "u1")


@pytest.mark.asyncio
async def test_explicit_refresh_invalid_grant_raises(manager, store, api):
    store.save_credential(make_credential(expires_in=60))
    api.route("POST", settings.TIKTOK_TOKEN_URL, status=401, json={"error": "invalid_grant"})

    with pytest.raises(RefreshInvalidError):
        await manager.refresh_account("tiktok", "u1")
    assert store.load_credential("tiktok", "u1") is None
    assert manager.roster.get("tiktok", "u1") is None


@pytest.mark.asyncio
async def test_timeout_is_transient_and_keeps_credential(manager, store, api):
    store.save_credential(make_credential(expires_in=60))

    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    api.route("POST", settings.TIKTOK_TOKEN_URL, handler=timeout)

    snapshot = await manager.get_account_status("tiktok", "u1")

    assert snapshot.status is ExpiryStatus.EXPIRING_SOON
    assert snapshot.warnings
    assert store.load_credential("tiktok", "u1").access_token == "T1"

    with pytest.raises(RefreshTransientError):
        await manager.refresh_account("tiktok", "u1")
    assert store.load_credential("tiktok", "u1") is not None


@pytest.mark.asyncio
async def test_refresh_account_force_and_skip(manager, store, api):
    store.save_credential(make_credential(expires_in=3600))
    api.tiktok_token(access_token="T2", expires_in=86400)

    skipped = await manager.refresh_account("tiktok", "u1", force=False)
    assert skipped.access_token == "T1"
    assert api.count(settings.TIKTOK_TOKEN_URL) == 0

    refreshed = await manager.refresh_account("tiktok", "u1")
    assert refreshed.access_token == "T2"
    assert api.count(settings.TIKTOK_TOKEN_URL) == 1


@pytest.mark.asyncio
async def test_cancelled_waiters_leave_no_unretrieved_refresh_error(manager, store, api):
    store.save_credential(make_credential(expires_in=3600))
    release = asyncio.Event()

    async def slow_failure(request):
        await release.wait()
        raise httpx.ConnectError("connection reset", request=request)

    api.route("POST", settings.TIKTOK_TOKEN_URL, handler=slow_failure)
    loop = asyncio.get_running_loop()
    unhandled = []
    loop.set_exception_handler(lambda loop, context: unhandled.append(context))
    try:
        waiter = asyncio.ensure_future(manager.refresh_account("tiktok", "u1"))
        while not manager.credentials._inflight:
            await asyncio.sleep(0)
        refresh = next(iter(manager.credentials._inflight.values()))

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        release.set()
        await asyncio.wait([refresh])

        assert manager.credentials._inflight == {}
        assert not refresh._log_traceback
        assert isinstance(refresh.exception(), RefreshTransientError)
        del refresh, waiter
        gc.collect()
        assert unhandled == []
    finally:
        loop.set_exception_handler(None)
    assert store.load_credential("tiktok", "u1").access_token == "T1"


@pytest.mark.asyncio
async def test_instagram_long_lived_refreshes_inside_day_window(manager, store, api):
    store.save_credential(make_credential(
        provider="instagram", account_id="ig1", access_token="IGL1",
        refresh_token=None, long_lived=True, expires_in=12 * 3600,
    ))
    api.route("GET", settings.INSTAGRAM_REFRESH_TOKEN_URL, json={"access_token": "IGL2", "expires_in": 5183944})

    snapshot = await manager.get_account_status("instagram", "ig1")

    assert api.count(settings.INSTAGRAM_REFRESH_TOKEN_URL) == 1
    assert snapshot.access_token == "IGL2"
    assert snapshot.status is ExpiryStatus.ACTIVE
    assert store.load_credential("instagram", "ig1").account_id == "ig1"


@pytest.mark.asyncio
async def test_instagram_short_lived_is_served_until_expiry(manager, store, api, clock):
    store.save_credential(make_credential(
        provider="instagram", account_id="ig1", access_token="IGS1",
        refresh_token=None, long_lived=False, expires_in=3600,
    ))

    snapshot = await manager.get_account_status("instagram", "ig1")
    assert snapshot.status is ExpiryStatus.EXPIRING_SOON
    assert snapshot.warnings
    assert api.calls == []

    with pytest.raises(ReauthRequiredError):
        await manager.refresh_account("instagram", "ig1")

    clock.advance(3600)
    with pytest.raises(ReauthRequiredError):
        await manager.get_account_status("instagram", "ig1")


@pytest.mark.asyncio
async def test_sync_profile_merges_fresh_data(manager, store, api):
    store.save_credential(make_credential())
    api.tiktok_user(follower_count=500)

    snapshot = await manager.sync_profile("tiktok", "u1")

    assert snapshot.profile.follower_count == 500
    assert store.load_credential("tiktok", "u1").profile.likes_count == 999


@pytest.mark.asyncio
async def test_sync_profile_failure_keeps_stored_profile(manager, store, api):
    store.save_credential(make_credential())
    api.route("GET", settings.TIKTOK_USER_INFO_URL, status=503, json={"error": {"code": "unavailable"}})

    snapshot = await manager.sync_profile("tiktok", "u1")

    assert snapshot.profile.username == "creator"
    assert snapshot.profile.follower_count == 10
    assert snapshot.warnings


@pytest.mark.asyncio
async def test_disconnect(manager, store):
    store.save_credential(make_credential())
    await manager.get_account_status("tiktok", "u1")

    manager.disconnect("tiktok", "u1")

    assert store.load_credential("tiktok", "u1") is None
    assert manager.roster.snapshots == []
    with pytest.raises(NotConnectedError):
        manager.disconnect("tiktok", "u1")


@pytest.mark.asyncio
async def test_list_accounts_skips_expired(manager, store, clock):
    store.save_credential(make_credential(account_id="u1", expires_in=100000))
    store.save_credential(make_credential(provider="instagram", account_id="ig1", expires_in=5000,
                                          refresh_token=None, long_lived=True))
    clock.advance(6000)

    snapshots = await manager.list_accounts()

    assert [s.key for s in snapshots] == [("tiktok", "u1")]
