import httpx
import pytest

import settings
from providers import InstagramProvider, TikTokProvider
from social_oauth import OAuthManager
from social_oauth.models import Credential, Profile
from social_oauth.storage import CredentialStore, MemoryBackend

NOW = 1_700_000_000
SIGNING_SECRET = "test-signing-secret"


def make_credential(provider="tiktok", account_id="u1", expires_in=3600, **overrides):
    values = dict(
        provider=provider,
        account_id=account_id,
        access_token="T1",
        refresh_token="R1",
        issued_at=NOW,
        expires_at=NOW + expires_in,
        connected_at=NOW,
        permissions=["user.info.basic"],
        profile=Profile(username="creator", follower_count=10),
    )
    values.update(overrides)
    return Credential(**values)


class FakeClock:
    """Manually advanced epoch-seconds clock"""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProviderApi:
    """Serves provider endpoints from per-URL handlers and records every call"""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def route(self, method: str, url: str, handler=None, status: int = 200, json=None):
        if handler is None:
            def handler(request, status=status, body=json):
                return httpx.Response(status, json=body)
        self.routes[(method, url)] = handler

    def count(self, url: str) -> int:
        return sum(1 for request in self.calls if self._url(request) == url)

    def last(self, url: str) -> httpx.Request:
        return [request for request in self.calls if self._url(request) == url][-1]

    @staticmethod
    def _url(request: httpx.Request) -> str:
        return f"{request.url.scheme}://{request.url.host}{request.url.path}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, self._url(request)))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Canned provider responses

    def tiktok_token(self, access_token="T1", refresh_token="R1", expires_in=3600, open_id="u1",
                     scope="user.info.basic,video.list"):
        body = {
            "access_token": access_token,
            "expires_in": expires_in,
            "open_id": open_id,
            "refresh_token": refresh_token,
            "refresh_expires_in": 31536000,
            "scope": scope,
            "token_type": "Bearer",
        }
        if refresh_token is None:
            del body["refresh_token"]
        self.route("POST", settings.TIKTOK_TOKEN_URL, json=body)

    def tiktok_user(self, open_id="u1", username="creator", display_name="Creator", follower_count=120):
        self.route("GET", settings.TIKTOK_USER_INFO_URL, json={
            "data": {"user": {
                "open_id": open_id,
                "username": username,
                "display_name": display_name,
                "avatar_url": "https://p16.tiktokcdn.com/avatar.jpeg",
                "bio_description": "bio",
                "follower_count": follower_count,
                "following_count": 3,
                "likes_count": 999,
                "video_count": 12,
                "is_verified": False,
                "profile_deep_link": "https://vm.tiktok.com/creator",
            }},
            "error": {"code": "ok", "message": "", "log_id": "log"},
        })

    def instagram_token(self, access_token="IGS1", user_id=17841400000000000,
                        permissions="instagram_business_basic,instagram_business_content_publish"):
        self.route("POST", settings.INSTAGRAM_TOKEN_URL, json={
            "data": [{"access_token": access_token, "user_id": user_id, "permissions": permissions}],
        })

    def instagram_long_token(self, access_token="IGL1", expires_in=5183944):
        self.route("GET", settings.INSTAGRAM_LONG_TOKEN_URL, json={
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": expires_in,
        })

    def instagram_user(self, username="brand", followers_count=5000):
        self.route("GET", settings.INSTAGRAM_USER_INFO_URL, json={
            "id": "17841400000000000",
            "username": username,
            "name": "Brand",
            "account_type": "BUSINESS",
            "profile_picture_url": "https://scontent.cdninstagram.com/pic.jpg",
            "biography": "We make things",
            "followers_count": followers_count,
            "follows_count": 10,
            "media_count": 42,
        })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CredentialStore(MemoryBackend(), SIGNING_SECRET, clock=clock)


@pytest.fixture
def api():
    return FakeProviderApi()


@pytest.fixture
def tiktok(api, clock):
    return TikTokProvider(
        client_id="tiktok-client-key",
        client_secret="tiktok-client-secret",
        redirect_uri="http://localhost:9002/auth/tiktok/callback",
        scopes=["user.info.basic", "video.list"],
        transport=api.transport,
        clock=clock,
    )


@pytest.fixture
def instagram(api, clock):
    return InstagramProvider(
        client_id="instagram-app-id",
        client_secret="instagram-app-secret",
        redirect_uri="http://localhost:9002/auth/instagram/callback",
        scopes=["instagram_business_basic", "instagram_business_content_publish"],
        transport=api.transport,
        clock=clock,
    )


@pytest.fixture
def providers(tiktok, instagram):
    return {tiktok.name: tiktok, instagram.name: instagram}


@pytest.fixture
def manager(store, providers, clock):
    return OAuthManager(store=store, providers=providers, clock=clock)
