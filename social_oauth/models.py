"""Data models for the social account OAuth lifecycle"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Platform(str, Enum):
    """Supported provider profiles"""

    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"


class ExpiryStatus(str, Enum):
    """Credential classification used by the refresh policy"""

    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class FlowState(str, Enum):
    """Authorization flow states"""

    IDLE = "idle"
    PENDING = "pending"
    EXCHANGING = "exchanging"
    ENRICHING = "enriching"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class PkceCodes:
    """PKCE (Proof Key for Code Exchange) codes for OAuth flow

    Attributes:
        code_verifier: Random string used to generate code_challenge
        code_challenge: SHA256 hash of code_verifier, sent in auth request
    """
    code_verifier: str
    code_challenge: str


@dataclass
class AuthorizationAttempt:
    """One in-flight authorization flow

    Attributes:
        provider: Platform the flow was started for
        state: CSRF nonce round-tripped through the provider redirect
        code_verifier: PKCE verifier, only for PKCE providers
        created_at: Epoch seconds when the flow started
        ttl: Lifetime in seconds
    """
    provider: str
    state: str
    code_verifier: Optional[str]
    created_at: int
    ttl: int = 600

    @property
    def expires_at(self) -> int:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationAttempt":
        return cls(
            provider=data["provider"],
            state=data["state"],
            code_verifier=data.get("code_verifier"),
            created_at=int(data["created_at"]),
            ttl=int(data.get("ttl", 600)),
        )


@dataclass
class TokenResult:
    """Normalized token endpoint response

    ``refresh_token`` is None when the provider did not issue (or rotate) one.
    """
    access_token: str
    expires_in: int
    account_id: str
    refresh_token: Optional[str] = None
    scope: List[str] = field(default_factory=list)
    long_lived: bool = False


@dataclass
class Profile:
    """Canonical account profile shared by both providers"""
    username: str = ""
    display_name: str = ""
    avatar_url: str = ""
    bio: str = ""
    follower_count: int = 0
    following_count: int = 0
    likes_count: int = 0
    video_count: int = 0
    is_verified: bool = False
    profile_deep_link: str = ""
    account_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Profile":
        if not data:
            return cls()
        known = {name: data[name] for name in cls.__dataclass_fields__ if data.get(name) is not None}
        return cls(**known)


@dataclass
class Credential:
    """Persisted access credential for one connected provider account"""
    provider: str
    account_id: str
    access_token: str
    expires_at: int
    issued_at: int
    connected_at: int
    refresh_token: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    long_lived: bool = False
    last_refreshed: Optional[int] = None
    profile: Profile = field(default_factory=Profile)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.provider, self.account_id)

    def has_permission(self, capability: str) -> bool:
        return capability in self.permissions

    def time_until_expiry(self, now: float) -> int:
        return int(self.expires_at - now)

    def with_tokens(self, result: TokenResult, now: int) -> "Credential":
        """Return a copy carrying refreshed tokens

        The stored refresh token is only overwritten when the provider
        rotated it. Scope is kept when the response omits it.
        """
        return replace(
            self,
            access_token=result.access_token,
            refresh_token=result.refresh_token or self.refresh_token,
            permissions=result.scope or self.permissions,
            issued_at=now,
            expires_at=now + result.expires_in,
            long_lived=result.long_lived or self.long_lived,
            last_refreshed=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            provider=data["provider"],
            account_id=str(data["account_id"]),
            access_token=data["access_token"],
            expires_at=int(data["expires_at"]),
            issued_at=int(data["issued_at"]),
            connected_at=int(data["connected_at"]),
            refresh_token=data.get("refresh_token"),
            permissions=list(data.get("permissions") or []),
            long_lived=bool(data.get("long_lived", False)),
            last_refreshed=data.get("last_refreshed"),
            profile=Profile.from_dict(data.get("profile")),
        )

    def public_dict(self) -> Dict[str, Any]:
        """Credential metadata without tokens"""
        return {
            "provider": self.provider,
            "account_id": self.account_id,
            "permissions": list(self.permissions),
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "connected_at": self.connected_at,
            "long_lived": self.long_lived,
            "last_refreshed": self.last_refreshed,
            "has_refresh_token": bool(self.refresh_token),
        }


@dataclass
class AccountSnapshot:
    """Display projection of a credential plus its enriched profile

    Derived and non-authoritative; rebuilt on every reconciliation pass.
    """
    provider: str
    account_id: str
    profile: Profile
    permissions: List[str]
    status: ExpiryStatus
    expires_at: int
    time_until_expiry: int
    connected_at: int
    last_refreshed: Optional[int] = None
    last_updated: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    # Consumed by publishers; excluded from to_dict()
    access_token: str = field(default="", repr=False)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.provider, self.account_id)

    @classmethod
    def from_credential(
        cls,
        credential: Credential,
        status: ExpiryStatus,
        now: int,
        warnings: Optional[List[str]] = None,
    ) -> "AccountSnapshot":
        return cls(
            provider=credential.provider,
            account_id=credential.account_id,
            profile=replace(credential.profile),
            permissions=list(credential.permissions),
            status=status,
            expires_at=credential.expires_at,
            time_until_expiry=max(0, credential.time_until_expiry(now)),
            connected_at=credential.connected_at,
            last_refreshed=credential.last_refreshed,
            last_updated=now,
            warnings=list(warnings or []),
            access_token=credential.access_token,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for display without the access token"""
        return {
            "provider": self.provider,
            "account_id": self.account_id,
            **self.profile.to_dict(),
            "permissions": list(self.permissions),
            "status": self.status.value,
            "expires_at": self.expires_at,
            "time_until_expiry": self.time_until_expiry,
            "connected_at": self.connected_at,
            "last_refreshed": self.last_refreshed,
            "last_updated": self.last_updated,
            "warnings": list(self.warnings),
        }


@dataclass
class AuthorizationStart:
    """Result of starting an authorization flow"""
    provider: str
    auth_url: str
    state: str
