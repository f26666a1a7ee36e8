"""Credential store for connected social accounts"""

import json
import logging
import os
import platform
import secrets
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from jose import JWTError, jwt

from settings import CREDENTIAL_SECRET, CREDENTIAL_STORE_FILE
from .errors import ConfigurationError
from .models import AuthorizationAttempt, Credential

logger = logging.getLogger(__name__)

CREDENTIAL_CONTAINER = "credential"
ATTEMPT_CONTAINER = "authorization_attempt"
CONTAINER_ALGORITHM = "HS256"


class MemoryBackend:
    """In-process key-value backend (tests, single worker development)"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [key for key in self._data if key.startswith(prefix)]


class FileBackend:
    """JSON file backend with restrictive permissions"""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path if path else CREDENTIAL_STORE_FILE)
        self._lock = threading.Lock()
        self._ensure_secure_directory()

    def _ensure_secure_directory(self):
        """Create parent directory with secure permissions"""
        parent_dir = self.path.parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)
            # Set directory permissions to 700 on Unix-like systems
            if platform.system() != "Windows":
                os.chmod(parent_dir, 0o700)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to read credential store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        """Replace the store file atomically

        The new content goes to a temporary file in the same directory, which
        is locked down and then renamed over the store.
        """
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            # Set file permissions to 600 on Unix-like systems
            if platform.system() != "Windows":
                os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            data = self._read()
            value = data.pop(key, None)
            if value is not None:
                self._write(data)
            return value

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [key for key in self._read() if key.startswith(prefix)]


class CredentialStore:
    """Signed, scoped, time-bounded credential containers over a pluggable backend

    Each container is an HS256 JWT: ``typ`` names the container kind, ``aud``
    scopes it to one provider and ``exp`` bounds it in time. A container that
    fails any of these checks is removed and reported as absent.
    """

    def __init__(self, backend, secret: str, clock: Callable[[], float] = time.time):
        if not secret:
            raise ConfigurationError("Credential signing secret is not configured")
        self.backend = backend
        self._secret = secret
        self._clock = clock

    @classmethod
    def from_settings(cls, backend=None) -> "CredentialStore":
        """Build a file-backed store from settings"""
        secret = CREDENTIAL_SECRET
        if not secret:
            logger.warning(
                "CREDENTIAL_SECRET is not set; using an ephemeral signing key. "
                "Stored credentials will not survive a restart."
            )
            secret = secrets.token_urlsafe(32)
        return cls(backend or FileBackend(), secret)

    @staticmethod
    def _credential_key(provider: str, account_id: str) -> str:
        return f"credential:{provider}:{account_id}"

    @staticmethod
    def _attempt_key(provider: str, client_id: str) -> str:
        return f"attempt:{provider}:{client_id}"

    def _seal(self, container: str, provider: str, expires_at: int, data: Dict[str, Any]) -> str:
        claims = {
            "typ": container,
            "aud": provider,
            "iat": int(self._clock()),
            "exp": int(expires_at),
            "data": data,
        }
        return jwt.encode(claims, self._secret, algorithm=CONTAINER_ALGORITHM)

    def _unseal(self, key: str, token: Optional[str], container: str, provider: str) -> Optional[Dict[str, Any]]:
        if token is None:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[CONTAINER_ALGORITHM],
                audience=provider,
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.warning(f"Discarding unreadable {container} container {key}: {e}")
            self.backend.pop(key)
            return None

        if claims.get("typ") != container:
            logger.warning(f"Discarding {key}: container type mismatch")
            self.backend.pop(key)
            return None

        if int(claims.get("exp", 0)) <= self._clock():
            logger.info(f"Container {key} is past its expiry, removing")
            self.backend.pop(key)
            return None

        return claims.get("data")

    # Credentials

    def save_credential(self, credential: Credential) -> None:
        """Persist the single active credential for a provider account"""
        key = self._credential_key(credential.provider, credential.account_id)
        token = self._seal(CREDENTIAL_CONTAINER, credential.provider, credential.expires_at, credential.to_dict())
        self.backend.set(key, token)
        logger.debug(f"Saved credential {key} (expires_at={credential.expires_at})")

    def load_credential(self, provider: str, account_id: str) -> Optional[Credential]:
        """Load a credential, or None if absent, expired or tampered with"""
        key = self._credential_key(provider, account_id)
        data = self._unseal(key, self.backend.get(key), CREDENTIAL_CONTAINER, provider)
        if data is None:
            return None
        return Credential.from_dict(data)

    def list_credentials(self, provider: Optional[str] = None) -> List[Credential]:
        """Load every readable credential, optionally for one provider"""
        prefix = f"credential:{provider}:" if provider else "credential:"
        credentials = []
        for key in sorted(self.backend.keys(prefix)):
            _, key_provider, account_id = key.split(":", 2)
            credential = self.load_credential(key_provider, account_id)
            if credential is not None:
                credentials.append(credential)
        return credentials

    def delete_credential(self, provider: str, account_id: str) -> bool:
        """Remove a credential; returns whether one was stored"""
        key = self._credential_key(provider, account_id)
        removed = self.backend.pop(key) is not None
        if removed:
            logger.info(f"Deleted credential {key}")
        return removed

    # Authorization attempts

    def save_attempt(self, client_id: str, attempt: AuthorizationAttempt) -> None:
        """Store an attempt, replacing any live attempt for the same provider and client"""
        self.purge_expired_attempts()
        key = self._attempt_key(attempt.provider, client_id)
        token = self._seal(ATTEMPT_CONTAINER, attempt.provider, attempt.expires_at, attempt.to_dict())
        self.backend.set(key, token)

    def consume_attempt(self, provider: str, client_id: str) -> Optional[AuthorizationAttempt]:
        """Atomically read and delete the attempt; a second call returns None"""
        key = self._attempt_key(provider, client_id)
        data = self._unseal(key, self.backend.pop(key), ATTEMPT_CONTAINER, provider)
        if data is None:
            return None
        return AuthorizationAttempt.from_dict(data)

    def discard_attempt(self, provider: str, client_id: str) -> None:
        self.backend.pop(self._attempt_key(provider, client_id))

    def purge_expired_attempts(self) -> int:
        """Remove attempts that are past their TTL or unreadable

        Returns:
            Number of attempts removed
        """
        removed = 0
        for key in self.backend.keys("attempt:"):
            _, provider, _ = key.split(":", 2)
            token = self.backend.get(key)
            if token is not None and self._unseal(key, token, ATTEMPT_CONTAINER, provider) is None:
                removed += 1
        if removed:
            logger.debug(f"Purged {removed} expired authorization attempts")
        return removed

    def get_status(self) -> Dict[str, Any]:
        """Get store status without exposing secrets"""
        self.purge_expired_attempts()
        now = int(self._clock())
        accounts = []
        for credential in self.list_credentials():
            remaining = credential.time_until_expiry(now)
            hours = remaining // 3600
            minutes = (remaining % 3600) // 60
            days = hours // 24
            if days > 0:
                time_str = f"{days}d {hours % 24}h"
            elif hours > 0:
                time_str = f"{hours}h {minutes}m"
            else:
                time_str = f"{minutes}m"
            accounts.append({
                "provider": credential.provider,
                "account_id": credential.account_id,
                "username": credential.profile.username,
                "expires_in_seconds": remaining,
                "time_until_expiry": time_str,
                "has_refresh_token": bool(credential.refresh_token),
            })
        return {
            "has_credentials": bool(accounts),
            "pending_attempts": len(self.backend.keys("attempt:")),
            "accounts": accounts,
        }
