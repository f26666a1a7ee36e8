"""Error taxonomy for the OAuth credential lifecycle

Every error crossing the subsystem boundary carries a machine-readable
``kind`` and a human-readable ``description``. Tokens never appear in either.
"""

from typing import Any, Dict, Optional

# Response fields that hold secrets and must be masked before logging
SENSITIVE_FIELDS = ("access_token", "refresh_token", "code", "code_verifier", "client_secret")


def mask_token(token: Optional[str], visible: int = 8) -> str:
    """Return a truncated prefix of a token suitable for logs

    Args:
        token: The secret value
        visible: Number of leading characters to keep

    Returns:
        Prefix followed by '...', or '<none>' when there is no token
    """
    if not token:
        return "<none>"
    return token[:visible] + "..."


def redact_payload(payload: Any) -> Any:
    """Mask token-like fields in a decoded provider response"""
    if isinstance(payload, dict):
        return {
            key: mask_token(value) if key in SENSITIVE_FIELDS and isinstance(value, str) else redact_payload(value)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [redact_payload(item) for item in payload]
    return payload


class OAuthLifecycleError(Exception):
    """Base class for all connector errors"""

    kind = "oauth_error"
    status_code = 500

    def __init__(self, description: str, provider: Optional[str] = None):
        super().__init__(description)
        self.description = description
        self.provider = provider

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses"""
        data = {"error": self.kind, "error_description": self.description}
        if self.provider:
            data["provider"] = self.provider
        return data


class ConfigurationError(OAuthLifecycleError):
    """Provider client credentials or signing secret are missing"""

    kind = "invalid_configuration"
    status_code = 500


class CsrfMismatchError(OAuthLifecycleError):
    """Callback state is absent or does not match the stored attempt"""

    kind = "invalid_state"
    status_code = 400


class AttemptNotFoundError(CsrfMismatchError):
    """No live authorization attempt exists (never started, expired or already consumed)"""

    kind = "attempt_not_found"
    status_code = 404


class ProviderAuthorizationError(OAuthLifecycleError):
    """The provider redirected back with an ``error`` parameter"""

    kind = "authorization_denied"
    status_code = 400

    def __init__(self, description: str, provider: Optional[str] = None, provider_error: Optional[str] = None):
        super().__init__(description, provider)
        self.provider_error = provider_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.provider_error:
            data["provider_error"] = self.provider_error
        return data


class TokenExchangeError(OAuthLifecycleError):
    """Authorization code could not be exchanged; the user must restart authorization"""

    kind = "token_exchange_failed"
    status_code = 502


class RefreshInvalidError(OAuthLifecycleError):
    """Provider rejected the refresh credential; re-authentication required"""

    kind = "refresh_invalid"
    status_code = 401
    requires_reauth = True


class RefreshTransientError(OAuthLifecycleError):
    """Refresh failed for a retryable reason; the credential is retained"""

    kind = "refresh_transient"
    status_code = 503


class ProfileFetchError(OAuthLifecycleError):
    """Profile enrichment failed; callers keep previously known profile fields"""

    kind = "profile_fetch_failed"
    status_code = 502


class ReauthRequiredError(OAuthLifecycleError):
    """Credential is missing or expired and cannot be recovered by refresh"""

    kind = "reauth_required"
    status_code = 401
    requires_reauth = True

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["requires_reauth"] = True
        return data


class NotConnectedError(OAuthLifecycleError):
    """No credential is stored for the requested account"""

    kind = "no_account"
    status_code = 404


class PermissionMissingError(OAuthLifecycleError):
    """Credential lacks the capability a collaborator needs"""

    kind = "permission_missing"
    status_code = 403


class AccountLimitError(OAuthLifecycleError):
    """Roster already holds the maximum number of accounts"""

    kind = "account_limit_reached"
    status_code = 409
