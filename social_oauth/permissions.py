"""Capability checks for collaborators that publish with a stored credential"""

from typing import Union

from .errors import PermissionMissingError
from .models import AccountSnapshot, Credential, Platform

# Scope a publisher needs on each platform
PUBLISH_CAPABILITIES = {
    Platform.TIKTOK.value: "video.publish",
    Platform.INSTAGRAM.value: "instagram_business_content_publish",
}


def publish_capability(provider: str) -> str:
    return PUBLISH_CAPABILITIES[Platform(provider).value]


def require_permission(account: Union[Credential, AccountSnapshot], capability: str) -> None:
    """Fail if the account was not granted ``capability``

    This never triggers a re-scope; the user has to reconnect.

    Raises:
        PermissionMissingError: Capability absent
    """
    if capability not in account.permissions:
        raise PermissionMissingError(
            f"Missing {capability} permission. Please reconnect your account.",
            provider=account.provider,
        )
