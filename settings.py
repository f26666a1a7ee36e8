from pathlib import Path
from config.loader import get_config_loader

# Get the config loader instance
config = get_config_loader()

# Server configuration
PORT = config.get("PORT", 9002)
LOG_LEVEL = config.get("LOG_LEVEL", "info")
BIND_ADDRESS = config.get("BIND_ADDRESS", "0.0.0.0")

# Public base URL of the application; redirect URIs are derived from it
BASE_URL = config.get("BASE_URL", "http://localhost:9002")

# Provider call timeout in seconds (token exchange, refresh and profile calls)
PROVIDER_TIMEOUT = config.get("PROVIDER_TIMEOUT", 30.0)
PROVIDER_CONNECT_TIMEOUT = config.get("PROVIDER_CONNECT_TIMEOUT", 10.0)

# TikTok Login Kit (OAuth 2.0 with PKCE and refresh token rotation)
TIKTOK_CLIENT_KEY = config.get("TIKTOK_CLIENT_KEY", "")
TIKTOK_CLIENT_SECRET = config.get("TIKTOK_CLIENT_SECRET", "")
TIKTOK_SCOPES = config.get_list("TIKTOK_SCOPES", ["user.info.basic", "video.list"])
TIKTOK_AUTHORIZE_URL = "https://www.tiktok.com/v2/auth/authorize/"
TIKTOK_TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
TIKTOK_USER_INFO_URL = "https://open.tiktokapis.com/v2/user/info/"

# Instagram API with Instagram Login (short-lived code exchange, long-lived upgrade)
INSTAGRAM_APP_ID = config.get("INSTAGRAM_APP_ID", "")
INSTAGRAM_APP_SECRET = config.get("INSTAGRAM_APP_SECRET", "")
INSTAGRAM_SCOPES = config.get_list("INSTAGRAM_SCOPES", [
    "instagram_business_basic",
    "instagram_business_content_publish",
    "instagram_business_manage_messages",
    "instagram_business_manage_comments",
])
INSTAGRAM_AUTHORIZE_URL = "https://www.instagram.com/oauth/authorize"
INSTAGRAM_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
INSTAGRAM_LONG_TOKEN_URL = "https://graph.instagram.com/access_token"
INSTAGRAM_REFRESH_TOKEN_URL = "https://graph.instagram.com/refresh_access_token"
INSTAGRAM_USER_INFO_URL = "https://graph.instagram.com/me"

# Credential storage
# Signing key for credential containers; must be set in production
CREDENTIAL_SECRET = config.get("CREDENTIAL_SECRET", "")
CREDENTIAL_STORE_FILE = config.get(
    "CREDENTIAL_STORE_FILE",
    str(Path.home() / ".social-account-connector" / "credentials.json"),
)

# Authorization attempts expire after 10 minutes
AUTHORIZATION_ATTEMPT_TTL = config.get("AUTHORIZATION_ATTEMPT_TTL", 600)

# Display roster limit for connected accounts
MAX_CONNECTED_ACCOUNTS = config.get("MAX_CONNECTED_ACCOUNTS", 5)
