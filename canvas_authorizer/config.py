"""
Canvas Authorizer configuration.
No secrets in this file; developer credentials and session secrets come from env.
"""
import os

# Path the handshake controller listens on (GET). Canvas redirects back here too.
AUTHORIZE_PATH = os.environ.get("CANVAS_AUTHORIZE_PATH", "/canvas/authorize")

# Where the user lands once authorization (or a refresh) succeeded
HOME_PATH = os.environ.get("CANVAS_HOME_PATH", "/")

# Fixed OAuth state value; only callbacks carrying it belong to this flow
STATE_MARKER = "caccl"

# Canvas OAuth2 endpoints (fixed by the provider)
PROVIDER_AUTHORIZE_PATH = "/login/oauth2/auth"
PROVIDER_TOKEN_PATH = "/login/oauth2/token"

# Stored expiry = now + expires_in * factor, absorbs clock skew and latency
ACCESS_TOKEN_SAFETY_FACTOR = 0.99

# Refresh just-in-time when the access token expires within this window (5 minutes)
REFRESH_MARGIN_MS = 300000

# Outbound token requests
TOKEN_REQUEST_RETRIES = int(os.environ.get("CANVAS_TOKEN_REQUEST_RETRIES", "0"))
TOKEN_REQUEST_TIMEOUT = float(os.environ.get("CANVAS_TOKEN_REQUEST_TIMEOUT", "10"))

# SQL token store (SQLite acceptable for development)
TOKEN_DATABASE_URL = os.environ.get("CANVAS_TOKEN_DATABASE_URL", "sqlite:///./canvas_tokens.db")

# Optional secret for encrypting stored tokens. Unset = tokens stored as-is.
TOKEN_ENCRYPTION_SECRET = os.environ.get("CANVAS_TOKEN_ENCRYPTION_SECRET", "").strip() or None

# Session key the LTI launch collaborator writes the launch identity under
SESSION_LAUNCH_KEY = "launchInfo"

# Demo host app: JSON developer credentials and cookie session secret
DEVELOPER_CREDENTIALS_JSON = os.environ.get("CANVAS_DEVELOPER_CREDENTIALS", "")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-session-secret-change-me")
