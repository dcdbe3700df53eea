"""
Google OAuth authentication service for CRM sync.

Builds the OAuth client config from GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET,
runs the one-time consent flow (`crmsync sync init`) and loads the stored
token for importers.
"""
import logging
from pathlib import Path
from typing import Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from config.settings import Settings, settings as default_settings
from crmsync.services.resilience import GOOGLE_API_RETRY, retry_sync

logger = logging.getLogger(__name__)

# Read-only scopes: the sync engine never writes back to Google
SCOPES = [
    "https://www.googleapis.com/auth/contacts.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/gmail.readonly",
]

INIT_HINT = "Run 'crmsync sync init' first"


class AuthenticationError(Exception):
    """Missing, expired or revoked Google credentials."""


class MissingClientConfigError(AuthenticationError):
    """GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not set."""


@retry_sync(GOOGLE_API_RETRY, should_retry=lambda e: isinstance(e, TransportError))
def _refresh(credentials: Credentials) -> None:
    credentials.refresh(Request())


class GoogleAuthService:
    """
    Google OAuth authentication service.

    Handles:
    - Browser-based OAuth flow (installed app)
    - Token storage and retrieval
    - Automatic token refresh
    """

    def __init__(self, client_id: str, client_secret: str, token_path: Path):
        """
        Initialize Google Auth service.

        Args:
            client_id: OAuth client id
            client_secret: OAuth client secret
            token_path: Path to store/load token JSON file
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_path = Path(token_path)
        self.scopes = SCOPES

    @property
    def client_config(self) -> dict:
        """OAuth client config in the shape InstalledAppFlow expects."""
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
                "redirect_uris": ["http://localhost"],
            }
        }

    def load_credentials(self) -> Credentials:
        """
        Load the stored token, refreshing it if expired.

        Raises:
            AuthenticationError: If there is no usable token
        """
        if not self.token_path.exists():
            raise AuthenticationError(f"no authentication token found. {INIT_HINT}")

        try:
            credentials = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except ValueError as e:
            raise AuthenticationError(f"token file {self.token_path} is invalid: {e}. {INIT_HINT}") from e

        if credentials.valid:
            return credentials

        if credentials.expired and credentials.refresh_token:
            try:
                logger.info("Refreshing expired Google token")
                _refresh(credentials)
            except RefreshError as e:
                raise AuthenticationError(f"token refresh failed (may be revoked): {e}. {INIT_HINT}") from e
            except TransportError as e:
                raise AuthenticationError(f"token refresh failed: {e}") from e
            self._save_token(credentials)
            return credentials

        raise AuthenticationError(f"authentication token is expired. {INIT_HINT}")

    def run_consent_flow(self, port: int = 0) -> Credentials:
        """
        Run the browser-based OAuth flow and store the resulting token.

        Args:
            port: Local callback port (0 = any available port)
        """
        flow = InstalledAppFlow.from_client_config(self.client_config, self.scopes)

        # Run local server for OAuth callback
        credentials = flow.run_local_server(
            port=port,
            prompt="consent",  # Always show consent screen
            access_type="offline"  # Get refresh token
        )
        self._save_token(credentials)
        return credentials

    def _save_token(self, credentials: Credentials) -> None:
        """
        Save credentials to token file.

        Args:
            credentials: Google credentials to save
        """
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(credentials.to_json())
        self.token_path.chmod(0o600)
        logger.info(f"Saved token to {self.token_path}")

    @property
    def is_authenticated(self) -> bool:
        """Check if a stored token exists and is usable or refreshable."""
        if not self.token_path.exists():
            return False

        try:
            creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except ValueError:
            return False
        return bool(creds.valid or (creds.expired and creds.refresh_token))


def get_google_auth(cfg: Optional[Settings] = None) -> GoogleAuthService:
    """
    Build the auth service from settings.

    Raises:
        MissingClientConfigError: If the OAuth client id/secret are unset
    """
    cfg = cfg or default_settings
    if not cfg.google_oauth_configured:
        raise MissingClientConfigError(
            "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET environment variables must be set"
        )
    return GoogleAuthService(
        client_id=cfg.google_client_id,
        client_secret=cfg.google_client_secret,
        token_path=cfg.token_path_resolved,
    )


def build_google_service(name: str, version: str, credentials: Credentials, timeout: int = 30):
    """Discovery client over an authorized httplib2 transport with a request timeout."""
    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build(name, version, http=http, cache_discovery=False)
