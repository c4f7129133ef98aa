import logging
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from mailsweep.config import settings

logger = logging.getLogger(__name__)

# Read messages, move them to trash, change labels and create drafts;
# read the account address for the session.
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/userinfo.email",
]

TOKEN_PATH = settings.data_path / "google_token.json"
CREDENTIALS_PATH = settings.data_path / "google_credentials.json"


def extract_oauth_code(text: str) -> str | None:
    """Pull the authorization code out of a pasted redirect URL or query string."""
    candidate = text.strip()
    if not candidate:
        return None

    if candidate.startswith(("http://", "https://")):
        parsed = urlparse(candidate)
        for query in (parsed.query, parsed.fragment):
            if not query:
                continue
            code_values = parse_qs(query).get("code")
            if code_values and code_values[0]:
                return code_values[0]

    if "code=" in candidate:
        code_values = parse_qs(candidate.lstrip("?#")).get("code")
        if code_values and code_values[0]:
            return code_values[0]

    return candidate


class GoogleAuth:
    """Loads, refreshes and caches the user's Gmail OAuth credentials.

    The token lives on disk between runs; callers only ever see the current
    access token string, which they hand to the Gmail client per call.
    """

    def __init__(
        self,
        token_path: Path = TOKEN_PATH,
        credentials_path: Path = CREDENTIALS_PATH,
    ) -> None:
        self.token_path = token_path
        self.credentials_path = credentials_path
        self._credentials: Credentials | None = None

    @property
    def credentials(self) -> Credentials | None:
        if self._credentials and self._credentials.valid:
            return self._credentials

        if self._credentials and self._credentials.expired and self._credentials.refresh_token:
            try:
                self._credentials.refresh(Request())
                self._save_token()
                return self._credentials
            except Exception as e:
                logger.error(f"Failed to refresh token: {e}")
                return None

        return None

    @property
    def access_token(self) -> str | None:
        creds = self.credentials
        if creds is None and self.load_saved_credentials():
            creds = self.credentials
        return creds.token if creds is not None else None

    def is_authenticated(self) -> bool:
        return self.credentials is not None

    def load_saved_credentials(self) -> bool:
        if not self.token_path.exists():
            return False

        try:
            self._credentials = Credentials.from_authorized_user_file(str(self.token_path), SCOPES)
            if self._credentials and self._credentials.expired and self._credentials.refresh_token:
                self._credentials.refresh(Request())
                self._save_token()
            return self._credentials is not None and self._credentials.valid
        except Exception as e:
            logger.error(f"Failed to load saved credentials: {e}")
            return False

    def authenticate_interactive(self) -> bool:
        """Run the browser-based OAuth flow with a local redirect server."""
        flow = self._build_flow()
        if flow is None:
            return False

        try:
            self._credentials = flow.run_local_server(port=0)
            self._save_token()
            return True
        except Exception as e:
            logger.error(f"Authentication failed: {e}")
            return False

    def get_auth_url(self) -> tuple[InstalledAppFlow, str] | None:
        """Start a copy/paste OAuth flow for headless machines."""
        flow = self._build_flow()
        if flow is None:
            return None

        redirect_uri = self._get_redirect_uri(flow)
        if not redirect_uri:
            logger.error("No redirect_uris found in the OAuth client file.")
            return None

        flow.redirect_uri = redirect_uri
        auth_url, _ = flow.authorization_url(prompt="consent", access_type="offline")
        return flow, auth_url

    def complete_auth_with_code(self, flow: InstalledAppFlow, code: str) -> bool:
        try:
            flow.fetch_token(code=code)
            self._credentials = flow.credentials
            self._save_token()
            return True
        except Exception as e:
            logger.error(f"Failed to complete auth with code: {e}")
            return False

    def sign_out(self) -> bool:
        """Forget the cached credentials. Returns whether a saved token existed."""
        self._credentials = None
        if not self.token_path.exists():
            return False
        self.token_path.unlink()
        logger.info(f"Removed cached token at {self.token_path}")
        return True

    def _build_flow(self) -> InstalledAppFlow | None:
        if not self.credentials_path.exists():
            logger.error(f"Google OAuth client file not found at {self.credentials_path}")
            return None
        return InstalledAppFlow.from_client_secrets_file(str(self.credentials_path), SCOPES)

    def _get_redirect_uri(self, flow: InstalledAppFlow) -> str | None:
        client_config = flow.client_config or {}

        redirect_uris = client_config.get("redirect_uris")
        if isinstance(redirect_uris, str) and redirect_uris:
            return redirect_uris
        if isinstance(redirect_uris, (list, tuple)) and redirect_uris:
            return redirect_uris[0] or None

        for config_key in ("installed", "web"):
            nested = client_config.get(config_key, {}).get("redirect_uris", [])
            if isinstance(nested, str) and nested:
                return nested
            if isinstance(nested, (list, tuple)) and nested:
                return nested[0] or None

        return None

    def _save_token(self) -> None:
        if not self._credentials:
            return

        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.token_path, "w") as f:
            f.write(self._credentials.to_json())


google_auth = GoogleAuth()
