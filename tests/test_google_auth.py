"""Tests for Google OAuth authentication.

Covers:
- OAuth scope and token path configuration
- Signing out
- Token refresh and persistence
- Interactive and copy/paste flows
- Redirect URL code extraction
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from mailsweep.config import settings
from mailsweep.google.auth import (
    CREDENTIALS_PATH,
    SCOPES,
    TOKEN_PATH,
    GoogleAuth,
    extract_oauth_code,
    google_auth,
)


@pytest.fixture
def auth(tmp_path):
    return GoogleAuth(
        token_path=tmp_path / "google_token.json",
        credentials_path=tmp_path / "google_credentials.json",
    )


@pytest.fixture
def client_file(auth):
    auth.credentials_path.write_text(
        json.dumps({"installed": {"client_id": "x", "redirect_uris": ["http://localhost"]}})
    )
    return auth.credentials_path


# =============================================================================
# Configuration
# =============================================================================


class TestOAuthConfig:
    """Scopes and storage locations."""

    def test_scopes(self):
        """Trash, relabel and drafts fall under gmail.modify; the address needs userinfo.email."""
        assert SCOPES == [
            "https://www.googleapis.com/auth/gmail.modify",
            "https://www.googleapis.com/auth/userinfo.email",
        ]

    def test_paths_under_data_dir(self):
        assert TOKEN_PATH.parent == settings.data_path
        assert CREDENTIALS_PATH.parent == settings.data_path
        assert TOKEN_PATH.name == "google_token.json"

    def test_credentials_path_is_json_file(self):
        assert str(CREDENTIALS_PATH).endswith(".json")

    def test_singleton_instance_exists(self):
        assert isinstance(google_auth, GoogleAuth)


# =============================================================================
# Credentials
# =============================================================================


class TestCredentials:
    """Test GoogleAuth.credentials and access_token."""

    def test_none_when_not_loaded(self, auth):
        assert auth.credentials is None
        assert auth.is_authenticated() is False

    def test_returns_valid_credentials(self, auth):
        mock_creds = MagicMock()
        mock_creds.valid = True
        auth._credentials = mock_creds

        assert auth.credentials is mock_creds
        assert auth.is_authenticated() is True

    def test_refreshes_expired_token(self, auth):
        mock_creds = MagicMock()
        mock_creds.valid = False
        mock_creds.expired = True
        mock_creds.refresh_token = "refresh"
        auth._credentials = mock_creds

        with patch.object(auth, "_save_token") as save:
            result = auth.credentials

        mock_creds.refresh.assert_called_once()
        save.assert_called_once()
        assert result is mock_creds

    def test_none_on_refresh_failure(self, auth):
        mock_creds = MagicMock()
        mock_creds.valid = False
        mock_creds.expired = True
        mock_creds.refresh_token = "refresh"
        mock_creds.refresh.side_effect = Exception("Refresh failed")
        auth._credentials = mock_creds

        assert auth.credentials is None

    def test_access_token_from_loaded_credentials(self, auth):
        mock_creds = MagicMock()
        mock_creds.valid = True
        mock_creds.token = "ya29.abc"
        auth._credentials = mock_creds

        assert auth.access_token == "ya29.abc"

    def test_access_token_loads_saved_token(self, auth):
        mock_creds = MagicMock()
        mock_creds.valid = True
        mock_creds.expired = False
        mock_creds.token = "ya29.saved"
        auth.token_path.write_text("{}")

        with patch(
            "mailsweep.google.auth.Credentials.from_authorized_user_file",
            return_value=mock_creds,
        ):
            assert auth.access_token == "ya29.saved"

    def test_access_token_none_without_token_file(self, auth):
        assert auth.access_token is None


class TestLoadSavedCredentials:
    """Test GoogleAuth.load_saved_credentials."""

    def test_false_when_no_token_file(self, auth):
        assert auth.load_saved_credentials() is False

    def test_loads_from_file(self, auth):
        mock_creds = MagicMock()
        mock_creds.valid = True
        mock_creds.expired = False
        auth.token_path.write_text("{}")

        with patch(
            "mailsweep.google.auth.Credentials.from_authorized_user_file",
            return_value=mock_creds,
        ) as load:
            assert auth.load_saved_credentials() is True

        load.assert_called_once_with(str(auth.token_path), SCOPES)

    def test_false_on_load_error(self, auth):
        auth.token_path.write_text("not json")

        with patch(
            "mailsweep.google.auth.Credentials.from_authorized_user_file",
            side_effect=ValueError("bad token file"),
        ):
            assert auth.load_saved_credentials() is False


class TestSaveToken:
    """Test GoogleAuth._save_token."""

    def test_noop_without_credentials(self, auth):
        auth._save_token()
        assert not auth.token_path.exists()

    def test_writes_json_and_creates_directory(self, tmp_path):
        auth = GoogleAuth(token_path=tmp_path / "nested" / "token.json")
        mock_creds = MagicMock()
        mock_creds.to_json.return_value = '{"token": "ya29.abc"}'
        auth._credentials = mock_creds

        auth._save_token()

        assert auth.token_path.read_text() == '{"token": "ya29.abc"}'


# =============================================================================
# OAuth flows
# =============================================================================


class TestSignOut:
    """Forgetting the cached token."""

    def test_removes_token_file(self, auth):
        auth.token_path.write_text("{}")
        auth._credentials = MagicMock(valid=True, token="ya29.abc")

        assert auth.sign_out() is True
        assert not auth.token_path.exists()
        assert auth.credentials is None
        assert auth.access_token is None

    def test_false_without_token_file(self, auth):
        assert auth.sign_out() is False


class TestInteractiveAuth:
    """Test GoogleAuth.authenticate_interactive."""

    def test_false_without_client_file(self, auth):
        assert auth.authenticate_interactive() is False

    def test_runs_local_server_flow(self, auth, client_file):
        mock_flow = MagicMock()
        mock_creds = MagicMock()
        mock_creds.to_json.return_value = "{}"
        mock_flow.run_local_server.return_value = mock_creds

        with patch(
            "mailsweep.google.auth.InstalledAppFlow.from_client_secrets_file",
            return_value=mock_flow,
        ):
            assert auth.authenticate_interactive() is True

        mock_flow.run_local_server.assert_called_once_with(port=0)
        assert auth.token_path.exists()

    def test_false_on_flow_error(self, auth, client_file):
        mock_flow = MagicMock()
        mock_flow.run_local_server.side_effect = Exception("Auth failed")

        with patch(
            "mailsweep.google.auth.InstalledAppFlow.from_client_secrets_file",
            return_value=mock_flow,
        ):
            assert auth.authenticate_interactive() is False


class TestConsoleAuth:
    """Test the copy/paste flow."""

    def test_auth_url_none_without_client_file(self, auth):
        assert auth.get_auth_url() is None

    def test_auth_url(self, auth, client_file):
        mock_flow = MagicMock()
        mock_flow.client_config = {"redirect_uris": ["http://localhost"]}
        mock_flow.authorization_url.return_value = ("https://accounts.google.com/o/oauth2/auth?x", "state")

        with patch(
            "mailsweep.google.auth.InstalledAppFlow.from_client_secrets_file",
            return_value=mock_flow,
        ):
            flow, url = auth.get_auth_url()

        assert flow is mock_flow
        assert url == "https://accounts.google.com/o/oauth2/auth?x"
        assert mock_flow.redirect_uri == "http://localhost"
        mock_flow.authorization_url.assert_called_once_with(prompt="consent", access_type="offline")

    def test_auth_url_nested_redirect_uri(self, auth, client_file):
        mock_flow = MagicMock()
        mock_flow.client_config = {"installed": {"redirect_uris": ["http://localhost:8080"]}}
        mock_flow.authorization_url.return_value = ("https://example/auth", "state")

        with patch(
            "mailsweep.google.auth.InstalledAppFlow.from_client_secrets_file",
            return_value=mock_flow,
        ):
            auth.get_auth_url()

        assert mock_flow.redirect_uri == "http://localhost:8080"

    def test_auth_url_none_without_redirect_uri(self, auth, client_file):
        mock_flow = MagicMock()
        mock_flow.client_config = {}

        with patch(
            "mailsweep.google.auth.InstalledAppFlow.from_client_secrets_file",
            return_value=mock_flow,
        ):
            assert auth.get_auth_url() is None

    def test_complete_with_code(self, auth):
        mock_flow = MagicMock()
        mock_flow.credentials.to_json.return_value = '{"token": "t"}'

        assert auth.complete_auth_with_code(mock_flow, "4/abc") is True

        mock_flow.fetch_token.assert_called_once_with(code="4/abc")
        assert auth.token_path.read_text() == '{"token": "t"}'

    def test_complete_with_bad_code(self, auth):
        mock_flow = MagicMock()
        mock_flow.fetch_token.side_effect = Exception("invalid_grant")

        assert auth.complete_auth_with_code(mock_flow, "nope") is False


class TestExtractOAuthCode:
    """Test pulling the code out of pasted input."""

    def test_full_redirect_url(self):
        url = "http://localhost/?state=xyz&code=4/0Abc-123&scope=gmail.modify"
        assert extract_oauth_code(url) == "4/0Abc-123"

    def test_query_string(self):
        assert extract_oauth_code("?code=4/xyz&state=s") == "4/xyz"

    def test_bare_code(self):
        assert extract_oauth_code("  4/bare-code  ") == "4/bare-code"

    def test_empty(self):
        assert extract_oauth_code("   ") is None
