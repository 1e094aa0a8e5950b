"""
OAuth2 authentication and token refresh for the Spotify Web API.

This module implements the authorization code flow used by `login` and the
refresh exchange used by the service client whenever an access token is
about to expire.

The login flow follows Spotify's OAuth2 specification:
1. Generate authorization URL with required scopes and a random state
2. Start a short-lived local HTTP listener on the redirect URI
3. Open browser for user consent
4. Receive authorization code via callback (bounded wait)
5. Exchange code for access/refresh tokens
6. Store tokens in the credential store

The flow is single-shot: any failure means starting again from step 1.

Refresh is serialized per account. When two threads notice an expiring
token at the same time, the second waits for the first and reuses the
rotated credential instead of running a second exchange, which could
invalidate the refresh token the first exchange just received.
"""

import secrets
import threading
import urllib.parse
import webbrowser
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer

import requests

from spotify_sync.core.config import SpotifyConfig
from spotify_sync.core.credentials import Credential, CredentialStore
from spotify_sync.core.exceptions import (
    AuthDeniedError,
    AuthProtocolError,
    AuthTimeoutError,
    ConfigError,
    ReauthRequiredError,
    SpotifyError,
)
from spotify_sync.core.logger import get_logger

logger = get_logger(__name__)


AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"
LOCAL_HOSTS = ("localhost", "127.0.0.1")

_SUCCESS_HTML = """
<html>
<head><title>Authorization Success</title></head>
<body style="font-family: Arial, sans-serif; text-align: center; margin-top: 50px;">
    <h1 style="color: #1DB954;">Authorization Successful!</h1>
    <p>You can now close this window and return to the terminal.</p>
</body>
</html>
"""

_ERROR_HTML = """
<html>
<head><title>Authorization Error</title></head>
<body style="font-family: Arial, sans-serif; text-align: center; margin-top: 50px;">
    <h1 style="color: #E22134;">Authorization Failed</h1>
    <p>Error: {error}</p>
    <p>Return to the terminal and run login again.</p>
</body>
</html>
"""


class CallbackServer(HTTPServer):
    """
    HTTP server receiving exactly one OAuth redirect.

    Attributes:
        callback_path: Path component of the redirect URI; other paths get 404.
        authorization_code: Code from a successful redirect.
        authorization_error: 'error' parameter from a failed redirect.
        returned_state: 'state' parameter echoed by Spotify.
        received: Set once a redirect on callback_path has been handled.
    """

    def __init__(self, address: tuple[str, int], callback_path: str) -> None:
        super().__init__(address, CallbackHandler)
        self.callback_path = callback_path
        self.authorization_code: str | None = None
        self.authorization_error: str | None = None
        self.returned_state: str | None = None
        self.received = threading.Event()


class CallbackHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for the OAuth2 callback.

    The callback URL format is:
    - Success: http://callback_url?code=AUTHORIZATION_CODE&state=STATE
    - Error: http://callback_url?error=ERROR_CODE&state=STATE
    """

    server: CallbackServer

    def do_GET(self):
        parsed_url = urllib.parse.urlparse(self.path)
        if parsed_url.path != self.server.callback_path or self.server.received.is_set():
            self.send_response(404)
            self.end_headers()
            return

        query_params = urllib.parse.parse_qs(parsed_url.query)
        self.server.returned_state = query_params.get("state", [None])[0]

        if "code" in query_params:
            self.server.authorization_code = query_params["code"][0]
            self._respond(200, _SUCCESS_HTML)
        else:
            error = query_params.get("error", ["missing_code"])[0]
            self.server.authorization_error = error
            self._respond(400, _ERROR_HTML.format(error=error))

        self.server.received.set()

    def _respond(self, status: int, body: str) -> None:
        self.send_response(status)
        self.send_header("Content-type", "text/html")
        self.end_headers()
        self.wfile.write(body.encode())

    def log_message(self, format, *args):
        """Keep request lines out of the console."""
        pass


class LoginFlow:
    """
    Interactive OAuth2 authorization-code login for one named account.

    The flow is expressed as a single blocking call with a timeout:
    login() either returns the stored Credential or raises one of
    AuthDeniedError, AuthTimeoutError, AuthProtocolError.

    Attributes:
        spotify: Application credentials, redirect URI and scopes.
        store: Credential store the result is written to.
        timeout: Seconds to wait for the browser redirect.
    """

    def __init__(
        self,
        spotify: SpotifyConfig,
        store: CredentialStore,
        timeout: float = 300,
        open_browser: Callable[[str], object] = webbrowser.open,
        session: requests.Session | None = None,
        echo: Callable[[str], None] = print
    ) -> None:
        self.spotify = spotify
        self.store = store
        self.timeout = timeout
        self._open_browser = open_browser
        self._session = session or requests.Session()
        self._echo = echo

    def authorization_url(self, state: str) -> str:
        """Build the consent URL the user opens in a browser."""
        params = {
            "client_id": self.spotify.client_id,
            "response_type": "code",
            "redirect_uri": self.spotify.redirect_uri,
            "scope": self.spotify.scope_string,
            "state": state,
            "show_dialog": "true",  # Let the user pick which account to grant
        }
        return f"{AUTHORIZE_URL}?{urllib.parse.urlencode(params)}"

    def login(self, account_name: str) -> Credential:
        """
        Run the full authorization flow and store the credential.

        Args:
            account_name: Name the credential is stored under.

        Returns:
            The stored Credential.

        Raises:
            AuthDeniedError: The user rejected consent.
            AuthTimeoutError: No redirect arrived within self.timeout seconds.
            AuthProtocolError: Bad callback (missing code, state mismatch) or
                               malformed token endpoint response.
            ConfigError: The redirect URI does not point to this machine.
            StorageIOError: The credential could not be persisted.
        """
        host, port, path = self._listen_address()
        state = secrets.token_urlsafe(16)
        url = self.authorization_url(state)

        try:
            server = CallbackServer((host, port), path)
        except OSError as e:
            raise AuthProtocolError(
                f"Cannot listen for the authorization callback on {host}:{port}: {e}",
                details={"redirect_uri": self.spotify.redirect_uri}
            ) from e

        server_thread = threading.Thread(target=server.serve_forever, daemon=True)
        server_thread.start()

        try:
            logger.info(f"Starting authorization for account '{account_name}'")
            self._echo("Opening browser for Spotify authorization...")
            self._echo(f"If the browser doesn't open, visit: {url}")
            self._open_browser(url)

            if not server.received.wait(self.timeout):
                raise AuthTimeoutError(
                    f"No authorization callback received within {self.timeout:g} seconds",
                    details={"account": account_name}
                )
        finally:
            server.shutdown()
            server.server_close()

        if server.authorization_error == "access_denied":
            raise AuthDeniedError(
                "Authorization was denied in the browser",
                details={"account": account_name}
            )
        if server.authorization_error:
            raise AuthProtocolError(
                f"Authorization failed: {server.authorization_error}",
                details={"account": account_name, "error": server.authorization_error}
            )
        if server.returned_state != state:
            raise AuthProtocolError(
                "Authorization callback state does not match the request",
                details={"account": account_name}
            )
        if not server.authorization_code:
            raise AuthProtocolError(
                "No authorization code received",
                details={"account": account_name}
            )

        credential = self._exchange_code(server.authorization_code)
        self.store.put(account_name, credential)
        logger.info(f"Stored credential for account '{account_name}'")
        return credential

    def _listen_address(self) -> tuple[str, int, str]:
        parsed = urllib.parse.urlparse(self.spotify.redirect_uri)
        if parsed.scheme != "http" or parsed.hostname not in LOCAL_HOSTS:
            raise ConfigError(
                "Redirect URI must be an http://localhost or http://127.0.0.1 address "
                "so the login callback can be received",
                details={"redirect_uri": self.spotify.redirect_uri}
            )
        return parsed.hostname, parsed.port or 80, parsed.path or "/"

    def _exchange_code(self, code: str) -> Credential:
        """Exchange the authorization code for access and refresh tokens."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.spotify.redirect_uri,  # Must match authorization request
            "client_id": self.spotify.client_id,
            "client_secret": self.spotify.client_secret,
        }
        try:
            response = self._session.post(TOKEN_URL, data=data, timeout=30)
        except requests.RequestException as e:
            raise AuthProtocolError(
                f"Token exchange failed: {e}",
                details={"original_error": str(e)}
            ) from e

        if response.status_code != 200:
            raise AuthProtocolError(
                f"Token exchange rejected with HTTP {response.status_code}",
                details={"http_status": response.status_code, "body": response.text[:200]}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthProtocolError("Token endpoint returned invalid JSON") from e

        return Credential.from_token_response(payload)


class TokenRefresher:
    """
    Refresh exchange for stored credentials, serialized per account.

    Attributes:
        spotify: Application credentials used to authenticate the exchange.
        store: Credential store read before and written after each refresh.
    """

    def __init__(
        self,
        spotify: SpotifyConfig,
        store: CredentialStore,
        session: requests.Session | None = None
    ) -> None:
        self.spotify = spotify
        self.store = store
        self._session = session or requests.Session()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, account_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(account_name, threading.Lock())

    def refresh(self, account_name: str, stale: Credential) -> Credential:
        """
        Return a freshly rotated credential for the account.

        Args:
            account_name: Account whose credential is refreshed.
            stale: The credential the caller found expiring or rejected.
                   If the stored credential already differs from it, another
                   caller refreshed in the meantime and that result is reused.

        Raises:
            ReauthRequiredError: The refresh grant was revoked or has expired.
            AuthProtocolError: Malformed token endpoint response.
            SpotifyError: Network failure or server error during the exchange.
            StorageIOError: The rotated credential could not be persisted.
        """
        with self._lock_for(account_name):
            current = self.store.get(account_name)
            if current.access_token != stale.access_token and not current.expires_within(0):
                logger.debug(f"Reusing credential refreshed concurrently for '{account_name}'")
                return current

            logger.debug(f"Refreshing access token for '{account_name}'")
            data = {
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
                "client_id": self.spotify.client_id,
                "client_secret": self.spotify.client_secret,
            }
            try:
                response = self._session.post(TOKEN_URL, data=data, timeout=30)
            except requests.RequestException as e:
                raise SpotifyError(
                    f"Token refresh failed: {e}",
                    details={"account": account_name, "original_error": str(e)}
                ) from e

            if response.status_code in (400, 401):
                raise ReauthRequiredError(
                    account_name,
                    details={"http_status": response.status_code, "body": response.text[:200]}
                )
            if response.status_code != 200:
                raise SpotifyError(
                    f"Token refresh failed with HTTP {response.status_code}",
                    details={"account": account_name},
                    http_status=response.status_code
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise AuthProtocolError("Token endpoint returned invalid JSON") from e

            credential = Credential.from_token_response(payload, previous=current)
            self.store.put(account_name, credential)
            logger.info(f"Access token refreshed for '{account_name}'")
            return credential
