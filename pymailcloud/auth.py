"""Account session for the Cloud Mail.ru API.

This module implements the session handle every cloud operation runs on: the
account identity, the auth token and an httpx transport carrying the session
cookies.

Authentication Flow:
1. Client posts the login form to auth.mail.ru
2. Client requests the SDC cookie that grants access to cloud.mail.ru
3. Client exchanges the cookies for a CSRF auth token
4. Client loads the activated tariffs that gate upload size and history restore
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import yaml

from .errors import ConfigError, LoginError, NotAuthorizedError, TransportError
from .models import (
    CsrfToken,
    DiskUsage,
    Rate,
    SpaceInfo,
    decode_envelope,
    has_upload_size_limit,
)

if TYPE_CHECKING:
    from typing import Self

logger = logging.getLogger(__name__)

# Cloud Mail.ru endpoints
BASE_MAILRU_CLOUD = "https://cloud.mail.ru"
BASE_MAILRU_AUTH = "https://auth.mail.ru"
AUTH_URL = BASE_MAILRU_AUTH + "/cgi-bin/auth"
ENSURE_SDC_URL = BASE_MAILRU_AUTH + "/sdc?from=https://cloud.mail.ru/home"
AUTH_TOKEN_URL = BASE_MAILRU_CLOUD + "/api/v2/tokens/csrf"
DISK_SPACE_URL = BASE_MAILRU_CLOUD + "/api/v2/user/space"
RATES_URL = BASE_MAILRU_CLOUD + "/api/v2/billing/rates"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/67.0.3396.87 Safari/537.36"
)

# Default config locations
DEFAULT_CONFIG_NAME = ".mailcloud"
XDG_CONFIG_NAME = "mailcloud/mailcloud.conf"

# File permissions (owner read/write only)
CONFIG_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600


def _get_default_config_path() -> Path:
    """Determine the default configuration file path.

    Checks in order:
    1. MAILCLOUD_CONFIG environment variable
    2. ~/.mailcloud (home directory)
    3. ~/.config/mailcloud/mailcloud.conf (XDG config)

    Returns:
        Path to the configuration file.
    """
    env_config = os.environ.get("MAILCLOUD_CONFIG")
    if env_config:
        return Path(env_config).expanduser()

    home_config = Path.home() / DEFAULT_CONFIG_NAME
    if home_config.exists():
        return home_config

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        xdg_config = Path(xdg_config_home) / XDG_CONFIG_NAME
    else:
        xdg_config = Path.home() / ".config" / XDG_CONFIG_NAME

    if xdg_config.exists():
        return xdg_config

    return home_config


def load_credentials(config_path: str | Path | None = None) -> tuple[str, str] | None:
    """Load email and password from the configuration file.

    Returns:
        ``(email, password)`` if the config exists and is not empty.

    Raises:
        ConfigError: If the config file exists but cannot be parsed.
    """
    path = _get_default_config_path() if config_path is None else Path(config_path).expanduser()
    if not path.exists():
        return None

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to load config: {e}") from e

    if not data:
        return None
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")

    return str(data.get("email", "")), str(data.get("password", ""))


def save_credentials(
    email: str, password: str, config_path: str | Path | None = None
) -> Path:
    """Save email and password to the configuration file.

    Returns:
        Path the credentials were written to.

    Raises:
        ConfigError: If the credentials cannot be saved.
    """
    path = _get_default_config_path() if config_path is None else Path(config_path).expanduser()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = yaml.safe_dump(
            {"email": email, "password": password}, default_flow_style=False
        )
        path.write_text(content)
        path.chmod(CONFIG_FILE_MODE)
    except OSError as e:
        raise ConfigError(f"Failed to save config: {e}") from e

    return path


class Account:
    """Cloud Mail.ru account session.

    Holds the identity, the auth token and the HTTP transport shared by every
    request of the session. The cookie jar lives in the transport and must not
    be used from two threads at once.

    Example:
        >>> account = Account("user@mail.ru", "secret")
        >>> account.login()
        >>> account.get_disk_usage().free

    Attributes:
        email: Login of the account.
        password: Password of the account.
        activated_tariffs: Tariffs activated for the account.
    """

    def __init__(
        self,
        email: str,
        password: str,
        *,
        auth_token: str = "",
        http_client: httpx.Client | None = None,
        activated_tariffs: list[Rate] | None = None,
    ) -> None:
        """Initialize the account session.

        Args:
            email: Login of the account.
            password: Password of the account.
            auth_token: Token of an already established session.
            http_client: Transport to use. A cookie-enabled client without
                timeout is created when omitted.
            activated_tariffs: Tariffs of an already established session.
        """
        self.email = email
        self.password = password
        self.activated_tariffs: list[Rate] = list(activated_tariffs or [])
        self._auth_token = auth_token
        self._http_client = http_client or httpx.Client(
            timeout=None,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    @property
    def auth_token(self) -> str:
        return self._auth_token

    @property
    def http_client(self) -> httpx.Client:
        return self._http_client

    @property
    def has_2gb_upload_size_limit(self) -> bool:
        """Check whether the account is limited to 2GB uploads."""
        return has_upload_size_limit(self.activated_tariffs)

    def login(self) -> None:
        """Log in to the cloud and load activated tariffs.

        Raises:
            NotAuthorizedError: If email or password is missing.
            LoginError: If any step of the handshake fails.
        """
        self._check_credentials()
        logger.debug("Logging in as %s", self.email)

        try:
            response = self._http_client.post(
                AUTH_URL,
                data={
                    "Login": self.email,
                    "Domain": "mail.ru",
                    "Password": self.password,
                },
            )
            if response.status_code != 200:
                raise LoginError(f"Login failed: {response.status_code}", "Login")

            response = self._http_client.get(ENSURE_SDC_URL)
            if response.status_code != 200:
                raise LoginError(
                    f"Failed to obtain SDC cookies: {response.status_code}", "Login"
                )

            response = self._http_client.get(AUTH_TOKEN_URL)
        except httpx.HTTPError as e:
            raise LoginError(f"HTTP error during login: {e}", "Login") from e

        token = decode_envelope(response.content, CsrfToken).token
        if not token:
            raise LoginError("Auth token not found in response", "Login")
        self._auth_token = token

        self.activated_tariffs = [rate for rate in self.get_rates() if rate.is_active]
        logger.info(
            "Logged in as %s (%d activated tariffs)",
            self.email,
            len(self.activated_tariffs),
        )

    def _check_credentials(self) -> None:
        if not self.email:
            raise NotAuthorizedError("Email is not defined", "email")
        if not self.password:
            raise NotAuthorizedError("Password is not defined", "password")

    def check_authorization(self) -> DiskUsage:
        """Check that the session can issue cloud requests.

        Besides the local preconditions, the disk usage endpoint is probed to
        confirm the server still accepts the session.

        Returns:
            The disk usage returned by the probe call.

        Raises:
            NotAuthorizedError: Naming the failed precondition.
        """
        self._check_credentials()

        if self._http_client.is_closed:
            raise NotAuthorizedError("Session is closed")
        if not self._auth_token:
            raise NotAuthorizedError("Auth token is missing")

        return self._fetch_disk_usage()

    def is_authorized(self) -> bool:
        """Check the current authorization without raising."""
        try:
            self.check_authorization()
        except NotAuthorizedError:
            return False
        return True

    def get_disk_usage(self) -> DiskUsage:
        """Get disk usage for the account.

        Raises:
            NotAuthorizedError: If the session is not authorized.
        """
        return self.check_authorization()

    def get_rates(self) -> list[Rate]:
        """Get all tariffs known for the account.

        Raises:
            NotAuthorizedError: If the session is not authorized.
            TransportError: If the request fails.
        """
        self.check_authorization()

        params = {
            "api": 2,
            "email": self.email,
            "x-email": self.email,
            "token": self._auth_token,
        }
        try:
            response = self._http_client.get(RATES_URL, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error while getting rates: {e}") from e

        return decode_envelope(response.content, list[Rate])

    def _fetch_disk_usage(self) -> DiskUsage:
        params = {"api": 2, "email": self.email, "token": self._auth_token}
        try:
            response = self._http_client.get(DISK_SPACE_URL, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error while getting disk usage: {e}") from e

        if response.status_code != 200:
            raise NotAuthorizedError("Client is not authorized")

        return decode_envelope(response.content, SpaceInfo).to_disk_usage()

    def close(self) -> None:
        """Close the transport and drop the auth token."""
        self._auth_token = ""
        self._http_client.close()

    @classmethod
    def from_config(cls, config_path: str | Path | None = None) -> Self:
        """Create an Account from stored credentials.

        Args:
            config_path: Path to config file. If None, uses default location.

        Raises:
            ConfigError: If no credentials are stored.
        """
        credentials = load_credentials(config_path)
        if credentials is None:
            raise ConfigError("No stored credentials. Run the login command first.")
        return cls(*credentials)

    def __enter__(self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit - close the session."""
        self.close()
