"""Tests for the account session module."""

from __future__ import annotations

import stat
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
import yaml
from conftest import EMAIL, PASSWORD, TOKEN, MockCloudApi, envelope
from pytest_httpx import HTTPXMock

from pymailcloud import Account, ConfigError, LoginError, NotAuthorizedError, Rate
from pymailcloud.auth import (
    AUTH_TOKEN_URL,
    AUTH_URL,
    CONFIG_FILE_MODE,
    DEFAULT_CONFIG_NAME,
    DISK_SPACE_URL,
    ENSURE_SDC_URL,
    RATES_URL,
    load_credentials,
    save_credentials,
)
from pymailcloud.models import MB

RATES_REQUEST_URL = str(
    httpx.URL(RATES_URL, params={"api": 2, "email": EMAIL, "x-email": EMAIL, "token": "csrf_token"})
)
DISK_USAGE_AFTER_LOGIN_URL = str(
    httpx.URL(DISK_SPACE_URL, params={"api": 2, "email": EMAIL, "token": "csrf_token"})
)


def mock_login(httpx_mock: HTTPXMock, rates: list[dict]) -> None:
    """Register every response of a successful login handshake."""
    httpx_mock.add_response(url=AUTH_URL, method="POST")
    httpx_mock.add_response(url=ENSURE_SDC_URL, method="GET")
    httpx_mock.add_response(url=AUTH_TOKEN_URL, json=envelope({"token": "csrf_token"}))
    httpx_mock.add_response(
        url=DISK_USAGE_AFTER_LOGIN_URL,
        json=envelope({"bytes_total": 8192, "bytes_used": 1024}),
    )
    httpx_mock.add_response(url=RATES_REQUEST_URL, json=envelope(rates))


class TestCredentialsConfig:
    """Tests for credential file handling."""

    def test_default_config_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the home directory file is the default location."""
        monkeypatch.delenv("MAILCLOUD_CONFIG", raising=False)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        with patch("pymailcloud.auth.Path.home", return_value=tmp_path):
            path = save_credentials(EMAIL, PASSWORD)

        assert path == tmp_path / DEFAULT_CONFIG_NAME

    def test_env_config_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test config path from environment variable."""
        env_path = tmp_path / "env_config"
        monkeypatch.setenv("MAILCLOUD_CONFIG", str(env_path))

        assert save_credentials(EMAIL, PASSWORD) == env_path
        assert load_credentials() == (EMAIL, PASSWORD)

    def test_load_credentials_file_not_exists(self, tmp_path: Path) -> None:
        """Test loading credentials when config file doesn't exist."""
        assert load_credentials(tmp_path / "nonexistent") is None

    def test_load_credentials_empty_file(self, tmp_path: Path) -> None:
        """Test loading credentials from an empty file."""
        config_file = tmp_path / ".mailcloud"
        config_file.write_text("")

        assert load_credentials(config_file) is None

    def test_load_credentials_invalid_yaml(self, tmp_path: Path) -> None:
        """Test loading credentials from invalid YAML."""
        config_file = tmp_path / ".mailcloud"
        config_file.write_text("invalid: yaml: content: [")

        with pytest.raises(ConfigError, match="Failed to parse config file"):
            load_credentials(config_file)

    def test_save_credentials_success(self, tmp_path: Path) -> None:
        """Test saving credentials writes a private YAML file."""
        config_file = tmp_path / "nested" / ".mailcloud"

        save_credentials(EMAIL, PASSWORD, config_file)

        data = yaml.safe_load(config_file.read_text())
        assert data == {"email": EMAIL, "password": PASSWORD}
        assert stat.S_IMODE(config_file.stat().st_mode) == CONFIG_FILE_MODE

    def test_from_config(self, tmp_path: Path) -> None:
        """Test from_config builds an account from stored credentials."""
        config_file = tmp_path / ".mailcloud"
        save_credentials(EMAIL, PASSWORD, config_file)

        account = Account.from_config(config_file)

        assert account.email == EMAIL
        assert account.password == PASSWORD
        assert account.auth_token == ""

    def test_from_config_without_credentials(self, tmp_path: Path) -> None:
        """Test from_config fails when nothing is stored."""
        with pytest.raises(ConfigError, match="No stored credentials"):
            Account.from_config(tmp_path / "nonexistent")


class TestLogin:
    """Tests for the login handshake."""

    def test_login_success(self, httpx_mock: HTTPXMock) -> None:
        """Test login stores the token and the activated tariffs."""
        mock_login(
            httpx_mock,
            [
                {"id": "ZERO", "name": "Free", "active": True, "available": True},
                {"id": "W1T", "active": False, "available": True, "size": 1024},
            ],
        )
        account = Account(EMAIL, PASSWORD)

        account.login()

        assert account.auth_token == "csrf_token"
        assert [rate.id for rate in account.activated_tariffs] == ["ZERO"]
        assert account.has_2gb_upload_size_limit is True

        form = httpx_mock.get_request(url=AUTH_URL).content.decode()
        assert "Domain=mail.ru" in form

    def test_login_with_paid_tariff(self, httpx_mock: HTTPXMock) -> None:
        """Test an active paid tariff lifts the upload limit."""
        mock_login(
            httpx_mock,
            [
                {"id": "ZERO", "active": True},
                {"id": "W1T", "active": True},
            ],
        )
        account = Account(EMAIL, PASSWORD)

        account.login()

        assert account.has_2gb_upload_size_limit is False

    def test_login_rejected(self, httpx_mock: HTTPXMock) -> None:
        """Test a rejected login form raises LoginError."""
        httpx_mock.add_response(url=AUTH_URL, method="POST", status_code=403)

        with pytest.raises(LoginError, match="Login failed: 403"):
            Account(EMAIL, PASSWORD).login()

    def test_login_network_error(self, httpx_mock: HTTPXMock) -> None:
        """Test network errors during login are wrapped."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"), url=AUTH_URL)

        with pytest.raises(LoginError, match="HTTP error during login"):
            Account(EMAIL, PASSWORD).login()

    @pytest.mark.parametrize(("email", "password", "source"), [("", "x", "email"), ("a@b", "", "password")])
    def test_login_missing_credentials(self, email: str, password: str, source: str) -> None:
        """Test login fails naming the missing credential."""
        with pytest.raises(NotAuthorizedError) as exc_info:
            Account(email, password).login()

        assert exc_info.value.source == source


class TestAuthorization:
    """Tests for session checks and disk usage."""

    def test_disk_usage_converts_megabytes(self, account: Account, api: MockCloudApi) -> None:
        """Test disk usage values are reported in bytes."""
        api.disk_usage(used_mb=1024, total_mb=8192)

        usage = account.get_disk_usage()

        assert usage.total.bytes == 8192 * MB
        assert usage.used.bytes == 1024 * MB
        assert usage.free.bytes == 7168 * MB
        assert str(usage.total) == "8.0 GB"

    def test_closed_session(self, account: Account) -> None:
        """Test a closed session is not authorized."""
        account.close()

        with pytest.raises(NotAuthorizedError, match="Session is closed"):
            account.check_authorization()

    def test_rejected_session(self, account: Account, httpx_mock: HTTPXMock) -> None:
        """Test a rejected probe is reported as not authorized."""
        httpx_mock.add_response(url=MockCloudApi.disk_usage_url(), status_code=401)

        assert account.is_authorized() is False

    def test_authorized_session(self, account: Account, api: MockCloudApi) -> None:
        """Test an accepted probe is reported as authorized."""
        api.disk_usage()

        assert account.is_authorized() is True
        assert account.auth_token == TOKEN


class TestTariffs:
    """Tests for tariff gating."""

    def test_no_tariffs_is_limited(self) -> None:
        """Test an account without tariffs is on the free tier."""
        assert Account(EMAIL, PASSWORD).has_2gb_upload_size_limit is True

    def test_paid_tariff_is_not_limited(self) -> None:
        """Test any non-free tariff lifts the limit."""
        account = Account(
            EMAIL, PASSWORD, activated_tariffs=[Rate(id="ZERO"), Rate(id="W128G")]
        )
        assert account.has_2gb_upload_size_limit is False


class TestContextManager:
    """Tests for Account context manager."""

    def test_context_manager_closes_http_client(self) -> None:
        """Test that exiting closes the transport and drops the token."""
        with Account(EMAIL, PASSWORD, auth_token=TOKEN) as account:
            assert not account.http_client.is_closed

        assert account.http_client.is_closed
        assert account.auth_token == ""
