"""Tests for the command line interface."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import EMAIL, MockCloudApi
from typer.testing import CliRunner

from pymailcloud import CloudClient, load_credentials
from pymailcloud.cloud import FILE_REQUEST_URL
from pymailcloud.entries import PUBLIC_LINK
from pymailcloud.run import app

pytestmark = pytest.mark.httpx_mock(assert_all_responses_were_requested=False)

runner = CliRunner()


@pytest.fixture
def cli_cloud(cloud: CloudClient, monkeypatch: pytest.MonkeyPatch) -> CloudClient:
    """Make every command run against the test client."""
    monkeypatch.setattr(CloudClient, "from_config", classmethod(lambda cls, path=None: cloud))
    return cloud


class TestCommands:
    """Tests for cloud commands."""

    def test_ls(self, cli_cloud: CloudClient, api: MockCloudApi) -> None:
        """Test listing prints folders first, then files with sizes."""
        api.listing("/docs/", [api.file("/docs/a.txt", size=1536), api.folder("/docs/sub")])

        result = runner.invoke(app, ["ls", "/docs"])

        assert result.exit_code == 0
        assert result.output.splitlines() == ["sub/", "a.txt\t1.5 KB"]

    def test_usage(self, cli_cloud: CloudClient) -> None:
        """Test disk usage is printed in human-readable units."""
        result = runner.invoke(app, ["usage"])

        assert result.exit_code == 0
        assert "total: 8.0 GB" in result.output
        assert "used: 1.0 GB" in result.output

    def test_publish(self, cli_cloud: CloudClient, api: MockCloudApi) -> None:
        """Test publishing prints the public link."""
        api.listing("/docs/", [api.file("/docs/a.txt")])
        api.post(FILE_REQUEST_URL.format(operation="publish"), "AbCd/xyz")

        result = runner.invoke(app, ["publish", "/docs/a.txt"])

        assert result.exit_code == 0
        assert result.output.strip() == PUBLIC_LINK + "AbCd/xyz"

    def test_cloud_error_exit_code(self, cli_cloud: CloudClient, api: MockCloudApi) -> None:
        """Test cloud errors are reported with exit code 1."""
        api.listing("/docs/")

        result = runner.invoke(app, ["publish", "/docs/missing.txt"])

        assert result.exit_code == 1
        assert "Error: Source item does not exist" in result.output


class TestLogin:
    """Tests for the login command."""

    def test_login_saves_credentials(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a successful login stores the credentials."""
        closed: list[bool] = []

        class StubClient:
            def close(self) -> None:
                closed.append(True)

        monkeypatch.setattr(
            CloudClient, "from_credentials", classmethod(lambda cls, email, password: StubClient())
        )
        config_file = tmp_path / ".mailcloud"

        result = runner.invoke(app, ["--config", str(config_file), "login", EMAIL], input="secret\n")

        assert result.exit_code == 0
        assert load_credentials(config_file) == (EMAIL, "secret")
        assert closed == [True]
