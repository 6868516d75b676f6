"""Shared fixtures for the cloud client tests."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import parse_qs

import httpx
import pytest
from pytest_httpx import HTTPXMock

from pymailcloud import Account, CloudClient, Rate
from pymailcloud.auth import DISK_SPACE_URL
from pymailcloud.cloud import ITEMS_LIST_URL
from pymailcloud.paths import base_name
from pymailcloud.shards import DISPATCHER_URL

EMAIL = "user@mail.ru"
PASSWORD = "secret"
TOKEN = "test_token"

UPLOAD_SHARD_URL = "https://upload.example.com/upload/"
GET_SHARD_URL = "https://get.example.com/get/"
WEBLINK_SHARD_URL = "https://weblink.example.com/get/"


def envelope(body: object) -> dict:
    """Wrap a body the way the cloud API does."""
    return {"email": EMAIL, "body": body, "status": 200}


class MockCloudApi:
    """Registers Cloud Mail.ru responses on an HTTPXMock."""

    def __init__(self, httpx_mock: HTTPXMock) -> None:
        self.httpx_mock = httpx_mock

    @staticmethod
    def disk_usage_url() -> str:
        return str(httpx.URL(DISK_SPACE_URL, params={"api": 2, "email": EMAIL, "token": TOKEN}))

    @staticmethod
    def listing_url(home: str) -> str:
        return str(httpx.URL(ITEMS_LIST_URL, params={"token": TOKEN, "home": home}))

    @staticmethod
    def file(home: str, size: int = 10, hash: str = "HASH", weblink: str = "") -> dict:
        return {
            "name": base_name(home),
            "home": home,
            "type": "file",
            "kind": "file",
            "size": size,
            "hash": hash,
            "mtime": 1700000000,
            "weblink": weblink,
        }

    @staticmethod
    def folder(home: str, items: Iterable[dict] = (), weblink: str = "") -> dict:
        items = list(items)
        return {
            "name": base_name(home) or "/",
            "home": home,
            "type": "folder",
            "kind": "folder",
            "size": sum(item.get("size", 0) for item in items),
            "weblink": weblink,
            "count": {
                "files": sum(1 for item in items if item["type"] == "file"),
                "folders": sum(1 for item in items if item["type"] == "folder"),
            },
            "list": items,
        }

    def disk_usage(self, used_mb: int = 1024, total_mb: int = 8192) -> None:
        self.httpx_mock.add_response(
            url=self.disk_usage_url(),
            json=envelope({"bytes_total": total_mb, "bytes_used": used_mb, "overquota": False}),
            is_reusable=True,
        )

    def listing(
        self, home: str, items: Iterable[dict] = (), status_code: int = 200
    ) -> None:
        """Register a listing of ``home`` (with trailing slash, as requested)."""
        folder_home = home.rstrip("/") or "/"
        self.httpx_mock.add_response(
            url=self.listing_url(home),
            status_code=status_code,
            json=envelope(self.folder(folder_home, items)),
            is_reusable=True,
        )

    def dispatcher(self) -> None:
        shards = {
            "upload": [{"count": 1, "url": UPLOAD_SHARD_URL}],
            "get": [{"count": 1, "url": GET_SHARD_URL}],
            "weblink_get": [{"count": 1, "url": WEBLINK_SHARD_URL}],
        }
        self.httpx_mock.add_response(
            url=str(httpx.URL(DISPATCHER_URL, params={"token": TOKEN})),
            json=envelope(shards),
            is_reusable=True,
        )

    def post(self, url: str, body: object = None, status_code: int = 200) -> None:
        self.httpx_mock.add_response(
            url=url, method="POST", status_code=status_code, json=envelope(body)
        )

    def form(self, url: str) -> dict[str, str]:
        """Decode the form fields of the single request sent to ``url``."""
        request = self.httpx_mock.get_request(url=url, method="POST")
        assert request is not None
        return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.fixture
def account() -> Account:
    """Create an authorized paid-tier Account for testing."""
    return Account(
        EMAIL,
        PASSWORD,
        auth_token=TOKEN,
        activated_tariffs=[Rate(id="W1T", active=True)],
    )


@pytest.fixture
def free_account() -> Account:
    """Create an authorized free-tier Account for testing."""
    return Account(
        EMAIL,
        PASSWORD,
        auth_token=TOKEN,
        activated_tariffs=[Rate(id="ZERO", active=True)],
    )


@pytest.fixture
def api(httpx_mock: HTTPXMock) -> MockCloudApi:
    return MockCloudApi(httpx_mock)


@pytest.fixture
def cloud(account: Account, api: MockCloudApi) -> CloudClient:
    """Create a CloudClient whose disk usage probe always succeeds."""
    api.disk_usage()
    return CloudClient(account)
