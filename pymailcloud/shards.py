"""Shard discovery for the Cloud Mail.ru API.

Uploads, downloads and public-link downloads are served by hosts the
dispatcher assigns per category. The shard map can rotate between sessions,
so it is fetched again for every operation that needs it.
"""

from __future__ import annotations

import logging

import httpx

from .auth import BASE_MAILRU_CLOUD, Account
from .errors import TransportError
from .models import ShardsList, decode_envelope

logger = logging.getLogger(__name__)

DISPATCHER_URL = BASE_MAILRU_CLOUD + "/api/v2/dispatcher"

# Shard categories used by the client
UPLOAD_SHARD = "upload"
GET_SHARD = "get"
WEBLINK_GET_SHARD = "weblink_get"


class ShardDirectory:
    """Resolves operation categories to shard base URLs."""

    def __init__(self, account: Account) -> None:
        self.account = account

    def resolve(self) -> ShardsList:
        """Fetch the current shard map.

        Raises:
            NotAuthorizedError: If the session is not authorized.
            TransportError: If the request fails.
            DecodeError: If the response cannot be decoded.
        """
        self.account.check_authorization()

        try:
            response = self.account.http_client.get(
                DISPATCHER_URL, params={"token": self.account.auth_token}
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error while getting shards: {e}") from e

        return decode_envelope(response.content, ShardsList)

    def url_for(self, category: str) -> str:
        """Fetch the shard map and pick the first URL of a category.

        Raises:
            ShardNotFoundError: If the category has no shards.
        """
        url = self.resolve().first_url(category)
        logger.debug("Using %s shard %s", category, url)
        return url
