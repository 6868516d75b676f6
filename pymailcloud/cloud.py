"""Cloud storage client for the Cloud Mail.ru API.

This module implements the file operations of the Cloud Mail.ru web API on
top of an authenticated :class:`~pymailcloud.auth.Account`.

Storage Operations:
- List folders
- Create folders
- Rename, move, copy and remove items
- Publish and unpublish items
- Read file history and restore revisions
- Upload and download files
- Download several items as one ZIP archive

The API is addressed by path, not by ID. Existence of an item is checked by
listing its parent, and every operation that needs a shard asks the
dispatcher again.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO
from urllib.parse import quote

import httpx

from .auth import BASE_MAILRU_CLOUD, Account
from .cache import StalenessPolicy, TreeCache, default_staleness_policy
from .entries import PUBLIC_LINK, EntryCore, File, Folder
from .errors import (
    CloudClientError,
    CloudError,
    DecodeError,
    ErrorCode,
    TransferCancelledError,
    TransportError,
)
from .models import (
    GB,
    CloudStructureEntry,
    DiskUsage,
    DownloadToken,
    History,
    ProgressChangedEventArgs,
    ProgressChangeTaskState,
    Size,
    decode_envelope,
)
from .paths import (
    base_name,
    common_parent,
    extension_of,
    normalize,
    parent_of,
    resolve_existing,
    restore_file_name,
    with_extension,
)
from .shards import GET_SHARD, UPLOAD_SHARD, WEBLINK_GET_SHARD, ShardDirectory

if TYPE_CHECKING:
    from typing import Self

logger = logging.getLogger(__name__)

# API endpoints
ITEMS_LIST_URL = BASE_MAILRU_CLOUD + "/api/v2/folder"
CREATE_URL = BASE_MAILRU_CLOUD + "/api/v2/{kind}/add"
FILE_REQUEST_URL = BASE_MAILRU_CLOUD + "/api/v2/file/{operation}"
HISTORY_URL = BASE_MAILRU_CLOUD + "/api/v2/file/history"
ZIP_ARCHIVE_URL = BASE_MAILRU_CLOUD + "/api/v2/zip"
DOWNLOAD_TOKEN_URL = BASE_MAILRU_CLOUD + "/api/v2/tokens/download"

# Size limits
FREE_UPLOAD_SIZE_LIMIT = 2 * GB
PAID_UPLOAD_SIZE_LIMIT = 32 * GB
DOWNLOAD_SIZE_LIMIT = 4 * GB

# Status codes with a domain meaning
SIZE_LIMIT_STATUS = 422
PUBLISH_NOT_FOUND_STATUSES = (400, 404, 422)

# Conflict policies of the create endpoint
CONFLICT_RENAME = "rename"
CONFLICT_REWRITE = "rewrite"

TRANSFER_CHUNK_SIZE = 64 * 1024

ProgressChangedEventHandler = Callable[["CloudClient", ProgressChangedEventArgs], None]


def _path_error(message: str, source: str = "") -> CloudClientError:
    return CloudClientError(message, ErrorCode.PATH_NOT_EXISTS, source)


def _interrupt(response: httpx.Response) -> None:
    """Shut down the connection under a response so blocked reads return."""
    network_stream = response.extensions.get("network_stream")
    if network_stream is None:
        return
    sock = network_stream.get_extra_info("socket")
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("Connection already closed: %s", e)


class TransferStream:
    """Live body of a download response.

    The stream stops with :class:`TransferCancelledError` once the owning
    client aborts its transfers, including while a read is blocked on a
    stalled connection. The caller owns the stream and must close it.
    """

    def __init__(
        self,
        response: httpx.Response,
        cancel_event: threading.Event,
        on_close: Callable[[httpx.Response], None] | None = None,
    ) -> None:
        self._response = response
        self._cancel_event = cancel_event
        self._on_close = on_close

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            self.close()
            raise TransferCancelledError("Transfer was aborted")

    def iter_bytes(self, chunk_size: int = TRANSFER_CHUNK_SIZE) -> Iterator[bytes]:
        self._raise_if_cancelled()
        try:
            for chunk in self._response.iter_bytes(chunk_size):
                self._raise_if_cancelled()
                yield chunk
        except httpx.HTTPError as e:
            # An abort shuts the connection down under a blocked read
            self._raise_if_cancelled()
            raise TransportError(f"HTTP error during download: {e}") from e

    def read(self) -> bytes:
        return b"".join(self.iter_bytes())

    def copy_to(self, dest_stream: BinaryIO) -> int:
        """Copy the remaining body into a writable stream.

        Returns:
            Number of bytes copied.
        """
        copied = 0
        for chunk in self.iter_bytes():
            dest_stream.write(chunk)
            copied += len(chunk)
        return copied

    def close(self) -> None:
        self._response.close()
        if self._on_close is not None:
            self._on_close(self._response)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()


class CloudClient:
    """Cloud storage client for the Cloud Mail.ru API.

    Example:
        >>> cloud = CloudClient.from_credentials("user@mail.ru", "secret")
        >>> folder = cloud.create_folder("/photos")
        >>> cloud.upload_file("", "/tmp/cat.jpg", "/photos")
        >>> cloud.publish("/photos/cat.jpg").public_link

    The client is not thread-safe, except that :meth:`abort_all_async_tasks`
    may be called from any thread. Transfers share one cancellation signal:
    an abort stops every running and future transfer of this client.

    Attributes:
        account: The authenticated account session.
        progress_changed: Optional subscriber notified when a transfer starts
            (0%) and completes (100%).
    """

    def __init__(
        self,
        account: Account,
        *,
        clock: Callable[[], float] = time.monotonic,
        staleness_policy: StalenessPolicy = default_staleness_policy,
    ) -> None:
        """Initialize the cloud client.

        Args:
            account: Authenticated Account instance.
            clock: Monotonic clock used by folder listing caches.
            staleness_policy: Decides when folder listings are fetched again.
        """
        self.account = account
        self.progress_changed: ProgressChangedEventHandler | None = None
        self.shards = ShardDirectory(account)
        self.clock = clock
        self.staleness_policy = staleness_policy
        self._cancel_event = threading.Event()
        self._open_responses: set[httpx.Response] = set()
        self._responses_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def make_tree_cache(
        self,
        items: list[CloudStructureEntry] | None = None,
        used_bytes: int | None = None,
    ) -> TreeCache:
        """Create a listing cache bound to this client's clock and policy."""
        return TreeCache(
            items,
            last_known_used_bytes=used_bytes,
            clock=self.clock,
            policy=self.staleness_policy,
        )

    def _check_authorization(self) -> DiskUsage:
        return self.account.check_authorization()

    def _form_fields(
        self, home: str = "", conflict: str | None = CONFLICT_RENAME
    ) -> dict[str, Any]:
        """Build the form fields common to every cloud request."""
        fields: dict[str, Any] = {
            "api": 2,
            "token": self.account.auth_token,
            "email": self.account.email,
            "x-email": self.account.email,
        }
        if conflict:
            fields["conflict"] = conflict
        if home:
            fields["home"] = home
        return fields

    def _request(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s (%s)", method, url, action)
        try:
            return self.account.http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error while trying to {action}: {e}") from e

    def _decode(self, response: httpx.Response, shape: Any, action: str) -> Any:
        if response.is_error:
            raise TransportError(
                f"Failed to {action}: {response.status_code} - {response.text}"
            )
        return decode_envelope(response.content, shape)

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise TransferCancelledError("Transfer was aborted")

    def _notify_progress(self, percentage: int, total: int, in_progress: int) -> None:
        if self.progress_changed is None:
            return
        self.progress_changed(
            self,
            ProgressChangedEventArgs(
                progress_percentage=percentage,
                state=ProgressChangeTaskState(
                    total_bytes=Size(bytes=total),
                    bytes_in_progress=Size(bytes=in_progress),
                ),
            ),
        )

    def _track(self, response: httpx.Response) -> None:
        with self._responses_lock:
            self._open_responses.add(response)

    def _release(self, response: httpx.Response) -> None:
        with self._responses_lock:
            self._open_responses.discard(response)
        response.close()

    def _send_transfer(self, request: httpx.Request, action: str) -> httpx.Response:
        """Send a streamed transfer request under the cancellation signal.

        The response is registered so an abort can interrupt its body; the
        caller must release it.
        """
        self._raise_if_cancelled()
        try:
            response = self.account.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            self._raise_if_cancelled()
            raise TransportError(f"HTTP error during {action}: {e}") from e

        self._track(response)
        if self._cancel_event.is_set():
            self._release(response)
            raise TransferCancelledError("Transfer was aborted")
        return response

    def _open_stream(self, url: str) -> httpx.Response:
        """Send a streamed GET under the cancellation signal."""
        request = self.account.http_client.build_request("GET", url)
        return self._send_transfer(request, "download")

    def _create_file_or_folder(
        self,
        add_file: bool,
        path: str,
        hash: str = "",
        size: int = 0,
        rewrite_existing: bool = False,
    ) -> str:
        """Create a file or folder record and return its confirmed path.

        With ``rewrite_existing`` an existing item is replaced; otherwise the
        server picks a free name on collision.
        """
        data = self._form_fields(
            path, CONFLICT_REWRITE if rewrite_existing else CONFLICT_RENAME
        )
        if add_file and hash and size:
            data["hash"] = hash
            data["size"] = size

        kind = "file" if add_file else "folder"
        response = self._request(
            "POST", CREATE_URL.format(kind=kind), f"create {kind}", data=data
        )
        return self._decode(response, str, f"create {kind}")

    # -------------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------------

    def get_folder(self, full_path: str = "/") -> Folder | None:
        """Get a folder with its direct children.

        Args:
            full_path: Path of the folder. Defaults to the root folder.

        Returns:
            The folder, or None if the server does not list it.

        Raises:
            NotAuthorizedError: If the session is not authorized.
            TransportError: If the request fails.
        """
        usage = self._check_authorization()
        path = normalize(full_path, True, True)

        response = self._request(
            "GET",
            ITEMS_LIST_URL,
            "list folder",
            params={"token": self.account.auth_token, "home": path},
        )
        if response.status_code != 200:
            logger.debug("Folder %s is not listed: %s", path, response.status_code)
            return None

        entry: CloudStructureEntry = self._decode(response, CloudStructureEntry, "list folder")
        return Folder(
            EntryCore.from_descriptor(entry),
            self,
            cache=self.make_tree_cache(entry.items, used_bytes=usage.used.bytes),
        )

    def create_folder(self, full_folder_path: str) -> Folder:
        """Create a folder, including missing parent folders.

        On a name collision the server picks a free name; the returned folder
        carries the confirmed name and path.

        Raises:
            CloudClientError: If the path is empty.
        """
        if not full_folder_path:
            raise _path_error("Path cannot be empty", "full_folder_path")

        self._check_authorization()
        path = normalize(full_folder_path, True, True)
        new_path = self._create_file_or_folder(False, path)

        logger.info("Created folder %s", new_path)
        return Folder(EntryCore(name=base_name(new_path), full_path=new_path), self)

    # -------------------------------------------------------------------------
    # Item operations
    # -------------------------------------------------------------------------

    def remove(self, source_full_path: str) -> None:
        """Remove a file or folder.

        Removing a path that does not exist is not reported as an error.
        """
        if not source_full_path:
            raise _path_error("Path cannot be empty", "source_full_path")

        self._check_authorization()
        path = normalize(source_full_path)
        self._request(
            "POST",
            FILE_REQUEST_URL.format(operation="remove"),
            "remove item",
            data=self._form_fields(path),
        )
        logger.info("Removed %s", path)

    def rename(self, source_full_path: str, name: str) -> EntryCore:
        """Rename a file or folder.

        The current extension is appended to ``name`` when missing.

        Raises:
            CloudClientError: ``PATH_NOT_EXISTS`` if the item does not exist
                or an argument is empty.
        """
        if not source_full_path:
            raise _path_error("Path cannot be empty", "source_full_path")
        if not name:
            raise _path_error("Name cannot be empty", "name")

        self._check_authorization()
        path = normalize(source_full_path)
        item = resolve_existing(self, path)

        data = self._form_fields(path)
        data["name"] = with_extension(name, extension_of(item.name))
        response = self._request(
            "POST", FILE_REQUEST_URL.format(operation="rename"), "rename item", data=data
        )
        new_path: str = self._decode(response, str, "rename item")

        logger.info("Renamed %s to %s", path, new_path)
        return replace(item, name=base_name(new_path), full_path=new_path, public_link="")

    def copy(self, source_full_path: str, dest_folder_path: str) -> EntryCore:
        """Copy a file or folder into another folder."""
        return self._move_or_copy(source_full_path, dest_folder_path, move=False)

    def move(self, source_full_path: str, dest_folder_path: str) -> EntryCore:
        """Move a file or folder into another folder."""
        return self._move_or_copy(source_full_path, dest_folder_path, move=True)

    def _move_or_copy(
        self, source_full_path: str, dest_folder_path: str, move: bool
    ) -> EntryCore:
        if not source_full_path:
            raise _path_error("Path cannot be empty", "source_full_path")
        if not dest_folder_path:
            raise _path_error("Destination path cannot be empty", "dest_folder_path")

        self._check_authorization()
        source = normalize(source_full_path)
        dest = normalize(dest_folder_path)

        item = resolve_existing(self, source)
        if self.get_folder(dest) is None:
            raise _path_error(
                "Destination folder does not exist in the cloud", "dest_folder_path"
            )

        operation = "move" if move else "copy"
        data = self._form_fields(source)
        data["folder"] = dest
        response = self._request(
            "POST", FILE_REQUEST_URL.format(operation=operation), f"{operation} item", data=data
        )
        new_path: str = self._decode(response, str, f"{operation} item")

        logger.info("%s %s to %s", "Moved" if move else "Copied", source, new_path)
        return replace(item, name=base_name(new_path), full_path=new_path, public_link="")

    # -------------------------------------------------------------------------
    # Publication
    # -------------------------------------------------------------------------

    def publish(self, source_full_path: str) -> EntryCore:
        """Publish a file or folder.

        Returns:
            The item with its public link set.

        Raises:
            CloudClientError: ``PATH_NOT_EXISTS`` if the item does not exist.
        """
        if not source_full_path:
            raise _path_error("Path cannot be empty", "source_full_path")

        self._check_authorization()
        path = normalize(source_full_path)
        item = resolve_existing(self, path)

        response = self._request(
            "POST",
            FILE_REQUEST_URL.format(operation="publish"),
            "publish item",
            data=self._form_fields(path, conflict=None),
        )
        if response.status_code in PUBLISH_NOT_FOUND_STATUSES:
            raise _path_error("Item at the given path does not exist", "source_full_path")

        weblink: str = self._decode(response, str, "publish item")
        logger.info("Published %s", path)
        return replace(item, public_link=PUBLIC_LINK + weblink)

    def unpublish(self, public_link: str) -> EntryCore:
        """Revoke a public link.

        Returns:
            The unpublished item, resolved again from its parent listing.

        Raises:
            CloudClientError: ``PUBLIC_LINK_NOT_EXISTS`` if the link is not a
                public link or is unknown to the server.
        """
        weblink = self._weblink_of(public_link)

        self._check_authorization()
        data = self._form_fields(conflict=None)
        data["weblink"] = weblink
        response = self._request(
            "POST", FILE_REQUEST_URL.format(operation="unpublish"), "unpublish item", data=data
        )
        if response.status_code in PUBLISH_NOT_FOUND_STATUSES:
            raise CloudClientError(
                "Item with the given public link does not exist",
                ErrorCode.PUBLIC_LINK_NOT_EXISTS,
                "public_link",
            )

        path: str = self._decode(response, str, "unpublish item")
        logger.info("Unpublished %s", path)
        return resolve_existing(self, path, source="public_link")

    def get_file_one_time_direct_link(self, public_link: str) -> str:
        """Get a one-time anonymous direct download link for a published file.

        Raises:
            CloudClientError: ``PUBLIC_LINK_NOT_EXISTS`` if the link is not a
                public link.
        """
        weblink = self._weblink_of(public_link)

        self._check_authorization()
        response = self._request(
            "POST",
            DOWNLOAD_TOKEN_URL,
            "get download token",
            data=self._form_fields(conflict=None),
        )
        token: DownloadToken = self._decode(response, DownloadToken, "get download token")

        shard = self.shards.url_for(WEBLINK_GET_SHARD)
        return f"{shard.rstrip('/')}/{weblink}?key={token.token}"

    @staticmethod
    def _weblink_of(public_link: str) -> str:
        weblink = public_link.removeprefix(PUBLIC_LINK) if public_link else ""
        if not weblink or weblink == public_link:
            raise CloudClientError(
                "Public link is empty or malformed",
                ErrorCode.PUBLIC_LINK_NOT_EXISTS,
                "public_link",
            )
        return weblink

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def get_file_history(self, source_full_path: str) -> list[History]:
        """Get the modification history of a file.

        The first returned revision is the current version.

        Raises:
            CloudClientError: ``PATH_NOT_EXISTS`` if the file does not exist.
        """
        if not source_full_path:
            raise _path_error("Path cannot be empty", "source_full_path")

        self._check_authorization()
        path = normalize(source_full_path)

        params = {
            "home": path,
            "api": 2,
            "email": self.account.email,
            "x-email": self.account.email,
            "token": self.account.auth_token,
        }
        response = self._request(
            "POST",
            HISTORY_URL,
            "get file history",
            params=params,
            data=self._form_fields(path, conflict=None),
        )
        if response.status_code == 404:
            raise _path_error("File at the given path does not exist", "source_full_path")

        histories: list[History] = self._decode(response, list[History], "get file history")
        return [
            history.model_copy(update={"is_current_version": index == 0})
            for index, history in enumerate(histories)
        ]

    def restore_file_from_history(
        self,
        source_full_path: str,
        history_revision: int,
        rewrite_existing: bool = False,
        new_file_name: str = "",
    ) -> File:
        """Restore a revision of a file.

        The revision's content is materialized by hash, without uploading.

        Args:
            source_full_path: Path of the file.
            history_revision: Revision number to restore.
            rewrite_existing: Replace the current file instead of creating a
                new one next to it.
            new_file_name: Name of the restored copy. Keeps the original name
                when empty; the original extension is appended when missing.

        Raises:
            CloudClientError: ``HISTORY_NOT_EXISTS`` if the revision is
                unknown, ``NOT_SUPPORTED_OPERATION`` on free-tier accounts.
        """
        if history_revision <= 0:
            raise CloudClientError(
                "Revision must be greater than 0",
                ErrorCode.HISTORY_NOT_EXISTS,
                "history_revision",
            )
        if self.account.has_2gb_upload_size_limit:
            raise CloudClientError(
                "This operation is not supported for your account. "
                "Please upgrade your tariff",
                ErrorCode.NOT_SUPPORTED_OPERATION,
            )

        histories = self.get_file_history(source_full_path)
        history = next((h for h in histories if h.revision == history_revision), None)
        if history is None:
            raise CloudClientError(
                "History does not exist for the given revision",
                ErrorCode.HISTORY_NOT_EXISTS,
                "history_revision",
            )

        path = normalize(source_full_path)
        file_name = restore_file_name(base_name(path), new_file_name)
        new_full_path = path if rewrite_existing else parent_of(path) + file_name

        new_path = self._create_file_or_folder(
            True, new_full_path, history.hash, history.size_bytes, rewrite_existing
        )
        logger.info("Restored revision %d of %s to %s", history_revision, path, new_path)
        return File(
            EntryCore(name=base_name(new_path), full_path=new_path, size=history.size),
            self,
            hash=history.hash,
            last_modified_utc=history.last_modified_utc,
        )

    # -------------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------------

    def abort_all_async_tasks(self) -> None:
        """Abort every running transfer of this client.

        Reads blocked on a stalled connection are interrupted. Transfers
        started afterwards fail immediately. Safe to call from another thread.
        """
        logger.info("Aborting all transfers")
        self._cancel_event.set()
        with self._responses_lock:
            responses = list(self._open_responses)
        for response in responses:
            _interrupt(response)

    def upload_file(
        self,
        dest_file_name: str,
        source_file_path: str | Path,
        dest_folder_path: str,
    ) -> File:
        """Upload a local file.

        Args:
            dest_file_name: Name in the cloud. Defaults to the local name; the
                local extension is appended when missing.
            source_file_path: Path of the local file.
            dest_folder_path: Cloud folder to upload into.

        Raises:
            FileNotFoundError: If the local file doesn't exist.
        """
        if not source_file_path:
            raise _path_error("Source file path cannot be empty", "source_file_path")

        source = Path(source_file_path)
        if not dest_file_name:
            dest_file_name = source.name
        else:
            dest_file_name = with_extension(dest_file_name, source.suffix)

        with source.open("rb") as f:
            return self.upload_file_from_stream(dest_file_name, f, dest_folder_path)

    def upload_file_from_stream(
        self,
        dest_file_name: str,
        content: BinaryIO | bytes,
        dest_folder_path: str,
    ) -> File:
        """Upload content from a stream.

        The whole content is read first: the upload must declare its length
        and the size limit is checked before any transfer.

        Raises:
            CloudClientError: ``PATH_NOT_EXISTS`` for an empty name, empty
                content or missing folder; ``UPLOADING_SIZE_LIMIT`` if the
                content exceeds the account's limit.
            TransferCancelledError: If transfers were aborted.
        """
        self._raise_if_cancelled()
        self._check_authorization()
        folder_path = normalize(dest_folder_path, True, True)

        if not dest_file_name:
            raise _path_error("File name cannot be empty", "dest_file_name")

        data = content if isinstance(content, bytes) else content.read()
        if not data:
            raise _path_error("Content cannot be empty", "content")

        if self.get_folder(folder_path) is None:
            raise _path_error("Path does not exist", "dest_folder_path")

        file_size = len(data)
        size_limit = (
            FREE_UPLOAD_SIZE_LIMIT
            if self.account.has_2gb_upload_size_limit
            else PAID_UPLOAD_SIZE_LIMIT
        )
        if file_size > size_limit:
            raise CloudClientError(
                f"Maximum upload size is {size_limit // GB}GB",
                ErrorCode.UPLOADING_SIZE_LIMIT,
                "content",
            )

        upload_url = self.shards.url_for(UPLOAD_SHARD)
        self._raise_if_cancelled()
        self._notify_progress(0, file_size, 0)

        logger.debug("Uploading %d bytes to %s%s", file_size, folder_path, dest_file_name)
        request = self.account.http_client.build_request(
            "PUT",
            upload_url,
            params={"cloud_domain": 2, "x-email": self.account.email},
            content=self._iter_upload_chunks(data),
            headers={"Content-Length": str(file_size)},
        )
        response = self._send_transfer(request, "upload")
        try:
            response.read()
        except httpx.HTTPError as e:
            self._raise_if_cancelled()
            raise TransportError(f"HTTP error during upload: {e}") from e
        finally:
            self._release(response)
        self._raise_if_cancelled()

        hash = self._decode_upload_hash(response)
        new_path = self._create_file_or_folder(
            True, folder_path + dest_file_name, hash, file_size
        )
        self._notify_progress(100, file_size, file_size)

        logger.info("Uploaded %s (%d bytes)", new_path, file_size)
        return File(
            EntryCore(name=base_name(new_path), full_path=new_path, size=Size(bytes=file_size)),
            self,
            hash=hash,
            last_modified_utc=datetime.now(tz=UTC),
        )

    def _iter_upload_chunks(self, data: bytes) -> Iterator[bytes]:
        for offset in range(0, len(data), TRANSFER_CHUNK_SIZE):
            self._raise_if_cancelled()
            yield data[offset : offset + TRANSFER_CHUNK_SIZE]

    def _decode_upload_hash(self, response: httpx.Response) -> str:
        if response.is_error:
            raise TransportError(
                f"Upload failed: {response.status_code} - {response.text}"
            )
        try:
            hash = decode_envelope(response.content, str)
        except DecodeError:
            # Upload shards answer with the bare hash as plain text
            hash = response.text.strip()
        if not hash:
            raise TransportError("Upload returned an empty hash")
        return hash

    def download_file(self, source_file_path: str) -> tuple[TransferStream, int]:
        """Open a download stream for a file.

        Returns:
            The live stream and the declared content length (0 if unknown).
            The caller must close the stream.

        Raises:
            CloudClientError: ``PATH_NOT_EXISTS`` if the file does not exist,
                ``DOWNLOADING_SIZE_LIMIT`` if it exceeds 4GB.
            TransferCancelledError: If transfers were aborted.
        """
        self._raise_if_cancelled()
        if not source_file_path:
            raise _path_error("File path cannot be empty", "source_file_path")

        self._check_authorization()
        path = quote(normalize(source_file_path).removeprefix("/"), safe="/")
        shard = self.shards.url_for(GET_SHARD)

        response = self._open_stream(f"{shard.rstrip('/')}/{path}")
        if response.status_code == SIZE_LIMIT_STATUS:
            self._release(response)
            raise CloudClientError(
                f"Maximum download size is {DOWNLOAD_SIZE_LIMIT // GB}GB",
                ErrorCode.DOWNLOADING_SIZE_LIMIT,
                "source_file_path",
            )
        if response.status_code == 404:
            self._release(response)
            raise _path_error("File does not exist in the cloud", "source_file_path")
        if response.is_error:
            self._release(response)
            raise TransportError(f"Download failed: {response.status_code}")

        content_length = int(response.headers.get("Content-Length", 0) or 0)
        return TransferStream(response, self._cancel_event, self._release), content_length

    def get_direct_link_zip_archive(
        self, files_and_folders_paths: list[str], dest_zip_archive_name: str = ""
    ) -> str:
        """Get an anonymous direct link to a ZIP archive of several items.

        All items must share the same parent folder.

        Args:
            files_and_folders_paths: Paths of the items to bundle.
            dest_zip_archive_name: Archive name. Defaults to the current UNIX
                time; ``.zip`` is appended when missing.

        Raises:
            CloudClientError: ``PATH_NOT_EXISTS`` for an empty list or a root
                path, ``DIFFERENT_PARENT_PATHS`` if the parents differ,
                ``DOWNLOADING_SIZE_LIMIT`` if the archive exceeds 4GB.
        """
        if not files_and_folders_paths:
            raise _path_error("Path list cannot be empty", "files_and_folders_paths")
        if any(not path or path == "/" for path in files_and_folders_paths):
            raise _path_error(
                "One of the paths is empty or points to the root folder",
                "files_and_folders_paths",
            )

        archive_name = dest_zip_archive_name or str(int(time.time()))
        if not archive_name.lower().endswith(".zip"):
            archive_name += ".zip"

        paths = [normalize(path) for path in files_and_folders_paths]
        if common_parent(paths) is None:
            raise CloudClientError(
                "Items have different parent folders. "
                "All items must share one parent folder",
                ErrorCode.DIFFERENT_PARENT_PATHS,
                "files_and_folders_paths",
            )

        self._check_authorization()
        data = {
            "home_list": json.dumps(paths, separators=(",", ":"), ensure_ascii=False),
            "name": archive_name,
            "api": 2,
            "token": self.account.auth_token,
            "email": self.account.email,
        }
        response = self._request("POST", ZIP_ARCHIVE_URL, "create ZIP archive", data=data)
        if response.status_code == SIZE_LIMIT_STATUS:
            raise CloudClientError(
                f"Maximum download size is {DOWNLOAD_SIZE_LIMIT // GB}GB",
                ErrorCode.DOWNLOADING_SIZE_LIMIT,
            )
        return self._decode(response, str, "create ZIP archive")

    def download_items_as_zip_archive(
        self, files_and_folders_paths: list[str]
    ) -> tuple[TransferStream, int]:
        """Open a download stream for a ZIP archive of several items.

        Returns:
            The live stream and an approximate length: the sum of the item
            sizes in the parent listing, not the compressed archive size.
        """
        self._raise_if_cancelled()
        link = self.get_direct_link_zip_archive(files_and_folders_paths)
        approximate_length = self._estimate_items_size(files_and_folders_paths)

        response = self._open_stream(link)
        if response.is_error:
            self._release(response)
            raise TransportError(f"ZIP archive download failed: {response.status_code}")
        return TransferStream(response, self._cancel_event, self._release), approximate_length

    def download_items_as_zip_archive_to_stream(
        self, files_and_folders_paths: list[str], dest_stream: BinaryIO
    ) -> int:
        """Download a ZIP archive of several items into a writable stream.

        Returns:
            Number of bytes written.
        """
        stream, _ = self.download_items_as_zip_archive(files_and_folders_paths)
        with stream:
            return stream.copy_to(dest_stream)

    def _estimate_items_size(self, paths: list[str]) -> int:
        normalized = [normalize(path) for path in paths]
        try:
            parent = self.get_folder(parent_of(normalized[0]))
        except CloudError as e:
            logger.warning("Could not estimate archive size: %s", e)
            return 0
        if parent is None or parent.items is None:
            return 0

        sizes = {item.home: item.size for item in parent.items}
        return sum(sizes.get(path, 0) for path in normalized)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying account session."""
        self.account.close()

    @classmethod
    def from_account(cls, account: Account) -> Self:
        """Create a CloudClient from an existing Account.

        Args:
            account: Authenticated Account instance.

        Returns:
            Configured CloudClient.
        """
        return cls(account)

    @classmethod
    def from_credentials(cls, email: str, password: str) -> Self:
        """Log in and create a CloudClient.

        Raises:
            LoginError: If the login handshake fails.
        """
        account = Account(email, password)
        account.login()
        return cls(account)

    @classmethod
    def from_config(cls, config_path: str | Path | None = None) -> Self:
        """Log in with stored credentials and create a CloudClient.

        Args:
            config_path: Path to config file. If None, uses default location.
        """
        account = Account.from_config(config_path)
        account.login()
        return cls(account)

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
