"""Files and folders of the cloud structure.

Entries are handles to remote paths. They keep a reference to the client
that produced them and delegate every remote operation back to it; on
success the handle's local fields are updated from the server-confirmed
result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from .cache import TreeCache
from .errors import CloudClientError, CloudError, ErrorCode
from .models import CloudStructureEntry, History, Size
from .paths import normalize

if TYPE_CHECKING:
    from typing import Self

    from .cloud import CloudClient, TransferStream

logger = logging.getLogger(__name__)

PUBLIC_LINK = "https://cloud.mail.ru/public/"


def public_link_for(weblink: str) -> str:
    """Build a public link from the server-issued suffix."""
    return PUBLIC_LINK + weblink if weblink else ""


@dataclass(frozen=True)
class EntryCore:
    """Attributes shared by files and folders."""

    name: str = ""
    full_path: str = ""
    public_link: str = ""
    size: Size = field(default_factory=Size)
    files_count: int = 0
    folders_count: int = 0

    @classmethod
    def from_descriptor(cls, item: CloudStructureEntry) -> EntryCore:
        return cls(
            name=item.name,
            full_path=item.home,
            public_link=public_link_for(item.weblink),
            size=Size(bytes=item.size),
            files_count=item.count.files,
            folders_count=item.count.folders,
        )


def apply_confirmed(old: EntryCore, confirmed: EntryCore) -> EntryCore:
    """Apply the identity confirmed by the server to a local entry.

    Name, path and public link come from ``confirmed``; size and child
    counters are kept from ``old``.
    """
    return replace(
        old,
        name=confirmed.name,
        full_path=confirmed.full_path,
        public_link=confirmed.public_link,
    )


class Entry:
    """Common handle behaviour of files and folders."""

    def __init__(self, core: EntryCore, client: CloudClient) -> None:
        self.core = core
        self.client = client

    @property
    def name(self) -> str:
        return self.core.name

    @property
    def full_path(self) -> str:
        return self.core.full_path

    @property
    def public_link(self) -> str:
        return self.core.public_link

    @property
    def size(self) -> Size:
        return self.core.size

    def publish(self) -> Self:
        """Publish the entry and store its public link."""
        result = self.client.publish(self.full_path)
        self.core = replace(self.core, public_link=result.public_link)
        return self

    def unpublish(self) -> Self:
        """Revoke the public link of the entry. No-op if not published."""
        if not self.public_link:
            return self
        result = self.client.unpublish(self.public_link)
        self.core = replace(self.core, public_link=result.public_link)
        return self

    def abort_all_async_tasks(self) -> None:
        """Abort every running transfer of the owning client."""
        self.client.abort_all_async_tasks()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.full_path!r}, size={self.size})"


class File(Entry):
    """File in the cloud.

    Attributes:
        hash: Server-computed content hash.
        last_modified_utc: Last modification time.
    """

    def __init__(
        self,
        core: EntryCore,
        client: CloudClient,
        hash: str = "",
        last_modified_utc: datetime | None = None,
    ) -> None:
        super().__init__(core, client)
        self.hash = hash
        self.last_modified_utc = last_modified_utc or datetime.fromtimestamp(0, tz=UTC)

    @classmethod
    def from_descriptor(cls, item: CloudStructureEntry, client: CloudClient) -> File:
        return cls(
            EntryCore.from_descriptor(item),
            client,
            hash=item.hash,
            last_modified_utc=datetime.fromtimestamp(item.mtime, tz=UTC),
        )

    def rename(self, new_name: str) -> Self:
        result = self.client.rename(self.full_path, new_name)
        self.core = apply_confirmed(self.core, result)
        return self

    def copy(self, dest_folder_path: str) -> File:
        """Copy the file. The original handle is left untouched."""
        result = self.client.copy(self.full_path, dest_folder_path)
        return File(
            apply_confirmed(self.core, result),
            self.client,
            hash=self.hash,
            last_modified_utc=self.last_modified_utc,
        )

    def move(self, dest_folder_path: str) -> Self:
        result = self.client.move(self.full_path, dest_folder_path)
        self.core = apply_confirmed(self.core, result)
        return self

    def remove(self) -> None:
        self.client.remove(self.full_path)

    def get_file_history(self) -> list[History]:
        return self.client.get_file_history(self.full_path)

    def restore_file_from_history(
        self,
        history_revision: int,
        rewrite_existing: bool = False,
        new_file_name: str = "",
    ) -> File:
        return self.client.restore_file_from_history(
            self.full_path, history_revision, rewrite_existing, new_file_name
        )

    def get_file_one_time_direct_link(self) -> str:
        return self.client.get_file_one_time_direct_link(self.public_link)

    def download_file_stream(self) -> tuple[TransferStream, int]:
        """Open a download stream. The caller must close it."""
        return self.client.download_file(self.full_path)

    def download_file_to_stream(self, dest_stream: BinaryIO) -> int:
        """Download the file into a writable binary stream.

        Returns:
            Number of bytes written.
        """
        stream, _ = self.client.download_file(self.full_path)
        with stream:
            return stream.copy_to(dest_stream)

    def download_file(self, dest_file_name: str = "", dest_folder_path: str | Path = ".") -> Path:
        """Download the file to a local folder.

        Args:
            dest_file_name: Local file name. Defaults to the cloud name.
            dest_folder_path: Local folder to write to.

        Returns:
            Path to the downloaded file.
        """
        output_path = Path(dest_folder_path) / (dest_file_name or self.name)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("wb") as f:
            self.download_file_to_stream(f)
        return output_path


class Folder(Entry):
    """Folder in the cloud.

    A folder holds at most one level of children. Sub-folders are listed only
    when they are accessed themselves.
    """

    def __init__(
        self,
        core: EntryCore,
        client: CloudClient,
        items: list[CloudStructureEntry] | None = None,
        *,
        cache: TreeCache | None = None,
    ) -> None:
        super().__init__(core, client)
        self.cache = cache or client.make_tree_cache(items)

    @property
    def files_count(self) -> int:
        return self.core.files_count

    @property
    def folders_count(self) -> int:
        return self.core.folders_count

    @property
    def items(self) -> list[CloudStructureEntry] | None:
        return self.cache.items

    @classmethod
    def from_descriptor(cls, item: CloudStructureEntry, client: CloudClient) -> Folder:
        return cls(EntryCore.from_descriptor(item), client, item.items or None)

    def get_files(self) -> list[File]:
        """List the files of the folder, refreshing the listing if stale."""
        self._update_folder_info()
        return [
            File.from_descriptor(item, self.client)
            for item in self.items or []
            if item.is_file
        ]

    def get_folders(self) -> list[Folder]:
        """List the sub-folders of the folder, refreshing the listing if stale."""
        self._update_folder_info()
        return [
            Folder.from_descriptor(item, self.client)
            for item in self.items or []
            if item.is_folder
        ]

    def remove(self) -> None:
        self.client.remove(self.full_path)
        self._update_folder_info(force=True)

    def rename(self, new_name: str) -> Self:
        result = self.client.rename(self.full_path, new_name)
        self.core = apply_confirmed(self.core, result)
        self._update_folder_info(force=True)
        return self

    def copy(self, dest_folder_path: str) -> Folder:
        """Copy the folder. The original handle is left untouched."""
        result = self.client.copy(self.full_path, dest_folder_path)
        return Folder(
            apply_confirmed(self.core, result),
            self.client,
        )

    def move(self, dest_folder_path: str) -> Self:
        result = self.client.move(self.full_path, dest_folder_path)
        self.core = apply_confirmed(self.core, result)
        self._update_folder_info(force=True)
        return self

    def create_folder(self, folder_name: str) -> Folder:
        """Create a direct sub-folder.

        Raises:
            CloudClientError: If the name contains a path separator.
        """
        if "/" in folder_name:
            raise CloudClientError(
                "Nested sub-folders are not allowed here. "
                "Use CloudClient.create_folder instead",
                ErrorCode.PATH_NOT_EXISTS,
                "folder_name",
            )
        result = self.client.create_folder(f"{self.full_path}/{folder_name}")
        self._update_folder_info(force=True)
        return result

    def upload_file(self, source_file_path: str | Path, dest_file_name: str = "") -> File:
        result = self.client.upload_file(dest_file_name, source_file_path, self.full_path)
        self._update_folder_info(force=True)
        return result

    def upload_file_from_stream(self, file_name: str, content: BinaryIO | bytes) -> File:
        result = self.client.upload_file_from_stream(file_name, content, self.full_path)
        self._update_folder_info(force=True)
        return result

    def download_items_as_zip_archive(
        self,
        file_and_folder_names: list[str],
        dest_zip_archive_name: str,
        dest_folder_path: str | Path = ".",
    ) -> Path:
        """Download children of this folder as one local ZIP archive.

        The archive is written to a temporary file next to the destination
        and moved in place once complete.
        """
        paths = [normalize(f"{self.full_path}/{name}") for name in file_and_folder_names]
        output_path = Path(dest_folder_path) / dest_zip_archive_name
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial_path = output_path.with_name(output_path.name + ".part")

        try:
            with partial_path.open("wb") as f:
                self.client.download_items_as_zip_archive_to_stream(paths, f)
            partial_path.replace(output_path)
        finally:
            partial_path.unlink(missing_ok=True)

        return output_path

    def download_folder_as_zip(self, dest_stream: BinaryIO) -> int:
        return self.client.download_items_as_zip_archive_to_stream([self.full_path], dest_stream)

    def download_folder_as_zip_stream(self) -> tuple[TransferStream, int]:
        return self.client.download_items_as_zip_archive([self.full_path])

    def _update_folder_info(self, force: bool = False) -> None:
        """Refresh the cached listing if the staleness policy asks for it.

        A failed refresh keeps the previous listing.
        """
        if not self.cache.needs_refresh(self._probe_used_bytes, forced=force):
            return

        try:
            folder = self.client.get_folder(self.full_path)
        except CloudError as e:
            logger.warning("Failed to refresh listing of %s: %s", self.full_path, e)
            return

        if folder is None:
            logger.warning("Folder %s is no longer listed, keeping cache", self.full_path)
            return

        self.core = replace(
            self.core,
            size=folder.size,
            public_link=folder.public_link,
            files_count=folder.files_count,
            folders_count=folder.folders_count,
        )
        self.cache.store(folder.items or [], folder.cache.last_known_used_bytes)

    def _probe_used_bytes(self) -> int | None:
        try:
            return self.client.account.get_disk_usage().used.bytes
        except CloudError as e:
            logger.warning("Disk usage probe failed: %s", e)
            return None
