"""Path helpers for cloud paths.

Cloud paths are always absolute and use ``/`` as separator. There is no
endpoint to stat a single path, so existence is inferred by listing the
parent folder and matching on the item name.
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING

from .errors import CloudClientError, ErrorCode

if TYPE_CHECKING:
    from .cloud import CloudClient
    from .entries import EntryCore

logger = logging.getLogger(__name__)

ROOT_PATH = "/"

_SEPARATORS = re.compile(r"[/\\]+")


def normalize(path: str, leading: bool = True, trailing: bool = False) -> str:
    """Normalize a cloud path.

    Args:
        path: Path to normalize.
        leading: Ensure the path starts with a slash.
        trailing: Ensure the path ends with a slash.

    Returns:
        The path with every run of ``/`` or ``\\`` collapsed into one ``/``.
    """
    if leading:
        path = "/" + path
    if trailing:
        path = path + "/"
    return _SEPARATORS.sub("/", path)


def parent_of(path: str) -> str:
    """Get the parent folder of a path, including its trailing slash."""
    path = path.removesuffix("/")
    index = path.rfind("/")
    if index == -1:
        return ROOT_PATH
    return path[: index + 1]


def base_name(path: str) -> str:
    """Get the last segment of a path."""
    return posixpath.basename(path.removesuffix("/"))


def extension_of(name: str) -> str:
    return posixpath.splitext(name)[1]


def with_extension(name: str, extension: str) -> str:
    """Append ``extension`` unless ``name`` already ends with it (case-insensitive)."""
    if extension and not name.lower().endswith(extension.lower()):
        return name + extension
    return name


def restore_file_name(original_name: str, new_name: str = "") -> str:
    """Name for a file restored from history.

    An empty ``new_name`` keeps the original name; otherwise the original
    extension is appended when missing.
    """
    if not new_name:
        return original_name
    return with_extension(new_name, extension_of(original_name))


def common_parent(paths: list[str]) -> str | None:
    """Get the parent shared by every path, or None if they differ."""
    parents = {parent_of(path) for path in paths}
    if len(parents) != 1:
        return None
    return parents.pop()


def resolve_existing(
    client: CloudClient, path: str, source: str = "source_full_path"
) -> EntryCore:
    """Resolve an existing file or folder by listing its parent.

    Args:
        client: Client used to list the parent folder.
        path: Full path of the item.
        source: Argument name reported when the item does not exist.

    Returns:
        The entry matching the path's base name. Files are matched first.

    Raises:
        CloudClientError: ``PATH_NOT_EXISTS`` if the item is not found.
    """
    name = base_name(path)
    parent = client.get_folder(parent_of(path))

    if parent is not None:
        for file in parent.get_files():
            if file.name == name:
                return file.core
        for folder in parent.get_folders():
            if folder.name == name:
                return folder.core

    logger.debug("Item %s not found in its parent folder", path)
    raise CloudClientError(
        "Source item does not exist in the cloud",
        ErrorCode.PATH_NOT_EXISTS,
        source,
    )
