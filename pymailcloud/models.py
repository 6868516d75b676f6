"""Pydantic models for the Cloud Mail.ru API."""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from .errors import DecodeError, ShardNotFoundError

T = TypeVar("T")

KB = 1024
MB = KB * 1024
GB = MB * 1024
TB = GB * 1024


# =============================================================================
# Value types
# =============================================================================


class StorageUnit(str, Enum):
    """Unit of a normalized size."""

    BYTE = "Byte"
    KB = "KB"
    MB = "MB"
    GB = "GB"
    TB = "TB"


_UNIT_THRESHOLDS = (
    (KB, StorageUnit.BYTE, 1),
    (MB, StorageUnit.KB, KB),
    (GB, StorageUnit.MB, MB),
    (TB, StorageUnit.GB, GB),
)


class Size(BaseModel):
    """Byte count with a derived human-readable magnitude and unit.

    The normalized fields are a pure function of ``bytes``: the unit is picked
    by powers of 1024 and the magnitude is truncated to 2 decimal places.
    """

    bytes: int = Field(default=0, description="Size in bytes")

    model_config = {"frozen": True}

    @property
    def normalized_unit(self) -> StorageUnit:
        """Unit picked by the magnitude of the byte count."""
        for limit, unit, _ in _UNIT_THRESHOLDS:
            if self.bytes < limit:
                return unit
        return StorageUnit.TB

    @property
    def normalized_value(self) -> float:
        """Byte count expressed in ``normalized_unit``, truncated to 2 decimals."""
        divisor = TB
        for limit, _, unit_divisor in _UNIT_THRESHOLDS:
            if self.bytes < limit:
                divisor = unit_divisor
                break
        return math.trunc(self.bytes / divisor * 100) / 100

    def __str__(self) -> str:
        return f"{self.normalized_value} {self.normalized_unit.value}"


class DiskUsage(BaseModel):
    """Disk usage of the current account."""

    total: Size
    used: Size
    free: Size


class ProgressChangeTaskState(BaseModel):
    """Byte counters reported with a progress notification."""

    total_bytes: Size
    bytes_in_progress: Size


class ProgressChangedEventArgs(BaseModel):
    """Payload of a transfer progress notification."""

    progress_percentage: int
    state: ProgressChangeTaskState


# =============================================================================
# Cloud API Models
# =============================================================================


class SpaceInfo(BaseModel):
    """Response body of the disk space endpoint (values in megabytes)."""

    bytes_total: int = Field(default=0, description="Total space in MB")
    bytes_used: int = Field(default=0, description="Used space in MB")
    overquota: bool = Field(default=False)

    def to_disk_usage(self) -> DiskUsage:
        """Convert the megabyte counters to a DiskUsage in bytes."""
        return DiskUsage(
            total=Size(bytes=self.bytes_total * MB),
            used=Size(bytes=self.bytes_used * MB),
            free=Size(bytes=(self.bytes_total - self.bytes_used) * MB),
        )


class CsrfToken(BaseModel):
    """Body of the CSRF token endpoint."""

    token: str = Field(default="")


class DownloadToken(BaseModel):
    """Body of the one-time download token endpoint."""

    token: str = Field(default="")


class Duration(BaseModel):
    """Duration of a tariff period."""

    days_count: int = Field(default=0)
    months_count: int = Field(default=0)


class CostItem(BaseModel):
    """Price of a tariff for one billing period."""

    id: str = Field(default="")
    cost: float = Field(default=0.0)
    special_cost: float = Field(default=0.0)
    currency: str = Field(default="")
    duration: Duration | None = None
    special_duration: Duration | None = None


class Rate(BaseModel):
    """Tariff information."""

    id: str = Field(default="", description="Unique tariff identifier")
    name: str = Field(default="", description="Display name of the tariff")
    is_active: bool = Field(default=False, alias="active")
    is_available: bool = Field(default=False, alias="available")
    size_bytes: int = Field(
        default=0,
        alias="size",
        description="Extra disk space granted by the tariff",
    )
    cost: list[CostItem] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _default_name(self) -> Rate:
        if not self.name:
            self.name = self.id
        return self

    @property
    def size(self) -> Size:
        return Size(bytes=self.size_bytes)


FREE_TARIFF_ID = "ZERO"


def has_upload_size_limit(rates: list[Rate]) -> bool:
    """Check whether activated tariffs leave the account on the free tier.

    True when every rate is the free tier, including when there are none.
    """
    return all(rate.id == FREE_TARIFF_ID for rate in rates)


class ShardInfo(BaseModel):
    """One shard endpoint."""

    count: int = Field(default=0)
    url: str = Field(default="")


class ShardsList(BaseModel):
    """Shard endpoints by operation category."""

    video: list[ShardInfo] = Field(default_factory=list)
    view_direct: list[ShardInfo] = Field(default_factory=list)
    weblink_view: list[ShardInfo] = Field(default_factory=list)
    weblink_video: list[ShardInfo] = Field(default_factory=list)
    weblink_get: list[ShardInfo] = Field(default_factory=list)
    stock: list[ShardInfo] = Field(default_factory=list)
    weblink_thumbnails: list[ShardInfo] = Field(default_factory=list)
    web: list[ShardInfo] = Field(default_factory=list)
    auth: list[ShardInfo] = Field(default_factory=list)
    view: list[ShardInfo] = Field(default_factory=list)
    get: list[ShardInfo] = Field(default_factory=list)
    upload: list[ShardInfo] = Field(default_factory=list)
    thumbnails: list[ShardInfo] = Field(default_factory=list)

    def first_url(self, category: str) -> str:
        """Get the URL of the first shard for a category.

        Raises:
            ShardNotFoundError: If the category has no shards.
        """
        shards = getattr(self, category.replace("-", "_"), None)
        if not shards or not shards[0].url:
            raise ShardNotFoundError(category)
        return shards[0].url


class Count(BaseModel):
    """Child counters of a folder."""

    folders: int = Field(default=0)
    files: int = Field(default=0)


class Sort(BaseModel):
    """Sort options of a listing."""

    by: str = Field(default="")
    asc: bool = Field(default=True)


class CloudStructureEntry(BaseModel):
    """Raw descriptor of a file or folder as returned by the listing endpoint."""

    count: Count = Field(default_factory=Count)
    tree: str = Field(default="")
    name: str = Field(default="")
    grev: int | str = Field(default="")
    size: int = Field(default=0)
    sort: Sort | None = None
    kind: str = Field(default="")
    rev: int | str = Field(default=0)
    item_type: str = Field(default="", alias="type")
    home: str = Field(default="", description="Full path of the item")
    weblink: str = Field(default="", description="Public link suffix")
    mtime: int = Field(default=0, description="Modification time (UNIX)")
    time: int = Field(default=0)
    virus_scan: str = Field(default="")
    hash: str = Field(default="")
    items: list[CloudStructureEntry] = Field(default_factory=list, alias="list")

    model_config = {"populate_by_name": True}

    @property
    def is_folder(self) -> bool:
        return self.item_type == "folder"

    @property
    def is_file(self) -> bool:
        return self.item_type == "file"


class History(BaseModel):
    """One revision in the modification history of a file."""

    id: int = Field(default=0, alias="uid")
    revision: int = Field(default=0, alias="rev")
    full_path: str = Field(default="", alias="path")
    name: str = Field(default="")
    hash: str = Field(default="")
    last_modified_unix: int = Field(default=0, alias="time")
    size_bytes: int = Field(default=0, alias="size")
    is_current_version: bool = Field(default=False)

    model_config = {"populate_by_name": True}

    @property
    def size(self) -> Size:
        return Size(bytes=self.size_bytes)

    @property
    def last_modified_utc(self) -> datetime:
        return datetime.fromtimestamp(self.last_modified_unix, tz=UTC)


# =============================================================================
# Envelope decoding
# =============================================================================


def decode_envelope(raw: bytes | str, shape: Any) -> Any:
    """Decode a response body into ``shape``.

    Most responses are wrapped as ``{"email": ..., "body": ..., "status": ...}``.
    The ``body`` member is decoded when present; when it is missing, empty or
    does not match, the whole document is decoded directly.

    Raises:
        DecodeError: If the body is not JSON or does not match ``shape``.
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise DecodeError(f"Response is not valid JSON: {e}") from e

    candidates = [data]
    if isinstance(data, dict) and data.get("body") is not None:
        candidates.insert(0, data["body"])

    adapter = TypeAdapter(shape)
    error: ValidationError | None = None
    for candidate in candidates:
        try:
            return adapter.validate_python(candidate)
        except ValidationError as e:
            error = error or e

    raise DecodeError(f"Unexpected response shape: {error}") from error
