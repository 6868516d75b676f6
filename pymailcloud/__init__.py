"""Python client for the Cloud Mail.ru storage API."""

from .auth import Account, load_credentials, save_credentials
from .cloud import CloudClient, TransferStream
from .entries import Entry, EntryCore, File, Folder
from .errors import (
    CloudClientError,
    CloudError,
    ConfigError,
    DecodeError,
    ErrorCode,
    LoginError,
    NotAuthorizedError,
    ShardNotFoundError,
    TransferCancelledError,
    TransportError,
)
from .models import (
    DiskUsage,
    History,
    ProgressChangedEventArgs,
    ProgressChangeTaskState,
    Rate,
    Size,
    StorageUnit,
)

__all__ = [
    # Session
    "Account",
    "load_credentials",
    "save_credentials",
    # Cloud
    "CloudClient",
    "Entry",
    "EntryCore",
    "File",
    "Folder",
    "TransferStream",
    # Models
    "DiskUsage",
    "History",
    "ProgressChangeTaskState",
    "ProgressChangedEventArgs",
    "Rate",
    "Size",
    "StorageUnit",
    # Errors
    "CloudClientError",
    "CloudError",
    "ConfigError",
    "DecodeError",
    "ErrorCode",
    "LoginError",
    "NotAuthorizedError",
    "ShardNotFoundError",
    "TransferCancelledError",
    "TransportError",
]
