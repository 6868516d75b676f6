"""Exceptions raised by the Cloud Mail.ru client.

Domain failures carry an :class:`ErrorCode` so callers can branch on the kind
of failure instead of the message text. Authorization failures and transport
failures have their own branches of the hierarchy.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Kind of a domain error raised by the cloud client."""

    PATH_NOT_EXISTS = "PathNotExists"
    UPLOADING_SIZE_LIMIT = "UploadingSizeLimit"
    DOWNLOADING_SIZE_LIMIT = "DownloadingSizeLimit"
    DIFFERENT_PARENT_PATHS = "DifferentParentPaths"
    HISTORY_NOT_EXISTS = "HistoryNotExists"
    NOT_SUPPORTED_OPERATION = "NotSupportedOperation"
    PUBLIC_LINK_NOT_EXISTS = "PublicLinkNotExists"


class CloudError(Exception):
    """Base exception for cloud client errors."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.message} Source: {self.source}"
        return self.message


class CloudClientError(CloudError):
    """Raised for domain failures, tagged with an error code."""

    def __init__(
        self, message: str, error_code: ErrorCode, source: str = ""
    ) -> None:
        super().__init__(message, source)
        self.error_code = error_code


class NotAuthorizedError(CloudError):
    """Raised when the session is missing credentials or was rejected."""

    pass


class LoginError(NotAuthorizedError):
    """Raised when the login handshake fails."""

    pass


class ConfigError(CloudError):
    """Raised when credential configuration cannot be loaded or saved."""

    pass


class TransportError(CloudError):
    """Raised for network and decoding failures with no domain meaning."""

    pass


class DecodeError(TransportError):
    """Raised when a response body cannot be decoded."""

    pass


class ShardNotFoundError(TransportError):
    """Raised when the dispatcher has no shard for a required category."""

    def __init__(self, category: str) -> None:
        super().__init__(f"No shards found for category '{category}'", category)
        self.category = category


class TransferCancelledError(TransportError):
    """Raised when a transfer is aborted through the session cancellation."""

    pass
