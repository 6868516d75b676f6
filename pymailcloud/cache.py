"""Freshness tracking for folder listings.

A folder keeps the last fetched listing of its children. There is no push
channel for remote changes, so a change in the account's used disk space is
taken as the hint that a listing went stale. This is a heuristic: a change
made between the usage probe and the listing fetch can still be missed.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

from .models import CloudStructureEntry

# Minimum age in seconds before disk usage is probed for changes
FRESHNESS_WINDOW = 1.0


class StalenessPolicy(Protocol):
    def __call__(
        self,
        *,
        has_listing: bool,
        last_fetch: float | None,
        now: float,
        usage_changed: Callable[[], bool],
        forced: bool,
    ) -> bool: ...


def default_staleness_policy(
    *,
    has_listing: bool,
    last_fetch: float | None,
    now: float,
    usage_changed: Callable[[], bool],
    forced: bool,
) -> bool:
    """Decide whether a listing must be fetched again.

    Args:
        has_listing: Whether a listing was ever fetched.
        last_fetch: Clock value of the last fetch.
        now: Current clock value.
        usage_changed: Probe reporting whether disk usage changed since the
            last fetch. Only called once the freshness window has passed.
        forced: Whether the caller requires a fresh listing.
    """
    if not has_listing or last_fetch is None:
        return True
    if now - last_fetch > FRESHNESS_WINDOW and usage_changed():
        return True
    return forced


class TreeCache:
    """Cached one-level listing of a folder.

    Attributes:
        items: Raw child descriptors of the last listing, or None if the
            folder was never listed.
        last_listed_at: Clock value of the last fetch.
        last_known_used_bytes: Used disk space recorded by the last probe.
    """

    def __init__(
        self,
        items: list[CloudStructureEntry] | None = None,
        *,
        last_known_used_bytes: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        policy: StalenessPolicy = default_staleness_policy,
    ) -> None:
        self.items = items
        self.last_known_used_bytes = last_known_used_bytes
        self.clock = clock
        self.policy = policy
        self.last_listed_at: float | None = clock() if items is not None else None

    def needs_refresh(
        self, probe_used_bytes: Callable[[], int | None], forced: bool = False
    ) -> bool:
        """Evaluate the staleness policy.

        Args:
            probe_used_bytes: Returns the account's used bytes, or None if the
                probe failed. A successful probe is recorded.
            forced: Whether the caller requires a fresh listing.
        """

        def usage_changed() -> bool:
            used = probe_used_bytes()
            if used is None:
                return False
            changed = used != self.last_known_used_bytes
            self.last_known_used_bytes = used
            return changed

        return self.policy(
            has_listing=self.items is not None,
            last_fetch=self.last_listed_at,
            now=self.clock(),
            usage_changed=usage_changed,
            forced=forced,
        )

    def store(
        self, items: list[CloudStructureEntry], used_bytes: int | None = None
    ) -> None:
        """Replace the cached listing with a freshly fetched one."""
        self.items = items
        self.last_listed_at = self.clock()
        if used_bytes is not None:
            self.last_known_used_bytes = used_bytes
