"""Listing owner lookup used by the self-booking check."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Protocol, cast

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class ListingLookupError(RuntimeError):
    """Raised when the listings service cannot answer an owner lookup."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ListingDirectory(Protocol):
    def get_listing_owner(self, listing_id: str) -> Optional[str]:
        """Return the owner (seller) id of a listing, or None if the listing is unknown."""
        ...


class HttpListingDirectory:
    """Resolves listing owners through the listings service REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def get_listing_owner(self, listing_id: str) -> Optional[str]:
        path = f"/listings/{listing_id}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        ) as client:
            try:
                response = client.get(f"{self._base_url}{path}")
                if response.status_code == httpx.codes.NOT_FOUND:
                    return None
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.error("Listing service error %s for %s: %s", status, path, exc.response.text[:500])
                raise ListingLookupError(
                    f"Listing service responded with status {status}", status_code=status
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Listing service request failure for %s: %s", path, str(exc))
                raise ListingLookupError("Failed to reach listing service") from exc

        try:
            payload = cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from listing service for %s: %s", path, response.text[:500])
            raise ListingLookupError("Received malformed JSON from listing service") from exc

        owner = payload.get("userRef") or payload.get("ownerId") or payload.get("owner_id")
        return str(owner) if owner else None


class StaticListingDirectory:
    """In-memory owner table for local runs and tests."""

    def __init__(self, owners: Optional[Mapping[str, str]] = None) -> None:
        self._owners: Dict[str, str] = dict(owners or {})

    def register(self, listing_id: str, owner_id: str) -> None:
        self._owners[listing_id] = owner_id

    def get_listing_owner(self, listing_id: str) -> Optional[str]:
        return self._owners.get(listing_id)


_directory: Optional[ListingDirectory] = None


def get_listing_directory() -> ListingDirectory:
    """Process-wide directory chosen from settings."""
    global _directory
    if _directory is None:
        if settings.listing_service_url:
            _directory = HttpListingDirectory(
                base_url=settings.listing_service_url,
                timeout=settings.listing_service_timeout_seconds,
            )
        else:
            logger.info("[LISTINGS] No listing service configured; using static owner table")
            _directory = StaticListingDirectory(settings.listing_owners)
    return _directory
