"""External collaborators consumed by the engine."""

from .listing_directory import (
    HttpListingDirectory,
    ListingDirectory,
    ListingLookupError,
    StaticListingDirectory,
    get_listing_directory,
)

__all__ = [
    "HttpListingDirectory",
    "ListingDirectory",
    "ListingLookupError",
    "StaticListingDirectory",
    "get_listing_directory",
]
