"""External collaborators reached over the network."""

from haggle_mcp.clients.listing_fetcher import ListingFetcher, ListingFetchError

__all__ = [
    "ListingFetchError",
    "ListingFetcher",
]
