"""
Remote source interface for fetching album listings and asset bytes.
"""

from abc import ABC, abstractmethod

from .models import RemoteSnapshot


class RemoteSource(ABC):
    """
    Abstract base class for remote album sources.
    
    A source exposes exactly two capabilities: one listing call per
    collection and one binary fetch per asset. Sources perform a single
    attempt per call; retry and backoff belong to the caller.
    """

    @abstractmethod
    def fetch_snapshot(self, collection_key: str, timeout: float) -> RemoteSnapshot:
        """
        Fetch the full item listing of a collection.
        
        Args:
            collection_key: External collection identifier
            timeout: Seconds allowed for the underlying request(s)
            
        Returns:
            RemoteSnapshot with collection metadata and items
            
        Raises:
            RemoteSourceError (or a subclass) if the fetch fails
        """
        pass

    @abstractmethod
    def fetch_blob(self, locator: str, timeout: float) -> bytes:
        """
        Fetch the bytes of a single asset.
        
        Args:
            locator: Asset locator (usually a URL)
            timeout: Seconds allowed for the request
            
        Returns:
            Raw asset bytes
            
        Raises:
            RateLimitedError on 429/503, RemoteTimeoutError on timeout,
            RemoteSourceError for anything else
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the source name/identifier."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
