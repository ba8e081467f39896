"""
Remote source for public shared photo streams.

Listing protocol:
1. The partition host is derived from the album token (base-62 digits).
2. POST {base}/webstream returns album metadata and photos with their
   derivative checksums. A 330 response names the host that actually
   serves the album (X-Apple-MMe-Host) and the call is repeated there.
3. POST {base}/webasseturls resolves photo guids to derivative URLs,
   in batches.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ...core.exceptions import RateLimitedError, RemoteSourceError, RemoteTimeoutError
from ...core.keys import mask_key
from ...core.models import (
    AssetRef, CollectionMeta, DerivedVariant, RemoteSnapshot, parse_timestamp,
)
from ...core.source import RemoteSource


logger = logging.getLogger(__name__)


BASE_62_CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ASSET_URL_BATCH_SIZE = 25
REDIRECT_STATUS = 330
RATE_LIMIT_STATUSES = (429, 503)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def base62_to_int(text: str) -> int:
    value = 0
    for char in text:
        digit = BASE_62_CHARSET.find(char)
        if digit < 0:
            raise ValueError(f"Invalid base-62 character: {char!r}")
        value = value * 62 + digit
    return value


def partition_for(token: str) -> int:
    """Server partition encoded in the album token."""
    if len(token) < 3:
        raise ValueError("Album token too short")
    if token[0] == "A":
        return base62_to_int(token[1])
    return base62_to_int(token[1:3])


def base_url_for(token: str, host: Optional[str] = None) -> str:
    if host is None:
        host = f"p{partition_for(token):02d}-sharedstreams.icloud.com"
    return f"https://{host}/{token}/sharedstreams"


class SharedAlbumSource(RemoteSource):
    """
    Shared-album source backed by requests.

    Each call makes a single attempt; retries belong to the orchestrator.
    """

    def __init__(
        self,
        name: str = "shared_album",
        user_agent: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the source.

        Args:
            name: Source name
            user_agent: User-Agent header sent with every request
            timeout: Default timeout when callers pass none
            session: Pre-built requests.Session (injectable for tests)
        """
        self.name = name
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.user_agent})

    # =========================================================================
    # Listing
    # =========================================================================

    def fetch_snapshot(self, collection_key: str, timeout: Optional[float] = None) -> RemoteSnapshot:
        timeout = timeout or self.timeout
        deadline = time.monotonic() + timeout
        masked = mask_key(collection_key)

        try:
            base_url = base_url_for(collection_key)
        except ValueError as e:
            raise RemoteSourceError(f"Invalid album token: {e}", source=self.name)

        logger.info(f"Fetching shared album {masked}", extra={"collection": masked})

        stream = self._post_json(f"{base_url}/webstream", {"streamCtag": None}, deadline)
        if stream.get("_redirect_host"):
            host = stream["_redirect_host"]
            logger.debug(f"Album {masked} served from {host}")
            base_url = base_url_for(collection_key, host)
            stream = self._post_json(f"{base_url}/webstream", {"streamCtag": None}, deadline)
            if stream.get("_redirect_host"):
                raise RemoteSourceError("Repeated host redirect", source=self.name)

        photos = stream.get("photos")
        if not isinstance(photos, list):
            raise RemoteSourceError("Response has no photo list", source=self.name)

        guids = [p.get("photoGuid") for p in photos if p.get("photoGuid")]
        urls = self._resolve_asset_urls(base_url, guids, deadline)

        items = [self._parse_photo(photo, urls) for photo in photos]
        meta = CollectionMeta(
            name=stream.get("streamName") or "Untitled Album",
            owner_first_name=stream.get("userFirstName") or "",
            owner_last_name=stream.get("userLastName") or "",
            ctag=stream.get("streamCtag") or "",
            items_returned=int(stream.get("itemsReturned") or len(items)),
        )

        logger.info(
            f"Fetched album {masked}: '{meta.name}' with {len(items)} items",
            extra={"collection": masked},
        )
        return RemoteSnapshot(collection_meta=meta, items=items)

    def _resolve_asset_urls(
        self, base_url: str, guids: List[str], deadline: float
    ) -> Dict[str, str]:
        """Map derivative checksum to download URL."""
        urls: Dict[str, str] = {}
        for start in range(0, len(guids), ASSET_URL_BATCH_SIZE):
            batch = guids[start:start + ASSET_URL_BATCH_SIZE]
            payload = self._post_json(f"{base_url}/webasseturls", {"photoGuids": batch}, deadline)
            for checksum, location in (payload.get("items") or {}).items():
                url_location = location.get("url_location")
                url_path = location.get("url_path")
                if url_location and url_path:
                    urls[checksum] = f"https://{url_location}{url_path}"
        return urls

    def _parse_photo(self, photo: Dict[str, Any], urls: Dict[str, str]) -> AssetRef:
        variants = []
        for label, derivative in (photo.get("derivatives") or {}).items():
            checksum = derivative.get("checksum") or ""
            variants.append(DerivedVariant(
                label=str(label),
                url=urls.get(checksum, ""),
                checksum=checksum,
                file_size=int(derivative.get("fileSize") or 0),
                width=int(derivative.get("width") or 0),
                height=int(derivative.get("height") or 0),
            ))

        with_url = [v for v in variants if v.url]
        locator = max(with_url, key=lambda v: v.resolution).url if with_url else ""

        try:
            created_at = parse_timestamp(photo.get("dateCreated"))
        except ValueError:
            created_at = None

        return AssetRef(
            id=photo.get("photoGuid") or "",
            source_locator=locator,
            derived_variants=tuple(variants),
            created_at=created_at,
            caption=photo.get("caption") or None,
        )

    def _post_json(self, url: str, body: Dict[str, Any], deadline: float) -> Dict[str, Any]:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RemoteTimeoutError("Album fetch deadline exceeded", source=self.name)

        try:
            response = self.session.post(url, json=body, timeout=remaining)
        except requests.exceptions.Timeout as e:
            raise RemoteTimeoutError(f"Request timed out: {e}", source=self.name)
        except requests.exceptions.RequestException as e:
            raise RemoteSourceError(f"Request failed: {e}", source=self.name)

        if response.status_code == REDIRECT_STATUS:
            try:
                host = response.json().get("X-Apple-MMe-Host")
            except ValueError:
                host = None
            if not host:
                raise RemoteSourceError(
                    "Redirect without host", source=self.name, status_code=REDIRECT_STATUS
                )
            return {"_redirect_host": host}

        self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteSourceError(
                f"Invalid JSON response: {e}", source=self.name, status_code=response.status_code
            )
        if not isinstance(payload, dict):
            raise RemoteSourceError("Unexpected response shape", source=self.name)
        return payload

    # =========================================================================
    # Assets
    # =========================================================================

    def fetch_blob(self, locator: str, timeout: Optional[float] = None) -> bytes:
        timeout = timeout or self.timeout
        try:
            response = self.session.get(locator, timeout=timeout, allow_redirects=True)
        except requests.exceptions.Timeout as e:
            raise RemoteTimeoutError(f"Download timed out: {e}", source=self.name)
        except requests.exceptions.RequestException as e:
            raise RemoteSourceError(f"Download failed: {e}", source=self.name)

        self._raise_for_status(response)
        if not response.content:
            raise RemoteSourceError(
                "Empty response body", source=self.name, status_code=response.status_code
            )
        return response.content

    def _raise_for_status(self, response: "requests.Response") -> None:
        status = response.status_code
        if status in RATE_LIMIT_STATUSES:
            raise RateLimitedError(
                f"Rate limited or unavailable (HTTP {status})",
                source=self.name,
                status_code=status,
            )
        if status != 200:
            raise RemoteSourceError(
                f"Unexpected status HTTP {status}", source=self.name, status_code=status
            )

    def get_name(self) -> str:
        return self.name

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()
