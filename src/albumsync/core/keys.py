"""
Key derivation for the content-addressed store.

Both derivations are one-way SHA-256 hashes:
- asset keys: full 64-hex digest of the source locator
- collection ids: first 16 hex characters of the digest of the collection key
"""

import hashlib
import re


ASSET_EXTENSION = ".jpg"
COLLECTION_ID_LENGTH = 16

_ASSET_FILENAME_RE = re.compile(r"^[a-f0-9]{64}\.jpg$")
_ASSET_KEY_RE = re.compile(r"^[a-f0-9]{64}$")
_COLLECTION_KEY_RE = re.compile(r"^[a-zA-Z0-9]{15}$")


def asset_key(locator: str) -> str:
    """
    Derive the asset key for a source locator.

    Identical locators always produce identical keys, which is what makes
    deduplication across collections free.

    Args:
        locator: Canonical remote locator of the asset

    Returns:
        64-character lowercase hex digest
    """
    return hashlib.sha256(locator.encode("utf-8")).hexdigest()


def asset_filename(key: str) -> str:
    """Filename under which an asset key is stored and served."""
    return f"{key}{ASSET_EXTENSION}"


def key_from_filename(filename: str) -> str:
    """Inverse of asset_filename. Raises ValueError for invalid names."""
    if not is_valid_asset_filename(filename):
        raise ValueError(f"Invalid asset filename: {filename}")
    return filename[: -len(ASSET_EXTENSION)]


def is_valid_asset_filename(filename: str) -> bool:
    """Must be 64 lowercase hex characters followed by .jpg."""
    return bool(filename) and bool(_ASSET_FILENAME_RE.match(filename))


def is_valid_asset_key(key: str) -> bool:
    return bool(key) and bool(_ASSET_KEY_RE.match(key))


def collection_id(collection_key: str) -> str:
    """
    Derive the storage directory name for a collection key.

    The mapping cannot be reversed: stored collections are only ever
    identified by this id.
    """
    digest = hashlib.sha256(collection_key.encode("utf-8")).hexdigest()
    return digest[:COLLECTION_ID_LENGTH]


def is_valid_collection_key(collection_key: str) -> bool:
    """Collection keys are 15-character alphanumeric tokens."""
    if not collection_key or not isinstance(collection_key, str):
        return False
    return bool(_COLLECTION_KEY_RE.match(collection_key))


def mask_key(collection_key: str) -> str:
    """Mask a collection key for logging: first 4 and last 2 characters kept."""
    if not collection_key:
        return "***"
    if len(collection_key) <= 6:
        return "***"
    return f"{collection_key[:4]}***{collection_key[-2:]}"
