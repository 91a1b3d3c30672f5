"""
Image resolvers

An image URL is turned into encoded bytes by the first resolver that
matches it. Blob URLs resolve by reference id through the registry;
everything else resolves by path (filesystem paths, file:// URLs, data: URIs).
"""

import base64
import os
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import unquote, unquote_to_bytes, urlparse

from arpreview.environment.blobs import BlobRegistry
from arpreview.exceptions import BlobNotFoundError, ImageLoadError


class ImageResolver(ABC):

    @abstractmethod
    def matches(self, url: str) -> bool:
        ...

    @abstractmethod
    def resolve(self, url: str) -> bytes:
        """Return the encoded image bytes behind ``url``"""
        ...


class BlobImageResolver(ImageResolver):
    """Resolves ``blob:nodedata:`` URLs through a BlobRegistry"""

    def __init__(self, registry: BlobRegistry):
        self.registry = registry

    def matches(self, url: str) -> bool:
        return self.registry.is_blob_url(url)

    def resolve(self, url: str) -> bytes:
        blob = self.registry.get(url)
        if blob is None:
            raise BlobNotFoundError(f"Blob not found: {url}")
        return blob.read()


class PathImageResolver(ImageResolver):
    """
    Resolves data: URIs, file:// URLs and filesystem paths.

    Relative paths are resolved against ``base_path`` when one is given.
    """

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = base_path

    def matches(self, url: str) -> bool:
        return isinstance(url, str) and bool(url)

    def resolve(self, url: str) -> bytes:
        if url.startswith("data:"):
            return _decode_data_uri(url)

        parsed = urlparse(url)
        if parsed.scheme == "file":
            path = unquote(parsed.path)
        elif not parsed.scheme or len(parsed.scheme) == 1:
            # Single-letter schemes are Windows drive letters
            path = unquote(url)
        else:
            raise ImageLoadError(f"Unsupported image URL scheme '{parsed.scheme}': {url}")

        if self.base_path and not os.path.isabs(path):
            path = os.path.join(self.base_path, path)

        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise ImageLoadError(f"Could not read image {path}: {e}") from e


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise ImageLoadError("Malformed data URI (missing ',')")

    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (ValueError, TypeError) as e:
            raise ImageLoadError(f"Malformed base64 data URI: {e}") from e

    return unquote_to_bytes(payload)
