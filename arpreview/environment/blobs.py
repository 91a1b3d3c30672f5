"""
Blob URL registry

Maps synthetic ``blob:nodedata:<id>`` URLs to in-memory bytes so the image
loader can resolve images embedded in a model file the same way it resolves
images on disk.
"""

import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Union

BLOB_URL_PREFIX = "blob:nodedata:"


@dataclass(frozen=True)
class Blob:
    """Raw bytes plus a MIME type"""
    data: bytes
    type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    def read(self) -> bytes:
        return self.data


class BlobRegistry:
    """
    In-memory object URL registry.

    Example:
        >>> registry = BlobRegistry()
        >>> url = registry.create_object_url(Blob(png_bytes, "image/png"))
        >>> registry.get(url).type
        'image/png'
        >>> registry.revoke_object_url(url)
    """

    def __init__(self):
        self._blobs: Dict[str, Blob] = {}

    @staticmethod
    def is_blob_url(url: str) -> bool:
        return isinstance(url, str) and url.startswith(BLOB_URL_PREFIX)

    def create_object_url(self, blob: Union[Blob, bytes], mime_type: str = "") -> str:
        """Register a blob and return its synthetic URL"""
        if not isinstance(blob, Blob):
            blob = Blob(bytes(blob), mime_type)

        url = f"{BLOB_URL_PREFIX}{uuid.uuid4().hex}"
        self._blobs[url] = blob
        return url

    def revoke_object_url(self, url: str) -> None:
        """Forget a URL. Revoking an unknown URL is a no-op."""
        self._blobs.pop(url, None)

    def get(self, url: str) -> Optional[Blob]:
        return self._blobs.get(url)

    def __contains__(self, url: str) -> bool:
        return url in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)
