"""
Host environment passed to the model loader.

Holds everything the loader would otherwise reach for through process-wide
globals: the blob URL registry, the image decoder, and placeholder images.
"""

import asyncio
from dataclasses import dataclass, field
from io import BytesIO
from typing import Callable

from PIL import Image, UnidentifiedImageError

from arpreview.environment.blobs import Blob, BlobRegistry
from arpreview.exceptions import ImageDecodeError


def decode_image_bytes(data: bytes) -> Image.Image:
    """
    Decode encoded image bytes (PNG, JPEG, WebP, ...) with Pillow.

    Raises:
        ImageDecodeError: If Pillow cannot identify or read the data
    """
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image ({len(data)} bytes): {e}") from e
    return image


@dataclass
class HostEnvironment:
    blobs: BlobRegistry = field(default_factory=BlobRegistry)
    decoder: Callable[[bytes], Image.Image] = decode_image_bytes

    @classmethod
    def create(cls) -> "HostEnvironment":
        return cls()

    def create_object_url(self, blob: Blob) -> str:
        return self.blobs.create_object_url(blob)

    def revoke_object_url(self, url: str) -> None:
        self.blobs.revoke_object_url(url)

    def create_image(self) -> Image.Image:
        """Empty image handed back synchronously while a real decode is pending"""
        return Image.new("RGBA", (0, 0))

    async def decode_image(self, data: bytes) -> Image.Image:
        # Pillow decoding is CPU bound; keep it off the event loop
        return await asyncio.to_thread(self.decoder, data)
