"""Host environment for the model loader: blob URLs, image decoding and loading."""

from .blobs import BLOB_URL_PREFIX, Blob, BlobRegistry
from .host import HostEnvironment, decode_image_bytes
from .image_loader import ImageLoader
from .resolvers import BlobImageResolver, ImageResolver, PathImageResolver

__all__ = [
    "BLOB_URL_PREFIX",
    "Blob",
    "BlobRegistry",
    "HostEnvironment",
    "decode_image_bytes",
    "ImageLoader",
    "ImageResolver",
    "BlobImageResolver",
    "PathImageResolver",
]
