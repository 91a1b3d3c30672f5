"""Model converters for arpreview"""

from arpreview.converters.convert import ConversionResult, convert, convert_async
from arpreview.converters.gltf import GLTFLoader, GLTFResult
from arpreview.converters.usdz import USDZExporter, pack_usdz

__all__ = [
    "ConversionResult",
    "convert",
    "convert_async",
    "GLTFLoader",
    "GLTFResult",
    "USDZExporter",
    "pack_usdz",
]
