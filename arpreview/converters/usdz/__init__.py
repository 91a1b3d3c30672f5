"""USDZ export: pxr stage authoring, texture encoding and packaging."""

from .exporter import USDZExporter
from .package import pack_usdz

__all__ = ["USDZExporter", "pack_usdz"]
