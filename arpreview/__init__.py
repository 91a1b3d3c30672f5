"""
arpreview - Local tooling for previewing an AR web demo on mobile devices

Serves the demo over HTTPS with a self-signed certificate, and converts
GLB/glTF models to USDZ for iOS AR Quick Look.
"""

from arpreview.converters.convert import ConversionResult, convert
from arpreview.server import create_server

__version__ = "0.1.0"
__all__ = ["ConversionResult", "convert", "create_server"]
