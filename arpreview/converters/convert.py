"""
Format conversion utilities

Converts glTF models to USDZ for AR Quick Look: read → parse → export → write.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from arpreview.config import ConversionSettings
from arpreview.converters.gltf import GLTFLoader
from arpreview.converters.usdz import USDZExporter
from arpreview.environment import HostEnvironment
from arpreview.exceptions import (
    ConversionError,
    ConversionTimeoutError,
    ModelExportError,
    ModelParseError,
    ModelReadError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

INPUT_FORMATS = {
    '.glb': 'glb',
    '.gltf': 'gltf',
}

OUTPUT_FORMATS = {
    '.usdz': 'usdz',
    '.usda': 'usda',
}


@dataclass
class ConversionResult:
    input_path: str
    output_path: str
    size: int  # bytes written

    @property
    def size_mb(self) -> float:
        return self.size / 1024 / 1024


def convert(
    input_path: str,
    output_path: str,
    settings: Optional[ConversionSettings] = None,
) -> ConversionResult:
    """
    Convert a model from one format to another.

    Automatically detects input and output formats from file extensions.
    Supports: .glb, .gltf → .usdz (AR Quick Look package), .usda (text layer)

    Args:
        input_path: Path to input file
        output_path: Path to output file
        settings: Export options (default: ConversionSettings())

    Returns:
        ConversionResult with the size of the written file

    Raises:
        FileNotFoundError: If input file doesn't exist
        ValueError: If format is unsupported
        ModelReadError / ModelParseError / ModelExportError: Stage failures
        ConversionTimeoutError: A stage exceeded settings.timeout

    Examples:
        >>> convert("model.glb", "model.usdz")
        >>> convert("scene.gltf", "scene.usda")
    """
    return asyncio.run(convert_async(input_path, output_path, settings))


async def convert_async(
    input_path: str,
    output_path: str,
    settings: Optional[ConversionSettings] = None,
    environment: Optional[HostEnvironment] = None,
) -> ConversionResult:
    """Coroutine version of convert(); use when an event loop is already running"""
    settings = settings or ConversionSettings()

    # Check input file exists
    if not os.path.exists(input_path):
        raise FileNotFoundError(f"Input file not found: {input_path}")

    # Detect formats
    _detect_format(input_path, INPUT_FORMATS)
    output_format = _detect_format(output_path, OUTPUT_FORMATS)

    logger.info(f"Starting conversion: {input_path} -> {output_path}")
    data = _read_input(input_path)

    # Parse into the scene graph
    logger.info("Parsing model...")
    loader = GLTFLoader(environment)
    base_path = os.path.dirname(os.path.abspath(input_path))
    gltf = await _run_stage(loader.parse(data, base_path), "parse", settings.timeout, ModelParseError)
    logger.info("Model loaded. Exporting...")

    # Export scene to the output format
    exporter = USDZExporter(settings)
    if output_format == 'usdz':
        output = await _run_stage(exporter.parse(gltf.scene), "export", settings.timeout, ModelExportError)
    else:
        text = await _run_stage(exporter.parse_usda(gltf.scene), "export", settings.timeout, ModelExportError)
        output = text.encode("utf-8")

    try:
        with open(output_path, 'wb') as f:
            f.write(output)
    except OSError as e:
        raise ModelExportError(f"Could not write {output_path}: {e}") from e

    size = os.path.getsize(output_path)
    logger.info(f"Saved {output_path} ({size / 1024 / 1024:.2f} MB)")
    return ConversionResult(input_path=input_path, output_path=output_path, size=size)


def _detect_format(path: str, formats: dict) -> str:
    """Detect format from file extension"""
    ext = os.path.splitext(path)[1].lower()

    if ext not in formats:
        raise ValueError(
            f"Unsupported file format: {ext or path}. "
            f"Supported: {', '.join(formats)}"
        )

    return formats[ext]


def _read_input(path: str) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise ModelReadError(f"Could not read {path}: {e}") from e


async def _run_stage(awaitable: Awaitable[T], stage: str, timeout: Optional[float], error_type) -> T:
    """
    Await one conversion stage.

    ConversionErrors pass through; anything else is wrapped in ``error_type``.
    On timeout the stage is cancelled.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise ConversionTimeoutError(f"Model {stage} did not finish within {timeout}s") from e
    except ConversionError:
        raise
    except Exception as e:
        raise error_type(f"Model {stage} failed: {e}") from e
