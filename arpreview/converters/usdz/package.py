"""
USDZ packaging

A USDZ file is an uncompressed zip whose entries start on 64-byte
boundaries, with the root layer as the first entry. Sdf.ZipFileWriter
handles the layout; this module stages the contents on disk for it.
"""

import os
import tempfile
from typing import Dict

from pxr import Sdf

LAYER_EXTENSIONS = (".usda", ".usdc", ".usd")


def pack_usdz(files: Dict[str, bytes]) -> bytes:
    """
    Build a USDZ archive.

    Args:
        files: Package path -> contents, in package order. The first entry
            must be the root layer (.usda/.usdc).

    Returns:
        USDZ bytes
    """
    if not files:
        raise ValueError("A USDZ package needs at least a root layer")
    first = next(iter(files))
    if not first.endswith(LAYER_EXTENSIONS):
        raise ValueError(f"First USDZ entry must be a USD layer, got {first}")

    with tempfile.TemporaryDirectory() as tmpdir:
        package_path = os.path.join(tmpdir, "package.usdz")
        contents_dir = os.path.join(tmpdir, "contents")

        with Sdf.ZipFileWriter.CreateNew(package_path) as writer:
            for name, data in files.items():
                local_path = os.path.join(contents_dir, *name.split("/"))
                os.makedirs(os.path.dirname(local_path), exist_ok=True)
                with open(local_path, 'wb') as f:
                    f.write(data)
                writer.AddFile(local_path, name)

        with open(package_path, 'rb') as f:
            return f.read()
