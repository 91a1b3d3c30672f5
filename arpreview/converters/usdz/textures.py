"""Texture encoding for USDZ packages"""

from io import BytesIO

from PIL import Image


def encode_texture(image: Image.Image, max_size: int = 1024) -> bytes:
    """
    Encode an image as PNG, downscaling so neither side exceeds ``max_size``.

    Palette, greyscale and 16-bit images are converted to RGB/RGBA first;
    AR Quick Look only reliably reads 8-bit RGB(A) PNGs.
    """
    has_alpha = image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )
    converted = image.convert("RGBA" if has_alpha else "RGB")

    if max(converted.size) > max_size:
        converted = converted.copy()
        converted.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    buffer = BytesIO()
    converted.save(buffer, format="PNG")
    return buffer.getvalue()
