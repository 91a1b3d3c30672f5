"""
GLTF field access helpers

pygltflib decodes most of the document into dataclasses, but extensions,
extras and some nested objects stay plain dicts. These helpers read either
shape the same way.
"""

from typing import Any, Optional


def get_field(obj: Any, field_name: str, default: Any = None) -> Any:
    """
    Get a field from a pygltflib object or a dict.

    None values count as missing, so defaults apply to fields pygltflib
    initialises to None.
    """
    if obj is None:
        return default

    if isinstance(obj, dict):
        value = obj.get(field_name)
    else:
        value = getattr(obj, field_name, None)

    return default if value is None else value


def get_list(obj: Any, field_name: str) -> list:
    value = get_field(obj, field_name, [])
    return value if isinstance(value, list) else []


def get_item(obj: Any, field_name: str, index: Optional[int]) -> Any:
    """Return ``obj.<field_name>[index]``, or None for a missing/out-of-range index"""
    if index is None:
        return None
    items = get_list(obj, field_name)
    if 0 <= index < len(items):
        return items[index]
    return None


def get_extension(obj: Any, name: str) -> Optional[dict]:
    extensions = get_field(obj, "extensions", {})
    if isinstance(extensions, dict):
        return extensions.get(name)
    return None
