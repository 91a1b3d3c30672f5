"""
Accessor decoding

Turns glTF accessors into numpy arrays, handling interleaved buffer views
(byteStride), normalized integer attributes and sparse substitution.
"""

from typing import Any, List, Optional

import numpy as np

from arpreview.converters.gltf.fields import get_field, get_item
from arpreview.exceptions import ModelParseError

COMPONENT_DTYPES = {
    5120: np.dtype(np.int8),
    5121: np.dtype(np.uint8),
    5122: np.dtype(np.int16),
    5123: np.dtype(np.uint16),
    5125: np.dtype(np.uint32),
    5126: np.dtype(np.float32),
}

TYPE_SIZES = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}


class AccessorReader:
    """
    Reads accessors and buffer views of one document.

    Args:
        document: pygltflib GLTF2 document
        buffers: Bytes of every document buffer, in order
    """

    def __init__(self, document: Any, buffers: List[bytes]):
        self.document = document
        self.buffers = buffers

    def view_bytes(self, view_index: int) -> bytes:
        view = get_item(self.document, "bufferViews", view_index)
        if view is None:
            raise ModelParseError(f"Buffer view {view_index} does not exist")

        buffer_index = get_field(view, "buffer", 0)
        if not 0 <= buffer_index < len(self.buffers):
            raise ModelParseError(f"Buffer view {view_index} references missing buffer {buffer_index}")

        start = get_field(view, "byteOffset", 0)
        length = get_field(view, "byteLength", 0)
        data = self.buffers[buffer_index]
        if start + length > len(data):
            raise ModelParseError(
                f"Buffer view {view_index} ({start}+{length}) overruns buffer {buffer_index} ({len(data)} bytes)"
            )
        return data[start:start + length]

    def read(self, accessor_index: Optional[int]) -> Optional[np.ndarray]:
        """
        Decode an accessor.

        Returns:
            (count,) array for SCALAR, (count, n) otherwise; normalized
            integer accessors come back as float32. None if the index is None.
        """
        if accessor_index is None:
            return None

        accessor = get_item(self.document, "accessors", accessor_index)
        if accessor is None:
            raise ModelParseError(f"Accessor {accessor_index} does not exist")

        component_type = get_field(accessor, "componentType")
        if component_type not in COMPONENT_DTYPES:
            raise ModelParseError(f"Accessor {accessor_index} has unknown componentType {component_type}")
        accessor_type = get_field(accessor, "type", "SCALAR")
        if accessor_type not in TYPE_SIZES:
            raise ModelParseError(f"Accessor {accessor_index} has unknown type {accessor_type}")

        dtype = COMPONENT_DTYPES[component_type]
        width = TYPE_SIZES[accessor_type]
        count = get_field(accessor, "count", 0)

        view_index = get_field(accessor, "bufferView")
        if view_index is None:
            # No buffer view: all zeros unless sparse says otherwise
            array = np.zeros((count, width), dtype=dtype)
        else:
            view = get_item(self.document, "bufferViews", view_index)
            stride = get_field(view, "byteStride")
            array = self._read_elements(
                self.view_bytes(view_index),
                get_field(accessor, "byteOffset", 0),
                dtype,
                width,
                count,
                stride,
            )

        sparse = get_field(accessor, "sparse")
        if sparse is not None:
            array = self._apply_sparse(array, sparse, dtype, width)

        if get_field(accessor, "normalized", False) and dtype.kind in "iu":
            array = _normalize(array, dtype)

        if width == 1:
            return array.reshape(count)
        return array

    def _read_elements(self, data, offset, dtype, width, count, stride) -> np.ndarray:
        element_size = dtype.itemsize * width
        if count == 0:
            return np.zeros((0, width), dtype=dtype)

        if not stride or stride == element_size:
            needed = offset + element_size * count
            if needed > len(data):
                raise ModelParseError(f"Accessor data overruns its buffer view ({needed} > {len(data)} bytes)")
            return np.frombuffer(data, dtype=dtype, count=count * width, offset=offset).reshape(count, width).copy()

        needed = offset + stride * (count - 1) + element_size
        if needed > len(data):
            raise ModelParseError(f"Interleaved accessor overruns its buffer view ({needed} > {len(data)} bytes)")
        interleaved = np.ndarray(
            shape=(count, width),
            dtype=dtype,
            buffer=data,
            offset=offset,
            strides=(stride, dtype.itemsize),
        )
        return interleaved.copy()

    def _apply_sparse(self, array, sparse, dtype, width) -> np.ndarray:
        sparse_count = get_field(sparse, "count", 0)
        indices_info = get_field(sparse, "indices")
        values_info = get_field(sparse, "values")
        if not sparse_count or indices_info is None or values_info is None:
            return array

        index_dtype = COMPONENT_DTYPES.get(get_field(indices_info, "componentType"))
        if index_dtype is None:
            raise ModelParseError("Sparse accessor has an invalid index componentType")

        indices = self._read_elements(
            self.view_bytes(get_field(indices_info, "bufferView")),
            get_field(indices_info, "byteOffset", 0),
            index_dtype, 1, sparse_count, None,
        ).reshape(sparse_count)
        values = self._read_elements(
            self.view_bytes(get_field(values_info, "bufferView")),
            get_field(values_info, "byteOffset", 0),
            dtype, width, sparse_count, None,
        )

        if len(indices) and indices.max() >= len(array):
            raise ModelParseError("Sparse accessor index out of range")

        array = array.copy()
        array[indices.astype(np.int64)] = values
        return array


def _normalize(array: np.ndarray, dtype: np.dtype) -> np.ndarray:
    info = np.iinfo(dtype)
    result = array.astype(np.float32) / float(info.max)
    if dtype.kind == "i":
        result = np.maximum(result, -1.0)
    return result
