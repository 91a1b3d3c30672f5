"""
Shared fixtures: hand-assembled glTF/GLB models with an embedded texture.
"""

import base64
import json
import struct
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

GLB_JSON_CHUNK = 0x4E4F534A
GLB_BIN_CHUNK = 0x004E4942


def make_png(color=(255, 0, 0, 255), size=(4, 4)) -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _pad(data: bytes, fill: bytes = b"\x00") -> bytes:
    return data + fill * (-len(data) % 4)


def build_model(texture=None, extensions_required=None, image_uri=None):
    """
    A single textured triangle under a translated parent node.

    Returns:
        (gltf dict, binary buffer bytes)
    """
    positions = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32)
    normals = np.array([[0, 0, 1]] * 3, dtype=np.float32)
    uvs = np.array([[0, 0], [1, 0], [0, 1]], dtype=np.float32)
    indices = np.array([0, 1, 2], dtype=np.uint16)

    chunks = [positions.tobytes(), normals.tobytes(), uvs.tobytes(), _pad(indices.tobytes())]
    if texture is not None:
        chunks.append(_pad(texture))

    views = []
    offset = 0
    for chunk in chunks:
        views.append({"buffer": 0, "byteOffset": offset, "byteLength": len(chunk)})
        offset += len(chunk)
    views[3]["byteLength"] = indices.nbytes
    binary = b"".join(chunks)

    gltf = {
        "asset": {"version": "2.0", "generator": "arpreview tests"},
        "scene": 0,
        "scenes": [{"name": "TestScene", "nodes": [0]}],
        "nodes": [
            {"name": "Root", "translation": [1.0, 2.0, 3.0], "children": [1]},
            {"name": "Triangle", "mesh": 0},
        ],
        "meshes": [{
            "name": "Tri",
            "primitives": [{
                "attributes": {"POSITION": 0, "NORMAL": 1, "TEXCOORD_0": 2},
                "indices": 3,
                "material": 0,
            }],
        }],
        "materials": [{
            "name": "Red",
            "pbrMetallicRoughness": {"metallicFactor": 0.0, "roughnessFactor": 0.5},
        }],
        "accessors": [
            {"bufferView": 0, "componentType": 5126, "count": 3, "type": "VEC3",
             "min": [0, 0, 0], "max": [1, 1, 0]},
            {"bufferView": 1, "componentType": 5126, "count": 3, "type": "VEC3"},
            {"bufferView": 2, "componentType": 5126, "count": 3, "type": "VEC2"},
            {"bufferView": 3, "componentType": 5123, "count": 3, "type": "SCALAR"},
        ],
        "bufferViews": views,
        "buffers": [{"byteLength": len(binary)}],
    }

    if texture is not None or image_uri is not None:
        image = {"uri": image_uri} if image_uri is not None else {"bufferView": 4, "mimeType": "image/png"}
        gltf["images"] = [image]
        gltf["samplers"] = [{"wrapS": 33071, "wrapT": 10497}]
        gltf["textures"] = [{"source": 0, "sampler": 0}]
        gltf["materials"][0]["pbrMetallicRoughness"]["baseColorTexture"] = {"index": 0}

    if extensions_required:
        gltf["extensionsUsed"] = list(extensions_required)
        gltf["extensionsRequired"] = list(extensions_required)

    return gltf, binary


def to_glb(gltf: dict, binary: bytes) -> bytes:
    json_chunk = _pad(json.dumps(gltf).encode("utf-8"), b" ")
    bin_chunk = _pad(binary)
    total = 12 + 8 + len(json_chunk) + 8 + len(bin_chunk)
    return b"".join([
        struct.pack("<4sII", b"glTF", 2, total),
        struct.pack("<II", len(json_chunk), GLB_JSON_CHUNK),
        json_chunk,
        struct.pack("<II", len(bin_chunk), GLB_BIN_CHUNK),
        bin_chunk,
    ])


def to_gltf_json(gltf: dict, binary: bytes) -> bytes:
    """Same model as a .gltf document with the buffer inlined as a data URI"""
    document = json.loads(json.dumps(gltf))
    document["buffers"] = [{
        "byteLength": len(binary),
        "uri": "data:application/octet-stream;base64," + base64.b64encode(binary).decode("ascii"),
    }]
    return json.dumps(document).encode("utf-8")


def build_glb(texture=None, extensions_required=None) -> bytes:
    return to_glb(*build_model(texture=texture, extensions_required=extensions_required))


@pytest.fixture
def red_png():
    return make_png()


@pytest.fixture
def glb_bytes(red_png):
    return build_glb(texture=red_png)


@pytest.fixture
def glb_path(tmp_path, glb_bytes):
    path = tmp_path / "model.glb"
    path.write_bytes(glb_bytes)
    return path
