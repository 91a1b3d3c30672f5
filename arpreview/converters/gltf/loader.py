"""
GLTF/GLB loader

Parses a glTF 2.0 document with pygltflib and builds the arpreview scene
graph. Embedded images are handed to the image loader as blob URLs
registered in the host environment, exactly like external images are handed
over as paths, so both go through the same resolve-and-decode pipeline.
"""

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional

import numpy as np
from pygltflib import GLTF2

from arpreview.converters.gltf.accessors import AccessorReader
from arpreview.converters.gltf.fields import get_extension, get_field, get_item, get_list
from arpreview.converters.scene import (
    Material,
    Mesh,
    Node,
    Primitive,
    Scene,
    Texture,
    TextureSlot,
)
from arpreview.environment import Blob, HostEnvironment, ImageLoader
from arpreview.exceptions import ImageLoadError, ModelParseError

logger = logging.getLogger(__name__)

GLB_MAGIC = b"glTF"
TRIANGLES = 4

UNSUPPORTED_EXTENSIONS = {
    "KHR_draco_mesh_compression": "Draco-compressed meshes are not supported; export the model without Draco",
    "EXT_meshopt_compression": "meshopt-compressed buffers are not supported; export the model without meshopt",
}

IMPLEMENTED_EXTENSIONS = {
    "KHR_mesh_quantization",
    "KHR_materials_emissive_strength",
    "EXT_texture_webp",
}

WRAP_MODES = {
    10497: "repeat",
    33071: "clamp",
    33648: "mirror",
}


@dataclass
class GLTFResult:
    scene: Scene
    scenes: List[Scene] = field(default_factory=list)
    asset: Dict[str, Any] = field(default_factory=dict)


class GLTFLoader:
    """
    Load glTF 2.0 models (binary .glb or JSON .gltf) into a Scene.

    Args:
        environment: Host environment holding the blob registry and image
            decoder. A fresh one is created when omitted.

    Example:
        >>> loader = GLTFLoader()
        >>> result = await loader.parse(glb_bytes)
        >>> [node.name for node in result.scene.traverse()]
    """

    def __init__(self, environment: Optional[HostEnvironment] = None):
        self.environment = environment or HostEnvironment.create()

    async def parse(self, data: bytes, path: str = "") -> GLTFResult:
        """
        Parse model bytes.

        Args:
            data: Whole file contents
            path: Directory that relative buffer/image URIs resolve against

        Raises:
            ModelParseError: Malformed data, unsupported extensions, or an
                image that cannot be resolved/decoded
        """
        document, binary = _read_document(data)
        _check_extensions(document)

        buffers = _load_buffers(document, binary, path)
        reader = AccessorReader(document, buffers)
        image_loader = ImageLoader(self.environment, base_path=path or None)

        textures = await self._load_textures(document, reader, image_loader)
        materials = [
            _build_material(material, textures, index)
            for index, material in enumerate(get_list(document, "materials"))
        ]
        default_material = Material(name="Default")
        meshes: Dict[int, Mesh] = {}

        def mesh_for(index: int) -> Optional[Mesh]:
            if index not in meshes:
                meshes[index] = _build_mesh(document, reader, index, materials, default_material)
            return meshes[index]

        scenes = []
        for scene_index, gltf_scene in enumerate(get_list(document, "scenes")):
            roots = [
                _build_node(document, node_index, mesh_for, set())
                for node_index in get_list(gltf_scene, "nodes")
            ]
            name = get_field(gltf_scene, "name", f"Scene_{scene_index}")
            scenes.append(Scene(name=name, nodes=roots))

        if scenes:
            default_index = get_field(document, "scene", 0)
            scene = scenes[default_index] if 0 <= default_index < len(scenes) else scenes[0]
        else:
            roots = [
                _build_node(document, node_index, mesh_for, set())
                for node_index in _root_nodes(document)
            ]
            scene = Scene(nodes=roots)
            scenes = [scene]

        asset = get_field(document, "asset")
        asset_info = {
            "version": get_field(asset, "version", "2.0"),
            "generator": get_field(asset, "generator"),
        }

        logger.info(
            f"Parsed model: {sum(1 for _ in scene.traverse())} nodes, "
            f"{len(meshes)} meshes, {len(materials)} materials, {len(textures)} textures"
        )
        return GLTFResult(scene=scene, scenes=scenes, asset=asset_info)

    async def _load_textures(self, document, reader, image_loader) -> List[Optional[Texture]]:
        """Load every texture, decoding each source image once"""
        images: Dict[int, Any] = {}
        textures: List[Optional[Texture]] = []

        for index, gltf_texture in enumerate(get_list(document, "textures")):
            source = get_field(gltf_texture, "source")
            if source is None:
                webp = get_extension(gltf_texture, "EXT_texture_webp")
                source = webp.get("source") if webp else None
            if source is None:
                logger.warning(f"Texture {index} has no image source, skipping")
                textures.append(None)
                continue

            if source not in images:
                images[source] = await self._load_image(document, reader, image_loader, source)

            sampler = get_item(document, "samplers", get_field(gltf_texture, "sampler"))
            gltf_image = get_item(document, "images", source)
            textures.append(Texture(
                image=images[source],
                name=get_field(gltf_texture, "name") or get_field(gltf_image, "name", f"Texture_{index}"),
                wrap_s=WRAP_MODES.get(get_field(sampler, "wrapS", 10497), "repeat"),
                wrap_t=WRAP_MODES.get(get_field(sampler, "wrapT", 10497), "repeat"),
            ))

        return textures

    async def _load_image(self, document, reader, image_loader, index: int):
        gltf_image = get_item(document, "images", index)
        if gltf_image is None:
            raise ModelParseError(f"Image {index} does not exist")

        view_index = get_field(gltf_image, "bufferView")
        try:
            if view_index is not None:
                blob = Blob(reader.view_bytes(view_index), get_field(gltf_image, "mimeType", ""))
                url = self.environment.create_object_url(blob)
                try:
                    return await image_loader.load_async(url)
                finally:
                    self.environment.revoke_object_url(url)

            uri = get_field(gltf_image, "uri")
            if not uri:
                raise ModelParseError(f"Image {index} has neither bufferView nor uri")
            return await image_loader.load_async(uri)
        except ImageLoadError as e:
            raise ModelParseError(f"Could not load image {index}: {e}") from e


def _read_document(data: bytes):
    """Return (pygltflib document, GLB binary chunk or None)"""
    if data[:4] == GLB_MAGIC:
        try:
            document = GLTF2.load_binary_from_file_object(BytesIO(data))
        except Exception as e:
            raise ModelParseError(f"Malformed GLB container: {e}") from e
        if document is None:
            raise ModelParseError("Malformed GLB container")
        return document, document.binary_blob()

    try:
        text = data.decode("utf-8-sig")
        raw = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise ModelParseError(f"Not a GLB file or glTF JSON document: {e}") from e

    if not isinstance(raw, dict) or "asset" not in raw:
        raise ModelParseError("Not a glTF document (missing 'asset')")

    try:
        document = GLTF2.from_json(text, infer_missing=True)
    except Exception as e:
        raise ModelParseError(f"Malformed glTF document: {e}") from e
    return document, None


def _check_extensions(document) -> None:
    required = get_list(document, "extensionsRequired")
    for name in required:
        if name in UNSUPPORTED_EXTENSIONS:
            raise ModelParseError(UNSUPPORTED_EXTENSIONS[name])
    for name in required:
        if name in IMPLEMENTED_EXTENSIONS:
            continue
        logger.warning(f"Required extension {name} is not implemented; output may be incomplete")


def _load_buffers(document, binary: Optional[bytes], path: str) -> List[bytes]:
    buffers = []
    for index, buffer in enumerate(get_list(document, "buffers")):
        uri = get_field(buffer, "uri")
        if uri is None:
            if index != 0 or binary is None:
                raise ModelParseError(f"Buffer {index} has no uri and there is no GLB binary chunk")
            buffers.append(bytes(binary))
        elif uri.startswith("data:"):
            header, _, payload = uri.partition(",")
            if not header.endswith(";base64"):
                raise ModelParseError(f"Buffer {index} data URI is not base64")
            buffers.append(base64.b64decode(payload))
        else:
            buffer_path = os.path.join(path, uri) if path else uri
            try:
                with open(buffer_path, 'rb') as f:
                    buffers.append(f.read())
            except OSError as e:
                raise ModelParseError(f"Could not read buffer {index} ({buffer_path}): {e}") from e
    return buffers


def _texture_slot(info, textures, scale_field: Optional[str] = None) -> Optional[TextureSlot]:
    if info is None:
        return None
    index = get_field(info, "index")
    texture = textures[index] if index is not None and 0 <= index < len(textures) else None
    if texture is None:
        return None
    slot = TextureSlot(texture=texture, tex_coord=get_field(info, "texCoord", 0))
    if scale_field:
        slot.scale = float(get_field(info, scale_field, 1.0))
    return slot


def _build_material(gltf_material, textures, index: int) -> Material:
    pbr = get_field(gltf_material, "pbrMetallicRoughness")
    base_color = tuple(float(c) for c in get_field(pbr, "baseColorFactor", [1.0, 1.0, 1.0, 1.0]))
    emissive = tuple(float(c) for c in get_field(gltf_material, "emissiveFactor", [0.0, 0.0, 0.0]))

    strength = get_extension(gltf_material, "KHR_materials_emissive_strength")
    if strength:
        factor = float(strength.get("emissiveStrength", 1.0))
        emissive = tuple(c * factor for c in emissive)

    return Material(
        name=get_field(gltf_material, "name", f"Material_{index}"),
        base_color=base_color,
        base_color_texture=_texture_slot(get_field(pbr, "baseColorTexture"), textures),
        metallic=float(get_field(pbr, "metallicFactor", 1.0)),
        roughness=float(get_field(pbr, "roughnessFactor", 1.0)),
        metallic_roughness_texture=_texture_slot(get_field(pbr, "metallicRoughnessTexture"), textures),
        normal_texture=_texture_slot(get_field(gltf_material, "normalTexture"), textures, "scale"),
        occlusion_texture=_texture_slot(get_field(gltf_material, "occlusionTexture"), textures, "strength"),
        emissive=emissive,
        emissive_texture=_texture_slot(get_field(gltf_material, "emissiveTexture"), textures),
        alpha_mode=get_field(gltf_material, "alphaMode", "OPAQUE"),
        alpha_cutoff=float(get_field(gltf_material, "alphaCutoff", 0.5)),
        double_sided=bool(get_field(gltf_material, "doubleSided", False)),
    )


def _build_mesh(document, reader: AccessorReader, index: int, materials, default_material) -> Optional[Mesh]:
    gltf_mesh = get_item(document, "meshes", index)
    if gltf_mesh is None:
        raise ModelParseError(f"Mesh {index} does not exist")

    mesh = Mesh(name=get_field(gltf_mesh, "name", f"Mesh_{index}"))
    for prim_index, gltf_primitive in enumerate(get_list(gltf_mesh, "primitives")):
        mode = get_field(gltf_primitive, "mode", TRIANGLES)
        if mode != TRIANGLES:
            logger.warning(f"Mesh {index} primitive {prim_index}: mode {mode} is not a triangle list, skipping")
            continue

        attributes = get_field(gltf_primitive, "attributes")
        positions = reader.read(get_field(attributes, "POSITION"))
        if positions is None or len(positions) == 0:
            logger.warning(f"Mesh {index} primitive {prim_index}: no POSITION attribute, skipping")
            continue

        indices = reader.read(get_field(gltf_primitive, "indices"))
        if indices is not None:
            indices = indices.astype(np.uint32).reshape(-1)
            if len(indices) and indices.max() >= len(positions):
                raise ModelParseError(f"Mesh {index} primitive {prim_index}: index out of range")

        material_index = get_field(gltf_primitive, "material")
        material = materials[material_index] if material_index is not None and 0 <= material_index < len(materials) else default_material

        mesh.primitives.append(Primitive(
            positions=positions.astype(np.float32),
            indices=indices,
            normals=_as_float(reader.read(get_field(attributes, "NORMAL"))),
            uvs=_as_float(reader.read(get_field(attributes, "TEXCOORD_0"))),
            uvs1=_as_float(reader.read(get_field(attributes, "TEXCOORD_1"))),
            colors=_as_float(reader.read(get_field(attributes, "COLOR_0"))),
            material=material,
        ))

    return mesh


def _as_float(array: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if array is None:
        return None
    if array.dtype.kind in "iu":
        # Non-normalized integer attributes are taken at face value
        return array.astype(np.float32)
    return array.astype(np.float32, copy=False)


def _build_node(document, index: int, mesh_for, ancestors: set) -> Node:
    if index in ancestors:
        raise ModelParseError(f"Node hierarchy contains a cycle at node {index}")
    gltf_node = get_item(document, "nodes", index)
    if gltf_node is None:
        raise ModelParseError(f"Node {index} does not exist")

    mesh_index = get_field(gltf_node, "mesh")
    node = Node(
        name=get_field(gltf_node, "name", f"Node_{index}"),
        matrix=node_matrix(gltf_node),
        mesh=mesh_for(mesh_index) if mesh_index is not None else None,
    )
    ancestors = ancestors | {index}
    for child_index in get_list(gltf_node, "children"):
        node.children.append(_build_node(document, child_index, mesh_for, ancestors))
    return node


def _root_nodes(document) -> List[int]:
    nodes = get_list(document, "nodes")
    children = {c for node in nodes for c in get_list(node, "children")}
    return [i for i in range(len(nodes)) if i not in children]


def node_matrix(gltf_node) -> np.ndarray:
    """
    Local transform of a glTF node as a 4x4 matrix (column-vector convention).

    Uses ``matrix`` (column-major in the file) when present, otherwise
    T * R * S from translation, rotation [x, y, z, w] and scale.
    """
    matrix = get_field(gltf_node, "matrix")
    if matrix is not None and len(matrix) == 16:
        return np.array(matrix, dtype=np.float64).reshape(4, 4).T

    tx, ty, tz = get_field(gltf_node, "translation", [0.0, 0.0, 0.0])
    x, y, z, w = get_field(gltf_node, "rotation", [0.0, 0.0, 0.0, 1.0])
    sx, sy, sz = get_field(gltf_node, "scale", [1.0, 1.0, 1.0])

    rotation = np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ], dtype=np.float64)

    result = np.identity(4)
    result[:3, :3] = rotation * np.array([sx, sy, sz], dtype=np.float64)
    result[:3, 3] = [tx, ty, tz]
    return result
