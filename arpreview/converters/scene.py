"""
In-memory scene graph shared by the GLTF loader and the USDZ exporter.

COORDINATE SYSTEM:
Right-handed, Y-up, 1 unit = 1 meter (glTF 2.0 and USD with metersPerUnit = 1
agree, so no axis conversion happens anywhere).

Transforms:
- Node.matrix is the LOCAL 4x4 transform in column-vector convention
  (p' = M @ p), i.e. numpy rows are matrix rows
- Hierarchy is preserved; nothing is baked into vertex data

UVs:
- Stored as in glTF (origin top-left); the exporter flips V for USD
"""

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np
from PIL import Image

Color3 = Tuple[float, float, float]
Color4 = Tuple[float, float, float, float]


@dataclass(eq=False)
class Texture:
    image: Image.Image
    name: str = ""
    wrap_s: str = "repeat"  # 'repeat' | 'clamp' | 'mirror'
    wrap_t: str = "repeat"


@dataclass
class TextureSlot:
    """A texture bound to one material input"""
    texture: Texture
    tex_coord: int = 0
    scale: float = 1.0  # normal scale / occlusion strength


@dataclass(eq=False)
class Material:
    name: str = ""
    base_color: Color4 = (1.0, 1.0, 1.0, 1.0)
    base_color_texture: Optional[TextureSlot] = None
    metallic: float = 1.0
    roughness: float = 1.0
    metallic_roughness_texture: Optional[TextureSlot] = None
    normal_texture: Optional[TextureSlot] = None
    occlusion_texture: Optional[TextureSlot] = None
    emissive: Color3 = (0.0, 0.0, 0.0)
    emissive_texture: Optional[TextureSlot] = None
    alpha_mode: str = "OPAQUE"  # 'OPAQUE' | 'MASK' | 'BLEND'
    alpha_cutoff: float = 0.5
    double_sided: bool = False

    @property
    def textures(self) -> List[TextureSlot]:
        slots = [
            self.base_color_texture,
            self.metallic_roughness_texture,
            self.normal_texture,
            self.occlusion_texture,
            self.emissive_texture,
        ]
        return [s for s in slots if s is not None]


@dataclass(eq=False)
class Primitive:
    positions: np.ndarray  # (N, 3) float32
    indices: Optional[np.ndarray] = None  # (M,) uint32, M % 3 == 0
    normals: Optional[np.ndarray] = None  # (N, 3)
    uvs: Optional[np.ndarray] = None  # (N, 2) TEXCOORD_0
    uvs1: Optional[np.ndarray] = None  # (N, 2) TEXCOORD_1
    colors: Optional[np.ndarray] = None  # (N, 3) or (N, 4)
    material: Optional[Material] = None

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangles(self) -> np.ndarray:
        """Triangle vertex indices as an (T, 3) array"""
        if self.indices is None:
            flat = np.arange(self.vertex_count - self.vertex_count % 3, dtype=np.uint32)
        else:
            flat = self.indices[: len(self.indices) - len(self.indices) % 3]
        return flat.reshape(-1, 3)


@dataclass(eq=False)
class Mesh:
    name: str = ""
    primitives: List[Primitive] = field(default_factory=list)


@dataclass(eq=False)
class Node:
    name: str = ""
    matrix: np.ndarray = field(default_factory=lambda: np.identity(4))
    mesh: Optional[Mesh] = None
    children: List["Node"] = field(default_factory=list)

    def traverse(self) -> Iterator["Node"]:
        """Depth-first, parent before children"""
        yield self
        for child in self.children:
            yield from child.traverse()


@dataclass(eq=False)
class Scene:
    name: str = "Scene"
    nodes: List[Node] = field(default_factory=list)

    def traverse(self) -> Iterator[Node]:
        for node in self.nodes:
            yield from node.traverse()

    @property
    def materials(self) -> List[Material]:
        """Distinct materials in traversal order"""
        seen = {}
        for node in self.traverse():
            if node.mesh is None:
                continue
            for primitive in node.mesh.primitives:
                if primitive.material is not None:
                    seen.setdefault(id(primitive.material), primitive.material)
        return list(seen.values())
