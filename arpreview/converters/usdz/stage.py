"""
USD authoring helpers

Define the prims the exporter needs with pxr: stage metadata, node Xforms,
triangle Meshes and UsdPreviewSurface materials wired to UsdUVTexture
shaders.

Conventions:
- Scene graph matrices are column-vector (p' = M @ p); USD composes row
  vectors, so every matrix is transposed on the way in
- glTF UV origin is top-left, USD's is bottom-left: V is flipped
- TEXCOORD_0 / TEXCOORD_1 become the ``st`` / ``st1`` primvars
"""

import logging
import posixpath
from typing import Dict, Optional, Sequence

import numpy as np
from pxr import Gf, Sdf, Tf, Usd, UsdGeom, UsdShade, Vt

from arpreview.converters.scene import Material, Primitive, TextureSlot

logger = logging.getLogger(__name__)

ST_PRIMVARS = ("st", "st1")


def prim_name(name: str, fallback: str) -> str:
    """Turn an arbitrary name into a valid USD prim name"""
    cleaned = Tf.MakeValidIdentifier(name) if name else ""
    if not cleaned.strip("_"):
        return fallback
    return cleaned


def to_matrix(matrix: np.ndarray) -> Gf.Matrix4d:
    rows = np.asarray(matrix, dtype=np.float64).T
    return Gf.Matrix4d(*rows.reshape(-1).tolist())


def _vec3f_array(rows: np.ndarray) -> Vt.Vec3fArray:
    return Vt.Vec3fArray([Gf.Vec3f(*row) for row in np.asarray(rows, dtype=np.float64).tolist()])


def _vec2f_array(rows: np.ndarray) -> Vt.Vec2fArray:
    return Vt.Vec2fArray([Gf.Vec2f(*row) for row in np.asarray(rows, dtype=np.float64).tolist()])


def create_stage(creator: str) -> Usd.Stage:
    """In-memory stage with Y up, 1 unit = 1 meter"""
    stage = Usd.Stage.CreateInMemory()
    UsdGeom.SetStageUpAxis(stage, UsdGeom.Tokens.y)
    UsdGeom.SetStageMetersPerUnit(stage, UsdGeom.LinearUnits.meters)
    stage.GetRootLayer().customLayerData = {"creator": creator}
    return stage


def define_xform(stage: Usd.Stage, path: str, matrix: np.ndarray) -> UsdGeom.Xform:
    xform = UsdGeom.Xform.Define(stage, path)
    xform.AddTransformOp().Set(to_matrix(matrix))
    return xform


def define_mesh(
    stage: Usd.Stage,
    path: str,
    primitive: Primitive,
    material: Optional[UsdShade.Material],
) -> UsdGeom.Mesh:
    """Author one triangle primitive as a Mesh bound to ``material``"""
    points = primitive.positions[:, :3]
    triangles = primitive.triangles

    mesh = UsdGeom.Mesh.Define(stage, path)
    mesh.CreatePointsAttr(_vec3f_array(points))
    mesh.CreateExtentAttr(_vec3f_array([points.min(axis=0), points.max(axis=0)]))
    mesh.CreateFaceVertexCountsAttr(Vt.IntArray([3] * len(triangles)))
    mesh.CreateFaceVertexIndicesAttr(Vt.IntArray(triangles.reshape(-1).tolist()))
    mesh.CreateSubdivisionSchemeAttr(UsdGeom.Tokens.none)

    if primitive.normals is not None and len(primitive.normals) == len(points):
        mesh.CreateNormalsAttr(_vec3f_array(primitive.normals[:, :3]))
        mesh.SetNormalsInterpolation(UsdGeom.Tokens.vertex)

    primvars = UsdGeom.PrimvarsAPI(mesh)
    for name, uvs in zip(ST_PRIMVARS, (primitive.uvs, primitive.uvs1)):
        if uvs is None or len(uvs) != len(points):
            continue
        st = np.column_stack([uvs[:, 0], 1.0 - uvs[:, 1]])
        primvar = primvars.CreatePrimvar(name, Sdf.ValueTypeNames.TexCoord2fArray, UsdGeom.Tokens.vertex)
        primvar.Set(_vec2f_array(st))

    if primitive.colors is not None and len(primitive.colors) == len(points):
        mesh.CreateDisplayColorPrimvar(UsdGeom.Tokens.vertex).Set(_vec3f_array(primitive.colors[:, :3]))

    if primitive.material is not None and primitive.material.double_sided:
        mesh.CreateDoubleSidedAttr(True)

    if material is not None:
        UsdShade.MaterialBindingAPI.Apply(mesh.GetPrim()).Bind(material)

    return mesh


class _MaterialBuilder:
    """Builds one UsdPreviewSurface network under a Material prim"""

    def __init__(self, stage: Usd.Stage, path: str, texture_files: Dict[int, str]):
        self.stage = stage
        self.path = path
        self.texture_files = texture_files
        self.material = UsdShade.Material.Define(stage, path)
        self.surface = UsdShade.Shader.Define(stage, f"{path}/PreviewSurface")
        self.surface.CreateIdAttr("UsdPreviewSurface")
        self.material.CreateSurfaceOutput().ConnectToSource(
            self.surface.CreateOutput("surface", Sdf.ValueTypeNames.Token)
        )
        self._readers: Dict[int, UsdShade.Output] = {}

    def set(self, name: str, type_name, value) -> None:
        self.surface.CreateInput(name, type_name).Set(value)

    def connect(self, name: str, type_name, source: UsdShade.Output) -> None:
        self.surface.CreateInput(name, type_name).ConnectToSource(source)

    def _reader(self, tex_coord: int) -> UsdShade.Output:
        if tex_coord >= len(ST_PRIMVARS):
            logger.warning(f"{self.path}: TEXCOORD_{tex_coord} is not exported, using TEXCOORD_0")
            tex_coord = 0
        if tex_coord not in self._readers:
            varname = ST_PRIMVARS[tex_coord]
            reader = UsdShade.Shader.Define(self.stage, f"{self.path}/PrimvarReader_{varname}")
            reader.CreateIdAttr("UsdPrimvarReader_float2")
            reader.CreateInput("varname", Sdf.ValueTypeNames.Token).Set(varname)
            reader.CreateInput("fallback", Sdf.ValueTypeNames.Float2).Set(Gf.Vec2f(0.0, 0.0))
            self._readers[tex_coord] = reader.CreateOutput("result", Sdf.ValueTypeNames.Float2)
        return self._readers[tex_coord]

    def texture(
        self,
        slot: TextureSlot,
        usage: str,
        color_space: str,
        scale: Sequence[float],
        bias: Optional[Sequence[float]] = None,
    ) -> UsdShade.Shader:
        file_path = self.texture_files[id(slot.texture.image)]
        stem = posixpath.splitext(posixpath.basename(file_path))[0]

        shader = UsdShade.Shader.Define(self.stage, f"{self.path}/{stem}_{usage}")
        shader.CreateIdAttr("UsdUVTexture")
        shader.CreateInput("file", Sdf.ValueTypeNames.Asset).Set(Sdf.AssetPath(file_path))
        shader.CreateInput("st", Sdf.ValueTypeNames.Float2).ConnectToSource(self._reader(slot.tex_coord))
        shader.CreateInput("scale", Sdf.ValueTypeNames.Float4).Set(Gf.Vec4f(*scale))
        if bias is not None:
            shader.CreateInput("bias", Sdf.ValueTypeNames.Float4).Set(Gf.Vec4f(*bias))
        shader.CreateInput("sourceColorSpace", Sdf.ValueTypeNames.Token).Set(color_space)
        shader.CreateInput("wrapS", Sdf.ValueTypeNames.Token).Set(slot.texture.wrap_s)
        shader.CreateInput("wrapT", Sdf.ValueTypeNames.Token).Set(slot.texture.wrap_t)
        return shader


def define_material(
    stage: Usd.Stage,
    path: str,
    source: Material,
    texture_files: Dict[int, str],
) -> UsdShade.Material:
    """
    Author a UsdPreviewSurface material.

    Args:
        stage: Target stage
        path: Absolute prim path of the material
        source: Scene material
        texture_files: id(texture image) -> package path
    """
    names = Sdf.ValueTypeNames
    builder = _MaterialBuilder(stage, path, texture_files)
    r, g, b, a = source.base_color
    translucent = source.alpha_mode != "OPAQUE"

    slot = source.base_color_texture
    if slot is not None:
        shader = builder.texture(slot, "diffuse", "sRGB", (r, g, b, a))
        builder.connect("diffuseColor", names.Color3f, shader.CreateOutput("rgb", names.Float3))
        if translucent:
            builder.connect("opacity", names.Float, shader.CreateOutput("a", names.Float))
    else:
        builder.set("diffuseColor", names.Color3f, Gf.Vec3f(r, g, b))
        if translucent:
            builder.set("opacity", names.Float, float(a))

    if source.alpha_mode == "MASK":
        builder.set("opacityThreshold", names.Float, float(source.alpha_cutoff))

    slot = source.metallic_roughness_texture
    if slot is not None:
        # glTF packs roughness in G and metallic in B
        scale = (1.0, source.roughness, source.metallic, 1.0)
        shader = builder.texture(slot, "metallicRoughness", "raw", scale)
        builder.connect("metallic", names.Float, shader.CreateOutput("b", names.Float))
        builder.connect("roughness", names.Float, shader.CreateOutput("g", names.Float))
    else:
        builder.set("metallic", names.Float, float(source.metallic))
        builder.set("roughness", names.Float, float(source.roughness))

    slot = source.normal_texture
    if slot is not None:
        s = slot.scale
        shader = builder.texture(slot, "normal", "raw", (2 * s, 2 * s, 2, 1), bias=(-s, -s, -1, 0))
        builder.connect("normal", names.Normal3f, shader.CreateOutput("rgb", names.Float3))

    slot = source.occlusion_texture
    if slot is not None:
        s = slot.scale
        shader = builder.texture(slot, "occlusion", "raw", (s, s, s, 1), bias=(1 - s, 1 - s, 1 - s, 0))
        builder.connect("occlusion", names.Float, shader.CreateOutput("r", names.Float))

    slot = source.emissive_texture
    if slot is not None:
        shader = builder.texture(slot, "emissive", "sRGB", (*source.emissive, 1.0))
        builder.connect("emissiveColor", names.Color3f, shader.CreateOutput("rgb", names.Float3))
    elif any(source.emissive):
        builder.set("emissiveColor", names.Color3f, Gf.Vec3f(*source.emissive))

    builder.set("useSpecularWorkflow", names.Int, 0)
    return builder.material
