"""
Tests for the USDZ exporter and packaging
"""

import asyncio
import struct
import time
import zipfile
from io import BytesIO

import numpy as np
import pytest
from PIL import Image
from pxr import Gf, Sdf, Usd, UsdGeom, UsdShade

from arpreview.config import ConversionSettings
from arpreview.converters.convert import _run_stage
from arpreview.converters.gltf import GLTFLoader
from arpreview.converters.scene import Material, Mesh, Node, Primitive, Scene, Texture, TextureSlot
from arpreview.converters.usdz import USDZExporter, pack_usdz
from arpreview.converters.usdz import exporter as exporter_module
from arpreview.converters.usdz.stage import prim_name, to_matrix
from arpreview.exceptions import ConversionTimeoutError, ModelExportError

USDZ_ALIGNMENT = 64


def triangle(material=None, uvs=None, uvs1=None):
    return Primitive(
        positions=np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32),
        indices=np.array([0, 1, 2], dtype=np.uint32),
        uvs=uvs,
        uvs1=uvs1,
        material=material,
    )


def scene_with(*primitives, name="Model"):
    return Scene(nodes=[Node(name=name, mesh=Mesh(name="Mesh", primitives=list(primitives)))])


def build_stage(scene, settings=None):
    stage, _ = asyncio.run(USDZExporter(settings).build_stage(scene))
    return stage


def export(scene, settings=None):
    return asyncio.run(USDZExporter(settings).parse(scene))


def open_package(package: bytes, tmp_path):
    path = tmp_path / "out.usdz"
    path.write_bytes(package)
    stage = Usd.Stage.Open(str(path))
    assert stage is not None
    return stage


def data_offsets(package: bytes):
    """Archive name -> offset of the entry's data, read from the local headers"""
    offsets = {}
    with zipfile.ZipFile(BytesIO(package)) as archive:
        for info in archive.infolist():
            start = info.header_offset
            name_len, extra_len = struct.unpack("<HH", package[start + 26:start + 30])
            offsets[info.filename] = start + 30 + name_len + extra_len
    return offsets


class TestPackage:
    """Test USDZ zip layout"""

    def test_entries_are_aligned(self):
        files = {
            "model.usda": b"#usda 1.0\n",
            "textures/Texture_0.png": b"x" * 101,
            "textures/Texture_1.png": b"y" * 7,
            "a.png": b"z",
        }
        package = pack_usdz(files)

        for name, offset in data_offsets(package).items():
            assert offset % USDZ_ALIGNMENT == 0, name

        with zipfile.ZipFile(BytesIO(package)) as archive:
            for name, data in files.items():
                assert archive.read(name) == data

    def test_entries_are_stored_in_order(self):
        package = pack_usdz({"model.usda": b"#usda 1.0\n", "textures/Texture_0.png": b"b"})

        with zipfile.ZipFile(BytesIO(package)) as archive:
            infos = archive.infolist()
        assert [i.filename for i in infos] == ["model.usda", "textures/Texture_0.png"]
        assert all(i.compress_type == zipfile.ZIP_STORED for i in infos)

    def test_first_entry_must_be_a_layer(self):
        with pytest.raises(ValueError):
            pack_usdz({"textures/Texture_0.png": b"b", "model.usda": b"a"})

    def test_empty_package(self):
        with pytest.raises(ValueError):
            pack_usdz({})


class TestStage:
    """Test the authored stage"""

    def test_stage_metadata(self):
        stage = build_stage(scene_with(triangle()))

        assert UsdGeom.GetStageUpAxis(stage) == UsdGeom.Tokens.y
        assert UsdGeom.GetStageMetersPerUnit(stage) == 1.0
        assert stage.GetDefaultPrim().GetPath() == Sdf.Path("/Root")
        assert Usd.ModelAPI(stage.GetPrimAtPath("/Root/Scenes")).GetKind() == "sceneLibrary"

    def test_mesh_and_binding(self):
        stage = build_stage(scene_with(triangle(Material(name="Paint"))))

        mesh = UsdGeom.Mesh(stage.GetPrimAtPath("/Root/Scenes/Scene/Model_0/Mesh_1"))
        assert mesh
        assert list(mesh.GetFaceVertexIndicesAttr().Get()) == [0, 1, 2]
        assert list(mesh.GetFaceVertexCountsAttr().Get()) == [3]

        material, _ = UsdShade.MaterialBindingAPI(mesh.GetPrim()).ComputeBoundMaterial()
        assert material.GetPath() == Sdf.Path("/Root/Materials/Paint_0")

        surface = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Paint_0/PreviewSurface"))
        assert surface.GetIdAttr().Get() == "UsdPreviewSurface"

    def test_plane_anchoring_by_default(self):
        stage = build_stage(scene_with(triangle()))
        prim = stage.GetPrimAtPath("/Root/Scenes/Scene")
        assert prim.GetAttribute("preliminary:anchoring:type").Get() == "plane"
        assert prim.GetAttribute("preliminary:planeAnchoring:alignment").Get() == "horizontal"

    def test_anchoring_can_be_disabled(self):
        stage = build_stage(scene_with(triangle()), ConversionSettings(include_anchoring=False))
        prim = stage.GetPrimAtPath("/Root/Scenes/Scene")
        assert not prim.HasAttribute("preliminary:anchoring:type")

    def test_image_anchoring_has_no_plane_alignment(self):
        stage = build_stage(scene_with(triangle()), ConversionSettings(anchoring_type="image"))
        prim = stage.GetPrimAtPath("/Root/Scenes/Scene")
        assert prim.GetAttribute("preliminary:anchoring:type").Get() == "image"
        assert not prim.HasAttribute("preliminary:planeAnchoring:alignment")

    def test_v_is_flipped(self):
        uvs = np.array([[0, 0], [1, 0.25], [0, 1]], dtype=np.float32)
        stage = build_stage(scene_with(triangle(uvs=uvs)))

        mesh = stage.GetPrimAtPath("/Root/Scenes/Scene/Model_0/Mesh_1")
        st = UsdGeom.PrimvarsAPI(mesh).GetPrimvar("st").Get()
        assert [tuple(v) for v in st] == [(0, 1), (1, 0.75), (0, 0)]

    def test_second_uv_set(self):
        uvs = np.zeros((3, 2), dtype=np.float32)
        uvs1 = np.array([[0.5, 0.5]] * 3, dtype=np.float32)
        texture = Texture(image=Image.new("RGB", (2, 2)))
        material = Material(name="Baked", occlusion_texture=TextureSlot(texture, tex_coord=1))
        stage = build_stage(scene_with(triangle(material, uvs=uvs, uvs1=uvs1)))

        mesh = stage.GetPrimAtPath("/Root/Scenes/Scene/Model_0/Mesh_1")
        assert UsdGeom.PrimvarsAPI(mesh).HasPrimvar("st1")

        reader = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Baked_0/PrimvarReader_st1"))
        assert reader.GetInput("varname").Get() == "st1"
        shader = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Baked_0/Texture_0_occlusion"))
        source = shader.GetInput("st").GetConnectedSources()[0][0]
        assert source.source.GetPath() == reader.GetPath()

    def test_node_names_are_valid_and_unique(self):
        scene = Scene(nodes=[Node(name="1 wheel"), Node(name="1 wheel"), Node(name="")])
        stage = build_stage(scene)

        names = [prim.GetName() for prim in stage.GetPrimAtPath("/Root/Scenes/Scene").GetChildren()]
        assert len(names) == 3
        assert len(set(names)) == 3
        assert names[2] == "Node_2"
        assert all(Sdf.Path.IsValidIdentifier(name) for name in names)

    def test_hierarchy_is_preserved(self):
        child = Node(name="Child", mesh=Mesh(name="Mesh", primitives=[triangle()]))
        matrix = np.identity(4)
        matrix[:3, 3] = [1, 2, 3]
        scene = Scene(nodes=[Node(name="Parent", matrix=matrix, children=[child])])
        stage = build_stage(scene)

        parent = UsdGeom.Xformable(stage.GetPrimAtPath("/Root/Scenes/Scene/Parent_0"))
        assert parent.ComputeLocalToWorldTransform(Usd.TimeCode.Default()).ExtractTranslation() == Gf.Vec3d(1, 2, 3)
        assert stage.GetPrimAtPath("/Root/Scenes/Scene/Parent_0/Child_1/Mesh_2")

    def test_translucent_material(self):
        material = Material(name="Glass", base_color=(1, 1, 1, 0.25), alpha_mode="BLEND")
        stage = build_stage(scene_with(triangle(material)))

        surface = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Glass_0/PreviewSurface"))
        assert surface.GetInput("opacity").Get() == pytest.approx(0.25)

    def test_double_sided(self):
        stage = build_stage(scene_with(triangle(Material(double_sided=True))))
        mesh = UsdGeom.Mesh(stage.GetPrimAtPath("/Root/Scenes/Scene/Model_0/Mesh_1"))
        assert mesh.GetDoubleSidedAttr().Get() is True

    def test_usda_text(self):
        text = asyncio.run(USDZExporter().parse_usda(scene_with(triangle())))
        assert text.startswith("#usda 1.0")
        assert 'defaultPrim = "Root"' in text


class TestTextures:
    """Test texture packaging"""

    def test_texture_is_downscaled(self):
        texture = Texture(image=Image.new("RGB", (64, 32), (0, 255, 0)))
        material = Material(base_color_texture=TextureSlot(texture))
        package = export(scene_with(triangle(material)), ConversionSettings(max_texture_size=16))

        with zipfile.ZipFile(BytesIO(package)) as archive:
            image = Image.open(BytesIO(archive.read("textures/Texture_0.png")))
            assert image.size == (16, 8)

    def test_shared_image_is_written_once(self):
        image = Image.new("RGBA", (4, 4), (255, 255, 255, 255))
        first = Material(name="A", base_color_texture=TextureSlot(Texture(image=image)))
        second = Material(name="B", emissive_texture=TextureSlot(Texture(image=image)))
        package = export(scene_with(triangle(first), triangle(second)))

        with zipfile.ZipFile(BytesIO(package)) as archive:
            names = archive.namelist()
        assert names == ["model.usda", "textures/Texture_0.png"]

    def test_texture_shaders(self):
        texture = Texture(image=Image.new("RGB", (2, 2)), wrap_s="clamp")
        material = Material(
            name="Rough",
            base_color_texture=TextureSlot(texture),
            metallic_roughness_texture=TextureSlot(Texture(image=Image.new("RGB", (2, 2)))),
        )
        stage = build_stage(scene_with(triangle(material)))

        diffuse = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Rough_0/Texture_0_diffuse"))
        assert diffuse.GetIdAttr().Get() == "UsdUVTexture"
        assert diffuse.GetInput("file").Get().path == "textures/Texture_0.png"
        assert diffuse.GetInput("wrapS").Get() == "clamp"

        surface = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Rough_0/PreviewSurface"))
        roughness = surface.GetInput("roughness").GetConnectedSources()[0][0]
        assert roughness.source.GetPath() == Sdf.Path("/Root/Materials/Rough_0/Texture_1_metallicRoughness")
        assert roughness.sourceName == "g"
        metallic = surface.GetInput("metallic").GetConnectedSources()[0][0]
        assert metallic.sourceName == "b"


class TestFromGLB:

    def test_package_opens_as_stage(self, glb_bytes, tmp_path):
        async def run():
            result = await GLTFLoader().parse(glb_bytes)
            return await USDZExporter().parse(result.scene)

        package = asyncio.run(run())
        with zipfile.ZipFile(BytesIO(package)) as archive:
            assert archive.namelist()[0] == "model.usda"

        stage = open_package(package, tmp_path)
        mesh = stage.GetPrimAtPath("/Root/Scenes/Scene/Root_0/Triangle_1/Tri_2")
        assert mesh.IsA(UsdGeom.Mesh)

        material, _ = UsdShade.MaterialBindingAPI(mesh).ComputeBoundMaterial()
        assert material.GetPath() == Sdf.Path("/Root/Materials/Red_0")

        diffuse = UsdShade.Shader(stage.GetPrimAtPath("/Root/Materials/Red_0/Texture_0_diffuse"))
        assert diffuse.GetInput("file").Get().path == "textures/Texture_0.png"


class TestCancellation:
    """A timed-out export stops at the next texture instead of finishing"""

    def test_timeout_stops_between_textures(self, monkeypatch):
        def slow_encode(image, max_size=1024):
            time.sleep(0.3)
            return b"png"

        monkeypatch.setattr(exporter_module, "encode_texture", slow_encode)
        materials = [
            Material(name=f"M{i}", base_color_texture=TextureSlot(Texture(image=Image.new("RGB", (2, 2)))))
            for i in range(20)
        ]
        scene = scene_with(*[triangle(m) for m in materials])

        async def run():
            return await _run_stage(USDZExporter().parse(scene), "export", 0.2, ModelExportError)

        started = time.monotonic()
        with pytest.raises(ConversionTimeoutError):
            asyncio.run(run())
        assert time.monotonic() - started < 2.0


class TestNaming:

    def test_prim_name(self):
        assert prim_name("Body.001", "Mesh") == "Body_001"
        assert Sdf.Path.IsValidIdentifier(prim_name("3d", "Mesh"))
        assert prim_name("---", "Mesh") == "Mesh"
        assert prim_name("", "Mesh") == "Mesh"

    def test_matrix_is_transposed(self):
        matrix = np.identity(4)
        matrix[:3, 3] = [5, 6, 7]
        assert to_matrix(matrix).ExtractTranslation() == Gf.Vec3d(5, 6, 7)
