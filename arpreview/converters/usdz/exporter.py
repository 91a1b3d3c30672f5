"""
Scene → USDZ exporter

Authors the scene graph on a USD stage with pxr and packages the root layer
(``model.usda``) with PNG textures for AR Quick Look:

Root
├── Scenes/Scene      one Xform per node, one Mesh per triangle primitive
└── Materials         one UsdPreviewSurface material per scene material

Node transforms are kept local (hierarchy preserved); textures are shared
between materials that reference the same image.

The stage is built on the event loop, yielding after every material and
node, and each texture is encoded in a worker thread, so a cancelled export
stops at the next prim or texture.
"""

import asyncio
import itertools
import logging
from typing import Dict, Optional, Tuple

from pxr import Sdf, Usd, UsdGeom, UsdShade

from arpreview.config import ConversionSettings
from arpreview.converters.scene import Node, Scene
from arpreview.converters.usdz import stage as usd
from arpreview.converters.usdz.package import pack_usdz
from arpreview.converters.usdz.textures import encode_texture

logger = logging.getLogger(__name__)

LAYER_NAME = "model.usda"
ROOT_PATH = "/Root"
SCENE_PATH = "/Root/Scenes/Scene"
MATERIALS_PATH = "/Root/Materials"
CREATOR = "arpreview USDZExporter"


class USDZExporter:
    """
    Export a Scene to USDZ.

    Example:
        >>> exporter = USDZExporter(ConversionSettings(max_texture_size=2048))
        >>> usdz_bytes = await exporter.parse(result.scene)
    """

    def __init__(self, settings: Optional[ConversionSettings] = None):
        self.settings = settings or ConversionSettings()

    async def parse(self, scene: Scene) -> bytes:
        """Build the USDZ archive bytes"""
        stage, texture_files = await self.build_stage(scene)
        files: Dict[str, bytes] = {LAYER_NAME: stage.GetRootLayer().ExportToString().encode("utf-8")}

        images = {}
        for material in scene.materials:
            for slot in material.textures:
                images.setdefault(id(slot.texture.image), slot.texture.image)

        for image_id, path in texture_files.items():
            files[path] = await asyncio.to_thread(encode_texture, images[image_id], self.settings.max_texture_size)

        logger.info(f"Packaging USDZ: {len(files) - 1} textures")
        return await asyncio.to_thread(pack_usdz, files)

    async def parse_usda(self, scene: Scene) -> str:
        """Build only the root layer text (texture paths still point into textures/)"""
        stage, _ = await self.build_stage(scene)
        return stage.GetRootLayer().ExportToString()

    async def build_stage(self, scene: Scene) -> Tuple[Usd.Stage, Dict[int, str]]:
        """
        Author the scene on a new in-memory stage.

        Returns:
            (stage, id(texture image) -> package path)
        """
        texture_files = self._texture_files(scene)
        stage = usd.create_stage(CREATOR)

        root = UsdGeom.Xform.Define(stage, ROOT_PATH)
        stage.SetDefaultPrim(root.GetPrim())

        scenes = UsdGeom.Scope.Define(stage, f"{ROOT_PATH}/Scenes")
        Usd.ModelAPI(scenes.GetPrim()).SetKind("sceneLibrary")

        scene_prim = UsdGeom.Xform.Define(stage, SCENE_PATH).GetPrim()
        scene_prim.SetCustomDataByKey("preliminary_collidesWithEnvironment", False)
        scene_prim.SetCustomDataByKey("sceneName", scene.name or "Scene")
        self._author_anchoring(scene_prim)

        UsdGeom.Scope.Define(stage, MATERIALS_PATH)
        materials: Dict[int, UsdShade.Material] = {}
        for index, material in enumerate(scene.materials):
            name = f"{usd.prim_name(material.name, 'Material')}_{index}"
            materials[id(material)] = usd.define_material(
                stage, f"{MATERIALS_PATH}/{name}", material, texture_files
            )
            await asyncio.sleep(0)

        counter = itertools.count()
        for node in scene.nodes:
            await self._define_node(stage, SCENE_PATH, node, materials, counter)

        return stage, texture_files

    def _author_anchoring(self, prim: Usd.Prim) -> None:
        settings = self.settings
        if not settings.include_anchoring or settings.anchoring_type == "none":
            return
        prim.CreateAttribute("preliminary:anchoring:type", Sdf.ValueTypeNames.Token, custom=False).Set(
            settings.anchoring_type
        )
        if settings.anchoring_type == "plane":
            prim.CreateAttribute("preliminary:planeAnchoring:alignment", Sdf.ValueTypeNames.Token, custom=False).Set(
                settings.plane_alignment
            )

    async def _define_node(self, stage, parent_path: str, node: Node, materials, counter) -> None:
        path = f"{parent_path}/{usd.prim_name(node.name, 'Node')}_{next(counter)}"
        usd.define_xform(stage, path, node.matrix)

        if node.mesh is not None:
            for prim_index, primitive in enumerate(node.mesh.primitives):
                if len(primitive.triangles) == 0:
                    logger.warning(f"Skipping empty primitive {prim_index} of mesh '{node.mesh.name}'")
                    continue
                mesh_path = f"{path}/{usd.prim_name(node.mesh.name, 'Mesh')}_{next(counter)}"
                usd.define_mesh(stage, mesh_path, primitive, materials.get(id(primitive.material)))

        await asyncio.sleep(0)
        for child in node.children:
            await self._define_node(stage, path, child, materials, counter)

    def _texture_files(self, scene: Scene) -> Dict[int, str]:
        """id(image) -> textures/Texture_<n>.png, numbered in first-use order"""
        files: Dict[int, str] = {}
        for material in scene.materials:
            for slot in material.textures:
                key = id(slot.texture.image)
                if key not in files:
                    files[key] = f"textures/Texture_{len(files)}.png"
        return files
