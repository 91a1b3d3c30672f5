"""
glTF 2.0 import

Parses .glb/.gltf documents with pygltflib and decodes accessors with numpy
into the arpreview scene graph. Images go through the host environment's
image loader.
"""

from .loader import GLTFLoader, GLTFResult, node_matrix

__all__ = ["GLTFLoader", "GLTFResult", "node_matrix"]
