"""
Tests for the conversion API
"""
import asyncio
import os
import tempfile
import zipfile

import pytest

from arpreview import convert
from arpreview.config import ConversionSettings
from arpreview.converters.convert import _run_stage
from arpreview.exceptions import ConversionTimeoutError, ModelExportError, ModelParseError
from conftest import build_glb, make_png


class TestConvertAPI:
    """Test the module-level convert() function"""

    def test_convert_glb_to_usdz(self):
        """A valid GLB produces a non-empty USDZ package"""
        with tempfile.TemporaryDirectory() as tmpdir:
            glb_path = os.path.join(tmpdir, "model.glb")
            usdz_path = os.path.join(tmpdir, "model.usdz")
            with open(glb_path, 'wb') as f:
                f.write(build_glb(texture=make_png()))

            result = convert(glb_path, usdz_path)

            assert os.path.exists(usdz_path)
            assert result.size == os.path.getsize(usdz_path)
            assert result.size > 0
            with zipfile.ZipFile(usdz_path) as archive:
                names = archive.namelist()
            assert names[0] == "model.usda"
            assert "textures/Texture_0.png" in names

    def test_convert_to_usda(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            glb_path = os.path.join(tmpdir, "model.glb")
            usda_path = os.path.join(tmpdir, "model.usda")
            with open(glb_path, 'wb') as f:
                f.write(build_glb())

            convert(glb_path, usda_path)

            with open(usda_path, 'r') as f:
                assert f.read().startswith("#usda 1.0")

    def test_settings_are_applied(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            glb_path = os.path.join(tmpdir, "model.glb")
            usda_path = os.path.join(tmpdir, "model.usda")
            with open(glb_path, 'wb') as f:
                f.write(build_glb())

            convert(glb_path, usda_path, ConversionSettings(include_anchoring=False))

            with open(usda_path, 'r') as f:
                assert "preliminary:anchoring" not in f.read()

    def test_missing_input(self):
        """Missing input raises and writes nothing"""
        with tempfile.TemporaryDirectory() as tmpdir:
            usdz_path = os.path.join(tmpdir, "out.usdz")

            with pytest.raises(FileNotFoundError):
                convert(os.path.join(tmpdir, "missing.glb"), usdz_path)

            assert not os.path.exists(usdz_path)

    def test_unsupported_input_format(self):
        with tempfile.NamedTemporaryFile(suffix='.obj') as f:
            with pytest.raises(ValueError) as exc_info:
                convert(f.name, "out.usdz")
            assert "Unsupported file format" in str(exc_info.value)

    def test_unsupported_output_format(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            glb_path = os.path.join(tmpdir, "model.glb")
            with open(glb_path, 'wb') as f:
                f.write(build_glb())

            with pytest.raises(ValueError):
                convert(glb_path, os.path.join(tmpdir, "model.fbx"))

    def test_malformed_input(self):
        """Malformed data fails in the parse stage and writes nothing"""
        with tempfile.TemporaryDirectory() as tmpdir:
            glb_path = os.path.join(tmpdir, "broken.glb")
            usdz_path = os.path.join(tmpdir, "broken.usdz")
            with open(glb_path, 'wb') as f:
                f.write(b"\x00\x01 this is not a model")

            with pytest.raises(ModelParseError):
                convert(glb_path, usdz_path)

            assert not os.path.exists(usdz_path)

    def test_unwritable_output(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            glb_path = os.path.join(tmpdir, "model.glb")
            with open(glb_path, 'wb') as f:
                f.write(build_glb())

            with pytest.raises(ModelExportError):
                convert(glb_path, os.path.join(tmpdir, "no", "such", "dir", "model.usdz"))


class TestRunStage:
    """Test stage timeout and error wrapping"""

    def test_timeout(self):
        async def slow():
            await asyncio.sleep(10)

        with pytest.raises(ConversionTimeoutError) as exc_info:
            asyncio.run(_run_stage(slow(), "parse", 0.01, ModelParseError))
        assert "parse" in str(exc_info.value)

    def test_unexpected_errors_are_wrapped(self):
        async def broken():
            raise KeyError("oops")

        with pytest.raises(ModelExportError):
            asyncio.run(_run_stage(broken(), "export", None, ModelExportError))

    def test_conversion_errors_pass_through(self):
        async def broken():
            raise ModelParseError("bad")

        with pytest.raises(ModelParseError):
            asyncio.run(_run_stage(broken(), "export", None, ModelExportError))

    def test_result_is_returned(self):
        async def ok():
            return 42

        assert asyncio.run(_run_stage(ok(), "parse", 1.0, ModelParseError)) == 42
