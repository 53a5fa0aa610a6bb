"""Integration test for the run_assetsmith.py command line entry point."""

import base64
import io
import json
import shutil
import tempfile
import unittest

from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

import trimesh

import run_assetsmith

from tests.unit.bundle_utils import TETRA_OBJ_WITH_UVS, WOOD_MTL, png_bytes


class TestCli(unittest.TestCase):
    """Run the CLI against a catalog record of local files."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        (self.temp_dir / "uploads" / "textures").mkdir(parents=True)
        (self.temp_dir / "uploads" / "chair.obj").write_text(TETRA_OBJ_WITH_UVS)
        (self.temp_dir / "uploads" / "chair.mtl").write_text(WOOD_MTL)
        (self.temp_dir / "uploads" / "textures" / "wood.png").write_bytes(png_bytes())

        record = {
            "id": "7",
            "name": "chair",
            "modelFile": {"filename": "chair.obj", "path": "/uploads/chair.obj"},
            "mtlFile": {"filename": "chair.mtl", "path": "/uploads/chair.mtl"},
            "textures": [
                {
                    "filename": "wood.png",
                    "path": "/uploads/textures/wood.png",
                    "folderPath": "textures",
                }
            ],
        }
        self.record_path = self.temp_dir / "record.json"
        self.record_path.write_text(json.dumps(record))

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run_cli(self, *args: str) -> tuple[int, str]:
        argv = ["run_assetsmith.py", str(self.record_path), *args]
        stdout = io.StringIO()
        with patch("sys.argv", argv), redirect_stdout(stdout):
            code = run_assetsmith.main()
        return code, stdout.getvalue()

    def test_json_summary_and_glb_output(self):
        output = self.temp_dir / "chair.glb"

        code, stdout = self.run_cli(
            "--base-url", self.temp_dir.as_uri(), "--output", str(output), "--json"
        )

        self.assertEqual(code, 0)
        summary = json.loads(stdout)
        self.assertEqual(summary["strategy"], "obj")
        self.assertEqual(summary["warnings"], [])
        self.assertAlmostEqual(summary["bounds"][0][1], 0.0)

        exported = trimesh.load_scene(str(output))
        self.assertAlmostEqual(float(max(exported.extents)), 5.0, places=4)

    def test_json_summary_with_thumbnail(self):
        code, stdout = self.run_cli(
            "--base-url", self.temp_dir.as_uri(), "--json", "--thumbnail"
        )

        self.assertEqual(code, 0)
        thumbnail = base64.b64decode(json.loads(stdout)["thumbnail"])
        self.assertEqual(thumbnail[:2], b"\xff\xd8")

    def test_config_overrides(self):
        code, stdout = self.run_cli(
            "--base-url",
            self.temp_dir.as_uri(),
            "--json",
            "--override",
            "normalizer.target_dimension=10",
        )

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout)["camera"]["distance"], 20.0)

    def test_failure_returns_nonzero(self):
        code, _ = self.run_cli("--base-url", (self.temp_dir / "elsewhere").as_uri())
        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
