# testing/conftest.py

import logging
import stat
import tempfile
import textwrap
from decimal import Decimal

import numpy as np
import pytest
import trimesh

from quick_quote.config import Settings
from quick_quote.core.common_types import PricingConfig, ShippingRegion
from quick_quote.core.geometry import Mesh
from quick_quote.core.orientation import Orientation

logger = logging.getLogger(__name__)

BOX_SIZE_MM = 20.0

# --- Mesh Fixtures ---

@pytest.fixture(scope="session")
def box_trimesh() -> trimesh.Trimesh:
    """20 mm cube centred on the origin with outward-facing normals."""
    return trimesh.creation.box(extents=[BOX_SIZE_MM] * 3)

@pytest.fixture(scope="session")
def box_mesh(box_trimesh) -> Mesh:
    return Mesh.from_triangles(box_trimesh.triangles, file_name="box.stl")

@pytest.fixture(scope="session")
def tall_box_mesh() -> Mesh:
    tall = trimesh.creation.box(extents=[10.0, 40.0, 10.0])
    return Mesh.from_triangles(tall.triangles, file_name="tall.stl")

@pytest.fixture(scope="session")
def box_stl_bytes(box_trimesh) -> bytes:
    return box_trimesh.export(file_type="stl")

@pytest.fixture(scope="session")
def box_3mf_bytes(box_trimesh) -> bytes:
    return box_trimesh.export(file_type="3mf")

@pytest.fixture
def tilted_orientation() -> Orientation:
    """60 degrees about X: the cube's +Z face now points steeply down, clear of the plate."""
    return Orientation.from_axis_angle([1.0, 0.0, 0.0], 60.0)

@pytest.fixture
def degenerate_mesh() -> Mesh:
    triangles = np.array([
        [[0, 0, 0], [1, 0, 0], [0, 0, 1]],
        [[0, 0, 0], [1, 1, 1], [2, 2, 2]],  # collinear
    ], dtype=np.float64)
    return Mesh.from_triangles(triangles)

# --- Settings Fixtures ---

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        slicer_path=None,
        slicer_disable=True,
        hourly_rate=Decimal("50"),
        setup_fee=Decimal("10"),
        minimum_price=Decimal("20"),
        material_costs={"PLA": Decimal("0.5"), "PVA": Decimal("1.0")},
    )

@pytest.fixture
def shipping_regions():
    return [
        ShippingRegion(code="metro", label="Metro", base_amount=Decimal("10.00"), states=["NSW", "VIC"],
                       postcode_prefixes=["20", "30"]),
        ShippingRegion(code="regional", label="Regional", base_amount=Decimal("15.00"), states=["NSW"],
                       postcode_prefixes=["28"], remote_surcharge=Decimal("7.50")),
        ShippingRegion(code="west", label="West", base_amount=Decimal("20.00"), states=["WA"]),
    ]

@pytest.fixture
def pricing_config(shipping_regions) -> PricingConfig:
    return PricingConfig(
        hourly_rate=Decimal("50"),
        setup_fee=Decimal("10"),
        minimum_price=Decimal("20"),
        tax_rate=Decimal("0"),
        shipping_regions=shipping_regions,
        default_shipping_region="west",
    )

# --- Slicer Fixtures ---

FAKE_GCODE_FOOTER = """\
; filament used [mm] = 15234.12
; filament used [cm3] = 36.64
; filament used [g] = 45.43
; estimated printing time (normal mode) = 1h 32m 15s
"""

@pytest.fixture
def fake_slicer(tmp_path):
    """
    Writes an executable stand-in for the slicer CLI.

    It records its arguments in slicer-args.txt, writes a G-code file into the
    --output directory and exits with `exit_code`.
    """
    def _make(exit_code: int = 0, gcode: str = FAKE_GCODE_FOOTER, stdout: str = "") -> str:
        script = tmp_path / f"fake-slicer-{exit_code}.sh"
        args_file = tmp_path / "slicer-args.txt"
        header = textwrap.dedent(f"""\
            #!/bin/sh
            printf '%s\\n' "$@" > "{args_file}"
            out=""
            prev=""
            for arg in "$@"; do
              if [ "$prev" = "--output" ]; then out="$arg"; fi
              prev="$arg"
            done
            if [ {exit_code} -ne 0 ]; then
              echo "slicing failed" >&2
              exit {exit_code}
            fi
            """)
        body = f"cat > \"$out/model.gcode\" <<'GCODE'\nG28\nG1 X10 Y10\n{gcode}\nGCODE\n"
        footer = f"printf '%s' '{stdout}'\nexit 0\n"
        script.write_text(header + body + footer)
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)
    return _make

@pytest.fixture
def model_file(tmp_path, box_stl_bytes) -> str:
    path = tmp_path / "box.stl"
    path.write_bytes(box_stl_bytes)
    return str(path)

@pytest.fixture
def scratch_tempdir(tmp_path, monkeypatch):
    """Points tempfile.mkdtemp at an empty directory so leftover run directories can be counted."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch
