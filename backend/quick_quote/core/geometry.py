# core/geometry.py

import io
import os
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import trimesh

from .common_types import BoundingBox, BuildVolumeStatus, MeshProperties
from .exceptions import UnsupportedModelError
from .orientation import Orientation

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".stl": "stl", ".3mf": "3mf"}
ZIP_MAGIC = b"PK\x03\x04"

# Printer build volume (mm), plate centred on the origin
BUILD_PLATE_SIZE_MM = 240.0
BUILD_HEIGHT_MM = 240.0

_ZERO_NORMAL_EPS = 1e-12


@dataclass(frozen=True, eq=False)
class Mesh:
    """
    Flat triangle buffer for one request.

    `triangles` has shape (n, 3, 3), `normals` has shape (n, 3). Triangles are
    addressed by index everywhere in the pipeline.
    """
    triangles: np.ndarray
    normals: np.ndarray
    source_format: str = "stl"
    file_name: Optional[str] = None

    @classmethod
    def from_triangles(cls, triangles, source_format: str = "stl", file_name: Optional[str] = None) -> "Mesh":
        tri = np.ascontiguousarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        return cls(triangles=tri, normals=compute_face_normals(tri), source_format=source_format, file_name=file_name)

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    def areas(self) -> np.ndarray:
        cross = np.cross(self.triangles[:, 1] - self.triangles[:, 0], self.triangles[:, 2] - self.triangles[:, 0])
        return np.linalg.norm(cross, axis=1) * 0.5

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        vertices = self.triangles.reshape(-1, 3)
        return vertices.min(axis=0), vertices.max(axis=0)

    def oriented_triangles(self, orientation: Orientation) -> np.ndarray:
        """Triangles rotated into world space (Y up)."""
        return orientation.rotate(self.triangles)


def compute_face_normals(triangles: np.ndarray) -> np.ndarray:
    """Unit normals following the right-hand winding order; zero for degenerate triangles."""
    cross = np.cross(triangles[:, 1] - triangles[:, 0], triangles[:, 2] - triangles[:, 0])
    lengths = np.linalg.norm(cross, axis=1)
    normals = np.zeros_like(cross)
    valid = lengths > _ZERO_NORMAL_EPS
    normals[valid] = cross[valid] / lengths[valid, np.newaxis]
    return normals


def _detect_format(data: bytes, file_name: str) -> str:
    file_ext = os.path.splitext(file_name)[1].lower()
    if file_ext in SUPPORTED_EXTENSIONS:
        return SUPPORTED_EXTENSIONS[file_ext]
    if file_ext:
        raise UnsupportedModelError(file_name, f"unsupported file extension '{file_ext}'. Use STL or 3MF.")
    # No extension: decide from the payload itself
    return "3mf" if data[:4] == ZIP_MAGIC else "stl"


def load_mesh(data: bytes, file_name: str) -> Mesh:
    """
    Parses uploaded model bytes into a Mesh.

    Args:
        data: Raw file content (binary or ASCII STL, or 3MF).
        file_name: Declared file name; its extension selects the parser.

    Returns:
        A Mesh with winding-consistent unit normals.

    Raises:
        UnsupportedModelError: If the payload cannot be parsed or holds no triangles.
    """
    if not data:
        raise UnsupportedModelError(file_name, "file is empty")

    source_format = _detect_format(data, file_name)
    logger.info(f"Loading mesh from: {file_name} (format: {source_format}, {len(data)} bytes)")

    try:
        # process=False keeps degenerate triangles and the original face order.
        # force="mesh" flattens multi-object 3MF scenes with their transforms applied.
        loaded = trimesh.load(io.BytesIO(data), file_type=source_format, force="mesh", process=False)
    except Exception as e:
        logger.error(f"Trimesh failed to load '{file_name}': {e}")
        raise UnsupportedModelError(file_name, f"could not parse {source_format.upper()} data ({e})") from e

    if not isinstance(loaded, trimesh.Trimesh):
        raise UnsupportedModelError(file_name, f"parser returned {type(loaded).__name__}, not a triangle mesh")
    if len(loaded.faces) == 0:
        raise UnsupportedModelError(file_name, "model contains no triangles")

    mesh = Mesh.from_triangles(loaded.triangles, source_format=source_format, file_name=file_name)
    degenerate = int(np.sum(~np.any(mesh.normals, axis=1)))
    if degenerate:
        logger.warning(f"'{file_name}' contains {degenerate} degenerate triangles; keeping them as-is.")
    logger.info(f"Loaded {mesh.triangle_count} triangles from '{file_name}'.")
    return mesh


def load_mesh_file(file_path: str) -> Mesh:
    """Reads a model from disk and parses it with `load_mesh`."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Input file not found: {file_path}")
    with open(file_path, "rb") as f:
        data = f.read()
    return load_mesh(data, os.path.basename(file_path))


def get_mesh_properties(mesh: Mesh) -> MeshProperties:
    """
    Extracts basic properties from a Mesh.

    Volume uses signed tetrahedra against the origin, so it is only meaningful
    for closed meshes. Units are assumed to be millimetres.
    """
    min_coords, max_coords = mesh.bounds()
    size = max_coords - min_coords
    a, b, c = mesh.triangles[:, 0], mesh.triangles[:, 1], mesh.triangles[:, 2]
    signed_volume = float(np.einsum("ij,ij->i", a, np.cross(b, c)).sum() / 6.0)
    area = float(mesh.areas().sum())

    bbox = BoundingBox(
        min_x=min_coords[0], min_y=min_coords[1], min_z=min_coords[2],
        max_x=max_coords[0], max_y=max_coords[1], max_z=max_coords[2],
        size_x=size[0], size_y=size[1], size_z=size[2],
    )
    return MeshProperties(
        file_name=mesh.file_name,
        source_format=mesh.source_format,
        triangle_count=mesh.triangle_count,
        degenerate_triangle_count=int(np.sum(~np.any(mesh.normals, axis=1))),
        bounding_box=bbox,
        volume_cm3=abs(signed_volume) / 1000.0,
        surface_area_cm2=area / 100.0,
    )


def _place_on_plate(world_vertices: np.ndarray) -> np.ndarray:
    """Centres vertices on the plate in X/Z and drops the lowest point to Y=0."""
    min_v = world_vertices.min(axis=0)
    max_v = world_vertices.max(axis=0)
    offset = np.array([-(min_v[0] + max_v[0]) / 2.0, -min_v[1], -(min_v[2] + max_v[2]) / 2.0])
    return world_vertices + offset


def check_build_volume(mesh: Mesh, orientation: Orientation) -> BuildVolumeStatus:
    """Checks whether the oriented model, centred on the plate, fits the build volume."""
    placed = _place_on_plate(mesh.oriented_triangles(orientation).reshape(-1, 3))
    min_v = placed.min(axis=0)
    max_v = placed.max(axis=0)
    half_plate = BUILD_PLATE_SIZE_MM / 2.0

    violations = []
    if max_v[0] > half_plate:
        violations.append(f"Model exceeds X plate limit by {(max_v[0] - half_plate) * 2:.1f}mm")
    if max_v[2] > half_plate:
        violations.append(f"Model exceeds Z plate limit by {(max_v[2] - half_plate) * 2:.1f}mm")
    if max_v[1] > BUILD_HEIGHT_MM:
        violations.append(f"Model exceeds build height by {max_v[1] - BUILD_HEIGHT_MM:.1f}mm")

    return BuildVolumeStatus(
        in_bounds=not violations,
        width=float(max_v[0] - min_v[0]),
        depth=float(max_v[2] - min_v[2]),
        height=float(max_v[1] - min_v[1]),
        violations=violations,
    )


def export_oriented_stl(mesh: Mesh, orientation: Orientation) -> bytes:
    """
    Bakes the orientation into the mesh and exports binary STL for the slicer.

    The model is centred and dropped onto the plate, then converted from the
    Y-up world used here to the Z-up convention slicers expect.
    """
    placed = _place_on_plate(mesh.oriented_triangles(orientation).reshape(-1, 3))
    z_up = np.column_stack([placed[:, 0], -placed[:, 2], placed[:, 1]]).reshape(-1, 3, 3)
    exported = trimesh.Trimesh(**trimesh.triangles.to_kwargs(z_up), process=False)
    return exported.export(file_type="stl")
