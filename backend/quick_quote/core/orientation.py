# core/orientation.py

import math
import logging
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict
from trimesh import transformations

from .common_types import FaceHit

if TYPE_CHECKING:
    from .geometry import Mesh

logger = logging.getLogger(__name__)

# World convention: +Y is up, the build plate lies below the model.
DOWN = np.array([0.0, -1.0, 0.0])
WORLD_UP = np.array([0.0, 1.0, 0.0])

_EPS = 1e-9
_PARALLEL_EPS = 1e-6


class Orientation(BaseModel):
    """
    Build orientation as a unit quaternion, stored in (x, y, z, w) order.

    Instances are immutable; every solve step returns a new Orientation.
    """
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    @classmethod
    def identity(cls) -> "Orientation":
        return cls()

    @classmethod
    def from_list(cls, values: Sequence[float]) -> "Orientation":
        """Builds an orientation from an [x, y, z, w] sequence and normalizes it."""
        if len(values) != 4:
            raise ValueError(f"Orientation quaternion must contain 4 values, got {len(values)}")
        if not all(math.isfinite(float(v)) for v in values):
            raise ValueError("Orientation quaternion values must be finite numbers")
        return cls(x=float(values[0]), y=float(values[1]), z=float(values[2]), w=float(values[3])).normalized()

    @classmethod
    def from_axis_angle(cls, axis: Sequence[float], degrees: float) -> "Orientation":
        w, x, y, z = transformations.quaternion_about_axis(math.radians(degrees), axis)
        return cls(x=x, y=y, z=z, w=w).normalized()

    def as_list(self) -> list:
        return [self.x, self.y, self.z, self.w]

    def _wxyz(self) -> np.ndarray:
        return np.array([self.w, self.x, self.y, self.z], dtype=np.float64)

    def normalized(self) -> "Orientation":
        norm = math.sqrt(self.x ** 2 + self.y ** 2 + self.z ** 2 + self.w ** 2)
        if norm < _EPS:
            logger.warning("Zero-length quaternion normalized to identity.")
            return Orientation()
        return Orientation(x=self.x / norm, y=self.y / norm, z=self.z / norm, w=self.w / norm)

    def multiply(self, other: "Orientation") -> "Orientation":
        """Returns self * other (other is applied first)."""
        w, x, y, z = transformations.quaternion_multiply(self._wxyz(), other._wxyz())
        return Orientation(x=x, y=y, z=z, w=w)

    def rotation_matrix(self) -> np.ndarray:
        # quaternion_matrix normalizes its input
        return transformations.quaternion_matrix(self._wxyz())[:3, :3]

    def rotate(self, vectors) -> np.ndarray:
        """Rotates a single vector (3,) or an array of vectors (..., 3)."""
        vectors = np.asarray(vectors, dtype=np.float64)
        return vectors @ self.rotation_matrix().T


def _rotation_between(v_from: np.ndarray, v_to: np.ndarray) -> Orientation:
    """Shortest-arc rotation taking unit vector v_from onto unit vector v_to."""
    r = float(np.dot(v_from, v_to)) + 1.0
    if r < _PARALLEL_EPS:
        # Antiparallel: any axis perpendicular to v_from works for a half turn.
        if abs(v_from[0]) > abs(v_from[2]):
            q = Orientation(x=-v_from[1], y=v_from[0], z=0.0, w=0.0)
        else:
            q = Orientation(x=0.0, y=-v_from[2], z=v_from[1], w=0.0)
        return q.normalized()
    axis = np.cross(v_from, v_to)
    return Orientation(x=axis[0], y=axis[1], z=axis[2], w=r).normalized()


def align_face_to_plate(local_normal: Sequence[float], current: Optional[Orientation] = None) -> Orientation:
    """
    Computes the orientation that lays a picked face flat on the build plate.

    Args:
        local_normal: Face normal in mesh local coordinates.
        current: Orientation currently applied to the mesh (identity if None).

    Returns:
        A new Orientation; `current` unchanged when the normal is degenerate.
    """
    current = current or Orientation.identity()
    world_normal = current.rotate(local_normal)
    length = float(np.linalg.norm(world_normal))
    if not math.isfinite(length) or length < _EPS:
        logger.debug("Picked face has a degenerate normal; keeping current orientation.")
        return current
    align = _rotation_between(world_normal / length, DOWN)
    return align.multiply(current).normalized()


def pick_face(mesh: "Mesh", ray_origin: Sequence[float], ray_direction: Sequence[float]) -> Optional[FaceHit]:
    """
    Intersects a ray (mesh local space) with every triangle and returns the nearest hit.

    Uses a vectorized Moller-Trumbore test; degenerate triangles never report hits.
    """
    origin = np.asarray(ray_origin, dtype=np.float64)
    direction = np.asarray(ray_direction, dtype=np.float64)
    length = float(np.linalg.norm(direction))
    if length < _EPS or mesh.triangle_count == 0:
        return None
    direction = direction / length

    v0 = mesh.triangles[:, 0]
    edge1 = mesh.triangles[:, 1] - v0
    edge2 = mesh.triangles[:, 2] - v0

    pvec = np.cross(direction, edge2)
    det = np.einsum("ij,ij->i", edge1, pvec)
    valid = np.abs(det) > _EPS
    inv_det = np.zeros_like(det)
    inv_det[valid] = 1.0 / det[valid]

    tvec = origin - v0
    u = np.einsum("ij,ij->i", tvec, pvec) * inv_det
    qvec = np.cross(tvec, edge1)
    v = (qvec @ direction) * inv_det
    t = np.einsum("ij,ij->i", edge2, qvec) * inv_det

    hits = valid & (u >= 0.0) & (v >= 0.0) & (u + v <= 1.0) & (t > _EPS)
    if not np.any(hits):
        return None

    candidates = np.where(hits)[0]
    nearest = int(candidates[np.argmin(t[candidates])])
    distance = float(t[nearest])
    point = origin + direction * distance
    normal = mesh.normals[nearest]
    return FaceHit(
        face_index=nearest,
        normal=(float(normal[0]), float(normal[1]), float(normal[2])),
        point=(float(point[0]), float(point[1]), float(point[2])),
        distance=distance,
    )


def _fibonacci_sphere(count: int) -> np.ndarray:
    golden = math.pi * (3.0 - math.sqrt(5.0))
    i = np.arange(count, dtype=np.float64)
    y = 1.0 - (i / max(1, count - 1)) * 2.0
    radius = np.sqrt(np.clip(1.0 - y * y, 0.0, None))
    theta = golden * i
    return np.column_stack([np.cos(theta) * radius, y, np.sin(theta) * radius])


def auto_orient(mesh: "Mesh", mode: str = "upright", direction_samples: int = 96, vertex_samples: int = 8000) -> Orientation:
    """
    Picks a deterministic orientation by sampling candidate "up" directions.

    mode="upright" maximizes the model height, mode="flat" minimizes it.
    Ties are broken by the smaller XZ footprint.
    """
    if mode not in ("upright", "flat"):
        raise ValueError(f"Unknown auto-orient mode '{mode}'. Use 'upright' or 'flat'.")
    if mesh.triangle_count == 0:
        return Orientation.identity()

    direction_samples = max(24, min(240, direction_samples))
    vertex_samples = max(1000, min(20000, vertex_samples))

    vertices = mesh.triangles.reshape(-1, 3)
    stride = max(1, len(vertices) // vertex_samples)
    sampled = vertices[::stride]

    best = None
    for direction in _fibonacci_sphere(direction_samples):
        for up in (direction, -direction):
            candidate = _rotation_between(up / np.linalg.norm(up), WORLD_UP)
            rotated = candidate.rotate(sampled)
            extent = rotated.max(axis=0) - rotated.min(axis=0)
            height = float(extent[1])
            area_xz = float(extent[0] * extent[2])
            if best is None:
                best = (candidate, height, area_xz)
                continue
            _, best_height, best_area = best
            same_height = abs(height - best_height) <= _PARALLEL_EPS
            if mode == "upright":
                better = height > best_height + _PARALLEL_EPS or (same_height and area_xz < best_area - _PARALLEL_EPS)
            else:
                better = height < best_height - _PARALLEL_EPS or (same_height and area_xz < best_area - _PARALLEL_EPS)
            if better:
                best = (candidate, height, area_xz)

    orientation, height, _ = best
    logger.info(f"Auto-orient ({mode}) selected height {height:.2f}mm from {direction_samples * 2} candidates.")
    return orientation.normalized()
