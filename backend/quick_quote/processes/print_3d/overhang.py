# processes/print_3d/overhang.py

import time
import math
import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Any, Dict, Optional

import numpy as np

from ...core.common_types import OverhangResult
from ...core.geometry import Mesh
from ...core.orientation import DOWN, Orientation

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DEG = 45.0
SUPPORT_DENSITY_G_PER_MM3 = 0.00124  # ~1.24 g/cm^3 (PLA)
PLATE_HEIGHT_EPSILON_MM = 0.1  # faces this close to the plate rest on it
_NORMAL_EPS = 1e-8


def threshold_for_support_angle(support_angle_deg: float) -> float:
    """
    Converts a slicer support angle into an `analyze` threshold.

    The slicer supports faces within `support_angle_deg` of straight down, so a
    larger angle means more support. `analyze` flags faces within
    (90 - threshold) of straight down, so the two are complementary.
    """
    return 90.0 - float(np.clip(support_angle_deg, 0.0, 90.0))


def analyze(mesh: Mesh, orientation: Orientation, threshold_deg: float = DEFAULT_THRESHOLD_DEG) -> OverhangResult:
    """
    Classifies overhang triangles and estimates the support they need.

    The threshold is the overhang angle from vertical that the printer can
    bridge unsupported: a triangle needs support when its normal lies within
    (90 - threshold_deg) degrees of straight down. At the default 45 degrees
    that is "less than 45 degrees from straight down"; a larger threshold can
    only shrink the overhang set.

    Args:
        mesh: Triangle buffer in local coordinates.
        orientation: Build orientation applied before evaluating "down".
        threshold_deg: Overhang threshold in degrees (0-90).

    Returns:
        An OverhangResult with sorted face indices and support aggregates.
    """
    start_time = time.time()
    threshold_deg = float(np.clip(threshold_deg, 0.0, 90.0))
    if mesh.triangle_count == 0:
        return OverhangResult(threshold_deg=threshold_deg)

    world = mesh.oriented_triangles(orientation)
    plate_y = float(world[:, :, 1].min())

    # Normals follow the stored (winding-derived) normals, rotated with the mesh
    normals = orientation.rotate(mesh.normals)
    lengths = np.linalg.norm(normals, axis=1)
    valid = lengths > _NORMAL_EPS
    unit = np.zeros_like(normals)
    unit[valid] = normals[valid] / lengths[valid, np.newaxis]

    cos_down = np.clip(unit @ DOWN, -1.0, 1.0)
    angle_from_down = np.degrees(np.arccos(cos_down))
    facing_down = valid & (angle_from_down < 90.0 - threshold_deg)

    cross = np.cross(world[:, 1] - world[:, 0], world[:, 2] - world[:, 0])
    areas = np.linalg.norm(cross, axis=1) * 0.5
    heights = world[:, :, 1].mean(axis=1) - plate_y

    on_plate = facing_down & (heights <= PLATE_HEIGHT_EPSILON_MM)
    overhang = facing_down & ~on_plate

    # Footprint of each overhang triangle projected onto the plate, extruded down to it
    footprints = areas[overhang] * np.abs(cos_down[overhang])
    support_volume = float(np.sum(footprints * heights[overhang]))

    result = OverhangResult(
        overhang_face_indices=tuple(int(i) for i in np.flatnonzero(overhang)),
        support_volume=support_volume,
        support_weight=support_volume * SUPPORT_DENSITY_G_PER_MM3,
        contact_area=float(np.sum(areas[overhang])),
        plate_contact_area=float(np.sum(areas[on_plate])),
        threshold_deg=threshold_deg,
    )
    logger.debug(
        f"Overhang analysis: {result.overhang_count}/{mesh.triangle_count} faces, "
        f"support {support_volume:.2f}mm³ in {time.time() - start_time:.3f}s"
    )
    return result


# --- Worker boundary ---
# The payload is plain data so it survives pickling into a separate process.

def build_payload(mesh: Mesh, orientation: Orientation, threshold_deg: float) -> Dict[str, Any]:
    triangles = np.ascontiguousarray(mesh.triangles, dtype=np.float32)
    return {
        "triangles": triangles.tobytes(),
        "triangle_count": mesh.triangle_count,
        "quaternion": orientation.as_list(),
        "threshold": float(threshold_deg),
    }


def analyze_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Worker entry point: serialized triangle buffer and parameters in, plain result out."""
    start_time = time.time()
    triangles = np.frombuffer(payload["triangles"], dtype=np.float32).reshape(payload["triangle_count"], 3, 3)
    mesh = Mesh.from_triangles(triangles)
    orientation = Orientation.from_list(payload["quaternion"])
    result = analyze(mesh, orientation, payload.get("threshold", DEFAULT_THRESHOLD_DEG))
    response = result.model_dump()
    response["duration_ms"] = int(math.ceil((time.time() - start_time) * 1000))
    return response


async def analyze_in_worker(
    mesh: Mesh,
    orientation: Orientation,
    threshold_deg: float = DEFAULT_THRESHOLD_DEG,
    executor: Optional[Executor] = None,
) -> OverhangResult:
    """
    Runs `analyze` off the event loop.

    Without an explicit executor a one-shot process pool is used and torn down
    afterwards. Cancelling the awaiting task discards the worker without
    waiting for its reply.
    """
    owns_executor = executor is None
    executor = executor or ProcessPoolExecutor(max_workers=1)
    payload = build_payload(mesh, orientation, threshold_deg)
    loop = asyncio.get_running_loop()
    try:
        response = await loop.run_in_executor(executor, analyze_payload, payload)
    except asyncio.CancelledError:
        logger.info("Overhang analysis cancelled; discarding worker.")
        if owns_executor:
            executor.shutdown(wait=False, cancel_futures=True)
            owns_executor = False
        raise
    finally:
        if owns_executor:
            executor.shutdown(wait=True)

    logger.info(
        f"Overhang detection completed in worker: {len(response['overhang_face_indices'])} faces, "
        f"support {response['support_volume']:.2f}mm³, {response['duration_ms']}ms"
    )
    response.pop("duration_ms", None)
    return OverhangResult(**response)
