# services/quote_service.py

import os
import time
import shutil
import logging
import tempfile
from typing import Mapping, Optional, Sequence, Union

from fastapi.concurrency import run_in_threadpool

from ..config import Settings, settings as default_settings
from ..core import geometry
from ..core.common_types import (
    FaceHit,
    ModelAnalysis,
    OverhangResult,
    PricedQuote,
    PricingConfig,
    PrintSettings,
    QuickOrderItem,
    QuoteUpload,
    ShippingLocation,
    SliceMetrics,
)
from ..core.geometry import Mesh
from ..core.orientation import Orientation, align_face_to_plate, auto_orient, pick_face
from ..processes.print_3d import overhang, slicer
from . import pricing

logger = logging.getLogger(__name__)

OrientationLike = Union[Orientation, Sequence[float], None]


def _as_orientation(value: OrientationLike) -> Orientation:
    if value is None:
        return Orientation.identity()
    if isinstance(value, Orientation):
        return value
    return Orientation.from_list(value)


class QuickQuoteService:
    """Service layer tying upload parsing, orientation, overhang analysis, slicing and pricing together."""

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        pricing_config: Optional[PricingConfig] = None,
        material_costs: Optional[Mapping[str, float]] = None,
    ):
        """
        Args:
            app_settings: Runtime settings (slicer path/timeout, default threshold).
            pricing_config: Business pricing settings; built from `app_settings` when omitted.
            material_costs: Cost per gram keyed by material id; defaults to `app_settings.material_costs`.
        """
        self.settings = app_settings or default_settings
        self.pricing_config = pricing_config or self.settings.pricing_config()
        self.material_costs = dict(self.settings.material_costs if material_costs is None else material_costs)
        logger.info(f"QuickQuoteService initialized with {len(self.material_costs)} material rate(s).")

    # --- Geometry ---

    def _threshold(self, threshold: Optional[float]) -> float:
        return self.settings.overhang_threshold_deg if threshold is None else threshold

    def _build_analysis(self, mesh: Mesh, orientation: Orientation, result: OverhangResult, start_time: float) -> ModelAnalysis:
        return ModelAnalysis(
            properties=geometry.get_mesh_properties(mesh),
            orientation=orientation.as_list(),
            overhang=result,
            build_volume=geometry.check_build_volume(mesh, orientation),
            analysis_time_sec=time.time() - start_time,
        )

    def analyze_upload(
        self, data: bytes, file_name: str, orientation: OrientationLike = None, threshold: Optional[float] = None
    ) -> ModelAnalysis:
        """Parses an upload and runs overhang and build-volume checks in-process."""
        start_time = time.time()
        mesh = geometry.load_mesh(data, file_name)
        orientation = _as_orientation(orientation)
        result = overhang.analyze(mesh, orientation, self._threshold(threshold))
        return self._build_analysis(mesh, orientation, result, start_time)

    async def analyze_upload_async(
        self, data: bytes, file_name: str, orientation: OrientationLike = None, threshold: Optional[float] = None
    ) -> ModelAnalysis:
        """
        Same as `analyze_upload`, for use from the event loop.

        Meshes with at least `overhang_worker_min_triangles` triangles are
        analyzed in a worker process; parsing and smaller analyses run in the
        thread pool so the event loop never blocks.
        """
        start_time = time.time()
        mesh = await run_in_threadpool(geometry.load_mesh, data, file_name)
        orientation = _as_orientation(orientation)
        threshold = self._threshold(threshold)
        if mesh.triangle_count >= self.settings.overhang_worker_min_triangles:
            result = await overhang.analyze_in_worker(mesh, orientation, threshold)
        else:
            result = await run_in_threadpool(overhang.analyze, mesh, orientation, threshold)
        return await run_in_threadpool(self._build_analysis, mesh, orientation, result, start_time)

    def pick_face(self, data: bytes, file_name: str, ray_origin, ray_direction) -> Optional[FaceHit]:
        return pick_face(geometry.load_mesh(data, file_name), ray_origin, ray_direction)

    def align_face(self, local_normal: Sequence[float], current: OrientationLike = None) -> Orientation:
        return align_face_to_plate(local_normal, _as_orientation(current))

    def auto_orient(self, data: bytes, file_name: str, mode: str = "upright") -> Orientation:
        return auto_orient(geometry.load_mesh(data, file_name), mode=mode)

    # --- Slicing ---

    def slice_mesh(
        self,
        mesh: Mesh,
        print_settings: PrintSettings,
        orientation: OrientationLike = None,
        output_dir: Optional[str] = None,
    ) -> SliceMetrics:
        """
        Bakes the orientation into a temporary STL and estimates it.

        When supports are enabled and the slicer succeeded, `support_grams` is
        filled from the overhang estimate over the same faces the slicer
        supports (see `overhang.threshold_for_support_angle`).
        """
        orientation = _as_orientation(orientation)
        work_dir = tempfile.mkdtemp(prefix="quote-")
        try:
            base_name = os.path.splitext(os.path.basename(mesh.file_name or "model"))[0] or "model"
            stl_path = os.path.join(work_dir, f"{base_name}.stl")
            with open(stl_path, "wb") as f:
                f.write(geometry.export_oriented_stl(mesh, orientation))
            metrics = slicer.estimate(
                stl_path,
                print_settings,
                output_dir=output_dir,
                slicer_path=self.settings.slicer_path,
                timeout=self.settings.slicer_timeout_sec,
                disabled=self.settings.slicer_disable,
            )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        if print_settings.supports.enabled and not metrics.fallback:
            threshold = overhang.threshold_for_support_angle(print_settings.supports.angle)
            support = overhang.analyze(mesh, orientation, threshold)
            metrics = metrics.model_copy(update={"support_grams": support.support_weight})
        return metrics

    def slice_upload(
        self,
        data: bytes,
        file_name: str,
        print_settings: Optional[PrintSettings] = None,
        orientation: OrientationLike = None,
        output_dir: Optional[str] = None,
    ) -> SliceMetrics:
        mesh = geometry.load_mesh(data, file_name)
        return self.slice_mesh(mesh, print_settings or PrintSettings(), orientation, output_dir)

    # --- Pricing ---

    def price(
        self,
        items: Sequence[QuickOrderItem],
        location: Optional[ShippingLocation] = None,
        discount_type=None,
        discount_value=None,
        requester_email: Optional[str] = None,
    ) -> PricedQuote:
        return pricing.price_quick_order(
            items,
            location,
            self.pricing_config,
            self.material_costs,
            discount_type=discount_type,
            discount_value=discount_value,
            requester_email=requester_email,
        )

    def quote(
        self,
        uploads: Sequence[QuoteUpload],
        location: Optional[ShippingLocation] = None,
        discount_type=None,
        discount_value=None,
        requester_email: Optional[str] = None,
    ) -> PricedQuote:
        """
        Slices every upload and prices the resulting order.

        Raises:
            UnsupportedModelError: If any upload cannot be parsed.
            NoItemsError: If `uploads` is empty.
        """
        logger.info(f"Received quote request for {len(uploads)} upload(s).")
        items = []
        for upload in uploads:
            metrics = self.slice_upload(upload.data, upload.file_name, upload.settings, upload.orientation)
            if metrics.fallback:
                logger.warning(f"Using fallback estimate for '{upload.file_name}': {metrics.error}")
            items.append(QuickOrderItem(
                file_name=upload.file_name,
                material_id=upload.material_id,
                support_material_id=upload.support_material_id,
                settings=upload.settings,
                quantity=upload.quantity,
                metrics=metrics,
            ))
        return self.price(items, location, discount_type, discount_value, requester_email)
