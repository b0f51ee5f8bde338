# testing/test_quote_service.py

import asyncio
import threading
from decimal import Decimal

import pytest

from quick_quote.config import Settings
from quick_quote.core.common_types import PrintSettings, QuoteUpload, ShippingLocation, SupportSettings
from quick_quote.core.exceptions import NoItemsError, UnsupportedModelError
from quick_quote.core import geometry
from quick_quote.processes.print_3d import overhang
from quick_quote.services.quote_service import QuickQuoteService


@pytest.fixture
def service(test_settings, pricing_config) -> QuickQuoteService:
    return QuickQuoteService(test_settings, pricing_config)


def test_analyze_upload(service, box_stl_bytes, tilted_orientation):
    flat = service.analyze_upload(box_stl_bytes, "box.stl")
    assert flat.overhang.overhang_count == 0
    assert flat.properties.volume_cm3 == pytest.approx(8.0)
    tilted = service.analyze_upload(box_stl_bytes, "box.stl", tilted_orientation.as_list(), threshold=30)
    assert tilted.overhang.overhang_count >= 1
    assert tilted.overhang.threshold_deg == 30.0

def test_analyze_upload_async_runs_small_meshes_inline(service, box_stl_bytes, tilted_orientation):
    inline = service.analyze_upload(box_stl_bytes, "box.stl", tilted_orientation)
    result = asyncio.run(service.analyze_upload_async(box_stl_bytes, "box.stl", tilted_orientation))
    assert result.overhang == inline.overhang

def test_analyze_upload_rejects_bad_model(service):
    with pytest.raises(UnsupportedModelError):
        service.analyze_upload(b"nope", "model.step")

def test_default_threshold_comes_from_settings(test_settings, pricing_config, box_stl_bytes):
    custom = test_settings.model_copy(update={"overhang_threshold_deg": 10.0})
    result = QuickQuoteService(custom, pricing_config).analyze_upload(box_stl_bytes, "box.stl")
    assert result.overhang.threshold_deg == 10.0

def test_analyze_upload_async_keeps_blocking_work_off_the_loop(monkeypatch, service, box_stl_bytes):
    threads = {}
    real_load, real_analyze = geometry.load_mesh, overhang.analyze

    def recording_load(*args, **kwargs):
        threads["load"] = threading.current_thread()
        return real_load(*args, **kwargs)

    def recording_analyze(*args, **kwargs):
        threads["analyze"] = threading.current_thread()
        return real_analyze(*args, **kwargs)

    monkeypatch.setattr(geometry, "load_mesh", recording_load)
    monkeypatch.setattr(overhang, "analyze", recording_analyze)

    async def run():
        loop_thread = threading.current_thread()
        await service.analyze_upload_async(box_stl_bytes, "box.stl")
        return loop_thread

    loop_thread = asyncio.run(run())
    assert threads["load"] is not loop_thread
    assert threads["analyze"] is not loop_thread

def test_pick_and_align(service, box_stl_bytes):
    hit = service.pick_face(box_stl_bytes, "box.stl", [1.0, 2.0, 50.0], [0.0, 0.0, -1.0])
    orientation = service.align_face(hit.normal)
    assert orientation.rotate(hit.normal)[1] == pytest.approx(-1.0)

def test_slice_upload_disabled_uses_fallback(service, box_stl_bytes):
    metrics = service.slice_upload(box_stl_bytes, "box.stl")
    assert metrics.fallback
    assert metrics.support_grams == 0.0

def test_slice_fills_support_grams(fake_slicer, box_stl_bytes, pricing_config, tilted_orientation):
    live = Settings(_env_file=None, slicer_path=fake_slicer(), slicer_disable=False)
    service = QuickQuoteService(live, pricing_config, {"PLA": Decimal("0.5")})
    with_supports = service.slice_upload(box_stl_bytes, "box.stl", PrintSettings(), tilted_orientation)
    assert not with_supports.fallback
    assert with_supports.grams == 45.43
    assert with_supports.support_grams > 0
    without = service.slice_upload(
        box_stl_bytes, "box.stl", PrintSettings(supports=SupportSettings(enabled=False)), tilted_orientation
    )
    assert without.support_grams == 0.0

def test_successful_slices_leave_no_temp_directories(fake_slicer, box_stl_bytes, pricing_config, scratch_tempdir):
    live = Settings(_env_file=None, slicer_path=fake_slicer(), slicer_disable=False)
    service = QuickQuoteService(live, pricing_config, {"PLA": Decimal("0.5")})
    for _ in range(3):
        metrics = service.slice_upload(box_stl_bytes, "box.stl")
        assert not metrics.fallback
        assert metrics.gcode_path is None
    assert list(scratch_tempdir.iterdir()) == []

@pytest.mark.parametrize("support_angle, expected_threshold", [(45.0, 45.0), (60.0, 30.0), (30.0, 60.0)])
def test_support_estimate_follows_slicer_support_angle(monkeypatch, fake_slicer, box_stl_bytes, pricing_config,
                                                       tmp_path, support_angle, expected_threshold):
    thresholds = []
    real_analyze = overhang.analyze

    def recording_analyze(mesh, orientation, threshold_deg):
        thresholds.append(threshold_deg)
        return real_analyze(mesh, orientation, threshold_deg)

    monkeypatch.setattr(overhang, "analyze", recording_analyze)
    live = Settings(_env_file=None, slicer_path=fake_slicer(), slicer_disable=False)
    service = QuickQuoteService(live, pricing_config, {"PLA": Decimal("0.5")})
    service.slice_upload(box_stl_bytes, "box.stl", PrintSettings(supports=SupportSettings(angle=support_angle)))

    args = (tmp_path / "slicer-args.txt").read_text().split("\n")
    assert float(args[args.index("--support-material-threshold") + 1]) == support_angle
    assert thresholds == [expected_threshold]

def test_quote_prices_fallback_estimates(service, box_stl_bytes):
    upload = QuoteUpload(file_name="box.stl", data=box_stl_bytes, material_id="PLA", quantity=2)
    quote = service.quote([upload], ShippingLocation(state="VIC"))
    item = quote.items[0]
    assert item.fallback_estimate
    # 10 setup + 80 g * 0.5 + 1 h * 50
    assert item.unit_price == Decimal("100.00")
    assert item.total == Decimal("200.00")
    assert quote.shipping.code == "metro"
    assert quote.total == Decimal("210.00")

def test_quote_without_uploads(service):
    with pytest.raises(NoItemsError):
        service.quote([])
