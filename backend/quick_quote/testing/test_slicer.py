# testing/test_slicer.py

import os
import subprocess

import pytest

from quick_quote.config import settings
from quick_quote.core.common_types import PrintSettings, SupportPattern, SupportSettings
from quick_quote.processes.print_3d import slicer

# --- Parsing ---

@pytest.mark.parametrize("text, expected", [
    ("1h 32m 15s", 5535.0),
    ("1d 2h 3m 4s", 93784.0),
    ("15m 30s", 930.0),
    ("45s", 45.0),
    ("02:10:00", 7800.0),
    ("nonsense", None),
])
def test_parse_time_to_seconds(text, expected):
    assert slicer.parse_time_to_seconds(text) == expected

def test_parse_prusa_gcode_comments():
    content = (
        "; filament used [mm] = 1520.3\n"
        "; filament used [g] = 4.52\n"
        "; estimated printing time (normal mode) = 25m 10s\n"
    )
    assert slicer.parse_slicer_estimates(content) == (1510.0, 4.52)

def test_parse_inline_weight_format():
    content = "estimated printing time = 1h 0m 0s\nfilament used = 12.5g\n"
    assert slicer.parse_slicer_estimates(content) == (3600.0, 12.5)

def test_parse_weight_from_volume():
    time_sec, grams = slicer.parse_slicer_estimates("; filament used [cm3] = 10.0\n")
    assert time_sec is None
    assert grams == pytest.approx(12.4)
    _, grams_mm3 = slicer.parse_slicer_estimates("; filament used [mm3] = 1000\n")
    assert grams_mm3 == pytest.approx(1.24)

# --- Command ---

def test_command_without_supports():
    settings_ = PrintSettings(layer_height=0.28, infill=15, supports=SupportSettings(enabled=False))
    cmd = slicer.build_slicer_command("prusa-slicer", "/tmp/in.stl", "/tmp/out", settings_)
    assert cmd == [
        "prusa-slicer", "--export-gcode",
        "--layer-height", "0.28",
        "--fill-density", "15%",
        "--output", "/tmp/out",
        "/tmp/in.stl",
    ]

def test_command_with_tree_supports():
    settings_ = PrintSettings(supports=SupportSettings(pattern=SupportPattern.TREE, angle=50))
    cmd = slicer.build_slicer_command("prusa-slicer", "/tmp/in.stl", "/tmp/out", settings_)
    assert "--support-material" in cmd
    assert cmd[cmd.index("--support-material-threshold") + 1] == "50"
    assert cmd[cmd.index("--support-material-style") + 1] == "organic"
    assert cmd[cmd.index("--support-material-interface-layers") + 1] == "3"
    assert cmd[-1] == "/tmp/in.stl"

def test_explicit_support_style_wins():
    supports = SupportSettings(pattern=SupportPattern.TREE, style="grid")
    assert supports.style.value == "grid"

# --- Estimate ---

def test_estimate_with_fake_slicer(fake_slicer, model_file, tmp_path):
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=fake_slicer(), timeout=30, disabled=False)
    assert not metrics.fallback
    assert metrics.error is None
    assert metrics.time_sec == 5535.0
    assert metrics.grams == 45.43
    assert metrics.gcode_path is None
    args = (tmp_path / "slicer-args.txt").read_text().split("\n")
    assert "--export-gcode" in args
    assert "20%" in args
    assert args[-2] == model_file

def test_estimate_moves_gcode_to_output_dir(fake_slicer, model_file, tmp_path):
    out_dir = tmp_path / "gcode"
    metrics = slicer.estimate(model_file, PrintSettings(), output_dir=str(out_dir), slicer_path=fake_slicer(), disabled=False)
    assert metrics.gcode_path == str(out_dir / "model.gcode")
    assert os.path.exists(metrics.gcode_path)

def _output_arg(tmp_path) -> str:
    args = (tmp_path / "slicer-args.txt").read_text().split("\n")
    return args[args.index("--output") + 1]

def test_each_run_uses_its_own_directory(fake_slicer, model_file, tmp_path):
    script = fake_slicer()
    slicer.estimate(model_file, PrintSettings(), slicer_path=script, disabled=False)
    first = _output_arg(tmp_path)
    slicer.estimate(model_file, PrintSettings(), slicer_path=script, disabled=False)
    assert _output_arg(tmp_path) != first

def test_successful_runs_leave_no_temp_directories(fake_slicer, model_file, scratch_tempdir):
    script = fake_slicer()
    for _ in range(3):
        metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=script, disabled=False)
        assert not metrics.fallback
    assert list(scratch_tempdir.glob("slice-*")) == []

def test_estimates_found_past_a_long_gcode_body(fake_slicer, model_file):
    body = "\n".join(["G1 X1 Y1 E0.1"] * (slicer.GCODE_SCAN_LINES * 3))
    footer = "; filament used [g] = 12.5\n; estimated printing time (normal mode) = 2h 0m 0s"
    script = fake_slicer(gcode=body + "\n" + footer)
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=script, disabled=False)
    assert not metrics.fallback
    assert metrics.grams == 12.5
    assert metrics.time_sec == 7200.0

def test_read_gcode_comments_keeps_head_and_tail(tmp_path):
    lines = [f"; line {i}" for i in range(slicer.GCODE_SCAN_LINES * 3)]
    path = tmp_path / "long.gcode"
    path.write_text("\n".join(lines) + "\n")
    kept = slicer._read_gcode_comments(str(path)).splitlines()
    assert len(kept) == slicer.GCODE_SCAN_LINES * 2
    assert kept[0] == "; line 0"
    assert kept[-1] == lines[-1]
    assert lines[slicer.GCODE_SCAN_LINES] not in kept

def test_estimate_falls_back_on_estimates_in_stdout_only(fake_slicer, model_file):
    script = fake_slicer(gcode="G1 X0", stdout="estimated printing time = 10m 0s; filament used = 3.2g")
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=script, disabled=False)
    assert not metrics.fallback
    assert metrics.time_sec == 600.0
    assert metrics.grams == 3.2

def _assert_fallback(metrics):
    assert metrics.fallback is True
    assert metrics.time_sec == 3600.0
    assert metrics.grams == 80.0
    assert metrics.support_grams == 0.0
    assert metrics.error

def test_nonzero_exit_falls_back(fake_slicer, model_file):
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=fake_slicer(exit_code=2), disabled=False)
    _assert_fallback(metrics)
    assert "return code 2" in metrics.error

def test_unparseable_output_falls_back(fake_slicer, model_file):
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=fake_slicer(gcode="G1 X0"), disabled=False)
    _assert_fallback(metrics)
    assert "parse" in metrics.error

def test_missing_executable_falls_back(model_file, tmp_path):
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=str(tmp_path / "no-such-slicer"), disabled=False)
    _assert_fallback(metrics)

def test_executable_not_found_falls_back(monkeypatch, model_file):
    monkeypatch.setattr(settings, "slicer_path", None)
    monkeypatch.setattr(slicer, "find_slicer_executable", lambda: None)
    metrics = slicer.estimate(model_file, PrintSettings(), disabled=False)
    _assert_fallback(metrics)
    assert metrics.error == "Slicer executable not found"

def test_timeout_falls_back(monkeypatch, model_file):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))
    monkeypatch.setattr(slicer.subprocess, "run", fake_run)
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path="/usr/bin/true", timeout=30, disabled=False)
    _assert_fallback(metrics)
    assert "timed out after 30 seconds" in metrics.error

def test_disabled_slicer_falls_back(monkeypatch, model_file, fake_slicer):
    monkeypatch.setattr(settings, "slicer_disable", True)
    metrics = slicer.estimate(model_file, PrintSettings(), slicer_path=fake_slicer())
    _assert_fallback(metrics)
    assert metrics.error == "Slicer disabled"

def test_missing_input_falls_back(tmp_path, fake_slicer):
    metrics = slicer.estimate(str(tmp_path / "nope.stl"), PrintSettings(), slicer_path=fake_slicer(), disabled=False)
    _assert_fallback(metrics)
