# processes/print_3d/slicer.py

import subprocess
import platform
import os
import logging
import tempfile
import shutil
import re
import time
import itertools
from collections import deque
from typing import Optional, Tuple, List
from dataclasses import dataclass

from ...core.exceptions import SlicerError
from ...core.common_types import PrintSettings, SliceMetrics
from ...config import settings
from ...core import utils

logger = logging.getLogger(__name__)

# Constants
DEFAULT_SLICER_TIMEOUT = 120  # seconds
FALLBACK_TIME_SEC = 3600.0
FALLBACK_GRAMS = 80.0
FILAMENT_DENSITY_G_CM3 = 1.24  # used only when the slicer reports volume but not weight
GCODE_SCAN_LINES = 400  # estimates live in the header/footer comments

SLICER_NAMES = ["prusa-slicer", "prusa-slicer-console", "prusaslicer", "PrusaSlicer"]


@dataclass
class SlicerResult:
    """Holds the results extracted from the slicer output."""
    print_time_seconds: float
    filament_used_g: float
    gcode_path: Optional[str] = None


def find_slicer_executable() -> Optional[str]:
    """
    Attempts to find the PrusaSlicer (or compatible) executable path.

    Checks the system PATH and common installation paths for Linux, macOS and Windows.

    Returns:
        The absolute path to the executable if found, otherwise None.
    """
    for name in SLICER_NAMES:
        found_path = shutil.which(name)
        if found_path and os.access(found_path, os.X_OK):
            logger.info(f"Found slicer executable in system PATH: {found_path}")
            return found_path

    possible_paths = []
    home_dir = os.path.expanduser("~")
    if platform.system() == "Windows":
        program_files = os.environ.get("ProgramFiles", "C:\\Program Files")
        possible_paths.extend([
            os.path.join(program_files, "Prusa3D", "PrusaSlicer", "prusa-slicer-console.exe"),
            os.path.join(program_files, "PrusaSlicer", "prusa-slicer-console.exe"),
        ])
    elif platform.system() == "Darwin":
        possible_paths.extend([
            "/Applications/PrusaSlicer.app/Contents/MacOS/PrusaSlicer",
            "/usr/local/bin/prusa-slicer",
        ])
    else:
        possible_paths.extend([
            "/usr/bin/prusa-slicer",
            "/usr/local/bin/prusa-slicer",
            "/snap/bin/prusa-slicer",
            f"{home_dir}/Applications/prusa-slicer/prusa-slicer",
        ])

    for path in possible_paths:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            logger.info(f"Found valid slicer executable at common path: {path}")
            return path

    logger.warning("Slicer executable not found via auto-detection.")
    return None


def build_slicer_command(executable: str, input_path: str, output_dir: str, print_settings: PrintSettings) -> List[str]:
    """Builds the CLI invocation for one slicing run."""
    cmd = [
        executable,
        "--export-gcode",
        "--layer-height", f"{print_settings.layer_height:g}",
        "--fill-density", f"{print_settings.infill:g}%",
    ]
    supports = print_settings.supports
    if supports.enabled:
        cmd.append("--support-material")
        cmd.extend(["--support-material-threshold", f"{supports.angle:g}"])
        cmd.extend(["--support-material-style", supports.style.value])
        cmd.extend(["--support-material-interface-layers", str(supports.interface_layers)])
    cmd.extend(["--output", output_dir])
    # Input file goes LAST
    cmd.append(input_path)
    return cmd


def parse_time_to_seconds(text: str) -> Optional[float]:
    """Parses '1d 2h 3m 4s', '2h 5m', '15m 30s' or '02:10:00' into seconds."""
    text = text.strip().lower()
    colon = re.search(r"(\d+):(\d{1,2}):(\d{1,2})", text)
    if colon:
        return float(int(colon.group(1)) * 3600 + int(colon.group(2)) * 60 + int(colon.group(3)))
    units = re.findall(r"(\d+)\s*([dhms])", text)
    if not units:
        return None
    factors = {"d": 86400, "h": 3600, "m": 60, "s": 1}
    return float(sum(int(value) * factors[unit] for value, unit in units))


def parse_slicer_estimates(content: str) -> Tuple[Optional[float], Optional[float]]:
    """
    Parses PrusaSlicer/Slic3r G-code comments (or console output) for time and weight.

    Returns:
        (print_time_sec, filament_g); either is None when not found.
    """
    print_time_sec = None
    filament_g = None
    filament_mm3 = None

    # Example: '; estimated printing time (normal mode) = 1h 32m 15s'
    time_match = re.search(r"estimated printing time[^=\n]*=\s*([^\n;]+)", content, re.IGNORECASE)
    if time_match:
        print_time_sec = parse_time_to_seconds(time_match.group(1))
        logger.debug(f"Parsed print time: '{time_match.group(1).strip()}' -> {print_time_sec}s")

    # Examples: '; filament used [g] = 45.67' or 'filament used = 45.67g'
    weight_match = re.search(r"filament used\s*\[g\]\s*=\s*([\d.]+)", content, re.IGNORECASE) \
        or re.search(r"filament used\s*=\s*([\d.]+)\s*g\b", content, re.IGNORECASE)
    if weight_match:
        filament_g = float(weight_match.group(1))
        logger.debug(f"Parsed filament weight: {filament_g:.2f} g")

    if filament_g is None:
        vol_match_mm3 = re.search(r"filament used\s*\[mm3\]\s*=\s*([\d.]+)", content, re.IGNORECASE)
        vol_match_cm3 = re.search(r"filament used\s*\[cm3\]\s*=\s*([\d.]+)", content, re.IGNORECASE)
        if vol_match_mm3:
            filament_mm3 = float(vol_match_mm3.group(1))
        elif vol_match_cm3:
            filament_mm3 = float(vol_match_cm3.group(1)) * 1000.0
        if filament_mm3 is not None:
            filament_g = filament_mm3 / 1000.0 * FILAMENT_DENSITY_G_CM3
            logger.info(f"Calculated filament weight from volume: {filament_mm3:.2f} mm3 -> {filament_g:.2f} g")

    return print_time_sec, filament_g


def _read_gcode_comments(gcode_path: str) -> str:
    """Returns the first and last lines of a G-code file, where slicers write their estimates."""
    with open(gcode_path, "r", errors="replace") as f:
        head = list(itertools.islice(f, GCODE_SCAN_LINES))
        # The file object resumes after the head, so the tail never repeats it
        tail = deque(f, maxlen=GCODE_SCAN_LINES)
    return "".join(head) + "".join(tail)


def _find_gcode_output(output_dir: str) -> Optional[str]:
    for name in sorted(os.listdir(output_dir)):
        if name.lower().endswith(".gcode"):
            return os.path.join(output_dir, name)
    return None


def run_slicer(
    input_path: str,
    slicer_executable_path: str,
    print_settings: PrintSettings,
    output_dir: str,
    timeout: int = DEFAULT_SLICER_TIMEOUT,
) -> SlicerResult:
    """
    Runs the slicer CLI to generate G-code and extract estimates.

    Args:
        input_path: Path to the input model.
        slicer_executable_path: Full path to the slicer executable.
        print_settings: Layer height, infill and support options.
        output_dir: Directory the G-code is written to (unique per run).
        timeout: Maximum time in seconds to allow the slicer process to run.

    Returns:
        A SlicerResult object containing the parsed estimates.

    Raises:
        SlicerError: If the slicer cannot start, fails, times out, or its estimates cannot be parsed.
    """
    cmd = build_slicer_command(slicer_executable_path, input_path, output_dir, print_settings)
    logger.info(f"Running slicer command: {' '.join(cmd)}")
    slicer_start_time = time.time()

    try:
        process = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False  # Don't raise CalledProcessError automatically
        )
    except subprocess.TimeoutExpired:
        raise SlicerError(f"Slicer timed out after {timeout} seconds.") from None
    except OSError as e:
        raise SlicerError(f"Could not start slicer '{slicer_executable_path}': {e}") from e

    slicer_duration = time.time() - slicer_start_time
    logger.info(f"Slicer process finished in {slicer_duration:.2f} seconds with return code {process.returncode}.")
    if process.stdout:
        logger.debug(f"Slicer stdout:\n{process.stdout}")
    if process.stderr:
        log_level = logging.WARNING if process.returncode == 0 else logging.ERROR
        logger.log(log_level, f"Slicer stderr:\n{process.stderr}")

    if process.returncode != 0:
        error_message = f"Slicer failed with return code {process.returncode}."
        if process.stderr:
            error_message += f" {process.stderr.strip()[:1000]}"
        raise SlicerError(error_message)

    gcode_path = _find_gcode_output(output_dir)
    content = process.stdout or ""
    if gcode_path and os.path.getsize(gcode_path) > 0:
        content = _read_gcode_comments(gcode_path) + "\n" + content
    else:
        gcode_path = None

    print_time_sec, filament_g = parse_slicer_estimates(content)
    if not print_time_sec or not filament_g:
        raise SlicerError(
            f"Could not parse slicer estimates (time={print_time_sec}, grams={filament_g})."
        )

    return SlicerResult(print_time_seconds=print_time_sec, filament_used_g=filament_g, gcode_path=gcode_path)


def fallback_metrics(reason: Optional[str] = None) -> SliceMetrics:
    """Conservative estimate used whenever the slicer cannot produce one."""
    return SliceMetrics(
        time_sec=FALLBACK_TIME_SEC,
        grams=FALLBACK_GRAMS,
        support_grams=0.0,
        fallback=True,
        error=reason or "Slicer failed",
    )


def estimate(
    mesh_file_path: str,
    print_settings: PrintSettings,
    output_dir: Optional[str] = None,
    slicer_path: Optional[str] = None,
    timeout: Optional[int] = None,
    disabled: Optional[bool] = None,
) -> SliceMetrics:
    """
    Estimates print time and material for a model file.

    Never raises for slicer problems: a missing executable, a crash, a non-zero
    exit, a timeout or unparseable output all return `fallback_metrics` with
    `fallback=True`. Nothing is retried here.

    Args:
        mesh_file_path: Model file to slice.
        print_settings: Layer height, infill and support options.
        output_dir: Where to keep the generated G-code. Without one the G-code is
            discarded with the run's temp directory and `gcode_path` is None.
        slicer_path: Executable override (falls back to settings / auto-detection).
        timeout: Seconds before the run is killed (defaults to settings).
        disabled: Skip the slicer and return the fallback (defaults to settings).
    """
    if settings.slicer_disable if disabled is None else disabled:
        logger.info("Slicer disabled by configuration; using fallback estimate.")
        return fallback_metrics("Slicer disabled")
    if not os.path.exists(mesh_file_path):
        logger.error(f"Input model not found for slicing: {mesh_file_path}")
        return fallback_metrics(f"Input file not found: {mesh_file_path}")

    executable = slicer_path or settings.slicer_path or find_slicer_executable()
    if not executable:
        return fallback_metrics("Slicer executable not found")

    timeout = timeout or settings.slicer_timeout_sec
    work_dir = tempfile.mkdtemp(prefix="slice-")
    result: Optional[SlicerResult] = None
    failure: Optional[str] = None
    try:
        result = run_slicer(mesh_file_path, executable, print_settings, work_dir, timeout=timeout)
    except SlicerError as e:
        failure = str(e)

    if result is None:
        logger.warning(f"Fallback slicing metrics applied for '{os.path.basename(mesh_file_path)}': {failure}")
        shutil.rmtree(work_dir, ignore_errors=True)
        return fallback_metrics(failure)

    gcode_path = None
    if result.gcode_path and output_dir:
        os.makedirs(output_dir, exist_ok=True)
        gcode_path = shutil.move(result.gcode_path, os.path.join(output_dir, os.path.basename(result.gcode_path)))
    shutil.rmtree(work_dir, ignore_errors=True)

    logger.info(
        f"Slicing completed for '{os.path.basename(mesh_file_path)}': "
        f"{utils.format_time(result.print_time_seconds)}, {result.filament_used_g:.2f} g"
    )
    return SliceMetrics(
        time_sec=result.print_time_seconds,
        grams=result.filament_used_g,
        gcode_path=gcode_path,
        fallback=False,
    )
