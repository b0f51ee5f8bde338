# main_cli.py

import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from quick_quote.config import settings, setup_logging
from quick_quote.core import geometry, utils
from quick_quote.core.common_types import (
    DiscountType,
    PrintSettings,
    QuoteUpload,
    ShippingLocation,
    SupportPattern,
    SupportSettings,
)
from quick_quote.core.exceptions import QuickQuoteError
from quick_quote.core.orientation import Orientation, auto_orient
from quick_quote.processes.print_3d import overhang
from quick_quote.services.quote_service import QuickQuoteService

logger = logging.getLogger(__name__)

# --- Typer App Initialization ---
app = typer.Typer(help="Quick-order analysis, slicing estimates and pricing for 3D prints")
console = Console()

MODEL_FILE_HELP = "Path to the model file (.stl or .3mf)"


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL (DEBUG, INFO, ...)")):
    setup_logging((log_level or settings.log_level).upper())


def _build_orientation(z_up: bool, rotate_x: float, rotate_z: float, auto: Optional[str], mesh) -> Orientation:
    """Orientation from CLI flags. Z-up files are first turned into the Y-up world."""
    if auto:
        return auto_orient(mesh, mode=auto)
    orientation = Orientation.identity()
    if z_up:
        orientation = Orientation.from_axis_angle([1.0, 0.0, 0.0], -90.0)
    if rotate_x:
        orientation = Orientation.from_axis_angle([1.0, 0.0, 0.0], rotate_x).multiply(orientation)
    if rotate_z:
        orientation = Orientation.from_axis_angle([0.0, 0.0, 1.0], rotate_z).multiply(orientation)
    return orientation.normalized()


def _load(file_path: Path):
    try:
        return geometry.load_mesh_file(str(file_path))
    except QuickQuoteError as e:
        console.print(f"[bold red]Error loading model: {e}[/]")
        raise typer.Exit(code=1)


# --- CLI Commands ---

@app.command()
def analyze(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=MODEL_FILE_HELP),
    threshold: float = typer.Option(settings.overhang_threshold_deg, "--threshold", "-t", min=0, max=90, help="Overhang threshold angle in degrees."),
    z_up: bool = typer.Option(False, "--z-up", help="Treat the file as Z-up (most CAD/slicer exports)."),
    rotate_x: float = typer.Option(0.0, "--rotate-x", help="Extra rotation about X in degrees."),
    rotate_z: float = typer.Option(0.0, "--rotate-z", help="Extra rotation about Z in degrees."),
    auto: Optional[str] = typer.Option(None, "--auto", help="Pick the orientation automatically: 'upright' or 'flat'."),
):
    """Reports mesh properties, overhangs and build-volume fit for one orientation."""
    mesh = _load(file_path)
    try:
        orientation = _build_orientation(z_up, rotate_x, rotate_z, auto, mesh)
    except ValueError as e:
        console.print(f"[bold red]{e}[/]")
        raise typer.Exit(code=1)

    props = geometry.get_mesh_properties(mesh)
    result = overhang.analyze(mesh, orientation, threshold)
    fit = geometry.check_build_volume(mesh, orientation)

    table = Table(title=f"Analysis: {file_path.name}", show_header=False, padding=(0, 1))
    table.add_column()
    table.add_column(justify="right")
    table.add_row("Format:", props.source_format.upper())
    table.add_row("Triangles:", f"{props.triangle_count} ({props.degenerate_triangle_count} degenerate)")
    table.add_row("Volume:", f"{props.volume_cm3:.3f} cm³")
    table.add_row("Surface Area:", f"{props.surface_area_cm2:.2f} cm²")
    table.add_row("Orientation [x, y, z, w]:", ", ".join(f"{v:.4f}" for v in orientation.as_list()))
    table.add_row("Oriented Size (W x D x H):", f"{fit.width:.1f} x {fit.depth:.1f} x {fit.height:.1f} mm")
    table.add_row(f"Overhang Faces (@{result.threshold_deg:g}°):", str(result.overhang_count))
    table.add_row("Support Volume:", f"{result.support_volume:.2f} mm³")
    table.add_row("Support Weight:", f"{result.support_weight:.2f} g")
    table.add_row("Overhang Contact Area:", f"{result.contact_area:.2f} mm²")
    table.add_row("Plate Contact Area:", f"{result.plate_contact_area:.2f} mm²")
    console.print(table)

    if fit.in_bounds:
        console.print(Panel("[bold green]Fits the build volume[/]", title="Build Volume", expand=False))
    else:
        console.print(Panel("\n".join(f"[red]{v}[/]" for v in fit.violations), title="Build Volume", expand=False))


def _print_settings(layer_height: float, infill: float, no_supports: bool, tree_supports: bool, support_angle: float) -> PrintSettings:
    return PrintSettings(
        layer_height=layer_height,
        infill=infill,
        supports=SupportSettings(
            enabled=not no_supports,
            pattern=SupportPattern.TREE if tree_supports else SupportPattern.NORMAL,
            angle=support_angle,
        ),
    )


@app.command(name="slice")
def slice_model(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=MODEL_FILE_HELP),
    layer_height: float = typer.Option(0.2, "--layer-height", help="Layer height in mm."),
    infill: float = typer.Option(20.0, "--infill", min=0, max=100, help="Infill density in percent."),
    no_supports: bool = typer.Option(False, "--no-supports", help="Disable support material."),
    tree_supports: bool = typer.Option(False, "--tree-supports", help="Use organic (tree) supports."),
    support_angle: float = typer.Option(45.0, "--support-angle", min=0, max=90, help="Support faces within this many degrees of straight down."),
    z_up: bool = typer.Option(False, "--z-up", help="Treat the file as Z-up."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Keep the generated G-code here."),
):
    """Estimates print time and filament with the external slicer (or the fallback estimate)."""
    mesh = _load(file_path)
    print_settings = _print_settings(layer_height, infill, no_supports, tree_supports, support_angle)
    orientation = _build_orientation(z_up, 0.0, 0.0, None, mesh)
    service = QuickQuoteService()
    metrics = service.slice_mesh(mesh, print_settings, orientation, str(output_dir) if output_dir else None)

    table = Table(title=f"Slicing Estimate: {file_path.name}", show_header=False, padding=(0, 1))
    table.add_column()
    table.add_column(justify="right")
    table.add_row("Print Time:", utils.format_time(metrics.time_sec))
    table.add_row("Filament:", f"{metrics.grams:.2f} g")
    table.add_row("Support (estimated):", f"{metrics.support_grams:.2f} g")
    if metrics.gcode_path:
        table.add_row("G-code:", metrics.gcode_path)
    console.print(table)
    if metrics.fallback:
        console.print(f"[yellow]Fallback estimate used: {metrics.error}[/]")


@app.command()
def quote(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=MODEL_FILE_HELP),
    material_id: str = typer.Option("PLA", "--material", "-m", help="Material id."),
    material_cost: Optional[float] = typer.Option(None, "--material-cost", help="Cost per gram for the material (overrides MATERIAL_COSTS)."),
    quantity: int = typer.Option(1, "--quantity", "-q", min=1),
    layer_height: float = typer.Option(0.2, "--layer-height"),
    infill: float = typer.Option(20.0, "--infill", min=0, max=100),
    no_supports: bool = typer.Option(False, "--no-supports"),
    z_up: bool = typer.Option(False, "--z-up", help="Treat the file as Z-up."),
    state: Optional[str] = typer.Option(None, "--state", help="Delivery state, e.g. NSW."),
    postcode: Optional[str] = typer.Option(None, "--postcode", help="Delivery postcode."),
    email: Optional[str] = typer.Option(None, "--email", help="Requester email (student discount check)."),
    discount_type: Optional[DiscountType] = typer.Option(None, "--discount-type", case_sensitive=False),
    discount_value: Optional[float] = typer.Option(None, "--discount-value"),
    output_json: Optional[Path] = typer.Option(None, "--output", help="Save the priced quote as a JSON file."),
):
    """Slices a model and prices it as a one-item quick order."""
    console.print(f"Processing: [cyan]{file_path.name}[/] x{quantity} in [cyan]{material_id}[/]")
    mesh = _load(file_path)
    orientation = _build_orientation(z_up, 0.0, 0.0, None, mesh)

    material_costs = dict(settings.material_costs)
    if material_cost is not None:
        material_costs[material_id] = Decimal(str(material_cost))
    service = QuickQuoteService(material_costs=material_costs)

    upload = QuoteUpload(
        file_name=file_path.name,
        data=file_path.read_bytes(),
        material_id=material_id,
        settings=_print_settings(layer_height, infill, no_supports, False, 45.0),
        quantity=quantity,
        orientation=orientation.as_list(),
    )
    try:
        result = service.quote(
            [upload],
            ShippingLocation(state=state, postcode=postcode),
            discount_type=discount_type,
            discount_value=discount_value,
            requester_email=email,
        )
    except QuickQuoteError as e:
        console.print(f"[bold red]Error generating quote: {e}[/]")
        raise typer.Exit(code=1)

    items_table = Table(title="Items", header_style="bold magenta")
    items_table.add_column("File")
    items_table.add_column("Qty", justify="right")
    items_table.add_column("Material", justify="right")
    items_table.add_column("Time", justify="right")
    items_table.add_column("Unit", justify="right")
    items_table.add_column("Total", justify="right")
    for item in result.items:
        b = item.breakdown
        name = f"{item.file_name} [yellow](fallback)[/]" if item.fallback_estimate else item.file_name
        items_table.add_row(name, str(item.quantity), f"${b.material_cost:.2f}", f"${b.time_cost:.2f}", f"${item.unit_price}", f"${item.total}")
    console.print(items_table)

    totals = Table(show_header=False, box=None, padding=(0, 1))
    totals.add_column()
    totals.add_column(justify="right")
    totals.add_row("Subtotal:", f"${result.original_subtotal}")
    if result.discount_amount:
        label = "Student discount" if result.student_discount_applied else f"Discount ({result.discount_type.value})"
        totals.add_row(f"{label}:", f"-${result.discount_amount}")
    totals.add_row(f"Shipping ({result.shipping.label}):", f"${result.shipping.amount}")
    totals.add_row(f"Tax ({result.tax_rate}%):", f"${result.tax_amount}")
    totals.add_row("[bold green]Total:[/]", f"[bold green]${result.total}[/]")
    console.print(totals)

    if output_json:
        output_json.parent.mkdir(parents=True, exist_ok=True)
        output_json.write_text(result.model_dump_json(indent=2))
        console.print(f"\n[green]Priced quote saved to: {output_json}[/]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Runs the HTTP API with uvicorn."""
    console.print(f"Starting Quick Quote API on [cyan]http://{host}:{port}[/]")
    uvicorn.run("quick_quote.api.main:get_app", factory=True, host=host, port=port, reload=reload,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
