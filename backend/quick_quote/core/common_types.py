# core/common_types.py
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --- Geometry Related Models ---

class BoundingBox(BaseModel):
    """Represents the axis-aligned bounding box."""
    min_x: float
    min_y: float
    min_z: float
    max_x: float
    max_y: float
    max_z: float
    size_x: float
    size_y: float
    size_z: float

class MeshProperties(BaseModel):
    """Basic properties extracted from the mesh."""
    file_name: Optional[str] = None
    source_format: str = Field(..., description="Format the mesh was parsed from ('stl' or '3mf').")
    triangle_count: int
    degenerate_triangle_count: int = Field(0, description="Triangles with zero area (kept, never flagged as overhang).")
    bounding_box: BoundingBox
    volume_cm3: float = Field(..., description="Enclosed volume from signed tetrahedra; only meaningful for closed meshes.")
    surface_area_cm2: float
    units: Optional[str] = Field("mm", description="Units assumed from the file (STL/3MF are millimetres).")

class BuildVolumeStatus(BaseModel):
    """Fit of an oriented model against the printer's build volume."""
    in_bounds: bool
    width: float
    depth: float
    height: float
    violations: List[str] = Field(default_factory=list)

class FaceHit(BaseModel):
    """Nearest triangle hit by a pick ray, in mesh local space."""
    face_index: int
    normal: Tuple[float, float, float]
    point: Tuple[float, float, float]
    distance: float

# --- Overhang Analysis ---

class OverhangResult(BaseModel):
    """Support estimate for one mesh/orientation/threshold combination."""
    model_config = ConfigDict(frozen=True)

    overhang_face_indices: Tuple[int, ...] = Field(default_factory=tuple)
    support_volume: float = Field(0.0, description="Estimated support material volume in mm³.")
    support_weight: float = Field(0.0, description="Estimated support material weight in grams.")
    contact_area: float = Field(0.0, description="World-space area of the overhang triangles in mm².")
    plate_contact_area: float = Field(0.0, description="Area of down-facing triangles resting on the build plate in mm².")
    threshold_deg: float = 45.0

    @property
    def overhang_count(self) -> int:
        return len(self.overhang_face_indices)

class ModelAnalysis(BaseModel):
    """Everything the quick-order view needs about one oriented upload."""
    properties: MeshProperties
    orientation: List[float] = Field(..., description="Quaternion [x, y, z, w] the analysis was run with.")
    overhang: OverhangResult
    build_volume: BuildVolumeStatus
    analysis_time_sec: float = 0.0

# --- Print Settings & Slicing ---

class SupportPattern(str, Enum):
    NORMAL = "normal"
    TREE = "tree"

class SupportStyle(str, Enum):
    GRID = "grid"
    ORGANIC = "organic"

class SupportSettings(BaseModel):
    """Support options forwarded to the slicer."""
    enabled: bool = True
    pattern: SupportPattern = SupportPattern.NORMAL
    angle: float = Field(45.0, ge=0, le=90, description="Faces within this many degrees of straight down get support; larger means more support.")
    style: Optional[SupportStyle] = None
    interface_layers: int = Field(3, ge=0)

    @model_validator(mode="after")
    def default_style_from_pattern(self):
        if self.style is None:
            self.style = SupportStyle.ORGANIC if self.pattern == SupportPattern.TREE else SupportStyle.GRID
        return self

class PrintSettings(BaseModel):
    """Per-item print settings."""
    layer_height: float = Field(0.2, gt=0, le=1.0, description="Layer height in mm.")
    infill: float = Field(20.0, ge=0, le=100, description="Infill density in percent.")
    supports: SupportSettings = Field(default_factory=SupportSettings)

class SliceMetrics(BaseModel):
    """Time and material estimate for one mesh/settings combination."""
    model_config = ConfigDict(frozen=True)

    time_sec: float = Field(..., ge=0)
    grams: float = Field(..., ge=0)
    support_grams: float = Field(0.0, ge=0)
    gcode_path: Optional[str] = None
    fallback: bool = False
    error: Optional[str] = None

# --- Shipping ---

class ShippingRegion(BaseModel):
    """One configured delivery region."""
    code: str
    label: str
    base_amount: Decimal = Decimal("0")
    states: List[str] = Field(default_factory=list)
    postcode_prefixes: List[str] = Field(default_factory=list)
    remote_surcharge: Optional[Decimal] = None

class ShippingLocation(BaseModel):
    state: Optional[str] = None
    postcode: Optional[str] = None

class ShippingQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    label: str
    base_amount: Decimal
    amount: Decimal
    remote_surcharge: Optional[Decimal] = None
    remote_applied: bool = False

# --- Quick Order Pricing ---

class DiscountType(str, Enum):
    NONE = "NONE"
    PERCENT = "PERCENT"
    FIXED = "FIXED"

class PricingConfig(BaseModel):
    """Business settings consumed by the pricer (supplied by the settings store)."""
    hourly_rate: Decimal = Decimal("45")
    setup_fee: Decimal = Decimal("20")
    minimum_price: Decimal = Decimal("35")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Tax rate in percent.")
    shipping_regions: List[ShippingRegion] = Field(default_factory=list)
    default_shipping_region: Optional[str] = None
    default_cost_per_gram: Decimal = Field(Decimal("0.05"), description="Used when a material id is missing from the catalog.")

class QuickOrderItem(BaseModel):
    """One requested print."""
    file_name: str
    file_id: Optional[str] = None
    material_id: str
    support_material_id: Optional[str] = None
    settings: PrintSettings = Field(default_factory=PrintSettings)
    quantity: int = Field(1, ge=1)
    metrics: SliceMetrics

class ItemBreakdown(BaseModel):
    model_weight: Decimal
    support_weight: Decimal
    hours: Decimal
    model_material_cost: Decimal
    support_material_cost: Decimal
    material_cost: Decimal
    time_cost: Decimal
    setup_fee: Decimal

class PricedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_name: str
    quantity: int
    unit_price: Decimal
    total: Decimal
    breakdown: ItemBreakdown
    fallback_estimate: bool = False

class QuoteUpload(BaseModel):
    """An uploaded model plus the options needed to slice and price it."""
    file_name: str
    data: bytes = Field(..., repr=False)
    material_id: str
    support_material_id: Optional[str] = None
    settings: PrintSettings = Field(default_factory=PrintSettings)
    quantity: int = Field(1, ge=1)
    orientation: Optional[List[float]] = Field(None, description="Build orientation quaternion [x, y, z, w].")

class StudentDiscount(BaseModel):
    eligible: bool
    rate: Decimal = Decimal("0")

class PricedQuote(BaseModel):
    """Itemized price for a quick order. Re-pricing builds a new instance."""
    model_config = ConfigDict(frozen=True)

    items: Tuple[PricedItem, ...]
    original_subtotal: Decimal
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal
    subtotal: Decimal = Field(..., description="Subtotal after discount.")
    shipping: ShippingQuote
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    student_discount_applied: bool = False

    def as_summary(self) -> Dict[str, str]:
        """Flat string view of the order totals (for tables and logs)."""
        return {
            "subtotal": str(self.original_subtotal),
            "discount": str(self.discount_amount),
            "shipping": str(self.shipping.amount),
            "tax": str(self.tax_amount),
            "total": str(self.total),
        }
