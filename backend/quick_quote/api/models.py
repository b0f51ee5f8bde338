# api/models.py

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..core.common_types import DiscountType, QuickOrderItem, ShippingLocation


class ErrorResponse(BaseModel):
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    slicer_available: bool
    slicer_disabled: bool


class OrientRequest(BaseModel):
    """Face picked in the viewer, in mesh local coordinates."""
    local_normal: List[float] = Field(..., min_length=3, max_length=3)
    current: Optional[List[float]] = Field(None, min_length=4, max_length=4, description="Current quaternion [x, y, z, w].")


class OrientResponse(BaseModel):
    orientation: List[float] = Field(..., description="Resulting quaternion [x, y, z, w].")


class PriceRequest(BaseModel):
    items: List[QuickOrderItem] = Field(default_factory=list)
    location: Optional[ShippingLocation] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None
    requester_email: Optional[str] = None
