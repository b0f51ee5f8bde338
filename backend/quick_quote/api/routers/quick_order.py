# api/routers/quick_order.py

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from starlette import status

from ..models import ErrorResponse, OrientRequest, OrientResponse, PriceRequest
from ...core.common_types import ModelAnalysis, PricedQuote, PrintSettings, SliceMetrics
from ...services.quote_service import QuickQuoteService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/quick-order",
    tags=["Quick Order"],
    responses={
        400: {"model": ErrorResponse, "description": "Bad Request"},
        415: {"model": ErrorResponse, "description": "Unsupported model file"},
    },
)


# --- Dependency --- #
def get_quote_service(request: Request) -> QuickQuoteService:
    return request.app.state.quote_service


def _parse_json_form(value: Optional[str], field: str):
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Form field '{field}' must be valid JSON.",
        ) from None


def _parse_orientation(value: Optional[str]):
    orientation = _parse_json_form(value, "orientation")
    if orientation is not None and (not isinstance(orientation, list) or len(orientation) != 4):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Form field 'orientation' must be a JSON list [x, y, z, w].",
        )
    return orientation


# --- Endpoints --- #
@router.post("/analyze", response_model=ModelAnalysis, summary="Overhang and build-volume analysis of an upload")
async def analyze_model(
    file: UploadFile = File(...),
    orientation: Optional[str] = Form(None, description="JSON quaternion [x, y, z, w]"),
    threshold: Optional[float] = Form(None, ge=0, le=90),
    service: QuickQuoteService = Depends(get_quote_service),
):
    data = await file.read()
    logger.info(f"Analyze request for '{file.filename}' ({len(data)} bytes)")
    try:
        quaternion = _parse_orientation(orientation)
        return await service.analyze_upload_async(data, file.filename or "upload.stl", quaternion, threshold)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@router.post("/orient", response_model=OrientResponse, summary="Lay a picked face flat on the build plate")
async def orient_face(request: OrientRequest, service: QuickQuoteService = Depends(get_quote_service)):
    try:
        orientation = service.align_face(request.local_normal, request.current)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return OrientResponse(orientation=orientation.as_list())


@router.post("/auto-orient", response_model=OrientResponse, summary="Pick an upright or flat orientation automatically")
async def auto_orient_model(
    file: UploadFile = File(...),
    mode: str = Form("upright"),
    service: QuickQuoteService = Depends(get_quote_service),
):
    data = await file.read()
    try:
        orientation = await run_in_threadpool(service.auto_orient, data, file.filename or "upload.stl", mode)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return OrientResponse(orientation=orientation.as_list())


@router.post("/slice", response_model=SliceMetrics, summary="Estimate print time and material for an upload")
async def slice_model(
    file: UploadFile = File(...),
    settings: Optional[str] = Form(None, description="JSON print settings"),
    orientation: Optional[str] = Form(None, description="JSON quaternion [x, y, z, w]"),
    service: QuickQuoteService = Depends(get_quote_service),
):
    data = await file.read()
    raw_settings = _parse_json_form(settings, "settings") or {}
    try:
        print_settings = PrintSettings.model_validate(raw_settings)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    quaternion = _parse_orientation(orientation)
    # Slicing blocks on a subprocess; keep it off the event loop
    return await run_in_threadpool(service.slice_upload, data, file.filename or "upload.stl", print_settings, quaternion)


@router.post("/price", response_model=PricedQuote, summary="Price a quick order from slicing metrics")
async def price_order(request: PriceRequest, service: QuickQuoteService = Depends(get_quote_service)):
    logger.info(f"Price request for {len(request.items)} item(s)")
    return service.price(
        request.items,
        request.location,
        discount_type=request.discount_type,
        discount_value=request.discount_value,
        requester_email=request.requester_email,
    )
