"""
Tiers API - FastAPI router for route customs tier management.
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional

from ..services.tier_service import TierService, CustomsTier
from .state import engine, settings

router = APIRouter(prefix="/api/tiers", tags=["tiers"])

tier_service = TierService(tiers_csv_path=settings.route_customs_tiers)


# Pydantic models for API
class TierCreate(BaseModel):
    """Request model for creating a tier."""
    tier_id: Optional[str] = None
    origin_country: str
    destination_country: str
    rule_name: str
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    weight_min: Optional[float] = None
    weight_max: Optional[float] = None
    logic_type: str = "AND"
    customs_percentage: float = 0.0
    vat_percentage: float = 0.0
    priority_order: int = 1
    is_active: bool = True
    description: Optional[str] = None

    def to_tier(self) -> CustomsTier:
        data = self.model_dump()
        data['tier_id'] = data['tier_id'] or ''
        return CustomsTier(**data)


class TierUpdate(BaseModel):
    """Request model for updating a tier."""
    rule_name: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    weight_min: Optional[float] = None
    weight_max: Optional[float] = None
    logic_type: Optional[str] = None
    customs_percentage: Optional[float] = None
    vat_percentage: Optional[float] = None
    priority_order: Optional[int] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None


class TierResponse(BaseModel):
    """Response model for a tier."""
    tier_id: str
    origin_country: str
    destination_country: str
    rule_name: str
    price_min: Optional[float]
    price_max: Optional[float]
    weight_min: Optional[float]
    weight_max: Optional[float]
    logic_type: str
    customs_percentage: float
    vat_percentage: float
    priority_order: int
    is_active: bool
    description: Optional[str]


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]


class MatchRequest(BaseModel):
    """Request model for testing tier matching."""
    origin_country: str
    destination_country: str
    price: float
    weight: float


# Endpoints

@router.get("", response_model=list[TierResponse])
async def list_tiers(
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    include_inactive: bool = True,
):
    """List customs tiers, optionally for one route."""
    tiers = tier_service.list_tiers(origin, destination, include_inactive=include_inactive)
    return [TierResponse(**tier.__dict__) for tier in tiers]


@router.get("/stats")
async def get_stats():
    """Get tier statistics."""
    return tier_service.get_stats()


@router.post("/validate", response_model=ValidationResponse)
async def validate_tier(tier_data: TierCreate):
    """Validate a tier without saving."""
    result = tier_service.validate_tier(tier_data.to_tier())
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@router.post("/match")
async def match_tier(request: MatchRequest):
    """Show which tier a quote with this value and weight would use."""
    tier = tier_service.match(
        request.origin_country, request.destination_country, request.price, request.weight
    )
    return {
        "matched": tier is not None,
        "tier": TierResponse(**tier.__dict__) if tier else None,
    }


@router.get("/{tier_id}", response_model=TierResponse)
async def get_tier(tier_id: str):
    """Get a single tier by ID."""
    tier = tier_service.get_tier(tier_id)
    if not tier:
        raise HTTPException(status_code=404, detail=f"Tier '{tier_id}' not found")
    return TierResponse(**tier.__dict__)


@router.post("", response_model=TierResponse)
async def create_tier(tier_data: TierCreate):
    """Create a new customs tier."""
    tier = tier_data.to_tier()

    # Validate first
    validation = tier_service.validate_tier(tier)
    if not validation.valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})

    try:
        created = tier_service.create_tier(tier)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    engine.reload_data()
    return TierResponse(**created.__dict__)


@router.put("/{tier_id}", response_model=TierResponse)
async def update_tier(tier_id: str, updates: TierUpdate):
    """Update an existing tier."""
    update_dict = updates.model_dump(exclude_unset=True)

    existing = tier_service.get_tier(tier_id)
    if not existing:
        raise HTTPException(status_code=404, detail=f"Tier '{tier_id}' not found")
    candidate = CustomsTier(**{**existing.__dict__, **update_dict})
    validation = tier_service.validate_tier(candidate)
    if not validation.valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})

    updated = tier_service.update_tier(tier_id, update_dict)
    engine.reload_data()
    return TierResponse(**updated.__dict__)


@router.delete("/{tier_id}")
async def delete_tier(tier_id: str):
    """Delete a tier."""
    try:
        tier_service.delete_tier(tier_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    engine.reload_data()
    return {"success": True, "message": f"Tier '{tier_id}' deleted"}
