from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import List, Optional

from .. import __version__
from ..engine import CalculationError, Dimensions, QuoteItem, QuoteRequest
from ..policy import quote_status
from ..policy.quote_status import QuoteStatusError
from ..rules.compile_discounts import compile_discounts
from ..utils.logging import get_logger
from .state import engine, settings
from .tiers_api import router as tiers_router

logger = get_logger(__name__)

app = FastAPI(
    title="Landed Cost API",
    description="Landed cost and customs tax calculation for cross-border quotes",
    version=__version__
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Customs tier management API
app.include_router(tiers_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(CalculationError)
async def calculation_error_handler(request: Request, exc: CalculationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(QuoteStatusError)
async def status_error_handler(request: Request, exc: QuoteStatusError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


class DimensionsModel(BaseModel):
    length_cm: float = Field(gt=0)
    width_cm: float = Field(gt=0)
    height_cm: float = Field(gt=0)


class ItemModel(BaseModel):
    item_id: str
    name: str
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    weight_kg: Optional[float] = Field(default=None, ge=0)
    dimensions: Optional[DimensionsModel] = None
    hsn_code: Optional[str] = None
    category: Optional[str] = None
    tax_method: Optional[str] = None
    valuation_method: Optional[str] = None
    manual_customs_rate: Optional[float] = None
    manual_vat_rate: Optional[float] = None
    declared_value: Optional[float] = None
    discount_percent: Optional[float] = Field(default=None, ge=0, le=100)
    discount_amount: Optional[float] = Field(default=None, ge=0)


class CalcRequest(BaseModel):
    origin_country: str
    destination_country: str
    items: List[ItemModel] = Field(min_length=1)
    quote_id: Optional[str] = None
    tax_method: str = settings.default_tax_method
    valuation_method: str = settings.default_valuation_method
    manual_customs_rate: Optional[float] = None
    manual_vat_rate: Optional[float] = None
    delivery_option: Optional[str] = None
    delivery_zone: str = "urban"
    destination_state: Optional[str] = None
    insurance_opted_in: bool = False
    payment_gateway: Optional[str] = None
    purchase_tax_rate: Optional[float] = None
    merchant_shipping: float = 0.0
    discount_codes: List[str] = []
    is_first_order: bool = False
    request_date: Optional[str] = None


class TransitionRequest(BaseModel):
    current_status: str
    target_status: str


def to_quote_request(req: CalcRequest) -> QuoteRequest:
    data = req.model_dump()
    items = []
    for item in data.pop('items'):
        dims = item.pop('dimensions')
        items.append(QuoteItem(**item, dimensions=Dimensions(**dims) if dims else None))
    return QuoteRequest(items=items, **data)


@app.get("/")
async def root():
    return {"status": "online", "message": "Landed Cost API Active"}


@app.post("/calculate")
async def calculate_quote(req: CalcRequest):
    result = engine.calculate(to_quote_request(req))
    return jsonable_encoder(result.to_dict())


@app.get("/hsn")
async def search_hsn(
    search: Optional[str] = None,
    country: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
):
    return engine.search_hsn(search or "", country, limit)


@app.get("/countries/{code}/tax")
async def get_country_tax(code: str):
    try:
        return engine.get_tax_info(code)
    except CalculationError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/routes/{origin}/{destination}")
async def get_route(origin: str, destination: str, weight: float = 1.0):
    if weight <= 0:
        raise HTTPException(status_code=400, detail="weight must be positive")
    try:
        return jsonable_encoder(engine.get_route_summary(origin, destination, weight))
    except CalculationError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/quotes/transition")
async def transition_quote(req: TransitionRequest):
    new_status = quote_status.transition(req.current_status, req.target_status)
    return {
        "status": new_status,
        "allowed_next": list(quote_status.allowed_transitions(new_status)),
    }


@app.post("/api/discounts/compile")
async def recompile_discounts():
    """Recompile discounts.csv and reload the engine."""
    success, discounts, errors = compile_discounts(settings.discounts_csv, settings.compiled_discounts)
    if success:
        engine.reload_data()
    return {
        "success": success,
        "compiled": len(discounts) if success else 0,
        "errors": errors,
    }


@app.get("/system/status")
async def get_status():
    has_report = settings.build_report.exists()
    return {
        "engine_active": True,
        "reference_hash": engine.reference.reference_hash,
        "discounts_loaded": engine.discount_matcher.loaded,
        "discounts_count": len(engine.discount_matcher.discounts),
        "hsn_rows": len(engine.hsn_table.master),
        "hsn_last_build": settings.build_report.stat().st_mtime if has_report else None
    }
