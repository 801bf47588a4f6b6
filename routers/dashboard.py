from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import date, datetime
from database import get_db
from services.billing_service import compute_itemized_records
from services.customer_scope import scope_for_principal
from services.dashboard_service import DashboardService
from utils.auth_dependency import Principal, get_current_customer, get_current_principal
from utils.dates import parse_year_month
from utils.errors import ValidationError

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


class KpiResponse(BaseModel):
    monthlyOrders: int = 0
    todayOrders: int = 0
    monthlyRevenue: float = 0.0
    packagesShipped: int = 0
    ordersTrend: int = 0


class AvailableMonth(BaseModel):
    value: str
    label: str
    count: int


class OrderHistoryDay(BaseModel):
    date: str
    orders: int
    revenue: float


class BillingRecordResponse(BaseModel):
    customer_number: str
    customer_name: Optional[str] = None
    recipient_company: Optional[str] = None
    recipient_first_name: Optional[str] = None
    recipient_last_name: Optional[str] = None
    recipient_street: Optional[str] = None
    recipient_city: Optional[str] = None
    country: Optional[str] = None
    order_date: Optional[datetime] = None
    order_number: str
    external_order_number: Optional[str] = None
    first_article: Optional[str] = None
    delivery_note_number: str
    ship_date: datetime
    tracking_code: Optional[str] = None
    weight: float
    box_name: str
    box_width: float
    box_height: float
    box_length: float
    box_cost: float
    carrier: Optional[str] = None
    picks: int
    pick_cost: float
    package_number: int
    shipping_cost: float

    class Config:
        from_attributes = True


class CarrierTotalsResponse(BaseModel):
    count: int = 0
    cost: float = 0.0
    packages: int = 0


class BillingTotalsResponse(BaseModel):
    weight: float = 0.0
    picks: int = 0
    cost: float = 0.0
    packages: int = 0


class BillingSummaryResponse(BaseModel):
    total: BillingTotalsResponse
    byCarrier: Dict[str, CarrierTotalsResponse] = {}


class ItemizedRecordsResponse(BaseModel):
    month: str
    customer_number: str
    records: List[BillingRecordResponse]
    summary: BillingSummaryResponse


@router.get("/kpis", response_model=KpiResponse)
def get_kpis(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_customer)
):
    scope = scope_for_principal(db, principal)
    return DashboardService(db, scope).kpis()


@router.get("/available-months", response_model=List[AvailableMonth])
def get_available_months(
    customer_id: Optional[int] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Months with shipments over the last year, newest first"""
    scope = scope_for_principal(db, principal, customer_id)
    return DashboardService(db, scope).available_months()


@router.get("/orders-history", response_model=List[OrderHistoryDay])
def get_orders_history(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_customer)
):
    scope = scope_for_principal(db, principal)
    return DashboardService(db, scope).orders_history()


def _itemized_records(db: Session, principal: Principal, month: Optional[str], customer_id: Optional[int]):
    if month:
        try:
            year, month_number = parse_year_month(month)
        except ValueError as e:
            raise ValidationError(str(e), details=[{"field": "month", "error": "expected YYYY-MM"}])
    else:
        today = date.today()
        year, month_number = today.year, today.month

    scope = scope_for_principal(db, principal, customer_id)
    result = compute_itemized_records(db, scope, year, month_number)
    return ItemizedRecordsResponse(
        month=result.month,
        customer_number=scope.customer_number,
        records=[BillingRecordResponse.model_validate(record) for record in result.records],
        summary=result.summary.to_dict(),
    )


@router.get("/itemized-records", response_model=ItemizedRecordsResponse)
def get_itemized_records_current_month(
    customer_id: Optional[int] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    return _itemized_records(db, principal, None, customer_id)


@router.get("/itemized-records/{month}", response_model=ItemizedRecordsResponse)
def get_itemized_records(
    month: str,
    customer_id: Optional[int] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal)
):
    """Itemized billing for a month given as YYYY-MM"""
    return _itemized_records(db, principal, month, customer_id)
