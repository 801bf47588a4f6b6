from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import List, Optional
from database import get_db, translate_query_errors
from services.customer_scope import list_fulfillment_customers
from utils.auth_dependency import Principal, get_current_employee

router = APIRouter(prefix="/api/customers", tags=["Customers"])


class FulfillmentCustomerResponse(BaseModel):
    id: int
    customer_number: str
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    class Config:
        from_attributes = True


@router.get("", response_model=List[FulfillmentCustomerResponse])
def get_fulfillment_customers(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_employee)
):
    """Customers that may receive goods, for the goods receipt form"""
    with translate_query_errors("Fulfillment customer list"):
        return list_fulfillment_customers(db)
