"""
Multi-tenant scoping. Every customer-facing read goes through a CustomerScope, which
can only be obtained for an existing fulfillment customer, and every scoped query
filters on both the customer id and the fulfillment label.
"""
from dataclasses import dataclass
from sqlalchemy import exists
from sqlalchemy.orm import Session
from typing import List, Optional
from config import settings
from models.customer import Customer, CustomerLabel
from utils.auth_dependency import Principal
from utils.errors import Forbidden, NotFound, ValidationError


@dataclass(frozen=True)
class CustomerScope:
    customer_id: int
    customer_number: str
    company_name: Optional[str] = None


def fulfillment_label_clause(customer_id_column):
    return exists().where(
        CustomerLabel.customer_id == customer_id_column,
        CustomerLabel.label_id == settings.fulfillment_label_id,
    )


def is_fulfillment_customer(db: Session, customer_id: int) -> bool:
    return db.query(fulfillment_label_clause(customer_id)).scalar()


def resolve_customer_scope(db: Session, customer_id: int) -> CustomerScope:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFound("Customer not found")
    if not is_fulfillment_customer(db, customer.id):
        raise Forbidden("Customer is not a fulfillment customer")
    return CustomerScope(
        customer_id=customer.id,
        customer_number=customer.customer_number,
        company_name=customer.company_name,
    )


def scope_for_principal(db: Session, principal: Principal, customer_id: Optional[int] = None) -> CustomerScope:
    """Customers are pinned to themselves; employees must name the customer"""
    if principal.is_employee:
        if customer_id is None:
            raise ValidationError("customer_id is required", details=[{"field": "customer_id", "error": "required"}])
        return resolve_customer_scope(db, customer_id)

    if customer_id is not None and customer_id != principal.customer_id:
        raise Forbidden("Cannot view another customer's data")
    return resolve_customer_scope(db, principal.customer_id)


def apply_scope(query, scope: CustomerScope, customer_id_column):
    return query.filter(
        customer_id_column == scope.customer_id,
        fulfillment_label_clause(customer_id_column),
    )


def list_fulfillment_customers(db: Session) -> List[Customer]:
    return (
        db.query(Customer)
        .filter(fulfillment_label_clause(Customer.id))
        .order_by(Customer.company_name, Customer.customer_number)
        .all()
    )
