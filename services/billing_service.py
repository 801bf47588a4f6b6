"""
Itemized billing ("Einzelverbindungsnachweis")

One record per shipped package of a customer in a given month. Picks are charged once
per delivery note: the first package of a note carries (units - 1) picks, every further
package of the same note carries none.
"""
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session, aliased
from typing import Dict, List, Optional
from config import settings
from database import translate_query_errors
from models.customer import Customer
from models.order import AddressKind, Order, OrderAddress, OrderLine, OrderLineType
from models.pricing import Article, CustomerArticlePrice, CustomerShippingRate
from models.shipment import DeliveryNote, DeliveryNoteLine, Shipment, ShippingMethod
from services.customer_scope import CustomerScope, apply_scope
from utils.dates import add_months, day_start, format_year_month, month_bounds
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_BOX_NAME = "Standard Karton"
DEFAULT_CARRIER = "Standard"


def to_decimal(value) -> Decimal:
    """Round a numeric value (or None) to two decimals, half up"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class BillingRecord:
    customer_number: str
    customer_name: Optional[str]
    recipient_company: Optional[str]
    recipient_first_name: Optional[str]
    recipient_last_name: Optional[str]
    recipient_street: Optional[str]
    recipient_city: Optional[str]
    country: Optional[str]
    order_date: Optional[datetime]
    order_number: str
    external_order_number: Optional[str]
    first_article: Optional[str]
    delivery_note_number: str
    ship_date: datetime
    tracking_code: Optional[str]
    weight: Decimal
    box_name: str
    box_width: Decimal
    box_height: Decimal
    box_length: Decimal
    box_cost: Decimal
    carrier: Optional[str]
    picks: int
    pick_cost: Decimal
    package_number: int
    shipping_cost: Decimal


@dataclass
class CarrierSummary:
    count: int = 0
    cost: Decimal = Decimal("0.00")
    packages: int = 0


@dataclass
class BillingTotals:
    weight: Decimal = Decimal("0.00")
    picks: int = 0
    cost: Decimal = Decimal("0.00")
    packages: int = 0


@dataclass
class BillingSummary:
    total: BillingTotals = field(default_factory=BillingTotals)
    by_carrier: Dict[str, CarrierSummary] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": asdict(self.total),
            "byCarrier": {name: asdict(carrier) for name, carrier in self.by_carrier.items()},
        }


@dataclass
class ItemizedRecords:
    month: str
    records: List[BillingRecord]
    summary: BillingSummary


def summarize(records: List[BillingRecord]) -> BillingSummary:
    summary = BillingSummary()
    for record in records:
        summary.total.weight += record.weight
        summary.total.picks += record.picks
        summary.total.cost += record.shipping_cost
        # Sum of package sequence numbers, as the billing export has always reported it
        summary.total.packages += record.package_number

        carrier = summary.by_carrier.setdefault(record.carrier or DEFAULT_CARRIER, CarrierSummary())
        carrier.count += 1
        carrier.cost += record.shipping_cost
        carrier.packages += record.package_number

    summary.total.weight = to_decimal(summary.total.weight)
    summary.total.cost = to_decimal(summary.total.cost)
    for carrier in summary.by_carrier.values():
        carrier.cost = to_decimal(carrier.cost)
    return summary


def _first_articles(db: Session):
    """Name of the first article line of each order"""
    position = func.row_number().over(
        partition_by=OrderLine.order_id,
        order_by=(OrderLine.sort_index, OrderLine.id),
    )
    return (
        db.query(OrderLine.order_id, OrderLine.name.label("article_name"), position.label("position"))
        .filter(OrderLine.line_type == OrderLineType.ARTICLE.value)
        .subquery("first_articles")
    )


def _note_units(db: Session):
    """Units shipped per delivery note, article lines only and bill-of-material heads excluded"""
    return (
        db.query(
            DeliveryNoteLine.delivery_note_id,
            func.sum(DeliveryNoteLine.quantity).label("units"),
        )
        .join(OrderLine, OrderLine.id == DeliveryNoteLine.order_line_id)
        .filter(
            OrderLine.line_type == OrderLineType.ARTICLE.value,
            or_(OrderLine.bom_head_line_id.is_(None), OrderLine.bom_head_line_id != OrderLine.id),
        )
        .group_by(DeliveryNoteLine.delivery_note_id)
        .subquery("note_units")
    )


def _packages(db: Session, scope: CustomerScope, start: date):
    """Shipments of the month with their 1-based rank inside the delivery note"""
    package_number = func.row_number().over(
        partition_by=Shipment.delivery_note_id,
        order_by=Shipment.id,
    )
    query = (
        db.query(
            Shipment.id.label("shipment_id"),
            Shipment.delivery_note_id,
            Shipment.shipping_method_id,
            Shipment.shipped_at,
            Shipment.tracking_code,
            Shipment.weight,
            Shipment.packaging_line_id,
            DeliveryNote.number.label("delivery_note_number"),
            Order.id.label("order_id"),
            Order.customer_id,
            Order.order_number,
            Order.external_order_number,
            Order.created_at.label("order_date"),
            package_number.label("package_number"),
        )
        .join(DeliveryNote, DeliveryNote.id == Shipment.delivery_note_id)
        .join(Order, Order.id == DeliveryNote.order_id)
        .filter(
            Shipment.shipped_at.isnot(None),
            Shipment.shipped_at >= day_start(start),
            Shipment.shipped_at < day_start(add_months(start, 1)),
        )
    )
    return apply_scope(query, scope, Order.customer_id).subquery("packages")


def compute_itemized_records(
    db: Session,
    scope: CustomerScope,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> ItemizedRecords:
    if year is None or month is None:
        today = date.today()
        year, month = today.year, today.month
    start, _ = month_bounds(year, month)
    label = format_year_month(year, month)

    with translate_query_errors(f"Itemized records {label} for customer {scope.customer_number}"):
        packages = _packages(db, scope, start)
        units = _note_units(db)
        first_articles = _first_articles(db)
        packaging_line = aliased(OrderLine, name="packaging_line")
        box = aliased(Article, name="box")

        picks = case(
            (packages.c.package_number > 1, 0),
            else_=units.c.units - 1,
        )

        rows = (
            db.query(
                packages.c.shipment_id,
                packages.c.shipped_at,
                packages.c.tracking_code,
                packages.c.weight,
                packages.c.delivery_note_number,
                packages.c.order_number,
                packages.c.external_order_number,
                packages.c.order_date,
                packages.c.package_number,
                picks.label("picks"),
                Customer.customer_number,
                Customer.company_name,
                OrderAddress.company,
                OrderAddress.first_name,
                OrderAddress.last_name,
                OrderAddress.street,
                OrderAddress.city,
                func.coalesce(OrderAddress.country_iso, OrderAddress.country).label("country"),
                first_articles.c.article_name,
                ShippingMethod.name.label("carrier"),
                func.coalesce(box.name, packaging_line.name).label("box_name"),
                box.width,
                box.height,
                box.length,
                box.purchase_net_price.label("box_cost"),
                CustomerShippingRate.net_price.label("shipping_rate"),
                CustomerArticlePrice.net_price.label("pick_rate"),
            )
            .select_from(packages)
            .join(units, units.c.delivery_note_id == packages.c.delivery_note_id)
            .join(Customer, Customer.id == packages.c.customer_id)
            .outerjoin(ShippingMethod, ShippingMethod.id == packages.c.shipping_method_id)
            .outerjoin(OrderAddress, and_(
                OrderAddress.order_id == packages.c.order_id,
                OrderAddress.kind == AddressKind.DELIVERY.value,
            ))
            .outerjoin(first_articles, and_(
                first_articles.c.order_id == packages.c.order_id,
                first_articles.c.position == 1,
            ))
            .outerjoin(packaging_line, and_(
                packaging_line.id == packages.c.packaging_line_id,
                packaging_line.line_type == OrderLineType.PACKAGING.value,
            ))
            .outerjoin(box, box.id == packaging_line.article_id)
            .outerjoin(CustomerShippingRate, and_(
                CustomerShippingRate.customer_id == packages.c.customer_id,
                CustomerShippingRate.shipping_method_id == packages.c.shipping_method_id,
            ))
            .outerjoin(CustomerArticlePrice, and_(
                CustomerArticlePrice.customer_id == packages.c.customer_id,
                CustomerArticlePrice.article_id == settings.pick_article_id,
            ))
            .order_by(
                packages.c.shipped_at.desc(),
                packages.c.order_number,
                packages.c.delivery_note_number,
                packages.c.package_number,
            )
            .all()
        )

    records = [_to_record(row) for row in rows]
    logger.info(f"Itemized records {label} for customer {scope.customer_number}: {len(records)} package(s)")
    return ItemizedRecords(month=label, records=records, summary=summarize(records))


def _to_record(row) -> BillingRecord:
    # Notes holding a single unit would yield -1 picks
    picks = max(int(row.picks or 0), 0)
    pick_rate = settings.default_pick_price if row.pick_rate is None else to_decimal(row.pick_rate)
    shipping_cost = settings.default_shipping_cost if row.shipping_rate is None else row.shipping_rate

    return BillingRecord(
        customer_number=row.customer_number,
        customer_name=row.company_name,
        recipient_company=row.company,
        recipient_first_name=row.first_name,
        recipient_last_name=row.last_name,
        recipient_street=row.street,
        recipient_city=row.city,
        country=row.country,
        order_date=row.order_date,
        order_number=row.order_number,
        external_order_number=row.external_order_number,
        first_article=row.article_name,
        delivery_note_number=row.delivery_note_number,
        ship_date=row.shipped_at,
        tracking_code=row.tracking_code,
        weight=to_decimal(row.weight),
        box_name=row.box_name or DEFAULT_BOX_NAME,
        box_width=to_decimal(row.width),
        box_height=to_decimal(row.height),
        box_length=to_decimal(row.length),
        box_cost=to_decimal(row.box_cost),
        carrier=row.carrier,
        picks=picks,
        pick_cost=to_decimal(pick_rate * picks),
        package_number=int(row.package_number),
        shipping_cost=to_decimal(shipping_cost),
    )
