"""
Customer dashboard reads. Every query here is scoped through a CustomerScope.
"""
from datetime import date, timedelta
from decimal import Decimal, ROUND_FLOOR
from sqlalchemy import extract, func
from sqlalchemy.orm import Session
from typing import Dict, List, Optional
from database import translate_query_errors
from models.order import Order, OrderLine
from models.shipment import DeliveryNote, Shipment
from services.billing_service import to_decimal
from services.customer_scope import CustomerScope, apply_scope
from utils.dates import add_months, day_start, format_year_month, german_month_label, month_start
import logging

logger = logging.getLogger(__name__)

AVAILABLE_MONTHS_WINDOW = 12
ORDER_HISTORY_DAYS = 30


def orders_trend(current: int, previous: int) -> int:
    """Percent change of the order count; a previous count of 0 is divided as 1"""
    change = Decimal(current - previous) / Decimal(max(previous, 1)) * 100
    # Halves round toward positive infinity: -87.5 -> -87, 87.5 -> 88
    return int((change + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


class DashboardService:
    def __init__(self, db: Session, scope: CustomerScope):
        self.db = db
        self.scope = scope

    def _orders(self, since: date, until: date):
        query = self.db.query(Order).filter(
            Order.created_at >= day_start(since),
            Order.created_at < day_start(until),
        )
        return apply_scope(query, self.scope, Order.customer_id)

    def _count_orders(self, since: date, until: date) -> int:
        return self._orders(since, until).with_entities(func.count(Order.id)).scalar() or 0

    def _revenue(self, since: date, until: date) -> Decimal:
        query = (
            self.db.query(func.sum(OrderLine.net_price * OrderLine.quantity))
            .select_from(OrderLine)
            .join(Order, Order.id == OrderLine.order_id)
            .filter(
                Order.is_cancelled.is_(False),
                Order.created_at >= day_start(since),
                Order.created_at < day_start(until),
            )
        )
        return to_decimal(apply_scope(query, self.scope, Order.customer_id).scalar())

    def _shipments(self):
        query = (
            self.db.query(Shipment)
            .join(DeliveryNote, DeliveryNote.id == Shipment.delivery_note_id)
            .join(Order, Order.id == DeliveryNote.order_id)
            .filter(Shipment.shipped_at.isnot(None))
        )
        return apply_scope(query, self.scope, Order.customer_id)

    def kpis(self, today: Optional[date] = None) -> Dict:
        today = today or date.today()
        current_month = month_start(today)
        next_month = add_months(current_month, 1)
        previous_month = add_months(current_month, -1)

        with translate_query_errors(f"Dashboard KPIs for customer {self.scope.customer_number}"):
            monthly_orders = self._count_orders(current_month, next_month)
            previous_orders = self._count_orders(previous_month, current_month)
            today_orders = self._count_orders(today, today + timedelta(days=1))
            revenue = self._revenue(current_month, next_month)
            packages_shipped = self._shipments().filter(
                Shipment.shipped_at >= day_start(current_month),
                Shipment.shipped_at < day_start(next_month),
            ).with_entities(func.count(Shipment.id)).scalar() or 0

        return {
            "monthlyOrders": monthly_orders,
            "todayOrders": today_orders,
            "monthlyRevenue": revenue,
            "packagesShipped": packages_shipped,
            "ordersTrend": orders_trend(monthly_orders, previous_orders),
        }

    def available_months(self, today: Optional[date] = None) -> List[Dict]:
        today = today or date.today()
        since = add_months(month_start(today), -(AVAILABLE_MONTHS_WINDOW - 1))

        year = extract("year", Shipment.shipped_at)
        month = extract("month", Shipment.shipped_at)
        with translate_query_errors(f"Available months for customer {self.scope.customer_number}"):
            rows = (
                self._shipments()
                .filter(Shipment.shipped_at >= day_start(since))
                .with_entities(year.label("year"), month.label("month"), func.count(func.distinct(Shipment.id)))
                .group_by(year, month)
                .order_by(year.desc(), month.desc())
                .all()
            )

        months = []
        for row_year, row_month, count in rows:
            row_year, row_month = int(row_year), int(row_month)
            months.append({
                "value": format_year_month(row_year, row_month),
                "label": german_month_label(row_year, row_month),
                "count": count,
            })
        return months

    def orders_history(self, today: Optional[date] = None) -> List[Dict]:
        today = today or date.today()
        since = today - timedelta(days=ORDER_HISTORY_DAYS - 1)
        day = func.date(Order.created_at)

        with translate_query_errors(f"Order history for customer {self.scope.customer_number}"):
            orders = (
                self._orders(since, today + timedelta(days=1))
                .filter(Order.is_cancelled.is_(False))
                .with_entities(day.label("day"), func.count(Order.id))
                .group_by(day)
                .all()
            )
            revenue_query = (
                self.db.query(day.label("day"), func.sum(OrderLine.net_price * OrderLine.quantity))
                .select_from(Order)
                .join(OrderLine, OrderLine.order_id == Order.id)
                .filter(
                    Order.is_cancelled.is_(False),
                    Order.created_at >= day_start(since),
                    Order.created_at < day_start(today + timedelta(days=1)),
                )
                .group_by(day)
            )
            revenue = dict(apply_scope(revenue_query, self.scope, Order.customer_id).all())

        return [
            {"date": str(order_day), "orders": count, "revenue": to_decimal(revenue.get(order_day))}
            for order_day, count in sorted(orders, key=lambda row: str(row[0]))
        ]
