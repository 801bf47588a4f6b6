import unittest
from datetime import date, datetime
from decimal import Decimal

from factories import (
    add_customer, add_delivery_note, add_order, add_shipment, add_shipping_method, article_line, make_database,
)
from services.customer_scope import (
    CustomerScope, list_fulfillment_customers, resolve_customer_scope, scope_for_principal,
)
from services.dashboard_service import DashboardService, orders_trend
from utils.auth_dependency import Principal, Role
from utils.errors import Forbidden, NotFound, ValidationError

TODAY = date(2024, 3, 15)


class OrdersTrendTests(unittest.TestCase):
    def test_percentage_change(self) -> None:
        self.assertEqual(orders_trend(6, 4), 50)
        self.assertEqual(orders_trend(3, 4), -25)
        self.assertEqual(orders_trend(4, 4), 0)

    def test_empty_previous_month_divides_by_one(self) -> None:
        self.assertEqual(orders_trend(5, 0), 500)
        self.assertEqual(orders_trend(0, 0), 0)

    def test_halves_round_toward_positive_infinity(self) -> None:
        self.assertEqual(orders_trend(1, 8), -87)  # -87.5
        self.assertEqual(orders_trend(15, 8), 88)  # 87.5
        self.assertEqual(orders_trend(3, 8), -62)  # -62.5
        self.assertEqual(orders_trend(7, 6), 17)  # 16.67


class DashboardServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()
        add_customer(self.db, 1, "K1001", "Alpha Versand GmbH")
        add_customer(self.db, 2, "K1002", "Beta Shop UG")
        add_customer(self.db, 3, "K2000", "Nur Verkauf KG", fulfillment=False)
        add_shipping_method(self.db, 1, "DHL Paket")

        # Alpha in March: three orders, one of them cancelled, one placed today
        add_order(self.db, 1, 1, datetime(2024, 3, 2, 10), lines=[article_line(11, "Tasse", 2, net_price=10.0)])
        add_order(self.db, 2, 1, datetime(2024, 3, 15, 8), lines=[
            article_line(21, "Teller", 1, net_price=5.5),
            article_line(22, "Krug", 3, net_price=2.0, sort_index=2),
        ])
        add_order(self.db, 3, 1, datetime(2024, 3, 15, 9), cancelled=True,
                  lines=[article_line(31, "Vase", 1, net_price=99.0)])
        # Beta orders never show up for Alpha
        add_order(self.db, 4, 2, datetime(2024, 3, 15, 11), lines=[article_line(41, "Stuhl", 1, net_price=40.0)])

        self.alpha = DashboardService(self.db, CustomerScope(1, "K1001"))

    def tearDown(self) -> None:
        self.db.close()
        self.database.shutdown()

    def ship(self, shipment_id, order_id, note_id, shipped_at):
        add_delivery_note(self.db, note_id, order_id, [])
        add_shipment(self.db, shipment_id, note_id, shipped_at)

    def test_kpis(self) -> None:
        self.ship(100, 1, 10, datetime(2024, 3, 4))
        self.ship(101, 2, 11, datetime(2024, 3, 15))
        self.ship(102, 4, 12, datetime(2024, 3, 15))

        kpis = self.alpha.kpis(today=TODAY)

        self.assertEqual(kpis["monthlyOrders"], 3)
        self.assertEqual(kpis["todayOrders"], 2)
        self.assertEqual(kpis["monthlyRevenue"], Decimal("31.50"))
        self.assertEqual(kpis["packagesShipped"], 2)
        # No orders in February: divided by one
        self.assertEqual(kpis["ordersTrend"], 300)

    def test_kpis_trend_against_previous_month(self) -> None:
        add_order(self.db, 5, 1, datetime(2024, 2, 10))
        add_order(self.db, 6, 1, datetime(2024, 2, 29, 23, 59))
        self.assertEqual(self.alpha.kpis(today=TODAY)["ordersTrend"], 50)

    def test_kpis_for_customer_without_data(self) -> None:
        kpis = DashboardService(self.db, CustomerScope(2, "K1002")).kpis(today=date(2024, 6, 1))
        self.assertEqual(kpis, {
            "monthlyOrders": 0,
            "todayOrders": 0,
            "monthlyRevenue": Decimal("0.00"),
            "packagesShipped": 0,
            "ordersTrend": 0,
        })

    def test_available_months(self) -> None:
        self.ship(100, 1, 10, datetime(2024, 1, 20))
        self.ship(101, 1, 11, datetime(2024, 3, 4))
        self.ship(102, 2, 12, datetime(2024, 3, 15))
        self.ship(103, 2, 13, datetime(2022, 5, 1))  # outside the window
        self.ship(104, 4, 14, datetime(2024, 2, 1))  # other customer

        months = self.alpha.available_months(today=TODAY)
        self.assertEqual(months, [
            {"value": "2024-03", "label": "März 2024", "count": 2},
            {"value": "2024-01", "label": "Januar 2024", "count": 1},
        ])

    def test_orders_history(self) -> None:
        history = self.alpha.orders_history(today=TODAY)
        self.assertEqual(history, [
            {"date": "2024-03-02", "orders": 1, "revenue": Decimal("20.00")},
            {"date": "2024-03-15", "orders": 1, "revenue": Decimal("11.50")},
        ])


class CustomerScopeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()
        add_customer(self.db, 1, "K1001", "Alpha Versand GmbH")
        add_customer(self.db, 2, "K1002", "Beta Shop UG")
        add_customer(self.db, 3, "K2000", "Nur Verkauf KG", fulfillment=False)

    def tearDown(self) -> None:
        self.db.close()
        self.database.shutdown()

    def test_customer_is_pinned_to_itself(self) -> None:
        principal = Principal(user_id=5, role=Role.CUSTOMER, customer_id=1, customer_number="K1001")
        scope = scope_for_principal(self.db, principal)
        self.assertEqual((scope.customer_id, scope.customer_number), (1, "K1001"))
        with self.assertRaises(Forbidden):
            scope_for_principal(self.db, principal, customer_id=2)

    def test_employee_must_name_customer(self) -> None:
        employee = Principal(user_id=9, role=Role.EMPLOYEE)
        with self.assertRaises(ValidationError):
            scope_for_principal(self.db, employee)
        self.assertEqual(scope_for_principal(self.db, employee, customer_id=2).customer_number, "K1002")

    def test_only_fulfillment_customers_resolve(self) -> None:
        with self.assertRaises(Forbidden):
            resolve_customer_scope(self.db, 3)
        with self.assertRaises(NotFound):
            resolve_customer_scope(self.db, 404)

    def test_list_fulfillment_customers(self) -> None:
        numbers = [c.customer_number for c in list_fulfillment_customers(self.db)]
        self.assertEqual(numbers, ["K1001", "K1002"])


if __name__ == "__main__":
    unittest.main()
