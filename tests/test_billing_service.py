import unittest
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from factories import (
    add_box, add_customer, add_delivery_note, add_order, add_prices, add_shipment, add_shipping_method,
    article_line, make_database, packaging_line,
)
from services.billing_service import compute_itemized_records, summarize
from services.customer_scope import CustomerScope
from utils.errors import QueryTimeout, UpstreamQueryFailure

ALPHA = CustomerScope(customer_id=1, customer_number="K1001", company_name="Alpha Versand GmbH")
BETA = CustomerScope(customer_id=2, customer_number="K1002", company_name="Beta Shop UG")


class ItemizedRecordsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.database = make_database()
        self.db = self.database.session()

        add_customer(self.db, 1, "K1001", "Alpha Versand GmbH")
        add_customer(self.db, 2, "K1002", "Beta Shop UG")
        add_shipping_method(self.db, 1, "DHL Paket")
        add_shipping_method(self.db, 2, "GLS")
        add_box(self.db, 500, "Karton M", 30, 20, 40, 0.85)
        add_prices(self.db, 1, shipping_method_id=1, shipping_price=4.9, pick_price=0.3)

        # Alpha: one delivery note with 3 + 2 units shipped in three packages
        add_order(self.db, 10, 1, datetime(2024, 3, 1, 9, 0), number="AU-10", lines=[
            article_line(101, "Blaue Tasse", 3, net_price=8.0, sort_index=1),
            article_line(102, "Rote Tasse", 2, net_price=8.0, sort_index=2),
            packaging_line(103, 500),
        ])
        add_delivery_note(self.db, 100, 10, [(101, 3), (102, 2)])
        add_shipment(self.db, 1000, 100, datetime(2024, 3, 5, 10, 0), weight=2.345, packaging_line_id=103)
        add_shipment(self.db, 1001, 100, datetime(2024, 3, 5, 10, 5), weight=1.5)
        add_shipment(self.db, 1002, 100, datetime(2024, 3, 5, 10, 9), weight=1.0)

        # Beta: bill of materials (head + two components) shipped with GLS, no negotiated prices
        add_order(self.db, 20, 2, datetime(2024, 3, 2, 9, 0), number="AU-20", lines=[
            article_line(201, "Geschenkset", 1, sort_index=1, bom_head=201),
            article_line(202, "Set Teil A", 1, sort_index=2, bom_head=201),
            article_line(203, "Set Teil B", 2, sort_index=3, bom_head=201),
        ])
        add_delivery_note(self.db, 200, 20, [(201, 1), (202, 1), (203, 2)])
        add_shipment(self.db, 2000, 200, datetime(2024, 3, 8, 12, 0), method_id=2, weight=0.8)

    def tearDown(self) -> None:
        self.db.close()
        self.database.shutdown()

    def test_picks_only_on_first_package_of_delivery_note(self) -> None:
        result = compute_itemized_records(self.db, ALPHA, 2024, 3)
        records = sorted(result.records, key=lambda r: r.package_number)

        self.assertEqual(result.month, "2024-03")
        self.assertEqual([r.package_number for r in records], [1, 2, 3])
        self.assertEqual([r.picks for r in records], [4, 0, 0])
        self.assertEqual([r.pick_cost for r in records], [Decimal("1.20"), Decimal("0.00"), Decimal("0.00")])
        self.assertEqual({r.delivery_note_number for r in records}, {"LS-100"})

    def test_negotiated_prices_and_packaging(self) -> None:
        records = sorted(compute_itemized_records(self.db, ALPHA, 2024, 3).records,
                         key=lambda r: r.package_number)
        first = records[0]

        self.assertEqual(first.shipping_cost, Decimal("4.90"))
        self.assertEqual(first.weight, Decimal("2.35"))
        self.assertEqual(first.box_name, "Karton M")
        self.assertEqual((first.box_width, first.box_height, first.box_length),
                         (Decimal("30.00"), Decimal("20.00"), Decimal("40.00")))
        self.assertEqual(first.box_cost, Decimal("0.85"))
        self.assertEqual(first.carrier, "DHL Paket")
        self.assertEqual(first.first_article, "Blaue Tasse")
        self.assertEqual(first.recipient_company, "Empfänger GmbH")
        self.assertEqual(first.country, "DE")
        self.assertEqual(first.customer_number, "K1001")

        # Packages without a packaging line fall back to the standard carton
        self.assertEqual(records[1].box_name, "Standard Karton")
        self.assertEqual(records[1].box_cost, Decimal("0.00"))
        self.assertEqual(records[1].box_width, Decimal("0.00"))

    def test_defaults_without_negotiated_prices(self) -> None:
        [record] = compute_itemized_records(self.db, BETA, 2024, 3).records

        self.assertEqual(record.shipping_cost, Decimal("50.00"))
        # Head line excluded, components 1 + 2 units
        self.assertEqual(record.picks, 2)
        self.assertEqual(record.pick_cost, Decimal("0.50"))
        self.assertEqual(record.first_article, "Geschenkset")

    def test_summary_rollup(self) -> None:
        summary = compute_itemized_records(self.db, ALPHA, 2024, 3).summary.to_dict()

        self.assertEqual(summary["total"], {
            "weight": Decimal("4.85"),
            "picks": 4,
            "cost": Decimal("14.70"),
            "packages": 6,
        })
        self.assertEqual(summary["byCarrier"], {
            "DHL Paket": {"count": 3, "cost": Decimal("14.70"), "packages": 6},
        })

    def test_empty_month_yields_zero_summary(self) -> None:
        result = compute_itemized_records(self.db, ALPHA, 2024, 1)
        self.assertEqual(result.records, [])
        self.assertEqual(result.summary.to_dict(), {
            "total": {"weight": Decimal("0.00"), "picks": 0, "cost": Decimal("0.00"), "packages": 0},
            "byCarrier": {},
        })

    def test_scope_never_leaks_other_customers(self) -> None:
        alpha = compute_itemized_records(self.db, ALPHA, 2024, 3).records
        beta = compute_itemized_records(self.db, BETA, 2024, 3).records

        self.assertEqual({r.order_number for r in alpha}, {"AU-10"})
        self.assertEqual({r.customer_number for r in alpha}, {"K1001"})
        self.assertEqual({r.order_number for r in beta}, {"AU-20"})

    def test_scope_requires_fulfillment_label(self) -> None:
        add_customer(self.db, 3, "K3000", "Ohne Label", fulfillment=False)
        add_order(self.db, 30, 3, datetime(2024, 3, 3), lines=[article_line(301, "Ware", 2)])
        add_delivery_note(self.db, 300, 30, [(301, 2)])
        add_shipment(self.db, 3000, 300, datetime(2024, 3, 4))

        scope = CustomerScope(customer_id=3, customer_number="K3000")
        self.assertEqual(compute_itemized_records(self.db, scope, 2024, 3).records, [])

    def test_month_boundaries(self) -> None:
        add_order(self.db, 11, 1, datetime(2024, 3, 30), number="AU-11", lines=[article_line(111, "Teller", 1)])
        add_delivery_note(self.db, 110, 11, [(111, 1)])
        add_shipment(self.db, 1100, 110, datetime(2024, 3, 31, 23, 30))
        add_shipment(self.db, 1101, 110, datetime(2024, 4, 1, 0, 0))
        add_shipment(self.db, 1102, 110, None)

        march = [r for r in compute_itemized_records(self.db, ALPHA, 2024, 3).records if r.order_number == "AU-11"]
        april = [r for r in compute_itemized_records(self.db, ALPHA, 2024, 4).records if r.order_number == "AU-11"]

        self.assertEqual([r.tracking_code for r in march], ["TRK1100"])
        self.assertEqual([r.tracking_code for r in april], ["TRK1101"])
        # A single unit is not a billable pick
        self.assertEqual(march[0].picks, 0)

    def test_records_newest_shipment_first(self) -> None:
        add_order(self.db, 12, 1, datetime(2024, 3, 10), number="AU-12", lines=[article_line(121, "Krug", 3)])
        add_delivery_note(self.db, 120, 12, [(121, 3)])
        add_shipment(self.db, 1200, 120, datetime(2024, 3, 20))

        records = compute_itemized_records(self.db, ALPHA, 2024, 3).records
        self.assertEqual(records[0].order_number, "AU-12")

    def test_database_errors_are_translated(self) -> None:
        timeout = OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout"))
        with patch.object(self.db, "query", side_effect=timeout):
            with self.assertRaises(QueryTimeout):
                compute_itemized_records(self.db, ALPHA, 2024, 3)

        broken = OperationalError("SELECT", {}, Exception("relation does not exist"))
        with patch.object(self.db, "query", side_effect=broken):
            with self.assertRaises(UpstreamQueryFailure) as ctx:
                compute_itemized_records(self.db, ALPHA, 2024, 3)
        self.assertNotIsInstance(ctx.exception, QueryTimeout)


class SummarizeTests(unittest.TestCase):
    def test_empty(self) -> None:
        summary = summarize([])
        self.assertEqual(summary.total.packages, 0)
        self.assertEqual(summary.by_carrier, {})


if __name__ == "__main__":
    unittest.main()
