from __future__ import annotations

import unittest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from app.errors import NotFoundError
from app.models import SalesOrderStatus, SupplierOrderStatus
from app.services.mutation_service import create_snapshot
from app.services.requirement_service import (
    RequirementLine,
    SupplierOrderLine,
    component_requirements,
    list_components_on_order,
    on_order_breakdown,
    on_order_quantity,
    order_component_status,
    outstanding_quantity,
    required_for_production,
)
from tests.db_support import DatabaseTestMixin, add_component, add_product, add_sales_order, add_supplier_order


def _supplier_line(order_id: int, ordered: int, received: int, purchase_order_id: int | None = 1) -> SupplierOrderLine:
    return SupplierOrderLine(
        order_id=order_id,
        purchase_order_id=purchase_order_id,
        q_number=f'Q-{purchase_order_id}' if purchase_order_id else None,
        component_id=5,
        order_quantity=ordered,
        total_received=received,
    )


def _requirement_line(order_id: int, quantity: int, per_unit: str) -> RequirementLine:
    return RequirementLine(
        order_id=order_id,
        order_detail_id=order_id * 10,
        product_id=1,
        component_id=5,
        order_quantity=quantity,
        quantity_required=Decimal(per_unit),
    )


class RequirementMathTests(unittest.TestCase):
    def test_outstanding_never_negative(self) -> None:
        self.assertEqual(outstanding_quantity(10, 3), 7)
        self.assertEqual(outstanding_quantity(5, 8), 0)
        self.assertEqual(outstanding_quantity(4, None), 4)

    @patch('app.services.requirement_service._open_supplier_order_lines')
    def test_on_order_sums_outstanding(self, open_lines_mock) -> None:
        open_lines_mock.return_value = [_supplier_line(1, 10, 3), _supplier_line(2, 5, 5)]
        self.assertEqual(on_order_quantity(SimpleNamespace(), 5), 7)
        open_lines_mock.assert_called_once()

    @patch('app.services.requirement_service._open_supplier_order_lines')
    def test_breakdown_groups_by_purchase_order(self, open_lines_mock) -> None:
        open_lines_mock.return_value = [
            _supplier_line(1, 10, 3, purchase_order_id=1),
            _supplier_line(2, 4, 0, purchase_order_id=1),
            _supplier_line(3, 6, 6, purchase_order_id=2),
            _supplier_line(4, 2, 0, purchase_order_id=None),
        ]
        rows = on_order_breakdown(SimpleNamespace(), 5)
        self.assertEqual(
            rows,
            [
                {'purchase_order_id': 1, 'q_number': 'Q-1', 'pending_quantity': 11},
                {'purchase_order_id': None, 'q_number': 'N/A', 'pending_quantity': 2},
            ],
        )

    @patch('app.services.requirement_service._active_order_requirement_lines')
    def test_required_for_production_multiplies_bom(self, lines_mock) -> None:
        lines_mock.return_value = [_requirement_line(1, 3, '2'), _requirement_line(2, 4, '1')]
        self.assertEqual(required_for_production(SimpleNamespace(), 5), Decimal('10'))

    @patch('app.services.requirement_service._active_order_requirement_lines')
    def test_required_for_production_keeps_fractions(self, lines_mock) -> None:
        lines_mock.return_value = [_requirement_line(1, 3, '0.25')]
        self.assertEqual(required_for_production(SimpleNamespace(), 5), Decimal('0.75'))

    @patch('app.services.requirement_service._active_order_requirement_lines')
    def test_required_for_production_is_none_when_zero(self, lines_mock) -> None:
        lines_mock.return_value = []
        self.assertIsNone(required_for_production(SimpleNamespace(), 5))


class RequirementQueryTests(DatabaseTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.bolt = add_component(self.db, 'BOLT')
        self.panel = add_component(self.db, 'PANEL')
        create_snapshot(self.db, component_id=self.bolt.component_id, initial_quantity=20)

    def test_only_open_supplier_orders_count(self) -> None:
        add_supplier_order(self.db, self.bolt, ordered=10, received=3, status=SupplierOrderStatus.PARTIALLY_RECEIVED)
        add_supplier_order(self.db, self.bolt, ordered=5, received=0, status=SupplierOrderStatus.APPROVED)
        add_supplier_order(self.db, self.bolt, ordered=50, received=0, status=SupplierOrderStatus.DRAFT)
        add_supplier_order(self.db, self.bolt, ordered=50, received=50, status=SupplierOrderStatus.FULLY_RECEIVED)
        add_supplier_order(self.db, self.bolt, ordered=50, received=0, status=SupplierOrderStatus.CANCELLED)

        self.assertEqual(on_order_quantity(self.db, self.bolt.component_id), 12)
        self.assertEqual(on_order_quantity(self.db, self.panel.component_id), 0)

    def test_closed_sales_orders_are_excluded(self) -> None:
        chair = add_product(self.db, 'CHAIR', [(self.bolt, '8'), (self.panel, '2')])
        add_sales_order(self.db, [(chair, 3)], status=SalesOrderStatus.NEW)
        add_sales_order(self.db, [(chair, 1)], status=SalesOrderStatus.ON_HOLD)
        add_sales_order(self.db, [(chair, 9)], status=SalesOrderStatus.COMPLETED)
        add_sales_order(self.db, [(chair, 9)], status=SalesOrderStatus.CANCELLED)

        self.assertEqual(required_for_production(self.db, self.bolt.component_id), Decimal('32'))
        self.assertEqual(required_for_production(self.db, self.panel.component_id), Decimal('8'))

    def test_order_component_status_shortfalls(self) -> None:
        chair = add_product(self.db, 'CHAIR', [(self.bolt, '8'), (self.panel, '2')])
        order = add_sales_order(self.db, [(chair, 4)])
        add_supplier_order(self.db, self.bolt, ordered=10, received=0)

        rows = {row['component_id']: row for row in order_component_status(self.db, order.order_id)}

        bolt = rows[self.bolt.component_id]
        self.assertEqual(bolt['order_required'], Decimal('32'))
        self.assertEqual(bolt['in_stock'], 20)
        self.assertEqual(bolt['on_order'], 10)
        self.assertEqual(bolt['apparent_shortfall'], Decimal('12'))
        self.assertEqual(bolt['real_shortfall'], Decimal('2'))
        panel = rows[self.panel.component_id]
        self.assertEqual(panel['in_stock'], 0)
        self.assertEqual(panel['real_shortfall'], Decimal('8'))

    def test_order_component_status_unknown_order(self) -> None:
        with self.assertRaises(NotFoundError):
            order_component_status(self.db, 404)

    def test_components_on_order_listing(self) -> None:
        add_supplier_order(self.db, self.bolt, ordered=10, received=4, q_number='Q-100')
        add_supplier_order(self.db, self.panel, ordered=3, received=3)

        rows = list_components_on_order(self.db)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['internal_code'], 'BOLT')
        self.assertEqual(rows[0]['on_order_quantity'], 6)
        self.assertEqual(rows[0]['quantity_on_hand'], 20)
        self.assertEqual(rows[0]['orders'][0]['q_number'], 'Q-100')

    def test_component_requirements_summary(self) -> None:
        summary = component_requirements(self.db, self.bolt.component_id)
        self.assertEqual(summary['quantity_on_hand'], 20)
        self.assertEqual(summary['on_order_quantity'], 0)
        self.assertIsNone(summary['required_for_production'])
        with self.assertRaises(NotFoundError):
            component_requirements(self.db, 404)


if __name__ == '__main__':
    unittest.main()
