from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from app.db import get_db
from app.main import app
from app.services.snapshot_service import get_snapshot
from tests.db_support import DatabaseTestMixin, add_component, add_product, add_sales_order

HEADERS = {'X-Acting-User': 'user-7'}


class InventoryApiTests(DatabaseTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tracked = add_component(self.db, 'BOLT')
        self.untracked = add_component(self.db, 'NUT')
        self.db.commit()

        def override_get_db():
            try:
                yield self.db
            finally:
                self.db.rollback()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def _create_tracked(self, quantity: int = 30):
        return self.client.post(
            f'/inventory/components/{self.tracked.component_id}',
            json={'initial_quantity': quantity, 'reorder_level': 5},
            headers=HEADERS,
        )

    def test_create_adjust_and_read_history(self) -> None:
        created = self._create_tracked()
        self.assertEqual(created.status_code, 200)
        self.assertTrue(created.json()['created'])

        adjusted = self.client.post(
            f'/inventory/components/{self.tracked.component_id}/adjustments',
            json={'mode': 'set', 'magnitude': 50, 'reason_code': 'stock_count'},
            headers=HEADERS,
        )
        self.assertEqual(adjusted.status_code, 200)
        self.assertEqual(adjusted.json()['delta'], 20)

        history = self.client.get(f'/inventory/components/{self.tracked.component_id}/transactions')
        self.assertEqual(history.status_code, 200)
        body = history.json()
        self.assertEqual(body['quantity_on_hand'], 50)
        self.assertEqual([row['quantity'] for row in body['transactions']], [20, 30])
        self.assertEqual(body['transactions'][0]['acting_user_id'], 'user-7')

        snapshot = self.client.get(f'/inventory/components/{self.tracked.component_id}')
        self.assertTrue(snapshot.json()['consistent'])

    def test_validation_errors_are_400(self) -> None:
        self._create_tracked()
        response = self.client.post(
            f'/inventory/components/{self.tracked.component_id}/adjustments',
            json={'mode': 'add', 'magnitude': 5, 'reason_code': 'bogus'},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['code'], 'VALIDATION_ERROR')
        self.assertEqual(response.json()['detail']['field'], 'reason_code')

    def test_missing_snapshot_is_404(self) -> None:
        response = self.client.get(f'/inventory/components/{self.untracked.component_id}')
        self.assertEqual(response.status_code, 404)

    def test_batch_issue_keeps_successes_and_reports_failures(self) -> None:
        self._create_tracked(10)
        response = self.client.post(
            '/inventory/issuances',
            json={
                'external_reference': 'JOB-1',
                'items': [
                    {'component_id': self.tracked.component_id, 'quantity': 4},
                    {'component_id': self.untracked.component_id, 'quantity': 1},
                ],
            },
            headers=HEADERS,
        )

        self.assertEqual(response.status_code, 409)
        detail = response.json()['detail']
        self.assertEqual(detail['code'], 'BATCH_PARTIAL_FAILURE')
        self.assertEqual(detail['failed'][0]['code'], 'MISSING_INVENTORY')
        self.assertEqual(get_snapshot(self.db, self.tracked.component_id).quantity_on_hand, 6)

        audit = self.client.get('/inventory/audit', params={'action': 'STOCK_ISSUED'})
        self.assertEqual(audit.status_code, 200)
        [entry] = audit.json()['entries']
        self.assertEqual(entry['acting_user_id'], 'user-7')
        self.assertEqual(entry['metadata']['failed_component_ids'], [self.untracked.component_id])

    def test_backdated_issue_keeps_its_date_and_balances(self) -> None:
        self._create_tracked(10)
        self.client.post(
            '/inventory/issuances',
            json={'external_reference': 'JOB-5', 'items': [{'component_id': self.tracked.component_id, 'quantity': 2}]},
        )
        late = self.client.post(
            '/inventory/issuances',
            json={
                'external_reference': 'JOB-6',
                'issued_at': '2026-01-05T14:30:00+00:00',
                'items': [{'component_id': self.tracked.component_id, 'quantity': 3}],
            },
        )
        self.assertEqual(late.status_code, 200)

        history = self.client.get(f'/inventory/components/{self.tracked.component_id}/transactions').json()
        self.assertEqual(history['quantity_on_hand'], 5)
        newest = history['transactions'][0]
        self.assertEqual(newest['external_reference'], 'JOB-6')
        self.assertTrue(newest['effective_date'].startswith('2026-01-05T14:30:00'))
        for row in history['transactions']:
            self.assertEqual(row['balance_after'], row['reconstructed_balance'])

        groups = self.client.get('/inventory/issuances', params={'since': '2026-01-05T00:00:00'}).json()['groups']
        job_six = next(group for group in groups if group['external_reference'] == 'JOB-6')
        self.assertTrue(job_six['issued_at'].startswith('2026-01-05T14:30:00'))

    def test_audit_listing_filters_by_acting_user(self) -> None:
        self._create_tracked(10)
        self.client.post(
            f'/inventory/components/{self.tracked.component_id}/adjustments',
            json={'mode': 'add', 'magnitude': 2, 'reason_code': 'found_stock'},
            headers={'X-Acting-User': 'user-8'},
        )

        response = self.client.get('/inventory/audit', params={'acting_user': 'user-8'})

        self.assertEqual(response.status_code, 200)
        entries = response.json()['entries']
        self.assertEqual([entry['action'] for entry in entries], ['STOCK_ADJUSTED'])
        self.assertEqual(entries[0]['metadata']['delta'], 2)
        everything = self.client.get('/inventory/audit').json()['entries']
        self.assertEqual([entry['action'] for entry in everything], ['STOCK_ADJUSTED', 'INVENTORY_RECORD_CREATED'])

    def test_reversal_endpoint(self) -> None:
        self._create_tracked(10)
        issued = self.client.post(
            '/inventory/issuances',
            json={'external_reference': 'JOB-2', 'items': [{'component_id': self.tracked.component_id, 'quantity': 3}]},
        )
        transaction_id = issued.json()['issued'][0]['transaction_id']

        reversed_ = self.client.post(
            f'/inventory/transactions/{transaction_id}/reversals',
            json={'quantity_to_reverse': 3},
        )
        self.assertEqual(reversed_.status_code, 200)
        self.assertEqual(reversed_.json()['quantity_on_hand'], 10)

        again = self.client.post(
            f'/inventory/transactions/{transaction_id}/reversals',
            json={'quantity_to_reverse': 1},
        )
        self.assertEqual(again.status_code, 400)

    def test_picking_list_lifecycle(self) -> None:
        self._create_tracked(10)
        created = self.client.post(
            '/picking-lists',
            json={'external_reference': 'JOB-3', 'items': [{'component_id': self.tracked.component_id, 'quantity': 2}]},
            headers=HEADERS,
        )
        self.assertEqual(created.status_code, 200)
        pending_id = created.json()['pending_id']

        completed = self.client.post(f'/picking-lists/{pending_id}/complete', headers=HEADERS)
        self.assertEqual(completed.status_code, 200)
        self.assertEqual(completed.json()['status'], 'ISSUED')

        again = self.client.post(f'/picking-lists/{pending_id}/complete')
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()['detail']['code'], 'INVALID_TRANSITION')

        listing = self.client.get('/picking-lists', params={'status': 'issued'})
        self.assertEqual([row['pending_id'] for row in listing.json()['picking_lists']], [pending_id])

    def test_picking_list_missing_inventory_is_409(self) -> None:
        created = self.client.post(
            '/picking-lists',
            json={'external_reference': 'JOB-4', 'items': [{'component_id': self.untracked.component_id, 'quantity': 1}]},
        )
        response = self.client.post(f"/picking-lists/{created.json()['pending_id']}/complete")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['detail']['component_ids'], [self.untracked.component_id])

    def test_order_requirements(self) -> None:
        self._create_tracked(10)
        chair = add_product(self.db, 'CHAIR', [(self.tracked, '4')])
        order = add_sales_order(self.db, [(chair, 3)])
        self.db.commit()

        response = self.client.get(f'/requirements/orders/{order.order_id}')

        self.assertEqual(response.status_code, 200)
        row = response.json()['components'][0]
        self.assertEqual(row['in_stock'], 10)
        self.assertEqual(float(row['real_shortfall']), 2.0)
        self.assertEqual(self.client.get('/requirements/orders/999').status_code, 404)

    def test_security_headers(self) -> None:
        response = self.client.get('/health')
        self.assertEqual(response.headers['X-Content-Type-Options'], 'nosniff')
        self.assertEqual(response.headers['Cache-Control'], 'no-store')


if __name__ == '__main__':
    unittest.main()
