from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from app.errors import NotFoundError, ValidationError
from app.services.ledger_service import (
    build_history,
    check_consistency,
    find_balance_drift,
    list_issuance_groups,
    list_recent,
    reconstruct_balances,
)
from app.services.mutation_service import adjust, create_snapshot, manual_issue, reverse
from tests.db_support import DatabaseTestMixin, add_component, add_staff


class BalanceReconstructionTests(unittest.TestCase):
    def test_walks_back_from_current_quantity(self) -> None:
        # Newest first: +8, -3, +5 starting from 0 leaves 10 on hand.
        self.assertEqual(reconstruct_balances(10, [8, -3, 5]), [10, 2, 5])

    def test_accepts_ledger_rows(self) -> None:
        rows = [SimpleNamespace(quantity=-2), SimpleNamespace(quantity=4)]
        self.assertEqual(reconstruct_balances(2, rows), [2, 4])

    def test_empty_history(self) -> None:
        self.assertEqual(reconstruct_balances(7, []), [])

    def test_negative_balances_are_kept(self) -> None:
        self.assertEqual(reconstruct_balances(-2, [-7, 5]), [-2, 5])

    def test_drift_is_reported_per_entry(self) -> None:
        rows = [
            SimpleNamespace(transaction_id=3, quantity=-1, balance_after=4),
            SimpleNamespace(transaction_id=2, quantity=2, balance_after=9),
        ]
        drift = find_balance_drift(4, rows)
        self.assertEqual(len(drift), 1)
        self.assertEqual(drift[0].transaction_id, 2)
        self.assertEqual(drift[0].stored_balance, 9)
        self.assertEqual(drift[0].reconstructed_balance, 5)


class LedgerQueryTests(DatabaseTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.component = add_component(self.db, 'HINGE')
        self.staff = add_staff(self.db, 'Ada', 'Lovelace')
        self.start = datetime(2026, 3, 2, 9, 0, 0)
        create_snapshot(self.db, component_id=self.component.component_id, initial_quantity=10)

    def test_history_is_newest_first_with_matching_balances(self) -> None:
        adjust(
            self.db,
            component_id=self.component.component_id,
            mode='add',
            magnitude=5,
            reason_code='found_stock',
            occurred_at=datetime(2030, 1, 1, 8, 0, 0),
        )
        manual_issue(
            self.db,
            component_id=self.component.component_id,
            quantity=3,
            external_reference='JOB-1',
            staff_id=self.staff.staff_id,
            issued_at=datetime(2030, 1, 1, 9, 0, 0),
        )

        history = build_history(self.db, component_id=self.component.component_id)

        self.assertEqual(history['quantity_on_hand'], 12)
        quantities = [row['quantity'] for row in history['transactions']]
        self.assertEqual(quantities, [-3, 5, 10])
        for row in history['transactions']:
            self.assertEqual(row['balance_after'], row['reconstructed_balance'])
        self.assertEqual(history['transactions'][0]['staff_name'], 'Ada Lovelace')

    def test_backdated_issue_keeps_stored_balances_consistent(self) -> None:
        component_id = self.component.component_id
        manual_issue(self.db, component_id=component_id, quantity=2, external_reference='JOB-NOW')
        yesterday = datetime.now(tz=timezone.utc) - timedelta(days=1)
        late = manual_issue(
            self.db,
            component_id=component_id,
            quantity=3,
            external_reference='JOB-LATE',
            issued_at=yesterday,
        )

        entries = list_recent(self.db, component_id=component_id)

        self.assertEqual([entry.quantity for entry in entries], [-3, -2, 10])
        self.assertEqual(find_balance_drift(5, entries), [])
        self.assertEqual(entries[0].transaction_id, late.transaction_id)
        self.assertEqual(entries[0].balance_after, 5)
        self.assertEqual(entries[0].effective_date.replace(tzinfo=None), yesterday.replace(tzinfo=None))
        history = build_history(self.db, component_id=component_id)
        self.assertEqual(history['quantity_on_hand'], 5)
        self.assertTrue(all(row['balance_after'] == row['reconstructed_balance'] for row in history['transactions']))

    def test_limit_is_validated_and_clamped(self) -> None:
        with self.assertRaises(ValidationError):
            list_recent(self.db, component_id=self.component.component_id, limit=0)
        self.assertEqual(len(list_recent(self.db, component_id=self.component.component_id, limit=10_000)), 1)

    def test_history_for_unknown_component(self) -> None:
        with self.assertRaises(NotFoundError):
            build_history(self.db, component_id=9999)

    def test_consistency_after_mixed_operations(self) -> None:
        issued = manual_issue(self.db, component_id=self.component.component_id, quantity=4, external_reference='JOB-2')
        reverse(self.db, transaction_id=issued.transaction_id, quantity_to_reverse=1)
        adjust(self.db, component_id=self.component.component_id, mode='set', magnitude=2, reason_code='cycle_count')

        report = check_consistency(self.db, self.component.component_id)
        self.assertTrue(report.consistent)
        self.assertEqual(report.quantity_on_hand, 2)

    def test_issuances_grouped_by_reference_and_minute(self) -> None:
        other = add_component(self.db, 'LATCH')
        create_snapshot(self.db, component_id=other.component_id, initial_quantity=10)
        for component_id, offset in ((self.component.component_id, 5), (other.component_id, 20)):
            manual_issue(
                self.db,
                component_id=component_id,
                quantity=2,
                external_reference='KIT-1',
                staff_id=self.staff.staff_id,
                issued_at=self.start + timedelta(seconds=offset),
            )
        manual_issue(
            self.db,
            component_id=other.component_id,
            quantity=1,
            external_reference='KIT-2',
            issued_at=self.start + timedelta(minutes=5),
        )

        groups = list_issuance_groups(self.db)

        self.assertEqual([group['external_reference'] for group in groups], ['KIT-2', 'KIT-1'])
        kit_one = groups[1]
        self.assertEqual(kit_one['item_count'], 2)
        self.assertEqual(kit_one['total_quantity'], 4)
        self.assertEqual(kit_one['staff_name'], 'Ada Lovelace')


if __name__ == '__main__':
    unittest.main()
