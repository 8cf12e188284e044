from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.models import Component, InventoryTransaction, Staff, TransactionType
from app.services.snapshot_service import get_snapshot


@dataclass(frozen=True)
class BalanceDrift:
    transaction_id: int
    stored_balance: int
    reconstructed_balance: int


@dataclass(frozen=True)
class ConsistencyReport:
    component_id: int
    quantity_on_hand: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.quantity_on_hand == self.ledger_total


def _delta(entry) -> int:
    if isinstance(entry, int):
        return entry
    return int(entry.quantity)


def _resolve_limit(limit: int | None) -> int:
    if limit is None:
        return settings.recent_transactions_limit
    if limit <= 0:
        raise ValidationError('limit must be greater than zero', field='limit')
    return min(limit, settings.max_recent_transactions_limit)


def list_recent(db: Session, *, component_id: int, limit: int | None = None) -> list[InventoryTransaction]:
    return db.execute(
        select(InventoryTransaction)
        .where(InventoryTransaction.component_id == component_id)
        .order_by(InventoryTransaction.transaction_date.desc(), InventoryTransaction.transaction_id.desc())
        .limit(_resolve_limit(limit))
    ).scalars().all()


def reconstruct_balances(current_quantity: int, transactions: Sequence) -> list[int]:
    """Balance right after each entry, newest first.

    ``transactions`` must be ordered most recent first and form an unbroken
    tail of the ledger; ``current_quantity`` is the snapshot value.
    """
    balances: list[int] = []
    balance = int(current_quantity)
    previous = None
    for entry in transactions:
        if previous is not None:
            balance -= _delta(previous)
        balances.append(balance)
        previous = entry
    return balances


def find_balance_drift(current_quantity: int, transactions: Sequence[InventoryTransaction]) -> list[BalanceDrift]:
    reconstructed = reconstruct_balances(current_quantity, transactions)
    return [
        BalanceDrift(
            transaction_id=entry.transaction_id,
            stored_balance=entry.balance_after,
            reconstructed_balance=expected,
        )
        for entry, expected in zip(transactions, reconstructed)
        if entry.balance_after != expected
    ]


def ledger_total(db: Session, component_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).where(
            InventoryTransaction.component_id == component_id
        )
    ).scalar_one()
    return int(total)


def check_consistency(db: Session, component_id: int) -> ConsistencyReport:
    snapshot = get_snapshot(db, component_id)
    return ConsistencyReport(
        component_id=component_id,
        quantity_on_hand=snapshot.quantity_on_hand if snapshot else 0,
        ledger_total=ledger_total(db, component_id),
    )


def resolve_staff_names(db: Session, staff_ids) -> dict[int, str]:
    ids = {int(value) for value in staff_ids if value is not None}
    if not ids:
        return {}
    rows = db.execute(select(Staff.staff_id, Staff.first_name, Staff.last_name).where(Staff.staff_id.in_(list(ids)))).all()
    return {int(row.staff_id): ' '.join(part for part in (row.first_name, row.last_name) if part) for row in rows}


def build_history(db: Session, *, component_id: int, limit: int | None = None) -> dict:
    component = db.get(Component, component_id)
    if component is None:
        raise NotFoundError('Component', component_id)
    snapshot = get_snapshot(db, component_id)
    current = snapshot.quantity_on_hand if snapshot else 0
    entries = list_recent(db, component_id=component_id, limit=limit)
    balances = reconstruct_balances(current, entries)
    staff_names = resolve_staff_names(db, [entry.staff_id for entry in entries])
    return {
        'component_id': component_id,
        'internal_code': component.internal_code,
        'quantity_on_hand': current,
        'tracked': snapshot is not None,
        'transactions': [
            {
                'transaction_id': entry.transaction_id,
                'transaction_type': entry.transaction_type.value,
                'quantity': entry.quantity,
                'balance_after': entry.balance_after,
                'reconstructed_balance': balance,
                'transaction_date': entry.transaction_date,
                'effective_date': entry.effective_date,
                'reason': entry.reason,
                'external_reference': entry.external_reference,
                'issue_category': entry.issue_category,
                'sales_order_id': entry.sales_order_id,
                'purchase_order_id': entry.purchase_order_id,
                'staff_id': entry.staff_id,
                'staff_name': staff_names.get(entry.staff_id) if entry.staff_id is not None else None,
                'acting_user_id': entry.acting_user_id,
                'reverses_transaction_id': entry.reverses_transaction_id,
            }
            for entry, balance in zip(entries, balances)
        ],
    }


def _minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def list_issuance_groups(db: Session, *, since: datetime | None = None, limit: int = 500) -> list[dict]:
    """Manual issuances grouped by reference, category, staff and minute."""
    query = (
        select(InventoryTransaction, Component.internal_code)
        .join(Component, Component.component_id == InventoryTransaction.component_id)
        .where(
            InventoryTransaction.transaction_type == TransactionType.ISSUE,
            InventoryTransaction.external_reference.is_not(None),
        )
        .order_by(InventoryTransaction.effective_date.desc(), InventoryTransaction.transaction_id.desc())
        .limit(limit)
    )
    if since is not None:
        query = query.where(InventoryTransaction.effective_date >= since)
    rows = db.execute(query).all()

    groups: dict[tuple, dict] = {}
    for entry, internal_code in rows:
        key = (entry.external_reference, entry.issue_category, entry.staff_id, _minute(entry.effective_date))
        group = groups.get(key)
        if group is None:
            group = {
                'external_reference': entry.external_reference,
                'issue_category': entry.issue_category,
                'staff_id': entry.staff_id,
                'issued_at': key[3],
                'total_quantity': 0,
                'items': [],
            }
            groups[key] = group
        group['total_quantity'] += -entry.quantity
        group['items'].append(
            {
                'transaction_id': entry.transaction_id,
                'component_id': entry.component_id,
                'internal_code': internal_code,
                'quantity': -entry.quantity,
            }
        )

    staff_names = resolve_staff_names(db, [group['staff_id'] for group in groups.values()])
    for group in groups.values():
        group['staff_name'] = staff_names.get(group['staff_id']) if group['staff_id'] is not None else None
        group['item_count'] = len(group['items'])
    return list(groups.values())
