"""The only write path for ledger entries and inventory snapshots.

Every operation runs as one atomic unit: validate, lock the component's
snapshot row, append the ledger entry (with its post-change balance), update
the snapshot, flush.  The unit is a savepoint, so a failure leaves nothing
behind while earlier units in the same session survive; the caller commits.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterator

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import (
    BatchPartialFailure,
    MissingInventory,
    MutationFailure,
    NotFoundError,
    StockLedgerError,
    ValidationError,
)
from app.logging_config import get_logger
from app.models import Component, InventorySnapshot, InventoryTransaction, SalesOrder, TransactionType
from app.services.snapshot_service import lock_snapshot

log = get_logger('mutations')


class AdjustmentMode(str, Enum):
    SET = 'set'
    ADD = 'add'
    SUBTRACT = 'subtract'


class IssueCategory(str, Enum):
    PRODUCTION = 'production'
    CUSTOMER_ORDER = 'customer_order'
    SAMPLES = 'samples'
    WASTAGE = 'wastage'
    REWORK = 'rework'
    OTHER = 'other'


ADJUSTMENT_REASONS: list[dict] = [
    {'code': 'stock_count', 'label': 'Stock Count Variance'},
    {'code': 'damage', 'label': 'Damage/Spoilage'},
    {'code': 'theft', 'label': 'Theft/Loss'},
    {'code': 'data_entry_error', 'label': 'Data Entry Correction'},
    {'code': 'found_stock', 'label': 'Found Stock'},
    {'code': 'quality_rejection', 'label': 'Quality Rejection'},
    {'code': 'sample_usage', 'label': 'Sample/Testing'},
    {'code': 'write_off', 'label': 'Write-off'},
    {'code': 'cycle_count', 'label': 'Cycle Count'},
    {'code': 'other', 'label': 'Other'},
]

REASON_BY_CODE = {item['code']: item for item in ADJUSTMENT_REASONS}


@dataclass(frozen=True)
class MutationResult:
    transaction_id: int
    component_id: int
    delta: int
    previous_quantity: int
    quantity_on_hand: int


@dataclass(frozen=True)
class AdjustmentResult(MutationResult):
    is_large: bool = False


@dataclass(frozen=True)
class IssueResult(MutationResult):
    insufficient_stock: bool = False


@dataclass(frozen=True)
class ReversalResult(MutationResult):
    reversed_transaction_id: int = 0
    remaining_reversible: int = 0


@dataclass(frozen=True)
class SnapshotCreation:
    snapshot: InventorySnapshot
    created: bool
    opening_transaction_id: int | None = None


@dataclass(frozen=True)
class BatchItem:
    component_id: int
    quantity: int


@dataclass(frozen=True)
class BatchItemFailure:
    component_id: int
    quantity: int
    error: StockLedgerError

    def to_dict(self) -> dict:
        return {
            'component_id': self.component_id,
            'quantity': self.quantity,
            'code': self.error.code,
            'message': self.error.message,
        }


@dataclass
class BatchIssueResult:
    succeeded: list[IssueResult] = field(default_factory=list)
    failed: list[BatchItemFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def missing_component_ids(self) -> list[int]:
        return [row.component_id for row in self.failed if isinstance(row.error, MissingInventory)]

    def raise_for_failures(self) -> None:
        if self.failed:
            raise BatchPartialFailure(
                succeeded=[
                    {'component_id': row.component_id, 'quantity': -row.delta, 'transaction_id': row.transaction_id}
                    for row in self.succeeded
                ],
                failed=[row.to_dict() for row in self.failed],
            )


@dataclass
class _Unit:
    component_id: int
    attempted_delta: int | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _whole_number(value, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field} must be a whole number', field=field)
    return value


def _positive_quantity(value, *, field: str = 'quantity') -> int:
    quantity = _whole_number(value, field=field)
    if quantity <= 0:
        raise ValidationError(f'{field} must be greater than zero', field=field)
    return quantity


def _require_reference(value: str | None) -> str:
    reference = (value or '').strip()
    if not reference:
        raise ValidationError('External reference is required for manual issuances', field='external_reference')
    return reference


def coerce_issue_category(value: str | None) -> str:
    raw = (value or settings.default_issue_category).strip().lower()
    try:
        return IssueCategory(raw).value
    except ValueError as exc:
        raise ValidationError(f'Unknown issue category: {raw}', field='issue_category') from exc


def build_adjustment_reason(reason_code: str, notes: str | None) -> str:
    reason = REASON_BY_CODE.get((reason_code or '').strip())
    if reason is None:
        raise ValidationError('Select a reason for the adjustment', field='reason_code')
    clean_notes = (notes or '').strip()
    if reason['code'] == 'other' and not clean_notes:
        raise ValidationError('Provide details for the "Other" reason', field='notes')
    if clean_notes:
        return f"{reason['label']}: {clean_notes}"
    return reason['label']


def compute_adjustment_delta(mode: AdjustmentMode, magnitude: int, current_quantity: int) -> int:
    if mode == AdjustmentMode.SET:
        return magnitude - current_quantity
    if mode == AdjustmentMode.ADD:
        return magnitude
    return -magnitude


def is_large_adjustment(delta: int, current_quantity: int) -> bool:
    if abs(delta) > settings.large_adjustment_units:
        return True
    if current_quantity > 0:
        return Decimal(abs(delta)) / Decimal(current_quantity) > settings.large_adjustment_ratio
    return False


def _require_component(db: Session, component_id: int) -> None:
    exists = db.execute(
        select(Component.component_id).where(Component.component_id == component_id)
    ).scalar_one_or_none()
    if exists is None:
        raise NotFoundError('Component', component_id)


@contextmanager
def atomic_unit(db: Session, *, component_id: int, attempted_delta: int | None = None) -> Iterator[_Unit]:
    unit = _Unit(component_id=component_id, attempted_delta=attempted_delta)
    try:
        with db.begin_nested():
            yield unit
    except StockLedgerError:
        raise
    except Exception as exc:
        log.error(
            'ledger write failed for component %s (delta %s)',
            unit.component_id,
            unit.attempted_delta,
            exc_info=True,
        )
        raise MutationFailure(
            f'Could not record a change of {unit.attempted_delta} for component {unit.component_id}',
            component_id=unit.component_id,
            attempted_delta=unit.attempted_delta,
        ) from exc


def _append_entry(
    db: Session,
    snapshot: InventorySnapshot,
    *,
    delta: int,
    transaction_type: TransactionType,
    occurred_at: datetime,
    **fields,
) -> InventoryTransaction:
    if delta == 0:
        raise ValidationError('A ledger entry must change the quantity on hand', field='quantity')
    recorded_at = _now()
    snapshot.quantity_on_hand = snapshot.quantity_on_hand + delta
    snapshot.updated_at = recorded_at
    # balance_after follows write order, so a backdated entry still carries the live balance.
    entry = InventoryTransaction(
        component_id=snapshot.component_id,
        quantity=delta,
        balance_after=snapshot.quantity_on_hand,
        transaction_type=transaction_type,
        transaction_date=recorded_at,
        effective_date=occurred_at,
        **fields,
    )
    db.add(entry)
    db.flush()
    return entry


def _new_snapshot(db: Session, component_id: int, *, reorder_level: int = 0, location: str | None = None) -> InventorySnapshot:
    snapshot = InventorySnapshot(
        component_id=component_id,
        quantity_on_hand=0,
        reorder_level=reorder_level,
        location=location,
    )
    db.add(snapshot)
    db.flush()
    return snapshot


def create_snapshot(
    db: Session,
    *,
    component_id: int,
    initial_quantity: int = 0,
    reorder_level: int = 0,
    location: str | None = None,
    acting_user_id: str | None = None,
) -> SnapshotCreation:
    initial_quantity = _whole_number(initial_quantity, field='initial_quantity')
    reorder_level = _whole_number(reorder_level, field='reorder_level')
    if reorder_level < 0:
        raise ValidationError('Reorder level cannot be negative', field='reorder_level')
    _require_component(db, component_id)

    with atomic_unit(db, component_id=component_id, attempted_delta=initial_quantity):
        existing = lock_snapshot(db, component_id)
        if existing is not None:
            return SnapshotCreation(snapshot=existing, created=False)
        snapshot = _new_snapshot(db, component_id, reorder_level=reorder_level, location=location)
        opening_id = None
        if initial_quantity:
            # Opening balance goes through the ledger so snapshot == sum of entries.
            entry = _append_entry(
                db,
                snapshot,
                delta=initial_quantity,
                transaction_type=TransactionType.ADJUSTMENT,
                occurred_at=_now(),
                acting_user_id=acting_user_id,
                reason='Opening balance',
            )
            opening_id = entry.transaction_id

    log.info('inventory record created for component %s (opening %s)', component_id, initial_quantity)
    return SnapshotCreation(snapshot=snapshot, created=True, opening_transaction_id=opening_id)


def create_missing_snapshots(db: Session, *, component_ids: list[int], acting_user_id: str | None = None) -> list[int]:
    created: list[int] = []
    for component_id in dict.fromkeys(component_ids):
        result = create_snapshot(db, component_id=component_id, acting_user_id=acting_user_id)
        if result.created:
            created.append(component_id)
    return created


def adjust(
    db: Session,
    *,
    component_id: int,
    mode: AdjustmentMode | str,
    magnitude: int,
    reason_code: str,
    notes: str | None = None,
    acting_user_id: str | None = None,
    occurred_at: datetime | None = None,
) -> AdjustmentResult:
    try:
        mode = AdjustmentMode(mode)
    except ValueError as exc:
        raise ValidationError(f'Unknown adjustment mode: {mode}', field='mode') from exc
    magnitude = _whole_number(magnitude, field='magnitude')
    if magnitude < 0:
        raise ValidationError('magnitude cannot be negative', field='magnitude')
    reason = build_adjustment_reason(reason_code, notes)
    _require_component(db, component_id)

    with atomic_unit(db, component_id=component_id) as unit:
        snapshot = lock_snapshot(db, component_id)
        if snapshot is None:
            snapshot = _new_snapshot(db, component_id)
        previous = snapshot.quantity_on_hand
        delta = compute_adjustment_delta(mode, magnitude, previous)
        unit.attempted_delta = delta
        if delta == 0:
            raise ValidationError('Adjustment does not change the quantity on hand', field='magnitude')
        entry = _append_entry(
            db,
            snapshot,
            delta=delta,
            transaction_type=TransactionType.ADJUSTMENT,
            occurred_at=occurred_at or _now(),
            acting_user_id=acting_user_id,
            reason=reason,
        )

    large = is_large_adjustment(delta, previous)
    log.info(
        'adjusted component %s by %s to %s%s',
        component_id,
        delta,
        snapshot.quantity_on_hand,
        ' (large adjustment)' if large else '',
    )
    return AdjustmentResult(
        transaction_id=entry.transaction_id,
        component_id=component_id,
        delta=delta,
        previous_quantity=previous,
        quantity_on_hand=snapshot.quantity_on_hand,
        is_large=large,
    )


def manual_issue(
    db: Session,
    *,
    component_id: int,
    quantity: int,
    external_reference: str | None,
    issue_category: str | None = None,
    staff_id: int | None = None,
    notes: str | None = None,
    acting_user_id: str | None = None,
    issued_at: datetime | None = None,
) -> IssueResult:
    quantity = _positive_quantity(quantity)
    reference = _require_reference(external_reference)
    category = coerce_issue_category(issue_category)
    _require_component(db, component_id)
    clean_notes = (notes or '').strip() or None

    with atomic_unit(db, component_id=component_id, attempted_delta=-quantity):
        snapshot = lock_snapshot(db, component_id)
        if snapshot is None:
            log.info('manual issue rejected: no inventory record for component %s', component_id)
            raise MissingInventory([component_id])
        previous = snapshot.quantity_on_hand
        entry = _append_entry(
            db,
            snapshot,
            delta=-quantity,
            transaction_type=TransactionType.ISSUE,
            occurred_at=issued_at or _now(),
            staff_id=staff_id,
            acting_user_id=acting_user_id,
            reason=clean_notes or f'Manual issuance: {reference}',
            external_reference=reference,
            issue_category=category,
        )

    insufficient = previous < quantity
    if insufficient:
        log.warning('component %s issued %s with only %s on hand', component_id, quantity, previous)
    log.info('issued %s of component %s against %s', quantity, component_id, reference)
    return IssueResult(
        transaction_id=entry.transaction_id,
        component_id=component_id,
        delta=-quantity,
        previous_quantity=previous,
        quantity_on_hand=snapshot.quantity_on_hand,
        insufficient_stock=insufficient,
    )


def issue_for_order(
    db: Session,
    *,
    sales_order_id: int,
    component_id: int,
    quantity: int,
    purchase_order_id: int | None = None,
    notes: str | None = None,
    staff_id: int | None = None,
    acting_user_id: str | None = None,
    issued_at: datetime | None = None,
) -> IssueResult:
    quantity = _positive_quantity(quantity)
    order_exists = db.execute(
        select(SalesOrder.order_id).where(SalesOrder.order_id == sales_order_id)
    ).scalar_one_or_none()
    if order_exists is None:
        raise NotFoundError('Sales order', sales_order_id)
    _require_component(db, component_id)

    with atomic_unit(db, component_id=component_id, attempted_delta=-quantity):
        snapshot = lock_snapshot(db, component_id)
        if snapshot is None:
            snapshot = _new_snapshot(db, component_id)
        previous = snapshot.quantity_on_hand
        entry = _append_entry(
            db,
            snapshot,
            delta=-quantity,
            transaction_type=TransactionType.SALE,
            occurred_at=issued_at or _now(),
            sales_order_id=sales_order_id,
            purchase_order_id=purchase_order_id,
            staff_id=staff_id,
            acting_user_id=acting_user_id,
            reason=(notes or '').strip() or None,
        )

    log.info('issued %s of component %s to order %s', quantity, component_id, sales_order_id)
    return IssueResult(
        transaction_id=entry.transaction_id,
        component_id=component_id,
        delta=-quantity,
        previous_quantity=previous,
        quantity_on_hand=snapshot.quantity_on_hand,
        insufficient_stock=previous < quantity,
    )


def reversed_quantity(db: Session, transaction_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).where(
            InventoryTransaction.reverses_transaction_id == transaction_id
        )
    ).scalar_one()
    return abs(int(total))


def reverse(
    db: Session,
    *,
    transaction_id: int,
    quantity_to_reverse: int,
    reason: str | None = None,
    acting_user_id: str | None = None,
    occurred_at: datetime | None = None,
) -> ReversalResult:
    quantity = _positive_quantity(quantity_to_reverse, field='quantity_to_reverse')
    original = db.get(InventoryTransaction, transaction_id)
    if original is None:
        raise NotFoundError('Transaction', transaction_id)
    if original.reverses_transaction_id is not None:
        raise ValidationError('A reversal entry cannot itself be reversed', field='transaction_id')

    delta = quantity if original.quantity < 0 else -quantity
    with atomic_unit(db, component_id=original.component_id, attempted_delta=delta):
        snapshot = lock_snapshot(db, original.component_id)
        if snapshot is None:
            raise MissingInventory([original.component_id])
        remaining = abs(original.quantity) - reversed_quantity(db, transaction_id)
        if quantity > remaining:
            raise ValidationError(
                f'Cannot reverse {quantity} units: only {remaining} remain reversible on transaction {transaction_id}',
                field='quantity_to_reverse',
            )
        previous = snapshot.quantity_on_hand
        entry = _append_entry(
            db,
            snapshot,
            delta=delta,
            transaction_type=TransactionType.RETURN if original.quantity < 0 else TransactionType.ADJUSTMENT,
            occurred_at=occurred_at or _now(),
            sales_order_id=original.sales_order_id,
            purchase_order_id=original.purchase_order_id,
            staff_id=original.staff_id,
            acting_user_id=acting_user_id,
            reason=(reason or '').strip() or f'Reversal of transaction {transaction_id}',
            external_reference=original.external_reference,
            issue_category=original.issue_category,
            reverses_transaction_id=original.transaction_id,
        )

    log.info('reversed %s units of transaction %s (component %s)', quantity, transaction_id, original.component_id)
    return ReversalResult(
        transaction_id=entry.transaction_id,
        component_id=original.component_id,
        delta=delta,
        previous_quantity=previous,
        quantity_on_hand=snapshot.quantity_on_hand,
        reversed_transaction_id=original.transaction_id,
        remaining_reversible=remaining - quantity,
    )


def issue_batch(
    db: Session,
    *,
    items: list[BatchItem],
    external_reference: str | None,
    issue_category: str | None = None,
    staff_id: int | None = None,
    notes: str | None = None,
    acting_user_id: str | None = None,
    issued_at: datetime | None = None,
) -> BatchIssueResult:
    if not items:
        raise ValidationError('At least one component is required', field='items')
    _require_reference(external_reference)
    coerce_issue_category(issue_category)
    # One timestamp for the whole batch keeps it in a single issuance group.
    issued_at = issued_at or _now()

    result = BatchIssueResult()
    for item in items:
        try:
            issued = manual_issue(
                db,
                component_id=item.component_id,
                quantity=item.quantity,
                external_reference=external_reference,
                issue_category=issue_category,
                staff_id=staff_id,
                notes=notes,
                acting_user_id=acting_user_id,
                issued_at=issued_at,
            )
        except StockLedgerError as exc:
            result.failed.append(BatchItemFailure(component_id=item.component_id, quantity=item.quantity, error=exc))
            continue
        result.succeeded.append(issued)

    if result.failed:
        log.warning(
            'batch issue against %s: %s succeeded, %s failed',
            external_reference,
            len(result.succeeded),
            len(result.failed),
        )
    return result
