from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.errors import (
    BatchPartialFailure,
    InvalidTransition,
    MissingInventory,
    NotFoundError,
    StockLedgerError,
    ValidationError,
)
from app.logging_config import get_logger
from app.models import Component, PendingIssuanceStatus, PendingStockIssuance, PendingStockIssuanceItem
from app.services.mutation_service import coerce_issue_category, manual_issue
from app.services.snapshot_service import components_without_snapshot

log = get_logger('picking_lists')


@dataclass(frozen=True)
class PickingItemInput:
    component_id: int
    quantity: int


@dataclass
class CompletionResult:
    pending: PendingStockIssuance
    issued: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.pending.status == PendingIssuanceStatus.ISSUED

    def raise_for_failures(self) -> None:
        if self.failed:
            already_issued = [
                {'item_id': item.item_id, 'component_id': item.component_id, 'transaction_id': item.transaction_id}
                for item in self.pending.items
                if item.transaction_id is not None
            ]
            raise BatchPartialFailure(succeeded=already_issued, failed=self.failed, pending_id=self.pending.pending_id)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _load_pending(db: Session, pending_id: int, *, for_update: bool = False) -> PendingStockIssuance:
    query = (
        select(PendingStockIssuance)
        .where(PendingStockIssuance.pending_id == pending_id)
        .options(selectinload(PendingStockIssuance.items))
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    pending = db.execute(query).scalar_one_or_none()
    if pending is None:
        raise NotFoundError('Picking list', pending_id)
    return pending


def _require_pending(pending: PendingStockIssuance, attempted: str) -> None:
    if pending.status != PendingIssuanceStatus.PENDING:
        raise InvalidTransition(
            pending_id=pending.pending_id,
            current_status=pending.status.value,
            attempted=attempted,
        )


def create_pending(
    db: Session,
    *,
    external_reference: str | None,
    items: list[PickingItemInput],
    issue_category: str | None = None,
    staff_id: int | None = None,
    notes: str | None = None,
    acting_user_id: str | None = None,
) -> PendingStockIssuance:
    reference = (external_reference or '').strip()
    if not reference:
        raise ValidationError('External reference is required', field='external_reference')
    if not items:
        raise ValidationError('At least one component is required', field='items')
    category = coerce_issue_category(issue_category)
    for item in items:
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise ValidationError(f'Quantity for component {item.component_id} must be a positive whole number', field='items')

    component_ids = {item.component_id for item in items}
    known = set(
        db.execute(select(Component.component_id).where(Component.component_id.in_(list(component_ids)))).scalars().all()
    )
    unknown = sorted(component_ids - known)
    if unknown:
        raise NotFoundError('Component', unknown[0])

    pending = PendingStockIssuance(
        external_reference=reference,
        issue_category=category,
        staff_id=staff_id,
        notes=(notes or '').strip() or None,
        status=PendingIssuanceStatus.PENDING,
        created_at=_now(),
        created_by=acting_user_id,
    )
    pending.items = [
        PendingStockIssuanceItem(position=position, component_id=item.component_id, quantity=item.quantity)
        for position, item in enumerate(items, start=1)
    ]
    db.add(pending)
    db.flush()
    log.info('picking list %s created for %s with %s items', pending.pending_id, reference, len(items))
    return pending


def get_pending(db: Session, pending_id: int) -> PendingStockIssuance:
    return _load_pending(db, pending_id)


def list_pending(
    db: Session,
    *,
    status: PendingIssuanceStatus | None = None,
    limit: int = 100,
) -> list[PendingStockIssuance]:
    query = (
        select(PendingStockIssuance)
        .options(selectinload(PendingStockIssuance.items))
        .order_by(PendingStockIssuance.created_at.desc(), PendingStockIssuance.pending_id.desc())
        .limit(limit)
    )
    if status is not None:
        query = query.where(PendingStockIssuance.status == status)
    return db.execute(query).scalars().all()


def complete_pending(db: Session, *, pending_id: int, acting_user_id: str | None = None) -> CompletionResult:
    pending = _load_pending(db, pending_id, for_update=True)
    _require_pending(pending, 'complete')

    outstanding = [item for item in pending.items if item.transaction_id is None]
    missing = components_without_snapshot(db, [item.component_id for item in outstanding])
    if missing:
        log.info('picking list %s blocked by missing inventory for %s', pending_id, missing)
        raise MissingInventory(missing)

    result = CompletionResult(pending=pending)
    for item in outstanding:
        try:
            issued = manual_issue(
                db,
                component_id=item.component_id,
                quantity=item.quantity,
                external_reference=pending.external_reference,
                issue_category=pending.issue_category,
                staff_id=pending.staff_id,
                notes=pending.notes,
                acting_user_id=acting_user_id,
            )
        except StockLedgerError as exc:
            result.failed.append(
                {
                    'item_id': item.item_id,
                    'component_id': item.component_id,
                    'quantity': item.quantity,
                    'code': exc.code,
                    'message': exc.message,
                }
            )
            continue
        item.transaction_id = issued.transaction_id
        result.issued.append(
            {
                'item_id': item.item_id,
                'component_id': item.component_id,
                'quantity': item.quantity,
                'transaction_id': issued.transaction_id,
                'quantity_on_hand': issued.quantity_on_hand,
            }
        )

    if result.failed:
        log.warning(
            'picking list %s left pending: %s issued, %s failed',
            pending_id,
            len(result.issued),
            len(result.failed),
        )
    else:
        pending.status = PendingIssuanceStatus.ISSUED
        pending.issued_at = _now()
        pending.issued_by = acting_user_id
        log.info('picking list %s issued (%s items)', pending_id, len(result.issued))
    db.flush()
    return result


def cancel_pending(db: Session, *, pending_id: int, acting_user_id: str | None = None) -> PendingStockIssuance:
    pending = _load_pending(db, pending_id, for_update=True)
    _require_pending(pending, 'cancel')
    if any(item.transaction_id is not None for item in pending.items):
        raise InvalidTransition(
            pending_id=pending_id,
            current_status=pending.status.value,
            attempted='cancel',
            reason=f'Picking list {pending_id} has items already issued; complete it instead',
        )
    pending.status = PendingIssuanceStatus.CANCELLED
    pending.cancelled_at = _now()
    db.flush()
    log.info('picking list %s cancelled by %s', pending_id, acting_user_id or 'unknown user')
    return pending


def serialize_pending(pending: PendingStockIssuance) -> dict:
    return {
        'pending_id': pending.pending_id,
        'external_reference': pending.external_reference,
        'issue_category': pending.issue_category,
        'staff_id': pending.staff_id,
        'notes': pending.notes,
        'status': pending.status.value,
        'created_at': pending.created_at,
        'created_by': pending.created_by,
        'issued_at': pending.issued_at,
        'issued_by': pending.issued_by,
        'cancelled_at': pending.cancelled_at,
        'items': [
            {
                'item_id': item.item_id,
                'position': item.position,
                'component_id': item.component_id,
                'quantity': item.quantity,
                'transaction_id': item.transaction_id,
            }
            for item in pending.items
        ],
    }
