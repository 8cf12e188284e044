from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import get_acting_user_id, get_client_ip, http_error
from app.errors import StockLedgerError
from app.models import PendingIssuanceStatus
from app.schemas import PickingListCreate
from app.services.audit_service import log_audit
from app.services.picking_list_service import (
    PickingItemInput,
    cancel_pending,
    complete_pending,
    create_pending,
    get_pending,
    list_pending,
    serialize_pending,
)

router = APIRouter(prefix='/picking-lists', tags=['picking-lists'])


@router.post('')
def create_picking_list(
    payload: PickingListCreate,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        pending = create_pending(
            db,
            external_reference=payload.external_reference,
            items=[PickingItemInput(component_id=line.component_id, quantity=line.quantity) for line in payload.items],
            issue_category=payload.issue_category,
            staff_id=payload.staff_id,
            notes=payload.notes,
            acting_user_id=acting_user_id,
        )
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='PICKING_LIST_CREATED',
        ip=get_client_ip(request),
        metadata={'pending_id': pending.pending_id, 'external_reference': pending.external_reference},
    )
    db.commit()
    return serialize_pending(pending)


@router.get('')
def picking_lists(status: str | None = None, limit: int = 100, db: Session = Depends(get_db)):
    status_filter = None
    if status:
        try:
            status_filter = PendingIssuanceStatus(status.upper())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail='Invalid status filter') from exc
    rows = list_pending(db, status=status_filter, limit=max(1, min(limit, 500)))
    return {'picking_lists': [serialize_pending(row) for row in rows]}


@router.get('/{pending_id}')
def picking_list_detail(pending_id: int, db: Session = Depends(get_db)):
    try:
        return serialize_pending(get_pending(db, pending_id))
    except StockLedgerError as exc:
        raise http_error(exc) from exc


@router.post('/{pending_id}/complete')
def complete_picking_list(
    pending_id: int,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        result = complete_pending(db, pending_id=pending_id, acting_user_id=acting_user_id)
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='PICKING_LIST_COMPLETED' if result.completed else 'PICKING_LIST_PARTIALLY_ISSUED',
        ip=get_client_ip(request),
        metadata={
            'pending_id': pending_id,
            'issued_item_ids': [row['item_id'] for row in result.issued],
            'failed_item_ids': [row['item_id'] for row in result.failed],
        },
    )
    db.commit()
    try:
        result.raise_for_failures()
    except StockLedgerError as exc:
        raise http_error(exc) from exc
    body = serialize_pending(result.pending)
    body['issued'] = result.issued
    return body


@router.post('/{pending_id}/cancel')
def cancel_picking_list(
    pending_id: int,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        pending = cancel_pending(db, pending_id=pending_id, acting_user_id=acting_user_id)
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='PICKING_LIST_CANCELLED',
        ip=get_client_ip(request),
        metadata={'pending_id': pending_id},
    )
    db.commit()
    return serialize_pending(pending)
