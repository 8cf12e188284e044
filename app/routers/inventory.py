from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import get_acting_user_id, get_client_ip, http_error
from app.errors import NotFoundError, StockLedgerError
from app.schemas import (
    AdjustmentRequest,
    ManualIssueRequest,
    OrderIssueRequest,
    ReversalRequest,
    SnapshotBulkCreate,
    SnapshotCreate,
)
from app.services.audit_service import list_audit_entries, log_audit
from app.services.ledger_service import build_history, check_consistency, list_issuance_groups
from app.services.mutation_service import (
    ADJUSTMENT_REASONS,
    BatchItem,
    IssueCategory,
    adjust,
    create_missing_snapshots,
    create_snapshot,
    issue_batch,
    issue_for_order,
    reverse,
)
from app.services.snapshot_service import get_snapshot, list_low_stock

router = APIRouter(prefix='/inventory', tags=['inventory'])


def _snapshot_payload(snapshot) -> dict:
    return {
        'inventory_id': snapshot.inventory_id,
        'component_id': snapshot.component_id,
        'quantity_on_hand': snapshot.quantity_on_hand,
        'reorder_level': snapshot.reorder_level,
        'location': snapshot.location,
    }


@router.get('/reasons')
def adjustment_reasons():
    return {
        'adjustment_reasons': ADJUSTMENT_REASONS,
        'issue_categories': [category.value for category in IssueCategory],
    }


@router.get('/low-stock')
def low_stock(limit: int = 100, db: Session = Depends(get_db)):
    return {'items': list_low_stock(db, limit=max(1, min(limit, 500)))}


@router.get('/audit')
def audit_entries(
    action: str | None = None,
    acting_user: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    entries = list_audit_entries(db, action=action, acting_user_id=acting_user, limit=max(1, min(limit, 500)))
    return {
        'entries': [
            {
                'id': entry.id,
                'action': entry.action,
                'acting_user_id': entry.acting_user_id,
                'ip': entry.ip,
                'metadata': entry.meta,
                'created_at': entry.created_at,
            }
            for entry in entries
        ]
    }


@router.get('/issuances')
def issuance_groups(since: str | None = None, db: Session = Depends(get_db)):
    since_at = None
    if since:
        try:
            since_at = datetime.fromisoformat(since)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail='Invalid since filter') from exc
    return {'groups': list_issuance_groups(db, since=since_at)}


@router.post('/issuances')
def issue_manual(
    payload: ManualIssueRequest,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        result = issue_batch(
            db,
            items=[BatchItem(component_id=line.component_id, quantity=line.quantity) for line in payload.items],
            external_reference=payload.external_reference,
            issue_category=payload.issue_category,
            staff_id=payload.staff_id,
            notes=payload.notes,
            issued_at=payload.issued_at,
            acting_user_id=acting_user_id,
        )
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='STOCK_ISSUED',
        ip=get_client_ip(request),
        metadata={
            'external_reference': payload.external_reference,
            'transaction_ids': [row.transaction_id for row in result.succeeded],
            'failed_component_ids': [row.component_id for row in result.failed],
        },
    )
    # Successful items stay recorded even when others failed.
    db.commit()
    try:
        result.raise_for_failures()
    except StockLedgerError as exc:
        raise http_error(exc) from exc
    return {
        'issued': [
            {
                'transaction_id': row.transaction_id,
                'component_id': row.component_id,
                'quantity': -row.delta,
                'quantity_on_hand': row.quantity_on_hand,
                'insufficient_stock': row.insufficient_stock,
            }
            for row in result.succeeded
        ]
    }


@router.post('/orders/{sales_order_id}/issuances')
def issue_to_order(
    sales_order_id: int,
    payload: OrderIssueRequest,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        result = issue_for_order(
            db,
            sales_order_id=sales_order_id,
            component_id=payload.component_id,
            quantity=payload.quantity,
            purchase_order_id=payload.purchase_order_id,
            staff_id=payload.staff_id,
            notes=payload.notes,
            issued_at=payload.issued_at,
            acting_user_id=acting_user_id,
        )
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='STOCK_ISSUED_TO_ORDER',
        ip=get_client_ip(request),
        metadata={'sales_order_id': sales_order_id, 'transaction_id': result.transaction_id},
    )
    db.commit()
    return {
        'transaction_id': result.transaction_id,
        'quantity_on_hand': result.quantity_on_hand,
        'insufficient_stock': result.insufficient_stock,
    }


@router.post('/transactions/{transaction_id}/reversals')
def reverse_transaction(
    transaction_id: int,
    payload: ReversalRequest,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        result = reverse(
            db,
            transaction_id=transaction_id,
            quantity_to_reverse=payload.quantity_to_reverse,
            reason=payload.reason,
            acting_user_id=acting_user_id,
        )
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='STOCK_REVERSED',
        ip=get_client_ip(request),
        metadata={'reversed_transaction_id': transaction_id, 'transaction_id': result.transaction_id},
    )
    db.commit()
    return {
        'transaction_id': result.transaction_id,
        'reversed_transaction_id': result.reversed_transaction_id,
        'delta': result.delta,
        'quantity_on_hand': result.quantity_on_hand,
        'remaining_reversible': result.remaining_reversible,
    }


@router.post('/snapshots')
def bulk_create_snapshots(
    payload: SnapshotBulkCreate,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        created = create_missing_snapshots(db, component_ids=payload.component_ids, acting_user_id=acting_user_id)
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='INVENTORY_RECORDS_CREATED',
        ip=get_client_ip(request),
        metadata={'component_ids': created},
    )
    db.commit()
    return {'created_component_ids': created}


@router.get('/components/{component_id}')
def read_snapshot(component_id: int, db: Session = Depends(get_db)):
    snapshot = get_snapshot(db, component_id)
    if snapshot is None:
        raise http_error(NotFoundError('Inventory record for component', component_id))
    report = check_consistency(db, component_id)
    payload = _snapshot_payload(snapshot)
    payload['ledger_total'] = report.ledger_total
    payload['consistent'] = report.consistent
    return payload


@router.post('/components/{component_id}')
def create_component_snapshot(
    component_id: int,
    payload: SnapshotCreate,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        result = create_snapshot(
            db,
            component_id=component_id,
            initial_quantity=payload.initial_quantity,
            reorder_level=payload.reorder_level,
            location=payload.location,
            acting_user_id=acting_user_id,
        )
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    if result.created:
        log_audit(
            db,
            acting_user_id=acting_user_id,
            action='INVENTORY_RECORD_CREATED',
            ip=get_client_ip(request),
            metadata={'component_id': component_id, 'initial_quantity': payload.initial_quantity},
        )
    db.commit()
    body = _snapshot_payload(result.snapshot)
    body['created'] = result.created
    body['opening_transaction_id'] = result.opening_transaction_id
    return body


@router.get('/components/{component_id}/transactions')
def component_history(component_id: int, limit: int | None = None, db: Session = Depends(get_db)):
    try:
        return build_history(db, component_id=component_id, limit=limit)
    except StockLedgerError as exc:
        raise http_error(exc) from exc


@router.post('/components/{component_id}/adjustments')
def adjust_component(
    component_id: int,
    payload: AdjustmentRequest,
    request: Request,
    db: Session = Depends(get_db),
    acting_user_id: str | None = Depends(get_acting_user_id),
):
    try:
        result = adjust(
            db,
            component_id=component_id,
            mode=payload.mode,
            magnitude=payload.magnitude,
            reason_code=payload.reason_code,
            notes=payload.notes,
            occurred_at=payload.occurred_at,
            acting_user_id=acting_user_id,
        )
    except StockLedgerError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        acting_user_id=acting_user_id,
        action='STOCK_ADJUSTED',
        ip=get_client_ip(request),
        metadata={
            'component_id': component_id,
            'transaction_id': result.transaction_id,
            'delta': result.delta,
            'is_large': result.is_large,
        },
    )
    db.commit()
    return {
        'transaction_id': result.transaction_id,
        'delta': result.delta,
        'previous_quantity': result.previous_quantity,
        'quantity_on_hand': result.quantity_on_hand,
        'is_large': result.is_large,
    }
