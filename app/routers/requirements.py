from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import http_error
from app.errors import StockLedgerError
from app.services.requirement_service import (
    component_requirements,
    list_components_on_order,
    on_order_breakdown,
    order_component_status,
)

router = APIRouter(prefix='/requirements', tags=['requirements'])


@router.get('/on-order')
def components_on_order(db: Session = Depends(get_db)):
    return {'components': list_components_on_order(db)}


@router.get('/components/{component_id}')
def requirements_for_component(component_id: int, db: Session = Depends(get_db)):
    try:
        summary = component_requirements(db, component_id)
    except StockLedgerError as exc:
        raise http_error(exc) from exc
    summary['on_order'] = on_order_breakdown(db, component_id)
    return summary


@router.get('/orders/{order_id}')
def requirements_for_order(order_id: int, db: Session = Depends(get_db)):
    try:
        return {'order_id': order_id, 'components': order_component_status(db, order_id)}
    except StockLedgerError as exc:
        raise http_error(exc) from exc
