"""On-order and required-for-production aggregates.

Read-only: both numbers are recomputed from purchasing and sales/BOM rows on
every call.  BOM expansion is a single level; sub-assemblies are not
exploded.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import (
    CLOSED_SALES_ORDER_STATUSES,
    OPEN_SUPPLIER_ORDER_STATUSES,
    BillOfMaterialsLine,
    Component,
    PurchaseOrder,
    SalesOrder,
    SalesOrderLine,
    SupplierComponent,
    SupplierOrder,
)
from app.services.snapshot_service import quantities_on_hand


@dataclass(frozen=True)
class SupplierOrderLine:
    order_id: int
    purchase_order_id: int | None
    q_number: str | None
    component_id: int
    order_quantity: int
    total_received: int


@dataclass(frozen=True)
class RequirementLine:
    order_id: int
    order_detail_id: int
    product_id: int
    component_id: int
    order_quantity: int
    quantity_required: Decimal


def outstanding_quantity(ordered: int, received: int | None) -> int:
    return max(0, int(ordered or 0) - int(received or 0))


def sum_on_order(lines: Iterable[SupplierOrderLine]) -> int:
    return sum(outstanding_quantity(line.order_quantity, line.total_received) for line in lines)


def sum_required(lines: Iterable[RequirementLine]) -> Decimal:
    return sum(
        (Decimal(line.quantity_required) * Decimal(line.order_quantity) for line in lines),
        Decimal('0'),
    )


def _open_supplier_order_lines(db: Session, component_ids: list[int] | None = None) -> list[SupplierOrderLine]:
    query = (
        select(
            SupplierOrder.order_id,
            SupplierOrder.purchase_order_id,
            PurchaseOrder.q_number,
            SupplierComponent.component_id,
            SupplierOrder.order_quantity,
            SupplierOrder.total_received,
        )
        .join(SupplierComponent, SupplierComponent.supplier_component_id == SupplierOrder.supplier_component_id)
        .outerjoin(PurchaseOrder, PurchaseOrder.purchase_order_id == SupplierOrder.purchase_order_id)
        .where(SupplierOrder.status.in_(OPEN_SUPPLIER_ORDER_STATUSES))
        .order_by(SupplierOrder.order_id.asc())
    )
    if component_ids is not None:
        query = query.where(SupplierComponent.component_id.in_(component_ids))
    return [
        SupplierOrderLine(
            order_id=int(row.order_id),
            purchase_order_id=row.purchase_order_id,
            q_number=row.q_number,
            component_id=int(row.component_id),
            order_quantity=int(row.order_quantity),
            total_received=int(row.total_received or 0),
        )
        for row in db.execute(query).all()
    ]


def _active_order_requirement_lines(
    db: Session,
    component_ids: list[int] | None = None,
    *,
    order_id: int | None = None,
) -> list[RequirementLine]:
    query = (
        select(
            SalesOrderLine.order_id,
            SalesOrderLine.order_detail_id,
            SalesOrderLine.product_id,
            BillOfMaterialsLine.component_id,
            SalesOrderLine.quantity,
            BillOfMaterialsLine.quantity_required,
        )
        .join(SalesOrder, SalesOrder.order_id == SalesOrderLine.order_id)
        .join(BillOfMaterialsLine, BillOfMaterialsLine.product_id == SalesOrderLine.product_id)
        .order_by(SalesOrderLine.order_id.asc(), SalesOrderLine.order_detail_id.asc())
    )
    if order_id is not None:
        query = query.where(SalesOrderLine.order_id == order_id)
    else:
        query = query.where(SalesOrder.status.not_in(CLOSED_SALES_ORDER_STATUSES))
    if component_ids is not None:
        query = query.where(BillOfMaterialsLine.component_id.in_(component_ids))
    return [
        RequirementLine(
            order_id=int(row.order_id),
            order_detail_id=int(row.order_detail_id),
            product_id=int(row.product_id),
            component_id=int(row.component_id),
            order_quantity=int(row.quantity),
            quantity_required=Decimal(row.quantity_required),
        )
        for row in db.execute(query).all()
    ]


def on_order_quantity(db: Session, component_id: int) -> int:
    return sum_on_order(_open_supplier_order_lines(db, [component_id]))


def required_for_production(db: Session, component_id: int) -> Decimal | None:
    total = sum_required(_active_order_requirement_lines(db, [component_id]))
    # Zero is reported as "nothing required" rather than a number.
    if total == 0:
        return None
    return total


def on_order_breakdown(db: Session, component_id: int) -> list[dict]:
    by_po: dict[int | None, dict] = {}
    for line in _open_supplier_order_lines(db, [component_id]):
        pending = outstanding_quantity(line.order_quantity, line.total_received)
        if pending <= 0:
            continue
        row = by_po.setdefault(
            line.purchase_order_id,
            {'purchase_order_id': line.purchase_order_id, 'q_number': line.q_number or 'N/A', 'pending_quantity': 0},
        )
        row['pending_quantity'] += pending
    return list(by_po.values())


def list_components_on_order(db: Session) -> list[dict]:
    lines = _open_supplier_order_lines(db)
    by_component: dict[int, list[SupplierOrderLine]] = {}
    for line in lines:
        if outstanding_quantity(line.order_quantity, line.total_received) > 0:
            by_component.setdefault(line.component_id, []).append(line)
    if not by_component:
        return []

    codes = dict(
        db.execute(
            select(Component.component_id, Component.internal_code).where(Component.component_id.in_(list(by_component)))
        ).all()
    )
    stock = quantities_on_hand(db, list(by_component))
    rows = []
    for component_id, component_lines in by_component.items():
        orders: dict[int | None, dict] = {}
        for line in component_lines:
            entry = orders.setdefault(
                line.purchase_order_id,
                {'purchase_order_id': line.purchase_order_id, 'q_number': line.q_number or 'N/A', 'pending_quantity': 0},
            )
            entry['pending_quantity'] += outstanding_quantity(line.order_quantity, line.total_received)
        rows.append(
            {
                'component_id': component_id,
                'internal_code': codes.get(component_id),
                'quantity_on_hand': stock.get(component_id, 0),
                'on_order_quantity': sum_on_order(component_lines),
                'orders': list(orders.values()),
            }
        )
    rows.sort(key=lambda row: (row['internal_code'] or '', row['component_id']))
    return rows


def order_component_status(db: Session, order_id: int) -> list[dict]:
    exists = db.execute(select(SalesOrder.order_id).where(SalesOrder.order_id == order_id)).scalar_one_or_none()
    if exists is None:
        raise NotFoundError('Sales order', order_id)

    required_by_component: dict[int, list[RequirementLine]] = {}
    for line in _active_order_requirement_lines(db, order_id=order_id):
        required_by_component.setdefault(line.component_id, []).append(line)
    if not required_by_component:
        return []

    component_ids = list(required_by_component)
    codes = dict(
        db.execute(
            select(Component.component_id, Component.internal_code).where(Component.component_id.in_(component_ids))
        ).all()
    )
    stock = quantities_on_hand(db, component_ids)
    on_order_lines = _open_supplier_order_lines(db, component_ids)

    rows = []
    for component_id, lines in required_by_component.items():
        order_required = sum_required(lines)
        in_stock = stock.get(component_id, 0)
        on_order = sum_on_order(line for line in on_order_lines if line.component_id == component_id)
        rows.append(
            {
                'component_id': component_id,
                'internal_code': codes.get(component_id),
                'order_required': order_required,
                'in_stock': in_stock,
                'on_order': on_order,
                'apparent_shortfall': max(order_required - in_stock, Decimal('0')),
                'real_shortfall': max(order_required - in_stock - on_order, Decimal('0')),
            }
        )
    rows.sort(key=lambda row: (row['internal_code'] or '', row['component_id']))
    return rows


def component_requirements(db: Session, component_id: int) -> dict:
    exists = db.execute(
        select(Component.component_id).where(Component.component_id == component_id)
    ).scalar_one_or_none()
    if exists is None:
        raise NotFoundError('Component', component_id)
    return {
        'component_id': component_id,
        'quantity_on_hand': quantities_on_hand(db, [component_id]).get(component_id, 0),
        'on_order_quantity': on_order_quantity(db, component_id),
        'required_for_production': required_for_production(db, component_id),
    }
