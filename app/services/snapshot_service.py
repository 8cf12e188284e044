from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Component, InventorySnapshot


def get_snapshot(db: Session, component_id: int) -> InventorySnapshot | None:
    return db.execute(
        select(InventorySnapshot).where(InventorySnapshot.component_id == component_id)
    ).scalar_one_or_none()


def lock_snapshot(db: Session, component_id: int) -> InventorySnapshot | None:
    # Row lock keyed by component; held until the enclosing transaction ends.
    return db.execute(
        select(InventorySnapshot)
        .where(InventorySnapshot.component_id == component_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def components_without_snapshot(db: Session, component_ids: list[int]) -> list[int]:
    if not component_ids:
        return []
    tracked = set(
        db.execute(
            select(InventorySnapshot.component_id).where(InventorySnapshot.component_id.in_(list(set(component_ids))))
        ).scalars().all()
    )
    return [component_id for component_id in dict.fromkeys(component_ids) if component_id not in tracked]


def quantities_on_hand(db: Session, component_ids: list[int]) -> dict[int, int]:
    if not component_ids:
        return {}
    rows = db.execute(
        select(InventorySnapshot.component_id, InventorySnapshot.quantity_on_hand).where(
            InventorySnapshot.component_id.in_(list(set(component_ids)))
        )
    ).all()
    return {int(row.component_id): int(row.quantity_on_hand) for row in rows}


def list_low_stock(db: Session, *, limit: int = 100) -> list[dict]:
    rows = db.execute(
        select(InventorySnapshot, Component.internal_code, Component.description)
        .join(Component, Component.component_id == InventorySnapshot.component_id)
        .where(
            InventorySnapshot.reorder_level > 0,
            InventorySnapshot.quantity_on_hand <= InventorySnapshot.reorder_level,
        )
        .order_by(InventorySnapshot.quantity_on_hand.asc(), Component.internal_code.asc())
        .limit(limit)
    ).all()
    return [
        {
            'component_id': snapshot.component_id,
            'internal_code': internal_code,
            'description': description,
            'quantity_on_hand': snapshot.quantity_on_hand,
            'reorder_level': snapshot.reorder_level,
            'location': snapshot.location,
        }
        for snapshot, internal_code, description in rows
    ]
