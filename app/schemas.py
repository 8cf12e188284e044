from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.services.mutation_service import AdjustmentMode


class SnapshotCreate(BaseModel):
    initial_quantity: int = 0
    reorder_level: int = Field(default=0, ge=0)
    location: str | None = None


class SnapshotBulkCreate(BaseModel):
    component_ids: list[int] = Field(min_length=1)


class AdjustmentRequest(BaseModel):
    mode: AdjustmentMode
    magnitude: int
    reason_code: str
    notes: str | None = None
    occurred_at: datetime | None = None


class IssueLine(BaseModel):
    component_id: int
    quantity: int


class ManualIssueRequest(BaseModel):
    external_reference: str
    issue_category: str | None = None
    staff_id: int | None = None
    notes: str | None = None
    issued_at: datetime | None = None
    items: list[IssueLine] = Field(min_length=1)


class OrderIssueRequest(BaseModel):
    component_id: int
    quantity: int
    purchase_order_id: int | None = None
    staff_id: int | None = None
    notes: str | None = None
    issued_at: datetime | None = None


class ReversalRequest(BaseModel):
    quantity_to_reverse: int
    reason: str | None = None


class PickingListCreate(BaseModel):
    external_reference: str
    issue_category: str | None = None
    staff_id: int | None = None
    notes: str | None = None
    items: list[IssueLine] = Field(min_length=1)
