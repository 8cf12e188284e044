from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class TransactionType(str, Enum):
    PURCHASE = 'PURCHASE'
    ISSUE = 'ISSUE'
    RETURN = 'RETURN'
    ADJUSTMENT = 'ADJUSTMENT'
    SALE = 'SALE'


class PendingIssuanceStatus(str, Enum):
    PENDING = 'PENDING'
    ISSUED = 'ISSUED'
    CANCELLED = 'CANCELLED'


class SupplierOrderStatus(str, Enum):
    DRAFT = 'Draft'
    PENDING_APPROVAL = 'Pending Approval'
    APPROVED = 'Approved'
    OPEN = 'Open'
    IN_PROGRESS = 'In Progress'
    PARTIALLY_RECEIVED = 'Partially Received'
    FULLY_RECEIVED = 'Fully Received'
    CANCELLED = 'Cancelled'


OPEN_SUPPLIER_ORDER_STATUSES = (
    SupplierOrderStatus.OPEN,
    SupplierOrderStatus.IN_PROGRESS,
    SupplierOrderStatus.APPROVED,
    SupplierOrderStatus.PARTIALLY_RECEIVED,
    SupplierOrderStatus.PENDING_APPROVAL,
)


class SalesOrderStatus(str, Enum):
    NEW = 'New'
    IN_PROGRESS = 'In Progress'
    ON_HOLD = 'On Hold'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'


CLOSED_SALES_ORDER_STATUSES = (SalesOrderStatus.COMPLETED, SalesOrderStatus.CANCELLED)


class Component(Base):
    __tablename__ = 'components'

    component_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    internal_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventorySnapshot(Base):
    """Current quantity on hand; written only by the mutation service."""

    __tablename__ = 'inventory'

    inventory_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    component_id: Mapped[int] = mapped_column(Integer, ForeignKey('components.component_id'), nullable=False, unique=True)
    # Negative is a valid state (back-ordered or untracked stock).
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    location: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryTransaction(Base):
    """Append-only ledger row. Corrections are new rows, never edits."""

    __tablename__ = 'inventory_transactions'
    __table_args__ = (
        CheckConstraint('quantity <> 0', name='inventory_transactions_non_zero_ck'),
        Index('ix_inventory_transactions_component_date', 'component_id', 'transaction_date'),
        Index('ix_inventory_transactions_effective', 'effective_date'),
        Index('ix_inventory_transactions_reverses', 'reverses_transaction_id'),
    )

    transaction_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    component_id: Mapped[int] = mapped_column(Integer, ForeignKey('components.component_id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name='inventory_transaction_type'), nullable=False
    )
    # Insert time; write order. ``effective_date`` is when the movement happened.
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sales_order_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('sales_orders.order_id'))
    purchase_order_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('purchase_orders.purchase_order_id'))
    staff_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('staff.staff_id'))
    acting_user_id: Mapped[str | None] = mapped_column(Text)
    reason: Mapped[str | None] = mapped_column(Text)
    external_reference: Mapped[str | None] = mapped_column(Text)
    issue_category: Mapped[str | None] = mapped_column(Text)
    reverses_transaction_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey('inventory_transactions.transaction_id')
    )


class PendingStockIssuance(Base):
    __tablename__ = 'pending_stock_issuances'

    pending_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_reference: Mapped[str] = mapped_column(Text, nullable=False)
    issue_category: Mapped[str] = mapped_column(Text, nullable=False, default='production', server_default='production')
    staff_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('staff.staff_id'))
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[PendingIssuanceStatus] = mapped_column(
        SQLEnum(PendingIssuanceStatus, name='pending_issuance_status'),
        nullable=False,
        default=PendingIssuanceStatus.PENDING,
        server_default='PENDING',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_by: Mapped[str | None] = mapped_column(Text)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    issued_by: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list[PendingStockIssuanceItem]] = relationship(
        back_populates='pending',
        order_by='PendingStockIssuanceItem.position',
        cascade='all, delete-orphan',
    )


class PendingStockIssuanceItem(Base):
    __tablename__ = 'pending_stock_issuance_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='pending_stock_issuance_items_positive_ck'),
        UniqueConstraint('pending_id', 'position', name='pending_stock_issuance_items_position_key'),
    )

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pending_id: Mapped[int] = mapped_column(
        Integer, ForeignKey('pending_stock_issuances.pending_id', ondelete='CASCADE'), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    component_id: Mapped[int] = mapped_column(Integer, ForeignKey('components.component_id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Set once this line's ledger entry is written; completion resumes from lines without one.
    transaction_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('inventory_transactions.transaction_id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    pending: Mapped[PendingStockIssuance] = relationship(back_populates='items')


class Staff(Base):
    __tablename__ = 'staff'

    staff_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')


class Supplier(Base):
    __tablename__ = 'suppliers'

    supplier_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class SupplierComponent(Base):
    __tablename__ = 'supplier_components'

    supplier_component_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    supplier_id: Mapped[int] = mapped_column(Integer, ForeignKey('suppliers.supplier_id'), nullable=False)
    component_id: Mapped[int] = mapped_column(Integer, ForeignKey('components.component_id'), nullable=False)
    supplier_code: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    purchase_order_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    q_number: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SupplierOrder(Base):
    """One purchase-order line: a quantity of one supplier component."""

    __tablename__ = 'supplier_orders'

    order_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    purchase_order_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('purchase_orders.purchase_order_id'))
    supplier_component_id: Mapped[int] = mapped_column(
        Integer, ForeignKey('supplier_components.supplier_component_id'), nullable=False
    )
    order_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    status: Mapped[SupplierOrderStatus] = mapped_column(
        SQLEnum(SupplierOrderStatus, name='supplier_order_status'), nullable=False
    )


class Product(Base):
    __tablename__ = 'products'

    product_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    internal_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class BillOfMaterialsLine(Base):
    __tablename__ = 'bill_of_materials'
    __table_args__ = (
        CheckConstraint('quantity_required > 0', name='bill_of_materials_positive_ck'),
    )

    bom_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey('products.product_id'), nullable=False)
    component_id: Mapped[int] = mapped_column(Integer, ForeignKey('components.component_id'), nullable=False)
    quantity_required: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)


class SalesOrder(Base):
    __tablename__ = 'sales_orders'

    order_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str | None] = mapped_column(Text)
    status: Mapped[SalesOrderStatus] = mapped_column(
        SQLEnum(SalesOrderStatus, name='sales_order_status'),
        nullable=False,
        default=SalesOrderStatus.NEW,
        server_default='NEW',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesOrderLine(Base):
    __tablename__ = 'sales_order_lines'

    order_detail_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('sales_orders.order_id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey('products.product_id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    acting_user_id: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
