from decimal import Decimal

from sqlalchemy import select

from app.create_tables import create_tables
from app.db import SessionLocal
from app.models import (
    BillOfMaterialsLine,
    Component,
    Product,
    PurchaseOrder,
    SalesOrder,
    SalesOrderLine,
    SalesOrderStatus,
    Staff,
    Supplier,
    SupplierComponent,
    SupplierOrder,
    SupplierOrderStatus,
)
from app.services.mutation_service import create_snapshot

DEMO_COMPONENTS = [
    ('BOLT-M6', 'M6 hex bolt', 'each', 120, 40),
    ('PANEL-A', 'Side panel, ash', 'each', 8, 10),
    ('FOAM-30', 'Seat foam 30mm', 'sheet', 0, 5),
]


def seed() -> None:
    create_tables()
    with SessionLocal() as db:
        components: dict[str, Component] = {}
        for code, description, unit, opening, reorder_level in DEMO_COMPONENTS:
            component = db.execute(select(Component).where(Component.internal_code == code)).scalar_one_or_none()
            if not component:
                component = Component(internal_code=code, description=description, unit=unit, active=True)
                db.add(component)
                db.flush()
                create_snapshot(
                    db,
                    component_id=component.component_id,
                    initial_quantity=opening,
                    reorder_level=reorder_level,
                    acting_user_id='seed',
                )
            components[code] = component

        staff = db.execute(select(Staff).where(Staff.first_name == 'Demo')).scalar_one_or_none()
        if not staff:
            db.add(Staff(first_name='Demo', last_name='Picker', active=True))

        supplier = db.execute(select(Supplier).where(Supplier.name == 'Demo Fasteners')).scalar_one_or_none()
        if not supplier:
            supplier = Supplier(name='Demo Fasteners')
            db.add(supplier)
            db.flush()
            link = SupplierComponent(
                supplier_id=supplier.supplier_id,
                component_id=components['BOLT-M6'].component_id,
                supplier_code='DF-M6',
                price=Decimal('0.12'),
            )
            purchase_order = PurchaseOrder(q_number='Q-DEMO-001')
            db.add_all([link, purchase_order])
            db.flush()
            db.add(
                SupplierOrder(
                    purchase_order_id=purchase_order.purchase_order_id,
                    supplier_component_id=link.supplier_component_id,
                    order_quantity=500,
                    total_received=100,
                    status=SupplierOrderStatus.PARTIALLY_RECEIVED,
                )
            )

        product = db.execute(select(Product).where(Product.internal_code == 'CHAIR-01')).scalar_one_or_none()
        if not product:
            product = Product(internal_code='CHAIR-01', name='Demo chair')
            db.add(product)
            db.flush()
            db.add_all(
                [
                    BillOfMaterialsLine(
                        product_id=product.product_id,
                        component_id=components['BOLT-M6'].component_id,
                        quantity_required=Decimal('8'),
                    ),
                    BillOfMaterialsLine(
                        product_id=product.product_id,
                        component_id=components['PANEL-A'].component_id,
                        quantity_required=Decimal('2'),
                    ),
                ]
            )
            order = SalesOrder(order_number='SO-DEMO-001', status=SalesOrderStatus.NEW)
            db.add(order)
            db.flush()
            db.add(SalesOrderLine(order_id=order.order_id, product_id=product.product_id, quantity=4))

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
