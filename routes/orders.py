import logging
from typing import List, Tuple
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.db import get_db
from core.tenancy import get_current_store, get_tenant_directory, get_tenant_identifiers
from models.order import Order
from routes.checkout import rejection_exception
from services.admission import admit_order, attach_order, lookup_admission
from services.results import Rejected
from services.tenant_directory import StoreRecord, TenantDirectory
from schemas.order import OrderCreate, OrderOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def _to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _claimed_order(db: Session, store_id: int, admission_key: str) -> Order | None:
    record = lookup_admission(db, store_id, admission_key)
    if record is None or record.order_id is None:
        return None
    return db.get(Order, record.order_id)


@router.get("/", response_model=List[OrderOut])
def list_orders(store: StoreRecord = Depends(get_current_store), db: Session = Depends(get_db)):
    return db.query(Order).filter(Order.store_id == store.id).order_by(Order.id).all()


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, store: StoreRecord = Depends(get_current_store), db: Session = Depends(get_db)):
    order = db.query(Order).filter(Order.store_id == store.id, Order.id == order_id).one_or_none()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post("/", response_model=OrderOut, status_code=201)
def create_order(
    data: OrderCreate,
    identifiers: Tuple[str, ...] = Depends(get_tenant_identifiers),
    db: Session = Depends(get_db),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    result = admit_order(db, identifiers, data.payment_method, admission_key=data.admission_key, directory=directory)
    if isinstance(result, Rejected):
        raise rejection_exception(result)

    store = result.store
    if result.replayed:
        # Same checkout retried: hand back the order it already created
        existing = _claimed_order(db, store.id, result.admission_key)
        if existing is not None:
            return existing

    # The counter was incremented during admission; only the order row is left to write
    order = Order(
        store_id=store.id,
        channel=result.channel.value,
        payment_method=data.payment_method,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        currency=data.currency,
        total=_to_decimal(data.total),
        status="pending",
    )
    db.add(order)
    db.flush()
    if result.admission_key and not attach_order(db, store.id, result.admission_key, order.id):
        # A concurrent request with the same key already created the order for this admission
        db.rollback()
        existing = _claimed_order(db, store.id, result.admission_key)
        if existing is None:
            raise HTTPException(status_code=409, detail="Order for this admission is still being created")
        return existing
    db.commit()
    db.refresh(order)
    logger.info("Created %s order %s for store %s", order.channel, order.id, store.id)
    return order
