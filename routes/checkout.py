from typing import Tuple

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from core.channels import Channel, Limited
from core.db import get_db
from core.tenancy import get_current_store, get_tenant_directory, get_tenant_identifiers
from services import quota_ledger
from services.admission import admit_order, lookup_admission
from services.results import Admitted, Rejected, RejectionReason
from services.tenant_directory import StoreRecord, TenantDirectory
from schemas.admission import AdmissionOut, AdmissionRequest, RejectionOut

router = APIRouter(prefix="/checkout", tags=["checkout"])

REJECTION_STATUS = {
    RejectionReason.STORE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.NO_SUBSCRIPTION: status.HTTP_403_FORBIDDEN,
    RejectionReason.SUBSCRIPTION_INACTIVE: status.HTTP_403_FORBIDDEN,
    RejectionReason.SUBSCRIPTION_EXPIRED: status.HTTP_402_PAYMENT_REQUIRED,
    RejectionReason.CHANNEL_DISABLED: status.HTTP_403_FORBIDDEN,
    RejectionReason.QUOTA_EXHAUSTED: status.HTTP_429_TOO_MANY_REQUESTS,
    RejectionReason.TRANSIENT_CONFLICT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _cap(limit) -> int | None:
    return limit.cap if isinstance(limit, Limited) else None


def rejection_exception(rejected: Rejected) -> HTTPException:
    body = RejectionOut(
        reason=rejected.reason.value,
        message=rejected.message,
        channel=rejected.channel.value if rejected.channel else None,
        used=rejected.used,
        cap=_cap(rejected.limit),
        fallback_channel=rejected.fallback_channel.value if rejected.fallback_channel else None,
    )
    headers = {"Retry-After": "1"} if rejected.reason is RejectionReason.TRANSIENT_CONFLICT else None
    return HTTPException(status_code=REJECTION_STATUS[rejected.reason], detail=body.model_dump(), headers=headers)


def admission_out(result: Admitted, order_id: int | None = None) -> AdmissionOut:
    return AdmissionOut(
        store_id=result.store.id,
        channel=result.channel.value,
        used=result.used,
        cap=_cap(result.limit),
        admission_key=result.admission_key,
        replayed=result.replayed,
        order_id=order_id,
    )


@router.post("/admit", response_model=AdmissionOut)
def admit(
    data: AdmissionRequest,
    identifiers: Tuple[str, ...] = Depends(get_tenant_identifiers),
    db: Session = Depends(get_db),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    result = admit_order(db, identifiers, data.payment_method, admission_key=data.admission_key, directory=directory)
    if isinstance(result, Rejected):
        raise rejection_exception(result)

    order_id = None
    if result.replayed:
        order_id = lookup_admission(db, result.store.id, result.admission_key).order_id
    return admission_out(result, order_id)


@router.get("/admissions/{admission_key}", response_model=AdmissionOut)
def get_admission(admission_key: str, store: StoreRecord = Depends(get_current_store), db: Session = Depends(get_db)):
    """Lets a checkout that timed out learn whether its admission went through."""
    record = lookup_admission(db, store.id, admission_key)
    if not record:
        raise HTTPException(status_code=404, detail="Admission not found")
    channel = Channel(record.channel)
    return AdmissionOut(
        store_id=store.id,
        channel=channel.value,
        used=quota_ledger.read_usage(db, record.subscription_id, channel) or 0,
        cap=_cap(quota_ledger.read_plan_limit(db, record.subscription_id, channel)),
        admission_key=record.admission_key,
        replayed=True,
        order_id=record.order_id,
    )
