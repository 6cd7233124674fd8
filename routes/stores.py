from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.db import get_db
from core.domains import build_store_url, is_reserved_route, is_reserved_subdomain, is_valid_subdomain
from core.tenancy import get_current_store
from models.store import Store
from services.subscriptions import load_subscription_state
from services.tenant_directory import StoreRecord
from services.usage import summarize_usage
from schemas.store import ChannelUsageOut, StoreCreate, StoreDomainsUpdate, StoreOut, StoreUsageOut

router = APIRouter(prefix="/stores", tags=["stores"])


def _store_out(store) -> StoreOut:
    out = StoreOut.model_validate(store)
    out.url = build_store_url(store.subdomain, store.custom_domain)
    return out


def _validate_subdomain(subdomain: str | None) -> None:
    if subdomain is None:
        return
    if not is_valid_subdomain(subdomain):
        raise HTTPException(status_code=400, detail="Subdomain must be 3-63 lowercase letters, digits or hyphens")
    if is_reserved_subdomain(subdomain):
        raise HTTPException(status_code=400, detail="Subdomain is reserved")


def _validate_slug(slug: str | None) -> None:
    if slug is not None and is_reserved_route(slug):
        raise HTTPException(status_code=400, detail="Slug is reserved")


def _ensure_unique(db: Session, values: list[str], exclude_id: int | None = None) -> None:
    # One identifier must never point at two stores through different fields
    values = [v for v in values if v]
    if not values:
        return
    query = db.query(Store).filter(
        or_(Store.slug.in_(values), Store.subdomain.in_(values), Store.custom_domain.in_(values))
    )
    if exclude_id is not None:
        query = query.filter(Store.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=400, detail="Store identifier already in use")


@router.get("/current", response_model=StoreOut)
def get_store(store: StoreRecord = Depends(get_current_store)):
    return _store_out(store)


@router.get("/current/usage", response_model=StoreUsageOut)
def get_store_usage(store: StoreRecord = Depends(get_current_store), db: Session = Depends(get_db)):
    summary = summarize_usage(load_subscription_state(db, store.id))
    return StoreUsageOut(
        status=summary["status"],
        period_end=summary["period_end"],
        channels=[
            ChannelUsageOut(
                channel=usage.channel.value,
                limit_kind=usage.limit_kind,
                cap=usage.cap,
                used=usage.used,
                remaining=usage.remaining,
                available=usage.available,
            )
            for usage in summary["channels"]
        ],
        warnings=summary["warnings"],
    )


@router.post("/", response_model=StoreOut, status_code=201)
def create_store(data: StoreCreate, db: Session = Depends(get_db)):
    _validate_slug(data.slug)
    _validate_subdomain(data.subdomain)
    _ensure_unique(db, [data.slug, data.subdomain, data.custom_domain])
    store = Store(
        name=data.name.strip(),
        slug=data.slug,
        subdomain=data.subdomain,
        custom_domain=data.custom_domain,
        is_active=True,
    )
    db.add(store)
    db.commit()
    db.refresh(store)
    return _store_out(store)


@router.patch("/{store_id}/domains", response_model=StoreOut)
def update_store_domains(store_id: int, data: StoreDomainsUpdate, db: Session = Depends(get_db)):
    store = db.get(Store, store_id)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")

    changes = data.model_dump(exclude_unset=True)
    if changes.get("is_active", False) is None:
        del changes["is_active"]
    if "slug" in changes and not changes["slug"]:
        raise HTTPException(status_code=400, detail="Slug cannot be empty")
    for field in ("subdomain", "custom_domain"):
        # An empty string clears an optional domain
        if field in changes and changes[field] == "":
            changes[field] = None
    _validate_slug(changes.get("slug"))
    _validate_subdomain(changes.get("subdomain"))
    _ensure_unique(db, [changes.get("slug"), changes.get("subdomain"), changes.get("custom_domain")], exclude_id=store.id)

    for field, value in changes.items():
        setattr(store, field, value)
    # Cached lookups for the old and new identifiers are dropped on commit
    db.commit()
    db.refresh(store)
    return _store_out(store)
