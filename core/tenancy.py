from typing import Optional, Tuple

from fastapi import Header, HTTPException, status, Request, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.domains import resolve_tenant_identifiers
from services.tenant_directory import StoreRecord, TenantDirectory, tenant_directory


def resolve_domain(request: Request, x_store_domain: Optional[str] = Header(default=None, alias="X-Store-Domain")) -> str:
    """Resolve store domain from X-Store-Domain header or Host header."""
    if x_store_domain:
        return x_store_domain.lower()
    host = request.headers.get("host") or request.headers.get("Host")
    if not host:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing store domain")
    return host.lower()


def get_tenant_identifiers(
    request: Request,
    x_store_domain: Optional[str] = Header(default=None, alias="X-Store-Domain"),
    x_store_path: Optional[str] = Header(default=None, alias="X-Store-Path"),
) -> Tuple[str, ...]:
    """Tenant lookup candidates for this request, highest priority first.

    The storefront forwards the page path it is serving in X-Store-Path so
    slug-addressed stores resolve against API calls too.
    """
    host = resolve_domain(request, x_store_domain)
    path = x_store_path if x_store_path is not None else request.url.path
    return resolve_tenant_identifiers(host, path)


def get_tenant_directory() -> TenantDirectory:
    return tenant_directory


def get_current_store(
    identifiers: Tuple[str, ...] = Depends(get_tenant_identifiers),
    db: Session = Depends(get_db),
    directory: TenantDirectory = Depends(get_tenant_directory),
) -> StoreRecord:
    """FastAPI dependency that returns the active store for the current request."""
    if not identifiers:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No store for this domain")

    store = directory.resolve_first(db, identifiers)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store
