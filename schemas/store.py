from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


class StoreCreate(BaseModel):
    name: str
    slug: str = Field(min_length=2, max_length=100)
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None

    @field_validator("slug", "subdomain", "custom_domain")
    @classmethod
    def _lower(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else None


class StoreDomainsUpdate(BaseModel):
    slug: Optional[str] = None
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("slug", "subdomain", "custom_domain")
    @classmethod
    def _lower(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v is not None else None


class StoreOut(BaseModel):
    id: int
    name: str
    slug: str
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    is_active: bool
    url: Optional[str] = None

    class Config:
        from_attributes = True


class ChannelUsageOut(BaseModel):
    channel: str
    limit_kind: str
    cap: Optional[int] = None
    used: int
    remaining: Optional[int] = None
    available: bool

    class Config:
        from_attributes = True


class StoreUsageOut(BaseModel):
    status: Optional[str] = None
    period_end: Optional[datetime] = None
    channels: List[ChannelUsageOut]
    warnings: List[str]
