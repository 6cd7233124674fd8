from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class OrderCreate(BaseModel):
    payment_method: str
    total: float = Field(ge=0)
    currency: str = "INR"
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    admission_key: Optional[str] = Field(default=None, max_length=100)


class OrderOut(BaseModel):
    id: int
    store_id: int
    channel: str
    payment_method: str
    currency: str
    status: str
    total: float
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
