from pydantic import BaseModel, Field
from typing import Optional


class AdmissionRequest(BaseModel):
    payment_method: str
    admission_key: Optional[str] = Field(default=None, max_length=100)


class AdmissionOut(BaseModel):
    admitted: bool = True
    store_id: int
    channel: str
    used: int
    cap: Optional[int] = None
    admission_key: Optional[str] = None
    replayed: bool = False
    order_id: Optional[int] = None


class RejectionOut(BaseModel):
    reason: str
    message: str
    channel: Optional[str] = None
    used: Optional[int] = None
    cap: Optional[int] = None
    fallback_channel: Optional[str] = None
