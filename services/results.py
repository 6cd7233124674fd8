"""Typed admission outcomes shared by the quota ledger and the admission gate."""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from core.channels import Channel, ChannelLimit, Limited

if TYPE_CHECKING:
    from services.tenant_directory import StoreRecord


class RejectionReason(str, Enum):
    STORE_NOT_FOUND = "store_not_found"
    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    CHANNEL_DISABLED = "channel_disabled"
    QUOTA_EXHAUSTED = "quota_exhausted"
    TRANSIENT_CONFLICT = "transient_conflict"


MESSAGES = {
    RejectionReason.STORE_NOT_FOUND: "Store not found",
    RejectionReason.NO_SUBSCRIPTION: "Ordering is unavailable for this store",
    RejectionReason.SUBSCRIPTION_INACTIVE: "Ordering is unavailable for this store",
    RejectionReason.SUBSCRIPTION_EXPIRED: "This store's subscription has expired. Please contact the store owner.",
    RejectionReason.CHANNEL_DISABLED: "This ordering method is not available for this store",
    RejectionReason.QUOTA_EXHAUSTED: "This store has reached its order limit. Please contact the store owner.",
    RejectionReason.TRANSIENT_CONFLICT: "We could not place your order right now. Please try again.",
}


@dataclass(frozen=True)
class Admitted:
    subscription_id: int
    channel: Channel
    used: int
    limit: ChannelLimit
    store: Optional["StoreRecord"] = None
    admission_key: Optional[str] = None
    replayed: bool = False

    admitted = True


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    channel: Optional[Channel] = None
    used: Optional[int] = None
    limit: Optional[ChannelLimit] = None
    store: Optional["StoreRecord"] = None
    fallback_channel: Optional[Channel] = None

    admitted = False

    @property
    def message(self) -> str:
        if self.reason is RejectionReason.QUOTA_EXHAUSTED and isinstance(self.limit, Limited) and self.used is not None:
            channel = self.channel.value if self.channel else "order"
            return f"{MESSAGES[self.reason]} ({channel} orders {self.used}/{self.limit.cap})"
        return MESSAGES[self.reason]


AdmissionResult = Union[Admitted, Rejected]
