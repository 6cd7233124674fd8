"""Order channels and the tri-state per-channel plan limit."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    WEBSITE = "website"

    @property
    def other(self) -> "Channel":
        return Channel.WEBSITE if self is Channel.WHATSAPP else Channel.WHATSAPP


CASH_ON_DELIVERY_METHODS = frozenset({"cod", "cash on delivery", "cash_on_delivery"})


def channel_for_payment_method(payment_method: Optional[str]) -> Channel:
    """Cash on delivery goes through the WhatsApp deep link, everything else is a website order."""
    method = (payment_method or "").strip().lower()
    if method in CASH_ON_DELIVERY_METHODS:
        return Channel.WHATSAPP
    return Channel.WEBSITE


@dataclass(frozen=True)
class Disabled:
    kind = "disabled"


@dataclass(frozen=True)
class Unlimited:
    kind = "unlimited"


@dataclass(frozen=True)
class Limited:
    cap: int
    kind = "limited"

    def __post_init__(self):
        if self.cap <= 0:
            raise ValueError(f"Limited cap must be positive, got {self.cap}")


ChannelLimit = Union[Disabled, Unlimited, Limited]

DISABLED = Disabled()
UNLIMITED = Unlimited()


def limit_from_column(value: Optional[int]) -> ChannelLimit:
    """Decode the stored plan column: NULL disables the channel, 0 means unlimited."""
    if value is None:
        return DISABLED
    if value < 0:
        raise ValueError(f"Plan limit cannot be negative, got {value}")
    if value == 0:
        return UNLIMITED
    return Limited(value)


def limit_to_column(limit: ChannelLimit) -> Optional[int]:
    if isinstance(limit, Disabled):
        return None
    if isinstance(limit, Unlimited):
        return 0
    return limit.cap


def has_capacity(limit: ChannelLimit, used: int) -> bool:
    if isinstance(limit, Disabled):
        return False
    if isinstance(limit, Unlimited):
        return True
    return used < limit.cap
