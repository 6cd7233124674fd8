from dataclasses import dataclass
from typing import List, Optional

from core.channels import Channel, ChannelLimit, Disabled, Limited, has_capacity
from core.config import settings
from services.subscriptions import SubscriptionState


@dataclass(frozen=True)
class ChannelUsage:
    channel: Channel
    limit_kind: str
    cap: Optional[int]
    used: int
    remaining: Optional[int]
    available: bool


def channel_usage(channel: Channel, limit: ChannelLimit, used: int, entitled: bool = True) -> ChannelUsage:
    cap = limit.cap if isinstance(limit, Limited) else None
    remaining = max(cap - used, 0) if cap is not None else None
    return ChannelUsage(
        channel=channel,
        limit_kind=limit.kind,
        cap=cap,
        used=used,
        remaining=remaining,
        available=entitled and has_capacity(limit, used),
    )


def usage_warnings(channels: List[ChannelUsage], entitled: bool, threshold: int) -> List[str]:
    """Owner-facing banner messages, most severe first."""
    if not entitled:
        return ["No active subscription. Please upgrade to accept orders."]
    if all(usage.limit_kind == Disabled.kind for usage in channels):
        return ["Ordering features are not available in your current plan."]

    warnings = []
    for usage in channels:
        if usage.cap is None:
            continue
        label = "WhatsApp" if usage.channel is Channel.WHATSAPP else "Website"
        if usage.remaining <= 0:
            warnings.append(
                f"{label} order limit reached ({usage.used}/{usage.cap}). Upgrade your plan to accept more orders."
            )
        elif usage.remaining <= threshold:
            warnings.append(
                f"Warning: Only {usage.remaining} {label} order slots remaining ({usage.used}/{usage.cap})."
            )
    return warnings


def summarize_usage(state: Optional[SubscriptionState], threshold: Optional[int] = None) -> dict:
    threshold = settings.QUOTA_WARNING_THRESHOLD if threshold is None else threshold
    if state is None:
        return {
            "status": None,
            "period_end": None,
            "channels": [],
            "warnings": usage_warnings([], entitled=False, threshold=threshold),
        }

    channels = [
        channel_usage(channel, state.limits[channel], state.usage.get(channel, 0), state.is_entitled)
        for channel in Channel
    ]
    return {
        "status": state.status.value,
        "period_end": state.period_end,
        "channels": channels,
        "warnings": usage_warnings(channels, state.is_entitled, threshold),
    }
