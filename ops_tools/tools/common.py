"""Shared helpers for tenant-facing tools."""

import time
from datetime import datetime, timedelta
from typing import Any

from ops_memory.stores import Range
from ops_memory.timestamps import format_timestamp, parse_timestamp, utcnow

USERS_COLLECTION = "users"
EVENT_TYPES_COLLECTION = "event_types"

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due")

BUSINESS_ID_SCHEMA = {
    "type": "string",
    "description": "Unique business identifier",
    "minLength": 1,
}


def is_subscribed(user: dict[str, Any] | None) -> bool:
    """A tenant is subscribed with a Stripe subscription in an active-like state."""
    if not user:
        return False
    subscription = user.get("subscription") or {}
    return bool(subscription.get("stripeSubscriptionId")) and (
        subscription.get("status") in ACTIVE_SUBSCRIPTION_STATUSES
    )


def elapsed_ms(started: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return int((time.monotonic() - started) * 1000)


async def load_tenant(db, business_id: str) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    """
    Fetch a tenant and derive its provisioning facts.

    Returns:
        (user document or None, profile dict); the profile is empty when
        the tenant does not exist
    """
    user = await db.get(USERS_COLLECTION, business_id)
    if not user:
        return None, {}

    subscription = user.get("subscription") or {}
    google = user.get("google") or {}
    scheduling = user.get("scheduling") or {}
    phone_agents = user.get("phoneAgents") or []

    profile = {
        "subscription": subscription,
        "subscription_active": is_subscribed(user),
        "has_customer": bool(subscription.get("stripeCustomerId")),
        "has_subscription": bool(subscription.get("stripeSubscriptionId")),
        "has_call_minutes_item": bool(subscription.get("stripeCallMinutesItemId")),
        "calendar_connected": bool(google.get("refreshToken") or google.get("connected")),
        "selected_calendars": google.get("selectedCalendarIds") or [],
        "handle": scheduling.get("handle"),
        "has_availability": bool(scheduling.get("availability")),
        "voice_agent_count": len(phone_agents),
        "event_type_count": await db.count(EVENT_TYPES_COLLECTION, {"userId": business_id}),
    }
    return user, profile


def date_range(args: dict[str, Any], default_start: datetime) -> tuple[datetime, datetime]:
    """
    Resolve ``startDate``/``endDate`` (ISO dates or datetimes) into a UTC range.

    Raises:
        ValueError: A date does not parse or the range is reversed
    """
    start = parse_timestamp(args["startDate"]) if args.get("startDate") else default_start
    end = parse_timestamp(args["endDate"]) if args.get("endDate") else utcnow()
    if start > end:
        raise ValueError("startDate must not be after endDate")
    return start, end


def range_filter(start: datetime, end: datetime) -> Range:
    """Inclusive [start, end] over stored timestamp strings."""
    return Range(gte=format_timestamp(start), lt=format_timestamp(end + timedelta(microseconds=1)))
