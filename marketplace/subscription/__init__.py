"""
Marketplace — Subscription & Lock Engine

Subscription status is a pure function of (now, subscription.endDate):
  inactive       — no end date
  expired        — now > endDate
  expiring_soon  — ≤ 7 whole days left (ceiling)
  active         — otherwise

Account state is derived from the persisted flags into one explicit variant:

  pending_approval ──approve──▶ active ──lock / expiry──▶ locked
                                  │  ◀──unlock / renew──────┘
                                  └──deactivate──▶ deactivated ──reactivate──▶ active

  {"state": "pending_approval"}
  {"state": "locked", "reason": "<lockReason>"}
  {"state": "deactivated", "reason": "<deactivationReason>"}
  {"state": "active", "subscription": "<subscription status>"}

`isLocked` stays persisted: expiry is turned into a stored lock the next time
the vendor is checked (enforce_expiry) or by the sweep (lock_expired_vendors).
Transition functions mutate the vendor dict in place and return it.
"""
import calendar, math
from datetime import datetime, timedelta
from fastapi import HTTPException

from marketplace.config import (
    SUBSCRIPTION_PLANS, SUBSCRIPTION_DURATIONS, EXPIRING_SOON_DAYS, LOCK_REASON_EXPIRED,
    MIN_PRODUCT_LIMIT, MAX_PRODUCT_LIMIT
)
from marketplace.db import parse_dt, iso, utcnow

# ============================================================
# DATE ARITHMETIC
# ============================================================
def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the target month's length."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)

def days_remaining(end, now: datetime = None) -> int:
    end = parse_dt(end)
    if not end:
        return 0
    now = now or utcnow()
    return max(0, math.ceil((end - now) / timedelta(days=1)))

# ============================================================
# STATUS
# ============================================================
def subscription_status(subscription: dict, now: datetime = None) -> str:
    end = parse_dt((subscription or {}).get("endDate"))
    if not end:
        return "inactive"
    now = now or utcnow()
    if now > end:
        return "expired"
    if math.ceil((end - now) / timedelta(days=1)) <= EXPIRING_SOON_DAYS:
        return "expiring_soon"
    return "active"

def is_expired(vendor: dict, now: datetime = None) -> bool:
    return subscription_status(vendor.get("subscription"), now) == "expired"

def plan_for(duration: int) -> str:
    return SUBSCRIPTION_PLANS.get(duration, SUBSCRIPTION_PLANS[1])

def valid_duration(value):
    """Duration in months if it is one of the sold plans, else None."""
    try:
        duration = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    return duration if duration in SUBSCRIPTION_DURATIONS else None

def validate_product_limit(value) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f"Product limit must be between {MIN_PRODUCT_LIMIT} and {MAX_PRODUCT_LIMIT}")
    if isinstance(value, bool) or limit < MIN_PRODUCT_LIMIT or limit > MAX_PRODUCT_LIMIT:
        raise HTTPException(400, f"Product limit must be between {MIN_PRODUCT_LIMIT} and {MAX_PRODUCT_LIMIT}")
    return limit

def new_subscription(duration: int, start: datetime, purchases: int = 0) -> dict:
    return {
        "duration": duration,
        "startDate": iso(start),
        "endDate": iso(add_months(start, duration)),
        "currentPlan": plan_for(duration),
        "totalPurchases": purchases,
        "lastPurchaseDate": None,
    }

def subscription_info(vendor: dict, now: datetime = None) -> dict:
    now = now or utcnow()
    sub = vendor.get("subscription") or {}
    status = subscription_status(sub, now)
    left = days_remaining(sub.get("endDate"), now)
    return {
        "currentPlan": sub.get("currentPlan"),
        "duration": sub.get("duration"),
        "startDate": sub.get("startDate"),
        "endDate": sub.get("endDate"),
        "isActive": status in ("active", "expiring_soon"),
        "isExpiringSoon": status == "expiring_soon" and left > 0,
        "daysRemaining": left,
        "status": status,
        "totalPurchases": sub.get("totalPurchases", 0),
        "lastPurchaseDate": sub.get("lastPurchaseDate"),
    }

# ============================================================
# ACCOUNT STATE
# ============================================================
def account_state(vendor: dict, now: datetime = None) -> dict:
    if not vendor.get("isApproved"):
        return {"state": "pending_approval"}
    if vendor.get("isLocked"):
        return {"state": "locked", "reason": vendor.get("lockReason")}
    if is_expired(vendor, now):
        return {"state": "locked", "reason": LOCK_REASON_EXPIRED}
    if not vendor.get("isActive", True):
        return {"state": "deactivated", "reason": vendor.get("deactivationReason")}
    return {"state": "active", "subscription": subscription_status(vendor.get("subscription"), now)}

def can_operate(vendor: dict, now: datetime = None) -> bool:
    """Approved, unlocked, unexpired: may manage products."""
    return account_state(vendor, now)["state"] in ("active", "deactivated")

def is_storefront_visible(vendor: dict, now: datetime = None) -> bool:
    """Approved, unlocked, unexpired and active: shown to shoppers."""
    return bool(vendor) and account_state(vendor, now)["state"] == "active"

# ============================================================
# TRANSITIONS
# ============================================================
def lock(vendor: dict, reason: str, now: datetime = None) -> dict:
    vendor["isLocked"] = True
    vendor["lockReason"] = reason
    vendor["lockedAt"] = iso(now or utcnow())
    return vendor

def unlock(vendor: dict, now: datetime = None, force: bool = False) -> dict:
    if not force and vendor.get("lockReason") == LOCK_REASON_EXPIRED and \
            subscription_status(vendor.get("subscription"), now) in ("expired", "inactive"):
        raise HTTPException(400, "Cannot unlock vendor with expired subscription. "
                                 "Use force=true to override or update subscription first.")
    vendor["isLocked"] = False
    vendor["lockReason"] = None
    vendor["lockedAt"] = None
    return vendor

def enforce_expiry(vendor: dict, now: datetime = None) -> bool:
    """Persistable auto-lock. Returns True when the record changed."""
    if not vendor.get("isLocked") and is_expired(vendor, now):
        lock(vendor, LOCK_REASON_EXPIRED, now)
        return True
    return False

def renew(vendor: dict, duration: int, start: datetime = None, now: datetime = None,
          max_product_limit=None) -> dict:
    """Assign a fresh subscription window (admin purchase)."""
    now = now or utcnow()
    start = start or now
    limit = validate_product_limit(max_product_limit) if max_product_limit is not None else None
    previous = vendor.get("subscription") or {}
    sub = new_subscription(duration, start, previous.get("totalPurchases", 0) + 1)
    sub["lastPurchaseDate"] = iso(now)
    vendor["subscription"] = sub
    if limit is not None:
        vendor["maxProductLimit"] = limit
    if vendor.get("isLocked") and vendor.get("lockReason") == LOCK_REASON_EXPIRED:
        vendor["isLocked"] = False
        vendor["lockReason"] = None
        vendor["lockedAt"] = None
    return vendor

def deactivate(vendor: dict, reason: str = None, now: datetime = None) -> dict:
    vendor["isActive"] = False
    vendor["deactivatedAt"] = iso(now or utcnow())
    vendor["deactivationReason"] = (reason or "").strip() or "User requested"
    return vendor

def reactivate(vendor: dict) -> dict:
    if vendor.get("isActive", True):
        raise HTTPException(400, "Account is already active")
    vendor["isActive"] = True
    vendor["deactivatedAt"] = None
    vendor["deactivationReason"] = None
    return vendor

def set_approval(vendor: dict, approved: bool, admin_id: str = None, reason: str = None,
                 now: datetime = None) -> dict:
    vendor["isApproved"] = approved
    if approved:
        vendor["approvedBy"] = admin_id
        vendor["approvedAt"] = iso(now or utcnow())
        vendor["rejectionReason"] = None
    else:
        vendor["approvedBy"] = None
        vendor["approvedAt"] = None
        if reason:
            vendor["rejectionReason"] = reason.strip()
    return vendor

# ============================================================
# SWEEP
# ============================================================
def lock_expired_vendors(db: dict, now: datetime = None) -> int:
    """Lock every approved, unlocked vendor whose subscription has ended."""
    now = now or utcnow()
    count = 0
    for v in db["vendors"]:
        if v.get("isApproved") and enforce_expiry(v, now):
            v["updatedAt"] = iso(now)
            count += 1
    if count:
        print(f"[Subscription] Locked {count} vendors with expired subscriptions")
    return count
