"""
Marketplace — Banners
Promotional vendor banners shown on the storefront for a fixed number of days.
Expired banners are hidden lazily: every read sweeps them to isVisible=False.
"""
from datetime import datetime, timedelta
from fastapi import HTTPException

from marketplace.config import BANNER_VISIBILITY_DAYS, BANNER_TITLE_MAX, BANNER_EXPIRING_SOON_DAYS
from marketplace.db import (
    get_db, save_db, find_by_id, new_id, utcnow, iso, parse_dt, stamp, record_activity,
    sort_records, paginate
)
from marketplace.validation import clean_str, as_bool
from marketplace import media

FOLDER = "banners"


def _expired(banner: dict, now: datetime) -> bool:
    expiry = parse_dt(banner.get("expiryDate"))
    return bool(expiry and expiry < now)

def sweep_expired(db: dict, now: datetime = None) -> int:
    """Hide visible banners past their expiry. Caller saves."""
    now = now or utcnow()
    hidden = 0
    for b in db["banners"]:
        if b.get("isVisible") and _expired(b, now):
            b["isVisible"] = False
            stamp(b, now)
            hidden += 1
    if hidden:
        print(f"[Banners] Hid {hidden} expired banners")
    return hidden

def _swept_db() -> dict:
    db = get_db()
    if sweep_expired(db):
        save_db(db)
    return db

def banner_view(db: dict, banner: dict, vendor_fields=("companyName", "email", "phone")) -> dict:
    view = dict(banner)
    vendor = find_by_id(db["vendors"], banner.get("vendorId"))
    admin = find_by_id(db["superadmins"], banner.get("createdBy"))
    view["vendor"] = {"id": vendor["id"], **{f: vendor.get(f) for f in vendor_fields}} if vendor else None
    view["createdByAdmin"] = {"id": admin["id"], "name": admin.get("name"), "email": admin["email"]} if admin else None
    return view

def _banner_or_404(db: dict, banner_id: str) -> dict:
    banner = find_by_id(db["banners"], banner_id)
    if not banner:
        raise HTTPException(404, "Banner not found")
    return banner

def _visibility_days(value) -> int:
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        days = None
    if days not in BANNER_VISIBILITY_DAYS:
        allowed = ", ".join(str(d) for d in BANNER_VISIBILITY_DAYS)
        raise HTTPException(400, f"Visibility days must be one of: {allowed}")
    return days

def _title(value) -> str:
    title = clean_str(value)
    if len(title) > BANNER_TITLE_MAX:
        raise HTTPException(400, f"Title cannot be more than {BANNER_TITLE_MAX} characters")
    return title

def _vendor_exists(db: dict, vendor_id: str) -> str:
    if not find_by_id(db["vendors"], vendor_id):
        raise HTTPException(404, "Vendor not found")
    return vendor_id

# ============================================================
# PUBLIC
# ============================================================
def visible_banners() -> list:
    db = _swept_db()
    now = utcnow()
    rows = [b for b in db["banners"] if b.get("isVisible") and not _expired(b, now)]
    return [{"id": b["id"], "title": b["title"], "imageUrl": b["imageUrl"],
             "vendor": banner_view(db, b, ("companyName",))["vendor"],
             "createdAt": b["createdAt"], "expiryDate": b["expiryDate"]}
            for b in sort_records(rows, "createdAt", "desc")]

# ============================================================
# ADMIN
# ============================================================
def stats() -> dict:
    db = _swept_db()
    now = utcnow()
    soon = now + timedelta(days=BANNER_EXPIRING_SOON_DAYS)
    return {
        "totalBanners": len(db["banners"]),
        "visibleBanners": sum(1 for b in db["banners"] if b.get("isVisible")),
        "expiredBanners": sum(1 for b in db["banners"] if _expired(b, now)),
        "soonToExpire": sum(1 for b in db["banners"] if b.get("isVisible")
                            and now <= parse_dt(b["expiryDate"]) <= soon),
    }

def list_banners(page: int = 1, limit: int = 10, is_visible: bool = None, vendor_id: str = None) -> tuple:
    db = _swept_db()
    rows = [b for b in db["banners"]
            if (is_visible is None or bool(b.get("isVisible")) == is_visible)
            and (not vendor_id or b.get("vendorId") == vendor_id)]
    items, pagination = paginate(sort_records(rows, "createdAt", "desc"), page, limit)
    return [banner_view(db, b) for b in items], pagination

def expiring_soon(days: int = BANNER_EXPIRING_SOON_DAYS) -> list:
    db = _swept_db()
    now = utcnow()
    until = now + timedelta(days=days)
    rows = [b for b in db["banners"] if b.get("isVisible") and now <= parse_dt(b["expiryDate"]) <= until]
    return [banner_view(db, b, ("companyName", "email")) for b in sort_records(rows, "expiryDate", "asc")]

async def create_banner(data: dict, image: tuple, admin: dict) -> dict:
    title, vendor_id = _title(data.get("title")), clean_str(data.get("vendorId"))
    if not title or not vendor_id or not data.get("visibilityDays"):
        raise HTTPException(400, "Title, vendor ID and visibility days are required")
    if not image:
        raise HTTPException(400, "Banner image is required")
    days = _visibility_days(data["visibilityDays"])
    db = get_db()
    _vendor_exists(db, vendor_id)

    hosted = await media.upload_image(*image, FOLDER)
    now = utcnow()
    banner = stamp({
        "id": new_id(), "title": title, "vendorId": vendor_id,
        "imageUrl": hosted["url"], "publicId": hosted["public_id"],
        "visibilityDays": days, "expiryDate": iso(now + timedelta(days=days)),
        "isVisible": True, "createdBy": admin["id"],
    }, now)
    db["banners"].append(banner)
    record_activity(db, "banner_created", admin, {"bannerId": banner["id"], "vendorId": vendor_id})
    save_db(db)
    print(f"[Banners] Created '{title}' for {days} days")
    return banner_view(db, banner, ("companyName", "email"))

def get_banner(banner_id: str) -> dict:
    db = _swept_db()
    return banner_view(db, _banner_or_404(db, banner_id))

async def update_banner(banner_id: str, data: dict, image: tuple, admin: dict) -> dict:
    db = get_db()
    banner = _banner_or_404(db, banner_id)
    updates = {}
    if clean_str(data.get("title")):
        updates["title"] = _title(data["title"])
    if clean_str(data.get("vendorId")):
        updates["vendorId"] = _vendor_exists(db, clean_str(data["vendorId"]))
    now = utcnow()
    if data.get("visibilityDays"):
        updates["visibilityDays"] = _visibility_days(data["visibilityDays"])
        updates["expiryDate"] = iso(now + timedelta(days=updates["visibilityDays"]))
    if data.get("isVisible") is not None:
        flag = as_bool(data["isVisible"])
        if flag is None:
            raise HTTPException(400, "isVisible must be true or false")
        updates["isVisible"] = flag
    if image:
        hosted = await media.replace_image(banner.get("publicId"), *image, FOLDER)
        updates["imageUrl"], updates["publicId"] = hosted["url"], hosted["public_id"]
    banner.update(updates)
    stamp(banner, now)
    record_activity(db, "banner_updated", admin, {"bannerId": banner_id, "fields": sorted(updates)})
    save_db(db)
    print(f"[Banners] Updated '{banner['title']}'")
    return banner_view(db, banner, ("companyName", "email"))

async def delete_banner(banner_id: str, admin: dict) -> dict:
    db = get_db()
    banner = _banner_or_404(db, banner_id)
    db["banners"] = [b for b in db["banners"] if b["id"] != banner_id]
    record_activity(db, "banner_deleted", admin, {"bannerId": banner_id, "title": banner["title"]})
    save_db(db)
    await media.delete_image(banner.get("publicId"))
    print(f"[Banners] Deleted '{banner['title']}'")
    return banner

def toggle_visibility(banner_id: str, admin: dict) -> dict:
    db = get_db()
    banner = _banner_or_404(db, banner_id)
    banner["isVisible"] = not banner.get("isVisible")
    stamp(banner)
    record_activity(db, "banner_toggled", admin, {"bannerId": banner_id, "isVisible": banner["isVisible"]})
    save_db(db)
    print(f"[Banners] '{banner['title']}' is now {'visible' if banner['isVisible'] else 'hidden'}")
    return {"id": banner["id"], "title": banner["title"], "isVisible": banner["isVisible"]}
