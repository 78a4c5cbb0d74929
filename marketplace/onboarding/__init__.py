"""
Marketplace — Vendor Onboarding Workflow

Lifecycle:
  no record ──send_otp──▶ OTP sent ──signup──▶ pending approval ──approve──▶ vendor
                                                      └──────────deny──▶ denied (kept 30 days)

OTP:
  6 digits from `secrets`, stored as a bcrypt hash, valid for 120 s, one per
  email. Every wrong code counts an attempt; the fifth starts a 5 minute
  cooldown (the record's expiry is pushed out to cover it).

Approval:
  signup mints a single-use token (32 random bytes, hex) bound to the pending
  vendor and valid for 10 days, and mails approve/deny links to ADMIN_EMAIL.
  Admins can also decide by pending id. Either path deletes the pending record
  and every token bound to it.
"""
import secrets
from datetime import datetime, timedelta
from fastapi import HTTPException

from marketplace.config import (
    OTP_LENGTH, OTP_TTL_SECONDS, OTP_MAX_ATTEMPTS, OTP_COOLDOWN_SECONDS,
    APPROVAL_TOKEN_TTL_DAYS, DENIED_VENDOR_RETENTION_DAYS, ADMIN_EMAIL, BASE_URL,
    COMPANY_NAME_MIN, COMPANY_NAME_MAX, VENDOR_DESCRIPTION_MAX,
    INITIAL_SUBSCRIPTION_MONTHS, DEFAULT_PRODUCT_LIMIT
)
from marketplace.db import (
    get_db, save_db, find_by_id, find_one, remove_where, new_id, utcnow, iso, parse_dt,
    stamp, expires_in, purge_expired, record_activity, public, sort_records, paginate
)
from marketplace.validation import (
    missing_fields, is_email, normalize_email, is_phone, clean_str, id_list, password_errors
)
from marketplace.auth import hash_password, verify_password, category_refs
from marketplace import mail, subscription


def generate_otp() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(OTP_LENGTH))

# ============================================================
# PROFILE VALIDATION
# ============================================================
def validate_profile(db: dict, data: dict) -> dict:
    """Check the application fields shared by signup and admin creation.
    Returns the cleaned profile."""
    company = clean_str(data.get("companyName"))
    description = clean_str(data.get("description"))
    phone = clean_str(data.get("phone"))
    errors = []
    if len(company) < COMPANY_NAME_MIN:
        errors.append(f"Company name must be at least {COMPANY_NAME_MIN} characters long")
    if len(company) > COMPANY_NAME_MAX:
        errors.append(f"Company name cannot exceed {COMPANY_NAME_MAX} characters")
    if len(description) > VENDOR_DESCRIPTION_MAX:
        errors.append(f"Description cannot exceed {VENDOR_DESCRIPTION_MAX} characters")
    if phone and not is_phone(phone):
        errors.append("Please provide a valid phone number")
    categories = id_list(data.get("productCategory"))
    if not categories:
        errors.append("Product category is required")
    elif any(not find_by_id(db["categories"], cid) for cid in categories):
        errors.append("Invalid product category")
    if errors:
        raise HTTPException(400, f"Validation failed: {', '.join(errors)}")
    return {"companyName": company, "description": description, "phone": phone or None,
            "productCategory": list(dict.fromkeys(categories))}

def ensure_email_free(db: dict, email: str):
    if find_one(db["pending_vendors"], email=email):
        raise HTTPException(409, "Vendor request already pending")
    if find_one(db["vendors"], email=email):
        raise HTTPException(409, f"Account with {email} already exists. Please login instead.")

def vendor_record(email: str, password_hash: str, profile: dict, now: datetime,
                  approved_by: str = None, duration: int = INITIAL_SUBSCRIPTION_MONTHS,
                  start: datetime = None, max_product_limit: int = DEFAULT_PRODUCT_LIMIT) -> dict:
    """A fresh approved, unlocked vendor with an initial subscription."""
    vendor = {
        "id": new_id(), "email": email, "password": password_hash,
        "phone": profile.get("phone"), "companyName": profile["companyName"],
        "address": profile.get("address") or {}, "description": profile.get("description", ""),
        "productCategory": profile.get("productCategory", []), "avatar": None,
        "isActive": True, "isApproved": True, "isLocked": False,
        "approvedBy": approved_by, "approvedAt": iso(now), "rejectionReason": None,
        "deactivatedAt": None, "deactivationReason": None, "emailVerified": True,
        "maxProductLimit": max_product_limit,
        "subscription": subscription.new_subscription(duration, start or now),
        "lastLogin": None, "loginAttempts": 0, "lockUntil": None,
        "lockedAt": None, "lockReason": None,
    }
    return stamp(vendor, now)

# ============================================================
# STEP 1: SEND OTP
# ============================================================
async def send_otp(data: dict) -> dict:
    if missing_fields(data, "email", "companyName", "productCategory", "description"):
        raise HTTPException(400, "All required fields must be filled")
    if not is_email(data.get("email")):
        raise HTTPException(400, "Please provide a valid email address")
    email = normalize_email(data["email"])
    db = get_db()
    now = utcnow()
    purge_expired(db, now)
    if find_one(db["otps"], email=email):
        raise HTTPException(429, "OTP already sent. Please wait before requesting again.")
    ensure_email_free(db, email)

    otp = generate_otp()
    db["otps"].append({
        "id": new_id(), "email": email, "otpHash": hash_password(otp),
        "attempts": 0, "maxAttempts": OTP_MAX_ATTEMPTS, "cooldownStart": None,
        "cooldownSeconds": OTP_COOLDOWN_SECONDS,
        "createdAt": iso(now), "expiresAt": expires_in(now, seconds=OTP_TTL_SECONDS),
    })
    save_db(db)
    if not await mail.send_email(email, *mail.otp_email(otp, clean_str(data["companyName"]))):
        print(f"[Onboarding] OTP email to {email} was not delivered")
    print(f"[Onboarding] OTP issued for {email}")
    return {"email": email, "expiresIn": f"{max(1, OTP_TTL_SECONDS // 60)} minutes"}

# ============================================================
# STEP 2: SIGNUP
# ============================================================
def _check_otp(db: dict, email: str, code: str, now: datetime) -> dict:
    """Verify the code against the stored hash. Counts failures; raises on any problem."""
    record = find_one(db["otps"], email=email)
    if not record:
        raise HTTPException(400, "Invalid or expired OTP. Please request a new one.")
    cooldown_start = parse_dt(record.get("cooldownStart"))
    if cooldown_start:
        cooldown_end = cooldown_start + timedelta(seconds=record.get("cooldownSeconds", OTP_COOLDOWN_SECONDS))
        if now < cooldown_end:
            minutes = max(1, -(-int((cooldown_end - now).total_seconds()) // 60))
            raise HTTPException(429, f"Too many failed attempts. Please try again in {minutes} minutes.")
    if not verify_password(code, record.get("otpHash")):
        record["attempts"] = record.get("attempts", 0) + 1
        if record["attempts"] >= record.get("maxAttempts", OTP_MAX_ATTEMPTS):
            record["cooldownStart"] = iso(now)
            cooldown_expiry = now + timedelta(seconds=record.get("cooldownSeconds", OTP_COOLDOWN_SECONDS))
            if cooldown_expiry > parse_dt(record["expiresAt"]):
                record["expiresAt"] = iso(cooldown_expiry)
            print(f"[Onboarding] OTP cooldown started for {email}")
        save_db(db)
        raise HTTPException(400, "Invalid or expired OTP. Please request a new one.")
    return record

async def signup(data: dict) -> dict:
    if missing_fields(data, "email", "otp", "password", "confirmPassword", "companyName",
                      "productCategory", "description"):
        raise HTTPException(400, "All required fields must be filled")
    password = str(data["password"])
    errors = password_errors(password)
    if errors:
        raise HTTPException(400, f"Password validation failed: {', '.join(errors)}")
    if password != str(data["confirmPassword"]):
        raise HTTPException(400, "Passwords do not match")
    code = clean_str(data["otp"])
    if not (len(code) == OTP_LENGTH and code.isdigit() and code.isascii()):
        raise HTTPException(400, "Invalid OTP format. Please enter 6 digits.")
    if not is_email(data.get("email")):
        raise HTTPException(400, "Please provide a valid email address")

    email = normalize_email(data["email"])
    db = get_db()
    now = utcnow()
    purge_expired(db, now)
    profile = validate_profile(db, data)
    otp_record = _check_otp(db, email, code, now)

    db["otps"] = [o for o in db["otps"] if o["id"] != otp_record["id"]]
    try:
        ensure_email_free(db, email)
    except HTTPException:
        save_db(db)
        raise

    pending = stamp({"id": new_id(), "email": email, "password": hash_password(password), **profile}, now)
    db["pending_vendors"].append(pending)
    token = secrets.token_hex(32)
    db["approval_tokens"].append({
        "id": new_id(), "pendingVendorId": pending["id"], "token": token,
        "createdAt": iso(now), "expiresAt": expires_in(now, days=APPROVAL_TOKEN_TTL_DAYS),
    })
    record_activity(db, "vendor_signup", {"id": pending["id"], "role": "pending_vendor", "email": email},
                    {"companyName": pending["companyName"]})
    save_db(db)
    print(f"[Onboarding] Pending vendor created: {pending['companyName']} ({email})")

    query = f"vendorId={pending['id']}&token={token}"
    names = [c["name"] for c in category_refs(db, pending["productCategory"]) if c["name"]]
    sent = await mail.send_email(ADMIN_EMAIL, *mail.pending_approval_email(
        pending, names, f"{BASE_URL}/api/admin/approve?{query}", f"{BASE_URL}/api/admin/deny?{query}"))
    if not sent:
        print(f"[Onboarding] Approval email for {email} was not delivered")
    return {"vendorId": pending["id"], "companyName": pending["companyName"], "email": email,
            "status": "pending_approval", "submittedAt": pending["createdAt"]}

# ============================================================
# APPROVE / DENY
# ============================================================
def _resolve_token(db: dict, vendor_id: str, token: str, now: datetime) -> dict:
    """Pending vendor bound to a live token. The token itself is not consumed here."""
    if not token:
        raise HTTPException(400, "Token missing")
    record = find_one(db["approval_tokens"], token=token)
    if not record or (parse_dt(record.get("expiresAt")) or now) < now \
            or record["pendingVendorId"] != vendor_id:
        raise HTTPException(400, "Invalid or expired token")
    pending = find_by_id(db["pending_vendors"], record["pendingVendorId"])
    if not pending:
        raise HTTPException(404, "Pending vendor not found")
    return pending

def _discard_pending(db: dict, pending_id: str):
    remove_where(db, "pending_vendors", lambda p: p["id"] == pending_id)
    remove_where(db, "approval_tokens", lambda t: t["pendingVendorId"] == pending_id)

async def promote(db: dict, pending: dict, admin: dict = None) -> dict:
    """Turn a pending application into an approved vendor with the starter subscription."""
    now = utcnow()
    if find_one(db["vendors"], email=pending["email"]):
        raise HTTPException(409, f"Account with {pending['email']} already exists")
    vendor = vendor_record(pending["email"], pending["password"], pending, now,
                           approved_by=(admin or {}).get("id"))
    db["vendors"].append(vendor)
    _discard_pending(db, pending["id"])
    record_activity(db, "vendor_approved", admin, {"vendorId": vendor["id"], "email": vendor["email"]})
    save_db(db)
    print(f"[Onboarding] Vendor approved: {vendor['companyName']} until {vendor['subscription']['endDate']}")
    if not await mail.send_email(vendor["email"], *mail.vendor_approved_email(vendor["companyName"])):
        print(f"[Onboarding] Approval notice to {vendor['email']} was not delivered")
    return vendor

async def reject(db: dict, pending: dict, admin: dict = None, reason: str = None) -> dict:
    now = utcnow()
    reason = clean_str(reason) or None
    denied = {
        "id": new_id(), "email": pending["email"], "phone": pending.get("phone"),
        "companyName": pending["companyName"], "productCategory": pending.get("productCategory", []),
        "description": pending.get("description"), "deniedBy": (admin or {}).get("id"),
        "reason": reason, "createdAt": iso(now),
        "expiresAt": expires_in(now, days=DENIED_VENDOR_RETENTION_DAYS),
    }
    remove_where(db, "denied_vendors", lambda d: d["email"] == pending["email"])
    db["denied_vendors"].append(denied)
    _discard_pending(db, pending["id"])
    record_activity(db, "vendor_denied", admin, {"email": pending["email"], "reason": reason})
    save_db(db)
    print(f"[Onboarding] Vendor application denied: {pending['companyName']} ({pending['email']})")
    if not await mail.send_email(pending["email"], *mail.vendor_denied_email(pending["companyName"], reason)):
        print(f"[Onboarding] Denial notice to {pending['email']} was not delivered")
    return denied

async def approve_by_token(vendor_id: str, token: str) -> dict:
    db = get_db()
    pending = _resolve_token(db, vendor_id, token, utcnow())
    return await promote(db, pending)

async def deny_by_token(vendor_id: str, token: str) -> dict:
    db = get_db()
    pending = _resolve_token(db, vendor_id, token, utcnow())
    return await reject(db, pending)

def _pending_or_404(db: dict, pending_id: str) -> dict:
    pending = find_by_id(db["pending_vendors"], pending_id)
    if not pending:
        raise HTTPException(404, "Pending vendor not found")
    return pending

async def approve_by_id(pending_id: str, admin: dict) -> dict:
    db = get_db()
    return await promote(db, _pending_or_404(db, pending_id), admin)

async def deny_by_id(pending_id: str, admin: dict, reason: str = None) -> dict:
    db = get_db()
    return await reject(db, _pending_or_404(db, pending_id), admin, reason)

# ============================================================
# ADMIN LISTS
# ============================================================
def pending_list() -> list:
    db = get_db()
    rows = []
    for p in sort_records(list(db["pending_vendors"]), "createdAt", "desc"):
        row = public(p)
        row["productCategory"] = category_refs(db, p.get("productCategory"))
        rows.append(row)
    return rows

def clear_pending(admin: dict) -> int:
    db = get_db()
    count = len(db["pending_vendors"])
    db["pending_vendors"] = []
    db["approval_tokens"] = []
    record_activity(db, "pending_cleared", admin, {"count": count})
    save_db(db)
    print(f"[Onboarding] Cleared {count} pending vendor applications")
    return count

def denied_list(page: int = 1, limit: int = 20) -> tuple:
    db = get_db()
    purge_expired(db)
    rows = sort_records(list(db["denied_vendors"]), "createdAt", "desc")
    return paginate(rows, page, limit)
