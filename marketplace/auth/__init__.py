"""
Marketplace — Authentication & Guards
Password hashing, JWT cookies/bearer tokens, composable guard chains, login
with failed-attempt lockout and super-admin seeding.

Guards run over a shared context dict and raise HTTPException on failure:

    ctx = {"request": Request, "user": {id, email, name, role}, "vendor": {...}, "admin": {...}}

    protect_vendor = require(authenticated, vendor_role, live_vendor)

The first failing guard stops the chain; nothing after it runs.
"""
from datetime import datetime, timedelta
from fastapi import Request, Response, HTTPException
import bcrypt
import jwt as pyjwt

from marketplace.config import (
    JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_DAYS, COOKIE_NAME, COOKIE_SECURE, BCRYPT_ROUNDS,
    ROLE_VENDOR, ROLE_SUPERADMIN, LOGIN_MAX_ATTEMPTS, LOGIN_LOCK_HOURS,
    SUPERADMIN_EMAIL, SUPERADMIN_PASSWORD, SUPERADMIN_NAME
)
from marketplace.db import (
    get_db, save_db, find_by_id, find_one, new_id, utcnow, iso, parse_dt, stamp, record_activity
)
from marketplace.validation import normalize_email, require_strong_password
from marketplace import subscription

# ============================================================
# PASSWORD HASHING
# ============================================================
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()

def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(str(password).encode(), hashed.encode())
    except ValueError:
        return False

# ============================================================
# JWT
# ============================================================
CLEAR_COOKIE = (f"{COOKIE_NAME}=; expires=Thu, 01 Jan 1970 00:00:00 GMT; Path=/; "
                f"HttpOnly; SameSite=strict")

def _unauthorized(message: str) -> HTTPException:
    return HTTPException(401, message, headers={"set-cookie": CLEAR_COOKIE})

def create_jwt(user: dict) -> str:
    now = utcnow()
    payload = {
        "sub": user["id"], "email": user["email"], "name": user.get("name", ""),
        "role": user["role"],
        "exp": now + timedelta(days=JWT_EXPIRY_DAYS),
        "iat": now
    }
    return pyjwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

def decode_jwt(token: str) -> dict:
    try:
        return pyjwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except pyjwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except pyjwt.InvalidTokenError:
        raise _unauthorized("Access denied. Invalid token.")

def token_from_request(request: Request) -> str:
    """Cookie first, then `Authorization: Bearer`."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:].strip()
    return ""

def set_auth_cookie(response: Response, token: str):
    response.set_cookie(COOKIE_NAME, token, max_age=JWT_EXPIRY_DAYS * 24 * 3600,
                        httponly=True, secure=COOKIE_SECURE, samesite="strict")

def clear_auth_cookie(response: Response):
    response.delete_cookie(COOKIE_NAME, httponly=True, secure=COOKIE_SECURE, samesite="strict")

def _user_from_payload(payload: dict) -> dict:
    return {"id": payload.get("sub"), "email": payload.get("email"),
            "name": payload.get("name"), "role": payload.get("role")}

# ============================================================
# GUARDS
# ============================================================
def authenticated(ctx: dict):
    token = token_from_request(ctx["request"])
    if not token:
        raise _unauthorized("Access denied. No token provided.")
    payload = decode_jwt(token)
    if not payload.get("sub") or not payload.get("role"):
        raise _unauthorized("Access denied. Invalid token.")
    ctx["user"] = _user_from_payload(payload)

def vendor_role(ctx: dict):
    if ctx["user"]["role"] != ROLE_VENDOR:
        raise HTTPException(403, "Access denied. Vendor access required.")

def live_vendor(ctx: dict):
    """Re-fetch the vendor and check approval, lock and subscription expiry.
    An expired subscription is locked and persisted before refusing."""
    db = get_db()
    vendor = find_by_id(db["vendors"], ctx["user"]["id"])
    if not vendor:
        raise HTTPException(404, "Vendor not found")
    if not vendor.get("isApproved"):
        raise HTTPException(403, "Account pending approval. Please contact admin.")
    if vendor.get("isLocked"):
        raise HTTPException(403, "Account is locked. Please renew your subscription or contact support.")
    now = utcnow()
    if subscription.enforce_expiry(vendor, now):
        stamp(vendor, now)
        record_activity(db, "vendor_auto_locked", details={"vendorId": vendor["id"],
                                                            "reason": vendor["lockReason"]})
        save_db(db)
        print(f"[Auth] Auto-locked {vendor['email']}: subscription expired")
        raise HTTPException(403, "Subscription expired. Please renew your subscription to continue.")
    ctx["vendor"] = vendor
    ctx["subscription"] = subscription.subscription_info(vendor, now)

def admin_role(ctx: dict):
    if ctx["user"]["role"] != ROLE_SUPERADMIN:
        raise HTTPException(403, "Access denied. Super Admin access required.")

def live_admin(ctx: dict):
    admin = find_by_id(get_db()["superadmins"], ctx["user"]["id"])
    if not admin:
        raise HTTPException(404, "Super Admin not found")
    ctx["admin"] = admin

def vendor_or_admin(ctx: dict):
    role = ctx["user"]["role"]
    if role == ROLE_VENDOR:
        live_vendor(ctx)
    elif role == ROLE_SUPERADMIN:
        live_admin(ctx)
    else:
        raise HTTPException(403, f"Access denied. Role '{role}' is not authorized for this resource.")

def optional_user(ctx: dict):
    """Decode a credential when one is present; never fails."""
    ctx["user"] = None
    token = token_from_request(ctx["request"])
    if not token:
        return
    try:
        payload = decode_jwt(token)
    except HTTPException:
        return
    if payload.get("sub") and payload.get("role"):
        ctx["user"] = _user_from_payload(payload)

def is_admin(ctx: dict) -> bool:
    return bool(ctx.get("user")) and ctx["user"]["role"] == ROLE_SUPERADMIN

def ensure_owner(ctx: dict, owner_id: str, message: str = "Not authorized to access this resource"):
    """Vendors may only touch their own records; super admins bypass."""
    if is_admin(ctx):
        return
    if not ctx.get("user") or ctx["user"]["id"] != owner_id:
        raise HTTPException(403, message)

def require(*guards):
    """Compose guards into a FastAPI dependency returning the context."""
    async def dependency(request: Request) -> dict:
        ctx = {"request": request}
        for guard in guards:
            guard(ctx)
        return ctx
    return dependency

protect = require(authenticated)
protect_vendor = require(authenticated, vendor_role, live_vendor)
protect_admin = require(authenticated, admin_role, live_admin)
protect_vendor_or_admin = require(authenticated, vendor_or_admin)
optional_auth = require(optional_user)

# ============================================================
# VIEWS
# ============================================================
def category_refs(db: dict, ids: list) -> list:
    refs = []
    for cid in ids or []:
        cat = find_by_id(db["categories"], cid)
        refs.append({"id": cid, "name": cat["name"]} if cat else {"id": cid, "name": None})
    return refs

def vendor_summary(vendor: dict, db: dict, now: datetime = None) -> dict:
    now = now or utcnow()
    info = subscription.subscription_info(vendor, now)
    return {
        "id": vendor["id"], "email": vendor["email"], "companyName": vendor.get("companyName"),
        "phone": vendor.get("phone"), "role": ROLE_VENDOR,
        "productCategory": category_refs(db, vendor.get("productCategory")),
        "subscription": {
            "duration": info["duration"], "startDate": info["startDate"], "endDate": info["endDate"],
            "currentPlan": info["currentPlan"], "status": info["status"],
            "isExpired": info["status"] in ("expired", "inactive"),
            "daysRemaining": info["daysRemaining"],
        },
        "account": {
            "isLocked": bool(vendor.get("isLocked")), "isApproved": bool(vendor.get("isApproved")),
            "isActive": vendor.get("isActive", True), "maxProductLimit": vendor.get("maxProductLimit"),
        },
        "accountStatus": subscription.account_state(vendor, now),
    }

def admin_summary(admin: dict) -> dict:
    return {"id": admin["id"], "email": admin["email"], "name": admin.get("name"),
            "role": ROLE_SUPERADMIN}

# ============================================================
# LOGIN
# ============================================================
def _credentials(data: dict) -> tuple:
    email, password = normalize_email(data.get("email")), data.get("password")
    if not email or not password:
        raise HTTPException(400, "Please provide email and password")
    return email, str(password)

def vendor_login(data: dict) -> tuple:
    """Returns (token, body). Five consecutive failures lock login for two hours."""
    email, password = _credentials(data)
    db = get_db()
    vendor = find_one(db["vendors"], email=email)
    if not vendor:
        raise HTTPException(401, "Invalid email or password")
    now = utcnow()
    lock_until = parse_dt(vendor.get("lockUntil"))
    if lock_until and lock_until > now:
        minutes = max(1, int((lock_until - now).total_seconds() // 60))
        raise HTTPException(429, f"Too many failed login attempts. Try again in {minutes} minutes.")
    if not verify_password(password, vendor.get("password")):
        attempts = (0 if lock_until else vendor.get("loginAttempts", 0)) + 1
        vendor["loginAttempts"] = attempts
        vendor["lockUntil"] = None
        if attempts >= LOGIN_MAX_ATTEMPTS:
            vendor["lockUntil"] = iso(now + timedelta(hours=LOGIN_LOCK_HOURS))
            print(f"[Auth] Login locked for {email} after {attempts} failed attempts")
        save_db(db)
        raise HTTPException(401, "Invalid email or password")
    if not vendor.get("isApproved"):
        raise HTTPException(403, "Account pending approval. Please wait for admin approval.")
    vendor["loginAttempts"] = 0
    vendor["lockUntil"] = None
    vendor["lastLogin"] = iso(now)
    record_activity(db, "vendor_login", {"id": vendor["id"], "role": ROLE_VENDOR, "email": email})
    save_db(db)
    token = create_jwt({"id": vendor["id"], "email": email, "name": vendor.get("companyName", ""),
                        "role": ROLE_VENDOR})
    print(f"[Auth] Vendor logged in: {vendor.get('companyName')} ({email})")
    return token, {"vendor": vendor_summary(vendor, db, now), "token": token}

def admin_login(data: dict) -> tuple:
    email, password = _credentials(data)
    db = get_db()
    admin = find_one(db["superadmins"], email=email)
    if not admin or not verify_password(password, admin.get("password")):
        raise HTTPException(401, "Invalid email or password")
    admin["lastLogin"] = iso(utcnow())
    record_activity(db, "admin_login", {"id": admin["id"], "role": ROLE_SUPERADMIN, "email": email})
    save_db(db)
    token = create_jwt({"id": admin["id"], "email": email, "name": admin.get("name", ""),
                        "role": ROLE_SUPERADMIN})
    print(f"[Auth] Super Admin logged in: {email}")
    return token, {"admin": admin_summary(admin), "token": token}

def current_user(ctx: dict) -> dict:
    """GET /api/auth/me for either role."""
    db = get_db()
    user = ctx["user"]
    if user["role"] == ROLE_VENDOR:
        vendor = find_by_id(db["vendors"], user["id"])
        if not vendor:
            raise HTTPException(404, "Vendor not found")
        return vendor_summary(vendor, db)
    if user["role"] == ROLE_SUPERADMIN:
        admin = find_by_id(db["superadmins"], user["id"])
        if not admin:
            raise HTTPException(404, "Super Admin not found")
        return admin_summary(admin)
    raise HTTPException(400, "Invalid user role")

# ============================================================
# SUPER ADMIN SEED
# ============================================================
def create_superadmin(db: dict, email: str, password: str, name: str = "Super Admin") -> dict:
    email = normalize_email(email)
    if find_one(db["superadmins"], email=email):
        raise HTTPException(409, "Super Admin already exists")
    require_strong_password(password)
    admin = stamp({"id": new_id(), "email": email, "name": name, "password": hash_password(password),
                   "role": ROLE_SUPERADMIN})
    db["superadmins"].append(admin)
    return admin

def seed_superadmin() -> dict:
    """Create the configured super admin on startup if missing."""
    if not SUPERADMIN_EMAIL or not SUPERADMIN_PASSWORD:
        return None
    db = get_db()
    existing = find_one(db["superadmins"], email=SUPERADMIN_EMAIL)
    if existing:
        return existing
    try:
        admin = create_superadmin(db, SUPERADMIN_EMAIL, SUPERADMIN_PASSWORD, SUPERADMIN_NAME)
    except HTTPException as e:
        print(f"[Auth] Super admin not seeded: {e.detail}")
        return None
    save_db(db)
    print(f"[Auth] Seeded super admin {SUPERADMIN_EMAIL}")
    return admin
