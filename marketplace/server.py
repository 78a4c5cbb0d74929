"""
Marketplace — Multi-Vendor Marketplace Backend
v1.0 — OTP-gated vendor onboarding with admin approval, subscription windows
       with automatic locking, product moderation, orders and banners
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response, Depends, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, HTMLResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace.config import (
    APP_NAME, APP_VERSION, CORS_ORIGINS, UPLOAD_DIR, RESET_ON_START, LOCK_EXPIRED_ON_START,
    USE_REAL_MAIL, USE_CLOUDINARY, BANNER_EXPIRING_SOON_DAYS,
    RATE_LIMIT_LOGIN, RATE_LIMIT_OTP, RATE_LIMIT_SIGNUP, RATE_LIMIT_ORDERS
)
from marketplace.db import DATABASE_URL, get_db, save_db, reset_db, sort_records
from marketplace.ratelimit import rate_limited
from marketplace.auth import (
    protect, protect_vendor, protect_admin, protect_vendor_or_admin, optional_auth,
    set_auth_cookie, clear_auth_cookie
)
from marketplace import (
    auth, mail, media, subscription, onboarding, categories, products, vendor, customers, banners
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if RESET_ON_START:
        reset_db()
        print("[DB] Store reset on startup")
    auth.seed_superadmin()
    if LOCK_EXPIRED_ON_START:
        db = get_db()
        if subscription.lock_expired_vendors(db):
            save_db(db)
    yield


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True,
                   allow_methods=["*"], allow_headers=["*"])

# ============================================================
# ERROR HANDLING
# ============================================================
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "message": exc.detail}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        field = ".".join(str(p) for p in errors[0].get("loc", ()) if p not in ("body", "query", "path"))
        message = f"Invalid {field}: {errors[0].get('msg')}" if field else errors[0].get("msg")
    else:
        message = "Invalid request"
    return JSONResponse({"success": False, "message": message}, status_code=400)

@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception):
    print(f"[Server] Unhandled error on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse({"success": False, "message": "Server Error"}, status_code=500)

# ============================================================
# HELPERS
# ============================================================
def ok(data=None, message: str = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body

async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

async def _payload(request: Request) -> tuple:
    """(fields, files) from a JSON, urlencoded or multipart body. files maps a
    field name to the list of non-empty uploads sent under it."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        return await _json_body(request), {}
    form = await request.form()
    fields, files = {}, {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if value.filename:
                files.setdefault(key, []).append(value)
        else:
            fields[key] = value
    return fields, files

async def _one_image(files: dict, field: str) -> Optional[tuple]:
    uploads = files.get(field) or []
    return await media.read_image(uploads[0]) if uploads else None

async def _all_images(files: dict, field: str) -> list:
    return [await media.read_image(u) for u in files.get(field) or []]

def _html(title: str, message: str, success: bool = True, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(mail.status_page(title, message, success), status_code=status_code)

# ============================================================
# SYSTEM
# ============================================================
@app.get("/api/health")
async def health():
    return {"status": "ok", "product": APP_NAME, "version": APP_VERSION,
            "mail": "resend" if USE_REAL_MAIL else "mock_mode",
            "images": "cloudinary" if USE_CLOUDINARY else "local",
            "database": "postgresql" if DATABASE_URL else "json_file"}

@app.get("/api/uploads/{filename}")
async def serve_upload(filename: str):
    """Serve locally hosted images (used when Cloudinary is not configured)."""
    if ".." in filename or "/" in filename or "\\" in filename:
        raise HTTPException(400, "Invalid filename")
    fp = UPLOAD_DIR / filename
    if not fp.resolve().is_relative_to(UPLOAD_DIR.resolve()):
        raise HTTPException(403, "Access denied")
    if not fp.exists():
        raise HTTPException(404, "File not found")
    return FileResponse(fp, media_type=media.EXT_TYPES.get(fp.suffix.lower(), "application/octet-stream"))

# ============================================================
# AUTH
# ============================================================
@app.post("/api/auth/vendor/login", dependencies=[Depends(rate_limited("login", RATE_LIMIT_LOGIN))])
async def vendor_login(request: Request, response: Response):
    token, body = auth.vendor_login(await _json_body(request))
    set_auth_cookie(response, token)
    return ok(body, "Login successful")

@app.post("/api/auth/admin/login", dependencies=[Depends(rate_limited("login", RATE_LIMIT_LOGIN))])
async def admin_login(request: Request, response: Response):
    token, body = auth.admin_login(await _json_body(request))
    set_auth_cookie(response, token)
    return ok(body, "Login successful")

@app.get("/api/auth/me")
async def me(ctx: dict = Depends(protect)):
    return ok(auth.current_user(ctx))

@app.post("/api/auth/logout")
async def logout(response: Response, ctx: dict = Depends(protect)):
    clear_auth_cookie(response)
    print(f"[Auth] Logged out {ctx['user']['email']}")
    return ok(message="Logged out successfully")

@app.get("/api/auth/vendor/dashboard")
async def vendor_welcome(ctx: dict = Depends(protect_vendor)):
    v = ctx["vendor"]
    return ok({"vendor": {"id": v["id"], "companyName": v["companyName"], "email": v["email"],
                          "subscription": v.get("subscription"), "isLocked": bool(v.get("isLocked")),
                          "maxProductLimit": v.get("maxProductLimit")},
               "subscriptionStatus": ctx["subscription"]},
              f"Welcome to vendor dashboard, {v['companyName']}!")

@app.get("/api/auth/admin/dashboard")
async def admin_welcome(ctx: dict = Depends(protect_admin)):
    admin = ctx["admin"]
    return ok({"admin": auth.admin_summary(admin)},
              f"Welcome to admin dashboard, {admin.get('name') or admin['email']}!")

# ============================================================
# ONBOARDING
# ============================================================
@app.post("/api/vendor/send-otp", dependencies=[Depends(rate_limited("otp", RATE_LIMIT_OTP))])
@app.post("/api/vendors/send-otp", dependencies=[Depends(rate_limited("otp", RATE_LIMIT_OTP))])
async def send_otp(request: Request):
    data = await onboarding.send_otp(await _json_body(request))
    return ok(data, "OTP sent to your email. Please verify within 2 minutes.")

@app.post("/api/vendor/signup", status_code=201,
          dependencies=[Depends(rate_limited("signup", RATE_LIMIT_SIGNUP))])
@app.post("/api/vendors/signup", status_code=201,
          dependencies=[Depends(rate_limited("signup", RATE_LIMIT_SIGNUP))])
async def signup(request: Request):
    data = await onboarding.signup(await _json_body(request))
    return ok(data, "Signup successful. Your account is pending admin approval.")

@app.get("/api/admin/approve", response_class=HTMLResponse)
async def approve_link(vendorId: str = None, token: str = None):
    try:
        approved = await onboarding.approve_by_token(vendorId, token)
    except HTTPException as e:
        return _html("Approval failed", e.detail, success=False, status_code=e.status_code)
    return _html("Vendor approved", f"{approved['companyName']} ({approved['email']}) can now sign in.")

@app.get("/api/admin/deny", response_class=HTMLResponse)
async def deny_link(vendorId: str = None, token: str = None):
    try:
        denied = await onboarding.deny_by_token(vendorId, token)
    except HTTPException as e:
        return _html("Denial failed", e.detail, success=False, status_code=e.status_code)
    return _html("Vendor denied", f"The application from {denied['companyName']} was denied.", success=False)

@app.get("/api/admin/pending-list")
async def pending_list(ctx: dict = Depends(protect_admin)):
    rows = onboarding.pending_list()
    return ok(rows, count=len(rows))

@app.post("/api/admin/approve-vendor/{pending_id}")
async def approve_pending(pending_id: str, ctx: dict = Depends(protect_admin)):
    approved = await onboarding.approve_by_id(pending_id, ctx["user"])
    return ok(vendor.serialize_vendor(get_db(), approved), "Vendor approved successfully")

@app.post("/api/admin/deny-vendor/{pending_id}")
async def deny_pending(pending_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    data = await _json_body(request)
    denied = await onboarding.deny_by_id(pending_id, ctx["user"], data.get("reason"))
    return ok(denied, "Vendor denied successfully")

@app.post("/api/admin/clear-pending")
async def clear_pending(ctx: dict = Depends(protect_admin)):
    count = onboarding.clear_pending(ctx["user"])
    return ok({"deletedCount": count}, f"Cleared {count} pending vendors")

@app.get("/api/admin/denied-list")
async def denied_list(page: int = 1, limit: int = 20, ctx: dict = Depends(protect_admin)):
    rows, pagination = onboarding.denied_list(page, limit)
    return ok(rows, count=len(rows), pagination=pagination)

@app.get("/api/admin/activity")
async def activity(limit: int = 50, action: str = None, ctx: dict = Depends(protect_admin)):
    entries = [e for e in get_db()["activity_log"] if not action or e["action"] == action]
    entries = sort_records(entries, "timestamp", "desc")[:max(1, min(limit, 500))]
    return ok(entries, count=len(entries))

# ============================================================
# CATEGORIES
# ============================================================
@app.get("/api/categories")
async def list_categories(page: int = 1, limit: int = 10, search: str = None):
    rows, pagination = categories.list_categories(page, limit, search)
    return ok(rows, count=len(rows), pagination=pagination)

@app.get("/api/categories/{category_id}")
async def get_category(category_id: str):
    return ok(categories.get_category(get_db(), category_id))

@app.post("/api/categories", status_code=201)
async def create_category(request: Request, ctx: dict = Depends(protect_admin)):
    fields, files = await _payload(request)
    category = await categories.create_category(fields.get("name"), fields.get("description"),
                                                await _one_image(files, "image"), ctx["user"])
    return ok(category, "Category created successfully")

@app.put("/api/categories/{category_id}")
async def update_category(category_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    fields, files = await _payload(request)
    category = await categories.update_category(category_id, fields.get("name"), fields.get("description"),
                                                await _one_image(files, "image"), ctx["user"])
    return ok(category, "Category updated successfully")

@app.delete("/api/categories/{category_id}")
async def delete_category(category_id: str, ctx: dict = Depends(protect_admin)):
    await categories.delete_category(category_id, ctx["user"])
    return ok(message="Category deleted successfully")

# ============================================================
# PRODUCTS
# ============================================================
@app.get("/api/products")
async def list_products(skip: int = 0, limit: int = 12, search: str = None, category: str = None,
                        sort_by: str = Query("createdAt", alias="sortBy"),
                        sort_order: str = Query("desc", alias="sortOrder")):
    return {"success": True, **products.list_public(skip, limit, search, category, sort_by, sort_order)}

@app.get("/api/products/search")
async def search_products(q: str = None, category: str = None, vendor_id: str = Query(None, alias="vendor"),
                          skip: int = 0, limit: int = 20,
                          sort_by: str = Query("relevance", alias="sortBy")):
    result = products.search(q, category, vendor_id, skip, limit, sort_by)
    return {"success": True, "query": q, **result}

@app.get("/api/products/category/{category_id}")
async def products_by_category(category_id: str, skip: int = 0, limit: int = 12,
                               sort_by: str = Query("createdAt", alias="sortBy")):
    categories.get_category(get_db(), category_id)
    return {"success": True, **products.by_category(category_id, skip, limit, sort_by)}

@app.get("/api/products/vendor/{vendor_id}")
async def products_by_vendor(vendor_id: str, skip: int = 0, limit: int = 12):
    return {"success": True, **products.by_vendor(vendor_id, skip, limit)}

@app.get("/api/products/my-products")
async def my_products(skip: int = 0, limit: int = 20, status: str = None, search: str = None,
                      sort_by: str = Query("createdAt", alias="sortBy"), ctx: dict = Depends(protect_vendor)):
    return {"success": True, **products.my_products(ctx["user"]["id"], skip, limit, status, search, sort_by)}

@app.post("/api/products/create", status_code=201)
async def create_product(request: Request, ctx: dict = Depends(protect_vendor)):
    products.check_quota(get_db(), ctx["vendor"])
    fields, files = await _payload(request)
    images = await _all_images(files, "images")
    product = await products.create_product(ctx["user"]["id"], fields, images, ctx["user"])
    return ok(product, "Product created successfully. Awaiting admin approval.")

@app.get("/api/products/admin/all")
async def admin_products(page: int = 1, limit: int = 20, status: str = None,
                         vendor_id: str = Query(None, alias="vendor"), search: str = None,
                         ctx: dict = Depends(protect_admin)):
    rows, pagination = products.admin_all(page, limit, status, vendor_id, search)
    return ok(rows, count=len(rows), pagination=pagination)

@app.get("/api/products/admin/{product_id}")
async def admin_product(product_id: str, ctx: dict = Depends(protect_admin)):
    return ok(products.admin_get(product_id))

@app.put("/api/products/admin/{product_id}")
async def admin_update_product(product_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    return ok(products.update_product(ctx, product_id, await _json_body(request)), "Product updated successfully")

@app.delete("/api/products/admin/{product_id}")
async def admin_delete_product(product_id: str, ctx: dict = Depends(protect_admin)):
    await products.delete_product(ctx, product_id)
    return ok(message="Product deleted successfully")

@app.patch("/api/products/admin/{product_id}/approve")
async def approve_product(product_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    product = products.set_approval(product_id, await _json_body(request), ctx["user"])
    return ok(product, f"Product {'approved' if product['isApproved'] else 'rejected'} successfully")

@app.get("/api/products/{id_or_slug}")
async def get_product(id_or_slug: str, ctx: dict = Depends(optional_auth)):
    return ok(products.get_product(id_or_slug, ctx))

@app.put("/api/products/{product_id}")
async def update_product(product_id: str, request: Request, ctx: dict = Depends(protect_vendor)):
    return ok(products.update_product(ctx, product_id, await _json_body(request)), "Product updated successfully")

@app.delete("/api/products/{product_id}")
async def delete_product(product_id: str, ctx: dict = Depends(protect_vendor)):
    await products.delete_product(ctx, product_id)
    return ok(message="Product deleted successfully")

@app.post("/api/products/{product_id}/images")
async def add_product_images(product_id: str, request: Request, ctx: dict = Depends(protect_vendor)):
    _, files = await _payload(request)
    images = await products.add_images(ctx, product_id, await _all_images(files, "images"))
    return ok(images, "Images added successfully")

@app.put("/api/products/{product_id}/images/{index}")
async def replace_product_image(product_id: str, index: int, request: Request,
                                ctx: dict = Depends(protect_vendor)):
    _, files = await _payload(request)
    image = await _one_image(files, "image") or await _one_image(files, "images")
    if not image:
        raise HTTPException(400, "No image uploaded")
    return ok(await products.replace_image(ctx, product_id, index, image), "Image replaced successfully")

@app.delete("/api/products/{product_id}/images/{index}")
async def remove_product_image(product_id: str, index: int, ctx: dict = Depends(protect_vendor)):
    return ok(await products.remove_image(ctx, product_id, index), "Image removed successfully")

# ============================================================
# VENDORS (public search + admin management)
# ============================================================
@app.get("/api/vendors/search")
async def search_vendors(q: str = None, category: str = None, limit: int = 10,
                         include_stats: bool = Query(False, alias="includeStats")):
    return {"success": True, **vendor.search_vendors(q, category, limit, include_stats)}

@app.get("/api/vendors/admin/all")
async def admin_vendors(page: int = 1, limit: int = 20,
                        is_approved: Optional[bool] = Query(None, alias="isApproved"),
                        is_locked: Optional[bool] = Query(None, alias="isLocked"),
                        is_active: Optional[bool] = Query(None, alias="isActive"),
                        category: str = None, search: str = None,
                        sort_by: str = Query("createdAt", alias="sortBy"),
                        sort_order: str = Query("desc", alias="sortOrder"),
                        subscription_status: str = Query(None, alias="subscriptionStatus"),
                        ctx: dict = Depends(protect_admin)):
    result = vendor.list_vendors(page, limit, is_approved, is_locked, is_active, category, search,
                                 sort_by, sort_order, subscription_status)
    return {"success": True, "count": len(result["data"]), **result}

@app.get("/api/vendors/admin/analytics")
async def vendor_analytics(days: int = 30, ctx: dict = Depends(protect_admin)):
    return ok(vendor.analytics(days))

@app.get("/api/vendors/admin/subscription-stats")
async def subscription_stats(ctx: dict = Depends(protect_admin)):
    return ok(vendor.subscription_stats())

@app.post("/api/vendors/admin/create-vendor", status_code=201)
async def create_vendor(request: Request, ctx: dict = Depends(protect_admin)):
    created = vendor.create_vendor(await _json_body(request), ctx["user"])
    return ok(created, "Vendor created successfully")

@app.patch("/api/vendors/admin/bulk-approve")
async def bulk_approve(request: Request, ctx: dict = Depends(protect_admin)):
    result = vendor.bulk_approve(await _json_body(request), ctx["user"])
    return ok(result, f"{result['modified']} vendors {result['action']} successfully")

@app.patch("/api/vendors/admin/bulk-subscription")
async def bulk_subscription(request: Request, ctx: dict = Depends(protect_admin)):
    result = vendor.bulk_subscription(await _json_body(request), ctx["user"])
    return ok(result, f"Subscription updated for {result['modified']} vendors")

@app.post("/api/vendors/admin/lock-expired")
async def lock_expired(ctx: dict = Depends(protect_admin)):
    count = vendor.lock_expired(ctx["user"])
    return ok({"lockedCount": count}, f"Locked {count} vendors with expired subscriptions")

@app.get("/api/vendors/admin/{vendor_id}")
async def admin_vendor(vendor_id: str, ctx: dict = Depends(protect_admin)):
    return ok(vendor.get_vendor(vendor_id))

@app.put("/api/vendors/admin/{vendor_id}")
async def admin_update_vendor(vendor_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    return ok(vendor.update_vendor(vendor_id, await _json_body(request), ctx["user"]),
              "Vendor updated successfully")

@app.delete("/api/vendors/admin/{vendor_id}")
async def admin_delete_vendor(vendor_id: str, ctx: dict = Depends(protect_admin)):
    return ok(await vendor.delete_vendor(vendor_id, ctx["user"]), "Vendor deleted successfully")

@app.patch("/api/vendors/admin/{vendor_id}/subscription")
async def admin_vendor_subscription(vendor_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    return ok(vendor.update_subscription(vendor_id, await _json_body(request), ctx["user"]),
              "Subscription updated successfully")

@app.patch("/api/vendors/admin/{vendor_id}/approve")
async def admin_approve_vendor(vendor_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    result = vendor.approve_vendor(vendor_id, await _json_body(request), ctx["user"])
    return ok(result, f"Vendor {'approved' if result['isApproved'] else 'disapproved'} successfully")

@app.patch("/api/vendors/admin/{vendor_id}/toggle-lock")
async def admin_toggle_lock(vendor_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    result = vendor.toggle_lock(vendor_id, await _json_body(request), ctx["user"])
    return ok(result, f"Vendor {result['action']} successfully")

# ============================================================
# VENDOR SELF-SERVICE PROFILE
# ============================================================
@app.get("/api/vendor/profile/me")
async def profile_me(ctx: dict = Depends(protect_vendor)):
    return ok(vendor.my_profile(ctx["user"]["id"]))

@app.put("/api/vendor/profile/me")
async def profile_update(request: Request, ctx: dict = Depends(protect_vendor)):
    return ok(vendor.update_my_profile(ctx["user"]["id"], await _json_body(request)),
              "Profile updated successfully")

@app.get("/api/vendor/profile/dashboard")
async def profile_dashboard(ctx: dict = Depends(protect_vendor)):
    return ok(vendor.dashboard(ctx["user"]["id"]))

@app.put("/api/vendor/profile/password")
async def profile_password(request: Request, ctx: dict = Depends(protect_vendor)):
    vendor.change_password(ctx["user"]["id"], await _json_body(request))
    return ok(message="Password updated successfully")

@app.put("/api/vendor/profile/email")
async def profile_email(request: Request, ctx: dict = Depends(protect_vendor)):
    return ok(vendor.change_email(ctx["user"]["id"], await _json_body(request)),
              "Email updated successfully. Please verify your new email address.")

@app.post("/api/vendor/profile/avatar")
async def profile_avatar(request: Request, ctx: dict = Depends(protect_vendor)):
    _, files = await _payload(request)
    image = await _one_image(files, "avatar")
    if not image:
        raise HTTPException(400, "Please upload an image file")
    return ok({"avatar": await vendor.upload_avatar(ctx["user"]["id"], image)},
              "Profile picture updated successfully")

@app.delete("/api/vendor/profile/avatar")
async def profile_avatar_delete(ctx: dict = Depends(protect_vendor)):
    await vendor.delete_avatar(ctx["user"]["id"])
    return ok(message="Profile picture deleted successfully")

@app.patch("/api/vendor/profile/deactivate")
async def profile_deactivate(request: Request, ctx: dict = Depends(protect_vendor)):
    vendor.deactivate_account(ctx["user"]["id"], await _json_body(request))
    return ok(message="Account deactivated successfully")

@app.patch("/api/vendor/profile/reactivate")
async def profile_reactivate(ctx: dict = Depends(protect_vendor)):
    return ok(vendor.reactivate_account(ctx["user"]["id"]), "Account reactivated successfully")

@app.delete("/api/vendor/profile/delete-account")
async def profile_delete(request: Request, response: Response, ctx: dict = Depends(protect_vendor)):
    result = await vendor.delete_account(ctx["user"]["id"], await _json_body(request))
    clear_auth_cookie(response)
    return ok(result, "Account deleted successfully")

@app.get("/api/vendor/profile/subscription")
async def profile_subscription(ctx: dict = Depends(protect_vendor)):
    return ok(vendor.my_subscription(ctx["user"]["id"]))

@app.get("/api/vendor/profile/status")
async def profile_status(ctx: dict = Depends(protect_vendor)):
    return ok(vendor.my_status(ctx["user"]["id"]))

# ============================================================
# CUSTOMERS (orders)
# ============================================================
@app.post("/api/customers", status_code=201, dependencies=[Depends(rate_limited("orders", RATE_LIMIT_ORDERS))])
async def place_order(request: Request):
    return ok(await customers.place_order(await _json_body(request)), "Order placed successfully")

@app.get("/api/customers/admin/all")
async def list_orders(page: int = 1, limit: int = 20, vendor_id: str = Query(None, alias="vendorId"),
                      product_id: str = Query(None, alias="productId"),
                      delivered: Optional[bool] = Query(None, alias="deliveredFlag"), search: str = None,
                      sort_by: str = Query("orderDate", alias="sortBy"),
                      sort_order: str = Query("desc", alias="sortOrder"),
                      start_date: str = Query(None, alias="startDate"),
                      end_date: str = Query(None, alias="endDate"),
                      ctx: dict = Depends(protect_vendor_or_admin)):
    result = customers.list_orders(ctx, page, limit, vendor_id, product_id, delivered, search,
                                   sort_by, sort_order, start_date, end_date)
    return {"success": True, "count": len(result["data"]), **result}

@app.get("/api/customers/admin/analytics")
async def order_analytics(days: int = 30, vendor_id: str = Query(None, alias="vendorId"),
                          ctx: dict = Depends(protect_vendor_or_admin)):
    return ok(customers.analytics(ctx, days, vendor_id))

@app.patch("/api/customers/admin/bulk-deliver")
async def bulk_deliver(request: Request, ctx: dict = Depends(protect_vendor_or_admin)):
    result = customers.bulk_deliver(ctx, await _json_body(request))
    return ok(result, f"{result['modified']} orders marked as delivered")

@app.put("/api/customers/admin/{order_id}")
async def update_order(order_id: str, request: Request, ctx: dict = Depends(protect_vendor_or_admin)):
    return ok(customers.update_order(ctx, order_id, await _json_body(request)), "Order updated successfully")

@app.delete("/api/customers/admin/{order_id}")
async def delete_order(order_id: str, ctx: dict = Depends(protect_vendor_or_admin)):
    return ok(customers.delete_order(ctx, order_id), "Order deleted successfully")

@app.patch("/api/customers/admin/{order_id}/deliver")
async def deliver_order(order_id: str, ctx: dict = Depends(protect_vendor_or_admin)):
    return ok(customers.mark_delivered(ctx, order_id), "Order marked as delivered")

@app.get("/api/customers/vendor/my-customers")
async def my_customers(page: int = 1, limit: int = 20, delivered: Optional[bool] = Query(None, alias="deliveredFlag"),
                       search: str = None, ctx: dict = Depends(protect_vendor)):
    result = customers.list_orders(ctx, page, limit, delivered=delivered, search=search)
    return {"success": True, "count": len(result["data"]), **result}

@app.get("/api/customers/vendor/my-analytics")
async def my_order_analytics(days: int = 30, ctx: dict = Depends(protect_vendor)):
    return ok(customers.analytics(ctx, days))

@app.get("/api/customers/status/{order_id}/{email}")
async def order_status(order_id: str, email: str):
    return ok(customers.order_status(order_id, email))

@app.get("/api/customers/{order_id}")
async def get_order(order_id: str):
    return ok(customers.get_order(order_id))

# ============================================================
# BANNERS
# ============================================================
@app.get("/api/banners")
async def visible_banners():
    rows = banners.visible_banners()
    return ok(rows, count=len(rows))

@app.get("/api/banners/admin/stats")
async def banner_stats(ctx: dict = Depends(protect_admin)):
    return ok(banners.stats())

@app.get("/api/banners/admin/all")
async def admin_banners(page: int = 1, limit: int = 10,
                        is_visible: Optional[bool] = Query(None, alias="isVisible"),
                        vendor_id: str = Query(None, alias="vendorId"), ctx: dict = Depends(protect_admin)):
    rows, pagination = banners.list_banners(page, limit, is_visible, vendor_id)
    return ok(rows, count=len(rows), pagination=pagination)

@app.get("/api/banners/admin/expiring-soon")
async def expiring_banners(days: int = BANNER_EXPIRING_SOON_DAYS, ctx: dict = Depends(protect_admin)):
    rows = banners.expiring_soon(days)
    return ok(rows, count=len(rows))

@app.post("/api/banners/admin", status_code=201)
async def create_banner(request: Request, ctx: dict = Depends(protect_admin)):
    fields, files = await _payload(request)
    banner = await banners.create_banner(fields, await _one_image(files, "image"), ctx["user"])
    return ok(banner, "Banner created successfully")

@app.get("/api/banners/admin/{banner_id}")
async def get_banner(banner_id: str, ctx: dict = Depends(protect_admin)):
    return ok(banners.get_banner(banner_id))

@app.put("/api/banners/admin/{banner_id}")
async def update_banner(banner_id: str, request: Request, ctx: dict = Depends(protect_admin)):
    fields, files = await _payload(request)
    banner = await banners.update_banner(banner_id, fields, await _one_image(files, "image"), ctx["user"])
    return ok(banner, "Banner updated successfully")

@app.delete("/api/banners/admin/{banner_id}")
async def delete_banner(banner_id: str, ctx: dict = Depends(protect_admin)):
    await banners.delete_banner(banner_id, ctx["user"])
    return ok(message="Banner deleted successfully")

@app.patch("/api/banners/admin/{banner_id}/toggle")
async def toggle_banner(banner_id: str, ctx: dict = Depends(protect_admin)):
    result = banners.toggle_visibility(banner_id, ctx["user"])
    return ok(result, f"Banner {'enabled' if result['isVisible'] else 'disabled'} successfully")


def main():
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    print(f"Starting {APP_NAME} v{APP_VERSION} on port {port}")
    print(f"Mail: {'Resend' if USE_REAL_MAIL else 'Mock Mode'} | Images: {'Cloudinary' if USE_CLOUDINARY else 'Local'}")
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
