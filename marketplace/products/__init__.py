"""
Marketplace — Product Catalog
Vendor-owned products with hosted images, slugs, keyword search and admin moderation.

Rules:
  - New products start unapproved and only appear publicly once approved.
  - Editing the title or description sends a product back to review.
  - A vendor cannot hold more products than its maxProductLimit; the quota is
    checked before any image is uploaded.
  - Each product holds at most MAX_PRODUCT_IMAGES images, each tagged with its index.
"""
import time
from fastapi import HTTPException
from slugify import slugify

from marketplace.config import (
    PRODUCT_TITLE_MIN, PRODUCT_TITLE_MAX, PRODUCT_DESCRIPTION_MAX, MAX_PRODUCT_IMAGES
)
from marketplace.db import (
    get_db, save_db, find_by_id, find_one, new_id, utcnow, iso, stamp, record_activity,
    matches_search, sort_records, paginate
)
from marketplace.validation import clean_str, keyword_list, as_price, as_bool
from marketplace.auth import ensure_owner, is_admin
from marketplace import media, subscription

FOLDER = "products"
SEARCH_FIELDS = ("title", "description", "keywords")
SEARCH_SORTS = ("relevance", "price_low", "price_high", "newest")

# ============================================================
# SLUGS
# ============================================================
def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if not n:
            return out

def make_slug(db: dict, title: str, exclude_id: str = None) -> str:
    """slugify(title)-<base36 ms timestamp>, numbered further if that still collides."""
    base = f"{slugify(title) or 'product'}-{_base36(int(time.time() * 1000))}"
    taken = {p["slug"] for p in db["products"] if p["id"] != exclude_id}
    slug, n = base, 1
    while slug in taken:
        slug = f"{base}-{n}"
        n += 1
    return slug

# ============================================================
# VIEWS
# ============================================================
def product_view(db: dict, product: dict, vendor_fields=("companyName", "avatar")) -> dict:
    view = dict(product)
    vendor = find_by_id(db["vendors"], product.get("vendor"))
    category = find_by_id(db["categories"], product.get("category"))
    view["vendor"] = {"id": product.get("vendor"), **{f: vendor.get(f) for f in vendor_fields}} \
        if vendor else {"id": product.get("vendor")}
    view["category"] = {"id": category["id"], "name": category["name"]} if category \
        else {"id": product.get("category"), "name": None}
    view["primaryImage"] = product["images"][0] if product.get("images") else None
    return view

def _window(db: dict, rows: list, skip: int, limit: int, **kw) -> dict:
    skip, limit = max(0, skip), max(1, limit)
    page = rows[skip:skip + limit]
    return {"total": len(rows), "count": len(page), "data": [product_view(db, p, **kw) for p in page]}

def approval_status(product: dict) -> str:
    if product.get("isApproved"):
        return "approved"
    return "rejected" if product.get("rejectionReason") else "pending"

# ============================================================
# FIELD VALIDATION
# ============================================================
def clean_fields(db: dict, data: dict, partial: bool = False) -> dict:
    """Validate and trim the editable product fields present in `data`."""
    fields = {}
    if not partial or "title" in data:
        title = clean_str(data.get("title"))
        if not PRODUCT_TITLE_MIN <= len(title) <= PRODUCT_TITLE_MAX:
            raise HTTPException(400, f"Title must be between {PRODUCT_TITLE_MIN} and {PRODUCT_TITLE_MAX} characters")
        fields["title"] = title
    if not partial or "description" in data:
        description = clean_str(data.get("description"))
        if len(description) > PRODUCT_DESCRIPTION_MAX:
            raise HTTPException(400, f"Description cannot exceed {PRODUCT_DESCRIPTION_MAX} characters")
        fields["description"] = description
    if not partial or "category" in data:
        category = clean_str(data.get("category"))
        if not category:
            raise HTTPException(400, "Product category is required")
        if not find_by_id(db["categories"], category):
            raise HTTPException(400, "Invalid product category")
        fields["category"] = category
    if "keywords" in data:
        fields["keywords"] = keyword_list(data.get("keywords"))
    elif not partial:
        fields["keywords"] = []
    if "price" in data and data.get("price") not in (None, ""):
        price = as_price(data.get("price"))
        if price is None:
            raise HTTPException(400, "Price cannot be negative")
        fields["price"] = price
    elif not partial:
        fields["price"] = 0
    return fields

def _product_or_404(db: dict, product_id: str) -> dict:
    product = find_by_id(db["products"], product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product

def _owned(ctx: dict, db: dict, product_id: str) -> dict:
    product = _product_or_404(db, product_id)
    ensure_owner(ctx, product["vendor"], "Not authorized to modify this product")
    return product

def _reindex(product: dict):
    for i, img in enumerate(product["images"]):
        img["index"] = i

# ============================================================
# PUBLIC QUERIES
# ============================================================
def _live(product: dict) -> bool:
    return bool(product.get("isApproved")) and product.get("isActive", True)

def list_public(skip=0, limit=12, search=None, category=None, sort_by="createdAt", sort_order="desc") -> dict:
    db = get_db()
    rows = [p for p in db["products"] if _live(p) and matches_search(p, search, SEARCH_FIELDS)
            and (not category or p.get("category") == category)]
    return _window(db, sort_records(rows, sort_by or "createdAt", sort_order), skip, limit)

def relevance(product: dict, terms: list) -> int:
    """Weighted term hits: title x3, keywords x2, description x1."""
    title = (product.get("title") or "").lower()
    description = (product.get("description") or "").lower()
    keywords = [k.lower() for k in product.get("keywords") or []]
    score = 0
    for term in terms:
        score += 3 * (term in title) + 2 * any(term in k for k in keywords) + (term in description)
    return score

def search(q: str, category=None, vendor=None, skip=0, limit=20, sort_by="relevance") -> dict:
    terms = [t for t in clean_str(q).lower().split() if t]
    if not terms:
        raise HTTPException(400, "Search query is required")
    if sort_by not in SEARCH_SORTS:
        sort_by = "relevance"
    db = get_db()
    scored = []
    for p in db["products"]:
        if not _live(p) or (category and p.get("category") != category) or (vendor and p.get("vendor") != vendor):
            continue
        score = relevance(p, terms)
        if score:
            scored.append((score, p))
    if sort_by == "price_low":
        rows = sort_records([p for _, p in scored], "price", "asc")
    elif sort_by == "price_high":
        rows = sort_records([p for _, p in scored], "price", "desc")
    elif sort_by == "newest":
        rows = sort_records([p for _, p in scored], "createdAt", "desc")
    else:
        scored.sort(key=lambda sp: sp[1].get("createdAt") or "", reverse=True)
        scored.sort(key=lambda sp: sp[0], reverse=True)
        rows = [p for _, p in scored]
    return _window(db, rows, skip, limit)

def by_category(category_id: str, skip=0, limit=12, sort_by="createdAt") -> dict:
    db = get_db()
    rows = [p for p in db["products"] if _live(p) and p.get("category") == category_id]
    return _window(db, sort_records(rows, sort_by or "createdAt", "desc"), skip, limit)

def by_vendor(vendor_id: str, skip=0, limit=12) -> dict:
    """Empty listing when the vendor is unknown, unapproved or locked."""
    db = get_db()
    vendor = find_by_id(db["vendors"], vendor_id)
    if not vendor or not vendor.get("isApproved") or vendor.get("isLocked") \
            or subscription.is_expired(vendor):
        return {"total": 0, "count": 0, "data": []}
    rows = [p for p in db["products"] if _live(p) and p.get("vendor") == vendor_id]
    result = _window(db, sort_records(rows, "createdAt", "desc"), skip, limit)
    result["vendor"] = {"id": vendor["id"], "companyName": vendor.get("companyName"),
                        "description": vendor.get("description"), "avatar": vendor.get("avatar")}
    return result

def get_product(id_or_slug: str, ctx: dict) -> dict:
    """By id or slug. Unapproved products are visible only to their vendor or an admin;
    approved ones count a view."""
    db = get_db()
    product = find_by_id(db["products"], id_or_slug) or find_one(db["products"], slug=id_or_slug)
    if not product:
        raise HTTPException(404, "Product not found")
    user = ctx.get("user")
    if not product.get("isApproved"):
        if not user or not (is_admin(ctx) or user["id"] == product["vendor"]):
            raise HTTPException(404, "Product not found")
    else:
        product["views"] = product.get("views", 0) + 1
        save_db(db)
    return product_view(db, product, ("companyName", "avatar", "description"))

# ============================================================
# VENDOR OPERATIONS
# ============================================================
def my_products(vendor_id: str, skip=0, limit=20, status=None, search=None, sort_by="createdAt") -> dict:
    db = get_db()
    rows = [p for p in db["products"] if p.get("vendor") == vendor_id
            and (not status or approval_status(p) == status)
            and matches_search(p, search, ("title", "description"))]
    return _window(db, sort_records(rows, sort_by or "createdAt", "desc"), skip, limit)

def check_quota(db: dict, vendor: dict):
    if not subscription.can_operate(vendor):
        raise HTTPException(403, "Vendor account is locked")
    limit = vendor.get("maxProductLimit", 0)
    if sum(1 for p in db["products"] if p.get("vendor") == vendor["id"]) >= limit:
        raise HTTPException(403, f"Product limit reached. Maximum allowed: {limit}")

async def _discard(hosted: list):
    await media.delete_images([h.get("public_id") for h in hosted])

async def create_product(vendor_id: str, data: dict, images: list, actor: dict = None) -> dict:
    """images: already-read (content, content_type) pairs."""
    db = get_db()
    vendor = find_by_id(db["vendors"], vendor_id)
    if not vendor:
        raise HTTPException(404, "Vendor not found")
    check_quota(db, vendor)
    fields = clean_fields(db, data)
    if len(images) > MAX_PRODUCT_IMAGES:
        raise HTTPException(400, f"Too many files. Maximum is {MAX_PRODUCT_IMAGES} images")

    hosted, failed = await media.upload_images(images, FOLDER)
    if failed:
        print(f"[Products] {len(failed)} images skipped for '{fields['title']}'")
    # other requests ran during the upload; the quota must still hold
    db = get_db()
    vendor = find_by_id(db["vendors"], vendor_id)
    try:
        if not vendor:
            raise HTTPException(404, "Vendor not found")
        check_quota(db, vendor)
    except HTTPException:
        await _discard(hosted)
        raise
    product = stamp({
        "id": new_id(), **fields, "slug": make_slug(db, fields["title"]), "vendor": vendor_id,
        "images": [{**h, "index": i} for i, h in enumerate(hosted)],
        "isApproved": False, "approvalDate": None, "rejectionReason": None,
        "views": 0, "isActive": True,
    })
    db["products"].append(product)
    record_activity(db, "product_created", actor, {"productId": product["id"], "title": product["title"]})
    save_db(db)
    print(f"[Products] Created '{product['title']}' for vendor {vendor_id}")
    return product_view(db, product)

def update_product(ctx: dict, product_id: str, data: dict) -> dict:
    db = get_db()
    product = _owned(ctx, db, product_id)
    fields = clean_fields(db, data, partial=True)
    if is_admin(ctx) and "isActive" in data:
        active = as_bool(data.get("isActive"))
        if active is None:
            raise HTTPException(400, "isActive must be a boolean")
        fields["isActive"] = active
    if "title" in fields and fields["title"] != product["title"]:
        product["slug"] = make_slug(db, fields["title"], product_id)
    if "title" in fields or "description" in fields:
        fields.update(isApproved=False, approvalDate=None, rejectionReason=None)
    product.update(fields)
    stamp(product)
    record_activity(db, "product_updated", ctx.get("user"), {"productId": product_id})
    save_db(db)
    return product_view(db, product)

async def delete_product(ctx: dict, product_id: str) -> dict:
    db = get_db()
    product = _owned(ctx, db, product_id)
    db["products"] = [p for p in db["products"] if p["id"] != product_id]
    record_activity(db, "product_deleted", ctx.get("user"), {"productId": product_id, "title": product["title"]})
    save_db(db)
    result = await media.delete_images([img.get("public_id") for img in product.get("images", [])])
    print(f"[Products] Deleted '{product['title']}' ({result['deleted']}/{result['requested']} images removed)")
    return product

async def delete_vendor_products(db: dict, vendor_id: str) -> int:
    """Cascade for vendor deletion. Caller saves."""
    owned = [p for p in db["products"] if p.get("vendor") == vendor_id]
    db["products"] = [p for p in db["products"] if p.get("vendor") != vendor_id]
    await media.delete_images([img.get("public_id") for p in owned for img in p.get("images", [])])
    return len(owned)

async def add_images(ctx: dict, product_id: str, images: list) -> list:
    db = get_db()
    product = _owned(ctx, db, product_id)
    if not images:
        raise HTTPException(400, "No images uploaded")
    if len(product.get("images", [])) + len(images) > MAX_PRODUCT_IMAGES:
        raise HTTPException(400, f"Maximum {MAX_PRODUCT_IMAGES} images allowed per product")
    hosted, _ = await media.upload_images(images, FOLDER)
    db = get_db()
    try:
        product = _owned(ctx, db, product_id)
        if len(product.get("images", [])) + len(hosted) > MAX_PRODUCT_IMAGES:
            raise HTTPException(400, f"Maximum {MAX_PRODUCT_IMAGES} images allowed per product")
    except HTTPException:
        await _discard(hosted)
        raise
    product.setdefault("images", []).extend(hosted)
    _reindex(product)
    stamp(product)
    save_db(db)
    return product["images"]

def _image_index(product: dict, index: int) -> int:
    if index < 0 or index >= len(product.get("images", [])):
        raise HTTPException(400, "Invalid image index")
    return index

async def replace_image(ctx: dict, product_id: str, index: int, image: tuple) -> list:
    _image_index(_owned(ctx, get_db(), product_id), index)
    hosted = await media.upload_image(*image, FOLDER)
    db = get_db()
    try:
        product = _owned(ctx, db, product_id)
        _image_index(product, index)
    except HTTPException:
        await _discard([hosted])
        raise
    old = product["images"][index].get("public_id")
    product["images"][index] = {**hosted, "index": index}
    stamp(product)
    save_db(db)
    await media.delete_image(old)
    return product["images"]

async def remove_image(ctx: dict, product_id: str, index: int) -> list:
    db = get_db()
    product = _owned(ctx, db, product_id)
    removed = product["images"].pop(_image_index(product, index))
    _reindex(product)
    stamp(product)
    save_db(db)
    await media.delete_image(removed.get("public_id"))
    return product["images"]

# ============================================================
# ADMIN
# ============================================================
def admin_all(page=1, limit=20, status=None, vendor=None, search=None) -> tuple:
    db = get_db()
    rows = [p for p in db["products"]
            if (not status or approval_status(p) == status)
            and (not vendor or p.get("vendor") == vendor)
            and matches_search(p, search, SEARCH_FIELDS)]
    items, pagination = paginate(sort_records(rows, "createdAt", "desc"), page, limit)
    return [product_view(db, p, ("companyName", "email")) for p in items], pagination

def admin_get(product_id: str) -> dict:
    db = get_db()
    return product_view(db, _product_or_404(db, product_id), ("companyName", "email", "avatar"))

def set_approval(product_id: str, data: dict, actor: dict = None) -> dict:
    approved = data.get("isApproved")
    if not isinstance(approved, bool):
        raise HTTPException(400, "Please specify approval status")
    db = get_db()
    product = _product_or_404(db, product_id)
    product["isApproved"] = approved
    product["approvalDate"] = iso(utcnow()) if approved else None
    product["rejectionReason"] = None if approved else (clean_str(data.get("reason")) or "Rejected by admin")
    stamp(product)
    record_activity(db, "product_approved" if approved else "product_rejected", actor,
                    {"productId": product_id, "reason": product["rejectionReason"]})
    save_db(db)
    print(f"[Products] '{product['title']}' {'approved' if approved else 'rejected'}")
    return product_view(db, product)
