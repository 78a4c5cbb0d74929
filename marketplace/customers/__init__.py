"""
Marketplace — Customer Orders
Public order placement and tracking; order management and analytics for
admins and (scoped to their own orders) vendors.
"""
from collections import Counter
from datetime import timedelta
from fastapi import HTTPException

from marketplace.config import DEFAULT_COUNTRY, ROLE_VENDOR
from marketplace.db import (
    get_db, save_db, find_by_id, new_id, utcnow, iso, parse_dt, stamp, record_activity,
    matches_search, sort_records, paginate
)
from marketplace.validation import clean_str, is_email, normalize_email, as_positive_int, as_bool, id_list
from marketplace.auth import ensure_owner
from marketplace import mail, subscription

REQUIRED_FIELDS = ("vendorId", "productId", "quantity", "email", "number", "name", "address")
ADDRESS_REQUIRED = ("street", "city", "state", "zipCode")
UPDATABLE = ("quantity", "email", "number", "name", "address", "deliveredFlag")
SEARCH_FIELDS = ("name", "email", "number", "address.city", "address.state")

# ============================================================
# VIEWS
# ============================================================
def _status(order: dict) -> str:
    return "Delivered" if order.get("deliveredFlag") else "Pending"

def full_address(address: dict) -> str:
    return ", ".join(str(address[k]) for k in ("street", "city", "state", "zipCode", "country") if address.get(k))

def order_view(db: dict, order: dict, product_fields=("title", "price", "images"),
               vendor_fields=("companyName", "email", "phone")) -> dict:
    view = dict(order)
    product = find_by_id(db["products"], order.get("productId"))
    vendor = find_by_id(db["vendors"], order.get("vendorId"))
    view["product"] = {"id": product["id"], **{f: product.get(f) for f in product_fields}} if product else None
    view["vendor"] = {"id": vendor["id"], **{f: vendor.get(f) for f in vendor_fields}} if vendor else None
    view["status"] = _status(order)
    view["fullAddress"] = full_address(order.get("address") or {})
    return view

def order_details(db: dict, order: dict) -> dict:
    product = find_by_id(db["products"], order.get("productId")) or {}
    vendor = find_by_id(db["vendors"], order.get("vendorId")) or {}
    return {"orderId": order["id"], "customerName": order["name"], "productName": product.get("title"),
            "vendorName": vendor.get("companyName"), "quantity": order["quantity"],
            "orderDate": order["orderDate"], "status": _status(order),
            "fullAddress": full_address(order.get("address") or {})}

def _order_or_404(db: dict, order_id: str) -> dict:
    order = find_by_id(db["customers"], order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order

def _scoped_vendor(ctx: dict, vendor_id: str = None):
    """Vendors only ever see their own orders."""
    if ctx["user"]["role"] == ROLE_VENDOR:
        return ctx["user"]["id"]
    return vendor_id or None

# ============================================================
# PUBLIC
# ============================================================
def _clean_order_address(address: dict) -> dict:
    return {**{k: clean_str(address.get(k)) for k in ADDRESS_REQUIRED},
            "country": clean_str(address.get("country")) or DEFAULT_COUNTRY}

async def place_order(data: dict) -> dict:
    missing = [k for k in REQUIRED_FIELDS if data.get(k) is None or (isinstance(data[k], str) and not data[k].strip())]
    if missing:
        raise HTTPException(400, f"Missing required fields: {', '.join(missing)}")
    address = data["address"]
    if not isinstance(address, dict) or any(not clean_str(address.get(k)) for k in ADDRESS_REQUIRED):
        raise HTTPException(400, "Complete address is required (street, city, state, zipCode)")
    quantity = as_positive_int(data["quantity"])
    if quantity is None:
        raise HTTPException(400, "Quantity must be a positive whole number")
    if not is_email(data["email"]):
        raise HTTPException(400, "Please provide a valid email address")

    db = get_db()
    vendor_id, product_id = str(data["vendorId"]), str(data["productId"])
    vendor = find_by_id(db["vendors"], vendor_id)
    if not vendor:
        raise HTTPException(404, "Vendor not found")
    if not subscription.is_storefront_visible(vendor):
        raise HTTPException(400, "Vendor is currently unavailable for orders")
    product = find_by_id(db["products"], product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    if not product.get("isApproved") or not product.get("isActive", True):
        raise HTTPException(400, "Product is not available for purchase")
    if product["vendor"] != vendor_id:
        raise HTTPException(400, "Product does not belong to the specified vendor")

    now = utcnow()
    order = stamp({
        "id": new_id(), "vendorId": vendor_id, "productId": product_id, "quantity": quantity,
        "email": normalize_email(data["email"]), "number": clean_str(data["number"]),
        "name": clean_str(data["name"]), "address": _clean_order_address(address),
        "deliveredFlag": False, "deliveredAt": None, "orderDate": iso(now),
    }, now)
    db["customers"].append(order)
    record_activity(db, "order_placed", details={"orderId": order["id"], "vendorId": vendor_id,
                                                 "productId": product_id, "quantity": quantity})
    save_db(db)
    print(f"[Orders] {order['name']} ordered {quantity}x {product['title']} from {vendor['companyName']}")
    if not await mail.send_email(order["email"], *mail.order_placed_email(order, product, vendor)):
        print(f"[Orders] Confirmation for order {order['id']} was not delivered")
    return {"customer": order_view(db, order), "orderDetails": order_details(db, order)}

def get_order(order_id: str) -> dict:
    db = get_db()
    order = _order_or_404(db, order_id)
    view = order_view(db, order, ("title", "price", "images", "description"),
                      ("companyName", "email", "phone", "address"))
    return {"customer": view, "orderDetails": order_details(db, order)}

def order_status(order_id: str, email: str) -> dict:
    db = get_db()
    order = find_by_id(db["customers"], order_id)
    if not order or order["email"] != normalize_email(email):
        raise HTTPException(404, "Order not found or email mismatch")
    view = order_view(db, order, vendor_fields=("companyName", "phone"))
    return {"orderId": order["id"], "status": view["status"], "orderDate": order["orderDate"],
            "deliveredAt": order.get("deliveredAt"), "customerName": order["name"],
            "product": view["product"], "vendor": view["vendor"], "quantity": order["quantity"],
            "deliveryAddress": view["fullAddress"]}

# ============================================================
# MANAGEMENT (admin, or vendor on its own orders)
# ============================================================
def _date_filter(value, name: str):
    if not value:
        return None
    parsed = parse_dt(value)
    if not parsed:
        raise HTTPException(400, f"Invalid {name}")
    return parsed

def list_orders(ctx: dict, page=1, limit=20, vendor_id=None, product_id=None, delivered=None,
                search=None, sort_by="orderDate", sort_order="desc", start_date=None, end_date=None) -> dict:
    db = get_db()
    vendor_id = _scoped_vendor(ctx, vendor_id)
    start, end = _date_filter(start_date, "startDate"), _date_filter(end_date, "endDate")
    rows = []
    for o in db["customers"]:
        if vendor_id and o.get("vendorId") != vendor_id:
            continue
        if product_id and o.get("productId") != product_id:
            continue
        if delivered is not None and bool(o.get("deliveredFlag")) != delivered:
            continue
        ordered = parse_dt(o.get("orderDate"))
        if (start and ordered < start) or (end and ordered > end):
            continue
        if matches_search(o, search, SEARCH_FIELDS):
            rows.append(o)
    items, pagination = paginate(sort_records(rows, sort_by or "orderDate", sort_order), page, limit)
    delivered_count = sum(1 for o in rows if o.get("deliveredFlag"))
    return {
        "data": [order_view(db, o) for o in items],
        "pagination": pagination,
        "summary": {"totalOrders": len(rows), "deliveredOrders": delivered_count,
                    "pendingOrders": len(rows) - delivered_count,
                    "totalQuantity": sum(o.get("quantity", 0) for o in rows)},
    }

def analytics(ctx: dict, days: int = 30, vendor_id: str = None) -> dict:
    db = get_db()
    vendor_id = _scoped_vendor(ctx, vendor_id)
    since = utcnow() - timedelta(days=days)
    orders = [o for o in db["customers"] if (not vendor_id or o.get("vendorId") == vendor_id)
              and (parse_dt(o.get("orderDate")) or since) >= since]
    delivered = sum(1 for o in orders if o.get("deliveredFlag"))

    daily = {}
    for o in orders:
        day = parse_dt(o["orderDate"]).date().isoformat()
        entry = daily.setdefault(day, {"date": day, "orders": 0, "delivered": 0})
        entry["orders"] += 1
        entry["delivered"] += 1 if o.get("deliveredFlag") else 0

    per_product = {}
    for o in orders:
        entry = per_product.setdefault(o["productId"], {"productId": o["productId"], "orderCount": 0,
                                                        "totalQuantity": 0})
        entry["orderCount"] += 1
        entry["totalQuantity"] += o.get("quantity", 0)
    top_products = []
    for entry in sorted(per_product.values(), key=lambda e: e["orderCount"], reverse=True):
        product = find_by_id(db["products"], entry["productId"])
        if product:
            top_products.append({**entry, "productName": product["title"]})
        if len(top_products) == 10:
            break

    cities = Counter((o.get("address") or {}).get("city") for o in orders)
    return {
        "overview": {
            "totalOrders": len(orders), "deliveredOrders": delivered, "pendingOrders": len(orders) - delivered,
            "totalQuantity": sum(o.get("quantity", 0) for o in orders),
            "uniqueCustomers": len({o["email"] for o in orders}),
            "deliveryRate": round(delivered / len(orders) * 100, 2) if orders else 0,
        },
        "dailyOrders": [daily[d] for d in sorted(daily)],
        "topProducts": top_products,
        "topCities": [{"city": c, "orderCount": n} for c, n in cities.most_common(10)],
        "period": f"Last {days} days",
    }

def update_order(ctx: dict, order_id: str, data: dict) -> dict:
    db = get_db()
    order = _order_or_404(db, order_id)
    ensure_owner(ctx, order["vendorId"], "Access denied. You can only update your own customer orders")
    updates = {}
    if "quantity" in data:
        quantity = as_positive_int(data["quantity"])
        if quantity is None:
            raise HTTPException(400, "Quantity must be a positive whole number")
        updates["quantity"] = quantity
    if "email" in data:
        if not is_email(data["email"]):
            raise HTTPException(400, "Please provide a valid email address")
        updates["email"] = normalize_email(data["email"])
    for key in ("number", "name"):
        if key in data:
            value = clean_str(data[key])
            if not value:
                raise HTTPException(400, f"{key} cannot be empty")
            updates[key] = value
    if isinstance(data.get("address"), dict):
        merged = {**order.get("address", {}),
                  **{k: clean_str(v) for k, v in data["address"].items() if k in (*ADDRESS_REQUIRED, "country")}}
        if any(not merged.get(k) for k in ADDRESS_REQUIRED):
            raise HTTPException(400, "Complete address is required (street, city, state, zipCode)")
        updates["address"] = merged
    if "deliveredFlag" in data:
        flag = as_bool(data["deliveredFlag"])
        if flag is None:
            raise HTTPException(400, "deliveredFlag must be true or false")
        updates["deliveredFlag"] = flag
        updates["deliveredAt"] = (order.get("deliveredAt") or iso(utcnow())) if flag else None
    order.update(updates)
    stamp(order)
    record_activity(db, "order_updated", ctx["user"], {"orderId": order_id, "fields": sorted(updates)})
    save_db(db)
    print(f"[Orders] Order {order_id} updated by {ctx['user']['email']}")
    return order_view(db, order, ("title", "price"), ("companyName",))

def delete_order(ctx: dict, order_id: str) -> dict:
    db = get_db()
    order = _order_or_404(db, order_id)
    ensure_owner(ctx, order["vendorId"], "Access denied. You can only delete your own customer orders")
    db["customers"] = [o for o in db["customers"] if o["id"] != order_id]
    record_activity(db, "order_deleted", ctx["user"], {"orderId": order_id})
    save_db(db)
    print(f"[Orders] Order {order_id} deleted by {ctx['user']['email']}")
    return {"deletedOrder": {"id": order_id, "customerName": order["name"], "email": order["email"],
                             "orderDate": order["orderDate"]}}

def mark_delivered(ctx: dict, order_id: str) -> dict:
    db = get_db()
    order = _order_or_404(db, order_id)
    ensure_owner(ctx, order["vendorId"], "Access denied. You can only update your own customer orders")
    if order.get("deliveredFlag"):
        raise HTTPException(400, "Order is already marked as delivered")
    order["deliveredFlag"] = True
    order["deliveredAt"] = iso(utcnow())
    stamp(order)
    record_activity(db, "order_delivered", ctx["user"], {"orderId": order_id})
    save_db(db)
    print(f"[Orders] Order {order_id} delivered")
    return {"orderId": order_id, "customerName": order["name"], "deliveredFlag": True,
            "deliveredAt": order["deliveredAt"], "updatedAt": order["updatedAt"]}

def bulk_deliver(ctx: dict, data: dict) -> dict:
    ids = data.get("customerIds")
    if not isinstance(ids, list) or not ids:
        raise HTTPException(400, "Customer IDs array is required")
    ids = set(id_list(ids))
    db = get_db()
    vendor_id = _scoped_vendor(ctx)
    matched = [o for o in db["customers"] if o["id"] in ids and (not vendor_id or o["vendorId"] == vendor_id)]
    now = utcnow()
    modified = 0
    for o in matched:
        if not o.get("deliveredFlag"):
            o["deliveredFlag"] = True
            o["deliveredAt"] = iso(now)
            stamp(o, now)
            modified += 1
    record_activity(db, "orders_bulk_delivered", ctx["user"], {"matched": len(matched), "modified": modified})
    save_db(db)
    print(f"[Orders] Bulk delivery: {modified} orders marked delivered")
    return {"matched": len(matched), "modified": modified}
