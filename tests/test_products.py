from fastapi import HTTPException

from marketplace import db as store, products
from marketplace.config import ROLE_VENDOR

from conftest import PNG, bearer, run_together, stored_upload


def product_form(category, /, **overrides):
    form = {"title": "Ceramic Mug", "description": "Hand glazed mug", "category": category["id"],
            "keywords": "Kitchen, Coffee ", "price": "12.50"}
    form.update(overrides)
    return form


def test_vendor_creates_unapproved_product(client, vendor_headers, category):
    res = client.post("/api/products/create", data=product_form(category),
                      files=[("images", ("a.png", PNG, "image/png")), ("images", ("b.png", PNG, "image/png"))],
                      headers=vendor_headers)
    assert res.status_code == 201
    product = res.json()["data"]
    assert product["isApproved"] is False
    assert product["slug"].startswith("ceramic-mug-")
    assert product["keywords"] == ["kitchen", "coffee"]
    assert product["price"] == 12.5
    assert [img["index"] for img in product["images"]] == [0, 1]
    assert product["category"]["name"] == "Electronics"

    public = client.get("/api/products").json()
    assert public["total"] == 0


def test_product_quota_is_enforced_before_writing(client, make_vendor, make_product, category):
    small = make_vendor(email="small@example.com", maxProductLimit=1)
    make_product(owner=small)
    res = client.post("/api/products/create", data=product_form(category),
                      files={"images": ("a.png", PNG, "image/png")}, headers=bearer(small, ROLE_VENDOR))
    assert res.status_code == 403
    assert res.json()["message"] == "Product limit reached. Maximum allowed: 1"
    assert len(store.get_db()["products"]) == 1


def test_quota_is_checked_before_image_validation(client, make_vendor, make_product, category):
    full = make_vendor(email="full@example.com", maxProductLimit=1)
    make_product(owner=full)
    res = client.post("/api/products/create", data=product_form(category),
                      files={"images": ("notes.txt", b"plain text", "text/plain")}, headers=bearer(full, ROLE_VENDOR))
    assert res.status_code == 403
    assert res.json()["message"] == "Product limit reached. Maximum allowed: 1"


def test_simultaneous_creates_respect_the_quota(slow_uploads, make_vendor, category):
    small = make_vendor(email="small@example.com", maxProductLimit=1)
    form = {"title": "Ceramic Mug", "description": "Hand glazed mug", "category": category["id"], "price": "5"}
    results = run_together(products.create_product(small["id"], dict(form), [(PNG, "image/png")]),
                           products.create_product(small["id"], dict(form), [(PNG, "image/png")]))
    rejected = [r for r in results if isinstance(r, HTTPException)]
    assert [e.status_code for e in rejected] == [403]
    assert rejected[0].detail == "Product limit reached. Maximum allowed: 1"
    stored = store.get_db()["products"]
    assert len(stored) == 1
    kept = [h for h in slow_uploads if stored_upload(h).exists()]
    assert [h["public_id"] for h in kept] == [img["public_id"] for img in stored[0]["images"]]


def test_more_than_five_images_is_rejected(client, vendor_headers, category):
    files = [("images", (f"{i}.png", PNG, "image/png")) for i in range(6)]
    res = client.post("/api/products/create", data=product_form(category), files=files, headers=vendor_headers)
    assert res.status_code == 400
    assert store.get_db()["products"] == []


def test_create_validates_title_and_category(client, vendor_headers, category):
    res = client.post("/api/products/create", json=product_form(category, title="ab"), headers=vendor_headers)
    assert res.json()["message"] == "Title must be between 3 and 200 characters"
    res = client.post("/api/products/create", json=product_form(category, category="nope"), headers=vendor_headers)
    assert res.json()["message"] == "Invalid product category"
    res = client.post("/api/products/create", json=product_form(category, price="-3"), headers=vendor_headers)
    assert res.json()["message"] == "Price cannot be negative"


def test_unapproved_product_visible_only_to_owner_and_admin(client, make_product, make_vendor,
                                                            vendor_headers, admin_headers):
    draft = make_product(approved=False)
    assert client.get(f"/api/products/{draft['id']}").status_code == 404
    other = make_vendor(email="other@example.com")
    assert client.get(f"/api/products/{draft['id']}", headers=bearer(other, ROLE_VENDOR)).status_code == 404
    assert client.get(f"/api/products/{draft['id']}", headers=vendor_headers).status_code == 200
    assert client.get(f"/api/products/{draft['id']}", headers=admin_headers).status_code == 200


def test_approved_product_by_slug_counts_views(client, make_product):
    product = make_product()
    client.get(f"/api/products/{product['slug']}")
    res = client.get(f"/api/products/{product['slug']}")
    assert res.status_code == 200
    assert res.json()["data"]["views"] == 2
    assert res.json()["data"]["vendor"]["companyName"] == "Acme Traders"


def test_admin_moderation(client, make_product, admin_headers):
    draft = make_product(approved=False)
    res = client.patch(f"/api/products/admin/{draft['id']}/approve", json={}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Please specify approval status"

    res = client.patch(f"/api/products/admin/{draft['id']}/approve", json={"isApproved": False},
                       headers=admin_headers)
    assert res.json()["data"]["rejectionReason"] == "Rejected by admin"
    pending = client.get("/api/products/admin/all", params={"status": "rejected"}, headers=admin_headers).json()
    assert pending["count"] == 1

    res = client.patch(f"/api/products/admin/{draft['id']}/approve", json={"isApproved": True},
                       headers=admin_headers)
    assert res.json()["data"]["isApproved"] is True
    assert client.get("/api/products").json()["total"] == 1


def test_editing_title_resets_approval_and_slug(client, make_product, vendor_headers):
    product = make_product()
    res = client.put(f"/api/products/{product['id']}", json={"title": "Gaming Mouse", "price": 20},
                     headers=vendor_headers)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["isApproved"] is False
    assert updated["slug"].startswith("gaming-mouse-")
    assert updated["price"] == 20


def test_editing_price_keeps_approval(client, make_product, vendor_headers):
    product = make_product()
    res = client.put(f"/api/products/{product['id']}", json={"price": 15}, headers=vendor_headers)
    assert res.json()["data"]["isApproved"] is True


def test_vendor_cannot_edit_someone_elses_product(client, make_product, make_vendor):
    product = make_product()
    intruder = make_vendor(email="intruder@example.com")
    res = client.put(f"/api/products/{product['id']}", json={"price": 1}, headers=bearer(intruder, ROLE_VENDOR))
    assert res.status_code == 403
    assert res.json()["message"] == "Not authorized to modify this product"
    res = client.delete(f"/api/products/{product['id']}", headers=bearer(intruder, ROLE_VENDOR))
    assert res.status_code == 403


def test_image_management(client, vendor_headers, category):
    created = client.post("/api/products/create", data=product_form(category),
                          files={"images": ("a.png", PNG, "image/png")}, headers=vendor_headers).json()["data"]
    pid = created["id"]
    res = client.post(f"/api/products/{pid}/images", files=[("images", ("b.png", PNG, "image/png"))],
                      headers=vendor_headers)
    assert len(res.json()["data"]) == 2
    res = client.put(f"/api/products/{pid}/images/1", files={"image": ("c.png", PNG, "image/png")},
                     headers=vendor_headers)
    assert res.json()["data"][1]["public_id"] != created["images"][0]["public_id"]
    assert client.put(f"/api/products/{pid}/images/7", files={"image": ("c.png", PNG, "image/png")},
                      headers=vendor_headers).json()["message"] == "Invalid image index"
    res = client.delete(f"/api/products/{pid}/images/0", headers=vendor_headers)
    images = res.json()["data"]
    assert len(images) == 1 and images[0]["index"] == 0

    too_many = [("images", (f"{i}.png", PNG, "image/png")) for i in range(5)]
    res = client.post(f"/api/products/{pid}/images", files=too_many, headers=vendor_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Maximum 5 images allowed per product"


def test_simultaneous_image_uploads_respect_the_limit(slow_uploads, make_product, vendor):
    product = make_product()
    ctx = {"user": {"id": vendor["id"], "role": ROLE_VENDOR}}
    batch = [(PNG, "image/png")] * 3
    results = run_together(products.add_images(ctx, product["id"], batch),
                           products.add_images(ctx, product["id"], batch))
    rejected = [r for r in results if isinstance(r, HTTPException)]
    assert [e.status_code for e in rejected] == [400]
    images = store.find_by_id(store.get_db()["products"], product["id"])["images"]
    assert [img["index"] for img in images] == [0, 1, 2]
    assert len([h for h in slow_uploads if stored_upload(h).exists()]) == 3


def test_search_ranks_title_hits_first(client, make_product):
    make_product("Desk Lamp", description="Bright mouse-friendly lighting")
    make_product("Wireless Mouse", keywords=["office"])
    make_product("Keyboard", keywords=["mouse"])
    res = client.get("/api/products/search", params={"q": "mouse"}).json()
    assert [p["title"] for p in res["data"]] == ["Wireless Mouse", "Keyboard", "Desk Lamp"]
    cheap = client.get("/api/products/search", params={"q": "mouse", "sortBy": "price_low"}).json()
    assert cheap["total"] == 3
    assert client.get("/api/products/search").status_code == 400


def test_vendor_listing_hidden_when_vendor_locked(client, make_product, vendor):
    make_product()
    assert client.get(f"/api/products/vendor/{vendor['id']}").json()["total"] == 1
    db = store.get_db()
    store.find_by_id(db["vendors"], vendor["id"])["isLocked"] = True
    store.save_db(db)
    assert client.get(f"/api/products/vendor/{vendor['id']}").json()["total"] == 0


def test_my_products_filters_by_status(client, make_product, vendor_headers):
    make_product("Approved Item")
    make_product("Draft Item", approved=False)
    res = client.get("/api/products/my-products", params={"status": "pending"}, headers=vendor_headers).json()
    assert [p["title"] for p in res["data"]] == ["Draft Item"]


def test_delete_removes_product_and_images(client, vendor_headers, category):
    created = client.post("/api/products/create", data=product_form(category),
                          files={"images": ("a.png", PNG, "image/png")}, headers=vendor_headers).json()["data"]
    res = client.delete(f"/api/products/{created['id']}", headers=vendor_headers)
    assert res.status_code == 200
    assert store.get_db()["products"] == []
    assert client.get(created["images"][0]["url"]).status_code == 404
