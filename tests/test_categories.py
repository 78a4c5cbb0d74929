from fastapi import HTTPException

from marketplace import db as store, categories
from marketplace.config import UPLOAD_DIR

from conftest import PNG, run_together, stored_upload


def test_admin_creates_category_with_image(client, admin_headers):
    res = client.post("/api/categories", data={"name": " Home Decor ", "description": "Lamps"},
                      files={"image": ("decor.png", PNG, "image/png")}, headers=admin_headers)
    assert res.status_code == 201
    category = res.json()["data"]
    assert category["name"] == "Home Decor"
    assert category["image"]["public_id"].startswith("local:")
    filename = category["image"]["public_id"].split(":", 1)[1]
    assert (UPLOAD_DIR / filename).exists()

    served = client.get(category["image"]["url"])
    assert served.status_code == 200
    assert served.content == PNG


def test_category_names_are_unique_ignoring_case(client, admin_headers, make_category):
    make_category("fashion")
    res = client.post("/api/categories", json={"name": "Fashion"}, headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["message"] == "Category already exists"


def test_simultaneous_creates_keep_names_unique(slow_uploads):
    results = run_together(categories.create_category("Fashion", image=(PNG, "image/png")),
                           categories.create_category("fashion", image=(PNG, "image/png")))
    conflicts = [r for r in results if isinstance(r, HTTPException)]
    assert [e.status_code for e in conflicts] == [409]
    assert conflicts[0].detail == "Category already exists"
    stored = store.get_db()["categories"]
    assert len(stored) == 1
    assert len(slow_uploads) == 2
    kept = [h for h in slow_uploads if stored_upload(h).exists()]
    assert kept == [stored[0]["image"]]


def test_category_name_required(client, admin_headers):
    res = client.post("/api/categories", json={"description": "nameless"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Category name is required"


def test_vendor_cannot_create_category(client, vendor_headers):
    res = client.post("/api/categories", json={"name": "Books"}, headers=vendor_headers)
    assert res.status_code == 403


def test_non_image_upload_is_rejected(client, admin_headers):
    res = client.post("/api/categories", data={"name": "Docs"},
                      files={"image": ("notes.txt", b"hello", "text/plain")}, headers=admin_headers)
    assert res.status_code == 400
    assert store.get_db()["categories"] == []


def test_public_listing_paginates_and_searches(client, make_category):
    for name in ("Toys", "Tools", "Garden"):
        make_category(name)
    res = client.get("/api/categories", params={"limit": 2})
    body = res.json()
    assert body["count"] == 2
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 3, "hasNext": True, "hasPrev": False}
    found = client.get("/api/categories", params={"search": "to"}).json()
    assert sorted(c["name"] for c in found["data"]) == ["Tools", "Toys"]


def test_get_unknown_category_is_404(client):
    res = client.get("/api/categories/nope")
    assert res.status_code == 404
    assert res.json()["message"] == "Category not found"


def test_rename_conflict_and_success(client, admin_headers, make_category):
    books = make_category("Books")
    make_category("Music")
    res = client.put(f"/api/categories/{books['id']}", json={"name": "music"}, headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["message"] == "Category name already exists"
    res = client.put(f"/api/categories/{books['id']}", json={"name": "BOOKS", "description": "Novels"},
                     headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["name"] == "BOOKS"
    assert res.json()["data"]["description"] == "Novels"


def test_replacing_image_deletes_the_old_file(client, admin_headers):
    created = client.post("/api/categories", data={"name": "Art"}, files={"image": ("a.png", PNG, "image/png")},
                          headers=admin_headers).json()["data"]
    old_file = UPLOAD_DIR / created["image"]["public_id"].split(":", 1)[1]
    updated = client.put(f"/api/categories/{created['id']}", data={"name": "Art"},
                         files={"image": ("b.png", PNG, "image/png")}, headers=admin_headers).json()["data"]
    assert updated["image"]["public_id"] != created["image"]["public_id"]
    assert not old_file.exists()


def test_category_in_use_cannot_be_deleted(client, admin_headers, category, vendor):
    res = client.delete(f"/api/categories/{category['id']}", headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["message"] == "Category is in use by 0 products and 1 vendors"


def test_unused_category_is_deleted(client, admin_headers, make_category):
    spare = make_category("Spare")
    res = client.delete(f"/api/categories/{spare['id']}", headers=admin_headers)
    assert res.status_code == 200
    assert store.get_db()["categories"] == []


def test_upload_route_blocks_traversal(client):
    assert client.get("/api/uploads/..%5Csecret").status_code == 400
    assert client.get("/api/uploads/missing.png").status_code == 404
