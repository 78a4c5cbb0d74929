from datetime import timedelta

import pytest

from marketplace import db as store, banners

from conftest import PNG


@pytest.fixture
def make_banner(client, admin_headers, vendor):
    def make(title="Diwali Sale", days="7"):
        res = client.post("/api/banners/admin", data={"title": title, "vendorId": vendor["id"], "visibilityDays": days},
                          files={"image": ("banner.png", PNG, "image/png")}, headers=admin_headers)
        assert res.status_code == 201, res.json()
        return res.json()["data"]
    return make


def _expire(banner_id: str):
    db = store.get_db()
    banner = store.find_by_id(db["banners"], banner_id)
    banner["expiryDate"] = store.iso(store.utcnow() - timedelta(minutes=1))
    store.save_db(db)


def test_create_banner(make_banner, admin, vendor):
    banner = make_banner()
    assert banner["isVisible"] is True
    assert banner["visibilityDays"] == 7
    assert banner["vendor"]["companyName"] == "Acme Traders"
    assert banner["createdByAdmin"]["id"] == admin["id"]
    assert banner["imageUrl"].startswith("/api/uploads/")
    expiry = store.parse_dt(banner["expiryDate"]) - store.parse_dt(banner["createdAt"])
    assert expiry == timedelta(days=7)


@pytest.mark.parametrize("form,message", [
    ({"title": "Sale", "visibilityDays": "7"}, "Title, vendor ID and visibility days are required"),
    ({"title": "Sale", "vendorId": "x", "visibilityDays": "8"}, "Visibility days must be one of: 7, 10, 12, 15, 17, 30"),
    ({"title": "x" * 101, "vendorId": "x", "visibilityDays": "7"}, "Title cannot be more than 100 characters"),
])
def test_create_banner_validation(client, admin_headers, form, message):
    res = client.post("/api/banners/admin", data=form, files={"image": ("b.png", PNG, "image/png")},
                      headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["message"] == message


def test_create_banner_requires_image_and_known_vendor(client, admin_headers, vendor):
    res = client.post("/api/banners/admin", json={"title": "Sale", "vendorId": vendor["id"], "visibilityDays": 7},
                      headers=admin_headers)
    assert res.json()["message"] == "Banner image is required"
    res = client.post("/api/banners/admin", data={"title": "Sale", "vendorId": "ghost", "visibilityDays": "7"},
                      files={"image": ("b.png", PNG, "image/png")}, headers=admin_headers)
    assert res.status_code == 404


def test_vendor_cannot_manage_banners(client, vendor_headers):
    assert client.get("/api/banners/admin/all", headers=vendor_headers).status_code == 403


def test_expired_banners_are_hidden_on_read(client, make_banner):
    live = make_banner("Live")
    old = make_banner("Old")
    _expire(old["id"])

    res = client.get("/api/banners").json()
    assert res["count"] == 1
    assert res["data"][0]["title"] == "Live"
    assert res["data"][0]["vendor"]["companyName"] == "Acme Traders"
    assert store.find_by_id(store.get_db()["banners"], old["id"])["isVisible"] is False
    assert store.find_by_id(store.get_db()["banners"], live["id"])["isVisible"] is True


def test_sweep_returns_number_hidden(make_banner):
    first = make_banner()
    _expire(first["id"])
    db = store.get_db()
    assert banners.sweep_expired(db) == 1
    assert banners.sweep_expired(db) == 0


def test_stats_and_expiring_soon(client, make_banner, admin_headers):
    soon = make_banner("Soon")
    make_banner("Later", days="30")
    db = store.get_db()
    store.find_by_id(db["banners"], soon["id"])["expiryDate"] = store.iso(store.utcnow() + timedelta(days=2))
    store.save_db(db)

    stats = client.get("/api/banners/admin/stats", headers=admin_headers).json()["data"]
    assert stats == {"totalBanners": 2, "visibleBanners": 2, "expiredBanners": 0, "soonToExpire": 1}
    expiring = client.get("/api/banners/admin/expiring-soon", headers=admin_headers).json()
    assert [b["title"] for b in expiring["data"]] == ["Soon"]


def test_admin_listing_filters_visibility(client, make_banner, admin_headers):
    shown = make_banner("Shown")
    hidden = make_banner("Hidden")
    client.patch(f"/api/banners/admin/{hidden['id']}/toggle", headers=admin_headers)
    res = client.get("/api/banners/admin/all", params={"isVisible": "true"}, headers=admin_headers).json()
    assert [b["id"] for b in res["data"]] == [shown["id"]]
    assert res["pagination"]["total"] == 1


def test_toggle_visibility(client, make_banner, admin_headers):
    banner = make_banner()
    res = client.patch(f"/api/banners/admin/{banner['id']}/toggle", headers=admin_headers)
    assert res.json()["data"] == {"id": banner["id"], "title": "Diwali Sale", "isVisible": False}
    assert res.json()["message"] == "Banner disabled successfully"
    assert client.get("/api/banners").json()["count"] == 0


def test_update_recomputes_expiry_and_replaces_image(client, make_banner, admin_headers):
    banner = make_banner()
    res = client.put(f"/api/banners/admin/{banner['id']}", data={"visibilityDays": "30", "title": "Mega Sale"},
                     files={"image": ("new.png", PNG, "image/png")}, headers=admin_headers)
    assert res.status_code == 200
    updated = res.json()["data"]
    assert updated["title"] == "Mega Sale"
    assert updated["visibilityDays"] == 30
    span = store.parse_dt(updated["expiryDate"]) - store.parse_dt(updated["updatedAt"])
    assert span == timedelta(days=30)
    assert updated["publicId"] != banner["publicId"]
    assert client.get(banner["imageUrl"]).status_code == 404


def test_delete_banner(client, make_banner, admin_headers):
    banner = make_banner()
    res = client.delete(f"/api/banners/admin/{banner['id']}", headers=admin_headers)
    assert res.status_code == 200
    assert store.get_db()["banners"] == []
    assert client.get(banner["imageUrl"]).status_code == 404
    missing = client.get(f"/api/banners/admin/{banner['id']}", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == "Banner not found"
