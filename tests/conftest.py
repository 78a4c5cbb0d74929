import os, tempfile

# The app reads its configuration at import time.
os.environ["PERSIST_DATA"] = "false"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="marketplace-test-")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ADMIN_EMAIL"] = "review@marketplace.test"
for key in ("RESEND_API_KEY", "CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET",
            "DATABASE_URL", "SUPERADMIN_EMAIL", "SUPERADMIN_PASSWORD"):
    os.environ.pop(key, None)

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from marketplace import db as store, mail, media, auth, onboarding, subscription
from marketplace.config import ROLE_VENDOR, ROLE_SUPERADMIN, UPLOAD_DIR
from marketplace.server import app

PASSWORD = "Str0ng!Pass"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture(autouse=True)
def fresh_store():
    store.reset_db()
    mail.OUTBOX.clear()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_category():
    def make(name="Electronics", description="Gadgets and devices"):
        db = store.get_db()
        category = store.stamp({"id": store.new_id(), "name": name, "description": description, "image": None})
        db["categories"].append(category)
        store.save_db(db)
        return category
    return make


@pytest.fixture
def category(make_category):
    return make_category()


@pytest.fixture
def make_vendor(category):
    def make(email="vendor@example.com", company="Acme Traders", expired=False, **fields):
        db = store.get_db()
        now = store.utcnow()
        profile = {"companyName": company, "description": "Quality goods", "phone": "9876543210",
                   "productCategory": [category["id"]]}
        vendor = onboarding.vendor_record(email, auth.hash_password(PASSWORD), profile, now)
        if expired:
            vendor["subscription"] = subscription.new_subscription(1, now - timedelta(days=60))
        vendor.update(fields)
        db["vendors"].append(vendor)
        store.save_db(db)
        return vendor
    return make


@pytest.fixture
def vendor(make_vendor):
    return make_vendor()


@pytest.fixture
def admin():
    db = store.get_db()
    created = auth.create_superadmin(db, "admin@marketplace.test", PASSWORD, "Platform Admin")
    store.save_db(db)
    return created


def bearer(record: dict, role: str) -> dict:
    token = auth.create_jwt({"id": record["id"], "email": record["email"],
                             "name": record.get("companyName") or record.get("name", ""), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def vendor_headers(vendor):
    return bearer(vendor, ROLE_VENDOR)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin, ROLE_SUPERADMIN)


@pytest.fixture
def make_product(vendor, category):
    def make(title="Wireless Mouse", owner=None, approved=True, **fields):
        owner = owner or vendor
        db = store.get_db()
        product = store.stamp({
            "id": store.new_id(), "title": title, "slug": f"{title.lower().replace(' ', '-')}-{store.new_id()[:6]}",
            "description": fields.pop("description", "A reliable everyday product"),
            "category": category["id"], "vendor": owner["id"], "keywords": fields.pop("keywords", []),
            "images": [], "price": fields.pop("price", 10.0), "isApproved": approved,
            "approvalDate": store.iso(store.utcnow()) if approved else None, "rejectionReason": None,
            "views": 0, "isActive": True,
        })
        product.update(fields)
        db["products"].append(product)
        store.save_db(db)
        return product
    return make


@pytest.fixture
def slow_uploads(monkeypatch):
    """Uploads yield to the event loop first; returns every hosted record."""
    hosted = []
    real_upload = media.upload_image

    async def upload(content, content_type, folder):
        await asyncio.sleep(0.01)
        result = await real_upload(content, content_type, folder)
        hosted.append(result)
        return result

    monkeypatch.setattr(media, "upload_image", upload)
    return hosted


def run_together(*calls) -> list:
    async def gather():
        return await asyncio.gather(*calls, return_exceptions=True)
    return asyncio.run(gather())


def stored_upload(hosted: dict):
    return UPLOAD_DIR / hosted["public_id"].split(":", 1)[1]
