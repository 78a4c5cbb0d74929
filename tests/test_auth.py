from marketplace import db as store, auth
from marketplace.config import ROLE_VENDOR, LOCK_REASON_EXPIRED

from conftest import PASSWORD, bearer


def test_protected_route_without_token_is_401_and_clears_cookie(client):
    res = client.get("/api/auth/me")
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Access denied. No token provided."}
    assert "token=;" in res.headers["set-cookie"]


def test_garbage_token_is_rejected(client):
    res = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json()["message"] == "Access denied. Invalid token."


def test_vendor_login_sets_cookie_and_returns_summary(client, vendor):
    res = client.post("/api/auth/vendor/login", json={"email": "VENDOR@example.com", "password": PASSWORD})
    assert res.status_code == 200
    body = res.json()
    assert body["data"]["vendor"]["companyName"] == "Acme Traders"
    assert body["data"]["vendor"]["subscription"]["status"] == "active"
    assert body["data"]["token"]
    assert "httponly" in res.headers["set-cookie"].lower()
    assert store.find_by_id(store.get_db()["vendors"], vendor["id"])["lastLogin"]

    # the cookie alone now authenticates
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "vendor@example.com"


def test_login_requires_both_fields(client):
    res = client.post("/api/auth/vendor/login", json={"email": "vendor@example.com"})
    assert res.status_code == 400
    assert res.json()["message"] == "Please provide email and password"


def test_repeated_failed_logins_lock_the_account(client, vendor):
    for _ in range(5):
        res = client.post("/api/auth/vendor/login", json={"email": vendor["email"], "password": "Wrong!Pass1"})
        assert res.status_code == 401
    res = client.post("/api/auth/vendor/login", json={"email": vendor["email"], "password": PASSWORD})
    assert res.status_code == 429
    assert res.json()["message"].startswith("Too many failed login attempts")


def test_unapproved_vendor_cannot_log_in(client, make_vendor):
    make_vendor(email="waiting@example.com", isApproved=False)
    res = client.post("/api/auth/vendor/login", json={"email": "waiting@example.com", "password": PASSWORD})
    assert res.status_code == 403
    assert res.json()["message"] == "Account pending approval. Please wait for admin approval."


def test_admin_login_and_dashboard(client, admin):
    res = client.post("/api/auth/admin/login", json={"email": admin["email"], "password": PASSWORD})
    assert res.status_code == 200
    assert res.json()["data"]["admin"]["role"] == "superadmin"
    dash = client.get("/api/auth/admin/dashboard")
    assert dash.status_code == 200
    assert dash.json()["message"] == "Welcome to admin dashboard, Platform Admin!"


def test_admin_cannot_use_vendor_routes(client, admin_headers):
    res = client.get("/api/auth/vendor/dashboard", headers=admin_headers)
    assert res.status_code == 403
    assert res.json()["message"] == "Access denied. Vendor access required."


def test_vendor_cannot_use_admin_routes(client, vendor_headers):
    res = client.get("/api/admin/pending-list", headers=vendor_headers)
    assert res.status_code == 403
    assert res.json()["message"] == "Access denied. Super Admin access required."


def test_expired_subscription_auto_locks_on_access(client, make_vendor):
    expired = make_vendor(email="late@example.com", expired=True)
    res = client.get("/api/vendor/profile/me", headers=bearer(expired, ROLE_VENDOR))
    assert res.status_code == 403
    assert res.json()["message"] == "Subscription expired. Please renew your subscription to continue."
    stored = store.find_by_id(store.get_db()["vendors"], expired["id"])
    assert stored["isLocked"] is True
    assert stored["lockReason"] == LOCK_REASON_EXPIRED

    # once locked, the lock message takes over
    again = client.get("/api/vendor/profile/me", headers=bearer(expired, ROLE_VENDOR))
    assert again.json()["message"] == "Account is locked. Please renew your subscription or contact support."


def test_deleted_vendor_token_is_404(client, vendor, vendor_headers):
    db = store.get_db()
    db["vendors"] = []
    store.save_db(db)
    res = client.get("/api/auth/vendor/dashboard", headers=vendor_headers)
    assert res.status_code == 404
    assert res.json()["message"] == "Vendor not found"


def test_vendor_dashboard_welcome(client, vendor_headers):
    res = client.get("/api/auth/vendor/dashboard", headers=vendor_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Welcome to vendor dashboard, Acme Traders!"
    assert body["data"]["subscriptionStatus"]["status"] == "active"


def test_logout_clears_cookie(client, vendor_headers):
    res = client.post("/api/auth/logout", headers=vendor_headers)
    assert res.status_code == 200
    assert "token=" in res.headers["set-cookie"]


def test_seed_superadmin_is_idempotent(monkeypatch):
    monkeypatch.setattr(auth, "SUPERADMIN_EMAIL", "root@marketplace.test")
    monkeypatch.setattr(auth, "SUPERADMIN_PASSWORD", PASSWORD)
    first = auth.seed_superadmin()
    second = auth.seed_superadmin()
    assert first["id"] == second["id"]
    assert len(store.get_db()["superadmins"]) == 1


def test_unknown_route_uses_error_envelope(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.json()["success"] is False


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["mail"] == "mock_mode"
    assert body["images"] == "local"
