"""
Marketplace — Configuration & Constants
All environment variables, feature flags and business rules.
"""
import os
from pathlib import Path

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR") or BASE_DIR / "data")
UPLOAD_DIR = DATA_DIR / "uploads"

for d in (DATA_DIR, UPLOAD_DIR):
    d.mkdir(parents=True, exist_ok=True)

DB_PATH = DATA_DIR / "db.json"

APP_NAME = "Marketplace API"
APP_VERSION = "1.0.0"

# ============================================================
# FEATURE FLAGS
# ============================================================
PERSIST_DATA = os.environ.get("PERSIST_DATA", "true").lower() == "true"
RESET_ON_START = os.environ.get("RESET_ON_START", "false").lower() == "true"
LOCK_EXPIRED_ON_START = os.environ.get("LOCK_EXPIRED_ON_START", "true").lower() == "true"

# ============================================================
# AUTH
# ============================================================
JWT_SECRET = os.environ.get("JWT_SECRET", os.urandom(32).hex())
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_DAYS = int(os.environ.get("JWT_EXPIRY_DAYS", "30"))
COOKIE_NAME = "token"
COOKIE_SECURE = os.environ.get("COOKIE_SECURE", "false").lower() == "true"
BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

ROLE_VENDOR = "vendor"
ROLE_SUPERADMIN = "superadmin"

LOGIN_MAX_ATTEMPTS = 5
LOGIN_LOCK_HOURS = 2

# ============================================================
# ONBOARDING (OTP + approval tokens)
# ============================================================
OTP_LENGTH = 6
OTP_TTL_SECONDS = int(os.environ.get("OTP_TTL_SECONDS", "120"))
OTP_MAX_ATTEMPTS = 5
OTP_COOLDOWN_SECONDS = 5 * 60
APPROVAL_TOKEN_TTL_DAYS = 10
DENIED_VENDOR_RETENTION_DAYS = 30

# ============================================================
# SUBSCRIPTIONS
# ============================================================
SUBSCRIPTION_PLANS = {
    1: "basic_1m",
    3: "standard_3m",
    6: "premium_6m",
    12: "enterprise_12m",
}
SUBSCRIPTION_DURATIONS = tuple(SUBSCRIPTION_PLANS)
INITIAL_SUBSCRIPTION_MONTHS = 1
EXPIRING_SOON_DAYS = 7
LOCK_REASON_EXPIRED = "subscription_expired"

DEFAULT_PRODUCT_LIMIT = 10
MIN_PRODUCT_LIMIT = 1
MAX_PRODUCT_LIMIT = 1000

# ============================================================
# CATALOG
# ============================================================
PRODUCT_TITLE_MIN = 3
PRODUCT_TITLE_MAX = 200
PRODUCT_DESCRIPTION_MAX = 2000
MAX_PRODUCT_IMAGES = 5
MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

COMPANY_NAME_MIN = 2
COMPANY_NAME_MAX = 100
VENDOR_DESCRIPTION_MAX = 1000
DEFAULT_COUNTRY = "India"

# ============================================================
# BANNERS
# ============================================================
BANNER_VISIBILITY_DAYS = (7, 10, 12, 15, 17, 30)
BANNER_TITLE_MAX = 100
BANNER_EXPIRING_SOON_DAYS = 3

# ============================================================
# MAIL (Resend)
# ============================================================
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "").strip()
MAIL_FROM = os.environ.get("MAIL_FROM", "Marketplace <no-reply@marketplace.local>")
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@marketplace.local")
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")
USE_REAL_MAIL = bool(RESEND_API_KEY)

# ============================================================
# MEDIA (Cloudinary)
# ============================================================
CLOUDINARY_CLOUD_NAME = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.environ.get("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.environ.get("CLOUDINARY_API_SECRET", "")
CLOUDINARY_FOLDER = os.environ.get("CLOUDINARY_FOLDER", "marketplace")
USE_CLOUDINARY = bool(CLOUDINARY_CLOUD_NAME and CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET)

# ============================================================
# RATE LIMITS
# ============================================================
RATE_LIMIT_ENABLED = os.environ.get("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_STORAGE_URI = os.environ.get("RATE_LIMIT_STORAGE_URI", "memory://")
RATE_LIMIT_LOGIN = os.environ.get("RATE_LIMIT_LOGIN", "10 per minute")
RATE_LIMIT_OTP = os.environ.get("RATE_LIMIT_OTP", "5 per minute")
RATE_LIMIT_SIGNUP = os.environ.get("RATE_LIMIT_SIGNUP", "5 per minute")
RATE_LIMIT_ORDERS = os.environ.get("RATE_LIMIT_ORDERS", "30 per minute")

# ============================================================
# SUPER ADMIN SEED
# ============================================================
SUPERADMIN_EMAIL = os.environ.get("SUPERADMIN_EMAIL", "").strip().lower()
SUPERADMIN_PASSWORD = os.environ.get("SUPERADMIN_PASSWORD", "")
SUPERADMIN_NAME = os.environ.get("SUPERADMIN_NAME", "Super Admin")

# ============================================================
# CORS
# ============================================================
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
