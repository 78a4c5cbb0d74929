"""
Marketplace — Input Validation
Password strength policy, email/phone formats and request-value coercion.
"""
import re
from fastapi import HTTPException

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
PASSWORD_SPECIALS = "@$!%*?&"

# ============================================================
# PASSWORD POLICY
# ============================================================
def password_errors(password) -> list:
    """All unmet password rules, in a fixed order. Empty list = acceptable."""
    if not password:
        return ["Password is required"]
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not any(c in PASSWORD_SPECIALS for c in password):
        errors.append(f"Password must contain at least one special character ({PASSWORD_SPECIALS})")
    return errors

def require_strong_password(password) -> None:
    errors = password_errors(password)
    if errors:
        raise HTTPException(400, f"Password validation failed: {', '.join(errors)}")

# ============================================================
# FORMATS
# ============================================================
def is_email(value) -> bool:
    return isinstance(value, str) and bool(EMAIL_RE.match(value.strip()))

def normalize_email(value) -> str:
    return str(value or "").strip().lower()

def is_phone(value) -> bool:
    return isinstance(value, str) and bool(PHONE_RE.match(re.sub(r"\s", "", value)))

# ============================================================
# COERCION
# ============================================================
def clean_str(value) -> str:
    """Trimmed string, '' for None."""
    if value is None:
        return ""
    return str(value).strip()

def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == [] or value == {}

def missing_fields(data: dict, *names) -> list:
    return [n for n in names if is_blank(data.get(n))]

def as_bool(value):
    """JSON/form/query boolean → bool, None when not a recognizable boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None

def as_positive_int(value):
    """Whole number ≥ 1, else None. Accepts '3' and 3.0 but not 2.5 or True."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number.is_integer() or number < 1:
        return None
    return int(number)

def as_price(value):
    """Non-negative number, else None."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None

def id_list(value) -> list:
    """Accept a list of ids, a single id, or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, list):
        items = value
    else:
        items = str(value).split(",")
    return [str(i).strip() for i in items if str(i).strip()]

def keyword_list(value) -> list:
    """Comma-separated string or list → lower-cased, trimmed, non-empty keywords."""
    if value is None:
        return []
    items = value if isinstance(value, list) else str(value).split(",")
    return [str(k).strip().lower() for k in items if str(k).strip()]
