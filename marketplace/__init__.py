"""
Marketplace — Modular Backend Package (v1.0.0)

Architecture:
  marketplace/
  ├── config/        — Environment variables, feature flags, business constants
  ├── db/            — Document store (JSON file / PostgreSQL), query helpers
  ├── validation/    — Password policy, email/phone formats, coercion helpers
  ├── ratelimit/     — Per-caller moving-window rate limiter
  ├── mail/          — Resend dispatcher + HTML templates
  ├── media/         — Image hosting (Cloudinary, local fallback)
  ├── auth/          — JWT, password hashing, guard chains, login lockout
  ├── subscription/  — Subscription windows, account state, lock transitions
  ├── onboarding/    — OTP signup → pending vendor → approve / deny
  ├── categories/    — Category catalogue
  ├── products/      — Product listings, search, images, moderation
  ├── vendor/        — Admin vendor management + vendor self-service profile
  ├── customers/     — Orders, delivery tracking, analytics
  ├── banners/       — Promotional banners with visibility windows
  └── server.py      — FastAPI routing layer

Each module is self-contained with clear imports and no circular dependencies.
"""
