"""
Marketplace — Email Dispatcher
Sends HTML mail through Resend. Without RESEND_API_KEY it runs in mock mode:
messages are printed and kept in OUTBOX instead of being delivered.

Delivery failures never propagate; callers get False and the failure is logged.
"""
import asyncio
from html import escape
import resend

from marketplace.config import RESEND_API_KEY, MAIL_FROM, USE_REAL_MAIL, OTP_TTL_SECONDS, APP_NAME

if USE_REAL_MAIL:
    resend.api_key = RESEND_API_KEY

OUTBOX = []
OUTBOX_MAX = 200

# ============================================================
# DISPATCH
# ============================================================
def _deliver(to: str, subject: str, html: str):
    return resend.Emails.send({"from": MAIL_FROM, "to": [to], "subject": subject, "html": html})

async def send_email(to: str, subject: str, html: str) -> bool:
    if not USE_REAL_MAIL:
        OUTBOX.append({"to": to, "subject": subject, "html": html})
        del OUTBOX[:-OUTBOX_MAX]
        print(f"[Mail] Mock mode: '{subject}' to {to}")
        return True
    try:
        response = await asyncio.to_thread(_deliver, to, subject, html)
    except Exception as e:
        print(f"[Mail] Failed to send '{subject}' to {to}: {e}")
        return False
    if not isinstance(response, dict) or not response.get("id"):
        print(f"[Mail] Unexpected Resend response for {to}: {response}")
        return False
    print(f"[Mail] Sent '{subject}' to {to}")
    return True

# ============================================================
# TEMPLATES
# ============================================================
def _layout(heading: str, body: str, accent: str = "#4f46e5") -> str:
    return f"""<!DOCTYPE html>
<html><body style="margin:0;background:#f4f5f7;font-family:Arial,Helvetica,sans-serif;">
  <div style="max-width:560px;margin:32px auto;background:#ffffff;border-radius:12px;overflow:hidden;">
    <div style="background:{accent};color:#ffffff;padding:20px 28px;font-size:20px;font-weight:bold;">{escape(heading)}</div>
    <div style="padding:24px 28px;color:#1f2937;font-size:15px;line-height:1.6;">{body}</div>
    <div style="padding:14px 28px;color:#9ca3af;font-size:12px;">{escape(APP_NAME)}</div>
  </div>
</body></html>"""

def otp_email(otp: str, company_name: str) -> tuple:
    minutes = max(1, OTP_TTL_SECONDS // 60)
    body = (f"<p>Hello {escape(company_name)},</p>"
            f"<p>Use this code to verify your email and complete your vendor registration:</p>"
            f"<p style=\"font-size:32px;letter-spacing:8px;font-weight:bold;text-align:center;\">{escape(otp)}</p>"
            f"<p>The code expires in {minutes} minutes. If you did not request it, ignore this email.</p>")
    return "Your vendor registration code", _layout("Verify your email", body)

def pending_approval_email(pending: dict, category_names: list, approve_link: str, deny_link: str) -> tuple:
    rows = [("Company", pending.get("companyName")), ("Email", pending.get("email")),
            ("Phone", pending.get("phone") or "-"), ("Categories", ", ".join(category_names) or "-"),
            ("Description", pending.get("description"))]
    table = "".join(f"<tr><td style=\"padding:4px 12px 4px 0;color:#6b7280;\">{k}</td>"
                    f"<td style=\"padding:4px 0;\">{escape(str(v or ''))}</td></tr>" for k, v in rows)
    body = (f"<p>A new vendor application is waiting for review.</p><table>{table}</table>"
            f"<p style=\"margin-top:24px;\">"
            f"<a href=\"{escape(approve_link)}\" style=\"background:#16a34a;color:#fff;padding:10px 18px;border-radius:6px;text-decoration:none;\">Approve</a> "
            f"<a href=\"{escape(deny_link)}\" style=\"background:#dc2626;color:#fff;padding:10px 18px;border-radius:6px;text-decoration:none;\">Deny</a></p>"
            f"<p style=\"color:#6b7280;font-size:13px;\">Each link works once.</p>")
    return f"New vendor application: {pending.get('companyName')}", _layout("Vendor approval required", body)

def vendor_approved_email(company_name: str) -> tuple:
    body = (f"<p>Congratulations {escape(company_name)}!</p>"
            "<p>Your vendor account has been approved. You can now log in with the email and "
            "password you registered with and start listing products.</p>"
            "<p>Your account starts with a one-month subscription.</p>")
    return "Your vendor account is approved", _layout("Welcome aboard", body, "#16a34a")

def vendor_denied_email(company_name: str, reason: str = None) -> tuple:
    reason_html = f"<p>Reason: {escape(reason)}</p>" if reason else ""
    body = (f"<p>Hello {escape(company_name)},</p>"
            "<p>After review we are unable to approve your vendor application at this time.</p>"
            f"{reason_html}<p>You are welcome to apply again later.</p>")
    return "Update on your vendor application", _layout("Application not approved", body, "#dc2626")

def order_placed_email(order: dict, product: dict, vendor: dict) -> tuple:
    address = order.get("address", {})
    addr = ", ".join(str(address.get(k)) for k in ("street", "city", "state", "zipCode", "country") if address.get(k))
    body = (f"<p>Hi {escape(order.get('name', ''))},</p>"
            f"<p>Thank you for your order. Here are the details:</p>"
            f"<ul><li>Order ID: {escape(order['id'])}</li>"
            f"<li>Product: {escape(product.get('title', ''))}</li>"
            f"<li>Quantity: {order.get('quantity')}</li>"
            f"<li>Seller: {escape(vendor.get('companyName', ''))}</li>"
            f"<li>Deliver to: {escape(addr)}</li></ul>"
            "<p>The seller will contact you about delivery.</p>")
    return f"Order confirmed: {product.get('title', '')}", _layout("Order placed", body)

def status_page(title: str, message: str, ok: bool = True) -> str:
    """Small standalone HTML page for the emailed approve/deny links."""
    accent = "#16a34a" if ok else "#dc2626"
    return _layout(title, f"<p>{escape(message)}</p>", accent)
