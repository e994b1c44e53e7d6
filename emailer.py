import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional

from config import EMAIL_CONFIG, ADMIN_EMAILS, ENV
from logger import get_logger

log = get_logger("emailer")


def send_email(to_addrs: List[str], subject: str, html: str) -> None:
    if not to_addrs:
        log.warning(f"No recipients for email; skipping: {subject}")
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = EMAIL_CONFIG["from_addr"]
    msg["To"] = ", ".join(to_addrs)

    msg.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(EMAIL_CONFIG["smtp_server"], EMAIL_CONFIG["smtp_port"], timeout=30) as server:
            server.starttls()
            if EMAIL_CONFIG["smtp_password"]:
                server.login(EMAIL_CONFIG["smtp_username"], EMAIL_CONFIG["smtp_password"])
            server.sendmail(msg["From"], to_addrs, msg.as_string())
        log.info(f"Email sent: {subject} -> {to_addrs}")
    except (smtplib.SMTPException, OSError) as e:
        log.error(f"Failed sending email: {e}")


def notify_order_failure(
    order_id: str,
    step: str,
    status: str,
    error: str,
    recipients: Optional[List[str]] = None,
) -> None:
    """Admin alert for an order left in a send-failed or error status."""
    html = f"""
    <div style="font-family:Segoe UI,Arial,sans-serif; max-width:900px;">
      <h2 style="color:#b00020;">ONDC Callback Relay Failure ({escape(ENV)})</h2>
      <p><b>Order:</b> {escape(str(order_id))}</p>
      <p><b>Step:</b> {escape(step)}</p>
      <p><b>Status:</b> {escape(status)}</p>
      <p><b>Error:</b> {escape(error)}</p>
      <p style="color:#666;">The cached callback can be resent from the admin page or with
      scripts/resend_failed_callbacks.py.</p>
    </div>
    """
    send_email(
        ADMIN_EMAILS if recipients is None else recipients,
        f"ONDC relay FAILED - order {order_id} ({step})",
        html,
    )
