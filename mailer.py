"""
EMAIL NOTIFICATION SERVICE

- Sends transactional email through the SendGrid v3 HTTP API
- Falls back to development mode (log only) when no API key is configured
- Every attempt is written to SCM_NotificationLog
- Users on a daily/weekly frequency also get the event queued for their digest,
  which send_digests() later mails out as one summary per user
- A failed send never fails the request that triggered it
"""
import re
import json
import time
from collections import Counter
import logging
import requests
from datetime import datetime

from config import Config
from models import (model, Users, SCM_NotificationPreferences, SCM_NotificationLog,
                    SCM_NotificationDigestQueue)

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

EMAIL_FREQUENCIES = ["immediate", "daily", "weekly", "never"]

DEFAULT_PREFERENCES = {
    "notify_shipment_arrival":    True,
    "notify_inspection_failed":   True,
    "notify_inspection_passed":   True,
    "notify_warehouse_capacity":  True,
    "notify_delayed_shipment":    True,
    "notify_post_arrival_update": True,
    "notify_workflow_assigned":   True,
    "email_enabled":              True,
    "email_frequency":            "immediate",
    "email_address":              None,
}


# ── Preferences ────────────────────────────────────────────────────────────────
def _prefs_row(user_id):
    return model.query(SCM_NotificationPreferences).filter_by(UserID=user_id).one_or_none()

def get_preferences(user_id):
    row = _prefs_row(user_id)
    if not row:
        return dict(DEFAULT_PREFERENCES)
    return {key: getattr(row, key) for key in DEFAULT_PREFERENCES}

def update_preferences(user_id, data):
    row = _prefs_row(user_id)
    if not row:
        row = SCM_NotificationPreferences(UserID=user_id, **DEFAULT_PREFERENCES)
        model.add(row)
    for key in DEFAULT_PREFERENCES:
        if key in data:
            setattr(row, key, data[key])
    row.UpdatedAt = datetime.utcnow()
    model.commit()
    return get_preferences(user_id)


# ── Delivery ───────────────────────────────────────────────────────────────────
def _plain_text(html):
    return re.sub(r"<[^>]*>", "", html or "").strip()

def send_email(to_email, subject, html_content, text_content=None):
    """Returns {"success": True, "messageId": ...} or {"success": False, "error": ...}."""
    if not to_email:
        return {"success": False, "error": "Email address is required"}

    text_content = text_content or _plain_text(html_content)

    if not Config.SENDGRID_API_KEY:
        logger.info("[DEV MODE] Would send email to %s: %s", to_email, subject)
        return {"success": True, "messageId": f"dev-{int(time.time() * 1000)}"}

    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": Config.NOTIFICATION_EMAIL_FROM},
        "subject": subject,
        "content": [
            {"type": "text/plain", "value": text_content},
            {"type": "text/html", "value": html_content},
        ],
    }
    headers = {
        "Authorization": f"Bearer {Config.SENDGRID_API_KEY}",
        "Content-Type": "application/json",
    }
    try:
        response = requests.post(SENDGRID_API_URL, json=payload, headers=headers,
                                 timeout=Config.EMAIL_TIMEOUT)
        response.raise_for_status()
    except requests.exceptions.Timeout:
        logger.error("Email API timeout sending to %s", to_email)
        return {"success": False, "error": "Email API timeout"}
    except requests.exceptions.RequestException as e:
        logger.error("Email API error sending to %s: %s", to_email, e)
        return {"success": False, "error": str(e)}

    message_id = response.headers.get("X-Message-Id", f"sg-{int(time.time() * 1000)}")
    logger.info("Email sent to %s (%s)", to_email, message_id)
    return {"success": True, "messageId": message_id}

def log_notification(user_id, event_type, subject, message, shipment_id=None,
                     status="sent", error_message=None):
    try:
        model.add(SCM_NotificationLog(
            UserID=user_id, EventType=event_type, ShipmentID=shipment_id,
            Subject=subject, Message=message, Status=status, ErrorMessage=error_message,
        ))
        model.commit()
    except Exception:
        model.rollback()
        logger.exception("Error logging notification for user %s", user_id)

def queue_for_digest(user_id, event_type, event_data, shipment_id=None):
    try:
        model.add(SCM_NotificationDigestQueue(
            UserID=user_id, EventType=event_type, ShipmentID=shipment_id,
            EventData=json.dumps(event_data, default=str),
        ))
        model.commit()
    except Exception:
        model.rollback()
        logger.exception("Error queueing digest notification for user %s", user_id)

def email_for(user_id, prefs=None):
    prefs = prefs or get_preferences(user_id)
    if prefs.get("email_address"):
        return prefs["email_address"]
    user = model.get(Users, user_id)
    return user.Email if user else None


# ── Events ─────────────────────────────────────────────────────────────────────
def _deliver(user_id, pref_key, event_type, subject, html, shipment_id=None, event_data=None):
    prefs = get_preferences(user_id)
    if not prefs.get(pref_key) or not prefs.get("email_enabled"):
        return None
    if prefs.get("email_frequency") == "never":
        return None

    if prefs.get("email_frequency") != "immediate":
        queue_for_digest(user_id, event_type, event_data or {"subject": subject}, shipment_id)
        return None

    address = email_for(user_id, prefs)
    if not address:
        return None

    result = send_email(address, subject, html)
    log_notification(user_id, event_type, subject, html, shipment_id,
                     "sent" if result["success"] else "failed", result.get("error"))
    return result

def _broadcast(pref_key, event_type, subject, html, shipment_id=None, event_data=None):
    for (user_id,) in model.query(Users.UserID).all():
        try:
            _deliver(user_id, pref_key, event_type, subject, html, shipment_id, event_data)
        except Exception:
            logger.exception("Notification %s failed for user %s", event_type, user_id)

def _details(rows):
    items = "".join(f"<dt><strong>{label}:</strong></dt><dd>{value}</dd>" for label, value in rows)
    return f"<dl>{items}</dl>"

def notify_shipment_arrival(shipment):
    subject = f"Shipment Arrived: {shipment.get('orderRef')}"
    html = (
        "<h2>Shipment Arrival Notification</h2>"
        "<p>A shipment has arrived at the warehouse.</p>"
        + _details([
            ("Order Reference", shipment.get("orderRef")),
            ("Supplier", shipment.get("supplier")),
            ("Warehouse", shipment.get("receivingWarehouse") or shipment.get("finalPod") or "TBD"),
            ("Product", shipment.get("productName") or "N/A"),
            ("Quantity", shipment.get("quantity") or "N/A"),
        ])
    )
    _broadcast("notify_shipment_arrival", "shipment_arrival", subject, html,
               shipment.get("id"), shipment)

def notify_inspection_failed(shipment, reason=None):
    subject = f"Inspection Failed: {shipment.get('orderRef')}"
    html = (
        "<h2>Inspection Failed - Action Required</h2>"
        "<p>A shipment inspection has failed and requires attention.</p>"
        + _details([
            ("Order Reference", shipment.get("orderRef")),
            ("Supplier", shipment.get("supplier")),
            ("Reason", reason or "See system for details"),
        ])
    )
    _broadcast("notify_inspection_failed", "inspection_failed", subject, html,
               shipment.get("id"), shipment)

def notify_inspection_passed(shipment):
    subject = f"Inspection Passed: {shipment.get('orderRef')}"
    html = (
        "<h2>Inspection Passed</h2>"
        "<p>The shipment is ready for receiving.</p>"
        + _details([
            ("Order Reference", shipment.get("orderRef")),
            ("Supplier", shipment.get("supplier")),
            ("Inspected By", shipment.get("inspectedBy") or "N/A"),
        ])
    )
    _broadcast("notify_inspection_passed", "inspection_passed", subject, html,
               shipment.get("id"), shipment)

def notify_shipment_rejected(shipment, reason):
    subject = f"Shipment Rejected: {shipment.get('orderRef')}"
    html = (
        "<h2>Shipment Rejected</h2>"
        + _details([
            ("Order Reference", shipment.get("orderRef")),
            ("Supplier", shipment.get("supplier")),
            ("Reason", reason),
            ("Rejected By", shipment.get("rejectedBy") or "N/A"),
        ])
    )
    _broadcast("notify_post_arrival_update", "shipment_rejected", subject, html,
               shipment.get("id"), shipment)

def notify_warehouse_capacity(warehouse, percent):
    subject = f"Warehouse Capacity Alert: {warehouse}"
    html = (
        "<h2>Warehouse Capacity Alert</h2>"
        "<p>A warehouse has reached high capacity levels.</p>"
        + _details([("Warehouse", warehouse), ("Capacity Usage", f"{percent}%")])
        + "<p>Consider unloading shipments or adjusting storage allocation.</p>"
    )
    _broadcast("notify_warehouse_capacity", "warehouse_capacity", subject, html,
               event_data={"warehouse": warehouse, "percent": percent})

def send_test_email(user_id):
    """Raises LookupError when the user has no address to send to."""
    address = email_for(user_id)
    if not address:
        raise LookupError("No email address configured")

    subject = "Test Notification"
    html = ("<h2>Test Notification</h2>"
            "<p>Your notification settings are working. You will receive emails "
            "for the events you have enabled.</p>")
    result = send_email(address, subject, html)
    log_notification(user_id, "test_email", subject, html, None,
                     "sent" if result["success"] else "failed", result.get("error"))
    return result


# ── Digests ────────────────────────────────────────────────────────────────────
DIGEST_FREQUENCIES = ["daily", "weekly"]

def _event_label(event_type):
    return event_type.replace("_", " ").title()

def _digest_html(frequency, rows, today):
    counts = Counter(r.EventType for r in rows)
    table = "".join(
        f"<tr><td>{_event_label(event_type)}</td><td><strong>{count}</strong></td></tr>"
        for event_type, count in counts.most_common()
    )
    html = (
        f"<h2>{frequency.title()} Notification Digest</h2>"
        f"<p><em>Summary for {today:%Y-%m-%d}</em></p>"
        "<h3>Event Summary</h3>"
        f"<table><tr><th>Event Type</th><th>Count</th></tr>{table}</table>"
        f"<p><strong>Total Events:</strong> {len(rows)}</p>"
    )

    shipments = {}
    for r in rows:
        if not r.ShipmentID:
            continue
        entry = shipments.setdefault(r.ShipmentID, {"data": {}, "events": 0})
        entry["events"] += 1
        try:
            entry["data"] = json.loads(r.EventData or "{}")
        except ValueError:
            logger.warning("Unreadable digest event data for queue row %s", r.ID)
    if shipments:
        top = sorted(shipments.values(), key=lambda e: -e["events"])[:10]
        items = "".join(
            f"<li><strong>{e['data'].get('orderRef', 'N/A')}</strong> "
            f"({e['data'].get('supplier', 'N/A')})<br/>"
            f"Status: {(e['data'].get('latestStatus') or 'unknown').replace('_', ' ').upper()}"
            f"<br/>{e['events']} event(s)</li>"
            for e in top
        )
        html += f"<h3>Affected Shipments</h3><ul>{items}</ul>"
    return html

def send_digest(user_id, frequency, now=None):
    """
    One summary email covering every queued event not yet sent to the user.

    Returns True when an email went out, False when it failed and None when
    there was nothing to send. Queue rows are stamped only after a send.
    """
    now = now or datetime.utcnow()
    rows = (
        model.query(SCM_NotificationDigestQueue)
             .filter_by(UserID=user_id, SentAt=None)
             .order_by(SCM_NotificationDigestQueue.CreatedAt)
             .all()
    )
    if not rows:
        return None

    address = email_for(user_id)
    if not address:
        logger.warning("No email address for %s digest of user %s", frequency, user_id)
        return False

    subject = f"{frequency.title()} Notification Summary - {now:%Y-%m-%d}"
    html = _digest_html(frequency, rows, now)
    result = send_email(address, subject, html)
    log_notification(user_id, f"{frequency}_digest", subject, html, None,
                     "sent" if result["success"] else "failed", result.get("error"))
    if not result["success"]:
        return False

    for r in rows:
        r.SentAt = now
    model.commit()
    return True

def send_digests(frequency, now=None):
    """Runs the daily or weekly digest for every user on that frequency."""
    if frequency not in DIGEST_FREQUENCIES:
        raise ValueError(f"Unknown digest frequency: {frequency}")

    logger.info("Starting %s digest run", frequency)
    user_ids = [
        user_id for (user_id,) in
        model.query(SCM_NotificationPreferences.UserID)
             .filter_by(email_enabled=True, email_frequency=frequency)
             .all()
    ]
    out = {"sent": 0, "failed": 0, "skipped": 0}
    for user_id in user_ids:
        try:
            sent = send_digest(user_id, frequency, now)
        except Exception:
            model.rollback()
            logger.exception("%s digest failed for user %s", frequency.title(), user_id)
            sent = False
        if sent is None:
            out["skipped"] += 1
        elif sent:
            out["sent"] += 1
        else:
            out["failed"] += 1
    logger.info("%s digests: %s sent, %s failed", frequency.title(), out["sent"], out["failed"])
    return out
