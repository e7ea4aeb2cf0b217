# blueprints/notifications.py
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import func
import logging

from models import model, SCM_NotificationLog
from blueprints.auth import admin_required
import mailer

bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')

log = logging.getLogger(__name__)

BOOL_PREFS = [k for k, v in mailer.DEFAULT_PREFERENCES.items() if isinstance(v, bool)]


def _int_arg(name, default, minimum=0):
    try:
        return max(int(request.args.get(name, default)), minimum)
    except ValueError:
        return default

def _own_log(notification_id):
    return (
        model.query(SCM_NotificationLog)
             .filter_by(ID=notification_id, UserID=current_user.id)
             .one_or_none()
    )


@bp.route("/preferences", methods=["GET"])
@login_required
def get_preferences():
    return jsonify(mailer.get_preferences(current_user.id))

@bp.route("/preferences", methods=["PUT"])
@login_required
def update_preferences():
    data = request.get_json(silent=True) or {}

    freq = data.get("email_frequency")
    if freq is not None and freq not in mailer.EMAIL_FREQUENCIES:
        return jsonify({"error": f"Invalid email frequency. Must be one of: "
                                 f"{', '.join(mailer.EMAIL_FREQUENCIES)}"}), 400
    for key in BOOL_PREFS:
        if key in data and not isinstance(data[key], bool):
            return jsonify({"error": f"{key} must be true or false"}), 400

    prefs = mailer.update_preferences(current_user.id, data)
    log.info("Notification preferences updated for %s", current_user.username)
    return jsonify({"message": "Preferences updated successfully", "preferences": prefs})

@bp.route("/history", methods=["GET"])
@login_required
def history():
    limit = _int_arg("limit", 50, minimum=1)
    offset = _int_arg("offset", 0)

    q = model.query(SCM_NotificationLog).filter_by(UserID=current_user.id)
    event_type = request.args.get("eventType")
    if event_type:
        q = q.filter_by(EventType=event_type)

    total = q.count()
    rows = (
        q.order_by(SCM_NotificationLog.SentAt.desc(), SCM_NotificationLog.ID.desc())
         .offset(offset)
         .limit(limit)
         .all()
    )
    return jsonify({
        "notifications": [r.as_dict() for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    })

@bp.route("/history/<int:notification_id>", methods=["GET"])
@login_required
def get_notification(notification_id):
    row = _own_log(notification_id)
    if not row:
        return jsonify({"error": "Notification not found"}), 404
    return jsonify(row.as_dict())

@bp.route("/history/<int:notification_id>", methods=["DELETE"])
@login_required
def delete_notification(notification_id):
    row = _own_log(notification_id)
    if not row:
        return jsonify({"error": "Notification not found"}), 404
    model.delete(row)
    model.commit()
    return jsonify({"message": "Notification deleted successfully"})

@bp.route("/test", methods=["POST"])
@login_required
def test_email():
    try:
        result = mailer.send_test_email(current_user.id)
    except LookupError as e:
        return jsonify({"error": str(e)}), 400

    if not result["success"]:
        return jsonify({"error": "Failed to send test email", "details": result.get("error")}), 500
    return jsonify({"message": "Test email sent successfully", "messageId": result["messageId"]})

@bp.route("/stats", methods=["GET"])
@login_required
def stats():
    rows = (
        model.query(SCM_NotificationLog.EventType, SCM_NotificationLog.Status,
                    func.count(SCM_NotificationLog.ID))
             .filter_by(UserID=current_user.id)
             .group_by(SCM_NotificationLog.EventType, SCM_NotificationLog.Status)
             .all()
    )
    out = {"total": 0, "sent": 0, "failed": 0, "byType": {}}
    for event_type, status, count in rows:
        by_type = out["byType"].setdefault(event_type, {"count": 0, "sent": 0, "failed": 0})
        out["total"] += count
        by_type["count"] += count
        if status in ("sent", "failed"):
            out[status] += count
            by_type[status] += count
    return jsonify(out)

@bp.route("/digests/<frequency>", methods=["POST"])
@admin_required
def run_digests(frequency):
    if frequency not in mailer.DIGEST_FREQUENCIES:
        return jsonify({"error": f"Invalid digest frequency. Must be one of: "
                                 f"{', '.join(mailer.DIGEST_FREQUENCIES)}"}), 400
    result = mailer.send_digests(frequency)
    log.info("%s digest run by %s: %s", frequency, current_user.username, result)
    return jsonify(result)
