# blueprints/archives.py
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
import logging
from datetime import datetime, timedelta

from models import model, SCM_Shipment
from utils import ARCHIVABLE_STATUSES
from blueprints.shipments import load_shipments
import archive

bp = Blueprint('archives', __name__, url_prefix='/api/shipments')

log = logging.getLogger(__name__)


def _days_old():
    try:
        return max(int(request.args.get("daysOld", 30)), 0)
    except ValueError:
        return 30

def _delete(ids):
    model.query(SCM_Shipment).filter(SCM_Shipment.ShipmentID.in_(ids)).delete(synchronize_session=False)
    model.commit()
    return model.query(SCM_Shipment).count()


@bp.route("/archives", methods=["GET"])
@login_required
def list_archives():
    return jsonify(archive.list_archives())

@bp.route("/archives/<file_name>", methods=["GET"])
@login_required
def get_archive(file_name):
    return jsonify(archive.read_archive(file_name))

@bp.route("/archives/<file_name>/rename", methods=["PUT"])
@login_required
def rename_archive(file_name):
    data = request.get_json(silent=True) or {}
    result = archive.rename_archive(file_name, data.get("newName"))
    return jsonify({"success": True, **result})

@bp.route("/auto-archive/stats", methods=["GET"])
@login_required
def auto_archive_stats():
    return jsonify(archive.auto_archive_stats(load_shipments(), _days_old()))

@bp.route("/auto-archive/perform", methods=["POST"])
@login_required
def auto_archive_perform():
    days_old = _days_old()
    eligible = archive.find_old_arrived(load_shipments(), days_old)
    if not eligible:
        return jsonify({
            "success": True,
            "message": "No old ARRIVED shipments found to archive",
            "archivedCount": 0,
            "remainingCount": model.query(SCM_Shipment).count(),
        })

    cutoff = datetime.utcnow() - timedelta(days=days_old)
    file_name = archive.write_archive(
        eligible, "auto_archive_arrived",
        archive_type="auto_arrived",
        reason=f"Auto-archived ARRIVED shipments older than {days_old} days",
        cutoffDate=cutoff.isoformat() + "Z",
    )
    remaining = _delete([s["id"] for s in eligible])
    log.info("Auto-archived %s shipments (%s) by %s", len(eligible), file_name, current_user.username)
    return jsonify({
        "success": True,
        "message": f"Successfully archived {len(eligible)} old ARRIVED shipments",
        "archivedCount": len(eligible),
        "remainingCount": remaining,
        "archiveFileName": file_name,
    })

@bp.route("/manual-archive", methods=["POST"])
@login_required
def manual_archive():
    data = request.get_json(silent=True) or {}
    ids = data.get("shipmentIds") or []
    if not ids:
        return jsonify({"error": "No shipment IDs provided"}), 400

    rows = (
        model.query(SCM_Shipment)
             .filter(SCM_Shipment.ShipmentID.in_(ids),
                     SCM_Shipment.LatestStatus.in_(ARCHIVABLE_STATUSES))
             .all()
    )
    if not rows:
        return jsonify({"error": "No valid ARRIVED or STORED shipments found to archive"}), 400

    records = [r.as_dict() for r in rows]
    file_name = archive.write_archive(
        records, archive.manual_archive_prefix(records),
        archive_type="manual",
        reason="Manual archive of selected ARRIVED shipments",
    )
    remaining = _delete([r["id"] for r in records])
    log.info("Manually archived %s shipments (%s) by %s", len(records), file_name, current_user.username)
    return jsonify({
        "success": True,
        "message": f"Successfully archived {len(records)} shipments",
        "archivedCount": len(records),
        "skippedCount": len(ids) - len(records),
        "remainingCount": remaining,
        "archiveFileName": file_name,
    })
