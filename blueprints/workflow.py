# blueprints/workflow.py
"""Post-arrival workflow: unloading, inspection, receiving, storage and rejection."""
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from datetime import datetime
import json
import logging

from models import model, SCM_Shipment
from exceptions import InvalidTransitionException, ValidationException
from utils import ARRIVED_STATUSES, POST_ARRIVAL_STATUSES, to_optional_number, sanitize_filename
from blueprints.shipments import get_shipment
import archive
import mailer

bp = Blueprint('workflow', __name__, url_prefix='/api/shipments')

log = logging.getLogger(__name__)

# stands for "stamp with the transition time"
_NOW = object()


def _transition(shipment_id, required, new_status, **changes):
    shipment = get_shipment(shipment_id)
    if shipment.LatestStatus not in required:
        raise InvalidTransitionException(shipment.LatestStatus, new_status, required)

    now = datetime.utcnow()
    shipment.LatestStatus = new_status
    for attr, value in changes.items():
        setattr(shipment, attr, now if value is _NOW else value)
    shipment.UpdatedAt = now
    model.commit()
    log.info("Shipment %s moved to %s by %s", shipment_id, new_status, current_user.username)
    return shipment

def _body():
    return request.get_json(silent=True) or {}

def _safe_notify(func, *args):
    try:
        func(*args)
    except Exception:
        log.exception("Notification %s failed", func.__name__)


@bp.route("/post-arrival", methods=["GET"])
@login_required
def post_arrival():
    rows = (
        model.query(SCM_Shipment)
             .filter(SCM_Shipment.LatestStatus.in_(POST_ARRIVAL_STATUSES))
             .order_by(SCM_Shipment.UpdatedAt.desc())
             .all()
    )
    return jsonify([r.as_dict() for r in rows])

@bp.route("/<shipment_id>/start-unloading", methods=["POST"])
@login_required
def start_unloading(shipment_id):
    shipment = _transition(shipment_id, ARRIVED_STATUSES, "unloading", UnloadingStartDate=_NOW)
    record = shipment.as_dict()
    _safe_notify(mailer.notify_shipment_arrival, record)
    return jsonify(record)

@bp.route("/<shipment_id>/complete-unloading", methods=["POST"])
@login_required
def complete_unloading(shipment_id):
    shipment = _transition(shipment_id, ["unloading"], "inspection_pending",
                           UnloadingCompletedDate=_NOW)
    return jsonify(shipment.as_dict())

@bp.route("/<shipment_id>/start-inspection", methods=["POST"])
@login_required
def start_inspection(shipment_id):
    data = _body()
    shipment = _transition(
        shipment_id, ["inspection_pending"], "inspecting",
        InspectionStatus="in_progress",
        InspectedBy=data.get("inspectedBy") or current_user.username,
        InspectionDate=_NOW,
    )
    return jsonify(shipment.as_dict())

@bp.route("/<shipment_id>/complete-inspection", methods=["POST"])
@login_required
def complete_inspection(shipment_id):
    data = _body()
    passed = bool(data.get("passed"))
    changes = {
        "InspectionStatus": "passed" if passed else "failed",
        "InspectionNotes":  data.get("notes") or "",
    }
    if data.get("inspectedBy"):
        changes["InspectedBy"] = data["inspectedBy"]

    shipment = _transition(shipment_id, ["inspecting"],
                           "inspection_passed" if passed else "inspection_failed", **changes)
    record = shipment.as_dict()
    if passed:
        _safe_notify(mailer.notify_inspection_passed, record)
    else:
        _safe_notify(mailer.notify_inspection_failed, record, data.get("notes"))
    return jsonify(record)

@bp.route("/<shipment_id>/start-receiving", methods=["POST"])
@login_required
def start_receiving(shipment_id):
    data = _body()
    shipment = _transition(
        shipment_id, ["inspection_passed"], "receiving",
        ReceivingStatus="in_progress",
        ReceivedBy=data.get("receivedBy") or current_user.username,
        ReceivingDate=_NOW,
    )
    return jsonify(shipment.as_dict())

@bp.route("/<shipment_id>/complete-receiving", methods=["POST"])
@login_required
def complete_receiving(shipment_id):
    data = _body()
    shipment = get_shipment(shipment_id)

    discrepancies = data.get("discrepancies") or []
    if not isinstance(discrepancies, list):
        raise ValidationException("Discrepancies must be a list", {"discrepancies": "must be a list"})
    received = to_optional_number(data.get("receivedQuantity"))

    if discrepancies:
        receiving_status = "discrepancy"
    elif received is not None and shipment.Quantity and received < shipment.Quantity:
        receiving_status = "partial"
    else:
        receiving_status = "completed"

    changes = {
        "ReceivedQuantity": received,
        "ReceivingNotes":   data.get("notes") or "",
        "Discrepancies":    json.dumps(discrepancies),
        "ReceivingStatus":  receiving_status,
    }
    if data.get("receivedBy"):
        changes["ReceivedBy"] = data["receivedBy"]

    shipment = _transition(shipment_id, ["receiving"], "received", **changes)
    return jsonify(shipment.as_dict())

@bp.route("/<shipment_id>/mark-stored", methods=["POST"])
@login_required
def mark_stored(shipment_id):
    shipment = _transition(shipment_id, ["received"], "stored")
    return jsonify(shipment.as_dict())

@bp.route("/<shipment_id>/reject-shipment", methods=["POST"])
@login_required
def reject_shipment(shipment_id):
    data = _body()
    reason = (data.get("rejectionReason") or "").strip()
    if not reason:
        raise ValidationException("Rejection reason is required", {"rejectionReason": "required"})

    shipment = get_shipment(shipment_id)
    if shipment.LatestStatus != "inspection_failed":
        raise InvalidTransitionException(shipment.LatestStatus, "rejected", ["inspection_failed"])

    rejected_by = data.get("rejectedBy") or current_user.username
    now = datetime.utcnow()

    if data.get("archiveShipment", True):
        record = shipment.as_dict()
        record.update({
            "latestStatus":    "rejected",
            "rejectionDate":   now.isoformat(),
            "rejectionReason": reason,
            "rejectedBy":      rejected_by,
        })
        file_name = archive.write_archive(
            [record],
            f"rejected_{sanitize_filename(shipment.OrderRef or shipment_id)}",
            archive_type="rejected",
            reason=f"Rejected after failed inspection: {reason}",
        )
        model.delete(shipment)
        model.commit()
        log.info("Shipment %s rejected and archived to %s", shipment_id, file_name)
        _safe_notify(mailer.notify_shipment_rejected, record, reason)
        return jsonify({
            "success": True,
            "message": "Shipment rejected and archived",
            "archived": True,
            "archiveFileName": file_name,
            "shipmentId": shipment_id,
        })

    shipment.LatestStatus = "rejected"
    shipment.RejectionDate = now
    shipment.RejectionReason = reason
    shipment.RejectedBy = rejected_by
    shipment.UpdatedAt = now
    model.commit()
    record = shipment.as_dict()
    _safe_notify(mailer.notify_shipment_rejected, record, reason)
    return jsonify(record)
