# blueprints/shipments.py
from flask import Blueprint, request, jsonify, make_response
from flask_login import login_required, current_user
from datetime import datetime
import json
import logging
from sqlalchemy import func, or_, asc, desc

from models import model, SCM_Shipment, SHIPMENT_FIELDS
from exceptions import ValidationException, NotFoundException
from utils import (
    SHIPMENT_STATUSES, INCOTERMS, PRIORITIES, INSPECTION_STATUSES, RECEIVING_STATUSES,
    to_optional_number, to_week, parse_date, generate_shipment_id, compute_schedule,
    forwarding_agents_for,
)
from exports import build_schedule_pdf, schedule_excel_response, pdf_response
import archive

bp = Blueprint('shipments', __name__, url_prefix='/api/shipments')

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ("supplier", "orderRef", "finalPod")
NUMERIC_FIELDS  = ("quantity", "cbm", "palletQty", "receivedQuantity")
DATE_FIELDS     = ("selectedWeekDate", "unloadingStartDate", "unloadingCompletedDate",
                   "inspectionDate", "receivingDate", "rejectionDate")
# keys the client may not write directly
READ_ONLY       = ("id", "createdAt", "updatedAt")
ENUM_FIELDS     = {
    "latestStatus":     SHIPMENT_STATUSES,
    "incoterm":         INCOTERMS,
    "priority":         PRIORITIES,
    "inspectionStatus": INSPECTION_STATUSES,
    "receivingStatus":  RECEIVING_STATUSES,
}

# ?sortBy= whitelist
SORT_COLUMNS = {
    "updated_at":         SCM_Shipment.UpdatedAt,
    "updatedAt":          SCM_Shipment.UpdatedAt,
    "created_at":         SCM_Shipment.CreatedAt,
    "createdAt":          SCM_Shipment.CreatedAt,
    "orderRef":           SCM_Shipment.OrderRef,
    "supplier":           SCM_Shipment.Supplier,
    "finalPod":           SCM_Shipment.FinalPod,
    "latestStatus":       SCM_Shipment.LatestStatus,
    "weekNumber":         SCM_Shipment.WeekNumber,
    "productName":        SCM_Shipment.ProductName,
    "quantity":           SCM_Shipment.Quantity,
    "cbm":                SCM_Shipment.Cbm,
    "palletQty":          SCM_Shipment.PalletQty,
    "receivingWarehouse": SCM_Shipment.ReceivingWarehouse,
    "forwardingAgent":    SCM_Shipment.ForwardingAgent,
    "vesselName":         SCM_Shipment.VesselName,
}


def no_cache(resp):
    resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp

def get_shipment(shipment_id):
    shipment = model.get(SCM_Shipment, shipment_id)
    if not shipment:
        raise NotFoundException("Shipment", shipment_id)
    return shipment

def load_shipments():
    """Every shipment as an API record, most recently updated first."""
    rows = model.query(SCM_Shipment).order_by(SCM_Shipment.UpdatedAt.desc()).all()
    return [r.as_dict() for r in rows]

def clean_shipment_data(data, partial=False):
    """
    Coerce an incoming payload to column values.

    With partial=True only keys carrying a non-null value are kept, so an
    update never blanks a field it did not mention.
    """
    if not isinstance(data, dict):
        raise ValidationException("Shipment payload must be an object")

    errors = {}
    if not partial:
        for key in REQUIRED_FIELDS:
            if not str(data.get(key) or "").strip():
                errors[key] = "required"

    values = {}
    for key, raw in data.items():
        if key not in SHIPMENT_FIELDS or key in READ_ONLY:
            continue
        if partial and raw is None:
            continue

        if key in NUMERIC_FIELDS:
            value = to_optional_number(raw)
        elif key == "weekNumber":
            value = to_week(raw)
            if raw not in (None, "") and value is None:
                errors[key] = "must be a number"
        elif key in DATE_FIELDS:
            value = parse_date(raw)
            if raw not in (None, "") and value is None:
                errors[key] = "invalid date"
        elif key == "discrepancies":
            value = json.dumps(raw or [])
        else:
            value = raw.strip() if isinstance(raw, str) else raw
            if value == "":
                value = None

        if key in ENUM_FIELDS and value is not None and value not in ENUM_FIELDS[key]:
            errors[key] = f"must be one of: {', '.join(ENUM_FIELDS[key])}"
        if partial and key in REQUIRED_FIELDS and not value:
            errors[key] = "cannot be blank"

        values[SHIPMENT_FIELDS[key]] = value

    if errors:
        raise ValidationException("Invalid shipment data", errors)
    return values

def new_shipment(data):
    values = clean_shipment_data(data)
    now = datetime.utcnow()
    if not values.get("LatestStatus"):
        values["LatestStatus"] = "planned_airfreight"
    return SCM_Shipment(
        ShipmentID=data.get("id") or generate_shipment_id(),
        CreatedAt=parse_date(data.get("createdAt")) or now,
        UpdatedAt=now,
        **values,
    )

def _schedule_args():
    statuses = request.args.getlist("status") or ["all"]
    return (
        request.args.get("search", ""),
        statuses,
        request.args.get("sortKey", "weekNumber"),
        request.args.get("direction", "asc"),
    )


@bp.route("", methods=["GET"])
@login_required
def list_shipments():
    sort_col = SORT_COLUMNS.get(request.args.get("sortBy"), SCM_Shipment.UpdatedAt)
    order = desc if request.args.get("order", "asc").lower() == "desc" else asc

    q = model.query(SCM_Shipment)
    status = request.args.get("status")
    if status:
        q = q.filter(SCM_Shipment.LatestStatus == status)

    search = (request.args.get("search") or "").strip().lower()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            func.lower(SCM_Shipment.OrderRef).like(like),
            func.lower(SCM_Shipment.Supplier).like(like),
            func.lower(SCM_Shipment.FinalPod).like(like),
        ))

    rows = q.order_by(order(sort_col), SCM_Shipment.ShipmentID).all()
    return no_cache(make_response(jsonify([r.as_dict() for r in rows])))

@bp.route("/schedule", methods=["GET"])
@login_required
def schedule():
    search, statuses, sort_key, direction = _schedule_args()
    rows = compute_schedule(load_shipments(), search, statuses, sort_key, direction)
    return no_cache(make_response(jsonify(rows)))

@bp.route("/suppliers", methods=["GET"])
@login_required
def suppliers():
    rows = (
        model.query(SCM_Shipment.Supplier)
             .filter(SCM_Shipment.Supplier.isnot(None), SCM_Shipment.Supplier != "")
             .distinct()
             .all()
    )
    return jsonify(sorted(name for (name,) in rows))

@bp.route("/forwarding-agents", methods=["GET"])
@login_required
def forwarding_agents():
    return jsonify(forwarding_agents_for(request.args.get("status")))

@bp.route("/status/<status>", methods=["GET"])
@login_required
def by_status(status):
    rows = (
        model.query(SCM_Shipment)
             .filter(SCM_Shipment.LatestStatus == status)
             .order_by(SCM_Shipment.UpdatedAt.desc())
             .all()
    )
    return jsonify([r.as_dict() for r in rows])

@bp.route("/delayed/list", methods=["GET"])
@login_required
def delayed():
    return by_status("delayed")

@bp.route("/<shipment_id>", methods=["GET"])
@login_required
def get_one(shipment_id):
    return jsonify(get_shipment(shipment_id).as_dict())

@bp.route("", methods=["POST"])
@login_required
def create():
    shipment = new_shipment(request.get_json(silent=True) or {})
    if model.get(SCM_Shipment, shipment.ShipmentID):
        return jsonify({"error": "Shipment already exists"}), 409
    model.add(shipment)
    model.commit()
    log.info("Shipment %s created by %s", shipment.ShipmentID, current_user.username)
    return jsonify(shipment.as_dict()), 201

@bp.route("/<shipment_id>", methods=["PUT"])
@login_required
def update(shipment_id):
    shipment = get_shipment(shipment_id)
    values = clean_shipment_data(request.get_json(silent=True) or {}, partial=True)
    for attr, value in values.items():
        setattr(shipment, attr, value)
    shipment.UpdatedAt = datetime.utcnow()
    model.commit()
    return jsonify(shipment.as_dict())

@bp.route("/<shipment_id>", methods=["DELETE"])
@login_required
def delete(shipment_id):
    model.delete(get_shipment(shipment_id))
    model.commit()
    log.info("Shipment %s deleted by %s", shipment_id, current_user.username)
    return "", 204

@bp.route("/bulk-status", methods=["POST"])
@login_required
def bulk_status():
    data = request.get_json(silent=True) or {}
    ids = data.get("shipmentIds") or []
    status = data.get("status")
    if status not in SHIPMENT_STATUSES:
        return jsonify({"error": "Invalid status"}), 400
    if not ids:
        return jsonify({"error": "No shipment IDs provided"}), 400

    success, failed = 0, []
    for shipment_id in ids:
        shipment = model.get(SCM_Shipment, shipment_id)
        if not shipment:
            failed.append({"id": shipment_id, "error": "Shipment not found"})
            continue
        try:
            shipment.LatestStatus = status
            shipment.UpdatedAt = datetime.utcnow()
            model.commit()
            success += 1
        except Exception as e:
            model.rollback()
            log.exception("Bulk status update failed for %s", shipment_id)
            failed.append({"id": shipment_id, "error": str(e)})

    return jsonify({"successCount": success, "failCount": len(failed), "failed": failed})

@bp.route("/bulk-import", methods=["POST"])
@login_required
def bulk_import():
    data = request.get_json(silent=True)
    records = data.get("shipments") if isinstance(data, dict) else data
    if not isinstance(records, list):
        return jsonify({"error": "Expected a list of shipments"}), 400

    incoming, seen = [], set()
    for idx, record in enumerate(records):
        try:
            row = new_shipment(record)
            if row.ShipmentID in seen:
                raise ValidationException("Duplicate shipment id", {"id": row.ShipmentID})
        except ValidationException as e:
            e.details["row"] = idx + 1
            raise
        seen.add(row.ShipmentID)
        incoming.append(row)

    existing = load_shipments()
    archived = archive.write_archive(existing, "shipments") if existing else None

    try:
        model.query(SCM_Shipment).delete()
        model.add_all(incoming)
        model.commit()
    except Exception:
        model.rollback()
        log.exception("Bulk import failed")
        if archived:
            archive.delete_archive(archived)
        return jsonify({"error": "Failed to import shipments"}), 500

    log.info("Bulk import of %s shipments by %s", len(incoming), current_user.username)
    return jsonify({
        "success": True,
        "message": f"Successfully imported {len(incoming)} shipments",
        "count": len(incoming),
    })

@bp.route("/export/excel", methods=["GET"])
@login_required
def export_excel():
    search, statuses, sort_key, direction = _schedule_args()
    rows = compute_schedule(load_shipments(), search, statuses, sort_key, direction)
    return schedule_excel_response(rows)

@bp.route("/export/pdf", methods=["GET"])
@login_required
def export_pdf():
    search, statuses, sort_key, direction = _schedule_args()
    rows = compute_schedule(load_shipments(), search, statuses, sort_key, direction)
    now = datetime.now()
    return pdf_response(build_schedule_pdf(rows, search, statuses, now),
                        f"shipment-schedule-{now:%Y-%m-%d}.pdf")
