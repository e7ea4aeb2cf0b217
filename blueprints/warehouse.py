# blueprints/warehouse.py
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from datetime import datetime
import logging

from config import Config
from models import model, SCM_WarehouseCapacity, SCM_WarehouseCapacityHistory
from blueprints.auth import admin_required
from blueprints.shipments import load_shipments
from utils import compute_warehouse_stats, compute_capacity_forecast
from exports import build_capacity_pdf, pdf_response
import mailer

bp = Blueprint('warehouse', __name__, url_prefix='/api/warehouse-capacity')

log = logging.getLogger(__name__)

# utilisation that triggers a capacity alert
ALERT_PERCENT = 80


def bins_used_map():
    rows = model.query(SCM_WarehouseCapacity).all()
    return {r.WarehouseName: r.BinsUsed for r in rows}

def capacity_map():
    caps = dict(Config.WAREHOUSE_CAPACITY)
    for r in model.query(SCM_WarehouseCapacity).all():
        if r.TotalCapacity and r.WarehouseName in caps:
            caps[r.WarehouseName] = r.TotalCapacity
    return caps

def _limit(default):
    try:
        return max(int(request.args.get("limit", default)), 1)
    except ValueError:
        return default


@bp.route("", methods=["GET"])
def get_capacity():
    return jsonify(bins_used_map())

@bp.route("/<warehouse_name>", methods=["PUT"])
@login_required
def update_capacity(warehouse_name):
    data = request.get_json(silent=True) or {}
    bins_used = data.get("binsUsed")
    # whole numbers only; 12.0 is fine, 12.7, NaN and Infinity are not
    if isinstance(bins_used, float) and bins_used.is_integer():
        bins_used = int(bins_used)
    if isinstance(bins_used, bool) or not isinstance(bins_used, int) or bins_used < 0:
        return jsonify({"error": "Invalid binsUsed value"}), 400

    row = model.query(SCM_WarehouseCapacity).filter_by(WarehouseName=warehouse_name).one_or_none()
    previous = row.BinsUsed if row else None
    if not row:
        row = SCM_WarehouseCapacity(
            WarehouseName=warehouse_name,
            TotalCapacity=Config.WAREHOUSE_CAPACITY.get(warehouse_name, Config.DEFAULT_WAREHOUSE_BINS),
        )
        model.add(row)
    row.BinsUsed = bins_used
    row.UpdatedBy = current_user.id
    row.UpdatedAt = datetime.utcnow()

    model.add(SCM_WarehouseCapacityHistory(
        WarehouseName=warehouse_name,
        BinsUsed=bins_used,
        PreviousValue=previous,
        ChangedBy=current_user.id,
    ))
    model.commit()
    log.info("%s bins used set to %s (was %s) by %s",
             warehouse_name, bins_used, previous, current_user.username)

    total = row.TotalCapacity or Config.DEFAULT_WAREHOUSE_BINS
    percent = round(bins_used / total * 100)
    if percent >= ALERT_PERCENT and (previous is None or previous / total * 100 < ALERT_PERCENT):
        try:
            mailer.notify_warehouse_capacity(warehouse_name, percent)
        except Exception:
            log.exception("Capacity alert for %s failed", warehouse_name)

    return jsonify({
        "success": True,
        "data": {
            "warehouseName": row.WarehouseName,
            "binsUsed":      row.BinsUsed,
            "updatedBy":     row.UpdatedBy,
            "updatedAt":     row.UpdatedAt.isoformat(),
        },
    })

@bp.route("/<warehouse_name>/history", methods=["GET"])
@login_required
def history(warehouse_name):
    rows = (
        model.query(SCM_WarehouseCapacityHistory)
             .filter_by(WarehouseName=warehouse_name)
             .order_by(SCM_WarehouseCapacityHistory.ChangedAt.desc(),
                       SCM_WarehouseCapacityHistory.ID.desc())
             .limit(_limit(50))
             .all()
    )
    return jsonify([r.as_dict() for r in rows])

@bp.route("/history/all", methods=["GET"])
@admin_required
def history_all():
    rows = (
        model.query(SCM_WarehouseCapacityHistory)
             .order_by(SCM_WarehouseCapacityHistory.ChangedAt.desc(),
                       SCM_WarehouseCapacityHistory.ID.desc())
             .limit(_limit(100))
             .all()
    )
    return jsonify([r.as_dict() for r in rows])

@bp.route("/stats", methods=["GET"])
@login_required
def stats():
    return jsonify(compute_warehouse_stats(load_shipments(), bins_used_map()))

@bp.route("/forecast", methods=["GET"])
@login_required
def forecast():
    return jsonify(compute_capacity_forecast(load_shipments(), bins_used_map(), capacity_map()))

@bp.route("/export/pdf", methods=["GET"])
@login_required
def export_pdf():
    warehouse = request.args.get("warehouse", "all")
    shipments = load_shipments()
    bins = bins_used_map()
    stats = compute_warehouse_stats(shipments, bins)["warehouseStats"]
    forecast = compute_capacity_forecast(shipments, bins, capacity_map())

    now = datetime.now()
    label = "All" if warehouse in ("", "all") else warehouse
    filename = f"Warehouse_Capacity_{label}_{now:%Y-%m-%d}_{now:%H-%M-%S}.pdf"
    return pdf_response(build_capacity_pdf(stats, forecast, warehouse, now), filename)
