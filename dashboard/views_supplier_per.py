from flask import jsonify
from flask_login import login_required
from . import bp
from blueprints.shipments import load_shipments
from utils import compute_supplier_metrics, supplier_shipments


@bp.route("/suppliers", methods=["GET"])
@login_required
def supplier_performance():
    """Scorecard for every supplier, best on-time performers first."""
    shipments = load_shipments()
    names = sorted({(s.get("supplier") or "").strip() for s in shipments} - {""})
    metrics = [compute_supplier_metrics(shipments, name) for name in names]
    metrics.sort(key=lambda m: (-m["onTimePercent"], m["supplierName"].lower()))
    return jsonify(metrics)

@bp.route("/suppliers/<path:supplier>", methods=["GET"])
@login_required
def supplier_detail(supplier):
    shipments = load_shipments()
    if not supplier_shipments(shipments, supplier):
        return jsonify({"error": "Supplier not found"}), 404
    return jsonify(compute_supplier_metrics(shipments, supplier))
