from flask import request, jsonify
from flask_login import login_required
from datetime import datetime, timedelta
from . import bp
from blueprints.shipments import load_shipments
from utils import (
    NOT_SET, ARRIVED_STATUSES, POST_ARRIVAL_STATUSES, INBOUND_STATUSES,
    compute_status_counts, compute_summary, iso_week, to_week, planned_last,
)


def _selection(name):
    # ["All"] or nothing picked means no constraint
    picked = request.values.getlist(f"{name}[]")
    if not picked or picked == ["All"]:
        return None
    return set(picked)

def compute_upcoming(shipments, today=None, weeks_ahead=1):
    """Inbound shipments due in the current ISO week or the next `weeks_ahead` weeks."""
    today = today or datetime.utcnow()
    # week 52 runs on into week 1
    window = [iso_week(today + timedelta(weeks=k)) for k in range(weeks_ahead + 1)]
    rows = [
        s for s in shipments
        if s.get("latestStatus") in INBOUND_STATUSES and to_week(s.get("weekNumber")) in window
    ]
    return sorted(rows, key=lambda s: window.index(to_week(s.get("weekNumber"))))


@bp.route("/overview", methods=["GET", "POST"])
@login_required
def overview():
    shipments = load_shipments()

    sel_suppliers  = _selection("suppliers")
    sel_warehouses = _selection("warehouses")
    if sel_suppliers:
        shipments = [s for s in shipments if s.get("supplier") in sel_suppliers]
    if sel_warehouses:
        shipments = [s for s in shipments
                     if (s.get("receivingWarehouse") or s.get("finalPod")) in sel_warehouses]

    by_warehouse = {}
    for s in shipments:
        key = s.get("receivingWarehouse") or s.get("finalPod") or NOT_SET
        by_warehouse[key] = by_warehouse.get(key, 0) + 1

    return jsonify({
        "summary":        compute_summary(shipments),
        "statusCounts":   compute_status_counts(shipments),
        "byWarehouse":    by_warehouse,
        "arrived":        sum(1 for s in shipments if s.get("latestStatus") in ARRIVED_STATUSES),
        "postArrival":    sum(1 for s in shipments if s.get("latestStatus") in POST_ARRIVAL_STATUSES),
        "delayed":        sum(1 for s in shipments if s.get("latestStatus") == "delayed"),
        "upcoming":       planned_last(compute_upcoming(shipments)),
    })
