from flask import request, jsonify, send_file
from flask_login import login_required
from datetime import datetime
import logging
from . import bp
from blueprints.shipments import load_shipments
from exceptions import ValidationException
from utils import (
    GROUP_BY_FIELDS, compute_filter_options, filter_shipments, compute_summary,
    aggregate_shipments,
)
from exports import build_advanced_excel, build_advanced_pdf, pdf_response

log = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def run_report(body):
    """Filter, summarise and group the shipments for one advanced report request."""
    if not isinstance(body, dict):
        raise ValidationException("Report request must be an object")
    filters = body.get("filters") or {}
    aggregation = body.get("aggregation") or {}
    if not isinstance(filters, dict) or not isinstance(aggregation, dict):
        raise ValidationException("filters and aggregation must be objects")

    group_by = aggregation.get("groupBy") or "none"
    if group_by != "none" and group_by not in GROUP_BY_FIELDS and group_by not in ("week", "month"):
        raise ValidationException("Invalid grouping", {"groupBy": f"unknown grouping '{group_by}'"})

    shipments = load_shipments()
    filtered = filter_shipments(shipments, filters)
    results = aggregate_shipments(
        filtered, group_by,
        aggregation.get("sortBy") or "count",
        aggregation.get("sortDirection") or "desc",
    )
    return {
        "filters": filters,
        "options": compute_filter_options(shipments),
        "summary": compute_summary(filtered),
        "groupBy": group_by,
        "results": results,
    }


@bp.route("/advanced", methods=["POST"])
@login_required
def advanced_report():
    return jsonify(run_report(request.get_json(silent=True) or {}))

@bp.route("/advanced/export/excel", methods=["POST"])
@login_required
def advanced_export_excel():
    report = run_report(request.get_json(silent=True) or {})
    now = datetime.now()
    output = build_advanced_excel(report["filters"], report["summary"], report["results"],
                                  report["groupBy"], now)
    log.info("Advanced report exported to Excel (%s rows)", report["summary"]["totalShipments"])
    return send_file(output, download_name=f"advanced_report_{now:%Y-%m-%d}.xlsx",
                     as_attachment=True, mimetype=XLSX_MIMETYPE)

@bp.route("/advanced/export/pdf", methods=["POST"])
@login_required
def advanced_export_pdf():
    report = run_report(request.get_json(silent=True) or {})
    now = datetime.now()
    buffer = build_advanced_pdf(report["filters"], report["summary"], report["results"],
                                report["groupBy"], now)
    return pdf_response(buffer, f"advanced_report_{now:%Y-%m-%d}.pdf")
