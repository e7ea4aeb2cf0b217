# exports.py
"""
Document builders for the schedule, advanced report and warehouse capacity
downloads. PDFs are laid out with reportlab, the multi-sheet workbook is
written through pandas/xlsxwriter. Builders return a rewound BytesIO.
"""
from io import BytesIO
from datetime import datetime
import pandas as pd
from flask import send_file
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from utils import to_number, export_to_excel

HEADER_BLUE  = colors.Color(102 / 255, 126 / 255, 234 / 255)
HEADER_GREEN = colors.Color(5 / 255, 150 / 255, 105 / 255)
ROW_ALT      = colors.Color(248 / 255, 249 / 255, 250 / 255)
DELAYED_BG   = colors.Color(1, 245 / 255, 245 / 255)
DELAYED_TEXT = colors.Color(211 / 255, 47 / 255, 47 / 255)

SCHEDULE_COLUMNS = [
    ("Supplier", "supplier"), ("Order/Ref", "orderRef"), ("Final POD", "finalPod"),
    ("Status", "latestStatus"), ("Week #", "weekNumber"), ("Product", "productName"),
    ("Quantity", "quantity"), ("Warehouse", "receivingWarehouse"),
    ("Forwarding Agent", "forwardingAgent"), ("Vessel Name", "vesselName"),
    ("Incoterm", "incoterm"), ("Pallet Qty", "palletQty"),
]

SCHEDULE_EXCEL_COLUMNS = [
    "Supplier", "Order/Ref", "Final POD", "Latest Status", "Week Number",
    "Estimated Arrival", "Product", "Quantity", "Warehouse", "Forwarding Agent",
    "Vessel Name", "Incoterm", "Pallet Qty",
]

DETAIL_COLUMNS = [
    ("Supplier", "supplier"), ("Order Ref", "orderRef"), ("Product", "productName"),
    ("Week", "weekNumber"), ("Quantity", "quantity"), ("Pallets", "palletQty"),
    ("Status", "latestStatus"), ("Warehouse", "receivingWarehouse"), ("Final POD", "finalPod"),
    ("Forwarding Agent", "forwardingAgent"), ("Incoterm", "incoterm"),
    ("Vessel Name", "vesselName"), ("Notes", "notes"),
]

CAPACITY_STATUS_LABELS = {
    "critical": "Over Capacity",
    "warning":  "High Usage",
    "good":     "Moderate",
    "low":      "Available",
}


def status_label(status):
    if not status:
        return ""
    return status.replace("_", " ", 1).capitalize()


def _footer_canvas(footer):
    """Canvas class that stamps `footer.format(page=, total=)` once page count is known."""

    class FooterCanvas(canvas.Canvas):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._saved_pages = []

        def showPage(self):
            self._saved_pages.append(dict(self.__dict__))
            self._startPage()

        def save(self):
            total = len(self._saved_pages)
            for state in self._saved_pages:
                self.__dict__.update(state)
                self.setFont("Helvetica", 8)
                width, _ = self._pagesize
                self.drawCentredString(width / 2, 10 * mm,
                                       footer.format(page=self._pageNumber, total=total))
                super().showPage()
            super().save()

    return FooterCanvas


def _table(data, col_widths=None, header_color=HEADER_BLUE, font_size=8, extra=None):
    t = Table(data, colWidths=col_widths, repeatRows=1, hAlign="LEFT")
    style = [
        ("FONTNAME",       (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE",       (0, 0), (-1, 0), font_size + 1),
        ("BACKGROUND",     (0, 0), (-1, 0), header_color),
        ("TEXTCOLOR",      (0, 0), (-1, 0), colors.white),
        ("FONTNAME",       (0, 1), (-1, -1), "Helvetica"),
        ("FONTSIZE",       (0, 1), (-1, -1), font_size),
        ("GRID",           (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ("VALIGN",         (0, 0), (-1, -1), "TOP"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ROW_ALT]),
    ]
    t.setStyle(TableStyle(style + (extra or [])))
    return t


def _cell(value, fallback="-"):
    if value is None or value == "":
        return fallback
    return value


def _build(buffer, story, footer, pagesize=A4):
    doc = SimpleDocTemplate(buffer, pagesize=pagesize,
                            leftMargin=12 * mm, rightMargin=12 * mm,
                            topMargin=14 * mm, bottomMargin=18 * mm)
    doc.build(story, canvasmaker=_footer_canvas(footer))
    buffer.seek(0)
    return buffer


def pdf_response(buffer, filename):
    return send_file(buffer, mimetype="application/pdf", as_attachment=True, download_name=filename)


# ── Shipment schedule ───────────────────────────────────────────────────────────
def build_schedule_pdf(shipments, search="", statuses=None, now=None):
    now = now or datetime.now()
    styles = getSampleStyleSheet()
    delayed = [s for s in shipments if s.get("latestStatus") == "delayed"]

    story = [
        Paragraph("Shipment Schedule Report", styles["Title"]),
        Paragraph(f"Generated on: {now:%Y-%m-%d} at {now:%H:%M:%S}", styles["Normal"]),
        Paragraph(f"Total Shipments: {len(shipments)}", styles["Normal"]),
        Paragraph(f"Delayed Shipments: {len(delayed)}", styles["Normal"]),
    ]

    statuses = statuses or ["all"]
    applied = []
    if search:
        applied.append(f'Search: "{search}"')
    if "all" not in statuses:
        applied.append(f"Status: {', '.join(statuses)}")
    if applied:
        story.append(Paragraph("Applied Filters: " + ", ".join(applied), styles["Normal"]))
    story.append(Spacer(1, 6 * mm))

    data = [[title for title, _ in SCHEDULE_COLUMNS]]
    extra = []
    for row_no, s in enumerate(shipments, start=1):
        row = [_cell(s.get(key)) for _, key in SCHEDULE_COLUMNS]
        row[0] = s.get("supplier") or ""
        row[1] = s.get("orderRef") or ""
        row[2] = s.get("finalPod") or ""
        row[3] = status_label(s.get("latestStatus"))
        data.append(row)
        if s.get("latestStatus") == "delayed":
            extra += [
                ("BACKGROUND", (0, row_no), (-1, row_no), DELAYED_BG),
                ("TEXTCOLOR",  (0, row_no), (-1, row_no), DELAYED_TEXT),
            ]
    story.append(_table(data, extra=extra, font_size=7))

    return _build(BytesIO(), story, "Import Supply Chain Management - Page {page} of {total}",
                  pagesize=landscape(A4))


def schedule_excel_response(shipments, now=None):
    now = now or datetime.now()
    rows = []
    for s in shipments:
        rows.append({
            "Supplier":         s.get("supplier") or "",
            "Order/Ref":        s.get("orderRef") or "",
            "Final POD":        s.get("finalPod") or "",
            "Latest Status":    s.get("latestStatus") or "",
            "Week Number":      s.get("weekNumber") or "",
            "Estimated Arrival": (s.get("selectedWeekDate") or "")[:10],
            "Product":          s.get("productName") or "",
            "Quantity":         s.get("quantity") or "",
            "Warehouse":        s.get("receivingWarehouse") or "",
            "Forwarding Agent": s.get("forwardingAgent") or "",
            "Vessel Name":      s.get("vesselName") or "",
            "Incoterm":         s.get("incoterm") or "",
            "Pallet Qty":       s.get("palletQty") or "",
        })
    return export_to_excel("Shipment Schedule", rows,
                           download_name=f"shipment-schedule-{now:%Y-%m-%d}.xlsx",
                           columns=SCHEDULE_EXCEL_COLUMNS)


# ── Advanced report ─────────────────────────────────────────────────────────────
def describe_filters(filters):
    """(label, text) pairs for the filters that narrow the report."""
    filters = filters or {}
    date_range = filters.get("dateRange") or {}
    rows = [("Date Range", f"{date_range.get('start') or 'Any'} to {date_range.get('end') or 'Any'}")]
    for key, label in (("statuses", "Statuses"), ("warehouses", "Warehouses"),
                       ("suppliers", "Suppliers"), ("products", "Products"),
                       ("forwardingAgents", "Forwarding Agents")):
        rows.append((label, ", ".join(str(v) for v in filters.get(key) or []) or "All"))
    if filters.get("searchTerm"):
        rows.append(("Search", filters["searchTerm"]))
    return rows


def build_advanced_excel(filters, summary, results, group_by="none", now=None):
    now = now or datetime.now()
    summary_rows = [
        ["Advanced Shipment Report", ""],
        ["Generated:", f"{now:%Y-%m-%d %H:%M:%S}"],
        ["", ""],
        ["Filters Applied:", ""],
        *[[f"{label}:", text] for label, text in describe_filters(filters)],
        ["", ""],
        ["Summary Statistics:", ""],
        ["Total Shipments:", summary["totalShipments"]],
        ["Total Quantity:", summary["totalQuantity"]],
        ["Total Pallets:", summary["totalPallets"]],
    ]

    if group_by and group_by != "none":
        sheet = "Aggregated Data"
        df = pd.DataFrame([{
            group_by.upper():  g["group"],
            "Count":           g["count"],
            "Total Quantity":  g["totalQuantity"],
            "Total Pallets":   g["totalPallets"],
            "Avg Quantity":    round(g["avgQuantity"], 2),
        } for g in results], columns=[group_by.upper(), "Count", "Total Quantity",
                                      "Total Pallets", "Avg Quantity"])
    else:
        sheet = "Shipments"
        df = pd.DataFrame([{
            title: (to_number(s.get(key)) if key in ("quantity", "palletQty") else s.get(key) or "")
            for title, key in DETAIL_COLUMNS
        } for s in results], columns=[title for title, _ in DETAIL_COLUMNS])

    output = BytesIO()
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        pd.DataFrame(summary_rows).to_excel(writer, sheet_name="Summary", index=False, header=False)
        df.to_excel(writer, sheet_name=sheet, index=False)

        bold = writer.book.add_format({"bold": True})
        ws = writer.sheets["Summary"]
        ws.set_column("A:A", 22, bold)
        ws.set_column("B:B", 40)
        writer.sheets[sheet].set_column(0, max(len(df.columns) - 1, 0), 18)

    output.seek(0)
    return output


def build_advanced_pdf(filters, summary, results, group_by="none", now=None):
    now = now or datetime.now()
    styles = getSampleStyleSheet()
    story = [Paragraph("Advanced Shipment Report", styles["Title"]),
             Paragraph("Filters Applied:", styles["Heading4"])]
    for label, text in describe_filters(filters):
        if text not in ("All", "Any to Any"):
            story.append(Paragraph(f"{label}: {text}", styles["Normal"]))

    story += [
        Spacer(1, 4 * mm),
        Paragraph("Summary Statistics:", styles["Heading4"]),
        Paragraph(f"Total Shipments: {summary['totalShipments']}", styles["Normal"]),
        Paragraph(f"Total Quantity: {summary['totalQuantity']:,}", styles["Normal"]),
        Paragraph(f"Total Pallets: {round(summary['totalPallets']):,}", styles["Normal"]),
        Spacer(1, 6 * mm),
    ]

    if group_by and group_by != "none":
        data = [[group_by.upper(), "Count", "Total Qty", "Total Pallets", "Avg Qty"]]
        data += [[g["group"], g["count"], f"{g['totalQuantity']:.0f}",
                  f"{g['totalPallets']:.0f}", f"{g['avgQuantity']:.2f}"] for g in results]
        story.append(_table(data, header_color=HEADER_GREEN, font_size=10))
    else:
        data = [["Supplier", "Order Ref", "Product", "Week", "Qty", "Pallets", "Status", "Warehouse"]]
        data += [[s.get("supplier") or "", s.get("orderRef") or "", s.get("productName") or "",
                  _cell(s.get("weekNumber")), to_number(s.get("quantity")),
                  round(to_number(s.get("palletQty"))), s.get("latestStatus") or "",
                  s.get("receivingWarehouse") or ""] for s in results]
        story.append(_table(data, header_color=HEADER_GREEN))

    stamp = f"{now:%Y-%m-%d %H:%M:%S}"
    return _build(BytesIO(), story, "Generated: " + stamp + " | Page {page} of {total}")


# ── Warehouse capacity ──────────────────────────────────────────────────────────
def build_capacity_pdf(warehouse_stats, forecast=None, warehouse="all", now=None):
    now = now or datetime.now()
    styles = getSampleStyleSheet()
    selected = {
        name: ws for name, ws in warehouse_stats.items()
        if warehouse in (None, "", "all") or name == warehouse
    }

    title = "Warehouse Capacity Report"
    if warehouse not in (None, "", "all"):
        title += f" - {warehouse}"
    story = [Paragraph(title, styles["Title"]),
             Paragraph(f"Generated on: {now:%Y-%m-%d} at {now:%H:%M:%S}", styles["Normal"]),
             Spacer(1, 6 * mm)]

    data = [["Warehouse", "Utilisation", "Current Stock", "Incoming", "Total Bins",
             "Bins Used", "Available", "After Incoming", "Status"]]
    for name, ws in sorted(selected.items()):
        after = ws["projectedAvailableBins"]
        data.append([
            name,
            f"{ws['binUtilizationPercent']:.1f}% ({ws['projectedBinsUsed']}/{ws['totalBins']})",
            f"{ws['currentStock']:,}",
            f"{ws['incoming']:,}",
            ws["totalBins"],
            ws["usedBins"],
            ws["availableBins"],
            after if after >= 0 else f"({abs(after)})",
            CAPACITY_STATUS_LABELS.get(ws["status"], ws["status"]),
        ])
    if len(data) == 1:
        story.append(Paragraph("No shipments scheduled for this month.", styles["Normal"]))
    else:
        story.append(_table(data))

    if forecast:
        story += [Spacer(1, 8 * mm), Paragraph("8 Week Forecast", styles["Heading3"])]
        names = [n for n in forecast[0]["warehouses"]
                 if warehouse in (None, "", "all") or n == warehouse]
        fdata = [["Week"] + names + ["Alert", "Recommendation"]]
        for entry in forecast:
            fdata.append(
                [f"{entry['label']} (W{entry['weekNumber']})"]
                + [f"{entry['warehouses'][n]['percentUsed']}%" for n in names]
                + [entry["totalAlert"].upper(),
                   Paragraph((entry["recommendation"] or {}).get("message", ""), styles["BodyText"])]
            )
        story.append(_table(fdata))

    return _build(BytesIO(), story, "Warehouse Capacity - Page {page} of {total}")
