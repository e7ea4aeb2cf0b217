from flask import send_file
from openpyxl.styles import  Border, Side, Alignment, Font
from io import BytesIO
from openpyxl import Workbook
import pandas as pd
import math
import random
import string
import time
import re
from functools import cmp_to_key
from datetime import datetime, date, timedelta
from collections import defaultdict
from config import Config

SHIPMENT_STATUSES = [
  "planned_airfreight", "planned_seafreight",
  "in_transit_airfreight", "in_transit_roadway", "in_transit_seaway",
  "moored", "berth_working", "berth_complete",
  "arrived_pta", "arrived_klm", "arrived_offsite",
  "delayed", "cancelled",
  "unloading", "inspection_pending", "inspecting", "inspection_failed", "inspection_passed",
  "receiving", "received", "stored", "rejected",
]
ARRIVED_STATUSES = ["arrived_pta", "arrived_klm", "arrived_offsite"]
POST_ARRIVAL_STATUSES = ARRIVED_STATUSES + [
  "unloading", "inspection_pending", "inspecting", "inspection_failed",
  "inspection_passed", "receiving", "received",
]
# statuses that occupy bins in the receiving warehouse
ON_SITE_STATUSES = [
  "arrived_pta", "arrived_klm", "unloading", "inspection_pending", "inspecting",
  "inspection_failed", "inspection_passed", "receiving", "received", "stored",
]
# statuses still on the way, used by the 8 week forecast
INBOUND_STATUSES = [
  "planned_airfreight", "planned_seafreight", "in_transit_airfreight",
  "in_transit_seaway", "in_transit_roadway", "moored", "berth_working", "berth_complete",
]
IN_WAREHOUSE_STATUSES = ["stored", "received", "inspection_passed"]
ARCHIVABLE_STATUSES = ARRIVED_STATUSES + ["stored"]

INSPECTION_STATUSES = ["not_started", "in_progress", "passed", "failed", "requires_review"]
RECEIVING_STATUSES  = ["not_started", "in_progress", "partial", "completed", "discrepancy"]
INCOTERMS  = ["EXW", "FCA", "CPT", "CIP", "DAP", "DPU", "DDP", "FAS", "FOB", "CFR", "CIF"]
PRIORITIES = ["low", "medium", "high", "urgent"]

AIR_FORWARDING_AGENTS = [
  "Emirates SkyCargo", "Qatar Airways Cargo", "Lufthansa Cargo", "Singapore Airlines Cargo",
  "Korean Air Cargo", "Turkish Airlines Cargo", "Cathay Pacific Cargo",
  "British Airways World Cargo", "Air France-KLM Cargo", "Ethiopian Airlines Cargo",
  "SAA Cargo", "Kenya Airways Cargo",
]
SEA_FORWARDING_AGENTS = [
  "DHL", "DSV", "Afrigistics", "MSC", "COSCO", "ONE", "Hapag-Lloyd", "Maersk",
  "CMA CGM", "Evergreen", "Yang Ming", "HMM", "OOCL",
]
AIR_STATUSES = ["planned_airfreight", "in_transit_airfreight", "air_customs_clearance"]

NUMERIC_SORT_FIELDS = ["weekNumber", "quantity", "cbm", "palletQty"]
DATE_RANGE_FIELDS = {
  "created_at":      "createdAt",
  "updated_at":      "updatedAt",
  "inspection_date": "inspectionDate",
  "receiving_date":  "receivingDate",
}
MULTI_SELECT_FILTERS = {
  "statuses":         "latestStatus",
  "warehouses":       "receivingWarehouse",
  "suppliers":        "supplier",
  "products":         "productName",
  "weekNumbers":      "weekNumber",
  "forwardingAgents": "forwardingAgent",
  "incoterms":        "incoterm",
  "vesselNames":      "vesselName",
  "inspectionStatus": "inspectionStatus",
  "receivingStatus":  "receivingStatus",
}
GROUP_BY_FIELDS = {
  "supplier":        "supplier",
  "warehouse":       "receivingWarehouse",
  "status":          "latestStatus",
  "product":         "productName",
  "forwardingAgent": "forwardingAgent",
}
NOT_SET = "(Not Set)"


def forwarding_agents_for(status):
  """Air carriers for air statuses, sea/road forwarders for everything else."""
  return AIR_FORWARDING_AGENTS if status in AIR_STATUSES else SEA_FORWARDING_AGENTS


def to_number(value):
  # blank, missing and non-numeric all count as zero
  try:
    num = float(value)
  except (TypeError, ValueError):
    return 0
  if math.isnan(num):
    return 0
  return int(num) if num.is_integer() else num

def round_half_up(value):
  # .5 always goes up (16.5 -> 17)
  return int(math.floor(value + 0.5))

def to_optional_number(value):
  # same as to_number, but a zero/blank input stays unset
  return to_number(value) or None

def to_week(value):
  try:
    return int(float(value))
  except (TypeError, ValueError):
    return None

def parse_date(value):
  if value is None or value == "":
    return None
  if isinstance(value, datetime):
    return value.replace(tzinfo=None) if value.tzinfo else value
  if isinstance(value, date):
    return datetime.combine(value, datetime.min.time())
  ts = pd.to_datetime(value, errors="coerce", utc=True)
  if pd.isna(ts):
    return None
  return ts.tz_convert(None).to_pydatetime()

def iso_week(day):
  return day.isocalendar()[1]

def current_month_weeks(today=None):
  """ISO week numbers touched by the days of today's month, in calendar order."""
  today = today or date.today()
  day = date(today.year, today.month, 1)
  weeks = []
  while day.month == today.month:
    week = iso_week(day)
    if week not in weeks:
      weeks.append(week)
    day += timedelta(days=1)
  return weeks

def estimate_date_from_week(week_number, year=None):
  year = year or date.today().year
  return datetime(year, 1, 1) + timedelta(days=(int(week_number) - 1) * 7)

def generate_shipment_id():
  suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
  return f"ship_{int(time.time() * 1000)}_{suffix}"

def sanitize_filename(name):
  name = re.sub(r"[^\w\-._]", "_", name or "", flags=re.ASCII)
  name = re.sub(r"_+", "_", name)
  return name.strip("_")

def _contains(value, needle):
  return bool(value) and needle in str(value).lower()

def _is_planned(shipment):
  return (shipment.get("latestStatus") or "").startswith("planned_")

def planned_last(shipments):
  """Stable sort that only moves planned_* shipments below everything else."""
  return sorted(shipments, key=_is_planned)


####################                          #####################
####################  Computation functions   #####################
def compute_filter_options(shipments):
  def distinct(field):
    return sorted({s.get(field) for s in shipments if s.get(field)})

  weeks = {to_week(s.get("weekNumber")) for s in shipments}
  return {
    "statuses":           distinct("latestStatus"),
    "warehouses":         distinct("receivingWarehouse"),
    "suppliers":          distinct("supplier"),
    "products":           distinct("productName"),
    "weekNumbers":        sorted(w for w in weeks if w),
    "forwardingAgents":   distinct("forwardingAgent"),
    "incoterms":          distinct("incoterm"),
    "vesselNames":        distinct("vesselName"),
    "inspectionStatuses": INSPECTION_STATUSES,
    "receivingStatuses":  RECEIVING_STATUSES,
  }

def _in_date_range(shipment, date_range):
  start = parse_date(date_range.get("start"))
  end   = parse_date(date_range.get("end"))
  if not start and not end:
    return True

  field = DATE_RANGE_FIELDS.get(date_range.get("field") or "created_at", "createdAt")
  value = parse_date(shipment.get(field))
  # records without the chosen date are not constrained
  if value is None:
    return True
  if start and value < start:
    return False
  # a bare end date covers the whole day
  if end:
    if end.time() == datetime.min.time():
      end = end + timedelta(days=1) - timedelta(microseconds=1)
    if value > end:
      return False
  return True

def _in_range(value, bounds):
  low, high = bounds.get("min"), bounds.get("max")
  value = to_number(value)
  if low not in (None, "") and value < to_number(low):
    return False
  if high not in (None, "") and value > to_number(high):
    return False
  return True

def filter_shipments(shipments, filters=None):
  """
  Apply the advanced report filters. Every predicate is ANDed, an empty
  multi-select list means "no constraint". Planned shipments go last.
  """
  filters = filters or {}
  date_range = filters.get("dateRange") or {}
  qty_range  = filters.get("quantityRange") or {}
  plt_range  = filters.get("palletRange") or {}
  term       = (filters.get("searchTerm") or "").strip().lower()

  selected = {}
  for name, field in MULTI_SELECT_FILTERS.items():
    values = filters.get(name) or []
    if values:
      if field == "weekNumber":
        values = {to_week(v) for v in values}
      selected[field] = set(values)

  out = []
  for s in shipments:
    if not _in_date_range(s, date_range):
      continue

    ok = True
    for field, values in selected.items():
      value = to_week(s.get(field)) if field == "weekNumber" else s.get(field)
      if value not in values:
        ok = False
        break
    if not ok:
      continue

    if not _in_range(s.get("quantity"), qty_range):
      continue
    if not _in_range(s.get("palletQty"), plt_range):
      continue

    if term and not any(
      _contains(s.get(f), term)
      for f in ("supplier", "orderRef", "productName", "finalPod", "notes")
    ):
      continue
    out.append(s)

  return planned_last(out)

def compute_summary(shipments):
  total_qty = sum(to_number(s.get("quantity")) for s in shipments)
  total_plt = sum(to_number(s.get("palletQty")) for s in shipments)
  return {
    "totalShipments": len(shipments),
    "totalQuantity":  total_qty,
    "totalPallets":   total_plt,
    "avgQuantity":    round(total_qty / len(shipments), 2) if shipments else 0,
  }

def _group_key(shipment, group_by):
  if group_by == "week":
    week = shipment.get("weekNumber")
    return f"Week {week}" if week not in (None, "") else None
  if group_by == "month":
    created = parse_date(shipment.get("createdAt"))
    return created.strftime("%Y-%m") if created else None
  return shipment.get(GROUP_BY_FIELDS.get(group_by, ""))

def aggregate_shipments(shipments, group_by="none", sort_by="count", sort_direction="desc"):
  """
  Group shipments for the advanced report. With group_by "none" the
  shipments come back untouched.
  """
  if not group_by or group_by == "none":
    return shipments

  groups = {}
  for s in shipments:
    key = _group_key(s, group_by) or NOT_SET
    grp = groups.setdefault(key, {
      "group": key, "count": 0, "totalQuantity": 0, "totalPallets": 0, "shipments": []
    })
    grp["count"] += 1
    grp["totalQuantity"] += to_number(s.get("quantity"))
    grp["totalPallets"]  += to_number(s.get("palletQty"))
    grp["shipments"].append(s)

  result = []
  for grp in groups.values():
    grp["avgQuantity"] = grp["totalQuantity"] / grp["count"]
    result.append(grp)

  reverse = sort_direction != "asc"
  if sort_by == "group":
    result.sort(key=lambda g: g["group"].lower(), reverse=reverse)
  else:
    sort_by = sort_by if sort_by in ("count", "totalQuantity", "totalPallets", "avgQuantity") else "count"
    result.sort(key=lambda g: g[sort_by], reverse=reverse)
  return result

def _schedule_compare(key, direction):
  sign = 1 if direction == "asc" else -1

  def compare(a, b):
    a_planned, b_planned = _is_planned(a), _is_planned(b)
    if a_planned != b_planned:
      return 1 if a_planned else -1
    if not key:
      return 0

    a_val, b_val = a.get(key), b.get(key)
    # empty values always sink, whatever the direction
    if a_val is None and b_val is None:
      return 0
    if a_val is None:
      return 1
    if b_val is None:
      return -1

    if key in NUMERIC_SORT_FIELDS or (
      isinstance(a_val, (int, float)) and isinstance(b_val, (int, float))
    ):
      a_val, b_val = to_number(a_val), to_number(b_val)
    else:
      a_val, b_val = (str(a_val).lower(), str(a_val)), (str(b_val).lower(), str(b_val))
    if a_val == b_val:
      return 0
    return sign * (-1 if a_val < b_val else 1)

  return compare

def compute_schedule(shipments, search="", statuses=None, sort_key="weekNumber", direction="asc"):
  """Shipment schedule table: search, status chips, planned last, then column sort."""
  term = (search or "").strip().lower()
  statuses = statuses or ["all"]

  def matches(s):
    if term and not any(_contains(s.get(f), term) for f in ("orderRef", "supplier", "finalPod")):
      return False
    status = s.get("latestStatus")
    return (
      "all" in statuses
      or status in statuses
      or ("arrived" in statuses and status in ARRIVED_STATUSES)
    )

  rows = [s for s in shipments if matches(s)]
  return sorted(rows, key=cmp_to_key(_schedule_compare(sort_key, direction)))

def compute_status_counts(shipments):
  counts = defaultdict(int)
  for s in shipments:
    counts[s.get("latestStatus") or NOT_SET] += 1
  return dict(counts)

def _capacity_status(percent):
  if percent >= 95:
    return "critical"
  if percent >= 80:
    return "warning"
  if percent >= 60:
    return "good"
  return "low"

def compute_warehouse_stats(shipments, bins_used=None, today=None):
  """
  Bin usage per warehouse for the current month.

  Shipments on site add to current stock, anything still inbound (and not
  cancelled) adds to incoming. A recorded bins_used value replaces the
  stock based estimate of used bins.
  """
  today = today or date.today()
  bins_used = bins_used or {}
  month_weeks = current_month_weeks(today)
  current_week = iso_week(today)
  avg = Config.AVG_ITEMS_PER_BIN

  stats = {}
  for s in shipments:
    week = to_week(s.get("weekNumber")) or current_week
    if week not in month_weeks or s.get("latestStatus") == "stored":
      continue

    warehouse = s.get("receivingWarehouse") or s.get("finalPod") or "Unassigned"
    pallets = to_number(s.get("palletQty")) or to_number(s.get("cbm"))
    total_bins = Config.WAREHOUSE_CAPACITY.get(warehouse, Config.DEFAULT_WAREHOUSE_BINS)

    ws = stats.setdefault(warehouse, {
      "totalBins":           total_bins,
      "avgItemsPerBin":      avg,
      "maxCapacity":         total_bins * avg,
      "currentStock":        0,
      "incoming":            0,
      "currentWeekIncoming": 0,
      "weeklyIncoming":      {},
    })

    status = s.get("latestStatus")
    if status in ON_SITE_STATUSES:
      ws["currentStock"] += pallets
    elif status != "cancelled":
      ws["incoming"] += pallets
      ws["weeklyIncoming"][week] = ws["weeklyIncoming"].get(week, 0) + pallets
      if week == current_week:
        ws["currentWeekIncoming"] += pallets

  for warehouse, ws in stats.items():
    used = bins_used.get(warehouse)
    if used is None:
      used = math.ceil(ws["currentStock"] / ws["avgItemsPerBin"])
    ws["totalProjected"]         = ws["currentStock"] + ws["incoming"]
    ws["usedBins"]               = used
    ws["projectedBinsUsed"]      = used + math.ceil(ws["incoming"] / ws["avgItemsPerBin"])
    ws["availableBins"]          = ws["totalBins"] - used
    ws["projectedAvailableBins"] = ws["totalBins"] - ws["projectedBinsUsed"]
    ws["binUtilizationPercent"]  = ws["projectedBinsUsed"] / ws["totalBins"] * 100
    ws["status"]                 = _capacity_status(ws["binUtilizationPercent"])

  return {"warehouseStats": stats, "currentWeek": current_week, "monthWeeks": month_weeks}

ALERT_RANK = {"ok": 0, "warning": 1, "critical": 2, "overflow": 3}

def _forecast_alert(percent):
  if percent > 100:
    return "overflow"
  if percent >= 95:
    return "critical"
  if percent >= 80:
    return "warning"
  return "ok"

def forecast_recommendation(warehouses):
  pta = warehouses.get("PRETORIA")
  klm = warehouses.get("KLAPMUTS")
  if not pta:
    return None

  if pta["alert"] == "overflow":
    overflow = pta["projectedBinsUsed"] - pta["capacity"]
    return {
      "type": "overflow",
      "severity": "critical",
      "message": f"OVERFLOW: PRETORIA will exceed capacity by {overflow} bins. Urgent action needed!",
    }

  if pta["alert"] == "critical":
    available = pta["capacity"] - pta["projectedBinsUsed"]
    if klm and klm["percentUsed"] < 80:
      can_move = min(available + 50, klm["capacity"] - klm["projectedBinsUsed"])
      reduced = round_half_up((pta["projectedBinsUsed"] - can_move) / pta["capacity"] * 100)
      return {
        "type": "redistribute",
        "severity": "warning",
        "message": f"CRITICAL: Move ~{round_half_up(can_move / 1.5)} pallets from PRETORIA to KLAPMUTS",
        "action": f"Reduces PRETORIA to {reduced}%",
      }
    return {
      "type": "critical",
      "severity": "warning",
      "message": f"CRITICAL: PRETORIA at {pta['percentUsed']}% capacity",
    }

  if pta["alert"] == "warning":
    return {
      "type": "warning",
      "severity": "info",
      "message": f"WARNING: PRETORIA approaching capacity ({pta['percentUsed']}%)",
    }
  return None

def compute_capacity_forecast(shipments, bins_used=None, capacities=None, today=None, weeks=8):
  """
  Bin usage projection for the current week and the next `weeks` weeks.

  Each inbound shipment counts its pallets (1 when unknown) against the
  week it is due. Later weeks assume 30% of the incoming volume leaves.
  """
  today = today or date.today()
  bins_used = bins_used or {}
  capacities = capacities or Config.WAREHOUSE_CAPACITY

  forecast = []
  for offset in range(weeks + 1):
    week = iso_week(today + timedelta(weeks=offset))
    entry = {
      "weekOffset": offset,
      "weekNumber": week,
      "label": "Now" if offset == 0 else f"+{offset}w",
      "warehouses": {},
      "totalAlert": "ok",
      "recommendation": None,
    }

    for warehouse, capacity in capacities.items():
      pallets = sum(
        to_number(s.get("palletQty")) or 1
        for s in shipments
        if to_week(s.get("weekNumber")) == week
        and s.get("receivingWarehouse") == warehouse
        and s.get("latestStatus") in INBOUND_STATUSES
      )
      incoming_bins = math.ceil(pallets * Config.BINS_PER_PALLET)
      current = bins_used.get(warehouse) or 0
      if offset == 0:
        estimated = current
      else:
        estimated = max(0, current - incoming_bins * 0.3)

      projected = round_half_up(estimated + incoming_bins)
      percent = round_half_up(projected / capacity * 100)
      alert = _forecast_alert(percent)
      if ALERT_RANK[alert] > ALERT_RANK[entry["totalAlert"]]:
        entry["totalAlert"] = alert

      entry["warehouses"][warehouse] = {
        "projectedBinsUsed": projected,
        "capacity":          capacity,
        "percentUsed":       percent,
        "incomingBins":      incoming_bins,
        "alert":             alert,
      }

    entry["recommendation"] = forecast_recommendation(entry["warehouses"])
    forecast.append(entry)
  return forecast

# supplier KPIs
def supplier_shipments(shipments, supplier):
  if not supplier:
    return []
  name = supplier.strip().lower()
  return [s for s in shipments if (s.get("supplier") or "").strip().lower() == name]

def _in_warehouse(shipment):
  return shipment.get("latestStatus") in IN_WAREHOUSE_STATUSES

def _scheduled_date(shipment, year=None):
  return (parse_date(shipment.get("selectedWeekDate"))
          or estimate_date_from_week(to_week(shipment.get("weekNumber")), year))

def is_on_time(shipment, year=None):
  if not _in_warehouse(shipment):
    return False
  arrived = parse_date(shipment.get("receivingDate")) or parse_date(shipment.get("updatedAt"))
  if not arrived or not to_week(shipment.get("weekNumber")):
    return True     # missing data counts as on time
  return arrived <= _scheduled_date(shipment, year)

def compute_on_time_percent(shipments, year=None):
  warehouse = [s for s in shipments if _in_warehouse(s)]
  if not warehouse:
    return 0
  on_time = sum(1 for s in warehouse if is_on_time(s, year))
  return round(on_time / len(warehouse) * 100)

def compute_pass_rate(shipments):
  inspected = [s for s in shipments if _in_warehouse(s) and s.get("inspectionDate")]
  if not inspected:
    return None
  passed = sum(1 for s in inspected if (s.get("inspectionStatus") or "").lower() == "passed")
  return round(passed / len(inspected) * 100)

def compute_avg_lead_time(shipments, year=None):
  lead_times = []
  for s in shipments:
    if not (_in_warehouse(s) and s.get("receivingDate") and to_week(s.get("weekNumber"))):
      continue
    delta = parse_date(s["receivingDate"]) - _scheduled_date(s, year)
    lead_times.append(math.ceil(delta.total_seconds() / 86400))
  if not lead_times:
    return None
  return round(sum(lead_times) / len(lead_times))

def compute_on_time_trend(shipments, days=90, today=None, year=None):
  now = parse_date(today) if today else datetime.utcnow()
  start = now - timedelta(days=days)

  weekly = {}
  for s in shipments:
    if not _in_warehouse(s):
      continue
    when = (parse_date(s.get("receivingDate")) or parse_date(s.get("updatedAt"))
            or parse_date(s.get("createdAt")))
    if not when or when < start:
      continue
    iso_year, week, _ = when.isocalendar()
    bucket = weekly.setdefault(f"{iso_year}-W{week:02d}", {"total": 0, "onTime": 0, "date": when})
    bucket["total"] += 1
    if is_on_time(s, year):
      bucket["onTime"] += 1

  ordered = sorted(weekly.values(), key=lambda b: b["date"])
  return [round(b["onTime"] / b["total"] * 100) for b in ordered]

def supplier_grade(on_time, pass_rate):
  if on_time >= 85 and (pass_rate is None or pass_rate >= 90):
    return {"grade": "A", "label": "Excellent"}
  if on_time >= 70 and (pass_rate is None or pass_rate >= 80):
    return {"grade": "B", "label": "Good"}
  return {"grade": "C", "label": "Needs Improvement"}

def compute_supplier_metrics(shipments, supplier, today=None):
  rows = supplier_shipments(shipments, supplier)
  year = parse_date(today).year if today else None
  on_time = compute_on_time_percent(rows, year)
  pass_rate = compute_pass_rate(rows)
  return {
    "supplierName":    supplier,
    "onTimePercent":   on_time,
    "passRatePercent": pass_rate,
    "avgLeadTime":     compute_avg_lead_time(rows, year),
    "totalShipments":  sum(1 for s in rows if _in_warehouse(s)),
    "trend":           compute_on_time_trend(rows, today=today, year=year),
    "grade":           supplier_grade(on_time, pass_rate),
  }
####################          END            #####################
####################  Computation functions  #####################



#########################################################################################
######################## |HELPER FUNCTIONS| #############################################
#########################################################################################

def export_to_excel(sheet_name, table_view, download_name=None, columns=None): # Function to export to excel with formating
    df = pd.DataFrame.from_records(table_view, columns=columns)
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name[:31]

    header = df.columns.tolist()
    ws.append(header)

    bold_font = Font(bold=True)
    all_borders = Border(left=Side(style='thin'), right=Side(style='thin'), top=Side(style='thin'), bottom=Side(style='thin'))
    center_alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)

    for cell in ws[1]:
        cell.font = bold_font
        cell.border = all_borders
        cell.alignment = center_alignment

    for row in df.itertuples(index=False):
        ws.append(["" if pd.isna(v) else v for v in row])

    for idx, column in enumerate(header, start=1):
        width = max([len(str(column))] + [len(str(v)) for v in df[column].tolist()]) + 2
        ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = min(width, 40)

    excel_file = BytesIO()
    wb.save(excel_file)
    excel_file.seek(0)

    return send_file(
        excel_file,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name=download_name or f"{sheet_name}.xlsx",
    )
