from datetime import date

from conftest import shipment
from config import Config
from utils import (
    current_month_weeks, compute_warehouse_stats, compute_capacity_forecast,
    forecast_recommendation,
)

TODAY = date(2024, 5, 15)   # ISO week 20


def test_current_month_weeks_follow_iso_numbering():
    assert current_month_weeks(TODAY) == [18, 19, 20, 21, 22]
    # January starts inside the last ISO week of the previous year
    assert current_month_weeks(date(2021, 1, 10))[0] == 53


def _stats_rows():
    return [
        shipment(id="s1", receivingWarehouse="PRETORIA", latestStatus="arrived_pta",
                 weekNumber=19, palletQty=10),
        shipment(id="s2", receivingWarehouse="PRETORIA", latestStatus="in_transit_seaway",
                 weekNumber=20, palletQty=5),
        shipment(id="s3", receivingWarehouse="PRETORIA", latestStatus="in_transit_seaway",
                 weekNumber=30, palletQty=99),
        shipment(id="s4", receivingWarehouse="PRETORIA", latestStatus="stored",
                 weekNumber=20, palletQty=99),
        shipment(id="s5", receivingWarehouse=None, finalPod=None, latestStatus="planned_seafreight",
                 weekNumber=None, palletQty=None, cbm=2.5),
        shipment(id="s6", receivingWarehouse="PRETORIA", latestStatus="cancelled",
                 weekNumber=20, palletQty=100),
    ]


def test_stats_split_stock_and_incoming_for_the_month():
    result = compute_warehouse_stats(_stats_rows(), today=TODAY)
    assert result["currentWeek"] == 20

    pta = result["warehouseStats"]["PRETORIA"]
    assert pta["currentStock"] == 10
    assert pta["incoming"] == 5
    assert pta["currentWeekIncoming"] == 5
    assert pta["usedBins"] == 10
    assert pta["projectedBinsUsed"] == 15
    assert pta["availableBins"] == 640
    assert pta["projectedAvailableBins"] == 635
    assert pta["status"] == "low"

    unassigned = result["warehouseStats"]["Unassigned"]
    assert unassigned["totalBins"] == 384
    assert unassigned["incoming"] == 2.5
    assert unassigned["projectedBinsUsed"] == 3


def test_recorded_bins_replace_the_stock_estimate():
    result = compute_warehouse_stats(_stats_rows(), bins_used={"PRETORIA": 600}, today=TODAY)
    pta = result["warehouseStats"]["PRETORIA"]
    assert pta["usedBins"] == 600
    assert pta["projectedBinsUsed"] == 605
    assert pta["status"] == "warning"


def test_forecast_covers_nine_weeks():
    forecast = compute_capacity_forecast([], {"PRETORIA": 0}, today=TODAY)
    assert len(forecast) == 9
    assert forecast[0]["label"] == "Now"
    assert forecast[1]["label"] == "+1w"
    assert [f["weekNumber"] for f in forecast] == list(range(20, 29))


def test_forecast_projects_incoming_pallets():
    rows = [
        shipment(receivingWarehouse="PRETORIA", latestStatus="in_transit_seaway",
                 weekNumber=20, palletQty=100),
        shipment(receivingWarehouse="PRETORIA", latestStatus="planned_seafreight",
                 weekNumber=21, palletQty=None),
        shipment(receivingWarehouse="KLAPMUTS", latestStatus="arrived_klm",
                 weekNumber=20, palletQty=50),
    ]
    forecast = compute_capacity_forecast(rows, {"PRETORIA": 500, "KLAPMUTS": 100}, today=TODAY)

    now = forecast[0]
    assert now["warehouses"]["PRETORIA"]["projectedBinsUsed"] == 600
    assert now["warehouses"]["PRETORIA"]["percentUsed"] == 92
    assert now["warehouses"]["KLAPMUTS"]["incomingBins"] == 0
    assert now["totalAlert"] == "warning"
    assert now["recommendation"]["type"] == "warning"
    assert "92%" in now["recommendation"]["message"]

    nxt = forecast[1]["warehouses"]["PRETORIA"]
    assert nxt["incomingBins"] == 1
    assert nxt["projectedBinsUsed"] == 501
    assert nxt["alert"] == "ok"


def test_forecast_wraps_into_the_next_year():
    forecast = compute_capacity_forecast([], {}, today=date(2024, 12, 18))
    assert [f["weekNumber"] for f in forecast][:4] == [51, 52, 1, 2]


def test_overflow_recommendation():
    rows = [shipment(receivingWarehouse="PRETORIA", latestStatus="moored",
                     weekNumber=20, palletQty=100)]
    now = compute_capacity_forecast(rows, {"PRETORIA": 640}, today=TODAY)[0]
    assert now["totalAlert"] == "overflow"
    assert now["recommendation"]["type"] == "overflow"
    assert "90 bins" in now["recommendation"]["message"]


def test_critical_pretoria_is_redistributed_to_klapmuts():
    warehouses = {
        "PRETORIA": {"projectedBinsUsed": 620, "capacity": 650, "percentUsed": 95, "alert": "critical"},
        "KLAPMUTS": {"projectedBinsUsed": 100, "capacity": 384, "percentUsed": 26, "alert": "ok"},
    }
    rec = forecast_recommendation(warehouses)
    assert rec["type"] == "redistribute"
    assert rec["message"] == "CRITICAL: Move ~53 pallets from PRETORIA to KLAPMUTS"
    assert rec["action"] == "Reduces PRETORIA to 83%"


def test_critical_without_room_in_klapmuts():
    warehouses = {
        "PRETORIA": {"projectedBinsUsed": 620, "capacity": 650, "percentUsed": 95, "alert": "critical"},
        "KLAPMUTS": {"projectedBinsUsed": 350, "capacity": 384, "percentUsed": 91, "alert": "warning"},
    }
    assert forecast_recommendation(warehouses)["type"] == "critical"
    assert forecast_recommendation({"KLAPMUTS": warehouses["KLAPMUTS"]}) is None


def test_forecast_rounds_half_bins_up():
    rows = [shipment(receivingWarehouse="PRETORIA", latestStatus="in_transit_seaway",
                     weekNumber=21, palletQty=5)]
    nxt = compute_capacity_forecast(rows, {"PRETORIA": 13}, today=TODAY)[1]
    pta = nxt["warehouses"]["PRETORIA"]
    # 13 - 5 * 0.3 + 5 = 16.5
    assert pta["projectedBinsUsed"] == 17
    assert pta["percentUsed"] == 3


def test_forecast_converts_pallets_with_bins_per_pallet(monkeypatch):
    monkeypatch.setattr(Config, "BINS_PER_PALLET", 2)
    rows = [shipment(receivingWarehouse="PRETORIA", latestStatus="in_transit_seaway",
                     weekNumber=20, palletQty=10)]
    now = compute_capacity_forecast(rows, {"PRETORIA": 100}, today=TODAY)[0]
    assert now["warehouses"]["PRETORIA"]["incomingBins"] == 20
    assert now["warehouses"]["PRETORIA"]["projectedBinsUsed"] == 120

    # stock-to-bin conversion in the monthly stats is unaffected
    stats = compute_warehouse_stats(rows, {}, today=TODAY)["warehouseStats"]["PRETORIA"]
    assert stats["projectedBinsUsed"] == 10
