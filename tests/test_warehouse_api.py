from utils import iso_week
from datetime import date


def test_capacity_map_is_public(client):
    resp = client.get("/api/warehouse-capacity")
    assert resp.status_code == 200
    assert resp.get_json() == {"PRETORIA": 0, "KLAPMUTS": 0, "Offsite": 0}


def test_update_validates_bins_used(client, auth_headers):
    for bad in (-1, "12", True, None):
        resp = client.put("/api/warehouse-capacity/PRETORIA", headers=auth_headers, json={"binsUsed": bad})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid binsUsed value"
    assert client.put("/api/warehouse-capacity/PRETORIA", json={"binsUsed": 3}).status_code == 401


def test_update_rejects_fractional_and_non_finite_bins(client, auth_headers):
    url = "/api/warehouse-capacity/PRETORIA"
    resp = client.put(url, headers=auth_headers, json={"binsUsed": 12.7})
    assert resp.status_code == 400
    for raw in ('{"binsUsed": NaN}', '{"binsUsed": Infinity}'):
        resp = client.put(url, headers=auth_headers, data=raw, content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid binsUsed value"
    assert client.get("/api/warehouse-capacity").get_json()["PRETORIA"] == 0

    resp = client.put(url, headers=auth_headers, json={"binsUsed": 12.0})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["binsUsed"] == 12


def test_update_records_history(client, auth_headers):
    resp = client.put("/api/warehouse-capacity/KLAPMUTS", headers=auth_headers, json={"binsUsed": 120})
    assert resp.get_json()["success"] is True
    assert resp.get_json()["data"]["binsUsed"] == 120
    client.put("/api/warehouse-capacity/KLAPMUTS", headers=auth_headers, json={"binsUsed": 150})

    assert client.get("/api/warehouse-capacity").get_json()["KLAPMUTS"] == 150

    history = client.get("/api/warehouse-capacity/KLAPMUTS/history", headers=auth_headers).get_json()
    assert [(h["binsUsed"], h["previousValue"]) for h in history] == [(150, 120), (120, 0)]
    assert history[0]["changedBy"] == {"username": "clerk", "fullName": "Warehouse Clerk"}

    limited = client.get("/api/warehouse-capacity/KLAPMUTS/history?limit=1", headers=auth_headers)
    assert len(limited.get_json()) == 1


def test_new_warehouse_is_created_on_update(client, auth_headers):
    resp = client.put("/api/warehouse-capacity/DURBAN", headers=auth_headers, json={"binsUsed": 10})
    assert resp.status_code == 200
    assert client.get("/api/warehouse-capacity").get_json()["DURBAN"] == 10


def test_full_history_is_admin_only(client, auth_headers, admin_headers):
    client.put("/api/warehouse-capacity/PRETORIA", headers=auth_headers, json={"binsUsed": 5})
    resp = client.get("/api/warehouse-capacity/history/all", headers=auth_headers)
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Admin access required"}

    resp = client.get("/api/warehouse-capacity/history/all", headers=admin_headers)
    assert resp.status_code == 200
    assert len(resp.get_json()) == 1


def test_high_utilisation_sends_capacity_alert(client, auth_headers):
    client.put("/api/warehouse-capacity/PRETORIA", headers=auth_headers, json={"binsUsed": 100})
    client.put("/api/warehouse-capacity/PRETORIA", headers=auth_headers, json={"binsUsed": 600})
    client.put("/api/warehouse-capacity/PRETORIA", headers=auth_headers, json={"binsUsed": 610})

    history = client.get("/api/notifications/history", headers=auth_headers).get_json()
    assert [n["eventType"] for n in history["notifications"]] == ["warehouse_capacity"]
    assert "PRETORIA" in history["notifications"][0]["subject"]


def test_stats_use_recorded_bins(client, auth_headers, make_shipment):
    week = iso_week(date.today())
    make_shipment(receivingWarehouse="PRETORIA", latestStatus="arrived_pta", weekNumber=week, palletQty=10)
    make_shipment(receivingWarehouse="PRETORIA", latestStatus="moored", weekNumber=week, palletQty=4)
    client.put("/api/warehouse-capacity/PRETORIA", headers=auth_headers, json={"binsUsed": 100})

    body = client.get("/api/warehouse-capacity/stats", headers=auth_headers).get_json()
    assert body["currentWeek"] == week
    pta = body["warehouseStats"]["PRETORIA"]
    assert pta["currentStock"] == 10
    assert pta["incoming"] == 4
    assert pta["usedBins"] == 100
    assert pta["projectedBinsUsed"] == 104


def test_forecast_and_pdf(client, auth_headers, make_shipment):
    make_shipment(receivingWarehouse="PRETORIA", latestStatus="moored",
                  weekNumber=iso_week(date.today()), palletQty=20)

    forecast = client.get("/api/warehouse-capacity/forecast", headers=auth_headers).get_json()
    assert len(forecast) == 9
    assert forecast[0]["warehouses"]["PRETORIA"]["incomingBins"] == 20

    resp = client.get("/api/warehouse-capacity/export/pdf", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.data.startswith(b"%PDF")
    assert "Warehouse_Capacity_All_" in resp.headers["Content-Disposition"]

    resp = client.get("/api/warehouse-capacity/export/pdf?warehouse=PRETORIA", headers=auth_headers)
    assert "Warehouse_Capacity_PRETORIA_" in resp.headers["Content-Disposition"]
