from datetime import datetime, timedelta

from models import model, SCM_Shipment


def _age(shipment_id, days):
    row = model.get(SCM_Shipment, shipment_id)
    row.UpdatedAt = datetime.utcnow() - timedelta(days=days)
    model.commit()


def test_manual_archive_validates_input(client, auth_headers, make_shipment):
    resp = client.post("/api/shipments/manual-archive", headers=auth_headers, json={"shipmentIds": []})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "No shipment IDs provided"

    moving = make_shipment(latestStatus="moored")["id"]
    resp = client.post("/api/shipments/manual-archive", headers=auth_headers,
                       json={"shipmentIds": [moving]})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "No valid ARRIVED or STORED shipments found to archive"


def test_manual_archive_moves_arrived_and_stored(client, auth_headers, make_shipment):
    arrived = make_shipment(orderRef="PO-1", latestStatus="arrived_pta")["id"]
    stored = make_shipment(orderRef="PO-2", latestStatus="stored")["id"]
    moving = make_shipment(orderRef="PO-3", latestStatus="moored")["id"]

    resp = client.post("/api/shipments/manual-archive", headers=auth_headers,
                       json={"shipmentIds": [arrived, stored, moving]})
    body = resp.get_json()
    assert body["archivedCount"] == 2
    assert body["skippedCount"] == 1
    assert body["remainingCount"] == 1
    assert body["archiveFileName"].startswith("manual_archive_")

    remaining = client.get("/api/shipments", headers=auth_headers).get_json()
    assert [s["id"] for s in remaining] == [moving]

    archived = client.get(f"/api/shipments/archives/{body['archiveFileName']}",
                          headers=auth_headers).get_json()
    assert archived["totalShipments"] == 2
    assert archived["archiveType"] == "manual"
    assert sorted(s["orderRef"] for s in archived["data"]) == ["PO-1", "PO-2"]


def test_auto_archive_uses_age_of_arrived_shipments(client, auth_headers, make_shipment):
    old = make_shipment(orderRef="OLD", latestStatus="arrived_klm")["id"]
    make_shipment(orderRef="NEW", latestStatus="arrived_pta")
    old_stored = make_shipment(orderRef="STORED", latestStatus="stored")["id"]
    _age(old, 45)
    _age(old_stored, 45)

    stats = client.get("/api/shipments/auto-archive/stats?daysOld=30", headers=auth_headers).get_json()
    assert stats["eligibleForArchive"] == 1
    assert stats["totalArrived"] == 2
    assert stats["eligibleShipments"][0]["id"] == old
    assert stats["eligibleShipments"][0]["daysOld"] == 45

    body = client.post("/api/shipments/auto-archive/perform?daysOld=30", headers=auth_headers).get_json()
    assert body["archivedCount"] == 1
    assert body["remainingCount"] == 2
    assert body["archiveFileName"].startswith("auto_archive_arrived_")

    again = client.post("/api/shipments/auto-archive/perform", headers=auth_headers).get_json()
    assert again["archivedCount"] == 0


def test_list_and_rename_archives(client, auth_headers, make_shipment):
    sid = make_shipment(latestStatus="stored")["id"]
    name = client.post("/api/shipments/manual-archive", headers=auth_headers,
                       json={"shipmentIds": [sid]}).get_json()["archiveFileName"]

    listing = client.get("/api/shipments/archives", headers=auth_headers).get_json()
    assert [a["fileName"] for a in listing] == [name]
    assert listing[0]["archiveType"] == "manual"

    resp = client.put(f"/api/shipments/archives/{name}/rename", headers=auth_headers, json={"newName": ""})
    assert resp.status_code == 400

    resp = client.put(f"/api/shipments/archives/{name}/rename", headers=auth_headers,
                      json={"newName": "May batch"})
    body = resp.get_json()
    assert body["success"] is True
    assert body["customName"] == "May batch"
    assert body["newFileName"].startswith("custom_archive_May_batch_")

    assert client.get(f"/api/shipments/archives/{name}", headers=auth_headers).status_code == 404
    renamed = client.get(f"/api/shipments/archives/{body['newFileName']}", headers=auth_headers).get_json()
    assert renamed["customName"] == "May batch"
    assert renamed["originalFileName"] == name


def test_unsafe_archive_names_are_not_found(client, auth_headers):
    assert client.get("/api/shipments/archives/bad%20name.json", headers=auth_headers).status_code == 404
    assert client.get("/api/shipments/archives/.hidden.json", headers=auth_headers).status_code == 404
