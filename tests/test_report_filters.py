from conftest import shipment
from utils import (
    NOT_SET, compute_filter_options, filter_shipments, compute_summary, aggregate_shipments,
)


def _ids(rows):
    return [r["id"] for r in rows]


def test_empty_filters_keep_everything_with_planned_last():
    rows = [
        shipment(id="a", latestStatus="planned_seafreight"),
        shipment(id="b", latestStatus="arrived_pta"),
        shipment(id="c", latestStatus="planned_airfreight"),
        shipment(id="d", latestStatus="stored"),
    ]
    assert _ids(filter_shipments(rows, {})) == ["b", "d", "a", "c"]


def test_multi_select_lists_are_anded_and_empty_means_any():
    rows = [
        shipment(id="a", latestStatus="arrived_pta", supplier="Acme"),
        shipment(id="b", latestStatus="arrived_pta", supplier="Globex"),
        shipment(id="c", latestStatus="stored", supplier="Acme"),
    ]
    out = filter_shipments(rows, {"statuses": ["arrived_pta"], "suppliers": ["Acme"], "warehouses": []})
    assert _ids(out) == ["a"]


def test_week_numbers_match_regardless_of_type():
    rows = [shipment(id="a", weekNumber=12), shipment(id="b", weekNumber="13")]
    assert _ids(filter_shipments(rows, {"weekNumbers": ["12"]})) == ["a"]
    assert _ids(filter_shipments(rows, {"weekNumbers": [13]})) == ["b"]


def test_date_range_end_covers_the_whole_day():
    rows = [
        shipment(id="a", createdAt="2024-05-10T15:30:00"),
        shipment(id="b", createdAt="2024-05-11T00:00:01"),
        shipment(id="c", createdAt="2024-05-01T00:00:00"),
    ]
    out = filter_shipments(rows, {"dateRange": {"field": "created_at",
                                                "start": "2024-05-02", "end": "2024-05-10"}})
    assert _ids(out) == ["a"]


def test_records_without_the_range_field_are_not_excluded():
    rows = [
        shipment(id="a", inspectionDate="2024-01-01T00:00:00"),
        shipment(id="b"),
    ]
    out = filter_shipments(rows, {"dateRange": {"field": "inspection_date", "start": "2024-03-01"}})
    assert _ids(out) == ["b"]


def test_quantity_and_pallet_ranges_treat_blank_as_unbounded():
    rows = [
        shipment(id="a", quantity=5, palletQty=1),
        shipment(id="b", quantity=50, palletQty=4),
        shipment(id="c", quantity=500, palletQty=40),
    ]
    assert _ids(filter_shipments(rows, {"quantityRange": {"min": 10, "max": ""}})) == ["b", "c"]
    assert _ids(filter_shipments(rows, {"palletRange": {"min": "", "max": "4"}})) == ["a", "b"]


def test_search_term_looks_at_notes_and_ignores_case():
    rows = [
        shipment(id="a", notes="Fragile glassware"),
        shipment(id="b", productName="Kettles"),
        shipment(id="c"),
    ]
    assert _ids(filter_shipments(rows, {"searchTerm": "GLASS"})) == ["a"]
    assert _ids(filter_shipments(rows, {"searchTerm": "kettle"})) == ["b"]


def test_filter_options_are_sorted_and_distinct():
    rows = [
        shipment(supplier="Zeta", weekNumber=10, receivingWarehouse="PRETORIA"),
        shipment(supplier="Acme", weekNumber="2", receivingWarehouse="PRETORIA"),
        shipment(supplier="", weekNumber=None, receivingWarehouse=None),
    ]
    options = compute_filter_options(rows)
    assert options["suppliers"] == ["Acme", "Zeta"]
    assert options["weekNumbers"] == [2, 10]
    assert options["warehouses"] == ["PRETORIA"]


def test_summary_totals():
    rows = [shipment(quantity=10, palletQty=2), shipment(quantity="30", palletQty=None)]
    assert compute_summary(rows) == {
        "totalShipments": 2, "totalQuantity": 40, "totalPallets": 2, "avgQuantity": 20,
    }
    assert compute_summary([])["avgQuantity"] == 0


def test_no_grouping_returns_the_shipments():
    rows = [shipment(id="a"), shipment(id="b")]
    assert aggregate_shipments(rows, "none") is rows


def test_group_by_supplier_sorts_by_count_descending():
    rows = [
        shipment(id="a", supplier="Acme", quantity=10, palletQty=1),
        shipment(id="b", supplier="Globex", quantity=5, palletQty=2),
        shipment(id="c", supplier="Globex", quantity=15, palletQty=3),
        shipment(id="d", supplier=None, quantity=1),
    ]
    groups = aggregate_shipments(rows, "supplier")
    assert [g["group"] for g in groups][0] == "Globex"
    globex = groups[0]
    assert globex["count"] == 2
    assert globex["totalQuantity"] == 20
    assert globex["totalPallets"] == 5
    assert globex["avgQuantity"] == 10
    assert _ids(globex["shipments"]) == ["b", "c"]
    assert NOT_SET in [g["group"] for g in groups]


def test_group_by_week_and_month_keys():
    rows = [
        shipment(id="a", weekNumber=12, createdAt="2024-03-02T10:00:00"),
        shipment(id="b", weekNumber=None, createdAt="2024-04-02T10:00:00"),
    ]
    weeks = {g["group"] for g in aggregate_shipments(rows, "week")}
    assert weeks == {"Week 12", NOT_SET}
    months = {g["group"] for g in aggregate_shipments(rows, "month")}
    assert months == {"2024-03", "2024-04"}


def test_group_sort_by_total_quantity_ascending():
    rows = [
        shipment(supplier="Acme", quantity=100),
        shipment(supplier="Globex", quantity=5),
        shipment(supplier="Initech", quantity=50),
    ]
    groups = aggregate_shipments(rows, "supplier", "totalQuantity", "asc")
    assert [g["group"] for g in groups] == ["Globex", "Initech", "Acme"]
