from app.logic import orders as fields
from app.utils.dates import parse_marketplace_datetime
from conftest import raw_order


def test_customer_fields_from_postal_address():
    order = raw_order("O-1", [("SKU", 1)])
    assert fields.customer_name(order) == "Jane Doe"
    assert fields.customer_address(order) == "1 Main St\nApt 2\nSpringfield, IL 62701\nUSA"


def test_customer_address_skips_missing_parts():
    order = raw_order("O-1", [("SKU", 1)], address={"address1": "9 Elm", "city": "Austin", "country": "USA"})
    assert fields.customer_name(order) == ""
    assert fields.customer_address(order) == "9 Elm\nAustin\nUSA"


def test_status_is_latest_entry_of_first_line():
    order = raw_order("O-1", [("A", 1), ("B", 1)])
    order["orderLines"]["orderLine"][1]["orderLineStatuses"]["orderLineStatus"].append({"status": "Shipped"})
    assert fields.order_status(order) == "Acknowledged"
    assert fields.line_status(order["orderLines"]["orderLine"][1]) == "Shipped"


def test_status_defaults_to_unknown():
    assert fields.order_status({"orderLines": {"orderLine": []}}) == "Unknown"
    assert fields.line_status({}) == "Unknown"


def test_line_charges_and_quantity():
    line = raw_order("O-1", [("SKU-1", 3)])["orderLines"]["orderLine"][0]
    assert fields.line_sku(line) == "SKU-1"
    assert fields.line_quantity(line) == 3
    assert fields.sell_price(line) == 19.99
    assert fields.tax(line) == 1.2
    assert fields.shipping(line) == 4.5


def test_line_defaults_when_fields_absent():
    line = {"item": {"sku": "SKU-1"}}
    assert fields.line_quantity(line) == 1
    assert fields.sell_price(line) == 0.0
    assert fields.tax(line) == 0.0
    assert fields.shipping(line) == 0.0


def test_order_date_accepts_epoch_millis_and_iso():
    assert parse_marketplace_datetime(1714550400000).isoformat().startswith("2024-05-01T08:00:00")
    assert parse_marketplace_datetime("2024-05-01T08:00:00Z").year == 2024
    assert parse_marketplace_datetime("not a date") is None
    assert parse_marketplace_datetime(None) is None
