import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from app.db import tables
from app.db.store import Datastore
from app.utils.broadcast import StatusBroadcaster

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    tables.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def datastore(engine):
    return Datastore(engine)


@pytest.fixture()
def broadcaster():
    events = []
    broadcaster = StatusBroadcaster(clock=lambda: "2024-05-01T00:00:00Z")
    broadcaster.subscribe(events.append)
    broadcaster.events = events
    return broadcaster


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", ENCRYPTION_KEY)


def add_product(engine, sku, lots, *, name=None):
    """Insert a product with its lots; ``available`` is the lot total."""
    with engine.begin() as conn:
        result = conn.execute(
            insert(tables.products).values(
                sku=sku,
                product_name=name or sku.title(),
                available=sum(lot["quantity"] for lot in lots if lot["quantity"] > 0),
            )
        )
        product_id = result.inserted_primary_key[0]
        lot_ids = []
        for lot in lots:
            lot_result = conn.execute(insert(tables.purchase_lots).values(product_id=product_id, **lot))
            lot_ids.append(lot_result.inserted_primary_key[0])
    return product_id, lot_ids


def add_store(engine, store_id, *, status="active", client_id="client", client_secret="secret"):
    with engine.begin() as conn:
        conn.execute(
            insert(tables.stores).values(
                id=store_id,
                name=f"Store {store_id}",
                client_id=client_id,
                client_secret=client_secret,
                status=status,
            )
        )


def raw_order(order_id, lines, *, address=None, order_date=1714550400000):
    """Marketplace-shaped order payload; ``lines`` is a list of (sku, qty) pairs."""
    return {
        "purchaseOrderId": f"PO-{order_id}",
        "customerOrderId": order_id,
        "orderDate": order_date,
        "shippingInfo": {
            "postalAddress": address
            if address is not None
            else {
                "name": "Jane Doe",
                "address1": "1 Main St",
                "address2": "Apt 2",
                "city": "Springfield",
                "state": "IL",
                "postalCode": "62701",
                "country": "USA",
            }
        },
        "orderLines": {
            "orderLine": [
                {
                    "lineNumber": str(index + 1),
                    "item": {"productName": f"Product {sku}", "sku": sku, "imageUrl": f"https://img/{sku}.png"},
                    "orderLineQuantity": {"unitOfMeasurement": "EACH", "amount": str(quantity)},
                    "charges": {
                        "charge": [
                            {
                                "chargeType": "PRODUCT",
                                "chargeAmount": {"currency": "USD", "amount": 19.99},
                                "tax": {"taxAmount": {"currency": "USD", "amount": 1.2}},
                            },
                            {"chargeType": "SHIPPING", "chargeAmount": {"currency": "USD", "amount": 4.5}},
                        ]
                    },
                    "orderLineStatuses": {
                        "orderLineStatus": [{"status": "Created"}, {"status": "Acknowledged"}]
                    },
                }
                for index, (sku, quantity) in enumerate(lines)
            ]
        },
    }
