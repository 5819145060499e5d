import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from app.api import main
from app.api.main import app, get_client, get_datastore, get_status_broadcaster
from app.db import tables
from app.db.store import Datastore
from app.ingest.models import ItemPage
from app.jobs.runner import SyncRunner
from conftest import add_store


class FakeClient:
    def __init__(self, error=None):
        self.error = error
        self.stores = []

    async def fetch_orders(self, store, **kwargs):
        self.stores.append(store.id)
        if self.error is not None:
            raise self.error
        return []

    async def authenticate(self, store):
        return "tok"

    async def list_items(self, token, **kwargs):
        return ItemPage(items=[], next_cursor=None, total_items=0)


class BrokenDatastore:
    def find_active_stores(self):
        raise RuntimeError("database unavailable")


@pytest.fixture()
def api(datastore, broadcaster, monkeypatch):
    monkeypatch.setenv("RUN_SYNC_SCHEDULERS", "false")
    fake = FakeClient()
    app.dependency_overrides[get_datastore] = lambda: datastore
    app.dependency_overrides[get_client] = lambda: fake
    app.dependency_overrides[get_status_broadcaster] = lambda: broadcaster
    with TestClient(app) as client:
        client.fake = fake
        yield client
    app.dependency_overrides.clear()


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


def test_process_all_orders(api, engine):
    add_store(engine, "s1")
    add_store(engine, "s2")
    response = api.post("/orders/process")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["summary"]["succeeded"] == 2
    assert body["summary"]["results"]["s1"]["ordersCreated"] == 0
    assert api.fake.stores == ["s1", "s2"]


def test_process_all_orders_failure(api):
    app.dependency_overrides[get_datastore] = lambda: BrokenDatastore()
    response = api.post("/orders/process")
    assert response.status_code == 500
    assert response.json() == {"message": "Failed to process orders", "success": False}


def test_process_store_orders(api, engine):
    add_store(engine, "s1")
    response = api.post("/orders/process/s1")
    assert response.status_code == 200
    assert response.json()["storeId"] == "s1"
    assert response.json()["status"]["success"] is True


def test_unknown_or_inactive_store_is_404(api, engine):
    add_store(engine, "off", status="inactive")
    for store_id in ("missing", "off"):
        response = api.post(f"/orders/process/{store_id}")
        assert response.status_code == 404
        assert response.json()["message"] == "Store not found or inactive"
        assert response.json()["storeId"] == store_id
    assert api.post("/products/process/missing").status_code == 404


def test_store_processing_error_is_500(api, engine):
    add_store(engine, "s1")
    api.fake.error = RuntimeError("marketplace down")
    response = api.post("/orders/process/s1")
    assert response.status_code == 500
    assert response.json()["success"] is False


def test_websocket_streams_status_events(api):
    with api.websocket_connect("/ws/notifications") as websocket:
        api.post("/orders/process")
        event = websocket.receive_json()
    assert event == {
        "type": "info",
        "message": "No active stores found to process",
        "timestamp": "2024-05-01T00:00:00Z",
    }


def test_scheduled_job_events_reach_websocket(monkeypatch, tmp_path, broadcaster):
    # File-backed so the two schedulers' executor threads get separate connections.
    engine = create_engine(f"sqlite:///{tmp_path / 'sync.db'}", connect_args={"check_same_thread": False})
    tables.metadata.create_all(engine)
    add_store(engine, "s1")
    datastore = Datastore(engine)
    monkeypatch.setenv("RUN_SYNC_SCHEDULERS", "true")
    monkeypatch.setattr(
        main,
        "build_runner",
        lambda _: SyncRunner(
            datastore,
            FakeClient(),
            broadcaster=broadcaster,
            stagger=0,
            start_delay=0.3,
            order_interval=3600,
            product_interval=3600,
        ),
    )
    app.dependency_overrides[get_status_broadcaster] = lambda: broadcaster
    messages = []
    try:
        with TestClient(app) as client, client.websocket_connect("/ws/notifications") as websocket:
            for _ in range(4):
                messages.append(websocket.receive_json()["message"])
                if messages[-1].startswith("Completed order processing for store s1"):
                    break
    finally:
        app.dependency_overrides.clear()
        engine.dispose()

    assert "Enqueued 1 stores for order processing" in messages
    assert messages[-1].startswith("Completed order processing for store s1\nOrders: 0 created")
