import pytest
from fastapi.testclient import TestClient

from presta_migrate.config import settings
from presta_migrate.main_app import app
from presta_migrate.migrate_log import MigrationLog
from presta_migrate.routes import get_source, get_store, verify_admin
from tests.fakes import FakeSource, InMemoryStore, make_product

client = TestClient(app)


@pytest.fixture
def wired():
    source = FakeSource(products=[make_product(), make_product(source_id="11", reference="R11")])
    store = InMemoryStore()
    app.dependency_overrides[verify_admin] = lambda: None
    app.dependency_overrides[get_source] = lambda: source
    app.dependency_overrides[get_store] = lambda: store
    yield source, store
    app.dependency_overrides.clear()


def test_api_requires_basic_auth():
    response = client.get("/api/health")
    assert response.status_code == 401


def test_empty_admin_password_never_authenticates(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_USER", "admin")
    monkeypatch.setattr(settings, "ADMIN_PASS", "")
    assert client.get("/api/health", auth=("admin", "")).status_code == 401

    monkeypatch.setattr(settings, "ADMIN_PASS", "s3cret")
    assert client.get("/api/health", auth=("admin", "s3cret")).status_code == 200


def test_list_products(wired):
    response = client.get("/api/products", params={"offset": 0, "limit": 1})
    assert response.status_code == 200
    body = response.json()
    assert [i["id"] for i in body["items"]] == ["10"]
    assert body["has_more"] is True
    assert body["next_offset"] == 1


def test_migrate_batch(wired):
    _, store = wired
    response = client.post("/api/migrate", json={"ids": ["10", "404"], "update_existing": True})
    assert response.status_code == 200
    body = response.json()
    assert body["total_processed"] == 2
    assert body["migrated"][0]["source_id"] == "10"
    assert len(body["errors"]) == 1
    assert body["debug"]["name"] == "Linen Shirt"
    assert body["events"]
    assert body["events_dropped"] == 0
    assert len(store.products) == 1


def test_migrate_rejects_empty_and_oversized_batches(wired):
    assert client.post("/api/migrate", json={"ids": []}).status_code == 400
    ids = [str(i) for i in range(101)]
    assert client.post("/api/migrate", json={"ids": ids}).status_code == 400


def test_unavailable_store_is_503(wired):
    _, store = wired
    store.available = False
    response = client.post("/api/migrate", json={"ids": ["10"]})
    assert response.status_code == 503


def test_raw_product_and_not_found(wired):
    ok = client.get("/api/products/10/raw")
    assert ok.status_code == 200
    assert ok.json()["normalized"]["price"] == "19.99"
    assert client.get("/api/products/999/raw").status_code == 404


def test_delete_imported(wired):
    client.post("/api/migrate", json={"ids": ["10", "11"]})
    response = client.post("/api/delete-imported")
    assert response.json() == {"deleted": 2}


def test_missing_source_config_is_400(monkeypatch):
    app.dependency_overrides[verify_admin] = lambda: None
    monkeypatch.setattr(settings, "PRESTA_SOURCE", "api")
    monkeypatch.setattr(settings, "PRESTA_URL", "")
    try:
        response = client.post("/api/test-connection")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 400
    assert response.json()["type"] == "config"


def test_store_lookups_are_shared_between_requests(monkeypatch):
    monkeypatch.setattr(settings, "WC_BASE_URL", "https://shop.example")
    monkeypatch.setattr(settings, "WC_API_KEY", "ck_x")
    monkeypatch.setattr(settings, "WC_API_SECRET", "cs_x")
    first = get_store(MigrationLog())
    second = get_store(MigrationLog())
    assert first is not second
    assert first.log is not second.log
    assert first.cache is second.cache
