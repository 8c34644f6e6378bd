import os
import shutil

import pytest
from fastapi.testclient import TestClient

from landed_cost.config.settings import DATA_DIR_ENV, get_default_data_dir, reset_settings

TEE = {"item_id": "tee", "name": "Cotton T-shirt", "quantity": 2, "unit_price": 8.0,
       "weight_kg": 0.3, "hsn_code": "6109"}


@pytest.fixture(scope="module")
def client(tmp_path_factory):
    """API client over a writable copy of the reference data."""
    data = tmp_path_factory.mktemp("api") / "reference"
    shutil.copytree(get_default_data_dir(), data)
    os.environ[DATA_DIR_ENV] = str(data)
    reset_settings()

    # The API builds its engine at import time
    from landed_cost.api.main import app
    yield TestClient(app)

    os.environ.pop(DATA_DIR_ENV, None)
    reset_settings()


def test_root(client):
    assert client.get("/").json()["status"] == "online"


def test_calculate(client):
    response = client.post("/calculate", json={
        "origin_country": "US", "destination_country": "IN",
        "items": [TEE], "payment_gateway": "stripe",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 69.16
    assert data["total_destination_currency"] == 5740.21
    assert data["items"][0]["valuation_method"] == "minimum_valuation"
    assert data["items"][0]["total_taxes"] == pytest.approx(5.28 + data["items"][0]["vat_amount"])
    assert data["policy"]["holds"][0]["code"] == "HOLD_MINIMUM_VALUATION"


def test_calculate_with_dimensions(client):
    item = dict(TEE, quantity=1, weight_kg=0.2,
                dimensions={"length_cm": 40, "width_cm": 30, "height_cm": 20})
    response = client.post("/calculate", json={
        "origin_country": "US", "destination_country": "IN", "items": [item],
    })
    assert response.json()["total_weight_kg"] == 4.8


def test_invalid_request_is_400(client):
    response = client.post("/calculate", json={
        "origin_country": "US", "destination_country": "IN",
        "items": [dict(TEE, quantity=0)],
    })
    assert response.status_code == 400

    response = client.post("/calculate", json={
        "origin_country": "US", "destination_country": "IN", "items": [],
    })
    assert response.status_code == 400


def test_calculation_error_is_422(client):
    response = client.post("/calculate", json={
        "origin_country": "IN", "destination_country": "US", "items": [TEE],
    })
    assert response.status_code == 422
    assert "No shipping route" in response.json()["detail"]


def test_hsn_search(client):
    results = client.get("/hsn", params={"search": "shirt", "country": "IN"}).json()
    assert [r["hsn_code"] for r in results] == ["6109"]


def test_hsn_search_limit(client):
    assert len(client.get("/hsn", params={"country": "IN", "limit": 2}).json()) == 2
    assert client.get("/hsn", params={"limit": -5}).status_code == 400
    assert client.get("/hsn", params={"limit": 0}).status_code == 400


def test_country_tax(client):
    assert client.get("/countries/in/tax").json()["tax_label"] == "GST"
    assert client.get("/countries/ZZ/tax").status_code == 404


def test_route_summary(client):
    data = client.get("/routes/US/IN", params={"weight": 2}).json()
    assert [o["cost"] for o in data["shipping_options"]] == [39.0, 64.0]
    assert client.get("/routes/US/IN", params={"weight": 0}).status_code == 400
    assert client.get("/routes/IN/US").status_code == 404


def test_quote_transition(client):
    response = client.post("/quotes/transition", json={"current_status": "draft", "target_status": "calculated"})
    assert response.json() == {"status": "calculated", "allowed_next": ["draft", "sent", "cancelled"]}

    response = client.post("/quotes/transition", json={"current_status": "draft", "target_status": "paid"})
    assert response.status_code == 422

    response = client.post("/quotes/transition", json={"current_status": "draft", "target_status": "sent"})
    assert response.json()["status"] == "sent"


def test_system_status(client):
    data = client.get("/system/status").json()
    assert data["discounts_loaded"] is True
    assert data["discounts_count"] == 5
    assert data["hsn_rows"] == 9


def test_compile_discounts(client):
    data = client.post("/api/discounts/compile").json()
    assert data == {"success": True, "compiled": 6, "errors": []}


class TestTiersApi:
    def test_list_and_stats(self, client):
        tiers = client.get("/api/tiers", params={"origin": "US", "destination": "IN"}).json()
        assert [t["tier_id"] for t in tiers] == ["US-IN-1", "US-IN-2", "US-IN-3"]
        assert client.get("/api/tiers/stats").json()["total"] == 6

    def test_get(self, client):
        assert client.get("/api/tiers/US-IN-2").json()["logic_type"] == "OR"
        assert client.get("/api/tiers/NOPE").status_code == 404

    def test_match(self, client):
        data = client.post("/api/tiers/match", json={
            "origin_country": "US", "destination_country": "IN", "price": 50, "weight": 0.5,
        }).json()
        assert data["matched"]
        assert data["tier"]["tier_id"] == "US-IN-1"

    def test_validate(self, client):
        data = client.post("/api/tiers/validate", json={
            "origin_country": "US", "destination_country": "IN", "rule_name": "Bad",
            "logic_type": "XOR", "customs_percentage": 5,
        }).json()
        assert data["valid"] is False
        assert "Logic type must be AND or OR" in data["errors"]

    def test_crud(self, client):
        response = client.post("/api/tiers", json={
            "origin_country": "CN", "destination_country": "IN", "rule_name": "Bulk Parcels",
            "weight_min": 20, "logic_type": "AND", "customs_percentage": 6, "vat_percentage": 18,
            "priority_order": 3,
        })
        assert response.status_code == 200
        assert response.json()["tier_id"] == "CN-IN-3"

        bad = client.post("/api/tiers", json={
            "origin_country": "CN", "destination_country": "IN", "rule_name": "Bad",
            "customs_percentage": 150,
        })
        assert bad.status_code == 400

        updated = client.put("/api/tiers/CN-IN-3", json={"customs_percentage": 4})
        assert updated.json()["customs_percentage"] == 4
        assert client.put("/api/tiers/NOPE", json={"customs_percentage": 4}).status_code == 404
        assert client.put("/api/tiers/CN-IN-3", json={"priority_order": 0}).status_code == 400

        assert client.delete("/api/tiers/CN-IN-3").json()["success"] is True
        assert client.delete("/api/tiers/CN-IN-3").status_code == 404
