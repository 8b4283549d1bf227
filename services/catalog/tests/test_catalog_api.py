import pytest
from fastapi.testclient import TestClient

from main import app, get_repo


@pytest.fixture
def api(repo):
    app.dependency_overrides[get_repo] = lambda: repo
    # no context manager: the startup hook would wait for the real database
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_get_product(api, tee):
    r = api.get("/products/tee")
    assert r.status_code == 200
    assert r.json()["variant_layout"] == "combination"
    assert r.headers["X-Request-ID"]


def test_get_missing_product(api):
    r = api.get("/products/missing")
    assert r.status_code == 404
    assert r.json()["detail"]["detail"] == "PRODUCT_NOT_FOUND"


def test_decrement_applied_and_rejected(api, tee):
    body = {"product_id": "tee", "size": "M", "color": "red", "quantity": 2}

    r = api.post("/stock/decrement", json=body)
    assert r.status_code == 200
    assert r.json() == {"applied": True, "quantity": 1}

    r = api.post("/stock/decrement", json=body)
    assert r.status_code == 409
    assert r.json() == {"applied": False, "quantity": 1}


def test_decrement_unknown_bucket_is_404(api, tee):
    r = api.post("/stock/decrement", json={"product_id": "tee", "size": "XXL", "quantity": 1})
    assert r.status_code == 404


def test_decrement_rejects_non_positive_quantity(api, tee):
    r = api.post("/stock/decrement", json={"product_id": "tee", "quantity": 0})
    assert r.status_code == 422


def test_increment(api, tee):
    r = api.post("/stock/increment", json={"product_id": "tee", "quantity": 3},
                 headers={"X-Request-ID": "rid-1"})
    assert r.status_code == 200
    assert r.json() == {"applied": True, "quantity": 7}
    assert r.headers["X-Request-ID"] == "rid-1"


def test_put_buckets(api):
    r = api.put("/products/cap/buckets", json={
        "name": "Cap",
        "price_cents": 900,
        "variant_layout": "axis",
        "buckets": [{"quantity": 2}, {"size": "S", "quantity": 1}, {"color": "blue", "quantity": 5}],
    })
    assert r.status_code == 200
    assert [b["quantity"] for b in r.json()["buckets"]] == [2, 1, 5]
    assert api.get("/products/cap").json()["name"] == "Cap"
