import pytest
from django.db import OperationalError

from apps.orders.http_adapters import _catalog_cb


@pytest.mark.django_db
def test_health_ok(client):
    r = client.get("/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["db"]["ok"] is True
    assert body["components"]["catalog"]["mode"] == "orm"
    assert body["components"]["notifications"]["pending"] == 0


@pytest.mark.django_db
def test_health_reports_open_catalog_circuit(client, settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = True
    monkeypatch.setattr(_catalog_cb, "fail_threshold", 1)
    _catalog_cb.on_failure()

    r = client.get("/health/")

    assert r.status_code == 503
    assert r.json()["components"]["catalog"] == {"ok": False, "mode": "http", "circuit": "OPEN"}


@pytest.mark.django_db
def test_health_db_down(client, monkeypatch):
    def broken_cursor(*args, **kwargs):
        raise OperationalError("db down")

    monkeypatch.setattr("apps.monitoring.api.connection.cursor", broken_cursor)
    r = client.get("/health/")
    assert r.status_code == 503
    assert r.json()["components"]["db"]["ok"] is False


def test_live(client):
    r = client.get("/health/live/")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
