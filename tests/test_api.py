"""Tests for the HTTP API."""
import csv
import io

import pytest
from fastapi.testclient import TestClient

from app.main import create_app


@pytest.fixture
def client(engine):
    app = create_app(engine=engine, start_engine=False)
    with TestClient(app) as test_client:
        yield test_client


class TestReadRoutes:
    """Tests for read-only endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_tiles(self, client):
        data = client.get("/api/tiles").json()
        assert data["mode"] == "simulation"
        assert [t["ticker"] for t in data["tiles"]] == ["AAPL", "MSFT", "XOM", "SIMX"]
        assert data["tiles"][0]["name"] == "Apple Inc."
        assert data["tiles"][0]["classification"] == "neutral"

    def test_tile_and_history(self, client):
        assert client.get("/api/tiles/aapl").json()["price"] == 100.0
        history = client.get("/api/tiles/AAPL/history").json()
        assert history == {"ticker": "AAPL", "prices": [100.0], "trend": 0}

    def test_unknown_ticker(self, client):
        assert client.get("/api/tiles/NOPE").status_code == 404
        assert client.get("/api/tiles/NOPE/history").status_code == 404
        assert client.post("/api/tiles/NOPE/history/refresh").status_code == 404

    def test_stats_and_status(self, client):
        stats = client.get("/api/stats").json()
        assert stats["stats"]["visible_count"] == 4
        assert stats["view"] == {"category": "all", "search": "", "sort": "default"}
        status = client.get("/api/status").json()
        assert status["limiter"]["state"] == "idle"
        assert status["tick_interval_ms"] == 1000

    def test_export_csv(self, client):
        response = client.get("/api/export.csv")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "market-heatmap-" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == ["Ticker", "Name", "Sector", "Price", "Change %"]
        assert len(rows) == 5


class TestCommandRoutes:
    """Tests for command endpoints."""

    def test_volatility(self, client):
        assert client.post("/api/volatility", params={"multiplier": 20}).json()["volatility_multiplier"] == 7.5
        assert client.post("/api/volatility", params={"multiplier": -1}).status_code == 400

    def test_tick_interval(self, client):
        assert client.post("/api/tick-interval", params={"ms": 100}).json()["tick_interval_ms"] == 250

    def test_scenario(self, client):
        data = client.post("/api/scenario", params={"name": "crash"}).json()
        assert data["stats"]["losing"] == 4
        assert client.post("/api/scenario", params={"name": "meltdown"}).status_code == 400

    def test_view(self, client):
        client.post("/api/scenario", params={"name": "reset"})
        data = client.post("/api/view", params={"search": "energy", "sort": "ticker"}).json()
        assert data["visible"] == 1
        tiles = client.get("/api/tiles", params={"visible": True}).json()["tiles"]
        assert [t["ticker"] for t in tiles] == ["XOM"]
        assert client.post("/api/view", params={"sort": "sideways"}).status_code == 400

    def test_pause_resume(self, client, engine):
        assert client.post("/api/pause").json() == {"paused": True}
        assert engine.context.paused
        assert client.post("/api/resume").json() == {"paused": False}
        assert not engine.context.paused

    def test_mode(self, client, source):
        source.set_quote("AAPL", 105.0, 100.0)
        data = client.post("/api/mode", params={"mode": "live"}).json()
        assert data == {"mode": "live", "changed": True}
        assert client.post("/api/mode", params={"mode": "live"}).json()["changed"] is False
        tile = client.get("/api/tiles/AAPL").json()
        assert tile["is_live"] is True
        assert tile["change_pct"] == pytest.approx(5.0)
        assert client.get("/api/status").json()["live_tiles"] == 1
        assert client.post("/api/mode", params={"mode": "turbo"}).status_code == 400

    def test_history_refresh_ignored_in_simulation(self, client):
        data = client.post("/api/tiles/AAPL/history/refresh").json()
        assert data["refreshed"] is False
        assert data["prices"] == [100.0]
