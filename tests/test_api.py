"""HTTP API tests against an in-memory store and a mocked supervisor."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from gridbot.api.deps import get_store, get_supervisor
from gridbot.engine.errors import ExchangeConnectionError
from gridbot.engine.supervisor import BotSupervisor
from gridbot.main import app


@pytest.fixture
def supervisor():
    sup = MagicMock(spec=BotSupervisor)
    sup.initialized = True
    sup.running_count = 0
    sup.running_ids.return_value = []
    sup.is_running.return_value = False
    return sup


@pytest.fixture
def client(store, supervisor):
    # No context manager: the lifespan (database, scheduler, restarts) is not run
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_supervisor] = lambda: supervisor
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, **overrides):
    body = {"symbol": "btc/usdt", "capital": 1000}
    body.update(overrides)
    return client.post("/api/bots", json=body)


class TestBots:
    def test_create_and_get(self, client):
        resp = _create(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["symbol"] == "BTC/USDT"
        assert data["name"] == "BTC/USDT grid"
        assert data["status"] == "IDLE"
        assert data["has_credentials"] is False

        assert client.get(f"/api/bots/{data['id']}").json()["id"] == data["id"]
        assert len(client.get("/api/bots").json()) == 1

    def test_create_real_requires_keys(self, client):
        assert _create(client, mode="REAL").status_code == 422

    def test_create_rejects_half_credentials(self, client):
        assert _create(client, api_key="only-key").status_code == 422

    def test_create_encrypts_credentials(self, client, store):
        resp = _create(client, mode="REAL", api_key="plain-key", api_secret="plain-secret")
        assert resp.status_code == 201
        assert resp.json()["has_credentials"] is True
        bot = store.get_bot(resp.json()["id"])
        assert bot.api_key_encrypted and bot.api_key_encrypted != "plain-key"

    def test_create_and_start(self, client, supervisor):
        resp = _create(client, start=True)
        assert resp.status_code == 201
        supervisor.start_bot.assert_awaited_once_with(resp.json()["id"])

    def test_get_missing(self, client):
        assert client.get("/api/bots/999").status_code == 404

    def test_start_connection_error(self, client, supervisor):
        bot_id = _create(client).json()["id"]
        supervisor.start_bot.side_effect = ExchangeConnectionError("unreachable")
        resp = client.post(f"/api/bots/{bot_id}/start")
        assert resp.status_code == 502

    def test_update_risk_restarts_running_bot(self, client, supervisor):
        bot_id = _create(client).json()["id"]
        supervisor.is_running.return_value = True

        resp = client.put(f"/api/bots/{bot_id}", json={"stop_loss_percent": 5})

        assert resp.status_code == 200
        assert resp.json()["stop_loss_percent"] == 5
        supervisor.restart_bot.assert_awaited_once_with(bot_id)

    @pytest.mark.parametrize("field", ["capital", "name", "buy_percentage", "is_active"])
    def test_update_rejects_null_for_required_columns(self, client, store, field):
        bot_id = _create(client).json()["id"]

        resp = client.put(f"/api/bots/{bot_id}", json={field: None})

        assert resp.status_code == 422
        assert store.get_bot(bot_id).capital == 1000

    def test_update_clears_optional_risk_field(self, client, store):
        bot_id = _create(client, stop_loss_percent=5).json()["id"]

        resp = client.put(f"/api/bots/{bot_id}", json={"stop_loss_percent": None})

        assert resp.status_code == 200
        assert resp.json()["stop_loss_percent"] is None

    def test_update_without_restart(self, client, supervisor):
        bot_id = _create(client).json()["id"]
        supervisor.is_running.return_value = True

        client.put(f"/api/bots/{bot_id}", json={"name": "renamed"})

        supervisor.restart_bot.assert_not_called()

    def test_stop_settles_stale_running_row(self, client, store):
        bot_id = _create(client).json()["id"]
        store.update_bot(bot_id, status="RUNNING")

        resp = client.post(f"/api/bots/{bot_id}/stop")

        assert resp.status_code == 200
        assert resp.json()["status"] == "STOPPED"

    def test_delete(self, client, supervisor, store):
        bot_id = _create(client).json()["id"]
        assert client.delete(f"/api/bots/{bot_id}").status_code == 204
        supervisor.stop_bot.assert_awaited_once_with(bot_id)
        assert store.get_bot(bot_id) is None

    def test_status_and_stats(self, client, store):
        bot_id = _create(client).json()["id"]
        position, _ = store.record_buy(bot_id, "BTC/USDT", 1.0, 100.0)
        store.record_sell(bot_id, position.id, 103.0, "GRID_SELL")
        store.update_bot(bot_id, total_runtime_seconds=3723)

        status = client.get(f"/api/bots/{bot_id}/status").json()
        assert status["open_positions"] == []
        assert status["is_running_in_supervisor"] is False

        stats = client.get(f"/api/bots/{bot_id}/stats").json()
        assert stats["stats"]["total_sells"] == 1
        assert stats["stats"]["win_rate"] == 100.0
        assert stats["stats"]["running_time_formatted"] == "1h 2m 3s"
        assert len(stats["recent_trades"]) == 2


class TestPositions:
    def test_close_missing(self, client):
        assert client.post("/api/positions/999/close").status_code == 404

    def test_close_position(self, client, supervisor, store):
        bot_id = _create(client).json()["id"]
        position, _ = store.record_buy(bot_id, "BTC/USDT", 1.0, 100.0)
        supervisor.close_position.side_effect = lambda b, p, price: store.record_sell(
            b, p, price, "MANUAL"
        )

        resp = client.post(f"/api/positions/{position.id}/close", json={"price": 110})

        assert resp.status_code == 200
        assert resp.json()["profit"] == pytest.approx(10.0)
        assert client.post(f"/api/positions/{position.id}/close").status_code == 400

    def test_list_filters(self, client, store):
        bot_id = _create(client).json()["id"]
        store.record_buy(bot_id, "BTC/USDT", 1.0, 100.0)
        assert len(client.get("/api/positions", params={"status": "open"}).json()) == 1
        assert client.get("/api/positions", params={"status": "closed"}).json() == []


class TestSystem:
    def test_health(self, client):
        assert client.get("/api/system/health").json() == {"status": "ok"}

    def test_supervisor(self, client):
        data = client.get("/api/system/supervisor").json()
        assert data["running_count"] == 0
        assert data["running_ids"] == []
        assert "scheduler" in data

    def test_logs_alerts_and_trades(self, client, store):
        bot_id = _create(client).json()["id"]
        store.add_log(bot_id, "INFO", "started")
        store.add_alert(bot_id, "ERROR", "boom")
        store.record_buy(bot_id, "BTC/USDT", 1.0, 100.0)

        assert client.get("/api/system/logs", params={"bot_id": bot_id}).json()[0]["message"] == "started"
        assert client.get("/api/system/alerts").json()[0]["type"] == "ERROR"
        assert len(client.get("/api/trades", params={"bot_id": bot_id}).json()) == 1
