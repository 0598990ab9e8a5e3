import asyncio

import pytest
from fastapi.testclient import TestClient

from monitor.config import Config
from service.uptime_service import UptimeMonitorService

API_KEY = "test-key"


@pytest.fixture
def service(storage, chain, clock):
    config = Config()
    config.API_KEY = API_KEY
    config.MONITOR_LOOP_ENABLED = False
    return UptimeMonitorService(config=config, storage=storage, chain=chain, clock=clock)


@pytest.fixture
def client(service):
    return TestClient(service.app)


def run_monitor(client, key=API_KEY):
    return client.post("/api/run-monitor", headers={"X-API-Key": key})


class TestMonitorAPI:
    def test_healthcheck(self, client):
        response = client.get("/healthcheck")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["storage_backend"] == "sqlite"
        assert body["last_known_network_epoch"] is None

    def test_dashboard_not_found(self, client):
        response = client.get("/api/dashboard")

        assert response.status_code == 404
        assert "error" in response.json()

    def test_run_monitor_requires_key(self, client):
        assert client.post("/api/run-monitor").status_code == 401
        assert run_monitor(client, key="wrong").status_code == 403

    def test_run_monitor_without_configured_key(self, service, client):
        service.config.API_KEY = None
        assert client.get("/api/run-monitor").status_code == 200

    def test_run_monitor_then_dashboard(self, client):
        response = run_monitor(client)

        assert response.status_code == 200
        summary = response.json()
        assert summary["success"] is True
        assert summary["currentEpoch"] == 5450
        assert summary["currentPhrase"] == 1
        assert summary["phraseStartEpoch"] == 5450
        assert summary["phraseEndEpoch"] == 5533
        assert summary["activeValidatorsCount"] == 1
        assert summary["epochTransitioned"] is True
        assert summary["timestamp"].endswith("Z")

        dashboard = client.get("/api/dashboard").json()
        assert dashboard["currentPhrase"] == 1
        assert dashboard["validators"][0]["address"] == "hmAlice"
        assert dashboard["validators"][0]["runningCount"] == 1

        assert client.get("/healthcheck").json()["last_known_network_epoch"] == 5450

    def test_run_monitor_chain_failure(self, client, chain):
        chain.epoch = -1
        response = run_monitor(client)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["message"] == "Failed to get network epoch"

    def test_validator_endpoints(self, client):
        assert client.get("/api/validator").status_code == 400
        assert client.get("/api/validator", params={"address": "hmAlice"}).status_code == 404

        run_monitor(client)

        by_query = client.get("/api/validator", params={"address": "hmAlice"})
        by_path = client.get("/api/validator/hmAlice")
        assert by_query.status_code == 200
        assert by_query.json()["epochs"] == by_path.json()["epochs"]
        assert by_path.json()["epochs"][0]["status"] == "BERJALAN"

        bad_phrase = client.get("/api/validator/hmAlice", params={"phrase": "abc"})
        assert bad_phrase.status_code == 400

    def test_document_endpoints(self, client):
        assert client.get("/api/metadata").status_code == 400
        assert client.get("/api/metadata", params={"phrase": "x"}).status_code == 400
        assert client.get("/api/metadata", params={"phrase": 1}).status_code == 404
        assert client.get("/api/phrasedata", params={"phrase": 1}).status_code == 404

        run_monitor(client)

        metadata = client.get("/api/metadata", params={"phrase": 1})
        assert metadata.status_code == 200
        assert metadata.json()["phraseStartEpoch"] == 5450
        phrasedata = client.get("/api/phrasedata", params={"phrase": 1}).json()
        assert phrasedata["hmAlice"]["epochs"]["5450"]["lastApiHelperState"] == "AKTIF_API"

        latest = client.get("/api/data-latest").json()
        assert latest["currentPhrase"] == 1
        assert latest["metadata"]["phraseNumber"] == 1

    def test_network_status(self, client, chain):
        response = client.get("/api/network-status")
        assert response.status_code == 200
        assert response.json()["webServerEpochProgress"]["currentEpochSystem"] == 5450

        chain.epoch = -1
        response = client.get("/api/network-status")
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to get session progress"}

    def test_unknown_api_route(self, client):
        response = client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "API Endpoint not found"}


class TestCycleSerialization:
    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_skipped(self, service, chain):
        started = asyncio.Event()
        release = asyncio.Event()
        real_get_epoch = chain.get_current_epoch

        async def slow_epoch():
            started.set()
            await release.wait()
            return await real_get_epoch()

        chain.get_current_epoch = slow_epoch

        first = asyncio.create_task(service.run_monitor_cycle())
        await started.wait()
        skipped = await service.run_monitor_cycle()
        release.set()
        completed = await first

        assert skipped.success is False
        assert skipped.message == "Monitor cycle already running"
        assert completed.success is True
        assert service.checkpoint.last_known_network_epoch == 5450
