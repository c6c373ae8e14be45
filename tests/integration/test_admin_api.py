"""Integration tests for program, bureau and audit-log endpoints."""

import json

import httpx
import pytest
from httpx import AsyncClient

PROGRAMS_PATH = "/instaprescreen/companies/ACME/programs"
BILLING_PATH = "/reports/instaprescreen/basic/company/ACME"


@pytest.mark.asyncio
class TestPrograms:
    async def test_sync_from_gateway(self, admin_client: AsyncClient, bureau_stub):
        bureau_stub.on(
            "GET",
            PROGRAMS_PATH,
            lambda r: httpx.Response(
                200, json={"programs": [{"id": "PRG-100", "name": "Auto Refi"}]}
            ),
        )

        response = await admin_client.post("/v1/programs/sync")

        assert response.status_code == 200
        [program] = response.json()["items"]
        assert program["bureau_program_id"] == "PRG-100"
        assert program["tier_1_min"] == 620
        assert program["status"] == "active"

    async def test_user_cannot_sync(self, user_client: AsyncClient):
        response = await user_client.post("/v1/programs/sync")

        assert response.status_code == 403

    async def test_update_thresholds(self, admin_client: AsyncClient, api_program):
        response = await admin_client.patch(
            f"/v1/programs/{api_program.id}", json={"tier_1_min": 700}
        )

        assert response.status_code == 200
        assert response.json()["tier_1_min"] == 700

    async def test_unordered_thresholds_rejected(self, admin_client: AsyncClient, api_program):
        response = await admin_client.patch(
            f"/v1/programs/{api_program.id}", json={"tier_3_min": 690}
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "thresholds"}

    async def test_create_program(self, admin_client: AsyncClient, bureau_stub):
        bureau_stub.on(
            "POST",
            PROGRAMS_PATH,
            lambda r: httpx.Response(201, json={"id": "PRG-300", **json.loads(r.content)}),
        )

        response = await admin_client.post(
            "/v1/programs", json={"name": "Cards", "ex_enabled": True, "tier_1_min": 700}
        )

        assert response.status_code == 201, response.text
        program = response.json()
        assert program["bureau_program_id"] == "PRG-300"
        assert program["ex_enabled"] is True
        assert program["tier_1_min"] == 700

    async def test_create_refused_by_gateway(self, admin_client: AsyncClient, bureau_stub):
        bureau_stub.on(
            "POST", PROGRAMS_PATH, lambda r: httpx.Response(400, json={"message": "name taken"})
        )

        response = await admin_client.post("/v1/programs", json={"name": "Cards"})

        assert response.status_code == 502
        assert response.json()["details"] == {"status_code": 400}
        assert (await admin_client.get("/v1/programs")).json()["items"] == []

    async def test_user_cannot_create(self, user_client: AsyncClient):
        response = await user_client.post("/v1/programs", json={"name": "Cards"})

        assert response.status_code == 403

    async def test_rename_saved_on_gateway(
        self, admin_client: AsyncClient, api_program, bureau_stub
    ):
        path = f"{PROGRAMS_PATH}/PRG-100"
        sent: list[dict] = []

        def saved(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "PRG-100", **sent[-1]})

        remote = {"id": "PRG-100", "name": "Auto Refi", "segments": []}
        bureau_stub.on("GET", path, lambda r: httpx.Response(200, json=remote))
        bureau_stub.on("PUT", path, saved)

        response = await admin_client.patch(
            f"/v1/programs/{api_program.id}", json={"name": "Auto Refi 2"}
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Auto Refi 2"
        assert sent == [{"name": "Auto Refi 2", "segments": []}]

    async def test_list_programs(self, user_client: AsyncClient, api_program):
        response = await user_client.get("/v1/programs")

        assert [p["name"] for p in response.json()["items"]] == ["Auto Refi"]

        detail = await user_client.get(f"/v1/programs/{api_program.id}")
        assert detail.json()["tier_3_min"] == 580


@pytest.mark.asyncio
class TestBureau:
    async def test_connection(self, admin_client: AsyncClient, bureau_stub):
        bureau_stub.on(
            "GET", PROGRAMS_PATH, lambda r: httpx.Response(200, json=[{"id": "PRG-100"}])
        )

        response = await admin_client.get("/v1/bureau/connection")

        assert response.status_code == 200
        assert response.json()["status"] == "connected"
        assert response.json()["program_count"] == 1

    async def test_connection_blocked(self, admin_client: AsyncClient, bureau_stub):
        bureau_stub.on(
            "GET",
            PROGRAMS_PATH,
            lambda r: httpx.Response(403, text="<html>Permission Required</html>"),
        )

        response = await admin_client.get("/v1/bureau/connection")

        assert response.json()["status"] == "blocked"

    async def test_billing_report(self, admin_client: AsyncClient, bureau_stub):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["params"] = dict(request.url.params)
            return httpx.Response(200, json={"records": [{"program": "PRG-100", "hits": 12}]})

        bureau_stub.on("GET", BILLING_PATH, handler)

        response = await admin_client.get(
            "/v1/bureau/billing", params={"start_date": "2026-03-01", "end_date": "2026-03-31"}
        )

        assert response.status_code == 200
        assert response.json()["rows"] == [{"program": "PRG-100", "hits": 12}]
        assert captured["params"] == {"startDate": "2026-03-01", "endDate": "2026-03-31"}

    async def test_billing_range_checked(self, admin_client: AsyncClient):
        response = await admin_client.get(
            "/v1/bureau/billing", params={"start_date": "2026-04-01", "end_date": "2026-03-01"}
        )

        assert response.status_code == 400

    async def test_gateway_error_status(self, admin_client: AsyncClient, bureau_stub):
        bureau_stub.on("GET", PROGRAMS_PATH, lambda r: httpx.Response(503, text="down"))

        response = await admin_client.post("/v1/programs/sync")

        assert response.status_code == 503
        assert response.json()["error_code"] == "gateway_unavailable"


@pytest.mark.asyncio
class TestAuditLog:
    async def test_paging_and_filters(
        self, test_app, admin_client: AsyncClient, user_client: AsyncClient
    ):
        for _ in range(3):
            await user_client.get("/v1/leads")
        await test_app.state.audit_logger.wait_idle()

        first = (await admin_client.get("/v1/audit-log", params={"limit": 2})).json()
        by_actor = (
            await admin_client.get("/v1/audit-log", params={"actor_id": "user-1"})
        ).json()

        assert first["total"] == 3
        assert len(first["items"]) == 2
        assert by_actor["total"] == 3
        assert all(e["action"] == "view_results" for e in by_actor["items"])

    async def test_unknown_action_rejected(self, admin_client: AsyncClient):
        response = await admin_client.get("/v1/audit-log", params={"action": "bogus"})

        assert response.status_code == 422
