"""Unit tests for the program service."""

import json

import httpx
import pytest
from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from prescreen.bureau import BureauGatewayClient
from prescreen.config.settings import BureauConfig
from prescreen.core.exceptions import GatewayError, GatewayNotConfigured, ValidationError
from prescreen.db.models import AuditAction, ProgramStatus
from prescreen.programs import ProgramCreate, ProgramService, ProgramUpdate

PROGRAMS_PATH = "/instaprescreen/companies/ACME/programs"
PROGRAM_PATH = f"{PROGRAMS_PATH}/PRG-100"


def remote_definition() -> dict:
    return {
        "id": "PRG-100",
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
        "name": "Auto Refi",
        "match_mode": "all",
        "eq_enabled": True,
        "ex_enabled": True,
        "tu_enabled": True,
        "segments": [{"name": "Prime", "criteria": {"eq": {"credit_score": {"min": 620}}}}],
    }


@pytest.fixture
def gateway(bureau_transport) -> BureauGatewayClient:
    config = BureauConfig(
        base_url="https://gateway.test",
        username="svc-prescreen",
        password=SecretStr("bureau-password"),
        company_id="ACME",
        retry_base_delay=0.0,
    )
    return BureauGatewayClient(config, transport=bureau_transport)


@pytest.fixture
def service(session_factory, gateway, audit_logger) -> ProgramService:
    return ProgramService(session_factory, gateway, audit_logger)


@pytest.mark.asyncio
class TestSync:
    async def test_sync_creates_and_updates(self, service, gateway, bureau_stub, program):
        await service.update_program(program.id, ProgramUpdate(tier_1_min=700))
        bureau_stub.on(
            "GET",
            PROGRAMS_PATH,
            lambda r: httpx.Response(
                200,
                json=[
                    {"id": "PRG-100", "name": "Auto Refi 2026", "ex_enabled": False},
                    {"id": "PRG-200", "name": "Cards"},
                ],
            ),
        )

        programs = await service.sync_from_gateway()
        await gateway.aclose()

        by_remote = {p.bureau_program_id: p for p in programs}
        assert set(by_remote) == {"PRG-100", "PRG-200"}
        existing = by_remote["PRG-100"]
        assert existing.id == program.id
        assert existing.name == "Auto Refi 2026"
        assert existing.ex_enabled is False
        assert existing.tier_1_min == 700
        assert by_remote["PRG-200"].tier_1_min == 620

    async def test_sync_requires_configuration(self, session_factory, audit_logger):
        service = ProgramService(
            session_factory, BureauGatewayClient(BureauConfig()), audit_logger
        )

        with pytest.raises(GatewayNotConfigured):
            await service.sync_from_gateway()


@pytest.mark.asyncio
class TestUpdate:
    async def test_update_thresholds(self, service, program):
        updated = await service.update_program(
            program.id, ProgramUpdate(tier_1_min=700, tier_2_min=650, tier_3_min=600)
        )

        assert (updated.tier_1_min, updated.tier_2_min, updated.tier_3_min) == (700, 650, 600)

    async def test_thresholds_must_be_ordered(self, service, program):
        with pytest.raises(ValidationError) as exc_info:
            await service.update_program(program.id, ProgramUpdate(tier_3_min=690))
        assert exc_info.value.field == "thresholds"

    async def test_deactivate(self, service, program):
        await service.update_program(program.id, ProgramUpdate(status=ProgramStatus.INACTIVE))

        assert await service.list_programs(active_only=True) == []
        assert len(await service.list_programs()) == 1

    async def test_local_fields_stay_local(self, service, bureau_stub, program):
        await service.update_program(program.id, ProgramUpdate(tier_1_min=700, name="Auto Refi"))

        assert bureau_stub.api_requests() == []

    async def test_remote_fields_merged_over_gateway_definition(
        self, service, gateway, bureau_stub, audit_logger, program, admin
    ):
        sent: list[dict] = []

        def saved(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "PRG-100", **sent[-1]})

        bureau_stub.on("GET", PROGRAM_PATH, lambda r: httpx.Response(200, json=remote_definition()))
        bureau_stub.on("PUT", PROGRAM_PATH, saved)

        updated = await service.update_program(
            program.id,
            ProgramUpdate(name="Auto Refi 2", ex_enabled=False, tier_1_min=700),
            admin,
        )
        await gateway.aclose()
        await audit_logger.wait_idle()

        assert [r.method for r in bureau_stub.api_requests()] == ["GET", "PUT"]
        [body] = sent
        assert "id" not in body
        assert "created_at" not in body
        assert "tier_1_min" not in body
        assert body["name"] == "Auto Refi 2"
        assert body["ex_enabled"] is False
        assert body["match_mode"] == "all"
        assert body["segments"] == remote_definition()["segments"]
        assert (updated.name, updated.ex_enabled, updated.tier_1_min) == ("Auto Refi 2", False, 700)
        entries, _ = await audit_logger.query(action=AuditAction.PROGRAM_UPDATED)
        assert entries[0].actor_id == "admin-1"
        assert entries[0].details["fields"] == ["ex_enabled", "name", "tier_1_min"]

    async def test_gateway_refusal_keeps_local_row(self, service, gateway, bureau_stub, program):
        bureau_stub.on("GET", PROGRAM_PATH, lambda r: httpx.Response(200, json=remote_definition()))
        bureau_stub.on(
            "PUT", PROGRAM_PATH, lambda r: httpx.Response(422, json={"message": "bad segment"})
        )

        with pytest.raises(GatewayError, match="bad segment"):
            await service.update_program(
                program.id, ProgramUpdate(name="Auto Refi 2", tier_1_min=700)
            )
        await gateway.aclose()

        stored = await service.get_program(program.id)
        assert (stored.name, stored.tier_1_min) == ("Auto Refi", 680)

    async def test_cannot_disable_every_bureau(self, service, bureau_stub, program):
        with pytest.raises(ValidationError) as exc_info:
            await service.update_program(
                program.id,
                ProgramUpdate(eq_enabled=False, ex_enabled=False, tu_enabled=False),
            )
        assert exc_info.value.field == "bureaus"
        assert bureau_stub.api_requests() == []


@pytest.mark.asyncio
class TestCreate:
    async def test_created_on_gateway_then_stored(
        self, service, gateway, bureau_stub, audit_logger, admin
    ):
        sent: list[dict] = []

        def created(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(201, json={"id": "PRG-300", **sent[-1]})

        bureau_stub.on("POST", PROGRAMS_PATH, created)

        program = await service.create_program(
            ProgramCreate(name="Cards", tier_1_min=700, tier_2_min=650, tier_3_min=600), admin
        )
        await gateway.aclose()
        await audit_logger.wait_idle()

        [body] = sent
        assert body["name"] == "Cards"
        assert (body["min_score"], body["max_score"]) == (500, 850)
        assert (body["eq_enabled"], body["ex_enabled"], body["tu_enabled"]) == (True, False, True)
        assert body["eq_credit_score_version"] == "FICO_CLASSIC"
        assert program.bureau_program_id == "PRG-300"
        assert program.ex_enabled is False
        assert program.tier_1_min == 700
        assert [p.id for p in await service.list_programs()] == [program.id]
        entries, _ = await audit_logger.query(action=AuditAction.PROGRAM_CREATED)
        assert entries[0].details["bureau_program_id"] == "PRG-300"

    async def test_gateway_refusal_stores_nothing(self, service, gateway, bureau_stub, admin):
        bureau_stub.on(
            "POST", PROGRAMS_PATH, lambda r: httpx.Response(400, json={"message": "name taken"})
        )

        with pytest.raises(GatewayError, match="name taken"):
            await service.create_program(ProgramCreate(name="Cards"), admin)
        await gateway.aclose()

        assert await service.list_programs() == []

    async def test_inverted_score_range(self, service, bureau_stub, admin):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_program(
                ProgramCreate(name="Cards", min_score=800, max_score=700), admin
            )
        assert exc_info.value.field == "min_score"
        assert bureau_stub.api_requests() == []


def test_threshold_range():
    with pytest.raises(PydanticValidationError):
        ProgramUpdate(tier_1_min=950)
