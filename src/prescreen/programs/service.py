"""Program service: programs on the bureau gateway and their local mirror.

Name, description, score range and bureau flags belong to the gateway.
Creates and edits of those go to the gateway first and the local row
follows; tier thresholds and status are local only.
"""

from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prescreen.bureau import BureauGatewayClient, GatewayProgram
from prescreen.bureau.definitions import merge_definition, new_definition
from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller
from prescreen.core.exceptions import ValidationError
from prescreen.db.models import AuditAction, Program, ProgramStatus
from prescreen.db.repositories import ProgramRepository

logger = structlog.get_logger()

# Program fields stored on the gateway
REMOTE_FIELDS = (
    "name",
    "description",
    "min_score",
    "max_score",
    "eq_enabled",
    "ex_enabled",
    "tu_enabled",
)


class ProgramCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    min_score: int = Field(default=500, ge=300, le=900)
    max_score: int = Field(default=850, ge=300, le=900)
    eq_enabled: bool = True
    ex_enabled: bool = False
    tu_enabled: bool = True
    tier_1_min: int = Field(default=620, ge=300, le=900)
    tier_2_min: int = Field(default=580, ge=300, le=900)
    tier_3_min: int = Field(default=500, ge=300, le=900)


class ProgramUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    status: ProgramStatus | None = None
    tier_1_min: int | None = Field(default=None, ge=300, le=900)
    tier_2_min: int | None = Field(default=None, ge=300, le=900)
    tier_3_min: int | None = Field(default=None, ge=300, le=900)
    min_score: int | None = Field(default=None, ge=300, le=900)
    max_score: int | None = Field(default=None, ge=300, le=900)
    eq_enabled: bool | None = None
    ex_enabled: bool | None = None
    tu_enabled: bool | None = None


class ProgramService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: BureauGatewayClient,
        audit: AuditLogger,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._audit = audit

    async def list_programs(self, *, active_only: bool = False) -> list[Program]:
        async with self._session_factory() as session:
            return await ProgramRepository(session).list_all(active_only=active_only)

    async def get_program(self, program_id: UUID) -> Program:
        async with self._session_factory() as session:
            return await ProgramRepository(session).get_or_raise(program_id)

    async def sync_from_gateway(self) -> list[Program]:
        """Upsert programs listed by the gateway, keyed by their gateway id.

        Names, score bounds and bureau flags follow the gateway; locally
        edited thresholds and status are kept.

        Raises:
            GatewayError: If the gateway cannot be reached or is not configured
        """
        remote = await self._gateway.list_programs()
        created = 0
        async with self._session_factory() as session:
            repo = ProgramRepository(session)
            for item in remote:
                program = await repo.get_by_bureau_id(item.program_id)
                if program is None:
                    program = Program(bureau_program_id=item.program_id)
                    session.add(program)
                    created += 1
                _apply_remote(program, item)
            await session.commit()
            programs = await repo.list_all()

        logger.info("programs_synced", listed=len(remote), created=created)
        return programs

    async def create_program(self, data: ProgramCreate, actor: Caller) -> Program:
        """Create a program on the gateway, then store it locally.

        Nothing is stored when the gateway refuses the program.

        Raises:
            ValidationError: If thresholds or the score range are out of order,
                or no bureau is enabled
            GatewayError: If the gateway call fails
        """
        _check_consistency(data.model_dump())
        remote = await self._gateway.create_program(
            new_definition(
                name=data.name,
                description=data.description,
                min_score=data.min_score,
                max_score=data.max_score,
                eq_enabled=data.eq_enabled,
                ex_enabled=data.ex_enabled,
                tu_enabled=data.tu_enabled,
            )
        )

        async with self._session_factory() as session:
            program = Program(
                bureau_program_id=remote.program_id,
                name=data.name,
                description=data.description,
                min_score=data.min_score,
                max_score=data.max_score,
                eq_enabled=data.eq_enabled,
                ex_enabled=data.ex_enabled,
                tu_enabled=data.tu_enabled,
                tier_1_min=data.tier_1_min,
                tier_2_min=data.tier_2_min,
                tier_3_min=data.tier_3_min,
            )
            session.add(program)
            await session.commit()

        logger.info(
            "program_created", program_id=str(program.id), bureau_program_id=remote.program_id
        )
        self._audit.record(
            AuditAction.PROGRAM_CREATED,
            details={"program_id": str(program.id), "bureau_program_id": remote.program_id},
            caller=actor,
        )
        return program

    async def update_program(
        self, program_id: UUID, changes: ProgramUpdate, actor: Caller | None = None
    ) -> Program:
        """Edit a program.

        Changes to gateway-owned fields are merged over the gateway's current
        definition and saved there before the local row is committed; a
        gateway failure leaves the local row untouched.

        Raises:
            NotFoundError: If the program does not exist
            ValidationError: If thresholds would not be ordered
                tier_1 >= tier_2 >= tier_3, the score range is inverted or
                every bureau would be disabled
            GatewayError: If the gateway call fails
        """
        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        async with self._session_factory() as session:
            program = await ProgramRepository(session).get_or_raise(program_id)

            current = {
                key: getattr(program, key)
                for key in (*REMOTE_FIELDS, "tier_1_min", "tier_2_min", "tier_3_min")
            }
            _check_consistency({**current, **values})

            remote_changes = {
                key: value
                for key, value in values.items()
                if key in REMOTE_FIELDS and value != current[key]
            }
            if remote_changes:
                remote = await self._gateway.get_program(program.bureau_program_id)
                await self._gateway.update_program(
                    program.bureau_program_id, merge_definition(remote, remote_changes)
                )

            if "status" in values:
                values["status"] = ProgramStatus(values["status"]).value
            for key, value in values.items():
                setattr(program, key, value)
            await session.commit()

        logger.info(
            "program_updated",
            program_id=str(program_id),
            fields=sorted(values),
            pushed=sorted(remote_changes),
        )
        self._audit.record(
            AuditAction.PROGRAM_UPDATED,
            details={"program_id": str(program_id), "fields": sorted(values)},
            caller=actor,
        )
        return program


def _check_consistency(values: dict) -> None:
    if not values["tier_1_min"] >= values["tier_2_min"] >= values["tier_3_min"]:
        raise ValidationError(
            "Thresholds must satisfy tier_1 >= tier_2 >= tier_3",
            field="thresholds",
        )
    low, high = values.get("min_score"), values.get("max_score")
    if low is not None and high is not None and low > high:
        raise ValidationError("min_score must not exceed max_score", field="min_score")
    if not (values["eq_enabled"] or values["ex_enabled"] or values["tu_enabled"]):
        raise ValidationError("At least one bureau must be enabled", field="bureaus")


def _apply_remote(program: Program, item: GatewayProgram) -> None:
    program.name = item.name
    program.description = item.description
    program.min_score = item.min_score
    program.max_score = item.max_score
    program.eq_enabled = item.eq_enabled
    program.ex_enabled = item.ex_enabled
    program.tu_enabled = item.tu_enabled
