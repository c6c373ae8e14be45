"""Pytest fixtures for prescreen tests."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from prescreen.bureau.types import (
    BureauScore,
    LeadRecord,
    RecordFailure,
    ScoredRecord,
    SubmitOutcome,
)
from prescreen.config.settings import Settings
from prescreen.core.audit import AuditLogger
from prescreen.core.context import Caller, Role
from prescreen.core.encryption import (
    Encryptor,
    generate_key,
    key_from_string,
    key_to_string,
    last_four,
    reset_encryptor,
)
from prescreen.db.config import create_engine, create_session_factory
from prescreen.db.models import Base, Bureau, Lead, MatchStatus, Program


API_SECRET = "test-api-secret"
BUREAU_URL = "https://gateway.test"


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================

@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    reset_encryptor()


# =============================================================================
# Settings and encryption
# =============================================================================

@pytest.fixture
def encryption_key() -> str:
    return key_to_string(generate_key())


@pytest.fixture
def encryptor(encryption_key: str) -> Encryptor:
    return Encryptor.from_key(key_from_string(encryption_key))


@pytest.fixture
def test_settings(tmp_path, encryption_key: str) -> Settings:
    """Settings for a file-backed SQLite database and a configured gateway."""
    return Settings(
        ENVIRONMENT="test",
        DEBUG=True,
        log_level="DEBUG",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'prescreen.db'}",
        API_SECRET_KEY=SecretStr(API_SECRET),
        ENCRYPTION_KEY=SecretStr(encryption_key),
        BUREAU_BASE_URL=BUREAU_URL,
        BUREAU_USERNAME="svc-prescreen",
        BUREAU_PASSWORD=SecretStr("bureau-password"),
        BUREAU_COMPANY_ID="ACME",
        BUREAU_MAX_ATTEMPTS=3,
        BUREAU_RETRY_BASE_DELAY=0.0,
    )


# =============================================================================
# Database fixtures
# =============================================================================

@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Engine on a fresh SQLite file with all tables created."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def audit_logger(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AuditLogger, None]:
    audit = AuditLogger(session_factory)
    yield audit
    await audit.wait_idle()


@pytest_asyncio.fixture
async def program(session_factory: async_sessionmaker[AsyncSession]) -> Program:
    """Program with thresholds tier_1 >= 680, tier_2 >= 620, tier_3 >= 580."""
    async with session_factory() as session:
        program = Program(
            bureau_program_id="PRG-100",
            name="Auto Refi",
            tier_1_min=680,
            tier_2_min=620,
            tier_3_min=580,
        )
        session.add(program)
        await session.commit()
    return program


@pytest.fixture
def make_lead(
    session_factory: async_sessionmaker[AsyncSession],
    encryptor: Encryptor,
    program: Program,
) -> Callable[..., Any]:
    """Factory storing a lead with encrypted SSN and DOB."""

    async def _make(
        ssn: str | None = "123456789",
        dob: str | None = "1980-05-17",
        **overrides: Any,
    ) -> Lead:
        fields: dict[str, Any] = {
            "program_id": program.id,
            "first_name": "Jane",
            "last_name": "Doe",
            "street": "12 Main St",
            "city": "Springfield",
            "state": "IL",
            "zip": "62701",
        }
        if ssn:
            fields["ssn_encrypted"] = encryptor.encrypt(ssn)
            fields["ssn_last_four"] = last_four(ssn)
        if dob:
            fields["dob"] = dob
            fields["dob_encrypted"] = encryptor.encrypt(dob)
        fields.update(overrides)
        async with session_factory() as session:
            lead = Lead(**fields)
            session.add(lead)
            await session.commit()
        return lead

    return _make


# =============================================================================
# Callers
# =============================================================================

@pytest.fixture
def admin() -> Caller:
    return Caller(actor_id="admin-1", email="admin@example.com", role=Role.ADMIN)


@pytest.fixture
def user() -> Caller:
    return Caller(actor_id="user-1", email="user@example.com", role=Role.USER)


# =============================================================================
# Gateway fakes
# =============================================================================

ScoreTable = dict[str, list[int | None] | MatchStatus | tuple[MatchStatus, str]]


def outcome_by_ssn(table: ScoreTable) -> Callable[[list[LeadRecord]], SubmitOutcome]:
    """Build a responder answering each record by its SSN.

    A list of scores becomes a scored record (eq, ex, tu in that order); a
    MatchStatus, optionally with a reason, becomes a failure.
    """
    bureaus = [Bureau.EQUIFAX, Bureau.EXPERIAN, Bureau.TRANSUNION]

    def respond(records: list[LeadRecord]) -> SubmitOutcome:
        outcome = SubmitOutcome()
        for index, record in enumerate(records):
            answer = table.get(record.ssn or "", MatchStatus.NO_MATCH)
            if isinstance(answer, list):
                outcome.results.append(
                    ScoredRecord(
                        index=index,
                        scores=[
                            BureauScore(bureau=b, credit_score=s, raw_output={"credit_score": s})
                            for b, s in zip(bureaus, answer)
                        ],
                    )
                )
            else:
                status, reason = answer if isinstance(answer, tuple) else (answer, "No match found")
                outcome.failures.append(
                    RecordFailure(index=index, match_status=status, reason=reason)
                )
        return outcome

    return respond


class FakeGateway:
    """In-memory stand-in for the gateway client used by the orchestrator."""

    def __init__(self, max_batch_size: int = 1000):
        self.max_batch_size = max_batch_size
        self.is_configured = True
        self.calls: list[tuple[list[LeadRecord], str]] = []
        self.responder: Callable[[list[LeadRecord]], SubmitOutcome] | None = None
        self.error: Exception | None = None
        self.fail_on_call: int | None = None

    def respond_by_ssn(self, table: ScoreTable) -> None:
        self.responder = outcome_by_ssn(table)

    async def submit_batch(self, records: list[LeadRecord], program_id: str) -> SubmitOutcome:
        self.calls.append((records, program_id))
        if self.error is not None and (
            self.fail_on_call is None or len(self.calls) == self.fail_on_call
        ):
            raise self.error
        if self.responder is None:
            return SubmitOutcome()
        return self.responder(records)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


# =============================================================================
# Bureau wire stub
# =============================================================================

class BureauStub:
    """Routes httpx requests to canned gateway responses.

    Handlers are keyed by ``(method, path)``; each returns an
    ``httpx.Response``. Login succeeds by default.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.login_count = 0
        self.token_counter = 0
        self.handlers: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def login(self, request: httpx.Request) -> httpx.Response:
        self.login_count += 1
        self.token_counter += 1
        return httpx.Response(200, json={"token": f"tok-{self.token_counter}", "expires_in": 1800})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/auth/tokens":
            handler = self.handlers.get(("POST", "/auth/tokens"), self.login)
            return handler(request)
        handler = self.handlers.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        return handler(request)

    def on(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]):
        self.handlers[(method, path)] = handler

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/auth/tokens"]


@pytest.fixture
def bureau_stub() -> BureauStub:
    return BureauStub()


@pytest.fixture
def bureau_transport(bureau_stub: BureauStub) -> httpx.MockTransport:
    return httpx.MockTransport(bureau_stub)


# =============================================================================
# API fixtures
# =============================================================================

@pytest_asyncio.fixture
async def test_app(
    test_settings: Settings,
    bureau_transport: httpx.MockTransport,
) -> AsyncGenerator[FastAPI, None]:
    """FastAPI application on a fresh database with a stubbed bureau gateway.

    ASGITransport does not run the lifespan, so tables are created and
    resources released here.
    """
    from prescreen.api.app import create_app

    app = create_app(settings=test_settings, gateway_transport=bureau_transport)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield app
    await app.state.audit_logger.wait_idle()
    await app.state.gateway.aclose()
    await app.state.engine.dispose()


def caller_headers(role: str = "admin", actor_id: str = "admin-1") -> dict[str, str]:
    return {
        "Authorization": f"Bearer {API_SECRET}",
        "X-Actor-Id": actor_id,
        "X-Actor-Email": f"{actor_id}@example.com",
        "X-Actor-Role": role,
    }


@pytest_asyncio.fixture
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated async HTTP client for the test application."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest_asyncio.fixture
async def admin_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers=caller_headers("admin", "admin-1"),
    ) as client:
        yield client


@pytest_asyncio.fixture
async def user_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers=caller_headers("user", "user-1"),
    ) as client:
        yield client


@pytest_asyncio.fixture
async def api_program(test_app: FastAPI) -> Program:
    """Program stored in the test application's database."""
    async with test_app.state.session_factory() as session:
        program = Program(
            bureau_program_id="PRG-100",
            name="Auto Refi",
            tier_1_min=680,
            tier_2_min=620,
            tier_3_min=580,
        )
        session.add(program)
        await session.commit()
    return program


@pytest.fixture
def lead_payload(api_program: Program) -> Callable[..., dict[str, Any]]:
    """Factory for JSON intake records under ``api_program``."""

    def _payload(**overrides: Any) -> dict[str, Any]:
        values: dict[str, Any] = {
            "program_id": str(api_program.id),
            "first_name": "Jane",
            "last_name": "Doe",
            "street": "12 Main St",
            "city": "Springfield",
            "state": "IL",
            "zip": "62701",
            "ssn": "123-45-6789",
            "dob": "1980-05-17",
        }
        values.update(overrides)
        return values

    return _payload
