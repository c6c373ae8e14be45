"""Unit tests for batch creation, execution and recovery."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from uuid_utils.compat import uuid7

from prescreen.bureau import SubmitOutcome
from prescreen.core.exceptions import (
    BatchStateError,
    GatewayTimeout,
    NotFoundError,
    ValidationError,
)
from prescreen.db.models import (
    AuditAction,
    AuditLogEntry,
    Batch,
    BatchStatus,
    Lead,
    LeadStatus,
    MatchStatus,
    Result,
    Tier,
)
from prescreen.screening import BatchOrchestrator


@pytest.fixture
def orchestrator(session_factory, fake_gateway, encryptor, audit_logger) -> BatchOrchestrator:
    return BatchOrchestrator(session_factory, fake_gateway, encryptor, audit_logger)


async def reload(session_factory, model, id_):
    async with session_factory() as session:
        return await session.get(model, id_)


async def result_count(session_factory, lead_id) -> int:
    async with session_factory() as session:
        stmt = select(func.count(Result.id)).where(Result.lead_id == lead_id)
        return (await session.execute(stmt)).scalar()


@pytest.mark.asyncio
class TestCreateBatch:
    """Tests for eligible-lead selection."""

    async def test_groups_eligible_leads(
        self, orchestrator, session_factory, program, make_lead, admin
    ):
        first = await make_lead(ssn="111111111")
        second = await make_lead(ssn="222222222")

        batch = await orchestrator.create_batch(program.id, admin)

        assert batch.status == BatchStatus.PENDING.value
        assert batch.total_records == 2
        assert batch.submitted_by_id == "admin-1"
        for lead in (first, second):
            stored = await reload(session_factory, Lead, lead.id)
            assert stored.batch_id == batch.id

    async def test_skips_ineligible_leads(
        self, orchestrator, session_factory, program, make_lead, admin
    ):
        eligible = await make_lead(ssn="111111111")
        await make_lead(ssn="222222222", status=LeadStatus.DISMISSED.value)
        await make_lead(ssn="333333333", retry_queued=True)
        await make_lead(ssn="444444444", match_status=MatchStatus.MATCHED.value)

        batch = await orchestrator.create_batch(program.id, admin)

        assert batch.total_records == 1
        stored = await reload(session_factory, Lead, eligible.id)
        assert stored.batch_id == batch.id

    async def test_restricts_to_requested_ids(self, orchestrator, program, make_lead, admin):
        wanted = await make_lead(ssn="111111111")
        await make_lead(ssn="222222222")

        batch = await orchestrator.create_batch(program.id, admin, lead_ids=[wanted.id])

        assert batch.total_records == 1

    async def test_no_eligible_leads(self, orchestrator, program, admin):
        with pytest.raises(ValidationError, match="No eligible leads"):
            await orchestrator.create_batch(program.id, admin)

    async def test_unknown_program(self, orchestrator, admin):
        with pytest.raises(NotFoundError):
            await orchestrator.create_batch(uuid7(), admin)

    async def test_lead_in_open_batch_not_reselected(
        self, orchestrator, program, make_lead, admin
    ):
        await make_lead(ssn="111111111")
        await orchestrator.create_batch(program.id, admin)

        with pytest.raises(ValidationError):
            await orchestrator.create_batch(program.id, admin)

    async def test_records_audit_entry(
        self, orchestrator, program, make_lead, admin, audit_logger
    ):
        await make_lead()
        batch = await orchestrator.create_batch(program.id, admin)
        await audit_logger.wait_idle()

        entries, total = await audit_logger.query(action=AuditAction.BATCH_SUBMITTED)

        assert total == 1
        assert entries[0].batch_id == batch.id
        assert entries[0].details["lead_count"] == 1


@pytest.mark.asyncio
class TestRunBatch:
    """Tests for submission and outcome persistence."""

    async def test_scores_classify_into_tiers(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        """Scores 700 and 600 against 680/620/580, plus a no-hit."""
        strong = await make_lead(ssn="111111111")
        fair = await make_lead(ssn="222222222")
        missing = await make_lead(ssn="333333333")
        fake_gateway.respond_by_ssn(
            {
                "111111111": [700, 700, 700],
                "222222222": [600, 600, 600],
                "333333333": MatchStatus.NO_MATCH,
            }
        )

        batch = await orchestrator.submit(program.id, admin)

        assert batch.status == BatchStatus.COMPLETED.value
        assert batch.total_records == 3
        assert batch.qualified_count == 2
        assert batch.failed_count == 1
        assert batch.completed_at is not None

        strong = await reload(session_factory, Lead, strong.id)
        fair = await reload(session_factory, Lead, fair.id)
        missing = await reload(session_factory, Lead, missing.id)

        assert (strong.tier, strong.middle_score, strong.is_qualified) == ("tier_1", 700, True)
        assert (fair.tier, fair.middle_score, fair.is_qualified) == ("tier_3", 600, True)
        assert missing.tier == Tier.FILTERED.value
        assert missing.match_status == MatchStatus.NO_MATCH.value
        assert missing.is_qualified is False
        assert missing.retry_queued is True
        assert await result_count(session_factory, strong.id) == 3
        assert await result_count(session_factory, missing.id) == 0

    async def test_middle_score_from_two_bureaus(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        lead = await make_lead(ssn="111111111")
        fake_gateway.respond_by_ssn({"111111111": [700, 680, None]})

        await orchestrator.submit(program.id, admin)

        stored = await reload(session_factory, Lead, lead.id)
        assert stored.middle_score == 680
        assert stored.tier == Tier.TIER_1.value

    async def test_matched_without_scores_is_no_score(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        lead = await make_lead(ssn="111111111")
        fake_gateway.respond_by_ssn({"111111111": [None, None, None]})

        batch = await orchestrator.submit(program.id, admin)

        stored = await reload(session_factory, Lead, lead.id)
        assert stored.match_status == MatchStatus.NO_SCORE.value
        assert stored.tier == Tier.FILTERED.value
        assert stored.retry_queued is False
        assert batch.failed_count == 1

    async def test_no_score_failure_not_queued(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        lead = await make_lead(ssn="111111111")
        fake_gateway.respond_by_ssn({"111111111": (MatchStatus.NO_SCORE, "No score")})

        await orchestrator.submit(program.id, admin)

        stored = await reload(session_factory, Lead, lead.id)
        assert stored.match_status == MatchStatus.NO_SCORE.value
        assert stored.retry_queued is False
        assert stored.error_message == "No score"

    async def test_submits_decrypted_values(
        self, orchestrator, fake_gateway, program, make_lead, admin
    ):
        await make_lead(ssn="123456789", dob="1980-05-17")
        fake_gateway.respond_by_ssn({"123456789": [650, 650, 650]})

        await orchestrator.submit(program.id, admin)

        records, program_id = fake_gateway.calls[0]
        assert program_id == "PRG-100"
        assert records[0].ssn == "123456789"
        assert records[0].dob == "1980-05-17"

    async def test_gateway_timeout_fails_batch(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        leads = [await make_lead(ssn=f"11111111{i}") for i in range(3)]
        fake_gateway.error = GatewayTimeout("Bureau gateway timed out")

        batch = await orchestrator.submit(program.id, admin)

        assert batch.status == BatchStatus.FAILED.value
        assert "timed out" in batch.error_message
        for lead in leads:
            stored = await reload(session_factory, Lead, lead.id)
            assert stored.match_status == MatchStatus.PENDING.value
            assert stored.status == LeadStatus.PENDING.value
            assert stored.tier == Tier.PENDING.value

    async def test_failed_batch_leads_are_selectable_again(
        self, orchestrator, fake_gateway, program, make_lead, admin
    ):
        await make_lead(ssn="111111111")
        fake_gateway.error = GatewayTimeout("timed out")
        await orchestrator.submit(program.id, admin)

        fake_gateway.error = None
        batch = await orchestrator.create_batch(program.id, admin)

        assert batch.total_records == 1

    async def test_rerun_raises_state_error(
        self, orchestrator, fake_gateway, program, make_lead, admin
    ):
        await make_lead(ssn="111111111")
        fake_gateway.respond_by_ssn({"111111111": [700, 700, 700]})
        batch = await orchestrator.submit(program.id, admin)

        with pytest.raises(BatchStateError) as exc_info:
            await orchestrator.run_batch(batch.id)
        assert exc_info.value.status == BatchStatus.COMPLETED.value

    async def test_undecryptable_lead_is_rejected_and_queued(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        good = await make_lead(ssn="111111111")
        bad = await make_lead(ssn=None, ssn_encrypted="v1:" + "A" * 40)
        fake_gateway.respond_by_ssn({"111111111": [700, 700, 700]})

        batch = await orchestrator.submit(program.id, admin)

        assert batch.status == BatchStatus.COMPLETED.value
        assert len(fake_gateway.calls[0][0]) == 1
        stored = await reload(session_factory, Lead, bad.id)
        assert stored.match_status == MatchStatus.REJECTED.value
        assert stored.retry_queued is True
        assert (await reload(session_factory, Lead, good.id)).tier == Tier.TIER_1.value


@pytest.mark.asyncio
class TestChunking:
    """Tests for splitting batches larger than the gateway limit."""

    async def test_chunks_submitted_sequentially(
        self, session_factory, encryptor, audit_logger, fake_gateway, program, make_lead, admin
    ):
        fake_gateway.max_batch_size = 2
        for i in range(5):
            await make_lead(ssn=f"11111111{i}")
        fake_gateway.respond_by_ssn({f"11111111{i}": [650, 650, 650] for i in range(5)})
        orchestrator = BatchOrchestrator(session_factory, fake_gateway, encryptor, audit_logger)

        batch = await orchestrator.submit(program.id, admin)

        assert [len(records) for records, _ in fake_gateway.calls] == [2, 2, 1]
        assert batch.status == BatchStatus.COMPLETED.value
        assert batch.qualified_count == 5

    async def test_committed_chunks_survive_later_failure(
        self, session_factory, encryptor, audit_logger, fake_gateway, program, make_lead, admin
    ):
        fake_gateway.max_batch_size = 2
        for i in range(4):
            await make_lead(ssn=f"11111111{i}")
        fake_gateway.respond_by_ssn({f"11111111{i}": [650, 650, 650] for i in range(4)})
        fake_gateway.error = GatewayTimeout("timed out")
        fake_gateway.fail_on_call = 2
        orchestrator = BatchOrchestrator(session_factory, fake_gateway, encryptor, audit_logger)

        batch = await orchestrator.submit(program.id, admin)

        assert batch.status == BatchStatus.FAILED.value
        assert batch.qualified_count == 2
        async with session_factory() as session:
            matched = (
                await session.execute(
                    select(func.count(Lead.id)).where(
                        Lead.match_status == MatchStatus.MATCHED.value
                    )
                )
            ).scalar()
            results = (await session.execute(select(func.count(Result.id)))).scalar()
        assert matched == 2
        assert results == 6


@pytest.mark.asyncio
class TestRecovery:
    """Tests for resuming interrupted batches."""

    async def test_cancelled_batch_stays_processing_and_recovers(
        self, session_factory, encryptor, audit_logger, fake_gateway, program, make_lead, admin
    ):
        leads = [await make_lead(ssn=f"11111111{i}") for i in range(2)]
        submitted = asyncio.Event()
        release = asyncio.Event()

        async def blocking_submit(records, program_id) -> SubmitOutcome:
            submitted.set()
            await release.wait()
            return SubmitOutcome()

        blocked_gateway = type(fake_gateway)()
        blocked_gateway.submit_batch = blocking_submit
        # Zero-length lease: the interrupted run's claim has already lapsed
        stuck = BatchOrchestrator(
            session_factory, blocked_gateway, encryptor, audit_logger, lease_seconds=0
        )
        batch = await stuck.create_batch(program.id, admin)

        task = asyncio.create_task(stuck.run_batch(batch.id))
        await submitted.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await reload(session_factory, Batch, batch.id)).status == (
            BatchStatus.PROCESSING.value
        )

        fake_gateway.respond_by_ssn({f"11111111{i}": [700, 700, 700] for i in range(2)})
        recovering = BatchOrchestrator(session_factory, fake_gateway, encryptor, audit_logger)
        recovered = await recovering.recover_batch(batch.id, admin)

        assert recovered.status == BatchStatus.COMPLETED.value
        assert recovered.qualified_count == 2
        for lead in leads:
            assert (await reload(session_factory, Lead, lead.id)).tier == Tier.TIER_1.value

    async def test_recover_skips_leads_already_scored(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        done = await make_lead(ssn="111111111")
        todo = await make_lead(ssn="222222222")
        batch = await orchestrator.create_batch(program.id, admin)
        async with session_factory() as session:
            stored_batch = await session.get(Batch, batch.id)
            stored_batch.status = BatchStatus.PROCESSING.value
            scored = await session.get(Lead, done.id)
            scored.match_status = MatchStatus.MATCHED.value
            scored.tier = Tier.TIER_2.value
            scored.is_qualified = True
            scored.middle_score = 650
            await session.commit()
        fake_gateway.respond_by_ssn({"222222222": [700, 700, 700]})

        recovered = await orchestrator.recover_batch(batch.id, admin)

        submitted = [record.ssn for records, _ in fake_gateway.calls for record in records]
        assert submitted == ["222222222"]
        assert recovered.qualified_count == 2
        assert (await reload(session_factory, Lead, todo.id)).tier == Tier.TIER_1.value

    async def test_concurrent_recoveries_submit_once(
        self,
        orchestrator,
        session_factory,
        encryptor,
        audit_logger,
        fake_gateway,
        program,
        make_lead,
        admin,
    ):
        await make_lead(ssn="111111111")
        batch = await orchestrator.create_batch(program.id, admin)
        async with session_factory() as session:
            (await session.get(Batch, batch.id)).status = BatchStatus.PROCESSING.value
            await session.commit()
        fake_gateway.respond_by_ssn({"111111111": [700, 700, 700]})
        other = BatchOrchestrator(session_factory, fake_gateway, encryptor, audit_logger)

        outcomes = await asyncio.gather(
            orchestrator.recover_batch(batch.id, admin),
            other.recover_batch(batch.id, admin),
            return_exceptions=True,
        )

        assert sorted(type(o).__name__ for o in outcomes) == ["Batch", "BatchStateError"]
        submitted = [record.ssn for records, _ in fake_gateway.calls for record in records]
        assert submitted == ["111111111"]
        stored = await reload(session_factory, Batch, batch.id)
        assert stored.status == BatchStatus.COMPLETED.value
        assert stored.lease_expires_at is None

    async def test_live_lease_blocks_recovery(
        self, orchestrator, session_factory, fake_gateway, program, make_lead, admin
    ):
        await make_lead()
        batch = await orchestrator.create_batch(program.id, admin)
        async with session_factory() as session:
            stored = await session.get(Batch, batch.id)
            stored.status = BatchStatus.PROCESSING.value
            stored.lease_expires_at = datetime.now(UTC) + timedelta(minutes=5)
            await session.commit()

        with pytest.raises(BatchStateError, match="still being submitted"):
            await orchestrator.recover_batch(batch.id, admin)

        assert fake_gateway.calls == []

    async def test_run_batch_releases_lease(
        self, orchestrator, session_factory, program, make_lead, admin
    ):
        await make_lead()

        batch = await orchestrator.submit(program.id, admin)

        assert (await reload(session_factory, Batch, batch.id)).lease_expires_at is None

    async def test_recover_requires_processing(
        self, orchestrator, program, make_lead, admin
    ):
        await make_lead()
        batch = await orchestrator.create_batch(program.id, admin)

        with pytest.raises(BatchStateError):
            await orchestrator.recover_batch(batch.id, admin)

    async def test_recovery_is_audited(
        self, orchestrator, session_factory, audit_logger, program, make_lead, admin
    ):
        await make_lead()
        batch = await orchestrator.create_batch(program.id, admin)
        async with session_factory() as session:
            (await session.get(Batch, batch.id)).status = BatchStatus.PROCESSING.value
            await session.commit()

        await orchestrator.recover_batch(batch.id, admin)
        await audit_logger.wait_idle()

        async with session_factory() as session:
            actions = (
                await session.execute(
                    select(AuditLogEntry.action).where(AuditLogEntry.batch_id == batch.id)
                )
            ).scalars().all()
        assert AuditAction.BATCH_RECOVERED.value in actions


@pytest.mark.asyncio
class TestRetryFailedBatch:
    async def test_retry_runs_unscored_leads_in_new_batch(
        self, orchestrator, fake_gateway, program, make_lead, admin
    ):
        await make_lead(ssn="111111111")
        fake_gateway.error = GatewayTimeout("timed out")
        failed = await orchestrator.submit(program.id, admin)

        fake_gateway.error = None
        fake_gateway.respond_by_ssn({"111111111": [640, 640, 640]})
        retried = await orchestrator.retry_failed_batch(failed.id, admin)

        assert retried.id != failed.id
        assert retried.name.endswith("(retry)")
        assert retried.status == BatchStatus.COMPLETED.value
        assert retried.qualified_count == 1

    async def test_retry_requires_failed(
        self, orchestrator, fake_gateway, program, make_lead, admin
    ):
        await make_lead(ssn="111111111")
        fake_gateway.respond_by_ssn({"111111111": [640, 640, 640]})
        batch = await orchestrator.submit(program.id, admin)

        with pytest.raises(BatchStateError):
            await orchestrator.retry_failed_batch(batch.id, admin)


@pytest.mark.asyncio
class TestBatchAdmin:
    async def test_rename_and_list(self, orchestrator, program, make_lead, admin):
        await make_lead()
        batch = await orchestrator.create_batch(program.id, admin, name="First")

        renamed = await orchestrator.rename_batch(batch.id, "  Renamed ")
        batches, total, names = await orchestrator.list_batches()

        assert renamed.name == "Renamed"
        assert total == 1
        assert batches[0].name == "Renamed"
        assert names[program.id] == "Auto Refi"

    async def test_rename_rejects_blank(self, orchestrator, program, make_lead, admin):
        await make_lead()
        batch = await orchestrator.create_batch(program.id, admin)

        with pytest.raises(ValidationError):
            await orchestrator.rename_batch(batch.id, "   ")
