"""Tests for rollback strategies, eligibility and execution."""

import asyncio
from datetime import timedelta

import pytest

from proxyguard.db.repositories.rollback_repo import RollbackRepository
from proxyguard.engine.container import build_services
from proxyguard.engine.strategies import (
    ACTION_ROLLBACK_STRATEGIES,
    UndoRegistry,
    build_undo_instructions,
    get_rollback_strategy,
)
from proxyguard.exceptions import (
    AccessDenied,
    AuditEntryNotFound,
    RollbackExecutionError,
    RollbackNotAllowed,
    RollbackNotFound,
)
from proxyguard.schemas.authorization import ActionClass
from proxyguard.schemas.rollback import RollbackHistoryQuery, RollbackStatus, RollbackStrategy
from tests.conftest import BASE_TIME, RecordingUndo


class TestStrategies:
    def test_every_action_class_has_a_strategy(self):
        assert set(ACTION_ROLLBACK_STRATEGIES) == set(ActionClass)

    @pytest.mark.parametrize(
        "action_class,strategy",
        [
            ("create_calendar_event", RollbackStrategy.DIRECT_UNDO),
            ("create_task", RollbackStrategy.DIRECT_UNDO),
            ("create_github_issue", RollbackStrategy.DIRECT_UNDO),
            ("update_calendar_event", RollbackStrategy.COMPENSATING),
            ("update_task", RollbackStrategy.COMPENSATING),
            ("update_github_issue", RollbackStrategy.COMPENSATING),
            ("delete_calendar_event", RollbackStrategy.COMPENSATING),
            ("send_email", RollbackStrategy.NOT_SUPPORTED),
            ("post_slack_message", RollbackStrategy.NOT_SUPPORTED),
            ("launch_rockets", RollbackStrategy.NOT_SUPPORTED),
        ],
    )
    def test_strategy_table(self, action_class, strategy):
        assert get_rollback_strategy(action_class) == strategy


class TestUndoInstructions:
    def test_create_uses_output_identifier(self):
        instructions = build_undo_instructions(
            "create_calendar_event", {"title": "Sync"}, {"eventId": "evt-1"}
        )
        assert instructions == {"operation": "delete", "eventId": "evt-1"}

    def test_github_issue_is_closed(self):
        instructions = build_undo_instructions("create_github_issue", {}, {"issueNumber": 42})
        assert instructions == {"operation": "close", "issueNumber": 42}

    def test_update_restores_previous_state(self):
        instructions = build_undo_instructions(
            "update_task", {"id": "t-1", "previousState": {"title": "old"}}, {}
        )
        assert instructions == {
            "operation": "restore",
            "id": "t-1",
            "previousState": {"title": "old"},
        }

    def test_delete_recreates_from_input(self):
        instructions = build_undo_instructions(
            "delete_calendar_event", {"eventData": {"summary": "Standup"}}, {}
        )
        assert instructions["operation"] == "recreate"

    @pytest.mark.parametrize(
        "action_class,original_input,original_output,message",
        [
            ("create_calendar_event", {}, {}, "Event ID not found in audit log output"),
            ("create_task", {}, None, "Task ID not found in audit log output"),
            ("update_calendar_event", {"eventId": "e"}, {}, "Event ID or previous state"),
            ("delete_calendar_event", {}, {}, "Event data not found in audit log"),
            ("send_email", {}, {}, "No undo instructions for action: send_email"),
        ],
    )
    def test_missing_data(self, action_class, original_input, original_output, message):
        with pytest.raises(RollbackExecutionError, match=message):
            build_undo_instructions(action_class, original_input, original_output)


class TestUndoRegistry:
    def test_register_and_lookup(self):
        undo = RecordingUndo()
        registry = UndoRegistry({"create_task": undo})
        assert "create_task" in registry
        assert registry.get("create_task") is undo
        assert registry.get("update_task") is None
        assert len(registry) == 1

    def test_rejects_non_undoable_classes(self):
        with pytest.raises(ValueError, match="does not support rollback"):
            UndoRegistry().register("send_email", RecordingUndo())

    def test_registries_are_independent(self):
        first = UndoRegistry()
        first.register("create_task", RecordingUndo())
        assert "create_task" not in UndoRegistry()


class TestCanRollback:
    @pytest.mark.asyncio
    async def test_successful_create_task(self, services, make_action):
        entry = await services.audit.log_proxy_action(make_action(action_class="create_task"))
        result = await services.rollbacks.can_rollback(entry.id)
        assert result.can_rollback is True
        assert result.strategy == RollbackStrategy.DIRECT_UNDO
        assert result.expires_at == BASE_TIME + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_send_email_not_supported(self, services, make_action):
        entry = await services.audit.log_proxy_action(make_action(action_class="send_email"))
        result = await services.rollbacks.can_rollback(entry.id)
        assert result.can_rollback is False
        assert result.strategy == RollbackStrategy.NOT_SUPPORTED
        assert result.reason == "send_email does not support rollback"

    @pytest.mark.asyncio
    async def test_failed_action(self, services, make_action):
        entry = await services.audit.log_proxy_action(make_action(success=False, error="x"))
        result = await services.rollbacks.can_rollback(entry.id)
        assert result.can_rollback is False
        assert result.reason == "Cannot rollback failed action"

    @pytest.mark.asyncio
    async def test_missing_entry(self, services):
        result = await services.rollbacks.can_rollback("missing")
        assert result.can_rollback is False
        assert result.reason == "Audit entry not found"

    @pytest.mark.asyncio
    async def test_window_expiry(self, services, clock, make_action):
        entry = await services.audit.log_proxy_action(make_action())
        clock.advance(hours=24)
        assert (await services.rollbacks.can_rollback(entry.id)).can_rollback is True

        clock.advance(seconds=1)
        result = await services.rollbacks.can_rollback(entry.id)
        assert result.can_rollback is False
        assert result.reason == "Rollback window expired (24h window)"


class TestExecuteRollback:
    @pytest.mark.asyncio
    async def test_direct_undo(self, services, clock, undo, make_action):
        entry = await services.audit.log_proxy_action(
            make_action(input={"title": "Draft"}, output={"taskId": "t-9"})
        )
        clock.advance(minutes=5)
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1", "created by mistake")

        assert rollback.status == RollbackStatus.COMPLETED
        assert rollback.strategy == RollbackStrategy.DIRECT_UNDO
        assert rollback.completed_at == clock.now
        assert rollback.expires_at == BASE_TIME + timedelta(hours=24)
        assert rollback.rollback_data["reason"] == "created by mistake"
        assert rollback.rollback_data["undo"] == {"operation": "delete", "taskId": "t-9"}

        assert len(undo.calls) == 1
        action_class, data = undo.calls[0]
        assert action_class == "create_task"
        assert data["originalInput"] == {"title": "Draft"}

        check = await services.rollbacks.can_rollback(entry.id)
        assert check.can_rollback is False
        assert check.reason == "Action already rolled back"

    @pytest.mark.asyncio
    async def test_compensating_update(self, services, undo, make_action):
        entry = await services.audit.log_proxy_action(
            make_action(
                action_class="update_calendar_event",
                input={"eventId": "evt-1", "previousState": {"start": "09:00"}},
            )
        )
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert rollback.status == RollbackStatus.COMPLETED
        assert rollback.strategy == RollbackStrategy.COMPENSATING
        assert undo.calls[0][1]["undo"]["previousState"] == {"start": "09:00"}

    @pytest.mark.asyncio
    async def test_other_user_is_access_denied(self, services, undo, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        with pytest.raises(AccessDenied, match="Access denied"):
            await services.rollbacks.execute_rollback(entry.id, "intruder")
        assert undo.calls == []
        assert await services.rollbacks.get_rollback_history("intruder") == []

    @pytest.mark.asyncio
    async def test_missing_entry_raises(self, services):
        with pytest.raises(AuditEntryNotFound, match="Audit entry not found"):
            await services.rollbacks.execute_rollback("missing", "user-1")

    @pytest.mark.asyncio
    async def test_ineligible_raises_without_creating_row(self, services, make_action):
        entry = await services.audit.log_proxy_action(make_action(action_class="send_email"))
        with pytest.raises(RollbackNotAllowed, match="Cannot rollback: send_email does not support"):
            await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert await services.rollbacks.get_rollback_history("user-1") == []

    @pytest.mark.asyncio
    async def test_expired_window_raises(self, services, clock, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        clock.advance(days=2)
        with pytest.raises(RollbackNotAllowed, match="window expired"):
            await services.rollbacks.execute_rollback(entry.id, "user-1")

    @pytest.mark.asyncio
    async def test_undo_failure_marks_rollback_failed(self, services, undo, make_action):
        undo.error = RuntimeError("Task API unavailable")
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert rollback.status == RollbackStatus.FAILED
        assert rollback.error_message == "Task API unavailable"
        assert rollback.completed_at is None

    @pytest.mark.asyncio
    async def test_missing_undo_data_marks_rollback_failed(self, services, undo, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert rollback.status == RollbackStatus.FAILED
        assert rollback.error_message == "Task ID not found in audit log output"
        assert undo.calls == []

    @pytest.mark.asyncio
    async def test_missing_capability_marks_rollback_failed(
        self, session, clock, test_settings, make_action
    ):
        services = build_services(
            session, undo_registry=UndoRegistry(), settings=test_settings, clock=clock
        )
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert rollback.status == RollbackStatus.FAILED
        assert rollback.error_message == "No undo capability registered for create_task"

    @pytest.mark.asyncio
    async def test_timeout_marks_rollback_failed(self, session, clock, test_settings, make_action):
        async def hang(action_class, rollback_data):
            await asyncio.sleep(10)

        services = build_services(
            session,
            undo_registry=UndoRegistry({"create_task": hang}),
            settings=test_settings,
            clock=clock,
        )
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1", timeout=0.05)
        assert rollback.status == RollbackStatus.FAILED
        assert rollback.error_message == "Rollback timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_second_rollback_of_same_entry_rejected(self, services, undo, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        await services.rollbacks.execute_rollback(entry.id, "user-1")
        with pytest.raises(RollbackNotAllowed, match="Action already rolled back"):
            await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert len(undo.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_after_failure_is_allowed(self, services, clock, undo, make_action):
        undo.error = RuntimeError("flaky")
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        failed = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert failed.status == RollbackStatus.FAILED

        undo.error = None
        clock.advance(minutes=1)
        retried = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert retried.status == RollbackStatus.COMPLETED
        assert retried.id != failed.id


class TestVerifyAndHistory:
    @pytest.mark.asyncio
    async def test_verify_completed(self, services, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        result = await services.rollbacks.verify_rollback(rollback.id)
        assert result.verified is True

    @pytest.mark.asyncio
    async def test_verify_failed(self, services, undo, make_action):
        undo.error = RuntimeError("nope")
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        result = await services.rollbacks.verify_rollback(rollback.id)
        assert result.verified is False
        assert "failed" in result.message

    @pytest.mark.asyncio
    async def test_verify_missing(self, services):
        result = await services.rollbacks.verify_rollback("missing")
        assert result.verified is False
        assert result.message == "Rollback not found"

    @pytest.mark.asyncio
    async def test_history_filters(self, services, clock, undo, make_action):
        first = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        clock.advance(minutes=1)
        second = await services.audit.log_proxy_action(make_action(output={}))
        clock.advance(minutes=1)
        done = await services.rollbacks.execute_rollback(first.id, "user-1")
        clock.advance(minutes=1)
        failed = await services.rollbacks.execute_rollback(second.id, "user-1")

        history = await services.rollbacks.get_rollback_history("user-1")
        assert [r.id for r in history] == [failed.id, done.id]

        only_failed = await services.rollbacks.get_rollback_history(
            "user-1", RollbackHistoryQuery(status=RollbackStatus.FAILED)
        )
        assert [r.id for r in only_failed] == [failed.id]

    @pytest.mark.asyncio
    async def test_get_rollback_is_owner_scoped(self, services, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert (await services.rollbacks.get_rollback(rollback.id, "user-1")).id == rollback.id
        with pytest.raises(RollbackNotFound):
            await services.rollbacks.get_rollback(rollback.id, "user-2")


class TestLiveRollbackUniqueness:
    async def _start(self, session, entry):
        return await RollbackRepository(session).create(
            audit_entry_id=entry.id,
            user_id=entry.user_id,
            strategy=RollbackStrategy.DIRECT_UNDO,
            rollback_data={},
            expires_at=entry.timestamp + timedelta(hours=24),
            created_at=entry.timestamp,
        )

    @pytest.mark.asyncio
    async def test_in_progress_rollback_blocks_another(self, services, session, undo, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        await self._start(session, entry)

        check = await services.rollbacks.can_rollback(entry.id)
        assert check.can_rollback is False
        assert check.reason == "Rollback already in progress"

        with pytest.raises(RollbackNotAllowed, match="Rollback already in progress"):
            await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert undo.calls == []

    @pytest.mark.asyncio
    async def test_unique_index_rejects_second_live_row(self, services, session, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        await self._start(session, entry)

        with pytest.raises(RollbackNotAllowed, match="Rollback already in progress"):
            await self._start(session, entry)

        history = await services.rollbacks.get_rollback_history("user-1")
        assert len(history) == 1
        assert history[0].status == RollbackStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_failed_row_does_not_count_as_live(self, services, session, make_action):
        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        repo = RollbackRepository(session)
        row = await self._start(session, entry)
        await repo.finish(row, RollbackStatus.FAILED, error_message="boom")

        await self._start(session, entry)
        history = await services.rollbacks.get_rollback_history("user-1")
        assert sorted(r.status for r in history) == [
            RollbackStatus.FAILED,
            RollbackStatus.IN_PROGRESS,
        ]


class TestHostRegistry:
    @pytest.mark.asyncio
    async def test_capabilities_registered_after_wiring_are_used(
        self, session, clock, test_settings, make_action
    ):
        registry = UndoRegistry()
        services = build_services(
            session, undo_registry=registry, settings=test_settings, clock=clock
        )
        undo = RecordingUndo()
        registry.register("create_task", undo)

        entry = await services.audit.log_proxy_action(make_action(output={"taskId": "t-1"}))
        rollback = await services.rollbacks.execute_rollback(entry.id, "user-1")
        assert rollback.status == RollbackStatus.COMPLETED
        assert len(undo.calls) == 1
