"""Tests for per-grant condition evaluation."""

from datetime import datetime, timezone

import pytest

from proxyguard.engine.conditions import ConditionEvaluator, hour_in_window
from proxyguard.schemas.authorization import AllowedHours, Authorization, AuthorizationConditions
from tests.conftest import BASE_TIME, FrozenClock


class FixedCounter:
    """Returns a canned count and records the window it was asked about."""

    def __init__(self, count: int = 0):
        self.count = count
        self.calls: list[tuple[str, str, datetime]] = []

    async def count_successful_actions(self, user_id, action_class, since):
        self.calls.append((user_id, action_class, since))
        return self.count


def make_auth(**conditions) -> Authorization:
    return Authorization(
        id="auth-1",
        user_id="user-1",
        action_class="send_email",
        action_type="email",
        scope="conditional",
        conditions=AuthorizationConditions(**conditions) if conditions else None,
        grant_method="explicit_consent",
        granted_at=BASE_TIME,
    )


class TestHourInWindow:
    @pytest.mark.parametrize(
        "hour,expected",
        [(8, False), (9, True), (16, True), (17, False), (23, False)],
    )
    def test_plain_window(self, hour, expected):
        assert hour_in_window(hour, AllowedHours(start=9, end=17)) is expected

    def test_full_day(self):
        window = AllowedHours(start=0, end=24)
        assert all(hour_in_window(h, window) for h in range(24))

    @pytest.mark.parametrize("hour", [22, 23, 0, 1])
    def test_wrapping_window_matches_across_midnight(self, hour):
        assert hour_in_window(hour, AllowedHours(start=22, end=2), wrap_midnight=True)

    @pytest.mark.parametrize("hour", [2, 12, 21])
    def test_wrapping_window_excludes_daytime(self, hour):
        assert not hour_in_window(hour, AllowedHours(start=22, end=2), wrap_midnight=True)

    @pytest.mark.parametrize("hour", [22, 23, 0, 1, 12])
    def test_non_wrapping_inverted_window_is_empty(self, hour):
        assert not hour_in_window(hour, AllowedHours(start=22, end=2))


class TestConditionEvaluator:
    def setup_method(self):
        self.counter = FixedCounter()
        self.clock = FrozenClock(BASE_TIME)
        self.evaluator = ConditionEvaluator(self.counter, clock=self.clock)

    async def _evaluate(self, auth, confidence=None, metadata=None):
        return await self.evaluator.evaluate(
            auth, "user-1", "send_email", confidence, metadata or {}
        )

    @pytest.mark.asyncio
    async def test_no_conditions_pass(self):
        result = await self._evaluate(make_auth())
        assert result.passed
        assert self.counter.calls == []

    @pytest.mark.asyncio
    async def test_first_failing_clause_is_reported(self):
        auth = make_auth(
            require_confidence_threshold=0.9,
            allowed_recipients=["a@x.com"],
        )
        result = await self._evaluate(auth, 0.5, {"recipient": "b@y.com"})
        assert not result.passed
        assert result.reason.startswith("Confidence 0.5")

    @pytest.mark.asyncio
    async def test_recipient_match_is_exact(self):
        auth = make_auth(allowed_recipients=["a@x.com"])
        result = await self._evaluate(auth, metadata={"recipient": "A@X.com"})
        assert not result.passed

    @pytest.mark.asyncio
    async def test_empty_recipient_whitelist_denies_everyone(self):
        auth = make_auth(allowed_recipients=[])
        result = await self._evaluate(auth, metadata={"recipient": "a@x.com"})
        assert not result.passed

    @pytest.mark.asyncio
    async def test_calendar_missing(self):
        auth = make_auth(allowed_calendars=["primary"])
        result = await self._evaluate(auth)
        assert not result.passed
        assert "Calendar not specified" in result.reason

    @pytest.mark.asyncio
    async def test_daily_limit_counts_since_local_midnight(self):
        self.counter.count = 3
        result = await self._evaluate(make_auth(max_actions_per_day=3))
        assert not result.passed
        assert result.reason == "Daily action limit exceeded (3/3)"
        assert self.counter.calls == [
            ("user-1", "send_email", datetime(2026, 3, 10, tzinfo=timezone.utc))
        ]

    @pytest.mark.asyncio
    async def test_daily_limit_under_cap(self):
        self.counter.count = 2
        result = await self._evaluate(make_auth(max_actions_per_day=3))
        assert result.passed

    @pytest.mark.asyncio
    async def test_zero_limit_blocks_everything(self):
        result = await self._evaluate(make_auth(max_actions_per_week=0))
        assert not result.passed
        assert result.reason == "Weekly action limit exceeded (0/0)"

    @pytest.mark.asyncio
    async def test_weekly_limit_window_is_seven_days(self):
        self.counter.count = 1
        result = await self._evaluate(make_auth(max_actions_per_week=5))
        assert result.passed
        assert self.counter.calls[0][2] == datetime(2026, 3, 3, 12, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_hours_use_configured_timezone(self):
        evaluator = ConditionEvaluator(
            self.counter, policy_timezone="Asia/Tokyo", clock=self.clock
        )
        # 12:00 UTC is 21:00 in Tokyo
        auth = make_auth(allowed_hours={"start": 20, "end": 22})
        result = await evaluator.evaluate(auth, "user-1", "send_email", None, {})
        assert result.passed
