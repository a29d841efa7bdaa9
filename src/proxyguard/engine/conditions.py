"""Evaluates the optional policy clauses attached to one authorization.

Clauses within a grant are ANDed; the first failing clause is reported.
OR across grants is the AuthorizationService's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from proxyguard.clock import Clock, local_time, start_of_local_day, utc_now, week_window_start
from proxyguard.schemas.authorization import AllowedHours, Authorization


class ActionCounter(Protocol):
    async def count_successful_actions(
        self, user_id: str, action_class: str, since: datetime
    ) -> int: ...


@dataclass
class ConditionResult:
    passed: bool
    reason: str | None = None


PASSED = ConditionResult(passed=True)


def hour_in_window(hour: int, window: AllowedHours, wrap_midnight: bool = False) -> bool:
    """Whether ``hour`` falls inside the half-open [start, end) window.

    Without ``wrap_midnight`` a window with start > end never matches.
    """
    if window.start <= window.end or not wrap_midnight:
        return window.start <= hour < window.end
    return hour >= window.start or hour < window.end


def _calendar_id(metadata: dict[str, Any]) -> Any:
    return metadata.get("calendarId", metadata.get("calendar_id"))


class ConditionEvaluator:
    def __init__(
        self,
        counter: ActionCounter,
        *,
        policy_timezone: str = "UTC",
        wrap_midnight: bool = False,
        clock: Clock = utc_now,
    ):
        self._counter = counter
        self._timezone = policy_timezone
        self._wrap_midnight = wrap_midnight
        self._clock = clock

    async def evaluate(
        self,
        authorization: Authorization,
        user_id: str,
        action_class: str,
        confidence: float | None,
        metadata: dict[str, Any],
    ) -> ConditionResult:
        cond = authorization.conditions
        if cond is None:
            return PASSED

        if cond.require_confidence_threshold is not None:
            threshold = cond.require_confidence_threshold
            if confidence is None:
                return ConditionResult(
                    False, f"Confidence required: below threshold {threshold} (none supplied)"
                )
            if confidence < threshold:
                return ConditionResult(
                    False, f"Confidence {confidence} below threshold {threshold}"
                )

        if cond.allowed_hours is not None:
            window = cond.allowed_hours
            hour = local_time(self._clock(), self._timezone).hour
            if not hour_in_window(hour, window, self._wrap_midnight):
                return ConditionResult(
                    False,
                    f"Action not allowed at this time (allowed: {window.start}:00-{window.end}:00)",
                )

        if cond.allowed_recipients is not None:
            result = self._check_recipients(cond.allowed_recipients, metadata.get("recipient"))
            if not result.passed:
                return result

        if cond.allowed_calendars is not None:
            calendar_id = _calendar_id(metadata)
            if calendar_id is None:
                return ConditionResult(False, "Calendar not specified; calendar whitelist in effect")
            if calendar_id not in cond.allowed_calendars:
                return ConditionResult(False, f"Calendar {calendar_id} not in whitelist")

        if cond.max_actions_per_day is not None:
            now = self._clock()
            today = await self._counter.count_successful_actions(
                user_id, action_class, start_of_local_day(now, self._timezone)
            )
            if today >= cond.max_actions_per_day:
                return ConditionResult(
                    False, f"Daily action limit exceeded ({today}/{cond.max_actions_per_day})"
                )

        if cond.max_actions_per_week is not None:
            this_week = await self._counter.count_successful_actions(
                user_id, action_class, week_window_start(self._clock())
            )
            if this_week >= cond.max_actions_per_week:
                return ConditionResult(
                    False,
                    f"Weekly action limit exceeded ({this_week}/{cond.max_actions_per_week})",
                )

        return PASSED

    def _check_recipients(self, allowed: list[str], recipient: Any) -> ConditionResult:
        if not recipient:
            return ConditionResult(False, "Recipient not specified; recipient whitelist in effect")
        recipients = recipient if isinstance(recipient, list) else [recipient]
        for r in recipients:
            if r not in allowed:
                return ConditionResult(False, f"Recipient {r} not in whitelist")
        return PASSED
