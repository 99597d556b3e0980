"""Abuse guard: validation, sampling, deduplication and rate limits."""

from __future__ import annotations

from dataclasses import dataclass

from .models import ChimeConfig, RejectReason, is_valid_event, is_valid_resource
from .period import Period
from .pseudonymize import event_id, in_sample


@dataclass(frozen=True)
class Verdict:
    """Outcome of evaluating one submission."""

    accepted: bool
    reason: RejectReason | None = None

    @classmethod
    def accept(cls) -> Verdict:
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: RejectReason) -> Verdict:
        return cls(accepted=False, reason=reason)


class AbuseGuard:
    """Runs the ordered check pipeline against the active period.

    Checks short-circuit on the first failure. The period is only touched
    once every check has passed, so a rejection leaves it unchanged.
    Callers must serialize access to *period*.
    """

    def __init__(self, config: ChimeConfig) -> None:
        self.config = config

    def evaluate(self, period: Period, raw_user_id: str, resource: str, event: str) -> Verdict:
        if not is_valid_resource(resource) or not is_valid_event(event):
            return Verdict.reject(RejectReason.INVALID_INPUT)

        user_id = period.pseudonymizer.anonymize(raw_user_id)
        if not in_sample(user_id, self.config.counting_probability):
            return Verdict.reject(RejectReason.NOT_IN_SAMPLE)

        event_key = event_id(user_id, event, resource)
        if event_key in period.seen_events:
            return Verdict.reject(RejectReason.DUPLICATE_EVENT)

        submitted = period.events_per_user.get(user_id, 0)
        if submitted >= self.config.max_events_per_user:
            return Verdict.reject(RejectReason.TOO_MANY_EVENTS_PER_USER)
        if submitted == 0 and period.user_count >= self.config.max_users_per_period:
            return Verdict.reject(RejectReason.TOO_MANY_USERS)

        period.record(user_id, event_key, resource, event)
        return Verdict.accept()
