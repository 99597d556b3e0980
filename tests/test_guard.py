from __future__ import annotations

from windchimes.guard import AbuseGuard
from windchimes.models import ChimeConfig, RejectReason
from windchimes.period import Period


def _period() -> Period:
    return Period.open(1_700_000_000.0)


def _snapshot(period: Period) -> tuple[dict[int, int], set[bytes], list[tuple[str, str, int]]]:
    return dict(period.events_per_user), set(period.seen_events), list(period.tallies.drain())


def test_duplicate_submissions_count_once() -> None:
    guard = AbuseGuard(ChimeConfig())
    period = _period()
    verdicts = [guard.evaluate(period, "1.2.3.4", "scratch/123", "view/index") for _ in range(3)]
    assert verdicts[0].accepted
    assert [v.reason for v in verdicts[1:]] == [RejectReason.DUPLICATE_EVENT] * 2
    assert period.tallies.get("scratch/123", "view/index") == 1


def test_same_user_different_event_is_not_duplicate() -> None:
    guard = AbuseGuard(ChimeConfig())
    period = _period()
    assert guard.evaluate(period, "1.2.3.4", "scratch/123", "view/index").accepted
    assert guard.evaluate(period, "1.2.3.4", "scratch/123", "view/embed").accepted
    assert period.events_per_user == {period.pseudonymizer.anonymize("1.2.3.4"): 2}


def test_per_user_cap_accepts_exactly_max() -> None:
    guard = AbuseGuard(ChimeConfig(max_events_per_user=5))
    period = _period()
    verdicts = [
        guard.evaluate(period, "1.2.3.4", f"scratch/{1000 + i}", "view/index") for i in range(8)
    ]
    assert sum(v.accepted for v in verdicts) == 5
    assert all(v.reason is RejectReason.TOO_MANY_EVENTS_PER_USER for v in verdicts[5:])


def test_global_user_cap_blocks_new_users_only() -> None:
    guard = AbuseGuard(ChimeConfig(max_users_per_period=2))
    period = _period()
    assert guard.evaluate(period, "user-a", "scratch/123", "view/index").accepted
    assert guard.evaluate(period, "user-b", "scratch/123", "view/index").accepted

    rejected = guard.evaluate(period, "user-c", "scratch/123", "view/index")
    assert rejected.reason is RejectReason.TOO_MANY_USERS

    assert guard.evaluate(period, "user-a", "scratch/456", "view/index").accepted
    assert period.user_count == 2


def test_invalid_input_rejected() -> None:
    guard = AbuseGuard(ChimeConfig())
    period = _period()
    assert guard.evaluate(period, "u", "scratch/12", "view/index").reason is RejectReason.INVALID_INPUT
    assert guard.evaluate(period, "u", "scratch/123", "click").reason is RejectReason.INVALID_INPUT


def test_sampling_full_and_empty() -> None:
    period = _period()
    everyone = AbuseGuard(ChimeConfig(counting_probability=1.0))
    nobody = AbuseGuard(ChimeConfig(counting_probability=0.0))
    for i in range(20):
        verdict = nobody.evaluate(period, f"10.0.0.{i}", "scratch/123", "view/index")
        assert verdict.reason is RejectReason.NOT_IN_SAMPLE
    for i in range(20):
        assert everyone.evaluate(period, f"10.0.0.{i}", "scratch/123", "view/index").accepted


def test_rejections_leave_period_untouched() -> None:
    guard = AbuseGuard(ChimeConfig(max_events_per_user=1, max_users_per_period=1))
    period = _period()
    assert guard.evaluate(period, "user-a", "scratch/123", "view/index").accepted
    before = _snapshot(period)

    guard.evaluate(period, "user-a", "scratch/123", "view/index")  # duplicate
    guard.evaluate(period, "user-a", "scratch/456", "view/index")  # per-user cap
    guard.evaluate(period, "user-b", "scratch/123", "view/index")  # global cap
    guard.evaluate(period, "user-b", "bogus", "view/index")  # invalid
    AbuseGuard(ChimeConfig(counting_probability=0.0)).evaluate(
        period, "user-c", "scratch/123", "view/index"
    )

    assert _snapshot(period) == before
    assert period.accepted == 1
