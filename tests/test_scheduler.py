#tests/test_scheduler.py
"""
Tests for agent.scheduler.Scheduler driven by ManualClock.
"""

from __future__ import annotations

from typing import List

from agent.scheduler import ManualClock, Scheduler


def test_timers_run_only_when_due_and_in_order():
    clock = ManualClock()
    sched = Scheduler(clock)
    ran: List[str] = []

    sched.call_later(2.0, ran.append, "b")
    sched.call_later(1.0, ran.append, "a")

    assert sched.run_due() == 0
    clock.advance(1.0)
    assert sched.run_due() == 1
    clock.advance(5.0)
    sched.run_due()

    assert ran == ["a", "b"]


def test_cancelled_timer_never_runs():
    clock = ManualClock()
    sched = Scheduler(clock)
    ran: List[int] = []

    handle = sched.call_later(1.0, ran.append, 1)
    handle.cancel()
    handle.cancel()  # idempotent
    clock.advance(2.0)
    sched.run_due()

    assert ran == []
    assert not handle.pending
    assert sched.pending() == []


def test_callback_may_schedule_follow_up():
    clock = ManualClock()
    sched = Scheduler(clock)
    ran: List[str] = []

    def first() -> None:
        ran.append("first")
        sched.call_later(0.0, ran.append, "second")

    sched.call_later(0.5, first)
    clock.advance(1.0)
    sched.run_due()

    assert ran == ["first", "second"]


def test_failing_callback_does_not_stop_the_pass():
    clock = ManualClock()
    sched = Scheduler(clock)
    ran: List[str] = []

    def boom() -> None:
        raise RuntimeError("boom")

    sched.call_later(0.1, boom)
    sched.call_later(0.2, ran.append, "after")
    clock.advance(1.0)

    assert sched.run_due() == 2
    assert ran == ["after"]


def test_next_due_and_cancel_all():
    clock = ManualClock(start=10.0)
    sched = Scheduler(clock)
    sched.call_later(3.0, lambda: None, label="x")
    sched.call_later(1.0, lambda: None, label="y")

    assert sched.next_due() == 11.0
    sched.cancel_all()
    assert sched.next_due() is None
