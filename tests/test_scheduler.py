import threading

from geofencing.events import Direction
from geofencing.scheduler import DelayedCheckScheduler

from conftest import FakeClock


def test_runs_due_checks_in_order():
    ran = []
    clock = FakeClock(0.0)
    scheduler = DelayedCheckScheduler(lambda item: ran.append(item.event_id), clock=clock)
    scheduler.submit(1, 1, event_id=3, direction=Direction.ENTER, delay=30)
    scheduler.submit(1, 1, event_id=1, direction=Direction.ENTER, delay=10)
    scheduler.submit(1, 1, event_id=2, direction=Direction.LEAVE, delay=10)

    assert scheduler.run_pending() == 0
    clock.advance(10)
    assert scheduler.run_pending() == 2
    assert ran == [1, 2]
    assert scheduler.pending() == 1
    assert scheduler.run_pending(now=100) == 1
    assert ran == [1, 2, 3]


def test_failing_handler_does_not_stop_later_checks():
    ran = []

    def handler(item):
        ran.append(item.event_id)
        if item.event_id == 1:
            raise RuntimeError("boom")

    scheduler = DelayedCheckScheduler(handler, clock=FakeClock(0.0))
    scheduler.submit(1, 1, 1, Direction.ENTER, 0)
    scheduler.submit(1, 1, 2, Direction.ENTER, 0)
    assert scheduler.run_pending() == 2
    assert ran == [1, 2]


def test_background_thread_runs_checks():
    done = threading.Event()
    scheduler = DelayedCheckScheduler(lambda item: done.set())
    scheduler.start()
    try:
        assert scheduler.running
        scheduler.submit(7, 1, 1, Direction.ENTER, 0.05)
        assert done.wait(2.0)
    finally:
        scheduler.stop()
    assert not scheduler.running


def test_start_and_stop_are_idempotent():
    scheduler = DelayedCheckScheduler(lambda item: None)
    scheduler.stop()
    scheduler.start()
    scheduler.start()
    scheduler.stop()
    scheduler.stop()
    assert not scheduler.running
