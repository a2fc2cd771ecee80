import threading

from bgqueue.scheduler import IntervalScheduler


def test_callback_runs_on_interval_until_unregistered():
    scheduler = IntervalScheduler()
    ticks = []
    fired = threading.Event()

    def callback():
        ticks.append(1)
        if len(ticks) >= 2:
            fired.set()

    try:
        assert scheduler.register_interval("job_cron", 0.01, callback) is True
        assert scheduler.register_interval("job_cron", 0.01, callback) is False
        assert scheduler.is_registered("job_cron")
        assert fired.wait(2)
    finally:
        assert scheduler.unregister("job_cron") is True

    assert not scheduler.is_registered("job_cron")
    assert scheduler.unregister("job_cron") is False
    scheduler.shutdown()


def test_failing_callback_keeps_schedule_alive():
    scheduler = IntervalScheduler()
    calls = []
    recovered = threading.Event()

    def callback():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")
        recovered.set()

    scheduler.register_interval("flaky", 0.01, callback)
    try:
        assert recovered.wait(2)
    finally:
        scheduler.shutdown()

    assert not scheduler.is_registered("flaky")


def test_callback_can_unregister_itself():
    scheduler = IntervalScheduler()
    stopped = threading.Event()

    def callback():
        scheduler.unregister("once")
        stopped.set()

    scheduler.register_interval("once", 0.01, callback)

    assert stopped.wait(2)
    assert not scheduler.is_registered("once")
    scheduler.shutdown()
