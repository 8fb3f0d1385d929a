from picture_this.services.games.scheduler import TimerScheduler


class RecordingSpawn:
    """Captures background tasks so tests decide when they run."""

    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args):
        self.tasks.append((fn, args))

    def run(self, index):
        fn, args = self.tasks[index]
        fn(*args)


def make_scheduler(**kwargs):
    spawn = RecordingSpawn()
    sleeps = []
    clock = kwargs.pop('clock', lambda: 100.0)
    scheduler = TimerScheduler(spawn, sleeps.append, clock=clock, **kwargs)
    return scheduler, spawn, sleeps


def test_worker_fires_once_after_delay():
    scheduler, spawn, sleeps = make_scheduler()
    fired = []
    deadline = scheduler.start('s1', 5, fired.append, label='intro')
    assert deadline == 105.0
    assert scheduler.deadline('s1') == 105.0

    spawn.run(0)
    assert sleeps == [5]
    assert fired == ['s1']
    assert not scheduler.has_timer('s1')
    # Running the same worker again is a no-op
    spawn.run(0)
    assert fired == ['s1']


def test_cancelled_timer_never_fires():
    scheduler, spawn, _ = make_scheduler()
    fired = []
    scheduler.start('s1', 5, fired.append)
    assert scheduler.cancel('s1') is True
    assert scheduler.cancel('s1') is False
    spawn.run(0)
    assert fired == []


def test_restart_supersedes_previous_timer():
    scheduler, spawn, _ = make_scheduler()
    fired = []
    scheduler.start('s1', 5, lambda sid: fired.append('old'))
    scheduler.start('s1', 7, lambda sid: fired.append('new'))
    assert scheduler.active_count == 1

    spawn.run(0)
    assert fired == []
    spawn.run(1)
    assert fired == ['new']


def test_manual_fire_without_auto_fire():
    scheduler, spawn, _ = make_scheduler(auto_fire=False)
    fired = []
    scheduler.start('s1', 45, fired.append)
    assert spawn.tasks == []
    assert scheduler.fire('s1') is True
    assert scheduler.fire('s1') is False
    assert fired == ['s1']


def test_heartbeat_sleeps_in_steps_and_aborts_on_cancel():
    scheduler, spawn, sleeps = make_scheduler(heartbeat_sec=2)
    fired = []
    scheduler.start('s1', 5, fired.append)
    spawn.run(0)
    assert sleeps == [2, 2, 1]
    assert fired == ['s1']

    scheduler, spawn, sleeps = make_scheduler(heartbeat_sec=2)
    scheduler.start('s2', 5, fired.append)
    sleeps_before_cancel = []

    def cancelling_sleep(seconds):
        sleeps_before_cancel.append(seconds)
        scheduler.cancel('s2')

    scheduler._sleep = cancelling_sleep
    spawn.run(0)
    assert sleeps_before_cancel == [2]
    assert fired == ['s1']


def test_remaining_counts_down():
    now = [100.0]
    scheduler, _, _ = make_scheduler(auto_fire=False, clock=lambda: now[0])
    scheduler.start('s1', 10, lambda sid: None)
    now[0] = 104.0
    assert scheduler.remaining('s1') == 6.0
    now[0] = 200.0
    assert scheduler.remaining('s1') == 0.0
    assert scheduler.remaining('missing') == 0.0


def test_callback_errors_are_contained():
    scheduler, _, _ = make_scheduler(auto_fire=False)

    def explode(sid):
        raise ValueError('bad callback')

    scheduler.start('s1', 1, explode)
    assert scheduler.fire('s1') is True
    assert not scheduler.has_timer('s1')
