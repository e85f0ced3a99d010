from services import reservations, spots
from services.sweeper import ExpirySweeper, get_sweeper


def test_sweeper_runs_at_most_once_per_interval(app, clock, funded_user, spot):
    sweeper = ExpirySweeper(interval=300, clock=clock)

    assert sweeper.maybe_run() is not None
    clock.advance(seconds=299)
    assert sweeper.maybe_run() is None
    clock.advance(seconds=1)
    assert sweeper.maybe_run() is not None


def test_sweeper_frees_expired_spot(app, clock, funded_user, spot):
    sweeper = ExpirySweeper(interval=300, clock=clock)
    reservations.reserve(funded_user, spot, 1, now=clock())

    clock.advance(minutes=61)
    result = sweeper.maybe_run()

    assert result['count'] == 1
    assert spots.get_spot(spot).status == 'free'


def test_run_ignores_the_interval(app, clock):
    sweeper = ExpirySweeper(interval=300, clock=clock)
    sweeper.run()

    assert sweeper.run()['count'] == 0
    assert sweeper.last_run == clock()


def test_app_sweeps_at_startup_and_before_requests(app, client, clock, funded_user, spot):
    sweeper = get_sweeper(app)
    started = sweeper.last_run
    assert started == clock()

    reservations.reserve(funded_user, spot, 1, now=clock())
    clock.advance(minutes=4)
    free = client.get('/spots/free').get_json()['spots']
    assert sweeper.last_run == started
    assert free == []

    clock.advance(minutes=57)
    free = client.get('/spots/free').get_json()['spots']
    assert sweeper.last_run == clock()
    assert [s['id'] for s in free] == [spot]


def test_background_thread_stops(app, clock):
    app.config['SWEEP_IN_BACKGROUND'] = True
    sweeper = ExpirySweeper(interval=3600, clock=clock)

    sweeper.start(app)
    assert sweeper._thread is not None and sweeper._thread.is_alive()

    sweeper.stop()
    assert sweeper._thread is None
