"""Expiry sweep scheduling.

``ExpirySweeper`` frees spots whose reservations ran out. It runs once when the
app starts, then opportunistically before a request at most once per
``interval`` seconds. ``SWEEP_IN_BACKGROUND`` adds a daemon thread that sweeps
on the same interval without waiting for traffic.
"""
import logging
import threading
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from services.reservations import cleanup_expired_reservations
from utils.utils import utc_now

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'expiry_sweeper'


class ExpirySweeper:

    def __init__(self, interval=300, clock=utc_now):
        self.interval = timedelta(seconds=interval)
        self.clock = clock
        self.last_run = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    def init_app(self, app):
        app.extensions[EXTENSION_KEY] = self
        app.before_request(self._before_request)

    def is_due(self, now):
        return self.last_run is None or now - self.last_run >= self.interval

    def _claim(self, now):
        with self._lock:
            if not self.is_due(now):
                return False
            self.last_run = now
            return True

    def run(self, now=None):
        """Sweep unconditionally. Needs an application context."""
        now = now or self.clock()
        with self._lock:
            self.last_run = now
        return cleanup_expired_reservations(now=now)

    def maybe_run(self, now=None):
        """Sweep if the interval has elapsed; returns None when skipped."""
        now = now or self.clock()
        if not self._claim(now):
            return None
        return cleanup_expired_reservations(now=now)

    def _before_request(self):
        try:
            self.maybe_run()
        except SQLAlchemyError:
            logger.exception("Expiry sweep failed")

    def start(self, app):
        with app.app_context():
            result = self.run()
        logger.info("Startup sweep: %s", result['message'])

        if app.config.get('SWEEP_IN_BACKGROUND') and self._thread is None:
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, args=(app,), name='expiry-sweeper', daemon=True
            )
            self._thread.start()

    def _loop(self, app):
        while not self._stop_event.wait(self.interval.total_seconds()):
            with app.app_context():
                try:
                    self.maybe_run()
                except SQLAlchemyError:
                    logger.exception("Background expiry sweep failed")

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def get_sweeper(app):
    return app.extensions[EXTENSION_KEY]
