"""Shared fakes for the stock notifier tests."""

import datetime as dt
import threading

import pytest


T0 = dt.datetime(2025, 6, 1, 6, 0, 0, tzinfo=dt.timezone.utc)


class FakeTimer:
    """Stands in for threading.Timer; fires only when told to."""

    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        assert self.started and not self.cancelled
        self.fn()


class FakeSocket:
    def __init__(self):
        self.connected = True


class FakeWebSocketApp:
    """Minimal WebSocketApp: the test drives open/message/close by hand."""

    def __init__(self, url, on_open=None, on_message=None, on_error=None, on_close=None):
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.sock = None
        self.closed = False
        self._done = threading.Event()

    def run_forever(self, **kwargs):
        self._done.wait(5)

    # test helpers
    def open(self):
        self.sock = FakeSocket()
        self.on_open(self)

    def message(self, payload):
        self.on_message(self, payload)

    def drop(self, code=1006, reason="going away"):
        self.sock = None
        self.on_close(self, code, reason)
        self._done.set()

    def fail(self, error="connection refused"):
        self.on_error(self, ConnectionRefusedError(error))
        self.on_close(self, None, None)
        self._done.set()

    def close(self):
        self.closed = True
        self.sock = None
        self._done.set()


class AppFactory:
    def __init__(self):
        self.apps = []

    def __call__(self, url, **callbacks):
        app = FakeWebSocketApp(url, **callbacks)
        self.apps.append(app)
        return app

    @property
    def last(self):
        return self.apps[-1]


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, fn):
        timer = FakeTimer(delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


class RecordingChannel:
    """DeliveryChannel fake. ``fail_times[user]`` = number of sends to fail."""

    def __init__(self, fail_times=None):
        self.fail_times = dict(fail_times or {})
        self.sent = []
        self._lock = threading.Lock()

    def send(self, recipient_id, text):
        with self._lock:
            self.sent.append((recipient_id, text))
            remaining = self.fail_times.get(recipient_id, 0)
            if remaining:
                self.fail_times[recipient_id] = remaining - 1
                return False
            return True

    def sends_to(self, recipient_id):
        return [text for rid, text in self.sent if rid == recipient_id]


class FakeDirectory:
    def __init__(self, subscribers=(), watch_lists=None):
        self.subscribers = set(subscribers)
        self.watch_lists = dict(watch_lists or {})

    def active_subscribers(self):
        return frozenset(self.subscribers)

    def watch_list(self, user_id):
        return self.watch_lists.get(user_id)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def app_factory():
    return AppFactory()


@pytest.fixture
def timer_factory():
    return TimerFactory()


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    from stock_notifier import db
    monkeypatch.setattr(db, "SQLITE_DB_PATH", str(tmp_path / "subscribers.db"))
    db.init_db()
    return db
