import pytest

from roomrelay.membership import MembershipManager


class FakeHandle:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Collects call_later requests so tests decide when timers fire"""

    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback, *args):
        handle = FakeHandle(delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def fire(self, handle):
        if not handle.cancelled:
            handle.callback(*handle.args)

    def fire_all(self):
        for handle in list(self.pending):
            self.fire(handle)


class Inbox:
    """Outbound channel standing in for a socket queue"""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of(self, kind):
        return [e["data"] for e in self.events if e["type"] == kind]

    def clear(self):
        self.events.clear()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def manager(scheduler):
    return MembershipManager(cleanup_delay=5.0, scheduler=scheduler)


@pytest.fixture
def connect(manager):
    """Register a connection and return its inbox"""
    def _connect(identity, name=None):
        inbox = Inbox()
        manager.connect(identity, inbox, name=name)
        return inbox
    return _connect
