"""
Shared fixtures: an in-memory mailbox and connections that talk to it.
"""

import threading
import time

import pytest

from imap_reader.config import Credentials
from imap_reader.imap_manager import IMAPOperationError, Message


class FakeMailbox:
    """Server-side state shared by every FakeConnection."""

    def __init__(self, messages=None, fail_marks=(), fail_fetch=False, mark_delay=0.02):
        self.messages = dict(messages or {})
        self.seen = []
        self.fail_marks = set(fail_marks)
        self.fail_fetch = fail_fetch
        self.mark_delay = mark_delay
        self.lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0
        self.conflicts = 0
        self.events = []
        self.connections = []

    def record(self, event):
        with self.lock:
            self.events.append(event)


class FakeConnection:
    """Stands in for IMAPConnection without a network."""

    def __init__(self, mailbox, fail_select=False):
        self.mailbox_state = mailbox
        self.fail_select = fail_select
        self.selected = None
        self.closed = False
        self.in_use = False

    def select_mailbox(self, name):
        if self.fail_select:
            raise IMAPOperationError(f"SELECT {name} failed: NO")
        self.selected = name

    def list_unseen_uids(self, criteria="UNSEEN"):
        state = self.mailbox_state
        return sorted(uid for uid in state.messages if uid not in state.seen)

    def fetch(self, uids):
        state = self.mailbox_state
        if state.fail_fetch:
            raise IMAPOperationError("UID FETCH failed: BAD")
        state.record(("fetch", list(uids)))
        return [Message(uid=uid, subject=state.messages[uid]) for uid in uids if uid in state.messages]

    def mark_seen(self, uid):
        state = self.mailbox_state
        with state.lock:
            if self.in_use:
                state.conflicts += 1
            self.in_use = True
            state.in_flight += 1
            state.peak = max(state.peak, state.in_flight)

        time.sleep(state.mark_delay)

        with state.lock:
            state.in_flight -= 1
            self.in_use = False

        if uid in state.fail_marks:
            raise IMAPOperationError(f"UID STORE {uid} failed: NO")
        with state.lock:
            state.seen.append(uid)
            state.events.append(("mark", uid))

    def close(self):
        self.closed = True


class FakeFactory:
    """Connection factory that can fail on a given call."""

    def __init__(self, mailbox, fail_on_call=None, fail_select_on_call=None):
        self.mailbox = mailbox
        self.fail_on_call = fail_on_call
        self.fail_select_on_call = fail_select_on_call
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            call = self.calls
        if call == self.fail_on_call:
            raise OSError("Connection refused")
        conn = FakeConnection(self.mailbox, fail_select=call == self.fail_select_on_call)
        with self._lock:
            self.mailbox.connections.append(conn)
        return conn


@pytest.fixture
def mailbox():
    return FakeMailbox({uid: f"Subject {uid}" for uid in range(1, 6)})


@pytest.fixture
def factory(mailbox):
    return FakeFactory(mailbox)


@pytest.fixture
def credentials():
    return Credentials(server="imap.example.com", port=993, username="test@example.com", password="secret")


@pytest.fixture
def clean_env(monkeypatch):
    """Remove IMAP_* variables for the duration of a test."""
    for var in Credentials.ENV_VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    return monkeypatch
