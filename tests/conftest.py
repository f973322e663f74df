"""Shared fixtures for arena-sync tests."""
import asyncio
import time

import pytest

from arena_sync.controller import PeerPresenter, SessionController
from arena_sync.errors import NotConnectedError
from arena_sync.models import Peer, Position
from arena_sync.registry import PeerRegistry


class RecordingPresenter(PeerPresenter):
    """Presenter that keeps a log of every call instead of drawing anything."""

    def __init__(self):
        self.calls = []
        self.live = {}
        self._next = 0

    def spawn_peer_representation(self, peer):
        self._next += 1
        handle = f"h{self._next}"
        self.live[handle] = peer.id
        self.calls.append(("spawn", peer.id))
        return handle

    def destroy_peer_representation(self, handle):
        peer_id = self.live.pop(handle)
        self.calls.append(("destroy", peer_id))

    def set_representation_position(self, handle, position):
        self.calls.append(("move", self.live[handle], position))

    def play_shot_effect(self, handle):
        self.calls.append(("shot", self.live[handle]))

    def live_peer_ids(self):
        return sorted(self.live.values())


class FakeConnection:
    """Stands in for RelayConnection; records sent messages."""

    def __init__(self, open_=True):
        self.listener = None
        self.open = open_
        self.sent = []
        self.connect_calls = []
        self.disconnect_calls = 0

    @property
    def is_open(self):
        return self.open

    async def connect(self, url):
        self.connect_calls.append(url)
        self.open = True

    async def send(self, message):
        if not self.open:
            raise NotConnectedError("CLOSED")
        self.sent.append(message)

    async def disconnect(self):
        self.disconnect_calls += 1
        self.open = False


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def make_controller(presenter, connection):
    """Factory: controller whose self peer has the given id."""
    def _make(self_id=7, position=Position()):
        registry = PeerRegistry(Peer(self_id, position))
        return SessionController(registry, presenter, connection)
    return _make


async def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()
