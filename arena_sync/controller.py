import contextlib
import random
from typing import Any, Callable, Dict, Optional

from .codec import (
    GameSnapshot,
    PlayerJoined,
    PlayerLeft,
    PlayerMoved,
    PlayerShot,
)
from .connection import (
    ConnectionClosed,
    ConnectionErrored,
    ConnectionOpened,
    MessageReceived,
    RelayConnection,
    RelayErrorReceived,
)
from .errors import PeerAlreadyExistsError, SendError, UnknownPeerError
from .models import ORIGIN, Peer, Position
from .registry import PeerRegistry

DEFAULT_PEER_ID_SPACE = 1000000


class PeerPresenter:
    """What the session needs from whatever draws the peers.

    Handles are opaque to the controller; it only remembers which handle
    belongs to which peer id.
    """

    def spawn_peer_representation(self, peer: Peer) -> Any:
        raise NotImplementedError

    def destroy_peer_representation(self, handle: Any) -> None:
        raise NotImplementedError

    def set_representation_position(self, handle: Any, position: Position) -> None:
        raise NotImplementedError

    def play_shot_effect(self, handle: Any) -> None:
        raise NotImplementedError


def new_self_peer(peer_id_space: int = DEFAULT_PEER_ID_SPACE, position: Position = ORIGIN, rng=None) -> Peer:
    rng = rng or random
    return Peer(rng.randrange(0, peer_id_space), position)


class SessionController:
    def __init__(
        self,
        registry: PeerRegistry,
        presenter: PeerPresenter,
        connection: Optional[RelayConnection] = None,
        on_disconnected: Optional[Callable[[Optional[int]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.registry = registry
        self.presenter = presenter
        if connection is None:
            connection = RelayConnection()
        self.connection = connection
        self.connection.listener = self
        self.on_disconnected = on_disconnected
        self.on_error = on_error
        self.handles: Dict[int, Any] = {}

    @property
    def self_peer(self) -> Peer:
        return self.registry.self_peer

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, url: str):
        self._spawn(self.registry.self_peer)
        await self.connection.connect(url)

    async def stop(self):
        if self.connection.is_open:
            await self._send(PlayerLeft(self.registry.self_id))
        await self.connection.disconnect()

    async def handle_event(self, event):
        if isinstance(event, MessageReceived):
            await self.on_message(event.message)
        elif isinstance(event, ConnectionOpened):
            await self.on_connection_opened()
        elif isinstance(event, ConnectionClosed):
            await self.on_connection_closed(event.code)
        elif isinstance(event, ConnectionErrored):
            self._report_error(event.reason)
        elif isinstance(event, RelayErrorReceived):
            self._report_error(f"relay error code {event.code}")

    async def on_connection_opened(self):
        print(f"[session] connected as peer {self.registry.self_id}")
        await self._send(PlayerJoined(self.registry.self_peer))

    async def on_connection_closed(self, code):
        print(f"[session] connection closed code={code}, synchronization stopped")
        if self.on_disconnected is not None:
            self.on_disconnected(code)

    # =========================================================================
    # Inbound
    # =========================================================================

    async def on_message(self, message):
        if isinstance(message, PlayerJoined):
            await self._handle_joined(message.peer)
        elif isinstance(message, PlayerLeft):
            await self._handle_left(message.peer_id)
        elif isinstance(message, PlayerMoved):
            self._handle_moved(message.peer_id, message.position)
        elif isinstance(message, PlayerShot):
            self._handle_shot(message.peer_id)
        elif isinstance(message, GameSnapshot):
            self._handle_snapshot(message)

    async def _handle_joined(self, peer: Peer):
        if peer.id == self.registry.self_id:
            print(f"[session] peer id collision: another client announced id {peer.id}")
            return
        try:
            self.registry.add(peer)
        except PeerAlreadyExistsError:
            self.registry.update_position(peer.id, peer.position)
            handle = self.handles.get(peer.id)
            if handle is not None:
                self.presenter.set_representation_position(handle, peer.position)
        else:
            self._spawn_remote(peer)
        await self.broadcast_snapshot()

    async def _handle_left(self, peer_id: int):
        if peer_id == self.registry.self_id:
            print(f"[session] ignoring leave for the local peer {peer_id}")
            return
        try:
            self.registry.remove(peer_id)
        except UnknownPeerError as exc:
            print(f"[session] {exc}, leave ignored")
        self._despawn(peer_id)
        await self.broadcast_snapshot()

    def _handle_moved(self, peer_id: int, position: Position):
        try:
            self.registry.update_position(peer_id, position)
        except UnknownPeerError as exc:
            print(f"[session] {exc}, move ignored")
            return
        handle = self.handles.get(peer_id)
        if handle is not None:
            self.presenter.set_representation_position(handle, position)

    def _handle_shot(self, peer_id: int):
        handle = self.handles.get(peer_id)
        if handle is None:
            print(f"[session] shot from unknown peer {peer_id} ignored")
            return
        self.presenter.play_shot_effect(handle)

    def _handle_snapshot(self, snapshot: GameSnapshot):
        result = self.registry.reconcile(snapshot.peers)
        for peer_id in sorted(result.joined):
            peer = self.registry.get(peer_id)
            if peer is not None:
                self._spawn_remote(peer)
        for peer_id in sorted(result.left):
            self._despawn(peer_id)
        if result.changed:
            print(f"[session] snapshot joined={sorted(result.joined)} left={sorted(result.left)}")

    # =========================================================================
    # Outbound
    # =========================================================================

    async def request_move(self, position: Position):
        self.registry.set_self_position(position)
        handle = self.handles.get(self.registry.self_id)
        if handle is not None:
            self.presenter.set_representation_position(handle, position)
        await self._send(PlayerMoved(self.registry.self_id, position))

    async def request_shot(self):
        handle = self.handles.get(self.registry.self_id)
        if handle is not None:
            self.presenter.play_shot_effect(handle)
        await self._send(PlayerShot(self.registry.self_id))

    async def broadcast_snapshot(self):
        await self._send(GameSnapshot(self.registry.snapshot()))

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _send(self, message) -> bool:
        try:
            await self.connection.send(message)
        except SendError as exc:
            print(f"[session] {type(message).__name__} not sent: {exc}")
            return False
        return True

    def _spawn(self, peer: Peer):
        if peer.id in self.handles:
            return
        self.handles[peer.id] = self.presenter.spawn_peer_representation(peer)

    def _spawn_remote(self, peer: Peer):
        # a peer without a representation is dropped so the next snapshot retries it
        try:
            self._spawn(peer)
        except Exception as exc:
            print(f"[session] could not spawn peer {peer.id}: {exc!r}")
            with contextlib.suppress(UnknownPeerError):
                self.registry.remove(peer.id)

    def _despawn(self, peer_id: int):
        handle = self.handles.pop(peer_id, None)
        if handle is not None:
            self.presenter.destroy_peer_representation(handle)

    def _report_error(self, reason: str):
        print(f"[session] connection error: {reason}")
        if self.on_error is not None:
            self.on_error(reason)
