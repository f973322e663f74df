import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from .errors import PeerAlreadyExistsError, UnknownPeerError
from .models import Peer, Position


@dataclass(frozen=True)
class ReconcileResult:
    joined: FrozenSet[int] = field(default_factory=frozenset)
    left: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def changed(self) -> bool:
        return bool(self.joined or self.left)


class PeerRegistry:
    """Local view of every peer in the session, the self peer included.

    All mutation happens under one lock so the inbound dispatch task and
    whatever drives local input never interleave inside an operation.
    """

    def __init__(self, self_peer: Peer):
        self._lock = threading.Lock()
        self._self_id = self_peer.id
        self._peers: Dict[int, Peer] = {self_peer.id: self_peer}

    @property
    def self_peer(self) -> Peer:
        with self._lock:
            return self._peers[self._self_id]

    @property
    def self_id(self) -> int:
        return self._self_id

    def __contains__(self, peer_id) -> bool:
        with self._lock:
            return peer_id in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def get(self, peer_id: int) -> Optional[Peer]:
        with self._lock:
            return self._peers.get(peer_id)

    def ids(self) -> FrozenSet[int]:
        with self._lock:
            return frozenset(self._peers)

    def snapshot(self) -> Tuple[Peer, ...]:
        with self._lock:
            return tuple(self._peers.values())

    def add(self, peer: Peer) -> Peer:
        with self._lock:
            if peer.id in self._peers:
                raise PeerAlreadyExistsError(peer.id)
            self._peers[peer.id] = peer
            return peer

    def remove(self, peer_id: int) -> Peer:
        if peer_id == self._self_id:
            raise ValueError("the local peer cannot be removed from its own registry")
        with self._lock:
            try:
                return self._peers.pop(peer_id)
            except KeyError:
                raise UnknownPeerError(peer_id) from None

    def update_position(self, peer_id: int, position: Position) -> Peer:
        with self._lock:
            current = self._peers.get(peer_id)
            if current is None:
                raise UnknownPeerError(peer_id)
            updated = current.moved_to(position)
            self._peers[peer_id] = updated
            return updated

    def set_self_position(self, position: Position) -> Peer:
        return self.update_position(self._self_id, position)

    def reconcile(self, incoming: Iterable[Peer]) -> ReconcileResult:
        """Bring the registry's id set in line with ``incoming``.

        Ids only present in ``incoming`` are added with their incoming
        position, ids only present locally are dropped. Positions of ids on
        both sides are left alone. The self peer always survives.
        """
        incoming_by_id: Dict[int, Peer] = {}
        for peer in incoming:
            incoming_by_id.setdefault(peer.id, peer)
        with self._lock:
            joined = [pid for pid in incoming_by_id if pid not in self._peers]
            left = [
                pid for pid in self._peers
                if pid not in incoming_by_id and pid != self._self_id
            ]
            for pid in joined:
                self._peers[pid] = incoming_by_id[pid]
            for pid in left:
                del self._peers[pid]
        return ReconcileResult(frozenset(joined), frozenset(left))
