"""Session synchronization for small multiplayer arenas over a websocket relay."""

from .codec import (
    GameSnapshot,
    PlayerJoined,
    PlayerLeft,
    PlayerMoved,
    PlayerShot,
    RelayErrorCode,
    decode,
    encode,
)
from .connection import (
    ConnectionClosed,
    ConnectionErrored,
    ConnectionOpened,
    ConnectionState,
    MessageReceived,
    RelayConnection,
    RelayErrorReceived,
)
from .controller import PeerPresenter, SessionController, new_self_peer
from .models import Peer, Position
from .registry import PeerRegistry, ReconcileResult

__version__ = "0.1.0"
