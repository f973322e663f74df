"""Wire protocol for the arena relay.

Every websocket frame carries exactly one JSON object whose ``packageType``
names the variant, with the variant payload alongside it:

    {"packageType": "PlayerJoinedPackage", "player": {"id": 7, "positionX": 0.0, ...}}
    {"packageType": "GameUpdatePackage", "game": {"players": [{...}, ...]}}

A frame whose body is a bare integer is not a package at all; the relay uses
those to report numeric error codes.
"""

import json
import re
from dataclasses import dataclass
from typing import Dict, Tuple, Union

from .errors import MalformedMessageError, UnknownKindError
from .models import ORIGIN, Peer, Position

PLAYER_JOINED = "PlayerJoinedPackage"
PLAYER_LEFT = "PlayerLeftPackage"
PLAYER_MOVED = "PlayerMovedPackage"
PLAYER_SHOT = "PlayerShotPackage"
GAME_UPDATE = "GameUpdatePackage"

_ERROR_CODE_RE = re.compile(r"[+-]?[0-9]{1,18}")


@dataclass(frozen=True)
class PlayerJoined:
    peer: Peer


@dataclass(frozen=True)
class PlayerLeft:
    peer_id: int


@dataclass(frozen=True)
class PlayerMoved:
    peer_id: int
    position: Position


@dataclass(frozen=True)
class PlayerShot:
    peer_id: int


@dataclass(frozen=True)
class GameSnapshot:
    peers: Tuple[Peer, ...]

    def __post_init__(self):
        object.__setattr__(self, "peers", tuple(self.peers))


@dataclass(frozen=True)
class RelayErrorCode:
    code: int


Message = Union[PlayerJoined, PlayerLeft, PlayerMoved, PlayerShot, GameSnapshot]


def player_to_wire(peer: Peer) -> dict:
    return {
        "id": peer.id,
        "positionX": peer.position.x,
        "positionY": peer.position.y,
        "positionZ": peer.position.z,
    }


def _read_number(payload, key):
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedMessageError(f"player field {key!r} must be a number, got {value!r}")
    try:
        return float(value)
    except OverflowError as exc:
        raise MalformedMessageError(f"player field {key!r} is out of range") from exc


def player_from_wire(payload) -> Peer:
    if not isinstance(payload, dict):
        raise MalformedMessageError(f"player must be an object, got {type(payload).__name__}")
    peer_id = payload.get("id")
    if isinstance(peer_id, bool) or not isinstance(peer_id, int) or peer_id < 0:
        raise MalformedMessageError(f"player id must be a non-negative integer, got {peer_id!r}")
    position = Position(
        _read_number(payload, "positionX"),
        _read_number(payload, "positionY"),
        _read_number(payload, "positionZ"),
    )
    return Peer(peer_id, position)


def _package_player(payload):
    if "player" not in payload:
        raise MalformedMessageError(f"{payload.get('packageType')} is missing 'player'")
    return player_from_wire(payload["player"])


def _decode_joined(payload):
    return PlayerJoined(_package_player(payload))


def _decode_left(payload):
    return PlayerLeft(_package_player(payload).id)


def _decode_moved(payload):
    peer = _package_player(payload)
    return PlayerMoved(peer.id, peer.position)


def _decode_shot(payload):
    return PlayerShot(_package_player(payload).id)


def _decode_game_update(payload):
    game = payload.get("game")
    if not isinstance(game, dict):
        raise MalformedMessageError("GameUpdatePackage is missing 'game'")
    players = game.get("players")
    if not isinstance(players, list):
        raise MalformedMessageError("GameUpdatePackage 'game.players' must be a list")
    return GameSnapshot(tuple(player_from_wire(item) for item in players))


PACKAGE_DECODERS = {
    PLAYER_JOINED: _decode_joined,
    PLAYER_LEFT: _decode_left,
    PLAYER_MOVED: _decode_moved,
    PLAYER_SHOT: _decode_shot,
    GAME_UPDATE: _decode_game_update,
}


def to_wire(message: Message) -> Dict[str, object]:
    if isinstance(message, PlayerJoined):
        return {"packageType": PLAYER_JOINED, "player": player_to_wire(message.peer)}
    if isinstance(message, PlayerLeft):
        # receivers parse a full player, only the id is meaningful
        return {"packageType": PLAYER_LEFT, "player": player_to_wire(Peer(message.peer_id, ORIGIN))}
    if isinstance(message, PlayerMoved):
        return {
            "packageType": PLAYER_MOVED,
            "player": player_to_wire(Peer(message.peer_id, message.position)),
        }
    if isinstance(message, PlayerShot):
        return {"packageType": PLAYER_SHOT, "player": player_to_wire(Peer(message.peer_id, ORIGIN))}
    if isinstance(message, GameSnapshot):
        return {
            "packageType": GAME_UPDATE,
            "game": {"players": [player_to_wire(peer) for peer in message.peers]},
        }
    raise TypeError(f"cannot encode {type(message).__name__}")


def encode(message: Message) -> bytes:
    return json.dumps(to_wire(message), separators=(",", ":")).encode("utf-8")


def decode(data: Union[bytes, bytearray, str]) -> Union[Message, RelayErrorCode]:
    if isinstance(data, (bytes, bytearray)):
        try:
            text = bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessageError(f"frame is not valid UTF-8: {exc}") from exc
    else:
        text = data
    stripped = text.strip()
    try:
        if _ERROR_CODE_RE.fullmatch(stripped):
            return RelayErrorCode(int(stripped))
        payload = json.loads(stripped)
    except (ValueError, RecursionError) as exc:
        # JSONDecodeError, oversized integers and runaway nesting
        raise MalformedMessageError(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError(f"frame must be a JSON object, got {type(payload).__name__}")
    package_type = payload.get("packageType")
    if not isinstance(package_type, str):
        raise MalformedMessageError(f"packageType must be a string, got {package_type!r}")
    decoder = PACKAGE_DECODERS.get(package_type)
    if decoder is None:
        raise UnknownKindError(package_type)
    return decoder(payload)
