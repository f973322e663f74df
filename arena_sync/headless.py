import argparse
import asyncio
import contextlib
import random
import sys

from .connection import RelayConnection
from .controller import PeerPresenter, SessionController, new_self_peer
from .errors import ConnectError
from .models import ORIGIN, Peer, Position
from .registry import PeerRegistry
from .shared_config import load_client_settings


class PrintingPresenter(PeerPresenter):
    """Presenter for terminals: every request is printed, handles are counters."""

    def __init__(self):
        self._next_handle = 0
        self.live = {}

    def spawn_peer_representation(self, peer):
        self._next_handle += 1
        handle = self._next_handle
        self.live[handle] = peer.id
        print(f"[client] spawn peer={peer.id} handle={handle} at={peer.position.as_tuple()}")
        return handle

    def destroy_peer_representation(self, handle):
        peer_id = self.live.pop(handle, None)
        print(f"[client] destroy peer={peer_id} handle={handle}")

    def set_representation_position(self, handle, position):
        print(f"[client] move peer={self.live.get(handle)} to={position.as_tuple()}")

    def play_shot_effect(self, handle):
        print(f"[client] shot peer={self.live.get(handle)}")


async def run_client(url, peer_id=None, moves=0, interval=0.5, duration=0.0, settings=None):
    settings = settings or load_client_settings()
    if peer_id is None:
        self_peer = new_self_peer(settings["PEER_ID_SPACE"])
    else:
        self_peer = Peer(peer_id, ORIGIN)
    closed = asyncio.Event()
    connection = RelayConnection(
        heartbeat=settings["HEARTBEAT_SECONDS"],
        connect_timeout=settings["CONNECT_TIMEOUT_SECONDS"],
    )
    controller = SessionController(
        PeerRegistry(self_peer),
        PrintingPresenter(),
        connection,
        on_disconnected=lambda code: closed.set(),
    )
    try:
        await controller.start(url)
    except ConnectError as exc:
        print(f"[client] {exc}")
        return 1
    rng = random.Random()
    try:
        for _ in range(moves):
            if closed.is_set():
                break
            await asyncio.sleep(interval)
            pos = controller.self_peer.position
            await controller.request_move(
                Position(pos.x + rng.uniform(-1.0, 1.0), pos.y, pos.z + rng.uniform(-1.0, 1.0))
            )
        if duration > 0:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(closed.wait(), duration)
        else:
            await closed.wait()
    finally:
        await controller.stop()
    return 0


def build_parser(settings):
    parser = argparse.ArgumentParser(
        prog="arena-client",
        description="Join an arena relay without a renderer and print what would be drawn.",
    )
    parser.add_argument("--url", default=settings["RELAY_WS_URL"], help="relay websocket url")
    parser.add_argument("--id", type=int, default=None, dest="peer_id", help="fixed peer id (random if omitted)")
    parser.add_argument("--moves", type=int, default=0, help="number of random moves to send")
    parser.add_argument("--interval", type=float, default=0.5, help="seconds between moves")
    parser.add_argument("--duration", type=float, default=0.0, help="seconds to stay connected (0 = until closed)")
    return parser


def main(argv=None):
    try:
        settings = load_client_settings()
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from None
    args = build_parser(settings).parse_args(argv)
    if args.peer_id is not None and args.peer_id < 0:
        raise SystemExit("--id must be a non-negative integer")
    try:
        return asyncio.run(
            run_client(
                args.url,
                peer_id=args.peer_id,
                moves=args.moves,
                interval=args.interval,
                duration=args.duration,
                settings=settings,
            )
        )
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
