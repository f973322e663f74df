"""Tests for the session controller against a fake connection."""
import asyncio
import random

from arena_sync.codec import GameSnapshot, PlayerJoined, PlayerLeft, PlayerMoved, PlayerShot
from arena_sync.connection import (
    ConnectionClosed,
    ConnectionErrored,
    ConnectionOpened,
    MessageReceived,
    RelayErrorReceived,
)
from arena_sync.controller import SessionController, new_self_peer
from arena_sync.models import Peer, Position
from arena_sync.registry import PeerRegistry

from tests.conftest import FakeConnection, RecordingPresenter


class FlakyPresenter(RecordingPresenter):
    """Fails the first spawn of one peer id."""

    def __init__(self, fail_once_for):
        super().__init__()
        self.fail_once_for = fail_once_for

    def spawn_peer_representation(self, peer):
        if peer.id == self.fail_once_for:
            self.fail_once_for = None
            raise RuntimeError("asset not loaded")
        return super().spawn_peer_representation(peer)


def snapshot_ids(message):
    assert isinstance(message, GameSnapshot)
    return [peer.id for peer in message.peers]


class TestConnectionLifecycle:

    def test_opened_announces_self(self, make_controller, connection):
        controller = make_controller(self_id=7)
        asyncio.run(controller.handle_event(ConnectionOpened()))
        assert connection.sent == [PlayerJoined(Peer(7))]

    def test_start_spawns_self_and_connects(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)
        asyncio.run(controller.start("ws://relay/ws"))
        assert connection.connect_calls == ["ws://relay/ws"]
        assert presenter.calls == [("spawn", 7)]

    def test_controller_becomes_the_connection_listener(self, make_controller, connection):
        controller = make_controller()
        assert connection.listener is controller

    def test_closed_is_surfaced_without_retry(self, presenter):
        codes = []
        connection = FakeConnection(open_=False)
        controller = SessionController(PeerRegistry(Peer(1)), presenter, connection, on_disconnected=codes.append)
        asyncio.run(controller.handle_event(ConnectionClosed(1006)))
        assert codes == [1006]
        assert connection.connect_calls == []

    def test_errors_and_relay_codes_reach_on_error(self, presenter, connection):
        reasons = []
        controller = SessionController(PeerRegistry(Peer(1)), presenter, connection, on_error=reasons.append)

        async def run():
            await controller.handle_event(ConnectionErrored("boom"))
            await controller.handle_event(RelayErrorReceived(503))

        asyncio.run(run())
        assert reasons == ["boom", "relay error code 503"]
        assert connection.sent == []

    def test_stop_announces_leave_then_disconnects(self, make_controller, connection):
        controller = make_controller(self_id=4)
        asyncio.run(controller.stop())
        assert connection.sent == [PlayerLeft(4)]
        assert connection.disconnect_calls == 1

    def test_stop_when_not_connected_only_disconnects(self, make_controller, connection):
        connection.open = False
        controller = make_controller(self_id=4)
        asyncio.run(controller.stop())
        assert connection.sent == []
        assert connection.disconnect_calls == 1


class TestInboundMessages:

    def test_join_adds_spawns_and_rebroadcasts(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)
        asyncio.run(controller.on_message(PlayerJoined(Peer(11, Position(1.0, 0.0, 0.0)))))
        assert controller.registry.ids() == {7, 11}
        assert presenter.calls == [("spawn", 11)]
        assert snapshot_ids(connection.sent[-1]) == [7, 11]

    def test_repeated_join_is_an_upsert(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)

        async def run():
            await controller.on_message(PlayerJoined(Peer(11)))
            await controller.on_message(PlayerJoined(Peer(11, Position(2.0, 0.0, 2.0))))

        asyncio.run(run())
        assert presenter.calls == [("spawn", 11), ("move", 11, Position(2.0, 0.0, 2.0))]
        assert controller.registry.get(11).position == Position(2.0, 0.0, 2.0)
        assert snapshot_ids(connection.sent[-1]) == [7, 11]
        assert len(connection.sent) == 2

    def test_join_with_own_id_is_treated_as_collision(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)
        asyncio.run(controller.on_message(PlayerJoined(Peer(7, Position(5.0, 5.0, 5.0)))))
        assert connection.sent == []
        assert presenter.calls == []
        assert controller.self_peer.position == Position()

    def test_leave_removes_destroys_and_rebroadcasts(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)

        async def run():
            await controller.on_message(PlayerJoined(Peer(11)))
            await controller.on_message(PlayerLeft(11))

        asyncio.run(run())
        assert controller.registry.ids() == {7}
        assert presenter.calls == [("spawn", 11), ("destroy", 11)]
        assert snapshot_ids(connection.sent[-1]) == [7]

    def test_leave_of_unknown_peer_is_harmless(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)
        asyncio.run(controller.on_message(PlayerLeft(99)))
        assert controller.registry.ids() == {7}
        assert presenter.calls == []
        assert snapshot_ids(connection.sent[-1]) == [7]

    def test_leave_naming_self_is_ignored(self, make_controller, connection):
        controller = make_controller(self_id=7)
        asyncio.run(controller.on_message(PlayerLeft(7)))
        assert controller.registry.ids() == {7}
        assert connection.sent == []

    def test_move_updates_registry_and_representation(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)
        target = Position(3.0, 0.0, 4.0)

        async def run():
            await controller.on_message(PlayerJoined(Peer(11)))
            sent_before = len(connection.sent)
            await controller.on_message(PlayerMoved(11, target))
            return sent_before

        sent_before = asyncio.run(run())
        assert controller.registry.get(11).position == target
        assert presenter.calls[-1] == ("move", 11, target)
        assert len(connection.sent) == sent_before

    def test_move_of_unknown_peer_is_ignored(self, make_controller, presenter):
        controller = make_controller(self_id=7)
        asyncio.run(controller.on_message(PlayerMoved(99, Position(1.0, 1.0, 1.0))))
        assert 99 not in controller.registry
        assert presenter.calls == []

    def test_shot_plays_effect_without_mutation(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)

        async def run():
            await controller.on_message(PlayerJoined(Peer(11)))
            await controller.on_message(PlayerShot(11))
            await controller.on_message(PlayerShot(12))

        asyncio.run(run())
        assert presenter.calls == [("spawn", 11), ("shot", 11)]
        assert controller.registry.ids() == {7, 11}

    def test_snapshot_spawns_joined_and_destroys_departed(self, make_controller, connection, presenter):
        controller = make_controller(self_id=2)

        async def run():
            await controller.on_message(GameSnapshot((Peer(1), Peer(2), Peer(3))))
            await controller.on_message(GameSnapshot((Peer(2), Peer(3), Peer(4))))

        asyncio.run(run())
        assert presenter.calls == [("spawn", 1), ("spawn", 3), ("spawn", 4), ("destroy", 1)]
        assert presenter.live_peer_ids() == [3, 4]
        assert controller.registry.ids() == {2, 3, 4}
        assert connection.sent == []

    def test_repeated_snapshot_makes_no_presenter_calls(self, make_controller, presenter):
        controller = make_controller(self_id=2)
        snapshot = GameSnapshot((Peer(2), Peer(5)))

        async def run():
            await controller.on_message(snapshot)
            calls = list(presenter.calls)
            await controller.on_message(snapshot)
            return calls

        calls = asyncio.run(run())
        assert presenter.calls == calls

    def test_failed_spawn_is_retried_by_the_next_snapshot(self, connection):
        presenter = FlakyPresenter(fail_once_for=3)
        controller = SessionController(PeerRegistry(Peer(2)), presenter, connection)
        snapshot = GameSnapshot((Peer(1), Peer(2), Peer(3), Peer(4)))

        async def run():
            await controller.on_message(snapshot)
            first = (set(controller.handles), controller.registry.ids())
            await controller.on_message(snapshot)
            return first

        handles, ids = asyncio.run(run())
        assert handles == {1, 4}
        assert ids == {1, 2, 4}
        assert set(controller.handles) == {1, 3, 4}
        assert presenter.live_peer_ids() == [1, 3, 4]

    def test_failed_spawn_on_join_leaves_peer_unknown(self, connection):
        presenter = FlakyPresenter(fail_once_for=9)
        controller = SessionController(PeerRegistry(Peer(2)), presenter, connection)

        async def run():
            await controller.on_message(PlayerJoined(Peer(9)))
            assert 9 not in controller.registry
            await controller.on_message(PlayerJoined(Peer(9)))

        asyncio.run(run())
        assert presenter.live_peer_ids() == [9]
        assert controller.registry.ids() == {2, 9}

    def test_handles_track_registry_through_random_traffic(self, make_controller, presenter):
        controller = make_controller(self_id=0)
        rng = random.Random(1234)

        async def run():
            for _ in range(300):
                kind = rng.choice(["join", "leave", "snapshot", "move"])
                peer_id = rng.randrange(1, 10)
                if kind == "join":
                    await controller.on_message(PlayerJoined(Peer(peer_id)))
                elif kind == "leave":
                    await controller.on_message(PlayerLeft(peer_id))
                elif kind == "move":
                    await controller.on_message(PlayerMoved(peer_id, Position(1.0, 0.0, 1.0)))
                else:
                    peers = tuple(Peer(rng.randrange(0, 10)) for _ in range(rng.randrange(0, 6)))
                    await controller.on_message(GameSnapshot(peers))
                assert set(controller.handles) == set(controller.registry.ids()) - {0}
                assert sorted(presenter.live.values()) == sorted(controller.handles)

        asyncio.run(run())


class TestOutboundIntents:

    def test_request_move_updates_self_and_sends(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)
        target = Position(1.0, 2.0, 3.0)

        async def run():
            await controller.start("ws://relay/ws")
            await controller.request_move(target)

        asyncio.run(run())
        assert controller.self_peer.position == target
        assert presenter.calls[-1] == ("move", 7, target)
        assert connection.sent == [PlayerMoved(7, target)]

    def test_request_shot_plays_locally_and_sends(self, make_controller, connection, presenter):
        controller = make_controller(self_id=7)

        async def run():
            await controller.start("ws://relay/ws")
            await controller.request_shot()

        asyncio.run(run())
        assert presenter.calls[-1] == ("shot", 7)
        assert connection.sent == [PlayerShot(7)]

    def test_requests_while_disconnected_do_not_raise(self, make_controller, connection):
        connection.open = False
        controller = make_controller(self_id=7)

        async def run():
            await controller.request_move(Position(1.0, 1.0, 1.0))
            await controller.request_shot()

        asyncio.run(run())
        assert controller.self_peer.position == Position(1.0, 1.0, 1.0)
        assert connection.sent == []

    def test_message_received_event_is_dispatched(self, make_controller, presenter):
        controller = make_controller(self_id=7)
        asyncio.run(controller.handle_event(MessageReceived(PlayerJoined(Peer(8)))))
        assert presenter.calls == [("spawn", 8)]


def test_new_self_peer_draws_from_id_space():
    rng = random.Random(5)
    peers = [new_self_peer(10, rng=rng) for _ in range(50)]
    assert all(0 <= peer.id < 10 for peer in peers)
    assert all(peer.position == Position() for peer in peers)
