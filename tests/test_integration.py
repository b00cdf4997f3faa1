"""End-to-end tests: real sockets against a running relay server."""

from __future__ import annotations

import os
import socket
import subprocess
import sys
import threading
import time
from pathlib import Path
from types import TracebackType
from typing import Literal, Optional, Type

import pytest

import broadside.protocol as proto
from broadside.battleship import Cell
from broadside.client import RemoteClient
from broadside.config import DEFAULT_KEY_HEX
from broadside.encryption import parse_key
from broadside.io_utils import Connection
from broadside.protocol import IncompleteError, Message, MessageType
from broadside.registry import INVALID_PAYLOAD, ROOM_FULL, ROOM_NOT_FOUND
from broadside.server import RelayServer
from broadside.session import Phase

from conftest import TestClient

PACKAGE_ROOT = Path(__file__).resolve().parents[1].joinpath("src")


def _paired(client_factory):
    host = client_factory()
    host.send(proto.create_room())
    created = host.recv()
    assert created.type is MessageType.ROOM_CREATED
    code = proto.RoomCode.from_message(created).code

    guest = client_factory()
    guest.send(proto.join_room(code.lower()))
    assert guest.recv() == proto.game_start()
    assert host.recv() == proto.player_joined()
    return host, guest, code


@pytest.mark.timeout(10)
def test_create_join_and_relay(client_factory) -> None:
    host, guest, code = _paired(client_factory)
    assert len(code) == 4 and code.isupper()

    host.send(proto.ships_placed())
    assert guest.recv() == proto.ships_placed()

    host.send(proto.attack(3, 4))
    assert guest.recv() == proto.attack(3, 4)
    # Empty sunk name sent explicitly must arrive exactly as sent
    reply = Message(MessageType.ATTACK_RESULT, {"row": 3, "col": 4, "hit": True, "sunk_ship_name": ""})
    guest.send(reply)
    assert host.recv() == reply

    host.send(proto.attack(5, 5))
    assert guest.recv() == proto.attack(5, 5)
    guest.send(proto.attack_result(5, 5, True, "Destroyer"))
    assert host.recv() == proto.attack_result(5, 5, True, "Destroyer")


@pytest.mark.timeout(10)
def test_unknown_types_relayed_unmodified(client_factory) -> None:
    host, guest, _ = _paired(client_factory)
    odd = Message("emote", {"face": ":)", "nested": [1, {"x": None}]})
    guest.send(odd)
    got = host.recv()
    assert got.type == "emote"
    assert got.payload == odd.payload


@pytest.mark.timeout(10)
def test_disconnect_notifies_opponent_and_closes_room(client_factory) -> None:
    host, guest, code = _paired(client_factory)
    guest.close()
    assert host.recv() == proto.opponent_left()

    late = client_factory()
    late.send(proto.join_room(code))
    assert late.recv() == proto.join_error(ROOM_NOT_FOUND)


@pytest.mark.timeout(10)
def test_third_player_gets_room_full(client_factory) -> None:
    host, guest, code = _paired(client_factory)
    third = client_factory()
    third.send(proto.join_room(code))
    assert third.recv() == proto.join_error(ROOM_FULL)

    # The match is undisturbed
    host.send(proto.attack(0, 0))
    assert guest.recv() == proto.attack(0, 0)


@pytest.mark.timeout(10)
def test_join_unknown_code(client_factory) -> None:
    c = client_factory()
    c.send(proto.join_room("QQQQ"))
    assert c.recv() == proto.join_error(ROOM_NOT_FOUND)


@pytest.mark.timeout(10)
def test_join_with_malformed_payload(client_factory) -> None:
    c = client_factory()
    c.send(Message(MessageType.JOIN_ROOM, {"code": 1234}))
    assert c.recv() == proto.join_error(INVALID_PAYLOAD)
    # Connection survives; a proper request still works
    c.send(proto.create_room())
    assert c.recv().type is MessageType.ROOM_CREATED


@pytest.mark.timeout(10)
@pytest.mark.parametrize(
    "raw",
    [
        b'{"type":"join_room","payload":["ABCD"]}',
        b'{"type":"join_room","payload":"ABCD"}',
        b'{"type":"join_room"}',
    ],
)
def test_join_with_non_object_payload(client_factory, raw: bytes) -> None:
    host, _, code = _paired(client_factory)
    c = client_factory()
    c.send(Message.from_json(raw))
    assert c.recv() == proto.join_error(INVALID_PAYLOAD)
    c.send(proto.join_room(code))
    assert c.recv() == proto.join_error(ROOM_FULL)


@pytest.mark.timeout(10)
@pytest.mark.parametrize(
    "raw",
    [
        b'{"type":"chat","payload":"hi"}',
        b'{"type":"attack","payload":[3,4]}',
        b'{"type":"ships_placed","payload":null}',
        b'{"payload":{"x":1}}',
    ],
)
def test_relay_forwards_any_payload_byte_for_byte(client_factory, raw: bytes) -> None:
    host, guest, _ = _paired(client_factory)
    host.send(Message.from_json(raw))
    assert guest.recv().raw == raw
    # Room is still up in both directions
    guest.send(proto.attack(1, 1))
    assert host.recv() == proto.attack(1, 1)


@pytest.mark.timeout(10)
def test_relay_large_non_ascii_frame(client_factory) -> None:
    host, guest, _ = _paired(client_factory)
    raw = ('{"type":"chat","payload":{"t":"' + "é" * 20000 + '"}}').encode()
    guest.send(Message.from_json(raw))
    got = host.recv()
    assert got.type == "chat"
    assert got.raw == raw
    assert got.payload == {"t": "é" * 20000}


@pytest.mark.timeout(10)
def test_send_refuses_unframeable_message() -> None:
    a, b = socket.socketpair()
    conn = Connection(a, name="pair")
    try:
        huge = Message("chat", {"t": "é" * 20000})
        assert conn.send(huge) is False
        assert not conn.closed
        assert conn.send(proto.game_start())
        reader = Connection(b, name="reader")
        assert reader.recv() == proto.game_start()
        reader.close()
    finally:
        conn.close()


@pytest.mark.timeout(10)
def test_garbage_frame_drops_sender_and_notifies_peer(client_factory) -> None:
    host, guest, _ = _paired(client_factory)
    guest.sock.sendall(b"\x00" * 32)
    assert host.recv() == proto.opponent_left()
    with pytest.raises((IncompleteError, OSError)):
        guest.recv()


@pytest.mark.timeout(10)
def test_sealed_relay_roundtrip() -> None:
    key = parse_key(DEFAULT_KEY_HEX)
    server = RelayServer("127.0.0.1", 0, key=key, idle_timeout=0)
    host_addr = server.bind()
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    clients = []
    try:
        a = TestClient(socket.create_connection(host_addr, timeout=2.0), key=key)
        clients.append(a)
        a.send(proto.create_room())
        code = proto.RoomCode.from_message(a.recv()).code

        b = TestClient(socket.create_connection(host_addr, timeout=2.0), key=key)
        clients.append(b)
        b.send(proto.join_room(code))
        assert b.recv() == proto.game_start()

        # A plaintext peer is dropped at its first frame
        plain = TestClient(socket.create_connection(host_addr, timeout=2.0))
        clients.append(plain)
        plain.send(proto.create_room())
        with pytest.raises((IncompleteError, OSError)):
            plain.recv()
    finally:
        for c in clients:
            c.close()
        server.shutdown()
        t.join(timeout=2.0)


@pytest.mark.timeout(10)
def test_idle_connection_is_dropped() -> None:
    server = RelayServer("127.0.0.1", 0, idle_timeout=0.3)
    addr = server.bind()
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    try:
        host = TestClient(socket.create_connection(addr, timeout=2.0))
        host.send(proto.create_room())
        code = proto.RoomCode.from_message(host.recv()).code
        with pytest.raises((IncompleteError, OSError)):
            host.recv(timeout=3.0)
        assert code not in server.registry
        host.close()
    finally:
        server.shutdown()
        t.join(timeout=2.0)


# ---------------------------------------------------------------------------
# Full matches through RemoteClient
# ---------------------------------------------------------------------------


def _ready_pair(remote_factory):
    host = remote_factory()
    host.session.create_room()
    assert host.wait(lambda s: s.phase is Phase.WAITING_FOR_OPPONENT)

    guest = remote_factory()
    guest.session.join_room(host.session.room_code)
    assert guest.wait(lambda s: s.phase is Phase.PLACEMENT)
    assert host.wait(lambda s: s.phase is Phase.PLACEMENT)

    host.session.place_fleet_randomly(seed=1)
    guest.session.place_fleet_randomly(seed=2)
    host.session.ready()
    guest.session.ready()
    assert host.wait(lambda s: s.phase is Phase.BATTLE)
    assert guest.wait(lambda s: s.phase is Phase.BATTLE)
    return host, guest


@pytest.mark.timeout(30)
def test_full_match_between_remote_clients(remote_factory) -> None:
    host, guest = _ready_pair(remote_factory)
    assert host.session.my_turn and not guest.session.my_turn

    cells = [(r, c) for r in range(10) for c in range(10)]
    shots = {host: iter(cells), guest: iter(cells)}
    deadline = time.monotonic() + 25
    while not (host.session.finished and guest.session.finished):
        assert time.monotonic() < deadline, "match did not finish"
        for player in (host, guest):
            s = player.session
            if s.phase is Phase.BATTLE and s.my_turn and s.pending is None:
                s.fire(*next(shots[player]))
        time.sleep(0.002)

    assert host.session.phase is Phase.GAME_OVER
    assert guest.session.phase is Phase.GAME_OVER
    assert {host.session.won, guest.session.won} == {True, False}

    winner = host if host.session.won else guest
    loser = guest if winner is host else host
    assert loser.session.board.all_sunk()
    hits = sum(row.count(Cell.HIT) for row in winner.session.opponent.cells)
    assert hits == 17


@pytest.mark.timeout(10)
def test_remote_opponent_leaving_mid_match(remote_factory) -> None:
    host, guest = _ready_pair(remote_factory)
    guest.close()
    assert host.wait(lambda s: s.phase is Phase.OPPONENT_LEFT)
    assert host.session.finished


@pytest.mark.timeout(10)
def test_remote_join_failure(remote_factory) -> None:
    c = remote_factory()
    c.session.join_room("ZZZZ")
    assert c.wait(lambda s: s.phase is Phase.JOIN_FAILED)
    assert c.session.error == ROOM_NOT_FOUND


# ---------------------------------------------------------------------------
# Packaged entrypoint
# ---------------------------------------------------------------------------


class ServerProcess:
    """Context manager that runs `python -m broadside.server`."""

    def __init__(self, port: int) -> None:
        self.port = port
        self.proc: Optional[subprocess.Popen[bytes]] = None

    def __enter__(self) -> "ServerProcess":
        env = {**os.environ, "PYTHONPATH": str(PACKAGE_ROOT), "BROADSIDE_PORT": str(self.port)}
        self.proc = subprocess.Popen(
            [sys.executable, "-m", "broadside.server"],
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        # Give it a moment to start
        time.sleep(1)
        if self.proc.poll() is not None:
            out = self.proc.stdout.read().decode() if self.proc.stdout else ""
            raise RuntimeError(f"Server failed to start. Output:\n{out}")
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> Literal[False]:
        if self.proc and self.proc.poll() is None:
            self.proc.terminate()
            self.proc.wait(timeout=5)
        return False


@pytest.mark.timeout(15)
def test_server_module_accepts_connection() -> None:
    """The packaged server answers create_room on its configured port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as tmp:
        tmp.bind(("127.0.0.1", 0))
        port = tmp.getsockname()[1]

    with ServerProcess(port):
        sock = socket.create_connection(("127.0.0.1", port), timeout=5)
        client = TestClient(sock)
        try:
            client.send(proto.create_room())
            msg = client.recv(timeout=5)
            assert msg.type is MessageType.ROOM_CREATED
        finally:
            client.close()
