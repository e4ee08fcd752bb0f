from __future__ import annotations

import asyncio
import contextlib
import json
import os
import socket

import pytest

from deckmap.listen_server import Listener, serve_ws
from deckmap.mapping_model import MidiMessage
from deckmap.midi_io import VirtualTransport
from deckmap.timers import ManualTimerHost


MANIFEST = os.path.join(os.path.dirname(__file__), os.pardir, os.pardir, "mappings", "manifest.json")


def _free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    addr, port = s.getsockname()
    s.close()
    return port


def _listener() -> Listener:
    return Listener(MANIFEST, out=VirtualTransport(), timers=ManualTimerHost())


async def _recv_type(ws, kind: str, limit: int = 20):
    for _ in range(limit):
        obj = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        if obj.get("type") == kind:
            return obj
    raise AssertionError(f"no {kind} frame received")


@contextlib.asynccontextmanager
async def _served(listener: Listener):
    import websockets  # type: ignore

    port = _free_port()
    ready = asyncio.Event()
    server_task = asyncio.create_task(serve_ws(listener, "127.0.0.1", port, ready=ready))
    try:
        await asyncio.wait_for(ready.wait(), timeout=2.0)
        ws = await websockets.connect(f"ws://127.0.0.1:{port}")
        try:
            yield ws
        finally:
            await ws.close()
    finally:
        server_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await server_task


def test_listener_without_server():
    listener = _listener()
    assert listener.get_state()["ready"] is False
    listener.on_midi(MidiMessage(0x90, (0x0B, 0x7F)))
    assert listener.drain() == []

    res = listener.load_entry(listener.entries[0])
    assert res == {"ok": True, "mapping": "Pioneer-DDJ-FLX4.midi.xml"}
    # Both play LEDs are forced to the host state on load
    assert [m.to_bytes() for m in listener.out.sent] == [b"\x90\x0b\x00", b"\x91\x0b\x00"]

    listener.on_midi(MidiMessage(0x91, (0x0B, 0x7F)))
    frames = listener.drain()
    assert [f["type"] for f in frames] == ["actions", "host"]
    assert frames[0]["payload"] == [{"type": "press", "control": {"type": "play"}, "deck": 2, "down": True}]
    assert frames[1]["payload"] == {"event": "play", "deck": "B"}
    assert listener.get_state()["decks"] == {"A": False, "B": True}
    assert listener.out.sent[-1].to_bytes() == b"\x91\x0b\x7f"


def test_find_entry():
    listener = _listener()
    assert listener.find_entry(filename="DDJ-FLX4").filename == "Pioneer-DDJ-FLX4.midi.xml"
    assert listener.find_entry(device_name="DDJ-FLX4 MIDI 1").id == "DDJ-FLX4"
    assert listener.find_entry(filename="nope") is None
    assert listener.find_entry() is None


@pytest.mark.asyncio
async def test_ws_hello_state_and_actions():
    listener = _listener()
    listener.load_entry(listener.entries[0])
    async with _served(listener) as ws:
        hello = await _recv_type(ws, "hello")
        assert hello["payload"]["manifest"][0]["id"] == "DDJ-FLX4"
        state = await _recv_type(ws, "state")
        assert state["payload"]["ready"] is True
        assert state["payload"]["mappingName"] == "Pioneer DDJ-FLX4"

        listener.on_midi(MidiMessage(0x90, (0x0B, 0x7F)))
        actions = await _recv_type(ws, "actions")
        assert actions["payload"][0]["control"] == {"type": "play"}
        host = await _recv_type(ws, "host")
        assert host["payload"] == {"event": "play", "deck": "A"}


@pytest.mark.asyncio
async def test_ws_commands():
    listener = _listener()
    listener.load_entry(listener.entries[0])
    async with _served(listener) as ws:
        await _recv_type(ws, "state")

        await ws.send(json.dumps({"type": "ping", "id": 1}))
        assert (await _recv_type(ws, "pong"))["id"] == 1

        await ws.send(json.dumps({"type": "setPlaying", "id": 2, "payload": {"deck": "A", "playing": True}}))
        ack = await _recv_type(ws, "ack")
        assert ack["id"] == 2
        assert listener.out.sent[-1].to_bytes() == b"\x90\x0b\x7f"

        await ws.send(json.dumps({"type": "getState", "id": 3}))
        state = await _recv_type(ws, "state")
        assert state["id"] == 3
        assert state["payload"]["decks"]["A"] is True

        await ws.send(json.dumps({"type": "setPlaying", "id": 4, "payload": {"deck": "C", "playing": True}}))
        err = await _recv_type(ws, "error")
        assert err["payload"]["error"] == "unknown_deck"

        await ws.send(json.dumps({"type": "loadMapping", "id": 5, "payload": {"filename": "missing.midi.xml"}}))
        err = await _recv_type(ws, "error")
        assert err["id"] == 5
        assert err["payload"]["error"] == "unknown_mapping"

        await ws.send(json.dumps({"type": "loadMapping", "id": 6, "payload": {"filename": "Pioneer-DDJ-FLX4.midi.xml"}}))
        ack = await _recv_type(ws, "ack")
        assert ack["payload"] == {"ok": True, "mapping": "Pioneer-DDJ-FLX4.midi.xml"}

        await ws.send(json.dumps({"type": "bogus", "id": 7}))
        err = await _recv_type(ws, "error")
        assert err["payload"]["error"] == "unknown_type"


@pytest.mark.asyncio
async def test_ws_ignores_frames_that_are_not_objects():
    listener = _listener()
    async with _served(listener) as ws:
        await _recv_type(ws, "state")
        for raw in ("[]", "1", '"ping"', "null", "{not json"):
            await ws.send(raw)
        await ws.send(json.dumps({"type": "setPlaying", "id": 8, "payload": ["A", True]}))
        err = await _recv_type(ws, "error")
        assert err["id"] == 8
        assert err["payload"]["error"] == "unknown_deck"
        await ws.send(json.dumps({"type": "ping", "id": 9}))
        assert (await _recv_type(ws, "pong"))["id"] == 9


def test_module_documents_itself():
    from deckmap import listen_server

    assert listen_server.__doc__.startswith("Listener for DJ controllers.")
