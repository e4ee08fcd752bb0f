"""Listener for DJ controllers.

Reads MIDI from one controller, decodes it through the selected mapping and
streams the resulting actions (and the host decisions made from them) to
WebSocket clients. Clients report deck play state back with setPlaying so
the controller's play LEDs follow the host.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from deckmap.actions import Action, action_to_dict
from deckmap.controller import MappingEngine
from deckmap.host import DECK_LABELS, ActionRouter, DeckHost, PlayLedFeedback
from deckmap.manifest import (
    ManifestEntry,
    ManifestError,
    auto_detect,
    load_from_manifest,
    load_manifest,
    summarize,
)
from deckmap.mapping_model import DeckmapError, MidiMessage
from deckmap.midi_io import (
    MidiTransport,
    MidoTransport,
    UnsupportedTransport,
    check_backend,
    list_devices,
    open_mido_input,
    open_mido_output,
    raw_callback,
)
from deckmap.timers import ThreadTimerHost, TimerHost


DECK_NUMBERS = {label: num for num, label in DECK_LABELS.items()}


class _ListenerHost(DeckHost):
    """Turns routed actions into 'host' frames; play state comes from clients."""

    def __init__(self, listener: "Listener") -> None:
        self.listener = listener
        self.playing: Dict[str, bool] = {label: False for label in DECK_LABELS.values()}

    def _emit(self, event: str, **fields: Any) -> None:
        self.listener.enqueue({"type": "host", "ts": time.time(), "payload": {"event": event, **fields}})

    def play(self, deck: str) -> None:
        self.listener.set_playing(deck, True)
        self._emit("play", deck=deck)

    def stop(self, deck: str) -> None:
        self.listener.set_playing(deck, False)
        self._emit("stop", deck=deck)

    def cue(self, deck: str) -> None:
        self._emit("cue", deck=deck)

    def rate_change(self, deck: str, offset: float) -> None:
        self._emit("rate", deck=deck, offset=offset)

    def volume_change(self, deck: str, volume: float) -> None:
        self._emit("volume", deck=deck, volume=volume)

    def jog_wheel(self, deck: str, offset: float) -> None:
        self._emit("jog", deck=deck, offset=offset)

    def crossfader_change(self, position: float) -> None:
        self._emit("crossfader", position=position)

    def is_playing(self, deck: str) -> bool:
        return bool(self.playing.get(deck, False))


class Listener:
    def __init__(
        self,
        manifest_path: str,
        port_filter: Optional[str] = None,
        out: Optional[MidiTransport] = None,
        timers: Optional[TimerHost] = None,
        max_bpm_variation: float = 8.0,
        print_actions: bool = False,
    ) -> None:
        self.manifest_path = manifest_path
        self.base_dir = os.path.dirname(os.path.abspath(manifest_path)) or "."
        self.entries: List[ManifestEntry] = load_manifest(manifest_path)
        self.port_filter = port_filter
        self.print_actions = print_actions
        self._lock = threading.RLock()
        self.out: MidiTransport = out if out is not None else MidoTransport(open_mido_output(port_filter))
        self.timers: TimerHost = timers if timers is not None else ThreadTimerHost()
        self.engine = MappingEngine(timers=self.timers, on_timer_actions=self.on_actions)
        self.host = _ListenerHost(self)
        self.router = ActionRouter(self.host, max_bpm_variation=max_bpm_variation)
        self.leds: Optional[PlayLedFeedback] = None
        self.entry: Optional[ManifestEntry] = None
        self.inp = None
        self.device_name: Optional[str] = None
        self._outbox: Deque[Dict[str, Any]] = deque(maxlen=4096)

    # --- Mapping selection ---
    def find_entry(self, filename: Optional[str] = None, device_name: Optional[str] = None) -> Optional[ManifestEntry]:
        if filename:
            for e in self.entries:
                if filename in (e.filename, e.id, e.name):
                    return e
            return None
        if device_name:
            return auto_detect(self.entries, device_name)
        return None

    def load_entry(self, entry: ManifestEntry) -> Dict[str, Any]:
        """Load a mapping; on failure the current mapping stays active."""
        try:
            mapping = load_from_manifest(self.engine, entry, self.base_dir, midi=self.out)
        except DeckmapError as e:
            print(f"[mapping] failed to load {entry.filename}: {e}", flush=True)
            return {"ok": False, "error": "load_failed", "details": str(e)}
        with self._lock:
            self.entry = entry
            self.leds = PlayLedFeedback(mapping.doc, self.out)
            for label, playing in self.host.playing.items():
                self.leds.update(DECK_NUMBERS[label], playing, force=True)
        return {"ok": True, "mapping": entry.filename}

    # --- MIDI path ---
    def open_input(self) -> None:
        self.inp = open_mido_input(self.port_filter, callback=raw_callback(self.on_midi))
        self.device_name = getattr(self.inp, "name", None)
        if self.device_name:
            print(f"[midi-in] listening on {self.device_name}", flush=True)
        else:
            print("[midi-in] no matching input port; waiting without input", flush=True)

    def on_midi(self, msg: MidiMessage) -> None:
        # Runs on the backend's input thread; never raise into it
        try:
            actions = self.engine.handle_incoming(msg)
            self.on_actions(actions)
        except Exception as e:
            print(f"[midi-in] error handling {msg}: {type(e).__name__}: {e}", flush=True)

    def on_actions(self, actions: List[Action]) -> None:
        if not actions:
            return
        payload = [action_to_dict(a) for a in actions]
        if self.print_actions:
            print(f"[midi-in] actions {json.dumps(payload)}", flush=True)
        self.enqueue({"type": "actions", "ts": time.time(), "payload": payload})
        self.router.deliver(actions)

    # --- Host state ---
    def set_playing(self, deck: str, playing: bool) -> None:
        with self._lock:
            if deck not in self.host.playing:
                return
            self.host.playing[deck] = bool(playing)
            if self.leds is not None:
                self.leds.update(DECK_NUMBERS[deck], bool(playing))

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            info = self.engine.mapping.info if self.engine.mapping is not None else None
            return {
                "ready": self.engine.ready,
                "mapping": self.entry.filename if self.entry else None,
                "mappingName": info.name if info else None,
                "device": self.device_name,
                "decks": dict(self.host.playing),
            }

    # --- Outbox for WS clients ---
    def enqueue(self, frame: Dict[str, Any]) -> None:
        with self._lock:
            self._outbox.append(frame)

    def drain(self) -> List[Dict[str, Any]]:
        with self._lock:
            out = list(self._outbox)
            self._outbox.clear()
            return out

    def close(self) -> None:
        self.engine.unload()
        if isinstance(self.timers, ThreadTimerHost):
            self.timers.stop()
        if self.inp is not None:
            try:
                self.inp.close()
            except Exception as e:
                print(f"[midi-in] close failed: {e}", flush=True)
        self.out.close()


async def serve_ws(listener: Listener, host: str, port: int, ready: Optional[asyncio.Event] = None):
    try:
        import websockets  # type: ignore
    except Exception:
        print("[ws] websockets not installed; cannot start listener WS")
        return

    clients: Set[Any] = set()

    async def broadcast(obj: Dict[str, Any]):
        if not clients:
            return
        msg = json.dumps(obj)
        await asyncio.gather(*[c.send(msg) for c in list(clients)], return_exceptions=True)

    async def pump_task():
        # Frames are produced on MIDI/timer threads; forward them from the loop
        while True:
            await asyncio.sleep(0.02)
            for frame in listener.drain():
                await broadcast(frame)

    async def metrics_task():
        while True:
            await asyncio.sleep(1.0)
            try:
                await broadcast({
                    "type": "metrics",
                    "ts": time.time(),
                    "payload": {"engine": listener.engine.get_metrics(), "ws": {"clients": len(clients)}},
                })
            except Exception as e:
                print(f"[ws] metrics broadcast failed: {e}", flush=True)

    async def handler(ws, *maybe_path):
        ra = getattr(ws, "remote_address", None)
        print(f"[ws] client connected: {ra}", flush=True)
        clients.add(ws)
        await ws.send(json.dumps({"type": "hello", "ts": time.time(), "payload": {"protocol": 1, "manifest": summarize(listener.entries)}}))
        await ws.send(json.dumps({"type": "state", "ts": time.time(), "payload": listener.get_state()}))
        try:
            async for message in ws:
                try:
                    obj = json.loads(message)
                except ValueError:
                    continue
                if not isinstance(obj, dict):
                    continue
                t = obj.get("type")
                req_id = obj.get("id")
                payload = obj.get("payload")
                if not isinstance(payload, dict):
                    payload = {}
                if t == "ping":
                    await ws.send(json.dumps({"type": "pong", "ts": time.time(), "id": req_id}))
                elif t == "getState":
                    await ws.send(json.dumps({"type": "state", "ts": time.time(), "id": req_id, "payload": listener.get_state()}))
                elif t == "setPlaying":
                    deck = str(payload.get("deck", ""))
                    if deck not in DECK_NUMBERS:
                        await ws.send(json.dumps({"type": "error", "ts": time.time(), "id": req_id, "payload": {"ok": False, "error": "unknown_deck"}}))
                        continue
                    listener.set_playing(deck, bool(payload.get("playing", False)))
                    await ws.send(json.dumps({"type": "ack", "ts": time.time(), "id": req_id, "payload": {"ok": True}}))
                elif t == "loadMapping":
                    entry = listener.find_entry(filename=str(payload.get("filename", "")))
                    if entry is None:
                        res = {"ok": False, "error": "unknown_mapping"}
                    else:
                        res = listener.load_entry(entry)
                    kind = "ack" if res.get("ok") else "error"
                    await ws.send(json.dumps({"type": kind, "ts": time.time(), "id": req_id, "payload": res}))
                    await broadcast({"type": "state", "ts": time.time(), "payload": listener.get_state()})
                else:
                    await ws.send(json.dumps({"type": "error", "ts": time.time(), "id": req_id, "payload": {"ok": False, "error": "unknown_type"}}))
        finally:
            clients.discard(ws)

    async with websockets.serve(handler, host, port):
        print(f"[ws] listener on ws://{host}:{port}", flush=True)
        tasks = [asyncio.create_task(pump_task()), asyncio.create_task(metrics_task())]
        if ready is not None:
            ready.set()
        try:
            await asyncio.Future()
        finally:
            for t in tasks:
                t.cancel()


def main():
    ap = argparse.ArgumentParser(description="Decode a DJ controller through a Mixxx mapping and stream actions over WS")
    ap.add_argument("--manifest", default="mappings/manifest.json")
    ap.add_argument("--port", help="Substring to match the controller's MIDI port (e.g., 'DDJ-FLX4')")
    ap.add_argument("--mapping", help="Mapping filename or id from the manifest (default: auto-detect from port name)")
    ap.add_argument("--max-bpm-variation", type=float, default=8.0)
    ap.add_argument("--print-actions", action="store_true", help="Print every decoded action")
    ap.add_argument("--ws-host", default="127.0.0.1", help="Interface for the WebSocket server (default: localhost only)")
    ap.add_argument("--ws-port", type=int, default=8766)
    ap.add_argument("--list-devices", action="store_true", help="Print MIDI ports and exit")
    ap.add_argument("--no-ws", action="store_true", help="Do not start the WebSocket server")
    args = ap.parse_args()

    if args.list_devices:
        try:
            for d in list_devices():
                print(f"{d['name']}  in={d['input']} out={d['output']}")
        except UnsupportedTransport as e:
            print(f"error: {e}")
            raise SystemExit(2)
        return

    try:
        check_backend()
    except UnsupportedTransport as e:
        print(f"[midi-in] MIDI unsupported on this host: {e}; no messages will be received", flush=True)

    try:
        listener = Listener(args.manifest, port_filter=args.port, max_bpm_variation=args.max_bpm_variation, print_actions=args.print_actions)
    except ManifestError as e:
        print(f"error: {e}")
        raise SystemExit(2)
    listener.open_input()

    entry = listener.find_entry(filename=args.mapping) if args.mapping else listener.find_entry(device_name=listener.device_name or args.port)
    if entry is not None:
        listener.load_entry(entry)
    else:
        print("[mapping] no mapping selected; load one with a loadMapping command", flush=True)

    def shutdown(*_):
        listener.close()
        print("[ws] shutting down")
        os._exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    if args.no_ws:
        threading.Event().wait()
        return
    try:
        asyncio.run(serve_ws(listener, args.ws_host, args.ws_port))
    except KeyboardInterrupt:
        shutdown()


if __name__ == "__main__":
    main()
