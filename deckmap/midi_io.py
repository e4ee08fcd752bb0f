from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from deckmap.mapping_model import DeckmapError, MidiMessage


class UnsupportedTransport(DeckmapError):
    """No usable MIDI backend on this host."""


class MidiTransport:
    """Abstract device transport: raw messages out, close when done."""

    def send(self, msg: MidiMessage) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class VirtualTransport(MidiTransport):
    """Captures sent messages for tests and demos."""

    def __init__(self) -> None:
        self.sent: List[MidiMessage] = []
        self.closed = False

    def send(self, msg: MidiMessage) -> None:
        self.sent.append(msg)

    def close(self) -> None:
        self.closed = True


class MidoTransport(MidiTransport):
    def __init__(self, out_port):
        self.out = out_port

    def send(self, msg: MidiMessage) -> None:
        import mido

        self.out.send(mido.Message.from_bytes(list(msg.to_bytes())))

    def close(self) -> None:
        close = getattr(self.out, "close", None)
        if callable(close):
            close()


def check_backend() -> None:
    """Raise UnsupportedTransport when mido or its port backend is unusable."""
    try:
        import mido
    except Exception as e:
        raise UnsupportedTransport(f"mido not importable: {e}") from e
    try:
        mido.get_input_names()
    except Exception as e:
        raise UnsupportedTransport(f"MIDI backend unavailable: {e}") from e


def list_devices() -> List[Dict[str, Any]]:
    """Input and output ports merged by name, inputs first."""
    check_backend()
    import mido

    devices: Dict[str, Dict[str, Any]] = {}
    for name in mido.get_input_names():
        devices.setdefault(name, {"name": name, "input": False, "output": False})["input"] = True
    for name in mido.get_output_names():
        devices.setdefault(name, {"name": name, "input": False, "output": False})["output"] = True
    return list(devices.values())


def open_mido_output(name_filter: Optional[str] = None):
    """Open a Mido output port with safe fallbacks.

    - If mido/rtmidi are unavailable or the system MIDI stack is inaccessible,
      return a dummy object exposing `.send()`.
    - If a specific port is requested but not found, also fall back to dummy
      rather than crashing in headless CI environments.
    """
    def _dummy_out():
        class _DummyOut:
            def send(self, *_args, **_kwargs):
                pass

            def close(self):
                pass
        return _DummyOut()

    try:
        import mido
    except Exception:
        return _dummy_out()

    try:
        names = mido.get_output_names()
    except Exception:
        # Accessing system MIDI may raise in sandboxed environments
        return _dummy_out()
    if name_filter:
        names = [n for n in names if name_filter.lower() in n.lower()]
    if not names:
        return _dummy_out()
    try:
        return mido.open_output(names[0])
    except Exception:
        return _dummy_out()


def open_mido_input(name_filter: Optional[str] = None, callback=None):
    """Open a Mido input port with safe fallbacks.

    Returns a dummy object with `.close()` when system MIDI is unavailable or
    access fails (e.g., CI, sandboxed runners).
    """
    def _dummy_in():
        class _DummyIn:
            name = None

            def close(self):
                pass
        return _DummyIn()

    try:
        import mido
    except Exception:
        return _dummy_in()

    try:
        names = mido.get_input_names()
    except Exception:
        return _dummy_in()
    if name_filter:
        names = [n for n in names if name_filter.lower() in n.lower()]
    if not names:
        return _dummy_in()
    try:
        return mido.open_input(names[0], callback=callback)
    except Exception:
        return _dummy_in()


def raw_callback(handler: Callable[[MidiMessage], None]) -> Callable[[Any], None]:
    """Adapt a MidiMessage handler to mido's input callback signature."""

    def _on_input(msg) -> None:
        # Realtime/system messages carry no mapping data
        if getattr(msg, "is_realtime", False) or getattr(msg, "type", None) == "sysex":
            return
        handler(MidiMessage.from_mido(msg))

    return _on_input
