from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from deckmap.actions import Action, resolve_action
from deckmap.decoder import DecodedMessage, MessageDecoder
from deckmap.dispatcher import ScriptDispatcher, ScriptRuntimeError
from deckmap.mapping_model import MappingDocument, MappingInfo, MidiMessage
from deckmap.mapping_parser import parse
from deckmap.script_sandbox import ScriptLoader, ScriptSandbox
from deckmap.timers import TimerCallback, TimerHost


ActionsCallback = Callable[[List[Action]], None]


def _no_scripts(file_name: str) -> str:
    raise FileNotFoundError(f"no script loader configured for {file_name}")


class ControllerMapping:
    """A loaded mapping: parsed document, its scripts and the decoder state.

    Long-lived; handle_incoming is not pure since both the decoder slot and
    script state change with every message.
    """

    def __init__(self, doc: MappingDocument, sandbox: ScriptSandbox, on_script_error: Optional[Callable[[ScriptRuntimeError], None]] = None):
        self.doc = doc
        self.sandbox = sandbox
        self.decoder = MessageDecoder()
        self.dispatcher = ScriptDispatcher(sandbox, on_error=on_script_error)
        self.initialized = False
        self.last_decoded: Optional[DecodedMessage] = None

    @classmethod
    def load(
        cls,
        xml_source: str,
        script_loader: Optional[ScriptLoader] = None,
        midi: Any = None,
        timers: Optional[TimerHost] = None,
        on_script_error: Optional[Callable[[ScriptRuntimeError], None]] = None,
    ) -> "ControllerMapping":
        """Parse the mapping and evaluate every referenced script.

        Raises MalformedDocument or ScriptLoadError; nothing is half-loaded.
        """
        doc = parse(xml_source)
        sandbox = ScriptSandbox(timers=timers, midi_transport=midi)
        sandbox.load(doc.script_files, script_loader or _no_scripts)
        return cls(doc, sandbox, on_script_error=on_script_error)

    @property
    def info(self) -> MappingInfo:
        return self.doc.info

    def init(self, controller_id: str = "", debug: bool = False) -> None:
        self.sandbox.init(controller_id, debug)
        self.initialized = True

    def shutdown(self) -> None:
        self.sandbox.shutdown()
        self.initialized = False

    def decode(self, msg: MidiMessage) -> Optional[DecodedMessage]:
        return self.decoder.decode(msg, self.doc)

    def handle_incoming(self, msg: MidiMessage) -> List[Action]:
        decoded = self.decode(msg)
        self.last_decoded = decoded
        if decoded is None:
            return []
        control = decoded.control
        if control.is_script_binding:
            return self.dispatcher.dispatch(control, decoded.raw_value, msg.status, control.group, decoded.deck)
        action = resolve_action(control, control.key, decoded.value, decoded.down, control.group)
        return [action] if action is not None else []

    def prepare_outgoing(self, output: Any) -> List[MidiMessage]:
        # Output descriptors are parsed but host->device translation is not implemented
        return []


class MappingEngine:
    """Top-level decode pipeline for one device.

    - Messages are rejected (empty result) until a mapping is loaded and its
      scripts' init() has run.
    - load_mapping builds the new mapping outside the lock and swaps it in
      atomically; a failed load leaves the previous mapping active.
    - Decoding and script timers are serialized on one lock, so a timer can
      never observe a half-dispatched action buffer.
    """

    def __init__(
        self,
        timers: Optional[TimerHost] = None,
        on_timer_actions: Optional[ActionsCallback] = None,
        limits: Optional[Dict[str, int]] = None,
        controller_id: str = "",
        debug: bool = False,
    ) -> None:
        self._lock = threading.RLock()
        self.mapping: Optional[ControllerMapping] = None
        self.timers = timers
        if timers is not None:
            # Route timer callbacks through the engine
            timers.runner = self._run_timer
        self.on_timer_actions = on_timer_actions
        self.controller_id = controller_id
        self.debug = debug
        limits = limits or {}
        # Upper bound on actions one message may produce (runaway scripts)
        self.max_actions_per_msg: int = int(limits.get("actions_per_msg", 64))
        self.metrics: Dict[str, int] = {
            "msgs_in": 0,
            "matched": 0,
            "actions": 0,
            "rejected": 0,
            "script_errors": 0,
            "decode_errors": 0,
            "timer_actions": 0,
            "shed_actions": 0,
        }

    # --- Mapping lifecycle ---
    @property
    def ready(self) -> bool:
        m = self.mapping
        return m is not None and m.initialized

    def load_mapping(self, xml_source: str, script_loader: Optional[ScriptLoader] = None, midi: Any = None) -> ControllerMapping:
        mapping = ControllerMapping.load(
            xml_source,
            script_loader,
            midi=midi,
            timers=self.timers,
            on_script_error=self._on_script_error,
        )
        try:
            mapping.init(self.controller_id, self.debug)
        except Exception:
            mapping.shutdown()
            raise
        with self._lock:
            old = self.mapping
            self.mapping = mapping
            if old is not None:
                old.shutdown()
        name = mapping.info.name or "(unnamed)"
        print(f"[mapping] loaded {name}: {len(mapping.doc.controls)} controls, {len(mapping.sandbox.namespaces)} script namespaces", flush=True)
        return mapping

    def unload(self) -> None:
        with self._lock:
            old = self.mapping
            self.mapping = None
            if old is not None:
                old.shutdown()

    # --- Message path ---
    def handle_incoming(self, msg: MidiMessage) -> List[Action]:
        with self._lock:
            self.metrics["msgs_in"] += 1
            mapping = self.mapping
            if mapping is None or not mapping.initialized:
                self.metrics["rejected"] += 1
                return []
            try:
                actions = mapping.handle_incoming(msg)
            except Exception as e:
                self.metrics["decode_errors"] += 1
                print(f"[midi-in] decode error for {msg}: {type(e).__name__}: {e}", flush=True)
                return []
            if mapping.last_decoded is not None:
                self.metrics["matched"] += 1
            return self._cap(actions)

    def handle_bytes(self, raw) -> List[Action]:
        return self.handle_incoming(MidiMessage.from_bytes(raw))

    def _cap(self, actions: List[Action]) -> List[Action]:
        if len(actions) > self.max_actions_per_msg:
            self.metrics["shed_actions"] += len(actions) - self.max_actions_per_msg
            actions = actions[: self.max_actions_per_msg]
        self.metrics["actions"] += len(actions)
        return actions

    def _on_script_error(self, err: ScriptRuntimeError) -> None:
        self.metrics["script_errors"] += 1
        print(f"[script] handler error {err}", flush=True)

    def _run_timer(self, callback: TimerCallback) -> None:
        # Script timers run against the sandbox that started them, which may
        # still be initialising or already replaced
        sandbox = getattr(callback, "sandbox", None)
        if sandbox is None:
            mapping = self.mapping
            if mapping is None:
                return
            sandbox = mapping.sandbox
        # Sandbox lock first: init holds it without the engine lock
        with sandbox.lock, self._lock:
            if sandbox.closed:
                return
            buf = sandbox.buffer
            buf.clear()
            try:
                callback()
            except Exception as e:
                buf.clear()
                self._on_script_error(ScriptRuntimeError("timer", e))
                return
            actions = buf.drain()
            if actions:
                self.metrics["timer_actions"] += len(actions)
        if actions and self.on_timer_actions is not None:
            self.on_timer_actions(actions)

    def get_metrics(self) -> Dict[str, int]:
        return dict(self.metrics)
