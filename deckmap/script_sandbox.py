"""Restricted evaluation of mapping scripts.

A mapping script is Python source. It runs with exactly three injected
names and a whitelisted set of builtins:

- ``engine``: EngineFacade. State-changing calls (setValue/setParameter) are
  turned into Actions and collected in an ActionBuffer owned by the host;
  the script cannot read that buffer back.
- ``script``: ScriptFacade, currently just ``deckFromGroup``.
- ``midi``: MidiHandle forwarding raw sends to the device transport.

Imports and private or dunder attribute access are rejected before
execution; getattr, hasattr and setattr apply the same rule at run time.
Nothing outside the injected names and the builtins is reachable.
"""
from __future__ import annotations

import ast
import builtins
import inspect
import threading
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from deckmap.actions import Action, deck_from_group, make_value_action
from deckmap.mapping_model import DeckmapError, MidiMessage, ScriptFile
from deckmap.timers import TimerHost


ScriptLoader = Callable[[str], str]


class ScriptLoadError(DeckmapError):
    def __init__(self, file_name: str, message: str):
        super().__init__(f"{file_name}: {message}")
        self.file_name = file_name


def _report(msg: str) -> None:
    print(f"[script] {msg}", flush=True)


class ActionBuffer:
    """Ordered collection of Actions produced by script calls."""

    def __init__(self) -> None:
        self._items: List[Action] = []

    def push(self, action: Action) -> None:
        self._items.append(action)

    def clear(self) -> None:
        self._items.clear()

    def drain(self) -> List[Action]:
        out = list(self._items)
        self._items.clear()
        return out

    def __len__(self) -> int:
        return len(self._items)


def _noop(*_args: Any, **_kwargs: Any) -> None:
    return None


class ScriptTimer:
    """A timer callback bound to the sandbox whose script registered it."""

    def __init__(self, sandbox: Any, callback: Callable[[], Any]) -> None:
        self.sandbox = sandbox
        self.callback = callback

    def __call__(self) -> None:
        self.callback()


class EngineFacade:
    """The ``engine`` object visible to scripts.

    Only setValue/setParameter and the timer calls do anything. The rest of
    the Mixxx engine API is present as explicit no-ops returning neutral
    values; names outside that API fall through __getattr__ to a no-op that
    is recorded in ``unimplemented_calls``.
    """

    def __init__(self, buffer: ActionBuffer, timers: Optional[TimerHost] = None, owner: Any = None) -> None:
        self._buffer = buffer
        self._timers = timers
        self._owner = owner
        self._timer_ids: Set[int] = set()
        self.unimplemented_calls: Set[str] = set()

    # --- Implemented ---
    def setValue(self, group: str, key: str, value: float) -> None:
        action = make_value_action(group, key, value)
        if action is not None:
            self._buffer.push(action)

    def setParameter(self, group: str, key: str, value: float) -> None:
        self.setValue(group, key, value)

    def beginTimer(self, interval: float, callback: Any, oneShot: bool = False) -> int:
        if self._timers is None:
            return 0
        if not callable(callback):
            _report(f"beginTimer: callback must be callable, got {type(callback).__name__}")
            return 0
        tid = self._timers.start_timer(float(interval), ScriptTimer(self._owner, callback), one_shot=bool(oneShot))
        self._timer_ids.add(tid)
        return tid

    def stopTimer(self, timerId: int) -> None:
        if self._timers is not None:
            self._timers.stop_timer(int(timerId))
            self._timer_ids.discard(int(timerId))

    def _stop_all_timers(self) -> None:
        # Timers of this script set only; the host clock may be shared
        if self._timers is not None:
            for tid in self._timer_ids:
                self._timers.stop_timer(tid)
        self._timer_ids.clear()

    # --- Known API, intentionally inert ---
    def getValue(self, group: str, key: str) -> float:
        return 0.0

    def getParameter(self, group: str, key: str) -> float:
        return 0.0

    def getParameterForValue(self, group: str, key: str, value: float) -> float:
        return 0.0

    def getDefaultValue(self, group: str, key: str) -> float:
        return 0.0

    def getDefaultParameter(self, group: str, key: str) -> float:
        return 0.0

    def getSetting(self, name: str) -> None:
        return None

    def reset(self, group: str, key: str) -> None:
        return None

    def makeConnection(self, group: str, key: str, callback: Any) -> None:
        return None

    def makeUnbufferedConnection(self, group: str, key: str, callback: Any) -> None:
        return None

    def connectControl(self, group: str, key: str, callback: Any, disconnect: bool = False) -> bool:
        return False

    def trigger(self, group: str, key: str) -> None:
        return None

    def log(self, message: str) -> None:
        _report(str(message))

    def scratchEnable(self, deck: int, intervalsPerRev: int, rpm: float, alpha: float, beta: float, ramp: bool = True) -> None:
        return None

    def scratchTick(self, deck: int, interval: int) -> None:
        return None

    def scratchDisable(self, deck: int, ramp: bool = True) -> None:
        return None

    def isScratching(self, deck: int) -> bool:
        return False

    def softTakeover(self, group: str, key: str, enable: bool) -> None:
        return None

    def softTakeoverIgnoreNextValue(self, group: str, key: str) -> None:
        return None

    def brake(self, deck: int, activate: bool, factor: float = 1.0, rate: float = 1.0) -> None:
        return None

    def spinback(self, deck: int, activate: bool, factor: float = 1.8, rate: float = -10.0) -> None:
        return None

    def softStart(self, deck: int, activate: bool, factor: float = 1.0) -> None:
        return None

    # --- Default arm ---
    def __getattr__(self, name: str) -> Callable[..., None]:
        # Only reached for names not defined above
        if name.startswith("_"):
            raise AttributeError(name)
        self.unimplemented_calls.add(name)
        return _noop


class ScriptFacade:
    """The ``script`` object visible to scripts."""

    def deckFromGroup(self, group: str) -> Optional[int]:
        return deck_from_group(group)


class MidiHandle:
    """The ``midi`` object visible to scripts; forwards sends to the device."""

    def __init__(self, transport: Any = None) -> None:
        self._transport = transport

    def sendShortMsg(self, status: int, data1: int, data2: int) -> None:
        if self._transport is not None:
            self._transport.send(MidiMessage(status=int(status), data=(int(data1), int(data2))))

    def sendSysexMsg(self, data: Iterable[int], length: Optional[int] = None) -> None:
        if self._transport is None:
            return
        xs = [int(b) for b in data]
        if length is not None:
            xs = xs[: int(length)]
        if xs:
            self._transport.send(MidiMessage.from_bytes(xs))


_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "callable", "chr", "dict", "divmod", "enumerate",
    "filter", "float", "frozenset", "int", "isinstance",
    "iter", "len", "list", "map", "max", "min", "next", "object", "ord", "pow",
    "property", "range", "repr", "reversed", "round", "set", "slice",
    "sorted", "staticmethod", "classmethod", "str", "sum", "super", "tuple", "zip",
    "ArithmeticError", "AttributeError", "Exception", "IndexError", "KeyError",
    "LookupError", "RuntimeError", "TypeError", "ValueError", "ZeroDivisionError",
    "__build_class__",
)

# Dunders a script may touch (constructors and super() chains)
_ALLOWED_DUNDERS = {"__init__"}
# Attributes that lead from ordinary objects to frames, code or globals
_BLOCKED_ATTRS = {
    "format", "format_map", "mro",
    "gi_frame", "gi_code", "cr_frame", "cr_code", "ag_frame", "ag_code",
    "f_globals", "f_locals", "f_builtins", "f_back", "f_code",
    "tb_frame", "tb_next",
}
_INJECTED_NAMES = ("engine", "script", "midi")


def _script_print(*args: Any, **_kwargs: Any) -> None:
    _report(" ".join(str(a) for a in args))


def _check_attr_name(name: Any) -> str:
    if type(name) is not str:
        raise TypeError("attribute name must be a str")
    if name.startswith("_") or name in _BLOCKED_ATTRS:
        raise AttributeError(f"{name} is not available to mapping scripts")
    return name


_MISSING = object()


def _script_getattr(obj: Any, name: str, default: Any = _MISSING) -> Any:
    name = _check_attr_name(name)
    if default is _MISSING:
        return getattr(obj, name)
    return getattr(obj, name, default)


def _script_hasattr(obj: Any, name: str) -> bool:
    return hasattr(obj, _check_attr_name(name))


def _script_setattr(obj: Any, name: str, value: Any) -> None:
    setattr(obj, _check_attr_name(name), value)


def _safe_builtins() -> Dict[str, Any]:
    out = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}
    out["print"] = _script_print
    # Name-based attribute access gets the same rules as written attributes
    out["getattr"] = _script_getattr
    out["hasattr"] = _script_hasattr
    out["setattr"] = _script_setattr
    return out


def _check_source(tree: ast.AST, file_name: str) -> None:
    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            raise ScriptLoadError(file_name, f"line {node.lineno}: imports are not available to mapping scripts")
        if isinstance(node, ast.Attribute):
            attr = node.attr
            if isinstance(node.value, ast.Name) and node.value.id in _INJECTED_NAMES and attr.startswith("_"):
                raise ScriptLoadError(file_name, f"line {node.lineno}: {node.value.id}.{attr} is not part of the script API")
            # Private names included, since host objects can be reached through aliases
            if (attr.startswith("_") and attr not in _ALLOWED_DUNDERS) or attr in _BLOCKED_ATTRS:
                raise ScriptLoadError(file_name, f"line {node.lineno}: access to {attr} is not allowed")
        if isinstance(node, ast.Name) and node.id in ("__builtins__", "__import__"):
            raise ScriptLoadError(file_name, f"line {node.lineno}: access to {node.id} is not allowed")


def execute_script(
    source: str,
    file_name: str,
    engine: EngineFacade,
    script: ScriptFacade,
    midi: MidiHandle,
    function_prefix: Optional[str] = None,
) -> Any:
    """Evaluate one script and return the namespace its handlers live in.

    With a function prefix naming a top-level object, that object is the
    namespace. Otherwise the script's public top-level names are collected
    into a SimpleNamespace.
    """
    try:
        tree = ast.parse(source, filename=file_name, mode="exec")
    except SyntaxError as e:
        raise ScriptLoadError(file_name, f"syntax error at line {e.lineno}: {e.msg}") from e
    _check_source(tree, file_name)
    code = compile(tree, file_name, "exec")

    injected = {"engine": engine, "script": script, "midi": midi}
    env: Dict[str, Any] = {
        "__builtins__": _safe_builtins(),
        "__name__": f"deckmap_script:{file_name}",
        **injected,
    }
    try:
        exec(code, env)
    except Exception as e:
        raise ScriptLoadError(file_name, f"{type(e).__name__}: {e}") from e

    if function_prefix and function_prefix in env:
        return env[function_prefix]
    public = {
        k: v
        for k, v in env.items()
        if not k.startswith("_") and k not in injected
    }
    return SimpleNamespace(**public)


def call_flexible(fn: Callable[..., Any], *args: Any) -> Any:
    """Call fn with as many leading positional args as it accepts."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return fn(*args)
    params = list(sig.parameters.values())
    if any(p.kind == p.VAR_POSITIONAL for p in params):
        return fn(*args)
    n = len([p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)])
    return fn(*args[:n])


class ScriptSandbox:
    """All scripts of one mapping, sharing one engine facade and action buffer.

    Script module state lives as long as the sandbox; handlers commonly keep
    counters or toggle state between messages.
    """

    def __init__(self, timers: Optional[TimerHost] = None, midi_transport: Any = None) -> None:
        self.buffer = ActionBuffer()
        self.timers = timers
        self.engine = EngineFacade(self.buffer, timers, owner=self)
        self.script = ScriptFacade()
        self.midi = MidiHandle(midi_transport)
        # function prefix -> exported namespace, in load order
        self.namespaces: Dict[str, Any] = {}
        self.closed = False
        # Held while init runs outside the engine lock; timers wait on it
        self.lock = threading.RLock()

    def load(self, script_files: Iterable[ScriptFile], loader: ScriptLoader) -> None:
        for sf in script_files:
            try:
                source = loader(sf.file_name)
            except Exception as e:
                raise ScriptLoadError(sf.file_name, f"could not fetch script: {e}") from e
            exported = execute_script(source, sf.file_name, self.engine, self.script, self.midi, sf.function_prefix)
            if sf.function_prefix:
                self.namespaces[sf.function_prefix] = exported

    def namespace(self, prefix: str) -> Any:
        return self.namespaces.get(prefix)

    def init(self, controller_id: str = "", debug: bool = False) -> None:
        with self.lock:
            for prefix, ns in self.namespaces.items():
                fn = getattr(ns, "init", None)
                if not callable(fn):
                    continue
                try:
                    call_flexible(fn, controller_id, debug)
                except Exception as e:
                    raise ScriptLoadError(prefix, f"init failed: {type(e).__name__}: {e}") from e
            self.buffer.clear()

    def shutdown(self) -> None:
        self.closed = True
        for prefix, ns in self.namespaces.items():
            fn = getattr(ns, "shutdown", None)
            if not callable(fn):
                continue
            try:
                fn()
            except Exception as e:
                _report(f"{prefix}.shutdown failed: {type(e).__name__}: {e}")
        self.engine._stop_all_timers()
        self.buffer.clear()
