from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, List, Optional

from deckmap.actions import Action
from deckmap.mapping_model import ControlMapping, DeckmapError
from deckmap.script_sandbox import ScriptSandbox, call_flexible


class ScriptRuntimeError(DeckmapError):
    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"{key}: {type(cause).__name__}: {cause}")
        self.key = key
        self.cause = cause


def _report(err: ScriptRuntimeError) -> None:
    print(f"[script] handler error {err}", flush=True)


def _lookup(root: Any, part: str) -> Any:
    if isinstance(root, Mapping):
        return root.get(part)
    return getattr(root, part, None)


class ScriptDispatcher:
    """Invokes script-bound handlers and returns the Actions they produced."""

    def __init__(self, sandbox: ScriptSandbox, on_error: Optional[Callable[[ScriptRuntimeError], None]] = None):
        self.sandbox = sandbox
        self.on_error = on_error or _report
        self.errors = 0

    def resolve_handler(self, key: str) -> Optional[Callable[..., Any]]:
        parts = [p for p in key.split(".") if p]
        if not parts:
            return None
        cur = self.sandbox.namespace(parts[0])
        for part in parts[1:]:
            if cur is None:
                return None
            cur = _lookup(cur, part)
        if cur is None or not callable(cur) or len(parts) < 2:
            return None
        return cur

    def dispatch(self, control: ControlMapping, raw_value: int, status: int, group: str, deck: Optional[int]) -> List[Action]:
        handler = self.resolve_handler(control.key)
        if handler is None:
            return []
        buf = self.sandbox.buffer
        buf.clear()
        # Scripts address decks 0-based; deck-less groups become -1
        channel = deck - 1 if deck is not None else -1
        try:
            call_flexible(handler, channel, control, raw_value, status, group)
        except Exception as e:
            buf.clear()
            self.errors += 1
            self.on_error(ScriptRuntimeError(control.key, e))
            return []
        return buf.drain()
