from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


class ValueControl(str, Enum):
    VOLUME = "volume"
    GAIN = "gain"
    CROSSFADER = "crossfader"
    RATE = "rate"
    JOG = "jog"
    LOWS = "lows"
    MIDS = "mids"
    HIGHS = "highs"


@dataclass(frozen=True)
class Play:
    type = "play"


@dataclass(frozen=True)
class Cue:
    type = "cue"


@dataclass(frozen=True)
class StopAtStart:
    type = "stopAtStart"


@dataclass(frozen=True)
class LoopResize:
    factor: float
    type = "loopResize"


@dataclass(frozen=True)
class LoopToggle:
    beats: Optional[float] = None
    type = "loopToggle"


@dataclass(frozen=True)
class Sync:
    type = "sync"


PressControl = Union[Play, Cue, StopAtStart, LoopResize, LoopToggle, Sync]


@dataclass(frozen=True)
class PressAction:
    control: PressControl
    deck: Optional[int]
    down: bool


@dataclass(frozen=True)
class ValueAction:
    control: ValueControl
    deck: Optional[int]
    value: float


Action = Union[PressAction, ValueAction]


_DECK_RE = re.compile(r"\[Channel(\d+)\]")
# Fractional sizes (e.g. beatloop_0.5_toggle) are valid Mixxx keys
_BEATLOOP_TOGGLE_RE = re.compile(r"beatloop_(\d+(?:\.\d+)?)_toggle")
# Group marker for the per-deck EQ effect rack, e.g. [EqualizerRack1_[Channel1]_Effect1]
EQ_RACK_MARKER = "EqualizerRack"

_PRESS_TABLE: Dict[str, PressControl] = {
    "play": Play(),
    "cue_default": Cue(),
    "start_stop": StopAtStart(),
    "loop_halve": LoopResize(factor=0.5),
    "loop_double": LoopResize(factor=2.0),
    "beatloop_activate": LoopToggle(),
    "sync_enabled": Sync(),
}

_VALUE_TABLE: Dict[str, ValueControl] = {
    "volume": ValueControl.VOLUME,
    "pregain": ValueControl.GAIN,
    "crossfader": ValueControl.CROSSFADER,
    "rate": ValueControl.RATE,
    "jog": ValueControl.JOG,
}

_EQ_TABLE: Dict[str, ValueControl] = {
    "parameter1": ValueControl.LOWS,
    "parameter2": ValueControl.MIDS,
    "parameter3": ValueControl.HIGHS,
}


def deck_from_group(group: str) -> Optional[int]:
    m = _DECK_RE.search(group or "")
    return int(m.group(1)) if m else None


def _beats(raw: str) -> float:
    v = float(raw)
    return int(v) if v.is_integer() else v


def press_control_for(key: str) -> Optional[PressControl]:
    m = _BEATLOOP_TOGGLE_RE.fullmatch(key)
    if m:
        return LoopToggle(beats=_beats(m.group(1)))
    return _PRESS_TABLE.get(key)


def value_control_for(group: str, key: str) -> Optional[ValueControl]:
    if EQ_RACK_MARKER in (group or "") and key in _EQ_TABLE:
        return _EQ_TABLE[key]
    return _VALUE_TABLE.get(key)


def make_press_action(group: str, key: str, down: bool) -> Optional[PressAction]:
    control = press_control_for(key)
    if control is None:
        return None
    return PressAction(control=control, deck=deck_from_group(group), down=bool(down))


def make_value_action(group: str, key: str, value: float) -> Optional[ValueAction]:
    control = value_control_for(group, key)
    if control is None:
        return None
    return ValueAction(control=control, deck=deck_from_group(group), value=float(value))


def resolve_action(control: Any, key: str, value: float, down: bool, group: str) -> Optional[Action]:
    """Map a matched non-script control and its decoded value to an Action.

    Press keys take precedence over value keys. Keys neither table knows
    produce None; mappings routinely reference controls we do not model.
    """
    return make_press_action(group, key, down) or make_value_action(group, key, value)


def action_to_dict(action: Action) -> Dict[str, Any]:
    if isinstance(action, PressAction):
        ctrl: Dict[str, Any] = {"type": action.control.type}
        if isinstance(action.control, LoopResize):
            ctrl["factor"] = action.control.factor
        elif isinstance(action.control, LoopToggle) and action.control.beats is not None:
            ctrl["beats"] = action.control.beats
        return {"type": "press", "control": ctrl, "deck": action.deck, "down": action.down}
    return {"type": "value", "control": {"type": action.control.value}, "deck": action.deck, "value": action.value}
