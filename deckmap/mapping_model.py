from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple


NOTE_OFF = 0x80
NOTE_ON = 0x90
CONTROL_CHANGE = 0xB0

# Option marking a control whose key names a script function
SCRIPT_BINDING = "script-binding"

# midino range reserved for the LSB half of 14-bit controls
HIGH_RES_MIDINO = range(32, 64)


class DeckmapError(Exception):
    """Base class for errors raised by the mapping engine."""


class Resolution(str, Enum):
    LOW = "low"
    HIGH = "high"


def resolution_for(midino: int) -> Resolution:
    return Resolution.HIGH if int(midino) in HIGH_RES_MIDINO else Resolution.LOW


@dataclass(frozen=True)
class MidiMessage:
    """A MIDI message as delivered by a transport: status byte + data bytes."""

    status: int
    data: Tuple[int, ...] = ()

    @property
    def channel(self) -> int:
        # 1-based, as printed on controllers
        return (self.status & 0x0F) + 1

    @property
    def message_class(self) -> int:
        return self.status & 0xF0

    def data_byte(self, idx: int, default: int = 0) -> int:
        return int(self.data[idx]) if idx < len(self.data) else default

    def to_bytes(self) -> bytes:
        return bytes([self.status & 0xFF] + [b & 0x7F for b in self.data])

    @classmethod
    def from_bytes(cls, raw: Iterable[int]) -> "MidiMessage":
        xs = [int(b) for b in raw]
        if not xs:
            raise ValueError("empty MIDI message")
        return cls(status=xs[0], data=tuple(xs[1:]))

    @classmethod
    def from_mido(cls, msg) -> "MidiMessage":
        return cls.from_bytes(msg.bytes())


@dataclass(frozen=True)
class MappingInfo:
    name: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    forums: Optional[str] = None
    wiki: Optional[str] = None


@dataclass(frozen=True)
class ScriptFile:
    file_name: str
    function_prefix: Optional[str] = None


@dataclass(frozen=True)
class ControlMapping:
    group: str
    key: str
    status: int
    midino: int
    options: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def resolution(self) -> Resolution:
        return resolution_for(self.midino)

    @property
    def channel(self) -> int:
        return (self.status & 0x0F) + 1

    @property
    def message_class(self) -> int:
        return self.status & 0xF0

    @property
    def is_script_binding(self) -> bool:
        return SCRIPT_BINDING in self.options


@dataclass(frozen=True)
class OutputMapping:
    """Device-facing output descriptor. Parsed only; nothing drives it yet."""

    group: str
    key: str
    status: int
    midino: int
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    on: Optional[int] = None
    off: Optional[int] = None


@dataclass(frozen=True)
class MappingDocument:
    info: MappingInfo = field(default_factory=MappingInfo)
    script_files: Tuple[ScriptFile, ...] = ()
    controls: Tuple[ControlMapping, ...] = ()
    outputs: Tuple[OutputMapping, ...] = ()

    def find_control(self, status: int, midino: int) -> Optional[ControlMapping]:
        # First match in document order wins; later duplicates are unreachable
        for c in self.controls:
            if c.status == status and c.midino == midino:
                return c
        return None
