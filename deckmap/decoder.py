from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from deckmap.actions import deck_from_group
from deckmap.mapping_model import (
    CONTROL_CHANGE,
    NOTE_OFF,
    NOTE_ON,
    ControlMapping,
    MappingDocument,
    MidiMessage,
    Resolution,
)


DECODED_CLASSES = (NOTE_OFF, NOTE_ON, CONTROL_CHANGE)

LOW_RES_MAX = 0x7F
HIGH_RES_MAX = 0x3FFF


@dataclass(frozen=True)
class DecodedMessage:
    control: ControlMapping
    channel: int
    message_class: int
    raw_value: int
    value: float
    down: bool
    deck: Optional[int]


def decode_message(msg: MidiMessage, doc: MappingDocument, prior: Optional[MidiMessage]) -> Optional[DecodedMessage]:
    """Match msg against doc and reconstruct its value. None means no match.

    High-resolution controls (midino 32..63) carry the LSB; the MSB is the
    value byte of the message received just before, whichever control sent it.
    """
    mclass = msg.message_class
    if mclass not in DECODED_CLASSES or not msg.data:
        return None
    control = doc.find_control(msg.status, msg.data_byte(0))
    if control is None:
        return None

    raw = msg.data_byte(1)
    down = raw > 0
    if control.resolution == Resolution.HIGH:
        prev = prior.data_byte(1) if prior is not None else 0
        value = ((prev << 7) | raw) / HIGH_RES_MAX
    else:
        value = raw / LOW_RES_MAX
    return DecodedMessage(
        control=control,
        channel=msg.channel,
        message_class=mclass,
        raw_value=raw,
        value=value,
        down=down,
        deck=deck_from_group(control.group),
    )


class MessageDecoder:
    """Stateful decoder for one device.

    Owns the single "last message" slot used to rebuild 14-bit values.
    Two high-resolution controls moving at once interleave their MSB/LSB
    pairs and corrupt each other; the slot is deliberately not keyed per
    control to stay compatible with existing mappings. Every message fills
    the slot, including pitch bend or system messages that never decode.
    """

    def __init__(self) -> None:
        self._last: Optional[MidiMessage] = None

    @property
    def last_message(self) -> Optional[MidiMessage]:
        return self._last

    def reset(self) -> None:
        self._last = None

    def decode(self, msg: MidiMessage, doc: MappingDocument) -> Optional[DecodedMessage]:
        prior = self._last
        self._last = msg
        return decode_message(msg, doc, prior)
