from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from deckmap.actions import Action, Cue, Play, PressAction, ValueAction, ValueControl, deck_from_group
from deckmap.mapping_model import NOTE_ON, MappingDocument, MidiMessage


DECK_LABELS: Dict[int, str] = {1: "A", 2: "B"}

JOG_CENTER = 0x40


class DeckHost:
    """Callbacks the host application implements to receive Actions."""

    def play(self, deck: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def stop(self, deck: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def cue(self, deck: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def rate_change(self, deck: str, offset: float) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def volume_change(self, deck: str, volume: float) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def jog_wheel(self, deck: str, offset: float) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def crossfader_change(self, position: float) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def is_playing(self, deck: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def other(self, action: Action) -> None:
        """Actions without a dedicated callback (loops, sync, gain, EQ)."""
        return None


class RecordingHost(DeckHost):
    """A minimal host capturing callbacks for tests and demos.

    Records tuples like (name, args...). Tracks play state so play presses
    toggle like a real deck.
    """

    def __init__(self) -> None:
        self.events: List[Tuple[Any, ...]] = []
        self.playing: Dict[str, bool] = {}

    def play(self, deck: str) -> None:
        self.playing[deck] = True
        self.events.append(("play", deck))

    def stop(self, deck: str) -> None:
        self.playing[deck] = False
        self.events.append(("stop", deck))

    def cue(self, deck: str) -> None:
        self.events.append(("cue", deck))

    def rate_change(self, deck: str, offset: float) -> None:
        self.events.append(("rate", deck, offset))

    def volume_change(self, deck: str, volume: float) -> None:
        self.events.append(("volume", deck, volume))

    def jog_wheel(self, deck: str, offset: float) -> None:
        self.events.append(("jog", deck, offset))

    def crossfader_change(self, position: float) -> None:
        self.events.append(("crossfader", position))

    def is_playing(self, deck: str) -> bool:
        return bool(self.playing.get(deck, False))

    def other(self, action: Action) -> None:
        self.events.append(("other", action))


def jog_offset(raw: int) -> float:
    """Relative-encoder jog value (centre 0x40) to a signed nudge amount.

    Small movements are kept 1:1, faster spins are amplified.
    """
    delta = int(raw) - JOG_CENTER
    amount = abs(delta)
    if amount == 0:
        return 0.0
    if amount <= 2:
        scaled = amount * 1.0
    elif amount <= 5:
        scaled = amount * 1.5
    else:
        scaled = amount * 2.0
    return scaled if delta > 0 else -scaled


def tempo_offset(value: float, max_bpm_variation: float) -> float:
    """Normalized fader position to a BPM offset in [-max, +max], 0.1 BPM steps."""
    return round(value * (2 * max_bpm_variation) * 10) / 10 - max_bpm_variation


class ActionRouter:
    """Delivers Actions to a DeckHost in order."""

    def __init__(self, host: DeckHost, max_bpm_variation: float = 8.0) -> None:
        self.host = host
        self.max_bpm_variation = float(max_bpm_variation)

    def deliver(self, actions: List[Action]) -> None:
        for action in actions:
            self.deliver_one(action)

    def deliver_one(self, action: Action) -> None:
        if isinstance(action, ValueAction) and action.control == ValueControl.CROSSFADER:
            self.host.crossfader_change(action.value)
            return
        label = DECK_LABELS.get(action.deck) if action.deck is not None else None
        if isinstance(action, PressAction):
            if isinstance(action.control, Play) and label:
                if action.down:
                    # Play buttons toggle; whether to stop is the host's call
                    if self.host.is_playing(label):
                        self.host.stop(label)
                    else:
                        self.host.play(label)
                return
            if isinstance(action.control, Cue) and label:
                if action.down:
                    self.host.cue(label)
                return
            self.host.other(action)
            return

        ctrl = action.control
        if ctrl == ValueControl.RATE and label:
            self.host.rate_change(label, tempo_offset(action.value, self.max_bpm_variation))
        elif ctrl == ValueControl.VOLUME and label:
            self.host.volume_change(label, action.value)
        elif ctrl == ValueControl.JOG and label:
            off = jog_offset(round(action.value * 127))
            if off != 0:
                self.host.jog_wheel(label, off)
        elif ctrl in (ValueControl.RATE, ValueControl.VOLUME, ValueControl.JOG):
            # Deck-bound control for a deck the host does not have
            return
        else:
            self.host.other(action)


class PlayLedFeedback:
    """Lights a deck's play button: note-on velocity 127 for on, 0 for off."""

    def __init__(self, doc: MappingDocument, transport: Any) -> None:
        self.doc = doc
        self.transport = transport
        self._last: Dict[int, bool] = {}

    def play_note_for(self, deck: int) -> Optional[Tuple[int, int]]:
        """(channel 1-based, note) of the deck's first note-mapped play control."""
        for c in self.doc.controls:
            if c.key == "play" and c.message_class == NOTE_ON and deck_from_group(c.group) == deck:
                return c.channel, c.midino
        return None

    def update(self, deck: int, playing: bool, force: bool = False) -> Optional[MidiMessage]:
        if not force and self._last.get(deck) == bool(playing):
            return None
        target = self.play_note_for(deck)
        if target is None:
            return None
        channel, note = target
        msg = MidiMessage(status=NOTE_ON | ((channel - 1) & 0x0F), data=(note, 127 if playing else 0))
        self.transport.send(msg)
        self._last[deck] = bool(playing)
        return msg
