from __future__ import annotations

import argparse
import time

from deckmap.host import PlayLedFeedback
from deckmap.mapping_parser import parse
from deckmap.midi_io import MidoTransport, open_mido_output


def main():
    ap = argparse.ArgumentParser(description="Blink the play LEDs a mapping declares, to check wiring")
    ap.add_argument("mapping", help="Path to the mapping XML")
    ap.add_argument("--port", required=True, help="Substring to match MIDI port (e.g., 'DDJ-FLX4')")
    ap.add_argument("--blinks", type=int, default=3)
    args = ap.parse_args()
    with open(args.mapping, "r", encoding="utf-8") as f:
        doc = parse(f.read())
    out = MidoTransport(open_mido_output(args.port))
    leds = PlayLedFeedback(doc, out)
    for _ in range(args.blinks):
        for deck in (1, 2):
            leds.update(deck, True)
        time.sleep(0.3)
        for deck in (1, 2):
            leds.update(deck, False)
        time.sleep(0.3)
    out.close()
    print("play LEDs blinked (note-on 127/0)")


if __name__ == "__main__":
    main()
