import os

from deckmap.actions import action_to_dict
from deckmap.controller import MappingEngine
from deckmap.host import ActionRouter, RecordingHost
from deckmap.manifest import load_from_manifest, load_manifest


MAPPINGS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), os.pardir, "mappings")


def main():
    manifest = os.path.join(MAPPINGS_DIR, "manifest.json")
    entries = load_manifest(manifest)
    engine = MappingEngine()
    load_from_manifest(engine, entries[0], MAPPINGS_DIR)

    host = RecordingHost()
    router = ActionRouter(host)
    messages = [
        [0x90, 0x0B, 0x7F],  # deck 1 play down
        [0x90, 0x0B, 0x00],  # deck 1 play up
        [0xB0, 0x00, 0x40],  # deck 1 tempo MSB
        [0xB0, 0x20, 0x00],  # deck 1 tempo LSB
        [0xB0, 0x21, 0x43],  # deck 1 jog, 3 ticks forward
        [0xB6, 0x1F, 0x7F],  # crossfader MSB
        [0xB6, 0x3F, 0x7F],  # crossfader LSB
    ]
    print("actions:")
    for raw in messages:
        actions = engine.handle_bytes(raw)
        for a in actions:
            print(action_to_dict(a))
        router.deliver(actions)
    print("host:")
    for e in host.events:
        print(e)


if __name__ == "__main__":
    main()
