import os
import unittest

from deckmap.actions import Cue, LoopResize, LoopToggle, Play, PressAction, Sync, ValueAction, ValueControl
from deckmap.controller import MappingEngine
from deckmap.host import ActionRouter, RecordingHost
from deckmap.manifest import load_from_manifest, load_manifest
from deckmap.validator import validate_handlers, validate_mapping


MAPPINGS_DIR = os.path.join(os.path.dirname(__file__), os.pardir, os.pardir, "mappings")


class TestBundledMapping(unittest.TestCase):
    def setUp(self):
        entries = load_manifest(os.path.join(MAPPINGS_DIR, "manifest.json"))
        self.engine = MappingEngine()
        self.mapping = load_from_manifest(self.engine, entries[0], MAPPINGS_DIR)

    def test_lints_clean(self):
        self.assertEqual(validate_mapping(self.mapping.doc), [])
        self.assertEqual(validate_handlers(self.mapping), [])

    def test_transport_buttons(self):
        h = self.engine.handle_bytes
        self.assertEqual(h([0x90, 0x0B, 0x7F]), [PressAction(Play(), 1, True)])
        self.assertEqual(h([0x91, 0x0C, 0x7F]), [PressAction(Cue(), 2, True)])
        self.assertEqual(h([0x91, 0x58, 0x7F]), [PressAction(Sync(), 2, True)])
        self.assertEqual(h([0x90, 0x10, 0x7F]), [PressAction(LoopToggle(beats=4), 1, True)])
        self.assertEqual(h([0x90, 0x12, 0x7F]), [PressAction(LoopResize(0.5), 1, True)])
        self.assertEqual(h([0x90, 0x13, 0x7F]), [PressAction(LoopResize(2.0), 1, True)])

    def test_fourteen_bit_rate(self):
        self.assertEqual(self.engine.handle_bytes([0xB0, 0x00, 0x40]), [])
        self.assertEqual(self.engine.handle_bytes([0xB0, 0x20, 0x00]), [ValueAction(ValueControl.RATE, 1, 8192 / 16383)])

    def test_eq_full_scale(self):
        self.engine.handle_bytes([0xB0, 0x07, 0x7F])
        self.assertEqual(self.engine.handle_bytes([0xB0, 0x27, 0x7F]), [ValueAction(ValueControl.HIGHS, 1, 1.0)])

    def test_crossfader(self):
        self.engine.handle_bytes([0xB6, 0x1F, 0x7F])
        self.assertEqual(self.engine.handle_bytes([0xB6, 0x3F, 0x7F]), [ValueAction(ValueControl.CROSSFADER, None, 1.0)])

    def test_jog_script(self):
        self.assertEqual(self.engine.handle_bytes([0xB1, 0x21, 0x43]), [ValueAction(ValueControl.JOG, 2, 0x43 / 127)])
        self.assertEqual(self.mapping.sandbox.namespace("DDJFLX4").jog_ticks, {2: 1})

    def test_shift_halves_jog(self):
        self.assertEqual(self.engine.handle_bytes([0x90, 0x3F, 0x7F]), [])
        self.assertEqual(self.engine.handle_bytes([0xB0, 0x21, 0x44]), [ValueAction(ValueControl.JOG, 1, 0x42 / 127)])
        self.engine.handle_bytes([0x90, 0x3F, 0x00])
        self.assertEqual(self.engine.handle_bytes([0xB0, 0x21, 0x44]), [ValueAction(ValueControl.JOG, 1, 0x44 / 127)])

    def test_end_to_end_with_router(self):
        host = RecordingHost()
        router = ActionRouter(host)
        for raw in ([0x90, 0x0B, 0x7F], [0x90, 0x0B, 0x00], [0xB0, 0x21, 0x43], [0x90, 0x0B, 0x7F]):
            router.deliver(self.engine.handle_bytes(raw))
        self.assertEqual(host.events, [("play", "A"), ("jog", "A", 4.5), ("stop", "A")])


if __name__ == "__main__":
    unittest.main()
