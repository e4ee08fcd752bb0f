import unittest

from deckmap.actions import ValueAction, ValueControl
from deckmap.dispatcher import ScriptDispatcher, ScriptRuntimeError
from deckmap.mapping_model import SCRIPT_BINDING, ControlMapping, ScriptFile
from deckmap.script_sandbox import ScriptSandbox


SCRIPT = """
class Ctl:
    seen = []
    handlers = {"fader": None}

    @staticmethod
    def fader(channel, control, value, status, group):
        Ctl.seen.append((channel, value, status, group))
        engine.setValue(group, "volume", value / 127)

    @staticmethod
    def twice(channel, control, value, status, group):
        engine.setValue(group, "volume", 0.1)
        engine.setValue(group, "rate", 0.2)

    @staticmethod
    def boom(channel, control, value, status, group):
        engine.setValue(group, "volume", 1.0)
        raise ValueError("bad")

    @staticmethod
    def short(channel):
        Ctl.seen.append(("short", channel))

    class nested:
        @staticmethod
        def handler(channel, control, value):
            engine.setValue("[Channel2]", "jog", value / 127)

Ctl.handlers["fader"] = Ctl.fader
Ctl.not_callable = 5
"""


def _control(key, group="[Channel1]"):
    return ControlMapping(group=group, key=key, status=0xB0, midino=0x13, options=frozenset({SCRIPT_BINDING}))


class TestScriptDispatcher(unittest.TestCase):
    def setUp(self):
        self.sandbox = ScriptSandbox()
        self.sandbox.load([ScriptFile("ctl.py", "Ctl")], {"ctl.py": SCRIPT}.__getitem__)
        self.sandbox.namespace("Ctl").seen.clear()
        self.errors = []
        self.dispatcher = ScriptDispatcher(self.sandbox, on_error=self.errors.append)

    def test_resolves_dotted_paths(self):
        self.assertIsNotNone(self.dispatcher.resolve_handler("Ctl.fader"))
        self.assertIsNotNone(self.dispatcher.resolve_handler("Ctl.nested.handler"))
        self.assertIsNotNone(self.dispatcher.resolve_handler("Ctl.handlers.fader"))

    def test_unresolvable_paths(self):
        for key in ("Ctl", "Ctl.missing", "Other.fader", "Ctl.not_callable", "", "Ctl.fader.deeper"):
            self.assertIsNone(self.dispatcher.resolve_handler(key), key)

    def test_dispatch_returns_script_actions(self):
        out = self.dispatcher.dispatch(_control("Ctl.fader"), 127, 0xB0, "[Channel1]", 1)
        self.assertEqual(out, [ValueAction(ValueControl.VOLUME, 1, 1.0)])
        self.assertEqual(self.sandbox.namespace("Ctl").seen, [(0, 127, 0xB0, "[Channel1]")])
        self.assertEqual(len(self.sandbox.buffer), 0)

    def test_actions_keep_call_order(self):
        out = self.dispatcher.dispatch(_control("Ctl.twice"), 1, 0xB0, "[Channel1]", 1)
        self.assertEqual([a.control for a in out], [ValueControl.VOLUME, ValueControl.RATE])

    def test_deckless_group_gets_minus_one(self):
        self.dispatcher.dispatch(_control("Ctl.short", "[Master]"), 0, 0xB0, "[Master]", None)
        self.assertEqual(self.sandbox.namespace("Ctl").seen, [("short", -1)])

    def test_fewer_parameters(self):
        out = self.dispatcher.dispatch(_control("Ctl.nested.handler"), 0x41, 0xB0, "[Channel1]", 1)
        self.assertEqual(out, [ValueAction(ValueControl.JOG, 2, 0x41 / 127)])

    def test_missing_handler_yields_nothing(self):
        self.assertEqual(self.dispatcher.dispatch(_control("Ctl.missing"), 1, 0xB0, "[Channel1]", 1), [])
        self.assertEqual(self.dispatcher.errors, 0)

    def test_throwing_handler_discards_partial_actions(self):
        out = self.dispatcher.dispatch(_control("Ctl.boom"), 1, 0xB0, "[Channel1]", 1)
        self.assertEqual(out, [])
        self.assertEqual(self.dispatcher.errors, 1)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], ScriptRuntimeError)
        self.assertEqual(self.errors[0].key, "Ctl.boom")
        self.assertIsInstance(self.errors[0].cause, ValueError)
        self.assertEqual(len(self.sandbox.buffer), 0)

    def test_stale_buffer_is_cleared_before_dispatch(self):
        self.sandbox.engine.setValue("[Channel1]", "rate", 0.5)
        out = self.dispatcher.dispatch(_control("Ctl.fader"), 0, 0xB0, "[Channel1]", 1)
        self.assertEqual(out, [ValueAction(ValueControl.VOLUME, 1, 0.0)])


if __name__ == "__main__":
    unittest.main()
