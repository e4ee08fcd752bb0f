import threading
import unittest

from deckmap.timers import MIN_INTERVAL_MS, ManualTimerHost, ThreadTimerHost


class TestManualTimerHost(unittest.TestCase):
    def setUp(self):
        self.host = ManualTimerHost()
        self.fired = []

    def test_one_shot_fires_once(self):
        self.host.start_timer(100, lambda: self.fired.append("a"), one_shot=True)
        self.assertEqual(self.host.advance(99), 0)
        self.assertEqual(self.host.advance(1), 1)
        self.assertEqual(self.host.advance(1000), 0)
        self.assertEqual(self.fired, ["a"])
        self.assertEqual(self.host.active, 0)

    def test_interval_repeats(self):
        self.host.start_timer(100, lambda: self.fired.append(self.host.now_ms))
        self.assertEqual(self.host.advance(350), 3)
        self.assertEqual(self.fired, [100.0, 200.0, 300.0])
        self.assertEqual(self.host.now_ms, 350.0)

    def test_deadline_order(self):
        self.host.start_timer(60, lambda: self.fired.append("slow"), one_shot=True)
        self.host.start_timer(30, lambda: self.fired.append("fast"), one_shot=True)
        self.host.advance(100)
        self.assertEqual(self.fired, ["fast", "slow"])

    def test_stop_timer(self):
        tid = self.host.start_timer(50, lambda: self.fired.append(1))
        self.assertTrue(self.host.stop_timer(tid))
        self.assertFalse(self.host.stop_timer(tid))
        self.assertEqual(self.host.advance(500), 0)

    def test_minimum_interval(self):
        self.host.start_timer(1, lambda: self.fired.append(self.host.now_ms), one_shot=True)
        self.host.advance(100)
        self.assertEqual(self.fired, [float(MIN_INTERVAL_MS)])

    def test_stop_all(self):
        self.host.start_timer(50, lambda: None)
        self.host.start_timer(70, lambda: None)
        self.host.stop_all()
        self.assertEqual(self.host.active, 0)

    def test_runner_wraps_callbacks(self):
        wrapped = []

        def runner(cb):
            wrapped.append(cb)
            cb()

        host = ManualTimerHost(runner=runner)
        host.start_timer(20, lambda: self.fired.append(1), one_shot=True)
        host.advance(20)
        self.assertEqual(len(wrapped), 1)
        self.assertEqual(self.fired, [1])


class TestThreadTimerHost(unittest.TestCase):
    def test_fires_on_background_thread(self):
        done = threading.Event()
        host = ThreadTimerHost()
        try:
            host.start_timer(20, done.set, one_shot=True)
            self.assertTrue(done.wait(2.0))
        finally:
            host.stop()

    def test_errors_go_to_handler(self):
        errors = []
        seen = threading.Event()

        def on_error(e):
            errors.append(e)
            seen.set()

        def boom():
            raise RuntimeError("timer failed")

        host = ThreadTimerHost(on_error=on_error)
        try:
            host.start_timer(20, boom, one_shot=True)
            self.assertTrue(seen.wait(2.0))
        finally:
            host.stop()
        self.assertIsInstance(errors[0], RuntimeError)


if __name__ == "__main__":
    unittest.main()
