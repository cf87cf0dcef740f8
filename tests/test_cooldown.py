from __future__ import annotations

import unittest

from wds.triggers.cooldown import CooldownGate


class _Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class CooldownGateTests(unittest.TestCase):
    def test_first_batch_passes_and_window_blocks_until_elapsed(self) -> None:
        clock = _Clock()
        gate = CooldownGate(10000, clock=clock)

        self.assertTrue(gate.allow())
        self.assertEqual(gate.last_fired, 100.0)

        for offset in (0.0, 3.0, 9.999, 10.0):
            clock.now = 100.0 + offset
            self.assertFalse(gate.allow(), offset)

        clock.now = 110.001
        self.assertTrue(gate.allow())
        self.assertEqual(gate.last_fired, 110.001)

    def test_blocked_attempts_do_not_extend_window(self) -> None:
        gate = CooldownGate(1000, clock=_Clock(0.0))
        self.assertTrue(gate.allow(now=0.0))
        self.assertFalse(gate.allow(now=0.5))
        self.assertTrue(gate.allow(now=1.01))

    def test_remaining_and_reset(self) -> None:
        clock = _Clock(50.0)
        gate = CooldownGate(2000, clock=clock)
        self.assertEqual(gate.remaining_ms(), 0.0)

        gate.allow()
        clock.now = 50.5
        self.assertAlmostEqual(gate.remaining_ms(), 1500.0)

        gate.reset()
        self.assertIsNone(gate.last_fired)
        self.assertTrue(gate.allow())

    def test_zero_cooldown_only_blocks_same_instant(self) -> None:
        gate = CooldownGate(0, clock=_Clock())
        self.assertTrue(gate.allow(now=1.0))
        self.assertFalse(gate.allow(now=1.0))
        self.assertTrue(gate.allow(now=1.001))

    def test_cooldown_can_be_changed(self) -> None:
        gate = CooldownGate(10000, clock=_Clock())
        gate.allow(now=0.0)
        gate.set_cooldown_ms(1000)
        self.assertEqual(gate.cooldown_ms, 1000)
        self.assertTrue(gate.allow(now=1.5))


if __name__ == "__main__":
    unittest.main()
